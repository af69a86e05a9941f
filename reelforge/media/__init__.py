"""
Media processing package for Reelforge.

This package builds strategy filter graphs, selects encoders, probes sources
and drives the ffmpeg engine.
"""

from .exceptions import (
    ReelforgeError,
    MediaValidationError,
    ProbeError,
    EngineError,
    EngineFilterError,
    EngineEncoderError,
    EngineFatalError,
    BatchPayloadError,
)

__all__ = [
    'ReelforgeError',
    'MediaValidationError',
    'ProbeError',
    'EngineError',
    'EngineFilterError',
    'EngineEncoderError',
    'EngineFatalError',
    'BatchPayloadError',
]
