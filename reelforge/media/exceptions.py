"""
Media processing exceptions for Reelforge.

This module defines custom exceptions for job validation, source probing,
engine (ffmpeg) failures and batch payload errors.
"""

from typing import Optional


class ReelforgeError(Exception):
    """Base class for all Reelforge errors"""


class MediaValidationError(ReelforgeError):
    """Raised when a job's paths fail validation. Job-local, never retried."""

    def __init__(self, message: str, file_path: Optional[str] = None):
        self.file_path = file_path
        self.message = message
        if file_path:
            super().__init__(f"{message} (File: {file_path})")
        else:
            super().__init__(message)


class ProbeError(ReelforgeError):
    """Raised when ffprobe cannot read a source. Callers degrade to defaults."""

    def __init__(self, message: str, file_path: Optional[str] = None):
        self.file_path = file_path
        self.message = message
        super().__init__(message)


class EngineError(ReelforgeError):
    """Raised when an ffmpeg invocation fails"""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr_tail: str = ""):
        self.message = message
        self.returncode = returncode
        self.stderr_tail = stderr_tail

        error_msg = message
        if returncode is not None:
            error_msg += f" (exit code {returncode})"
        super().__init__(error_msg)


class EngineFilterError(EngineError):
    """A filter could not be created or failed while filtering"""


class EngineEncoderError(EngineError):
    """The requested encoder is unknown or unusable on this host"""


class EngineFatalError(EngineError):
    """Any other engine failure"""


class BatchPayloadError(ReelforgeError):
    """Raised when a batch payload is malformed, before any job starts"""

    def __init__(self, message: str, errors: Optional[list] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(message)
