"""
Security utilities for Reelforge
"""

from .path_validation import PathValidationResult, PathValidator

__all__ = ["PathValidationResult", "PathValidator"]
