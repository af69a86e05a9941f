"""
Path validation for user-supplied media paths.

Rejects traversal and malformed paths before they reach ffmpeg. Validation
never raises: callers get a PathValidationResult and decide what to do with
the error text.
"""
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from reelforge import settings

MAX_FILENAME_LENGTH = 255

_UNSAFE_CHARS_RE = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE_RE = re.compile(r'\s+')
_CONTROL_CHARS_RE = re.compile(r'[\x00-\x1f]')


@dataclass(frozen=True)
class PathValidationResult:
    valid: bool
    sanitized: Optional[str] = None
    error: Optional[str] = None


class PathValidator:
    """Validates and sanitizes file system paths"""

    def __init__(self, max_length: Optional[int] = None, allowed_extensions: Optional[List[str]] = None):
        self.max_length = max_length or settings.get_max_path_length()
        self.allowed_extensions = [ext.lower() for ext in (allowed_extensions or settings.get_allowed_extensions())]

    def validate_path(self, path: Union[str, Path, None], base_dir: Union[str, Path, None] = None) -> PathValidationResult:
        """
        Check that a path is safe to hand to ffmpeg.

        Args:
            path: Path to validate
            base_dir: If given, the path must resolve inside this directory

        Returns:
            PathValidationResult with the normalized path when valid
        """
        if not path or not isinstance(path, (str, Path)):
            return PathValidationResult(False, error="Path must be a non-empty string")

        path_str = str(path)
        if len(path_str) > self.max_length:
            return PathValidationResult(False, error=f"Path exceeds maximum length of {self.max_length}")

        if "\0" in path_str:
            return PathValidationResult(False, error="Path contains null bytes")

        normalized = os.path.normpath(path_str)
        if ".." in Path(normalized).parts:
            return PathValidationResult(False, error="Path contains directory traversal (..)")

        if base_dir:
            base_resolved = Path(base_dir).resolve()
            resolved = (base_resolved / normalized).resolve()
            if resolved != base_resolved and base_resolved not in resolved.parents:
                return PathValidationResult(False, error="Path is outside of base directory")

        return PathValidationResult(True, sanitized=normalized)

    def validate_extension(self, path: Union[str, Path]) -> PathValidationResult:
        ext = Path(str(path)).suffix.lower()
        if ext not in self.allowed_extensions:
            return PathValidationResult(
                False,
                error=f"Extension {ext or '(none)'} is not allowed. Allowed: {', '.join(self.allowed_extensions)}"
            )
        return PathValidationResult(True, sanitized=str(path))

    def sanitize_filename(self, filename: str) -> str:
        """
        Make a file name safe: basename only, unsafe characters, whitespace
        runs and control characters replaced with '_', at most 255 characters.
        """
        name = os.path.basename(str(filename).replace("\\", "/"))
        name = _UNSAFE_CHARS_RE.sub("_", name)
        name = _WHITESPACE_RE.sub("_", name)
        name = _CONTROL_CHARS_RE.sub("_", name)
        return name[:MAX_FILENAME_LENGTH]
