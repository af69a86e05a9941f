"""
Reelforge Utilities Module

Scratch file management and filename helpers.
"""

from reelforge.utils.temp_file_manager import TempFileRegistry, wait_for_file
from reelforge.utils.filename_utils import normalize_output_name, strip_container_extensions

__all__ = [
    "TempFileRegistry",
    "wait_for_file",
    "normalize_output_name",
    "strip_container_extensions",
]
