"""
Output filename helpers.
"""
from typing import Iterable, Optional

from reelforge import settings

OUTPUT_EXTENSION = ".mp4"


def strip_container_extensions(name: str, extensions: Optional[Iterable[str]] = None) -> str:
    """
    Remove any stack of trailing container extensions.

    Examples:
        >>> strip_container_extensions("clip.mov.mp4")
        'clip'
        >>> strip_container_extensions("take.2.final")
        'take.2.final'
    """
    known = [ext.lower() for ext in (extensions or settings.get_allowed_extensions())]
    stripped = name
    changed = True
    while changed:
        changed = False
        for ext in known:
            if stripped.lower().endswith(ext):
                stripped = stripped[:-len(ext)]
                changed = True
                break
    return stripped


def normalize_output_name(name: str) -> str:
    """
    Give an (already sanitized) output name exactly one .mp4 extension.

    Examples:
        >>> normalize_output_name("clip")
        'clip.mp4'
        >>> normalize_output_name("clip.MOV.mp4")
        'clip.mp4'
    """
    base = strip_container_extensions(name.strip()) or "untitled"
    return base + OUTPUT_EXTENSION
