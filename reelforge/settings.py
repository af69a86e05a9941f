"""
Settings management for Reelforge.

This module provides simple accessor functions for configuration values.
All configuration is stored in YAML files (default.yaml, config.yaml).
"""

import logging
from typing import Any, Dict, List, Tuple

from .config import ConfigLoader

logger = logging.getLogger(__name__)

# Single source of configuration
_config_loader = ConfigLoader()


def reload() -> None:
    """Reload configuration from disk and environment."""
    _config_loader.reload()


# ============================================================================
# Section Accessors
# ============================================================================

def get_ffmpeg_config() -> Dict[str, Any]:
    """Get ffmpeg engine configuration"""
    return _config_loader.get_section('ffmpeg') or {}


def get_processing_config() -> Dict[str, Any]:
    """Get batch processing configuration"""
    return _config_loader.get_section('processing') or {}


def get_encoder_defaults() -> Dict[str, Any]:
    """Get encoder profile defaults (bitrates, pixel format, container flags)"""
    return _config_loader.get_section('encoder') or {}


def get_paths_config() -> Dict[str, Any]:
    """Get path validation configuration"""
    return _config_loader.get_section('paths') or {}


# ============================================================================
# Engine
# ============================================================================

def get_ffmpeg_binary() -> str:
    return str(get_ffmpeg_config().get('binary', 'ffmpeg'))


def get_ffprobe_binary() -> str:
    return str(get_ffmpeg_config().get('ffprobe_binary', 'ffprobe'))


def get_max_concurrent() -> int:
    """
    Get maximum number of render jobs running at once.

    Each job owns one ffmpeg process, so this also caps the number of
    concurrent engine processes.

    Returns:
        int: Maximum concurrent jobs (default: 4, min 1)
    """
    return max(1, int(get_ffmpeg_config().get('max_concurrent', 4)))


def get_ffprobe_timeout_seconds() -> int:
    return int(get_ffmpeg_config().get('ffprobe_timeout_seconds', 30))


# ============================================================================
# Retry
# ============================================================================

def get_retry_attempts() -> int:
    """
    Get the number of attempts the outer retry wrapper makes per job.

    Returns:
        int: Attempts (default: 3, min 1)
    """
    return max(1, int(get_processing_config().get('retry_attempts', 3)))


def get_retry_delay_seconds() -> float:
    return max(0.0, float(get_processing_config().get('retry_delay_seconds', 1.0)))


# ============================================================================
# Paths / temp / preview
# ============================================================================

def get_max_path_length() -> int:
    return int(get_paths_config().get('max_path_length', 4096))


def get_allowed_extensions() -> List[str]:
    extensions = get_paths_config().get('allowed_extensions') or ['.mp4', '.mov', '.m4v', '.webm', '.mkv']
    if isinstance(extensions, str):
        extensions = [extensions]
    return [ext.lower() if ext.startswith('.') else f".{ext.lower()}" for ext in extensions]


def get_temp_dir_name() -> str:
    return str(_config_loader.get('temp', 'dir_name', default='reelforge-temp'))


def get_preview_size() -> Tuple[int, int]:
    """Get (width, height) of extracted preview frames"""
    preview = _config_loader.get_section('preview') or {}
    return int(preview.get('width', 450)), int(preview.get('height', 800))
