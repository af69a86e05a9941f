"""
Process-scoped render context.

Owns the caches shared by every job of a process: the encoder capability
probe and the scratch file registry. Pass one context to the executor, the
queue and the preview operations; close it on shutdown.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from reelforge import settings
from reelforge.media.encoders import EncoderSelector
from reelforge.security import PathValidator
from reelforge.utils.temp_file_manager import TempFileRegistry

logger = logging.getLogger(__name__)


@dataclass
class RenderContext:
    encoders: EncoderSelector
    temp_files: TempFileRegistry = field(default_factory=TempFileRegistry)
    path_validator: PathValidator = field(default_factory=PathValidator)
    ffmpeg_binary: Optional[str] = None
    ffprobe_binary: Optional[str] = None

    @classmethod
    def from_settings(cls) -> "RenderContext":
        ffmpeg_binary = settings.get_ffmpeg_binary()
        return cls(
            encoders=EncoderSelector(ffmpeg_binary=ffmpeg_binary),
            ffmpeg_binary=ffmpeg_binary,
            ffprobe_binary=settings.get_ffprobe_binary(),
        )

    def close(self) -> None:
        """Release every scratch file still registered."""
        if len(self.temp_files):
            logger.info(f"Releasing {len(self.temp_files)} temp files")
        self.temp_files.release_all()

    async def __aenter__(self) -> "RenderContext":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()
