"""
Encoder profile selection for Reelforge.

Picks a host-appropriate H.264 encoder. The capability list of the local
ffmpeg build is probed at most once per EncoderSelector; the selector lives on
the RenderContext, so one probe serves every job of a process.
"""

import asyncio
import logging
import sys
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, FrozenSet, Optional, Union

from reelforge import settings
from reelforge.models import Strategy
from .ffmpeg_utils import list_encoders

logger = logging.getLogger(__name__)

SOFTWARE_ENCODER = "libx264"
VIDEOTOOLBOX_ENCODER = "h264_videotoolbox"
NVENC_ENCODER = "h264_nvenc"

EncoderLister = Callable[[], Awaitable[set]]


@dataclass(frozen=True)
class EncoderProfile:
    video_codec: str
    video_bitrate: str = "12M"
    pixel_format: str = "yuv420p"
    mov_flags: str = "+faststart"
    audio_codec: str = "aac"
    audio_bitrate: str = "256k"

    @property
    def is_software(self) -> bool:
        return self.video_codec == SOFTWARE_ENCODER

    def with_video_codec(self, codec: str) -> "EncoderProfile":
        return replace(self, video_codec=codec)

    @classmethod
    def from_settings(cls) -> "EncoderProfile":
        defaults = settings.get_encoder_defaults()
        return cls(
            video_codec=str(defaults.get('software_codec', SOFTWARE_ENCODER)),
            video_bitrate=str(defaults.get('video_bitrate', '12M')),
            pixel_format=str(defaults.get('pixel_format', 'yuv420p')),
            mov_flags=str(defaults.get('mov_flags', '+faststart')),
            audio_codec=str(defaults.get('audio_codec', 'aac')),
            audio_bitrate=str(defaults.get('audio_bitrate', '256k')),
        )


class EncoderSelector:
    """Chooses the video encoder for this host, caching the capability probe."""

    def __init__(
        self,
        base_profile: Optional[EncoderProfile] = None,
        platform: Optional[str] = None,
        lister: Optional[EncoderLister] = None,
        ffmpeg_binary: Optional[str] = None,
    ):
        """
        Args:
            base_profile: Profile used for everything but the video codec
                (default: encoder section of the configuration)
            platform: sys.platform style host name (default: this host)
            lister: Coroutine function returning encoder names
                (default: `ffmpeg -encoders`)
            ffmpeg_binary: ffmpeg executable for the default lister
        """
        self.base_profile = base_profile or EncoderProfile.from_settings()
        self.platform = platform or sys.platform
        self._lister = lister or (lambda: list_encoders(ffmpeg_binary))
        self._capabilities: Optional[FrozenSet[str]] = None
        self._lock = asyncio.Lock()
        self.probe_count = 0

    @property
    def software_profile(self) -> EncoderProfile:
        return self.base_profile.with_video_codec(SOFTWARE_ENCODER)

    async def available_encoders(self) -> FrozenSet[str]:
        """
        Encoders usable by the local ffmpeg, probed once.

        A failed probe is cached as an empty set: no hardware encoder.
        """
        if self._capabilities is not None:
            return self._capabilities
        async with self._lock:
            if self._capabilities is None:
                self.probe_count += 1
                try:
                    self._capabilities = frozenset(await self._lister())
                    logger.info(f"Detected {len(self._capabilities)} ffmpeg encoders")
                except Exception as e:
                    logger.warning(f"Encoder probe failed, assuming software encoding only: {e}")
                    self._capabilities = frozenset()
        return self._capabilities

    async def is_encoder_available(self, encoder: str) -> bool:
        return encoder in await self.available_encoders()

    async def pick_encoder_profile(self, strategy_id: Union[Strategy, str, None] = None) -> EncoderProfile:
        """
        Select the encoder profile for a render.

        macOS always uses VideoToolbox; Windows uses NVENC when ffmpeg lists
        it; every other host, and any probe failure, gets libx264.
        The strategy does not influence the choice today.
        """
        if self.platform == "darwin":
            return self.base_profile.with_video_codec(VIDEOTOOLBOX_ENCODER)

        if self.platform == "win32" and await self.is_encoder_available(NVENC_ENCODER):
            return self.base_profile.with_video_codec(NVENC_ENCODER)

        return self.software_profile
