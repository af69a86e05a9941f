"""
Preview operations for Reelforge.

- extract_frame_as_data_url(): render one strategy-filtered frame as a JPEG data URL
- save_overlay_from_data_url(): persist an overlay image received as a data URL

Both write into the context's temp file registry.
"""

import asyncio
import base64
import binascii
import logging
import re
from pathlib import Path
from typing import Optional, Union

from reelforge import settings
from reelforge.context import RenderContext
from reelforge.core.error_handler import RetryConfig, retry_async
from reelforge.models import ProfileSettings, Strategy
from reelforge.utils.temp_file_manager import wait_for_file
from .exceptions import MediaValidationError
from .ffmpeg_utils import run_ffmpeg
from .filters import build_video_filter

logger = logging.getLogger(__name__)

MAX_OVERLAY_BYTES = 10 * 1024 * 1024

_DATA_URL_RE = re.compile(r"^data:image/(png|jpeg);base64,", re.IGNORECASE)


def build_preview_filter(
    width: int,
    height: int,
    strategy_id: Union[Strategy, str, None] = None,
    profile: Optional[ProfileSettings] = None,
) -> str:
    scale = f"scale={width}:{height}"
    if strategy_id is None:
        return scale
    return f"{build_video_filter(strategy_id, None, profile)},{scale}"


async def extract_frame_as_data_url(
    context: RenderContext,
    input_path: str,
    strategy_id: Union[Strategy, str, None] = None,
    at_seconds: float = 0,
    profile: Optional[ProfileSettings] = None,
    width: Optional[int] = None,
    height: Optional[int] = None,
    retry_config: Optional[RetryConfig] = None,
) -> str:
    """
    Render a single preview frame of a source.

    Args:
        context: Render context owning the temp files
        input_path: Source video
        strategy_id: Strategy to preview, None for the unfiltered frame
        at_seconds: Seek position in the source
        profile: Profile settings for the strategy
        width, height: Preview size (default: preview section of the configuration)
        retry_config: Retry policy (default: processing section of the configuration)

    Returns:
        'data:image/jpeg;base64,...' URL of the frame

    Raises:
        MediaValidationError: If the input path is invalid
        EngineError / TimeoutError: If every extraction attempt failed
    """
    validation = context.path_validator.validate_path(input_path)
    if not validation.valid:
        raise MediaValidationError(validation.error, file_path=input_path)

    default_width, default_height = settings.get_preview_size()
    vf = build_preview_filter(width or default_width, height or default_height, strategy_id, profile)
    temp_path = context.temp_files.create_temp_path("preview", "jpg")
    logger.info(f"Extracting frame at {at_seconds}s from {validation.sanitized} ({strategy_id or 'original'})")

    args = [
        "-hide_banner", "-y",
        "-ss", str(at_seconds),
        "-i", validation.sanitized,
        "-vf", vf,
        "-frames:v", "1",
        "-q:v", "2",
        str(temp_path),
    ]

    async def attempt() -> None:
        await run_ffmpeg(args, ffmpeg_binary=context.ffmpeg_binary)
        await wait_for_file(temp_path)

    def on_retry(attempt_no: int, error: Exception, delay: float) -> None:
        logger.warning(f"Retrying frame extraction (attempt {attempt_no}): {error}")

    try:
        await retry_async(attempt, retry_config, on_retry=on_retry)
        data = await asyncio.to_thread(temp_path.read_bytes)
    except Exception as e:
        logger.error(f"Extract frame failed for {input_path} at {at_seconds}s: {e}")
        raise
    finally:
        context.temp_files.release(temp_path)

    return f"data:image/jpeg;base64,{base64.b64encode(data).decode('ascii')}"


async def save_overlay_from_data_url(context: RenderContext, data_url: str) -> Path:
    """
    Decode a PNG/JPEG data URL into a registered temp .png file.

    The file stays registered with the context until released.

    Raises:
        MediaValidationError: If the data URL is malformed or too large
    """
    match = _DATA_URL_RE.match(data_url or "")
    if not match:
        raise MediaValidationError("Overlay must be a data:image/png or data:image/jpeg base64 URL")

    encoded = data_url[match.end():]
    # base64 expands 3 bytes to 4 characters
    if len(encoded) * 3 // 4 > MAX_OVERLAY_BYTES:
        raise MediaValidationError(f"Overlay image exceeds {MAX_OVERLAY_BYTES // (1024 * 1024)} MB")

    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MediaValidationError(f"Overlay data URL is not valid base64: {e}") from e

    output_path = context.temp_files.create_temp_path("overlay", "png")
    logger.info(f"Saving overlay from data URL: {output_path} ({len(data)} bytes)")
    try:
        await asyncio.to_thread(output_path.write_bytes, data)
    except OSError:
        context.temp_files.release(output_path)
        raise

    return output_path
