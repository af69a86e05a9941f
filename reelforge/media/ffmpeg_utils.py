"""
FFmpeg utilities for Reelforge

Goals
- Probe sources once per render for duration and audio presence, never failing a job on a bad probe
- List the encoders the local ffmpeg build can use
- Run ffmpeg as an asyncio subprocess, streaming stderr and progress to callbacks
- Turn ffmpeg's free-form failure output into typed errors the executor can recover from

This module centralizes FFmpeg-related process handling so the executor only
deals with argument lists and typed errors.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import re
import subprocess
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

import ffmpeg

from reelforge import settings
from .exceptions import EngineEncoderError, EngineError, EngineFatalError, EngineFilterError, ProbeError

logger = logging.getLogger(__name__)

StderrCallback = Callable[[str], None]
ProgressCallback = Callable[[str], None]

# Lines of stderr kept for error messages
STDERR_TAIL_LINES = 40

_PROGRESS_RE = re.compile(r"time=\s*(-?\d+:\d{2}:\d{2}(?:\.\d+)?)")
_LINE_SPLIT_RE = re.compile(r"[\r\n]+")

FILTER_FAILURE_MARKERS = (
    "No such filter",
    "Error while filtering",
    "matches no streams",
    "Error initializing filter",
    "Error reinitializing filters",
)

ENCODER_FAILURE_MARKERS = (
    "Unknown encoder",
    "Encoder not found",
    "Error while opening encoder",
    "No capable devices found",
    "No NVENC capable devices found",
    "Cannot load",
    "cannot create compression session",
)


# --------------------------- Data models ---------------------------

@dataclass(frozen=True)
class MediaInfo:
    has_audio: bool
    duration: Optional[float]


NO_MEDIA_INFO = MediaInfo(has_audio=False, duration=None)


# --------------------------- Probe helpers ---------------------------

def run_ffprobe(path: str, ffprobe_binary: Optional[str] = None, timeout: Optional[int] = None) -> Dict[str, Any]:
    """Run ffprobe and return the parsed JSON.

    ffprobe runs as a subprocess so the timeout is enforced; ffmpeg-python's
    probe is used as a fallback when that invocation fails.

    Args:
        path: Path to media file
        ffprobe_binary: ffprobe executable (default: configured binary)
        timeout: Timeout in seconds (default: configured value)

    Returns:
        Parsed ffprobe output with 'format' and 'streams'

    Raises:
        ProbeError: If ffprobe is missing, fails, times out or returns garbage
    """
    binary = ffprobe_binary or settings.get_ffprobe_binary()
    effective_timeout = timeout if timeout is not None else settings.get_ffprobe_timeout_seconds()
    cmd = [
        binary,
        "-v", "error",
        "-show_format",
        "-show_streams",
        "-of", "json",
        path,
    ]
    try:
        completed = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=True,
            timeout=effective_timeout
        )
        return json.loads(completed.stdout or "{}")
    except subprocess.TimeoutExpired as e:
        raise ProbeError(f"ffprobe timeout for {path} after {effective_timeout}s", file_path=path) from e
    except FileNotFoundError as e:
        raise ProbeError(f"ffprobe not found ({binary}). Please install ffmpeg.", file_path=path) from e
    except ValueError as e:
        # json decoding errors are ValueErrors
        raise ProbeError(f"Could not parse ffprobe output for {path}: {e}", file_path=path) from e
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        logger.warning(f"ffprobe failed for {path}: returncode={e.returncode}, stderr={stderr}")

    try:
        return ffmpeg.probe(path, cmd=binary)
    except ffmpeg.Error as e:
        stderr = e.stderr.decode('utf-8', errors='replace') if isinstance(e.stderr, bytes) else str(e.stderr or "")
        raise ProbeError(f"ffprobe failed for {path}: {stderr.strip() or e}", file_path=path) from e
    except (OSError, ValueError) as e:
        raise ProbeError(f"ffmpeg.probe fallback failed for {path}: {e}", file_path=path) from e


def get_streams(probe: Dict[str, Any], stream_type: str) -> List[Dict[str, Any]]:
    return [s for s in probe.get("streams", []) if s.get("codec_type") == stream_type]


def parse_media_info(probe: Dict[str, Any]) -> MediaInfo:
    duration: Optional[float] = None
    raw = probe.get("format", {}).get("duration")
    try:
        if raw is not None:
            duration = float(raw)
    except (TypeError, ValueError):
        duration = None
    if duration is not None and duration <= 0:
        duration = None
    return MediaInfo(has_audio=bool(get_streams(probe, "audio")), duration=duration)


async def probe_media(path: str, ffprobe_binary: Optional[str] = None) -> MediaInfo:
    """
    Probe a source for audio presence and duration.

    A failing probe is not an error for the caller: it degrades to
    "no audio, unknown duration".
    """
    try:
        probe = await asyncio.to_thread(run_ffprobe, path, ffprobe_binary)
    except ProbeError as e:
        logger.debug(f"Probe failed, using defaults for {path}: {e}")
        return NO_MEDIA_INFO
    return parse_media_info(probe)


# --------------------------- Encoder capability ---------------------------

def parse_encoder_list(output: str) -> Set[str]:
    """
    Parse `ffmpeg -encoders` output into encoder names.

    Lines after the "------" separator look like
    ' V....D libx264              libx264 H.264 / AVC ...'
    """
    names: Set[str] = set()
    in_table = False
    for line in output.splitlines():
        stripped = line.strip()
        if not in_table:
            if stripped.startswith("------"):
                in_table = True
            continue
        parts = stripped.split()
        if len(parts) >= 2 and len(parts[0]) == 6:
            names.add(parts[1])
    return names


async def list_encoders(ffmpeg_binary: Optional[str] = None) -> Set[str]:
    """
    Ask ffmpeg which encoders it can use.

    Raises:
        EngineFatalError: If ffmpeg is missing or exits with an error
    """
    cmd = [ffmpeg_binary or settings.get_ffmpeg_binary(), "-hide_banner", "-encoders"]
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
    except OSError as e:
        raise EngineFatalError(f"Cannot start {cmd[0]}: {e}") from e

    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        raise EngineFatalError(
            f"ffmpeg -encoders failed: {stderr.decode('utf-8', errors='replace').strip()}",
            returncode=process.returncode
        )
    return parse_encoder_list(stdout.decode('utf-8', errors='replace'))


# --------------------------- Engine invocation ---------------------------

def classify_engine_failure(message: str, returncode: Optional[int] = None) -> EngineError:
    """Map ffmpeg failure output to the matching EngineError subclass."""
    if any(marker in message for marker in ENCODER_FAILURE_MARKERS):
        return EngineEncoderError(message, returncode=returncode, stderr_tail=message)
    if any(marker in message for marker in FILTER_FAILURE_MARKERS):
        return EngineFilterError(message, returncode=returncode, stderr_tail=message)
    return EngineFatalError(message, returncode=returncode, stderr_tail=message)


def parse_progress(line: str) -> Optional[str]:
    """Return 'time=HH:MM:SS.xx' for ffmpeg progress lines, else None."""
    match = _PROGRESS_RE.search(line)
    if match:
        return f"time={match.group(1)}"
    return None


async def run_ffmpeg(
    args: List[str],
    on_stderr: Optional[StderrCallback] = None,
    on_progress: Optional[ProgressCallback] = None,
    ffmpeg_binary: Optional[str] = None,
) -> None:
    """
    Run ffmpeg with the given arguments until it exits.

    stderr is read incrementally and split on carriage returns as well as
    newlines, since ffmpeg rewrites its status line with '\\r'.

    Args:
        args: Arguments after the executable
        on_stderr: Called with every non-empty stderr line
        on_progress: Called with 'time=...' for progress lines
        ffmpeg_binary: ffmpeg executable (default: configured binary)

    Raises:
        EngineFilterError / EngineEncoderError / EngineFatalError on failure
    """
    cmd = [ffmpeg_binary or settings.get_ffmpeg_binary(), *args]
    logger.debug(f"FFmpeg command: {' '.join(cmd)}")

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE
        )
    except OSError as e:
        raise EngineFatalError(f"Cannot start {cmd[0]}: {e}") from e

    tail: deque = deque(maxlen=STDERR_TAIL_LINES)
    pending = ""
    try:
        while True:
            chunk = await process.stderr.read(4096)
            if not chunk:
                break
            pending += chunk.decode('utf-8', errors='replace')
            *lines, pending = _LINE_SPLIT_RE.split(pending)
            for line in lines:
                _emit_line(line, tail, on_stderr, on_progress)
        _emit_line(pending, tail, on_stderr, on_progress)

        returncode = await process.wait()
    except BaseException:
        # A failing callback or a cancelled task must not leave ffmpeg running
        if process.returncode is None:
            logger.warning(f"Killing ffmpeg process {process.pid}")
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
        raise

    if returncode != 0:
        message = "\n".join(tail) or f"ffmpeg exited with code {returncode}"
        raise classify_engine_failure(message, returncode=returncode)


def _emit_line(
    line: str,
    tail: deque,
    on_stderr: Optional[StderrCallback],
    on_progress: Optional[ProgressCallback],
) -> None:
    line = line.strip()
    if not line:
        return
    tail.append(line)
    logger.debug(f"ffmpeg: {line}")
    if on_stderr:
        on_stderr(line)
    progress = parse_progress(line)
    if progress and on_progress:
        on_progress(progress)
