"""
Render task executor for Reelforge.

Renders one RenderJob: validates its paths, probes the source, builds the
ffmpeg invocation for the job's strategy (with the optional overlay), runs the
engine and recovers from the two failure classes that have a known fix:

- an audio filter the local ffmpeg cannot build: render again without audio
  filtering
- a hardware encoder that is missing or unusable: render again with libx264

Each fix is applied at most once per render, so a render spawns ffmpeg at
most three times. Anything else is raised to the caller; the processing
queue's retry wrapper decides whether to try the whole job again.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from reelforge.context import RenderContext
from reelforge.models import EventSink, JobIdentity, LogEvent, LogLevel, OverlaySpec, RenderJob
from reelforge.utils.filename_utils import normalize_output_name
from .encoders import EncoderProfile
from .exceptions import EngineEncoderError, EngineError, EngineFilterError, MediaValidationError
from .ffmpeg_utils import MediaInfo, probe_media, run_ffmpeg
from .filters import build_audio_filter, build_video_filter, fmt_number

logger = logging.getLogger(__name__)

EngineRunner = Callable[..., Awaitable[None]]
MediaProber = Callable[..., Awaitable[MediaInfo]]


@dataclass(frozen=True)
class RenderPlan:
    """Everything that stays fixed across the fallback attempts of one render"""
    source_path: str
    output_path: Path
    video_filter: str
    media: MediaInfo
    overlay: Optional[OverlaySpec] = None
    overlay_path: Optional[str] = None


def build_overlay_graph(video_filter: str, overlay: OverlaySpec) -> str:
    """
    Filter graph compositing a looped still image over the strategy output.

    The overlay stream is scaled to the video, shifted so its first frame
    lands at `overlay.start`, and optionally faded in and out on its alpha
    channel. A fade-out extends the visible window by its own length.
    """
    start = overlay.start
    end = overlay.end
    fade_in = overlay.fade_in_ms / 1000.0
    fade_out = overlay.fade_out_ms / 1000.0

    overlay_chain = [f"setpts=PTS-STARTPTS+{fmt_number(start)}/TB"]
    if fade_in > 0:
        overlay_chain.append(f"fade=t=in:st={fmt_number(start)}:d={fmt_number(fade_in)}:alpha=1")
    if fade_out > 0:
        overlay_chain.append(f"fade=t=out:st={fmt_number(end)}:d={fmt_number(fade_out)}:alpha=1")

    visible_until = end + fade_out
    return ";".join([
        f"[0:v]{video_filter}[v0]",
        "[1:v]format=rgba[ov0]",
        "[ov0][v0]scale2ref=w=iw:h=ih[ov1][v1]",
        f"[ov1]{','.join(overlay_chain)}[ov]",
        f"[v1][ov]overlay=0:0:enable='between(t,{fmt_number(start)},{fmt_number(visible_until)})'[vout]",
    ])


def overlay_input_duration(overlay: OverlaySpec) -> float:
    return overlay.duration + overlay.fade_out_ms / 1000.0


def build_render_command(plan: RenderPlan, profile: EncoderProfile, audio_filter: str = "") -> List[str]:
    """
    Build ffmpeg arguments (without the executable) for one attempt.

    Args:
        plan: Paths, probed media info and the strategy video filter
        profile: Encoder profile for this attempt
        audio_filter: Audio filter chain, empty to disable audio filtering
    """
    args = ["-hide_banner", "-y", "-i", plan.source_path]

    if plan.overlay and plan.overlay_path:
        args += [
            "-loop", "1",
            "-t", fmt_number(overlay_input_duration(plan.overlay)),
            "-i", plan.overlay_path,
            "-filter_complex", build_overlay_graph(plan.video_filter, plan.overlay),
        ]
    else:
        args += ["-vf", plan.video_filter]

    if plan.media.has_audio and audio_filter:
        args += ["-af", audio_filter]

    args += ["-map_metadata", "-1"]
    if plan.overlay and plan.overlay_path:
        args += ["-map", "[vout]"]
        if plan.media.has_audio:
            args += ["-map", "0:a?"]

    args += [
        "-c:v", profile.video_codec,
        "-b:v", profile.video_bitrate,
        "-movflags", profile.mov_flags,
        "-pix_fmt", profile.pixel_format,
    ]

    if plan.media.has_audio:
        args += ["-c:a", profile.audio_codec, "-b:a", profile.audio_bitrate]
    else:
        args += ["-an"]

    args.append(str(plan.output_path))
    return args


class RenderTaskExecutor:
    """Runs single render jobs against the ffmpeg engine"""

    def __init__(
        self,
        context: RenderContext,
        engine: Optional[EngineRunner] = None,
        probe: Optional[MediaProber] = None,
    ):
        """
        Args:
            context: Process-scoped render context (encoders, temp files, paths)
            engine: Coroutine running ffmpeg (default: run_ffmpeg)
            probe: Coroutine probing a source (default: probe_media)
        """
        self.context = context
        self.engine = engine or run_ffmpeg
        self.probe = probe or probe_media

    async def execute(self, job: RenderJob, sink: Optional[EventSink] = None) -> bool:
        """
        Render a job, reporting engine failures instead of raising them.

        Returns:
            True on success, False when the engine failed

        Raises:
            MediaValidationError: If the job's paths are invalid
        """
        try:
            await self.render(job, sink)
            return True
        except EngineError as e:
            logger.error(f"Render failed for {job.source_path} ({job.strategy_id.value}): {e}")
            _emit(sink, job.identity(), LogLevel.INFO, f"Render failed: {e}")
            return False

    async def render(self, job: RenderJob, sink: Optional[EventSink] = None) -> Path:
        """
        Render a job, raising on failure.

        Returns:
            Path of the written output file

        Raises:
            MediaValidationError: If the job's paths are invalid
            EngineError: If the engine failed and no fallback applied or the fallback failed
        """
        identity = job.identity()
        plan = await self.plan(job)

        logger.info(f"Rendering {job.strategy_id.value} ({job.strategy_id.label}): "
                    f"{plan.source_path} -> {plan.output_path}")

        profile = await self.context.encoders.pick_encoder_profile(job.strategy_id)
        audio_filter = build_audio_filter(job.strategy_id, job.resolved_profile()) if plan.media.has_audio else ""
        audio_disabled = False
        encoder_swapped = False

        while True:
            args = build_render_command(plan, profile, "" if audio_disabled else audio_filter)
            try:
                await self.engine(
                    args,
                    on_stderr=lambda line: _emit(sink, identity, LogLevel.STDERR, line),
                    on_progress=lambda marker: _emit(sink, identity, LogLevel.PROGRESS, marker),
                    ffmpeg_binary=self.context.ffmpeg_binary,
                )
            except EngineFilterError:
                if not audio_filter or audio_disabled:
                    raise
                audio_disabled = True
                logger.warning(f"Audio filter failed for {plan.source_path}, retrying without audio filters")
                _emit(sink, identity, LogLevel.INFO, "Audio filter failed, retrying without audio filters...")
                continue
            except EngineEncoderError:
                if encoder_swapped or profile.is_software:
                    raise
                encoder_swapped = True
                failed_codec = profile.video_codec
                profile = self.context.encoders.software_profile
                logger.warning(f"Encoder {failed_codec} failed, retrying with {profile.video_codec}")
                _emit(sink, identity, LogLevel.INFO,
                      f"Encoder {failed_codec} failed, retrying with {profile.video_codec}...")
                continue

            logger.info(f"Render completed successfully: {plan.output_path}")
            return plan.output_path

    async def plan(self, job: RenderJob) -> RenderPlan:
        """Validate the job's paths, probe the source and build its video filter."""
        validator = self.context.path_validator

        source = validator.validate_path(job.source_path)
        if not source.valid:
            logger.error(f"Invalid input path {job.source_path!r}: {source.error}")
            raise MediaValidationError(source.error, file_path=job.source_path)
        extension = validator.validate_extension(source.sanitized)
        if not extension.valid:
            logger.error(f"Unsupported input file {job.source_path!r}: {extension.error}")
            raise MediaValidationError(extension.error, file_path=job.source_path)

        output_dir = validator.validate_path(job.output_dir)
        if not output_dir.valid:
            logger.error(f"Invalid output directory {job.output_dir!r}: {output_dir.error}")
            raise MediaValidationError(output_dir.error, file_path=job.output_dir)

        overlay_path = None
        if job.overlay:
            overlay = validator.validate_path(job.overlay.path)
            if not overlay.valid:
                logger.error(f"Invalid overlay path {job.overlay.path!r}: {overlay.error}")
                raise MediaValidationError(overlay.error, file_path=job.overlay.path)
            overlay_path = overlay.sanitized

        try:
            Path(output_dir.sanitized).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise MediaValidationError(f"Cannot create output directory: {e}", file_path=job.output_dir) from e

        output_name = normalize_output_name(validator.sanitize_filename(job.output_name))
        media = await self.probe(source.sanitized, self.context.ffprobe_binary)
        logger.debug(f"Media info for {source.sanitized}: has_audio={media.has_audio}, duration={media.duration}")

        return RenderPlan(
            source_path=source.sanitized,
            output_path=Path(output_dir.sanitized) / output_name,
            video_filter=build_video_filter(job.strategy_id, media.duration, job.resolved_profile()),
            media=media,
            overlay=job.overlay,
            overlay_path=overlay_path,
        )


def _emit(sink: Optional[EventSink], identity: JobIdentity, level: LogLevel, line: str) -> None:
    if sink is not None:
        sink(LogEvent(level=level, line=line, identity=identity))
