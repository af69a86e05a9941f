"""
Unit tests for RenderTaskExecutor

The engine runner and the source probe are injected, so no ffmpeg process is
started.
"""
from typing import List, Optional

import pytest
from unittest.mock import AsyncMock

from reelforge.context import RenderContext
from reelforge.media.encoders import NVENC_ENCODER, EncoderProfile, EncoderSelector
from reelforge.media.exceptions import (
    EngineEncoderError,
    EngineFatalError,
    EngineFilterError,
    MediaValidationError,
)
from reelforge.media.ffmpeg_utils import MediaInfo
from reelforge.media.render_executor import (
    RenderTaskExecutor,
    build_overlay_graph,
    overlay_input_duration,
)
from reelforge.models import LogEvent, LogLevel, OverlaySpec, RenderJob
from reelforge.security import PathValidator
from reelforge.utils.temp_file_manager import TempFileRegistry


class FakeEngine:
    """Records every invocation and raises the queued errors in order"""

    def __init__(self, errors: Optional[List[Exception]] = None, stderr_lines: Optional[List[str]] = None):
        self.errors = list(errors or [])
        self.stderr_lines = stderr_lines or []
        self.calls: List[List[str]] = []

    async def __call__(self, args, on_stderr=None, on_progress=None, ffmpeg_binary=None):
        self.calls.append(list(args))
        for line in self.stderr_lines:
            on_stderr(line)
            if line.startswith("time="):
                on_progress(line)
        if self.errors:
            raise self.errors.pop(0)


def make_context(tmp_path, platform="linux", encoders=None):
    selector = EncoderSelector(
        EncoderProfile(video_codec="libx264"),
        platform=platform,
        lister=AsyncMock(return_value=set(encoders or ())),
    )
    return RenderContext(
        encoders=selector,
        temp_files=TempFileRegistry(base_dir=tmp_path),
        path_validator=PathValidator(),
        ffmpeg_binary="ffmpeg",
        ffprobe_binary="ffprobe",
    )


def make_job(tmp_path, strategy="IG3", **kwargs):
    data = {
        "source_path": str(tmp_path / "in.mp4"),
        "output_dir": str(tmp_path / "out"),
        "output_name": "clip.mov",
        "strategy_id": strategy,
        "file_id": "file-1",
    }
    data.update(kwargs)
    return RenderJob.model_validate(data)


def info_lines(events):
    return [e.line for e in events if isinstance(e, LogEvent) and e.level is LogLevel.INFO]


class TestRenderCommand:
    @pytest.mark.asyncio
    async def test_success_builds_full_invocation(self, tmp_path):
        engine = FakeEngine()
        probe = AsyncMock(return_value=MediaInfo(has_audio=True, duration=10.0))
        executor = RenderTaskExecutor(make_context(tmp_path), engine=engine, probe=probe)

        output = await executor.render(make_job(tmp_path))

        assert output == tmp_path / "out" / "clip.mp4"
        assert (tmp_path / "out").is_dir()
        args = engine.calls[0]
        assert args[:4] == ["-hide_banner", "-y", "-i", str(tmp_path / "in.mp4")]
        vf = args[args.index("-vf") + 1]
        assert "fade=t=out:st=9.7:d=0.3" in vf
        assert args[args.index("-af") + 1].startswith("anequalizer=")
        assert args[args.index("-map_metadata") + 1] == "-1"
        assert args[args.index("-c:v") + 1] == "libx264"
        assert args[args.index("-b:v") + 1] == "12M"
        assert args[args.index("-movflags") + 1] == "+faststart"
        assert args[args.index("-pix_fmt") + 1] == "yuv420p"
        assert args[args.index("-c:a") + 1] == "aac"
        assert args[args.index("-b:a") + 1] == "256k"
        assert args[-1] == str(output)
        probe.assert_awaited_once_with(str(tmp_path / "in.mp4"), "ffprobe")

    @pytest.mark.asyncio
    async def test_silent_source_has_no_audio_options(self, tmp_path):
        engine = FakeEngine()
        executor = RenderTaskExecutor(make_context(tmp_path), engine=engine,
                                      probe=AsyncMock(return_value=MediaInfo(has_audio=False, duration=None)))

        await executor.render(make_job(tmp_path))

        args = engine.calls[0]
        assert "-af" not in args
        assert "-c:a" not in args
        assert "-an" in args
        assert "fade=t=out" not in args[args.index("-vf") + 1]

    @pytest.mark.asyncio
    async def test_output_name_is_sanitized(self, tmp_path):
        engine = FakeEngine()
        executor = RenderTaskExecutor(make_context(tmp_path), engine=engine,
                                      probe=AsyncMock(return_value=MediaInfo(False, None)))

        output = await executor.render(make_job(tmp_path, output_name="my clip?.webm.mp4"))

        assert output.name == "my_clip_.mp4"

    @pytest.mark.asyncio
    async def test_overlay_uses_filter_complex(self, tmp_path):
        engine = FakeEngine()
        executor = RenderTaskExecutor(make_context(tmp_path), engine=engine,
                                      probe=AsyncMock(return_value=MediaInfo(has_audio=True, duration=10.0)))
        overlay_path = str(tmp_path / "overlay.png")
        job = make_job(tmp_path, overlay={"path": overlay_path, "start": 1, "duration": 3})

        await executor.render(job)

        args = engine.calls[0]
        assert "-vf" not in args
        loop_index = args.index("-loop")
        assert args[loop_index:loop_index + 6] == ["-loop", "1", "-t", "3", "-i", overlay_path]
        graph = args[args.index("-filter_complex") + 1]
        assert graph.startswith("[0:v]unsharp=")
        assert "[v1][ov]overlay=0:0:enable='between(t,1,4)'[vout]" in graph
        map_values = [args[i + 1] for i, arg in enumerate(args) if arg == "-map"]
        assert map_values == ["[vout]", "0:a?"]


class TestOverlayGraph:
    def test_fades_use_absolute_times(self):
        overlay = OverlaySpec(path="/tmp/o.png", start=2, duration=3, fade_in_ms=500, fade_out_ms=1000)

        graph = build_overlay_graph("null", overlay)

        assert graph.split(";") == [
            "[0:v]null[v0]",
            "[1:v]format=rgba[ov0]",
            "[ov0][v0]scale2ref=w=iw:h=ih[ov1][v1]",
            "[ov1]setpts=PTS-STARTPTS+2/TB,fade=t=in:st=2:d=0.5:alpha=1,fade=t=out:st=5:d=1:alpha=1[ov]",
            "[v1][ov]overlay=0:0:enable='between(t,2,6)'[vout]",
        ]
        assert overlay_input_duration(overlay) == 4.0

    def test_no_fades(self):
        graph = build_overlay_graph("null", OverlaySpec(path="/tmp/o.png"))
        assert "fade=" not in graph
        assert "between(t,0,5)" in graph


class TestFallback:
    @pytest.mark.asyncio
    async def test_audio_filter_failure_retries_once_without_audio_filter(self, tmp_path):
        engine = FakeEngine(errors=[EngineFilterError("No such filter: 'anequalizer'", returncode=1)])
        executor = RenderTaskExecutor(make_context(tmp_path), engine=engine,
                                      probe=AsyncMock(return_value=MediaInfo(has_audio=True, duration=5.0)))
        events = []

        assert await executor.execute(make_job(tmp_path), events.append) is True

        assert len(engine.calls) == 2
        assert "-af" in engine.calls[0]
        assert "-af" not in engine.calls[1]
        assert "-c:a" in engine.calls[1]
        assert info_lines(events) == ["Audio filter failed, retrying without audio filters..."]

    @pytest.mark.asyncio
    async def test_filter_failure_without_audio_filter_is_raised(self, tmp_path):
        engine = FakeEngine(errors=[EngineFilterError("Error while filtering")])
        executor = RenderTaskExecutor(make_context(tmp_path), engine=engine,
                                      probe=AsyncMock(return_value=MediaInfo(has_audio=False, duration=5.0)))

        with pytest.raises(EngineFilterError):
            await executor.render(make_job(tmp_path))
        assert len(engine.calls) == 1

    @pytest.mark.asyncio
    async def test_hardware_encoder_failure_falls_back_to_libx264(self, tmp_path):
        context = make_context(tmp_path, platform="win32", encoders={NVENC_ENCODER})
        engine = FakeEngine(errors=[EngineEncoderError("No NVENC capable devices found")])
        executor = RenderTaskExecutor(context, engine=engine,
                                      probe=AsyncMock(return_value=MediaInfo(has_audio=True, duration=5.0)))
        events = []

        await executor.render(make_job(tmp_path), events.append)

        codecs = [call[call.index("-c:v") + 1] for call in engine.calls]
        assert codecs == [NVENC_ENCODER, "libx264"]
        assert info_lines(events) == [f"Encoder {NVENC_ENCODER} failed, retrying with libx264..."]

    @pytest.mark.asyncio
    async def test_software_encoder_failure_is_raised(self, tmp_path):
        engine = FakeEngine(errors=[EngineEncoderError("Unknown encoder 'libx264'")])
        executor = RenderTaskExecutor(make_context(tmp_path), engine=engine,
                                      probe=AsyncMock(return_value=MediaInfo(True, 5.0)))

        with pytest.raises(EngineEncoderError):
            await executor.render(make_job(tmp_path))
        assert len(engine.calls) == 1

    @pytest.mark.asyncio
    async def test_each_fallback_applies_at_most_once(self, tmp_path):
        context = make_context(tmp_path, platform="win32", encoders={NVENC_ENCODER})
        engine = FakeEngine(errors=[
            EngineEncoderError("No capable devices found"),
            EngineFilterError("No such filter: 'anequalizer'"),
            EngineFilterError("No such filter: 'anequalizer'"),
        ])
        executor = RenderTaskExecutor(context, engine=engine,
                                      probe=AsyncMock(return_value=MediaInfo(True, 5.0)))

        with pytest.raises(EngineFilterError):
            await executor.render(make_job(tmp_path))

        assert len(engine.calls) == 3
        assert engine.calls[2][engine.calls[2].index("-c:v") + 1] == "libx264"
        assert "-af" not in engine.calls[2]

    @pytest.mark.asyncio
    async def test_fatal_error_is_not_recovered(self, tmp_path):
        engine = FakeEngine(errors=[EngineFatalError("Invalid data found when processing input", returncode=1)])
        executor = RenderTaskExecutor(make_context(tmp_path), engine=engine,
                                      probe=AsyncMock(return_value=MediaInfo(True, 5.0)))
        events = []

        assert await executor.execute(make_job(tmp_path), events.append) is False

        assert len(engine.calls) == 1
        assert info_lines(events) == ["Render failed: Invalid data found when processing input (exit code 1)"]


class TestEventsAndValidation:
    @pytest.mark.asyncio
    async def test_stderr_and_progress_events_carry_identity(self, tmp_path):
        engine = FakeEngine(stderr_lines=["Input #0", "time=00:00:01.00"])
        executor = RenderTaskExecutor(make_context(tmp_path), engine=engine,
                                      probe=AsyncMock(return_value=MediaInfo(False, None)))
        events = []

        await executor.render(make_job(tmp_path, strategy="IG1", filename="in.mp4"), events.append)

        assert [(e.level, e.line) for e in events] == [
            (LogLevel.STDERR, "Input #0"),
            (LogLevel.STDERR, "time=00:00:01.00"),
            (LogLevel.PROGRESS, "time=00:00:01.00"),
        ]
        assert {e.identity.strategy_id for e in events} == {"IG1"}
        assert {e.identity.file_id for e in events} == {"file-1"}

    @pytest.mark.asyncio
    async def test_invalid_source_path_raises_validation_error(self, tmp_path):
        engine = FakeEngine()
        executor = RenderTaskExecutor(make_context(tmp_path), engine=engine, probe=AsyncMock())

        with pytest.raises(MediaValidationError) as exc_info:
            await executor.execute(make_job(tmp_path, source_path="../secret/in.mp4"))

        assert exc_info.value.message == "Path contains directory traversal (..)"
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_unsupported_source_extension_raises_validation_error(self, tmp_path):
        engine = FakeEngine()
        probe = AsyncMock()
        executor = RenderTaskExecutor(make_context(tmp_path), engine=engine, probe=probe)

        with pytest.raises(MediaValidationError) as exc_info:
            await executor.render(make_job(tmp_path, source_path=str(tmp_path / "notes.txt")))

        assert exc_info.value.message.startswith("Extension .txt is not allowed")
        probe.assert_not_awaited()
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_invalid_overlay_path_raises_validation_error(self, tmp_path):
        executor = RenderTaskExecutor(make_context(tmp_path), engine=FakeEngine(), probe=AsyncMock())
        job = make_job(tmp_path, overlay={"path": "a\0b.png"})

        with pytest.raises(MediaValidationError, match="null bytes"):
            await executor.render(job)
