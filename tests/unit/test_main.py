"""
Unit tests for the command line entry point
"""
import json

import pytest
from unittest.mock import patch

from reelforge.main import (
    EXIT_BAD_INPUT,
    EXIT_FAILED,
    ConsoleReporter,
    build_parser,
    load_batch_file,
    main,
)
from reelforge.media.exceptions import BatchPayloadError
from reelforge.models import JobIdentity, JobProgressEvent, JobStatus, LogEvent, LogLevel, QueueCompleteEvent


class TestParser:
    def test_process_arguments(self):
        args = build_parser().parse_args(["process", "batch.json", "--output-dir", "out", "--max-concurrent", "2"])
        assert args.command == "process"
        assert args.batch == "batch.json"
        assert args.max_concurrent == 2
        assert args.retries is None

    def test_render_arguments(self):
        args = build_parser().parse_args([
            "-v", "render", "in.mp4", "--strategy", "IG4", "--output-dir", "out",
            "--overlay", "o.png", "--overlay-start", "1.5",
        ])
        assert args.verbose
        assert args.strategy == "IG4"
        assert args.overlay_start == 1.5
        assert args.overlay_duration == 5.0

    def test_render_rejects_unknown_strategy(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["render", "in.mp4", "--strategy", "IG7", "--output-dir", "out"])


class TestBatchFile:
    def test_json(self, tmp_path):
        path = tmp_path / "batch.json"
        path.write_text(json.dumps({"outputDir": "/out", "tasks": [{"inputPath": "/a.mp4"}]}))
        assert load_batch_file(str(path))["outputDir"] == "/out"

    def test_yaml_list_of_tasks(self, tmp_path):
        path = tmp_path / "batch.yaml"
        path.write_text("- inputPath: /a.mp4\n  outputName: a\n  strategyId: IG1\n")
        assert load_batch_file(str(path)) == {
            "tasks": [{"inputPath": "/a.mp4", "outputName": "a", "strategyId": "IG1"}]
        }

    def test_scalar_is_rejected(self, tmp_path):
        path = tmp_path / "batch.json"
        path.write_text("42")
        with pytest.raises(BatchPayloadError):
            load_batch_file(str(path))


class TestMain:
    def test_invalid_batch_exit_code(self, tmp_path):
        path = tmp_path / "batch.json"
        path.write_text(json.dumps({"tasks": []}))

        with patch("reelforge.main.setup_logging"):
            assert main(["process", str(path), "--output-dir", str(tmp_path / "out")]) == EXIT_BAD_INPUT

    def test_missing_batch_file_exit_code(self, tmp_path):
        with patch("reelforge.main.setup_logging"):
            assert main(["process", str(tmp_path / "missing.json"), "--output-dir", "out"]) == EXIT_FAILED


class TestConsoleReporter:
    def test_prints_progress(self, capsys):
        identity = JobIdentity("f1", "a.mp4", "IG2")
        reporter = ConsoleReporter()

        reporter(JobProgressEvent(identity, JobStatus.DONE, 1, 4))
        reporter(LogEvent(LogLevel.STDERR, "frame=1", identity))
        reporter(LogEvent(LogLevel.INFO, "Render failed: boom", identity))
        reporter(QueueCompleteEvent(completed=1, total=4, cancelled=True))

        out = capsys.readouterr().out.splitlines()
        assert out == [
            "[1/4  25.0%] a.mp4 IG2: done",
            "  a.mp4 IG2: Render failed: boom",
            "Completed 1/4 (cancelled)",
        ]
