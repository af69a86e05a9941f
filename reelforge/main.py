"""
Reelforge - command line entry point
Batch-render source clips through the strategy presets with ffmpeg
"""
import argparse
import asyncio
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from reelforge import __version__
from reelforge.context import RenderContext
from reelforge.core.error_handler import RetryConfig
from reelforge.media.exceptions import BatchPayloadError, MediaValidationError
from reelforge.media.render_executor import RenderTaskExecutor
from reelforge.models import (
    FileStatusEvent,
    JobProgressEvent,
    LogEvent,
    LogLevel,
    QueueCompleteEvent,
    QueueEvent,
    RenderJob,
    Strategy,
)
from reelforge.services.processing_queue import ProcessingQueue

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BAD_INPUT = 2
EXIT_CANCELLED = 130


def setup_logging(verbose: bool = False, log_file: Optional[str] = None):
    """Setup structured logging configuration"""
    log_level = logging.DEBUG if verbose else logging.INFO

    detailed_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)-20s | %(funcName)-15s:%(lineno)-4d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    simple_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(message)s',
        datefmt='%H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(simple_formatter)
    handlers: List[logging.Handler] = [console_handler]

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(detailed_formatter)
        handlers.append(file_handler)

    logging.basicConfig(
        level=logging.DEBUG if log_file else log_level,
        handlers=handlers,
        force=True
    )
    logging.getLogger('ffmpeg').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)


class ConsoleReporter:
    """Event sink printing queue progress to stdout"""

    def __init__(self, show_engine_output: bool = False):
        self.show_engine_output = show_engine_output

    def __call__(self, event: QueueEvent) -> None:
        if isinstance(event, JobProgressEvent):
            ident = event.identity
            line = (f"[{event.completed}/{event.total} {event.percent:5.1f}%] "
                    f"{ident.filename} {ident.strategy_id}: {event.status.value}")
            if event.error:
                line += f" ({event.error})"
            print(line, flush=True)
        elif isinstance(event, FileStatusEvent):
            print(f"  {event.filename}: {event.status.value}", flush=True)
        elif isinstance(event, QueueCompleteEvent):
            suffix = " (cancelled)" if event.cancelled else ""
            print(f"Completed {event.completed}/{event.total}{suffix}", flush=True)
        elif isinstance(event, LogEvent):
            if event.level is LogLevel.INFO:
                print(f"  {event.identity.filename} {event.identity.strategy_id}: {event.line}", flush=True)
            elif self.show_engine_output:
                print(f"    {event.line}", flush=True)


def load_batch_file(path: str) -> Dict[str, Any]:
    """Load a batch payload from a JSON or YAML file."""
    batch_path = Path(path)
    with open(batch_path, 'r', encoding='utf-8') as f:
        if batch_path.suffix.lower() in ('.yaml', '.yml'):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)

    if isinstance(data, list):
        data = {"tasks": data}
    if not isinstance(data, dict):
        raise BatchPayloadError(f"Batch file must contain an object or a list of tasks: {path}")
    return data


def install_cancel_handler(cancel_event: threading.Event):
    """Make Ctrl+C stop admitting new jobs instead of killing running renders."""
    def handler(signum, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        logger.warning("Cancellation requested: finishing running jobs (press Ctrl+C again to abort)")
        cancel_event.set()

    return signal.signal(signal.SIGINT, handler)


async def run_process(args: argparse.Namespace, context: RenderContext) -> int:
    payload = load_batch_file(args.batch)
    if args.output_dir:
        payload.pop("outputDir", None)
        payload["output_dir"] = args.output_dir

    retry_config = RetryConfig.from_settings()
    if args.retries is not None:
        retry_config = RetryConfig(max_attempts=args.retries, base_delay=retry_config.base_delay)

    queue = ProcessingQueue(
        RenderTaskExecutor(context),
        max_concurrent=args.max_concurrent,
        retry_config=retry_config,
    )

    cancel_event = threading.Event()
    previous_handler = install_cancel_handler(cancel_event)
    try:
        summary = await queue.run_payload(payload, ConsoleReporter(args.verbose), cancel_event)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if summary.cancelled:
        return EXIT_CANCELLED
    return EXIT_OK if summary.failed == 0 else EXIT_FAILED


async def run_render(args: argparse.Namespace, context: RenderContext) -> int:
    job_data: Dict[str, Any] = {
        "source_path": args.input,
        "output_dir": args.output_dir,
        "output_name": args.name or f"{Path(args.input).stem}_{args.strategy}",
        "strategy_id": args.strategy,
    }
    if args.overlay:
        job_data["overlay"] = {
            "path": args.overlay,
            "start": args.overlay_start,
            "duration": args.overlay_duration,
        }
    job = RenderJob.model_validate(job_data)

    ok = await RenderTaskExecutor(context).execute(job, ConsoleReporter(args.verbose))
    return EXIT_OK if ok else EXIT_FAILED


async def run_encoders(args: argparse.Namespace, context: RenderContext) -> int:
    encoders = await context.encoders.available_encoders()
    profile = await context.encoders.pick_encoder_profile()
    print(f"Platform: {context.encoders.platform}")
    print(f"Selected encoder: {profile.video_codec} ({profile.video_bitrate}, {profile.pixel_format})")
    h264 = sorted(name for name in encoders if '264' in name)
    print(f"H.264 encoders available: {', '.join(h264) if h264 else 'none detected'}")
    return EXIT_OK


COMMANDS = {
    "process": run_process,
    "render": run_render,
    "encoders": run_encoders,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="reelforge", description="Reelforge batch video renderer")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging and engine output")
    parser.add_argument("--log-file", help="Also write detailed logs to this file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    process = subparsers.add_parser("process", help="Render a batch payload (JSON or YAML)")
    process.add_argument("batch", help="Batch file with output_dir and tasks")
    process.add_argument("--output-dir", help="Output directory (overrides the batch file)")
    process.add_argument("--max-concurrent", type=int, help="Maximum parallel renders (default: from config)")
    process.add_argument("--retries", type=int, help="Attempts per job (default: from config)")

    render = subparsers.add_parser("render", help="Render one clip with one strategy")
    render.add_argument("input", help="Source video")
    render.add_argument("--strategy", required=True, choices=[s.value for s in Strategy],
                        help="Strategy id")
    render.add_argument("--output-dir", required=True, help="Output directory")
    render.add_argument("--name", help="Output name (default: <input>_<strategy>.mp4)")
    render.add_argument("--overlay", help="PNG overlay image")
    render.add_argument("--overlay-start", type=float, default=0.0, help="Overlay start in seconds (default: 0)")
    render.add_argument("--overlay-duration", type=float, default=5.0,
                        help="Overlay duration in seconds (default: 5)")

    subparsers.add_parser("encoders", help="Show the encoder selected for this host")
    return parser


async def _run(args: argparse.Namespace) -> int:
    context = RenderContext.from_settings()
    try:
        return await COMMANDS[args.command](args, context)
    finally:
        context.close()


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    try:
        return asyncio.run(_run(args))
    except (BatchPayloadError, MediaValidationError) as e:
        logger.error(f"Invalid input: {e}")
        return EXIT_BAD_INPUT
    except (OSError, ValueError) as e:
        logger.error(f"Execution failed: {e}")
        return EXIT_FAILED
    except KeyboardInterrupt:
        logger.warning("Aborted")
        return EXIT_CANCELLED


if __name__ == "__main__":
    sys.exit(main())
