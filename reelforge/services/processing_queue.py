"""
Processing Queue
Runs a batch of render jobs under bounded concurrency.

Jobs are admitted in submission order, at most `max_concurrent` at a time.
Each admitted job goes through the generic retry wrapper around
RenderTaskExecutor.render(). Progress, per-file status and engine log lines
are reported to a caller-supplied event sink; a QueueCompleteEvent is always
the last event of a run.

Cancellation is cooperative: once the cancel signal is set no further job is
started, but jobs already rendering run to completion.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Union

from pydantic import ValidationError

from reelforge import settings
from reelforge.core.error_handler import RetryConfig, retry_async
from reelforge.media.exceptions import BatchPayloadError, MediaValidationError
from reelforge.media.render_executor import RenderTaskExecutor
from reelforge.models import (
    EventSink,
    FileStatus,
    FileStatusEvent,
    JobProgressEvent,
    JobStatus,
    LogEvent,
    LogLevel,
    ProcessingStartPayload,
    ProcessingTask,
    QueueCompleteEvent,
    RenderJob,
)

logger = logging.getLogger(__name__)

_TERMINAL = (JobStatus.DONE, JobStatus.ERROR, JobStatus.SKIPPED)


class CancelSignal(Protocol):
    def is_set(self) -> bool: ...


@dataclass
class FileProgress:
    """Aggregate state of all jobs rendered from one source file"""
    filename: str
    job_count: int = 0
    started: int = 0
    done: int = 0
    errored: int = 0
    skipped: int = 0

    @property
    def settled(self) -> int:
        return self.done + self.errored + self.skipped

    @property
    def status(self) -> FileStatus:
        if self.errored:
            return FileStatus.ERROR
        if self.settled == self.job_count and self.done:
            return FileStatus.DONE
        if self.started:
            return FileStatus.PROCESSING
        return FileStatus.IDLE


@dataclass
class QueueState:
    """
    Counters and statuses of one queue run.

    Only mutated from the event loop thread, with no await between reading
    and writing a value.
    """
    total: int
    completed: int = 0
    job_status: Dict[int, JobStatus] = field(default_factory=dict)
    files: Dict[str, FileProgress] = field(default_factory=dict)

    @classmethod
    def for_jobs(cls, jobs: Sequence[RenderJob]) -> "QueueState":
        state = cls(total=len(jobs))
        for index, job in enumerate(jobs):
            state.job_status[index] = JobStatus.QUEUED
            progress = state.files.setdefault(job.file_key, FileProgress(filename=job.identity().filename))
            progress.job_count += 1
        return state

    def mark(self, index: int, job: RenderJob, status: JobStatus) -> Optional[FileStatus]:
        """
        Record a job status change.

        Returns:
            The file's new aggregate status if it changed, else None
        """
        progress = self.files[job.file_key]
        before = progress.status

        self.job_status[index] = status
        if status is JobStatus.STARTED:
            progress.started += 1
        elif status is JobStatus.DONE:
            progress.done += 1
        elif status is JobStatus.ERROR:
            progress.errored += 1
        elif status is JobStatus.SKIPPED:
            progress.skipped += 1

        if status in (JobStatus.DONE, JobStatus.ERROR):
            self.completed += 1

        after = progress.status
        return after if after is not before else None

    def count(self, status: JobStatus) -> int:
        return sum(1 for s in self.job_status.values() if s is status)


@dataclass(frozen=True)
class QueueSummary:
    total: int
    completed: int
    succeeded: int
    failed: int
    skipped: int
    cancelled: bool
    file_status: Dict[str, FileStatus] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.failed == 0 and not self.cancelled


TaskInput = Union[ProcessingTask, Mapping[str, Any]]


class ProcessingQueue:
    """Bounded-concurrency batch runner"""

    def __init__(
        self,
        executor: RenderTaskExecutor,
        max_concurrent: Optional[int] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.executor = executor
        self.max_concurrent = max(1, max_concurrent or settings.get_max_concurrent())
        self.retry_config = retry_config or RetryConfig.from_settings()

    async def run_payload(
        self,
        payload: Union[ProcessingStartPayload, Mapping[str, Any]],
        sink: EventSink,
        cancel_signal: Optional[CancelSignal] = None,
    ) -> QueueSummary:
        """Run a full submission payload ({output_dir, tasks})."""
        payload = self.validate_payload(payload)
        return await self._run_jobs(payload.jobs(), sink, cancel_signal)

    async def run(
        self,
        tasks: Sequence[TaskInput],
        output_dir: str,
        sink: EventSink,
        cancel_signal: Optional[CancelSignal] = None,
    ) -> QueueSummary:
        """
        Validate a batch and render all of its jobs.

        Args:
            tasks: ProcessingTask models or their wire dictionaries
            output_dir: Directory receiving every output
            sink: Callable receiving every event of the run
            cancel_signal: Object with is_set(), e.g. threading.Event

        Returns:
            QueueSummary of the run

        Raises:
            BatchPayloadError: If the batch is malformed (before any job starts)
        """
        payload = self.validate_payload({"output_dir": output_dir, "tasks": list(tasks)})
        return await self._run_jobs(payload.jobs(), sink, cancel_signal)

    @staticmethod
    def validate_payload(payload: Union[ProcessingStartPayload, Mapping[str, Any]]) -> ProcessingStartPayload:
        if isinstance(payload, ProcessingStartPayload):
            return payload
        try:
            return ProcessingStartPayload.model_validate(payload)
        except ValidationError as e:
            logger.error(f"Rejected batch payload: {e.error_count()} validation errors")
            raise BatchPayloadError(f"Invalid batch payload: {e}", errors=e.errors()) from e

    async def _run_jobs(
        self,
        jobs: List[RenderJob],
        sink: EventSink,
        cancel_signal: Optional[CancelSignal],
    ) -> QueueSummary:
        state = QueueState.for_jobs(jobs)
        semaphore = asyncio.Semaphore(self.max_concurrent)
        logger.info(f"🚀 Processing {state.total} jobs (max concurrent: {self.max_concurrent})")

        async def run_one(index: int, job: RenderJob) -> None:
            async with semaphore:
                await self._run_job(index, job, state, sink, cancel_signal)

        try:
            await asyncio.gather(*(run_one(index, job) for index, job in enumerate(jobs)))
        finally:
            cancelled = _is_cancelled(cancel_signal)
            sink(QueueCompleteEvent(completed=state.completed, total=state.total, cancelled=cancelled))
            logger.info(f"Queue finished: {state.completed}/{state.total} completed"
                        f"{' (cancelled)' if cancelled else ''}")

        return QueueSummary(
            total=state.total,
            completed=state.completed,
            succeeded=state.count(JobStatus.DONE),
            failed=state.count(JobStatus.ERROR),
            skipped=state.count(JobStatus.SKIPPED),
            cancelled=cancelled,
            file_status={key: progress.status for key, progress in state.files.items()},
        )

    async def _run_job(
        self,
        index: int,
        job: RenderJob,
        state: QueueState,
        sink: EventSink,
        cancel_signal: Optional[CancelSignal],
    ) -> None:
        identity = job.identity()

        if _is_cancelled(cancel_signal):
            logger.debug(f"Skipping {identity.filename} ({identity.strategy_id}): queue cancelled")
            self._transition(index, job, state, JobStatus.SKIPPED, sink)
            return

        self._transition(index, job, state, JobStatus.STARTED, sink)

        def on_retry(attempt: int, error: Exception, delay: float) -> None:
            sink(LogEvent(LogLevel.INFO, f"Attempt {attempt} failed, retrying in {delay:.1f}s: {error}", identity))

        try:
            output_path = await retry_async(
                lambda: self.executor.render(job, sink),
                self.retry_config,
                on_retry=on_retry,
            )
        except Exception as e:
            reason = e.message if isinstance(e, MediaValidationError) else str(e)
            logger.error(f"❌ Job failed: {identity.filename} ({identity.strategy_id}): {e}")
            sink(LogEvent(LogLevel.INFO, f"Render failed: {reason}", identity))
            self._transition(index, job, state, JobStatus.ERROR, sink, error=reason)
            return

        logger.info(f"✅ Job done: {output_path}")
        self._transition(index, job, state, JobStatus.DONE, sink)

    @staticmethod
    def _transition(
        index: int,
        job: RenderJob,
        state: QueueState,
        status: JobStatus,
        sink: EventSink,
        error: Optional[str] = None,
    ) -> None:
        file_status = state.mark(index, job, status)
        if status is not JobStatus.SKIPPED:
            sink(JobProgressEvent(
                identity=job.identity(),
                status=status,
                completed=state.completed,
                total=state.total,
                error=error,
            ))
        if file_status is not None:
            sink(FileStatusEvent(file_key=job.file_key, filename=state.files[job.file_key].filename,
                                 status=file_status))


def _is_cancelled(cancel_signal: Optional[CancelSignal]) -> bool:
    return cancel_signal is not None and cancel_signal.is_set()
