"""
Data models for Reelforge render jobs, payloads and queue events.

Payload models are pydantic models so batches coming from the UI layer (or a
JSON/YAML file on the command line) are validated before any job starts. They
accept both snake_case names and the camelCase names of the UI wire format.
Events are plain dataclasses handed to a caller-supplied sink.
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field, model_validator


class Strategy(str, Enum):
    """The four fixed render strategies"""
    FOCUS = "IG1"
    MOTION = "IG2"
    PUNCH = "IG3"
    CINEMA = "IG4"

    @property
    def label(self) -> str:
        return STRATEGY_LABELS[self]


STRATEGY_LABELS: Dict[Strategy, str] = {
    Strategy.FOCUS: "Focus + Vignette",
    Strategy.MOTION: "Dynamic + Saturation",
    Strategy.PUNCH: "High Contrast",
    Strategy.CINEMA: "Cinema + Grain",
}


class ProfileSettings(BaseModel):
    """
    Bounded numeric knobs parameterizing a strategy's filter expressions.

    Each strategy reads only the fields it needs; fades are used by
    PUNCH and CINEMA.
    """
    # FOCUS
    focus_strength: float = Field(default=0.8, ge=0.0, le=1.0, alias="focusStrength")
    vignette_intensity: float = Field(default=1.0, ge=0.0, le=1.0, alias="vignetteIntensity")
    # MOTION
    motion_speed: float = Field(default=1.0, ge=0.1, le=3.0, alias="motionSpeed")
    saturation: float = Field(default=1.2, ge=0.1, le=3.0)
    # PUNCH
    contrast: float = Field(default=1.1, ge=0.1, le=3.0)
    sharpness: float = Field(default=0.5, ge=0.0, le=2.0)
    # CINEMA
    grain: float = Field(default=0.6, ge=0.0, le=1.0)
    rotation_angle: float = Field(
        default=0.3, ge=-2.0, le=2.0, alias="rotationAngle",
        description="Rotation in degrees"
    )
    # Fades (seconds)
    fade_in_duration: float = Field(default=0.3, ge=0.1, le=1.0, alias="fadeInDuration")
    fade_out_duration: float = Field(default=0.3, ge=0.1, le=1.0, alias="fadeOutDuration")

    model_config = {"populate_by_name": True, "frozen": True}


def default_profile(strategy: Union[Strategy, str]) -> ProfileSettings:
    """Default profile for a strategy. CINEMA uses longer fades."""
    if Strategy(strategy) is Strategy.CINEMA:
        return ProfileSettings(fade_in_duration=0.5, fade_out_duration=0.5)
    return ProfileSettings()


class OverlaySpec(BaseModel):
    """A still image composited onto the video for a bounded time window"""
    path: str = Field(min_length=1)
    start: float = Field(default=0.0, ge=0.0, description="Start time in seconds")
    duration: float = Field(default=5.0, ge=1.0, le=300.0, description="Visible time in seconds")
    fade_in_ms: float = Field(default=0.0, ge=0.0, le=5000.0)
    fade_out_ms: float = Field(default=0.0, ge=0.0, le=5000.0)

    model_config = {"frozen": True}

    @property
    def end(self) -> float:
        return self.start + self.duration


_FLAT_OVERLAY_FIELDS = (
    ("overlayPath", "path"),
    ("overlayStart", "start"),
    ("overlayDuration", "duration"),
    ("overlayFadeInDuration", "fade_in_ms"),
    ("overlayFadeOutDuration", "fade_out_ms"),
)


class ProcessingTask(BaseModel):
    """One (source file, strategy) unit of a submitted batch"""
    source_path: str = Field(min_length=1, alias="inputPath")
    output_name: str = Field(min_length=1, max_length=500, alias="outputName")
    strategy_id: Strategy = Field(alias="strategyId")
    overlay: Optional[OverlaySpec] = None
    profile: Optional[ProfileSettings] = Field(default=None, alias="profileSettings")
    file_id: Optional[str] = Field(default=None, alias="fileId")
    filename: Optional[str] = Field(default=None, max_length=500)

    model_config = {"populate_by_name": True, "frozen": True}

    @model_validator(mode="before")
    @classmethod
    def _collect_flat_overlay(cls, data: Any) -> Any:
        """Fold the UI's flat overlayPath/overlayStart/... fields into `overlay`."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        flat = {key: data.pop(wire_key) for wire_key, key in _FLAT_OVERLAY_FIELDS
                if data.get(wire_key) is not None}
        if data.get("overlay") is None and "path" in flat:
            data["overlay"] = flat
        return data

    def resolved_profile(self) -> ProfileSettings:
        return self.profile or default_profile(self.strategy_id)

    def identity(self) -> "JobIdentity":
        return JobIdentity(
            file_id=self.file_id or "",
            filename=self.filename or Path(self.source_path).name,
            strategy_id=self.strategy_id.value,
        )

    @property
    def file_key(self) -> str:
        """Key grouping all jobs rendered from the same source file"""
        return self.file_id or self.source_path

    def to_job(self, output_dir: Union[str, Path]) -> "RenderJob":
        return RenderJob(output_dir=str(output_dir), **self.model_dump())


class RenderJob(ProcessingTask):
    """A ProcessingTask bound to its output directory. Immutable."""
    output_dir: str = Field(min_length=1, alias="outputDir")


class ProcessingStartPayload(BaseModel):
    """Batch submission: tasks plus the directory all outputs go to"""
    output_dir: str = Field(min_length=1, alias="outputDir")
    tasks: List[ProcessingTask] = Field(min_length=1)

    model_config = {"populate_by_name": True}

    def jobs(self) -> List[RenderJob]:
        return [task.to_job(self.output_dir) for task in self.tasks]


# --------------------------- Events ---------------------------

@dataclass(frozen=True)
class JobIdentity:
    """Correlation fields carried by every event of a job"""
    file_id: str
    filename: str
    strategy_id: str


class LogLevel(str, Enum):
    STDERR = "stderr"
    INFO = "info"
    PROGRESS = "progress"


class JobStatus(str, Enum):
    QUEUED = "queued"
    STARTED = "started"
    DONE = "done"
    ERROR = "error"
    SKIPPED = "skipped"


class FileStatus(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class LogEvent:
    level: LogLevel
    line: str
    identity: JobIdentity
    ts: float = field(default_factory=time.time)


@dataclass(frozen=True)
class JobProgressEvent:
    identity: JobIdentity
    status: JobStatus
    completed: int
    total: int
    error: Optional[str] = None

    @property
    def percent(self) -> float:
        return (self.completed / self.total) * 100 if self.total > 0 else 0.0


@dataclass(frozen=True)
class FileStatusEvent:
    file_key: str
    filename: str
    status: FileStatus


@dataclass(frozen=True)
class QueueCompleteEvent:
    completed: int
    total: int
    cancelled: bool


QueueEvent = Union[LogEvent, JobProgressEvent, FileStatusEvent, QueueCompleteEvent]
EventSink = Callable[[QueueEvent], None]
