"""Domain events for the frame extraction pipeline.

Events flow through the EventBus so the orchestrator stays unaware of who
renders progress (CLI progress bar, logs, tests).

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from pydantic import BaseModel
from .models import Frame


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class JobEvent(Event):
    """Base class for events related to a specific job."""

    job_id: int


class JobStarted(JobEvent):
    """Emitted after the job entered PROCESSING and its progress entry exists."""

    expected_frames: int = 0


class JobProgressUpdated(JobEvent):
    """Emitted after every finished frame task."""

    progress: float
    processed: int
    expected: int


class FrameProcessed(JobEvent):
    frame: Frame


class FrameDropped(JobEvent):
    """A single frame was skipped because its post-processing raised."""

    path: Path
    reason: str


class JobCompleted(JobEvent):
    frame_count: int


class JobCancelled(JobEvent):
    """Run ended after a cancellation request withheld some frames."""

    frame_count: int
    skipped: int


class JobFailed(JobEvent):
    error_message: str
