from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field

THREE_PLACES = Decimal("0.001")


def to_fixed(value: float) -> Decimal:
    """Round seconds half-up to 3 decimals (fixed-point storage)."""
    return Decimal(str(value)).quantize(THREE_PLACES, rounding=ROUND_HALF_UP)


class JobStatus(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"  # cancellation truncated the run


# Retry is the only way back into PROCESSING
ALLOWED_TRANSITIONS = {
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED},
    JobStatus.FAILED: {JobStatus.PROCESSING},
    JobStatus.CANCELLED: {JobStatus.PROCESSING},
    JobStatus.COMPLETED: set(),
}


class FormatTag(str, Enum):
    ACCELERATED = "avif"
    CPU = "avif-cpu"
    RAW = "jpeg-raw"


class Backend(str, Enum):
    INTEL = "intel"
    NVIDIA = "nvidia"
    AMD = "amd"
    CPU = "cpu"


class VideoMetadata(BaseModel):
    duration: Optional[Decimal] = None
    frame_rate: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    codec: Optional[str] = None


class Job(BaseModel):
    id: Optional[int] = None
    name: str
    original_filename: str
    video_path: Optional[str] = None
    file_size: int = 0
    duration: Optional[Decimal] = None
    frame_rate: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    video_codec: Optional[str] = None
    status: JobStatus = JobStatus.PROCESSING
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def can_transition(self, new_status: JobStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS[self.status]

    def apply_metadata(self, metadata: VideoMetadata) -> None:
        self.duration = metadata.duration
        self.frame_rate = metadata.frame_rate
        self.width = metadata.width
        self.height = metadata.height
        self.video_codec = metadata.codec


class Frame(BaseModel):
    id: Optional[int] = None
    job_id: int
    filename: str
    file_path: str
    timestamp: Decimal
    frame_number: int = Field(ge=0)
    width: int
    height: int
    file_size: int
    format: FormatTag
    quality_score: float = Field(ge=0.0, le=1.0)
    favorite: bool = False
    thumbnail_path: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class CommandResult(BaseModel):
    exit_code: int
    stdout_lines: List[str] = Field(default_factory=list)
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class EncodedFrame(BaseModel):
    """Result of a dispatcher encode: where it landed and which routine made it."""
    stored_path: str
    backend: Backend
    size_bytes: int


class ProgressEntry(BaseModel):
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    cancelled: bool = False

