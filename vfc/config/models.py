import tempfile
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator


class MediaConfig(BaseModel):
    """External media toolchain executables."""
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"


class ExtractionConfig(BaseModel):
    frames_per_second: float = Field(default=1.0, gt=0)
    max_parallel_workers: int = Field(default=4, ge=1, le=64)
    max_concurrent_jobs: int = Field(default=2, ge=1)
    scratch_dir: str = Field(default_factory=tempfile.gettempdir)
    stale_scratch_age_s: float = Field(default=86400, ge=0)  # older vfc_* scratch dirs are swept
    raw_quality: int = Field(default=2, ge=1, le=31)  # ffmpeg -q:v for sampled jpegs


class ImageConfig(BaseModel):
    quality: int = Field(default=80, ge=0, le=100)
    thumbnail_width: int = Field(default=200, gt=0)
    thumbnail_height: int = Field(default=200, gt=0)
    thumbnail_quality: int = Field(default=75, ge=0, le=100)


class AccelerationConfig(BaseModel):
    enabled: bool = True
    intel_enabled: bool = True
    nvidia_enabled: bool = True
    amd_enabled: bool = True
    pool_size: int = Field(default=4, ge=1)
    drain_timeout_s: float = Field(default=5.0, ge=0.0)


class StorageConfig(BaseModel):
    base_path: str = "storage"
    max_video_size_bytes: int = Field(default=2 * 1024 * 1024 * 1024, gt=0)
    extensions: List[str] = Field(default_factory=lambda: [".mp4", ".avi", ".mov", ".mkv"])

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        return [(ext if ext.startswith(".") else f".{ext}").lower() for ext in v]


class AppConfig(BaseModel):
    media: MediaConfig = Field(default_factory=MediaConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    image: ImageConfig = Field(default_factory=ImageConfig)
    acceleration: AccelerationConfig = Field(default_factory=AccelerationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    log_path: Optional[str] = None
    debug: bool = False
