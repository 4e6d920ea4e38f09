"""Per-frame post-processing: encode, thumbnail, measure, score.

Each raw sampled frame takes exactly one encode path:

1. accelerated dispatcher encode (which itself falls back to CPU),
2. direct CPU conversion through the media tool,
3. the raw sampled JPEG stored unmodified.

Paths 2 and 3 only run when no accelerated backend is active. Every path
stores some file, so an encode problem never drops a frame by itself.
"""

import logging
import re
from decimal import Decimal
from pathlib import Path
from typing import Optional, Tuple
from PIL import Image
from vfc.config.models import AppConfig
from vfc.domain.errors import BlobStoreError
from vfc.domain.models import Backend, FormatTag, Frame, Job, to_fixed
from vfc.infrastructure.backends import BackendDispatcher
from vfc.infrastructure.media_tool import MediaToolAdapter, parse_frame_number
from vfc.infrastructure.storage import BlobStore

REFERENCE_PIXELS = 1920 * 1080
UNSAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9_-]")


def quality_score(width: int, height: int) -> float:
    """Resolution relative to 1080p, capped at 1.0.

    Placeholder heuristic; only used to rank frames by quality.
    """
    if width <= 0 or height <= 0:
        return 0.0
    return min(1.0, (width * height) / REFERENCE_PIXELS)


def format_timestamp(seconds: float) -> str:
    total = int(seconds)
    return f"{total // 3600:02d}_{(total % 3600) // 60:02d}_{total % 60:02d}"


def frame_filename(job: Job, timestamp: Decimal, frame_number: int, extension: str) -> str:
    base = UNSAFE_NAME_RE.sub("_", job.name) if job.name else f"album_{job.id}"
    return f"{base}_{format_timestamp(float(timestamp))}_frame_{frame_number:06d}.{extension}"


def read_dimensions(image_path: Path) -> Tuple[int, int]:
    with Image.open(image_path) as img:
        return img.size


class FrameProcessor:
    def __init__(
        self,
        config: AppConfig,
        media_tool: MediaToolAdapter,
        dispatcher: BackendDispatcher,
        blob_store: BlobStore,
    ):
        self.config = config
        self.media_tool = media_tool
        self.dispatcher = dispatcher
        self.blob_store = blob_store
        self.logger = logging.getLogger(__name__)

    def process(self, job: Job, raw_path: Path) -> Frame:
        """Builds the frame record for one sampled image. Raises on any failure."""
        frame_number = parse_frame_number(raw_path.name)
        timestamp = to_fixed(frame_number / self.config.extraction.frames_per_second)

        stored_path, size_bytes, tag = self._encode(job, raw_path, frame_number)
        thumbnail_path = self._thumbnail(job, raw_path, frame_number)
        width, height = read_dimensions(raw_path)

        extension = "jpg" if tag == FormatTag.RAW else "avif"
        return Frame(
            job_id=job.id,
            filename=frame_filename(job, timestamp, frame_number, extension),
            file_path=stored_path,
            timestamp=timestamp,
            frame_number=frame_number,
            width=width,
            height=height,
            file_size=size_bytes,
            format=tag,
            quality_score=quality_score(width, height),
            thumbnail_path=thumbnail_path,
        )

    def _encode(self, job: Job, raw_path: Path, frame_number: int) -> Tuple[str, int, FormatTag]:
        quality = self.config.image.quality

        if self.dispatcher.is_accelerated():
            encoded = self.dispatcher.encode(
                raw_path, f"{raw_path.stem}.avif", quality, job.id, frame_number
            )
            tag = FormatTag.CPU if encoded.backend == Backend.CPU else FormatTag.ACCELERATED
            return encoded.stored_path, encoded.size_bytes, tag

        converted = raw_path.with_name(f"{raw_path.stem}.avif")
        try:
            if self.media_tool.convert_frame(raw_path, converted, quality) and converted.exists():
                data = converted.read_bytes()
                stored = self.blob_store.store_frame(job.id, frame_number, data, "avif")
                return stored, len(data), FormatTag.CPU
        finally:
            converted.unlink(missing_ok=True)

        self.logger.info(f"RAW_FALLBACK: {raw_path.name} stored unmodified")
        data = raw_path.read_bytes()
        stored = self.blob_store.store_frame(job.id, frame_number, data, "jpg")
        return stored, len(data), FormatTag.RAW

    def _thumbnail(self, job: Job, raw_path: Path, frame_number: int) -> Optional[str]:
        image = self.config.image
        thumb = raw_path.with_name(f"{raw_path.stem}_thumb.jpg")
        try:
            generated = self.media_tool.generate_thumbnail(
                raw_path, thumb, image.thumbnail_width, image.thumbnail_height, image.thumbnail_quality
            )
            if not generated or not thumb.exists():
                return None
            return self.blob_store.store_thumbnail(job.id, frame_number, thumb.read_bytes())
        except (OSError, BlobStoreError) as e:
            self.logger.warning(f"THUMBNAIL_STORE_FAIL: frame {frame_number}: {e}")
            return None
        finally:
            thumb.unlink(missing_ok=True)
