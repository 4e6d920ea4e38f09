import logging
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from vfc.domain.errors import BlobStoreError


class BlobStore(ABC):
    """Byte-addressable file storage keyed by path strings."""

    @abstractmethod
    def create_job_directory(self, job_id: int) -> str: ...

    @abstractmethod
    def store_video(self, job_id: int, source: Path, filename: str) -> str: ...

    @abstractmethod
    def store_frame(self, job_id: int, frame_number: int, data: bytes, extension: str) -> str: ...

    @abstractmethod
    def store_thumbnail(self, job_id: int, frame_number: int, data: bytes) -> str: ...

    @abstractmethod
    def load(self, path: str) -> bytes: ...

    @abstractmethod
    def delete(self, path: str) -> None: ...

    @abstractmethod
    def delete_job_directory(self, job_id: int) -> None: ...


class LocalBlobStore(BlobStore):
    """Filesystem layout: <base>/albums/<id>/{video,frames/original,frames/thumbnails,metadata}."""

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)
        self.logger = logging.getLogger(__name__)

    def _job_dir(self, job_id: int) -> Path:
        return self.base_path / "albums" / str(job_id)

    def next_job_id(self) -> int:
        """First album id not yet used under base_path."""
        albums = self.base_path / "albums"
        if not albums.is_dir():
            return 1
        used = [int(p.name) for p in albums.iterdir() if p.is_dir() and p.name.isdigit()]
        return max(used, default=0) + 1

    def create_job_directory(self, job_id: int) -> str:
        job_dir = self._job_dir(job_id)
        if job_dir.exists():
            raise BlobStoreError(f"Album directory for job {job_id} already exists: {job_dir}")
        try:
            job_dir.mkdir(parents=True)
            for sub in ("video", "frames/original", "frames/thumbnails", "metadata"):
                (job_dir / sub).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BlobStoreError(f"Cannot create directory layout for job {job_id}: {e}") from e
        return str(job_dir)

    def _write(self, target: Path, data: bytes) -> str:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise BlobStoreError(f"Cannot write {target}: {e}") from e
        return str(target)

    def store_video(self, job_id: int, source: Path, filename: str) -> str:
        target = self._job_dir(job_id) / "video" / Path(filename).name
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
        except OSError as e:
            raise BlobStoreError(f"Cannot store video {source}: {e}") from e
        self.logger.info(f"Stored video for job {job_id}: {target}")
        return str(target)

    def store_frame(self, job_id: int, frame_number: int, data: bytes, extension: str) -> str:
        filename = f"frame_{frame_number:06d}.{extension.lstrip('.')}"
        return self._write(self._job_dir(job_id) / "frames" / "original" / filename, data)

    def store_thumbnail(self, job_id: int, frame_number: int, data: bytes) -> str:
        filename = f"frame_{frame_number:06d}_thumb.jpg"
        return self._write(self._job_dir(job_id) / "frames" / "thumbnails" / filename, data)

    def load(self, path: str) -> bytes:
        try:
            return Path(path).read_bytes()
        except OSError as e:
            raise BlobStoreError(f"Cannot read {path}: {e}") from e

    def delete(self, path: str) -> None:
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            raise BlobStoreError(f"Cannot delete {path}: {e}") from e

    def delete_job_directory(self, job_id: int) -> None:
        job_dir = self._job_dir(job_id)
        if job_dir.exists():
            shutil.rmtree(job_dir, ignore_errors=False)
            self.logger.info(f"Deleted storage for job {job_id}")
