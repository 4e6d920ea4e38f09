import itertools
import threading
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional, Sequence
from vfc.domain.errors import JobNotFoundError, RecordStoreError
from vfc.domain.models import Frame, Job, JobStatus


class RecordStore(ABC):
    """Job and frame records, addressed by numeric id."""

    @abstractmethod
    def create_job(self, job: Job) -> Job: ...

    @abstractmethod
    def update_job(self, job: Job) -> Job: ...

    @abstractmethod
    def find_job_by_id(self, job_id: int) -> Optional[Job]: ...

    @abstractmethod
    def delete_job(self, job_id: int) -> None: ...

    @abstractmethod
    def save_frames(self, frames: Sequence[Frame]) -> List[Frame]: ...

    @abstractmethod
    def find_frames_by_job(self, job_id: int) -> List[Frame]: ...

    @abstractmethod
    def count_frames_by_job(self, job_id: int) -> int: ...

    @abstractmethod
    def delete_frames_by_job(self, job_id: int) -> int: ...

    def get_job(self, job_id: int) -> Job:
        job = self.find_job_by_id(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job


class InMemoryRecordStore(RecordStore):
    """Thread-safe process-local store; records are copied in and out."""

    def __init__(self, start_id: int = 1):
        self._jobs: Dict[int, Job] = {}
        self._frames: Dict[int, Frame] = {}
        self._job_ids = itertools.count(start_id)
        self._frame_ids = itertools.count(1)
        self._lock = threading.Lock()

    def create_job(self, job: Job) -> Job:
        with self._lock:
            stored = job.model_copy(update={"id": next(self._job_ids)})
            self._jobs[stored.id] = stored
            return stored.model_copy()

    def update_job(self, job: Job) -> Job:
        with self._lock:
            if job.id not in self._jobs:
                raise JobNotFoundError(job.id)
            stored = job.model_copy(update={"updated_at": datetime.now()})
            self._jobs[job.id] = stored
            return stored.model_copy()

    def find_job_by_id(self, job_id: int) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy() if job else None

    def delete_job(self, job_id: int) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)
            for frame_id in [f.id for f in self._frames.values() if f.job_id == job_id]:
                del self._frames[frame_id]

    def save_frames(self, frames: Sequence[Frame]) -> List[Frame]:
        with self._lock:
            taken = {(f.job_id, f.frame_number) for f in self._frames.values()}
            for frame in frames:
                key = (frame.job_id, frame.frame_number)
                if key in taken:
                    raise RecordStoreError(f"Duplicate frame number {frame.frame_number} for job {frame.job_id}")
                taken.add(key)
            saved = []
            for frame in frames:
                stored = frame.model_copy(update={"id": next(self._frame_ids)})
                self._frames[stored.id] = stored
                saved.append(stored.model_copy())
            return saved

    def find_frames_by_job(self, job_id: int) -> List[Frame]:
        with self._lock:
            frames = [f.model_copy() for f in self._frames.values() if f.job_id == job_id]
        return sorted(frames, key=lambda f: f.frame_number)

    def count_frames_by_job(self, job_id: int) -> int:
        with self._lock:
            return sum(1 for f in self._frames.values() if f.job_id == job_id)

    def delete_frames_by_job(self, job_id: int) -> int:
        with self._lock:
            doomed = [f.id for f in self._frames.values() if f.job_id == job_id]
            for frame_id in doomed:
                del self._frames[frame_id]
            return len(doomed)

    def statistics(self) -> Dict[str, int]:
        """Job counts by status plus frame totals."""
        with self._lock:
            by_status = Counter(job.status for job in self._jobs.values())
            frames = list(self._frames.values())
        stats = {f"jobs_{status.value.lower()}": by_status.get(status, 0) for status in JobStatus}
        stats["jobs_total"] = sum(by_status.values())
        stats["frames_total"] = len(frames)
        stats["frames_favorite"] = sum(1 for f in frames if f.favorite)
        stats["storage_bytes"] = sum(f.file_size for f in frames)
        return stats
