import threading
from typing import Dict, Optional
from vfc.domain.models import ProgressEntry


class ProgressTracker:
    """Job id → progress fraction and cancel flag, shared by worker threads.

    Owned by one Orchestrator; contents live only as long as the process.
    """

    def __init__(self):
        self._entries: Dict[int, ProgressEntry] = {}
        self._lock = threading.Lock()

    def start(self, job_id: int) -> None:
        with self._lock:
            self._entries[job_id] = ProgressEntry()

    def update(self, job_id: int, progress: float) -> None:
        """Sets progress for a tracked job; unknown ids are ignored."""
        progress = max(0.0, min(1.0, progress))
        with self._lock:
            entry = self._entries.get(job_id)
            if entry is not None:
                entry.progress = progress

    def get(self, job_id: int) -> float:
        with self._lock:
            entry = self._entries.get(job_id)
            return entry.progress if entry else 0.0

    def entry(self, job_id: int) -> Optional[ProgressEntry]:
        with self._lock:
            entry = self._entries.get(job_id)
            return entry.model_copy() if entry else None

    def request_cancellation(self, job_id: int) -> bool:
        """Flags a tracked job; returns False when the job is not tracked."""
        with self._lock:
            entry = self._entries.get(job_id)
            if entry is None:
                return False
            entry.cancelled = True
            return True

    def is_cancelled(self, job_id: int) -> bool:
        with self._lock:
            entry = self._entries.get(job_id)
            return bool(entry and entry.cancelled)

    def remove(self, job_id: int) -> None:
        with self._lock:
            self._entries.pop(job_id, None)

    def __contains__(self, job_id: int) -> bool:
        with self._lock:
            return job_id in self._entries
