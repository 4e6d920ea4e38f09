"""Pipeline orchestrator for the video → frames job lifecycle.

Drives one job through validation, metadata extraction, frame sampling,
bounded-parallel frame post-processing and the final bulk persist, and owns
the in-memory progress/cancellation tracker for every job it runs.

Key responsibilities:
- Job state machine: PROCESSING → COMPLETED | CANCELLED | FAILED, retry back to PROCESSING
- Reject a second concurrent run of the same job id
- Cooperative cancellation: frames not yet started are skipped, running ones finish
- Scratch directory lifecycle (removed after every run, success or failure)
- Publish job/frame events for progress displays
"""

import concurrent.futures
import logging
import math
import shutil
import tempfile
import threading
import time
from pathlib import Path
from typing import List, Optional, Set, Tuple
from vfc.config.models import AppConfig
from vfc.domain.errors import (
    InvalidMediaError,
    InvalidTransitionError,
    JobAlreadyRunningError,
)
from vfc.domain.events import (
    FrameDropped,
    FrameProcessed,
    JobCancelled,
    JobCompleted,
    JobFailed,
    JobProgressUpdated,
    JobStarted,
)
from vfc.domain.models import Frame, Job, JobStatus
from vfc.infrastructure.backends import BackendDispatcher
from vfc.infrastructure.event_bus import EventBus
from vfc.infrastructure.housekeeping import SCRATCH_PREFIX, HousekeepingService
from vfc.infrastructure.media_tool import MediaToolAdapter
from vfc.infrastructure.records import RecordStore
from vfc.infrastructure.storage import BlobStore
from vfc.pipeline.frame_processor import FrameProcessor
from vfc.pipeline.progress import ProgressTracker

# Share of progress reserved for the final bulk persist
PERSIST_RESERVE = 0.05


class Orchestrator:
    """Runs frame extraction jobs.

    Args:
        config: AppConfig with extraction, image and storage settings.
        record_store: Job/frame record persistence.
        blob_store: Frame, thumbnail and video file storage.
        media_tool: MediaToolAdapter for probing, sampling and conversion.
        dispatcher: BackendDispatcher for accelerated encodes (initialized by the caller).
        event_bus: Optional EventBus for lifecycle events.
        tracker: Optional ProgressTracker; a private one is created otherwise.
    """

    def __init__(
        self,
        config: AppConfig,
        record_store: RecordStore,
        blob_store: BlobStore,
        media_tool: MediaToolAdapter,
        dispatcher: BackendDispatcher,
        event_bus: Optional[EventBus] = None,
        tracker: Optional[ProgressTracker] = None,
    ):
        self.config = config
        self.records = record_store
        self.blobs = blob_store
        self.media_tool = media_tool
        self.dispatcher = dispatcher
        self.event_bus = event_bus or EventBus()
        self.tracker = tracker or ProgressTracker()
        self.frame_processor = FrameProcessor(config, media_tool, dispatcher, blob_store)
        self.logger = logging.getLogger(__name__)

        self.scratch_root = Path(config.extraction.scratch_dir)
        self._running: Set[int] = set()
        self._running_lock = threading.Lock()
        self._job_executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

        HousekeepingService().cleanup_scratch_dirs(
            self.scratch_root, max_age_s=config.extraction.stale_scratch_age_s
        )

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def create_job(self, video_path: Path, name: Optional[str] = None) -> Job:
        """Registers a source video as a new PROCESSING job and stores a copy."""
        video_path = Path(video_path)
        storage = self.config.storage
        if not video_path.is_file():
            raise InvalidMediaError(f"Video file not found: {video_path}")
        if video_path.suffix.lower() not in storage.extensions:
            supported = ", ".join(ext.lstrip(".").upper() for ext in storage.extensions)
            raise InvalidMediaError(f"Unsupported video format. Supported formats: {supported}")
        size = video_path.stat().st_size
        if size == 0:
            raise InvalidMediaError(f"Video file is empty: {video_path}")
        if size > storage.max_video_size_bytes:
            raise InvalidMediaError(f"Video file too large: {size} bytes (max {storage.max_video_size_bytes})")

        job = self.records.create_job(Job(
            name=name or video_path.stem,
            original_filename=video_path.name,
            file_size=size,
        ))
        try:
            self.blobs.create_job_directory(job.id)
        except Exception:
            self.records.delete_job(job.id)
            raise
        try:
            job.video_path = self.blobs.store_video(job.id, video_path, video_path.name)
            job = self.records.update_job(job)
        except Exception:
            self.blobs.delete_job_directory(job.id)
            self.records.delete_job(job.id)
            raise
        self.logger.info(f"JOB_CREATED: id={job.id} video={video_path.name} size={size}")
        return job

    def run_job(self, job_id: int) -> Job:
        """Processes a job on the calling thread and returns its final record."""
        self._claim(job_id)
        try:
            return self._process(job_id)
        finally:
            self._release(job_id)

    def start_job(self, job_id: int) -> concurrent.futures.Future:
        """Queues a job on the background pool; the future yields the final Job."""
        self._claim(job_id)
        return self._submit_claimed(job_id)

    def retry_job(self, job_id: int, wait: bool = True):
        """Clears a FAILED/CANCELLED job's frames and runs it again.

        Returns the final Job when wait is True, else a Future.
        """
        job = self.records.get_job(job_id)
        if not job.can_transition(JobStatus.PROCESSING):
            raise InvalidTransitionError(f"Job {job_id} cannot be retried from {job.status.value}")

        self._claim(job_id)
        try:
            removed = self._clear_frames(job_id)
            job.status = JobStatus.PROCESSING
            self.records.update_job(job)
            self.logger.info(f"JOB_RETRY: id={job_id} cleared_frames={removed}")
        except Exception:
            self._release(job_id)
            raise

        if not wait:
            return self._submit_claimed(job_id)
        try:
            return self._process(job_id)
        finally:
            self._release(job_id)

    def delete_job(self, job_id: int) -> None:
        """Removes a job, its frames and its stored files."""
        with self._running_lock:
            if job_id in self._running:
                raise JobAlreadyRunningError(job_id)
            self._running.add(job_id)
        try:
            self.records.get_job(job_id)
            self._clear_frames(job_id)
            self.blobs.delete_job_directory(job_id)
            self.records.delete_job(job_id)
            self.logger.info(f"JOB_DELETED: id={job_id}")
        finally:
            self._release(job_id)

    def get_progress(self, job_id: int) -> float:
        return self.tracker.get(job_id)

    def request_cancellation(self, job_id: int) -> bool:
        """Stops dispatch of not-yet-started frames; in-flight frames finish."""
        accepted = self.tracker.request_cancellation(job_id)
        if accepted:
            self.logger.info(f"JOB_CANCEL_REQUESTED: id={job_id}")
        return accepted

    def clear_progress(self, job_id: int) -> None:
        self.tracker.remove(job_id)

    def is_running(self, job_id: int) -> bool:
        with self._running_lock:
            return job_id in self._running

    def shutdown(self, wait: bool = True) -> None:
        with self._executor_lock:
            executor, self._job_executor = self._job_executor, None
        if executor is not None:
            executor.shutdown(wait=wait, cancel_futures=not wait)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _claim(self, job_id: int) -> None:
        with self._running_lock:
            if job_id in self._running:
                raise JobAlreadyRunningError(job_id)
            self._running.add(job_id)

    def _release(self, job_id: int) -> None:
        with self._running_lock:
            self._running.discard(job_id)

    def _submit_claimed(self, job_id: int) -> concurrent.futures.Future:
        def _run() -> Job:
            try:
                return self._process(job_id)
            except Exception as e:
                self.logger.error(f"Async processing failed for job {job_id}: {e}")
                raise
            finally:
                self._release(job_id)

        with self._executor_lock:
            if self._job_executor is None:
                self._job_executor = concurrent.futures.ThreadPoolExecutor(
                    max_workers=self.config.extraction.max_concurrent_jobs,
                    thread_name_prefix="vfc-job",
                )
            try:
                return self._job_executor.submit(_run)
            except RuntimeError:
                self._release(job_id)
                raise

    def _clear_frames(self, job_id: int) -> int:
        for frame in self.records.find_frames_by_job(job_id):
            self.blobs.delete(frame.file_path)
            if frame.thumbnail_path:
                self.blobs.delete(frame.thumbnail_path)
        self.tracker.remove(job_id)
        return self.records.delete_frames_by_job(job_id)

    def _process(self, job_id: int) -> Job:
        job = self.records.get_job(job_id)
        if job.status != JobStatus.PROCESSING:
            # Finished jobs only go back to PROCESSING through retry_job
            raise InvalidTransitionError(
                f"Job {job_id} is {job.status.value}; use retry to run it again"
            )

        self.tracker.start(job_id)
        scratch: Optional[Path] = None
        start_time = time.monotonic()
        self.logger.info(f"JOB_START: id={job_id} name={job.name}")

        try:
            if not job.video_path:
                raise InvalidMediaError(f"Job {job_id} has no source video")
            video_path = Path(job.video_path)
            if not self.media_tool.validate(video_path):
                raise InvalidMediaError(f"Invalid video file: {video_path}")

            metadata = self.media_tool.extract_metadata(video_path)
            job.apply_metadata(metadata)
            job = self.records.update_job(job)

            self.scratch_root.mkdir(parents=True, exist_ok=True)
            scratch = Path(tempfile.mkdtemp(prefix=f"{SCRATCH_PREFIX}{job_id}_", dir=self.scratch_root))
            frames, skipped = self._extract_and_process(job, video_path, scratch)

            if skipped:
                job.status = JobStatus.CANCELLED
                job = self.records.update_job(job)
                self.event_bus.publish(JobCancelled(job_id=job_id, frame_count=len(frames), skipped=skipped))
            else:
                job.status = JobStatus.COMPLETED
                job = self.records.update_job(job)
                self.tracker.update(job_id, 1.0)
                self.event_bus.publish(JobCompleted(job_id=job_id, frame_count=len(frames)))

            elapsed = time.monotonic() - start_time
            self.logger.info(
                f"JOB_END: id={job_id} status={job.status.value} frames={len(frames)} "
                f"skipped={skipped} elapsed={elapsed:.2f}s"
            )
            return job

        except Exception as e:
            self.logger.error(f"JOB_FAILED: id={job_id} {type(e).__name__}: {e}")
            self._mark_failed(job_id)
            self.tracker.remove(job_id)
            self.event_bus.publish(JobFailed(job_id=job_id, error_message=str(e)))
            raise

        finally:
            if scratch is not None and scratch.exists():
                shutil.rmtree(scratch, ignore_errors=True)

    def _mark_failed(self, job_id: int) -> None:
        try:
            job = self.records.find_job_by_id(job_id)
            if job is not None and job.can_transition(JobStatus.FAILED):
                job.status = JobStatus.FAILED
                self.records.update_job(job)
        except Exception as e:
            self.logger.error(f"Failed to mark job {job_id} as FAILED: {e}")

    def _expected_frames(self, job: Job, sampled: int) -> int:
        fps = self.config.extraction.frames_per_second
        if job.duration is None:
            return sampled
        return math.ceil(float(job.duration) * fps)

    def _extract_and_process(self, job: Job, video_path: Path, scratch: Path) -> Tuple[List[Frame], int]:
        """Samples frames and post-processes them on a bounded pool.

        Returns the persisted frames and the number of frames skipped by
        cancellation.
        """
        fps = self.config.extraction.frames_per_second
        scratch.mkdir(parents=True, exist_ok=True)
        raw_frames = self.media_tool.extract_frames(video_path, scratch / "frame_%06d.jpg", fps)

        expected = self._expected_frames(job, len(raw_frames))
        if len(raw_frames) > expected:
            self.logger.debug(f"Dropping {len(raw_frames) - expected} trailing samples beyond {expected}")
            raw_frames = raw_frames[:expected]
        self.logger.info(f"Processing {len(raw_frames)} frames (expected {expected}) for job {job.id}")
        self.event_bus.publish(JobStarted(job_id=job.id, expected_frames=expected))

        results: List[Frame] = []
        lock = threading.Lock()
        counters = {"processed": 0, "skipped": 0}
        denominator = max(expected, 1)

        def _task(raw_path: Path) -> None:
            if self.tracker.is_cancelled(job.id):
                with lock:
                    counters["skipped"] += 1
                return

            frame: Optional[Frame] = None
            try:
                frame = self.frame_processor.process(job, raw_path)
            except Exception as e:
                self.logger.error(f"FRAME_DROP: {raw_path.name} {type(e).__name__}: {e}")
                self.event_bus.publish(FrameDropped(job_id=job.id, path=raw_path, reason=str(e)))

            with lock:
                if frame is not None:
                    results.append(frame)
                counters["processed"] += 1
                processed = counters["processed"]
                # Updated under the lock so observers never see progress go backwards
                progress = min(processed / denominator, 1.0 - PERSIST_RESERVE)
                self.tracker.update(job.id, progress)
                if frame is not None:
                    self.event_bus.publish(FrameProcessed(job_id=job.id, frame=frame))
                self.event_bus.publish(JobProgressUpdated(
                    job_id=job.id, progress=progress, processed=processed, expected=expected
                ))
            if processed % 10 == 0:
                self.logger.info(f"Processed {processed}/{expected} frames for job {job.id}")

        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self.config.extraction.max_parallel_workers,
            thread_name_prefix=f"vfc-frames-{job.id}",
        ) as executor:
            futures = [executor.submit(_task, path) for path in raw_frames]
            for future in concurrent.futures.as_completed(futures):
                future.result()

        results.sort(key=lambda f: f.frame_number)
        saved = self.records.save_frames(results) if results else []
        if saved:
            self.logger.info(f"Saved {len(saved)} frames for job {job.id}")
        return saved, counters["skipped"]
