import pytest
from decimal import Decimal
from vfc.domain.errors import JobNotFoundError, RecordStoreError
from vfc.domain.models import FormatTag, Frame, Job, JobStatus
from vfc.infrastructure.records import InMemoryRecordStore


def _job(name="clip"):
    return Job(name=name, original_filename=f"{name}.mp4")


def _frame(job_id, n, size=100, favorite=False):
    return Frame(
        job_id=job_id,
        filename=f"clip_frame_{n:06d}.avif",
        file_path=f"albums/{job_id}/frames/original/frame_{n:06d}.avif",
        timestamp=Decimal(n),
        frame_number=n,
        width=640,
        height=360,
        file_size=size,
        format=FormatTag.CPU,
        quality_score=0.1,
        favorite=favorite,
    )


def test_create_assigns_ids():
    store = InMemoryRecordStore()
    a = store.create_job(_job("a"))
    b = store.create_job(_job("b"))

    assert a.id == 1
    assert b.id == 2
    assert store.get_job(1).name == "a"


def test_records_are_copies():
    store = InMemoryRecordStore()
    job = store.create_job(_job())
    job.status = JobStatus.FAILED

    assert store.get_job(job.id).status == JobStatus.PROCESSING


def test_update_job():
    store = InMemoryRecordStore()
    job = store.create_job(_job())
    job.status = JobStatus.COMPLETED
    updated = store.update_job(job)

    assert updated.updated_at >= job.updated_at
    assert store.get_job(job.id).status == JobStatus.COMPLETED


def test_update_unknown_job_raises():
    store = InMemoryRecordStore()
    with pytest.raises(JobNotFoundError):
        store.update_job(Job(id=99, name="x", original_filename="x.mp4"))


def test_get_job_missing():
    store = InMemoryRecordStore()
    assert store.find_job_by_id(5) is None
    with pytest.raises(JobNotFoundError) as exc_info:
        store.get_job(5)
    assert exc_info.value.job_id == 5


def test_save_and_find_frames_sorted():
    store = InMemoryRecordStore()
    job = store.create_job(_job())
    saved = store.save_frames([_frame(job.id, 2), _frame(job.id, 0), _frame(job.id, 1)])

    assert all(f.id is not None for f in saved)
    assert [f.frame_number for f in store.find_frames_by_job(job.id)] == [0, 1, 2]
    assert store.count_frames_by_job(job.id) == 3


def test_save_frames_rejects_duplicates_atomically():
    store = InMemoryRecordStore()
    job = store.create_job(_job())
    store.save_frames([_frame(job.id, 0)])

    with pytest.raises(RecordStoreError):
        store.save_frames([_frame(job.id, 1), _frame(job.id, 0)])
    assert store.count_frames_by_job(job.id) == 1

    with pytest.raises(RecordStoreError):
        store.save_frames([_frame(job.id, 5), _frame(job.id, 5)])


def test_delete_frames_and_job():
    store = InMemoryRecordStore()
    job = store.create_job(_job())
    other = store.create_job(_job("other"))
    store.save_frames([_frame(job.id, 0), _frame(job.id, 1), _frame(other.id, 0)])

    assert store.delete_frames_by_job(job.id) == 2
    assert store.find_frames_by_job(job.id) == []

    store.delete_job(other.id)
    assert store.find_job_by_id(other.id) is None
    assert store.count_frames_by_job(other.id) == 0


def test_statistics():
    store = InMemoryRecordStore()
    done = store.create_job(_job("done"))
    done.status = JobStatus.COMPLETED
    store.update_job(done)
    store.create_job(_job("running"))
    store.save_frames([_frame(done.id, 0, size=100, favorite=True), _frame(done.id, 1, size=50)])

    stats = store.statistics()

    assert stats["jobs_total"] == 2
    assert stats["jobs_completed"] == 1
    assert stats["jobs_processing"] == 1
    assert stats["jobs_failed"] == 0
    assert stats["frames_total"] == 2
    assert stats["frames_favorite"] == 1
    assert stats["storage_bytes"] == 150


def test_create_starts_at_given_id():
    store = InMemoryRecordStore(start_id=8)

    assert store.create_job(_job("a")).id == 8
    assert store.create_job(_job("b")).id == 9
