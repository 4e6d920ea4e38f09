import pytest
from decimal import Decimal
from unittest.mock import MagicMock
from vfc.domain.errors import BlobStoreError, ToolFailureError
from vfc.domain.models import Backend, EncodedFrame, FormatTag, Job
from vfc.infrastructure.storage import LocalBlobStore
from vfc.pipeline.frame_processor import (
    FrameProcessor,
    format_timestamp,
    frame_filename,
    quality_score,
)


@pytest.fixture
def job():
    return Job(id=4, name="Beach Day!", original_filename="beach.mp4")


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "storage")


def _cpu_dispatcher():
    dispatcher = MagicMock()
    dispatcher.is_accelerated.return_value = False
    return dispatcher


def test_quality_score():
    assert quality_score(1920, 1080) == 1.0
    assert quality_score(3840, 2160) == 1.0
    assert quality_score(960, 540) == pytest.approx(0.25)
    assert quality_score(0, 100) == 0.0
    assert quality_score(1280, 720) == quality_score(1280, 720)


def test_format_timestamp():
    assert format_timestamp(0) == "00_00_00"
    assert format_timestamp(3725.9) == "01_02_05"


def test_frame_filename_sanitizes_name(job):
    name = frame_filename(job, Decimal("65.000"), 65, "avif")
    assert name == "Beach_Day__00_01_05_frame_000065.avif"


def test_process_cpu_conversion(sample_config, fake_media_tool, blob_store, jpeg_factory, job):
    raw = jpeg_factory("frame_000005.jpg", size=(960, 540))
    processor = FrameProcessor(sample_config, fake_media_tool, _cpu_dispatcher(), blob_store)

    frame = processor.process(job, raw)

    assert frame.frame_number == 5
    assert frame.timestamp == Decimal("5.000")
    assert frame.format == FormatTag.CPU
    assert (frame.width, frame.height) == (960, 540)
    assert frame.quality_score == pytest.approx(0.25)
    assert frame.file_path.endswith("frames/original/frame_000005.avif")
    assert frame.file_size == len(b"AVIF" + raw.name.encode())
    assert frame.thumbnail_path.endswith("frames/thumbnails/frame_000005_thumb.jpg")
    assert frame.filename.endswith("_frame_000005.avif")
    # Scratch byproducts are removed, the raw sample stays for the caller
    assert not raw.with_name("frame_000005.avif").exists()
    assert not raw.with_name("frame_000005_thumb.jpg").exists()
    assert raw.exists()


def test_process_timestamp_uses_sampling_rate(sample_config, fake_media_tool, blob_store, jpeg_factory, job):
    sample_config.extraction.frames_per_second = 3.0
    raw = jpeg_factory("frame_000001.jpg")
    processor = FrameProcessor(sample_config, fake_media_tool, _cpu_dispatcher(), blob_store)

    assert processor.process(job, raw).timestamp == Decimal("0.333")


def test_process_raw_fallback(sample_config, fake_media_tool, blob_store, jpeg_factory, job):
    fake_media_tool.convert_ok = False
    raw = jpeg_factory("frame_000002.jpg")
    processor = FrameProcessor(sample_config, fake_media_tool, _cpu_dispatcher(), blob_store)

    frame = processor.process(job, raw)

    assert frame.format == FormatTag.RAW
    assert frame.file_path.endswith("frame_000002.jpg")
    assert frame.file_size == raw.stat().st_size
    assert frame.filename.endswith(".jpg")


def test_process_accelerated_path(sample_config, fake_media_tool, blob_store, jpeg_factory, job):
    dispatcher = MagicMock()
    dispatcher.is_accelerated.return_value = True
    dispatcher.encode.return_value = EncodedFrame(stored_path="albums/4/x.avif", backend=Backend.NVIDIA, size_bytes=99)
    raw = jpeg_factory("frame_000001.jpg")
    processor = FrameProcessor(sample_config, fake_media_tool, dispatcher, blob_store)

    frame = processor.process(job, raw)

    assert frame.format == FormatTag.ACCELERATED
    assert frame.file_size == 99
    dispatcher.encode.assert_called_once_with(raw, "frame_000001.avif", 80, 4, 1)
    assert not any(call[0] == "convert_frame" for call in fake_media_tool.calls)


def test_process_accelerated_fell_back_to_cpu(sample_config, fake_media_tool, blob_store, jpeg_factory, job):
    dispatcher = MagicMock()
    dispatcher.is_accelerated.return_value = True
    dispatcher.encode.return_value = EncodedFrame(stored_path="albums/4/x.avif", backend=Backend.CPU, size_bytes=10)
    processor = FrameProcessor(sample_config, fake_media_tool, dispatcher, blob_store)

    assert processor.process(job, jpeg_factory()).format == FormatTag.CPU


def test_process_accelerated_cpu_failure_propagates(sample_config, fake_media_tool, blob_store, jpeg_factory, job):
    dispatcher = MagicMock()
    dispatcher.is_accelerated.return_value = True
    dispatcher.encode.side_effect = ToolFailureError("CPU encode failed")
    processor = FrameProcessor(sample_config, fake_media_tool, dispatcher, blob_store)

    with pytest.raises(ToolFailureError):
        processor.process(job, jpeg_factory())


def test_thumbnail_failure_is_not_fatal(sample_config, fake_media_tool, blob_store, jpeg_factory, job):
    fake_media_tool.thumbnail_ok = False
    processor = FrameProcessor(sample_config, fake_media_tool, _cpu_dispatcher(), blob_store)

    frame = processor.process(job, jpeg_factory())

    assert frame.thumbnail_path is None
    assert frame.format == FormatTag.CPU


def test_thumbnail_store_error_is_not_fatal(sample_config, fake_media_tool, jpeg_factory, job):
    blob_store = MagicMock()
    blob_store.store_frame.return_value = "albums/4/frame.avif"
    blob_store.store_thumbnail.side_effect = BlobStoreError("disk full")
    processor = FrameProcessor(sample_config, fake_media_tool, _cpu_dispatcher(), blob_store)

    assert processor.process(job, jpeg_factory()).thumbnail_path is None


def test_unreadable_image_raises(sample_config, fake_media_tool, blob_store, tmp_path, job):
    raw = tmp_path / "frame_000009.jpg"
    raw.write_bytes(b"not an image")
    processor = FrameProcessor(sample_config, fake_media_tool, _cpu_dispatcher(), blob_store)

    with pytest.raises(OSError):
        processor.process(job, raw)
