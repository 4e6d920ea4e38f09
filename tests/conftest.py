import math
import pytest
import yaml
from decimal import Decimal
from pathlib import Path
from PIL import Image
from vfc.config.models import AppConfig
from vfc.domain.models import VideoMetadata
from vfc.infrastructure.event_bus import EventBus

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config(tmp_path):
    """AppConfig pointing scratch and storage at tmp_path, CPU only."""
    return AppConfig(
        extraction={
            "frames_per_second": 1.0,
            "max_parallel_workers": 2,
            "max_concurrent_jobs": 2,
            "scratch_dir": str(tmp_path / "scratch"),
        },
        image={"quality": 80},
        acceleration={"enabled": False},
        storage={"base_path": str(tmp_path / "storage")},
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "vfc.yaml"

    content = {
        'extraction': {
            'frames_per_second': 2.0,
            'max_parallel_workers': 3,
        },
        'image': {
            'quality': 60,
        },
        'acceleration': {
            'enabled': False,
        },
        'storage': {
            'base_path': str(tmp_path / "storage"),
            'extensions': ['mp4', 'MOV'],
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

# ============================================================================
# Image / Video Fixtures
# ============================================================================

def write_jpeg(path: Path, size=(320, 240), color=(90, 120, 200)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path, "JPEG")
    return path

@pytest.fixture
def jpeg_factory(tmp_path):
    """Returns a function that writes a real JPEG of the given size."""
    def _make(name="frame_000000.jpg", size=(320, 240)):
        return write_jpeg(tmp_path / "raw" / name, size=size)
    return _make

@pytest.fixture
def dummy_video(tmp_path):
    """A file that passes extension/size checks; content is never decoded."""
    video = tmp_path / "input" / "holiday.mp4"
    video.parent.mkdir()
    video.write_bytes(b"dummy video content " * 100)
    return video


class FakeMediaTool:
    """Stands in for MediaToolAdapter without ffmpeg.

    Sampling writes real JPEGs so Pillow can measure them; conversion and
    thumbnails write placeholder bytes.
    """

    def __init__(self, duration="10.000", frame_count=None, size=(320, 240)):
        self.valid = True
        self.metadata_error = None
        self.duration = Decimal(duration) if duration is not None else None
        self.frame_count = frame_count
        self.size = size
        self.convert_ok = True
        self.thumbnail_ok = True
        self.corrupt = set()
        self.calls = []

    def validate(self, video_path):
        self.calls.append(("validate", video_path))
        return self.valid

    def extract_metadata(self, video_path):
        self.calls.append(("extract_metadata", video_path))
        if self.metadata_error is not None:
            raise self.metadata_error
        return VideoMetadata(
            duration=self.duration, frame_rate=30, width=self.size[0], height=self.size[1], codec="h264"
        )

    def extract_frames(self, video_path, output_pattern, frames_per_second):
        self.calls.append(("extract_frames", video_path, frames_per_second))
        count = self.frame_count
        if count is None:
            count = math.ceil(float(self.duration) * frames_per_second)
        produced = []
        for i in range(count):
            path = output_pattern.parent / (output_pattern.name % i)
            if i in self.corrupt:
                path.write_bytes(b"not an image")
            else:
                write_jpeg(path, size=self.size)
            produced.append(path)
        return produced

    def convert_frame(self, input_path, output_path, quality, encoder_args=None, input_args=None):
        self.calls.append(("convert_frame", input_path, quality))
        if not self.convert_ok:
            return False
        output_path.write_bytes(b"AVIF" + input_path.name.encode())
        return True

    def generate_thumbnail(self, input_path, output_path, width, height, quality):
        self.calls.append(("generate_thumbnail", input_path, width, height))
        if not self.thumbnail_ok:
            return False
        output_path.write_bytes(b"THUMB")
        return True


@pytest.fixture
def fake_media_tool():
    return FakeMediaTool()


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (real ffmpeg)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
