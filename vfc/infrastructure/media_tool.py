import logging
import re
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from typing import List, Optional, Sequence
from vfc.config.models import MediaConfig
from vfc.domain.errors import ToolFailureError
from vfc.domain.models import CommandResult, VideoMetadata, to_fixed
from vfc.infrastructure.process import run_command

DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2})\.(\d{2})")
FRAME_RATE_RE = re.compile(r"(\d+(?:\.\d+)?) fps")
DIMENSIONS_RE = re.compile(r"\b(\d{3,4})x(\d{3,4})\b")
CODEC_RE = re.compile(r"Video:\s*([A-Za-z0-9_]+)")
# Bare codec names as printed by `ffprobe -of default=nokey=1`
CODEC_LINE_RE = re.compile(r"^(h264|h265|hevc|avc1|av1|vp8|vp9|mpeg4|mpeg2video|prores|mjpeg)$")
PRINTF_INT_RE = re.compile(r"%0?\d*d")
NON_DIGIT_RE = re.compile(r"[^0-9]")

logger = logging.getLogger(__name__)


def parse_frame_number(filename: str) -> int:
    digits = NON_DIGIT_RE.sub("", filename)
    try:
        return int(digits)
    except ValueError:
        logger.warning(f"Failed to parse frame number from filename: {filename}")
        return 0


def quality_to_crf(quality: int) -> int:
    """Maps 0..100 quality (100 = best) onto the 0..63 AV1 CRF scale."""
    quality = max(0, min(100, quality))
    return round((100 - quality) * 63 / 100)


def quality_to_qscale(quality: int) -> int:
    """Maps 0..100 quality onto the mjpeg -q:v scale (2 best, 31 worst)."""
    quality = max(0, min(100, quality))
    return max(2, min(31, round(31 - quality * 29 / 100)))


def cpu_encoder_args(quality: int) -> List[str]:
    return [
        "-c:v", "libaom-av1",
        "-still-picture", "1",
        "-crf", str(quality_to_crf(quality)),
        "-cpu-used", "6",
        "-pix_fmt", "yuv420p",
    ]


def _round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def parse_probe_output(lines: Sequence[str]) -> VideoMetadata:
    """Line-oriented, best-effort parse; unmatched fields stay None."""
    metadata = VideoMetadata()
    for raw in lines:
        line = raw.strip()
        if not line:
            continue

        if metadata.duration is None:
            m = DURATION_RE.search(line)
            if m:
                h, mnt, s, cs = (int(g) for g in m.groups())
                metadata.duration = to_fixed(h * 3600 + mnt * 60 + s + cs / 100.0)

        if metadata.frame_rate is None:
            m = FRAME_RATE_RE.search(line)
            if m:
                metadata.frame_rate = _round_half_up(float(m.group(1)))

        if metadata.width is None:
            m = DIMENSIONS_RE.search(line)
            if m:
                metadata.width = int(m.group(1))
                metadata.height = int(m.group(2))

        if metadata.codec is None:
            m = CODEC_RE.search(line) or CODEC_LINE_RE.match(line)
            if m:
                metadata.codec = m.group(1)
    return metadata


class MediaToolAdapter:
    """Wrapper around the ffmpeg/ffprobe command line tools."""

    def __init__(self, config: Optional[MediaConfig] = None, raw_quality: int = 2):
        self.config = config or MediaConfig()
        self.raw_quality = raw_quality
        self.logger = logging.getLogger(__name__)

    def run_command(self, argv: Sequence[str]) -> CommandResult:
        return run_command(argv)

    def extract_metadata(self, video_path: Path) -> VideoMetadata:
        """Probes container/stream info. Non-zero exit raises ToolFailureError."""
        self.logger.info(f"PROBE: {video_path}")
        cmd = [self.config.ffprobe_path, "-hide_banner", str(video_path)]
        result = self.run_command(cmd)
        if not result.ok:
            raise ToolFailureError(
                f"ffprobe failed for {video_path}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        # ffprobe prints the human readable summary on stderr
        metadata = parse_probe_output(result.stdout_lines + result.stderr.splitlines())
        self.logger.debug(f"PROBE_RESULT: {video_path.name} {metadata.model_dump()}")
        return metadata

    def extract_frames(self, video_path: Path, output_pattern: Path, frames_per_second: float) -> List[Path]:
        """Samples frames into the pattern's directory, numbered from 0.

        Returns the produced files in frame order; an empty list means the
        tool wrote nothing and is not an error.
        """
        self.logger.info(f"EXTRACT_START: {video_path.name} fps={frames_per_second:g}")
        output_pattern.parent.mkdir(parents=True, exist_ok=True)
        cmd = [
            self.config.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            "-i", str(video_path),
            "-vf", f"fps={frames_per_second:g}",
            "-start_number", "0",
            "-q:v", str(self.raw_quality),
            "-y",
            str(output_pattern),
        ]
        result = self.run_command(cmd)
        if not result.ok:
            raise ToolFailureError(
                f"Frame extraction failed for {video_path}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )

        reported = [Path(line.strip()) for line in result.stdout_lines if line.strip()]
        produced = [p for p in reported if p.is_file()]
        if not produced:
            glob_pattern = PRINTF_INT_RE.sub("*", output_pattern.name)
            produced = list(output_pattern.parent.glob(glob_pattern))
        # Numeric order; names stop sorting lexically once the counter outgrows its padding
        produced.sort(key=lambda p: (parse_frame_number(p.name), p.name))
        self.logger.info(f"EXTRACT_END: {video_path.name} frames={len(produced)}")
        return produced

    def convert_frame(
        self,
        input_path: Path,
        output_path: Path,
        quality: int,
        encoder_args: Optional[Sequence[str]] = None,
        input_args: Optional[Sequence[str]] = None,
    ) -> bool:
        """Encodes one image to AVIF. Without encoder_args the CPU encoder is used."""
        if encoder_args is None:
            encoder_args = cpu_encoder_args(quality)
        cmd = [self.config.ffmpeg_path, "-hide_banner", "-loglevel", "error"]
        cmd.extend(input_args or [])
        cmd.extend(["-i", str(input_path)])
        cmd.extend(encoder_args)
        cmd.extend(["-frames:v", "1", "-y", str(output_path)])

        result = self.run_command(cmd)
        if not result.ok:
            self.logger.warning(f"CONVERT_FAIL: {input_path.name} code={result.exit_code}")
            return False
        return True

    def generate_thumbnail(self, input_path: Path, output_path: Path, width: int, height: int, quality: int) -> bool:
        cmd = [
            self.config.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            "-i", str(input_path),
            "-vf", f"scale={width}:{height}:force_original_aspect_ratio=decrease",
            "-q:v", str(quality_to_qscale(quality)),
            "-frames:v", "1",
            "-y",
            str(output_path),
        ]
        result = self.run_command(cmd)
        if not result.ok:
            self.logger.warning(f"THUMBNAIL_FAIL: {input_path.name} code={result.exit_code}")
            return False
        return True

    def validate(self, video_path: Path) -> bool:
        """True when the probe reports a positive duration."""
        cmd = [
            self.config.ffprobe_path,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(video_path),
        ]
        result = self.run_command(cmd)
        if not result.ok:
            self.logger.error(f"Video validation failed: {video_path} ({result.stderr.strip()})")
            return False

        text = next((line.strip() for line in result.stdout_lines if line.strip()), "")
        try:
            duration = float(text)
        except ValueError:
            self.logger.error(f"Video validation failed: no duration for {video_path}")
            return False
        return duration > 0
