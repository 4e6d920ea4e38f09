"""Hardware-accelerated encode backends and the dispatcher that picks one.

Each backend variant implements the same contract: `probe()` says whether
the host can use it, `encode()` writes one AVIF still through ffmpeg with
backend specific flags. The dispatcher detects the first usable backend in
priority order (Intel, NVIDIA, AMD) and always keeps the CPU routine as the
backstop for a failed accelerated encode.
"""

import concurrent.futures
import logging
import os
import re
import shutil
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence, Set
from vfc.config.models import AccelerationConfig
from vfc.domain.errors import BackendUnavailableError, ToolFailureError
from vfc.domain.models import Backend, EncodedFrame
from vfc.infrastructure.media_tool import MediaToolAdapter, cpu_encoder_args, quality_to_crf
from vfc.infrastructure.process import run_command

NUM_RE = re.compile(r"(-?\d+(?:\.\d+)?)")
VAAPI_DEVICE = "/dev/dri/renderD128"
AMD_BUSY_PATH = Path("/sys/class/drm/card0/device/gpu_busy_percent")


def parse_percent(s: str) -> Optional[float]:
    """'30%' → 30.0, 'N/A' → None"""
    if not s:
        return None
    s = str(s).strip()
    if s in {"N/A", "--", "??"}:
        return None
    m = NUM_RE.search(s)
    return float(m.group(1)) if m else None


class EncoderBackend(ABC):
    kind: Backend
    accelerated = True

    def __init__(self, media_tool: MediaToolAdapter):
        self.media_tool = media_tool
        self.logger = logging.getLogger(__name__)

    @abstractmethod
    def probe(self) -> bool:
        """True when the host exposes this backend's driver/runtime."""

    @abstractmethod
    def encoder_args(self, quality: int) -> List[str]:
        pass

    def input_args(self) -> List[str]:
        return []

    def usage(self) -> float:
        return 0.0

    def encode(self, input_path: Path, output_path: Path, quality: int) -> None:
        ok = self.media_tool.convert_frame(
            input_path,
            output_path,
            quality,
            encoder_args=self.encoder_args(quality),
            input_args=self.input_args(),
        )
        if not ok or not output_path.exists():
            raise BackendUnavailableError(f"{self.kind.value} encode failed for {input_path.name}")

    @staticmethod
    def _tool_succeeds(argv: Sequence[str]) -> bool:
        if shutil.which(argv[0]) is None:
            return False
        return run_command(argv, timeout=10).ok


class IntelBackend(EncoderBackend):
    kind = Backend.INTEL

    def probe(self) -> bool:
        openvino_dir = os.environ.get("INTEL_OPENVINO_DIR")
        if openvino_dir and Path(openvino_dir).exists():
            self.logger.debug("Intel OpenVINO environment detected")
            return True
        if shutil.which("vainfo") is None:
            return False
        result = run_command(["vainfo"], timeout=10)
        output = "\n".join(result.stdout_lines).lower() + result.stderr.lower()
        return result.ok and "intel" in output

    def input_args(self) -> List[str]:
        return ["-hwaccel", "qsv"]

    def encoder_args(self, quality: int) -> List[str]:
        return ["-c:v", "av1_qsv", "-global_quality", str(quality_to_crf(quality))]


class NvidiaBackend(EncoderBackend):
    kind = Backend.NVIDIA

    def probe(self) -> bool:
        return self._tool_succeeds(["nvidia-smi"])

    def input_args(self) -> List[str]:
        return ["-hwaccel", "cuda"]

    def encoder_args(self, quality: int) -> List[str]:
        return [
            "-c:v", "av1_nvenc",
            "-cq", str(quality_to_crf(quality)),
            "-preset", "p7",
            "-tune", "hq",
        ]

    def usage(self) -> float:
        result = run_command(
            ["nvidia-smi", "--query-gpu=utilization.gpu", "--format=csv,noheader,nounits"],
            timeout=10,
        )
        if not result.ok or not result.stdout_lines:
            return 0.0
        value = parse_percent(result.stdout_lines[0])
        return value / 100.0 if value is not None else 0.0


class AmdBackend(EncoderBackend):
    kind = Backend.AMD

    def probe(self) -> bool:
        if shutil.which("vulkaninfo") is None:
            return False
        result = run_command(["vulkaninfo", "--summary"], timeout=10)
        output = "\n".join(result.stdout_lines).lower()
        return result.ok and ("amd" in output or "radv" in output)

    def input_args(self) -> List[str]:
        return ["-vaapi_device", VAAPI_DEVICE]

    def encoder_args(self, quality: int) -> List[str]:
        return [
            "-vf", "format=nv12,hwupload",
            "-c:v", "av1_vaapi",
            "-global_quality", str(quality_to_crf(quality)),
        ]

    def usage(self) -> float:
        try:
            value = parse_percent(AMD_BUSY_PATH.read_text())
        except OSError:
            return 0.0
        return value / 100.0 if value is not None else 0.0


class CpuBackend(EncoderBackend):
    kind = Backend.CPU
    accelerated = False

    def probe(self) -> bool:
        return True

    def encoder_args(self, quality: int) -> List[str]:
        return cpu_encoder_args(quality)

    def encode(self, input_path: Path, output_path: Path, quality: int) -> None:
        ok = self.media_tool.convert_frame(input_path, output_path, quality, encoder_args=self.encoder_args(quality))
        if not ok or not output_path.exists():
            raise ToolFailureError(f"CPU encode failed for {input_path.name}")


class BackendDispatcher:
    """Routes frame encodes to the detected backend with CPU fallback.

    The accelerated worker pool exists only when a non-CPU backend was
    detected; it bounds concurrent hardware sessions across all jobs.
    """

    def __init__(
        self,
        config: AccelerationConfig,
        media_tool: MediaToolAdapter,
        blob_store,
        backends: Optional[List[EncoderBackend]] = None,
    ):
        self.config = config
        self.media_tool = media_tool
        self.blob_store = blob_store
        self.logger = logging.getLogger(__name__)
        self.cpu = CpuBackend(media_tool)
        self.candidates = backends if backends is not None else self._default_backends()
        self.active: EncoderBackend = self.cpu
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._in_flight: Set[concurrent.futures.Future] = set()
        self._lock = threading.Lock()
        self._initialized = False

    def _default_backends(self) -> List[EncoderBackend]:
        backends: List[EncoderBackend] = []
        if self.config.intel_enabled:
            backends.append(IntelBackend(self.media_tool))
        if self.config.nvidia_enabled:
            backends.append(NvidiaBackend(self.media_tool))
        if self.config.amd_enabled:
            backends.append(AmdBackend(self.media_tool))
        return backends

    def initialize(self) -> None:
        if self._initialized:
            return
        if not self.config.enabled:
            self.logger.info("Hardware acceleration disabled, using CPU")
            self.active = self.cpu
        else:
            self.active = self.detect_optimal_backend()

        if self.active.accelerated:
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=self.config.pool_size,
                thread_name_prefix="vfc-accel",
            )
            self.logger.info(f"BACKEND_READY: {self.active.kind.value} (pool={self.config.pool_size})")
        else:
            self.logger.warning("No usable acceleration backend, falling back to CPU")
        self._initialized = True

    def detect_optimal_backend(self) -> EncoderBackend:
        for backend in self.candidates:
            try:
                if backend.probe():
                    self.logger.info(f"BACKEND_DETECTED: {backend.kind.value}")
                    return backend
            except Exception as e:
                self.logger.debug(f"Backend probe failed for {backend.kind.value}: {e}")
        self.logger.info("BACKEND_DETECTED: cpu")
        return self.cpu

    @property
    def backend(self) -> Backend:
        return self.active.kind

    def is_accelerated(self) -> bool:
        return self._executor is not None and self.active.accelerated

    def encode(self, input_path: Path, output_name: str, quality: int, job_id: int, frame_number: int) -> EncodedFrame:
        """Encodes one frame and stores it; accelerated failures retry on CPU.

        Only a CPU routine failure escapes (ToolFailureError).
        """
        output_path = input_path.parent / output_name
        used: EncoderBackend = self.cpu

        if self.is_accelerated():
            try:
                self._encode_accelerated(input_path, output_path, quality)
                used = self.active
            except Exception as e:
                self.logger.warning(f"BACKEND_FALLBACK: {input_path.name} ({self.active.kind.value} -> cpu): {e}")

        try:
            if used is self.cpu:
                self.cpu.encode(input_path, output_path, quality)
            data = output_path.read_bytes()
            stored_path = self.blob_store.store_frame(job_id, frame_number, data, "avif")
        finally:
            output_path.unlink(missing_ok=True)

        return EncodedFrame(stored_path=stored_path, backend=used.kind, size_bytes=len(data))

    def _encode_accelerated(self, input_path: Path, output_path: Path, quality: int) -> None:
        executor = self._executor
        if executor is None:
            raise BackendUnavailableError("Accelerated pool is not running")
        future = executor.submit(self.active.encode, input_path, output_path, quality)
        with self._lock:
            self._in_flight.add(future)
        future.add_done_callback(self._forget)
        future.result()

    def _forget(self, future: concurrent.futures.Future) -> None:
        with self._lock:
            self._in_flight.discard(future)

    def get_backend_usage(self) -> float:
        """Instantaneous utilization in [0, 1]; 0.0 when unknown."""
        if not self.is_accelerated():
            return 0.0
        try:
            return max(0.0, min(1.0, self.active.usage()))
        except Exception as e:
            self.logger.debug(f"Backend usage query failed: {e}")
            return 0.0

    def cleanup(self) -> None:
        """Drains in-flight accelerated encodes (bounded), then releases the pool."""
        executor = self._executor
        if executor is None:
            self._initialized = False
            return
        self._executor = None

        with self._lock:
            pending = list(self._in_flight)
        not_done: Set[concurrent.futures.Future] = set()
        if pending:
            self.logger.info(f"Waiting for {len(pending)} accelerated encodes (max {self.config.drain_timeout_s}s)...")
            _, not_done = concurrent.futures.wait(pending, timeout=self.config.drain_timeout_s)

        if not_done:
            self.logger.warning(f"BACKEND_DRAIN_TIMEOUT: cancelling {len(not_done)} encodes")
            for future in not_done:
                future.cancel()
        executor.shutdown(wait=False, cancel_futures=True)
        self._initialized = False
        self.logger.info("Backend dispatcher cleaned up")
