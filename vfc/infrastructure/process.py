import logging
import subprocess
import threading
from typing import List, Optional, Sequence
from vfc.domain.errors import ToolFailureError
from vfc.domain.models import CommandResult

logger = logging.getLogger(__name__)

# Exit code reported when the executable itself could not be started
EXIT_NOT_STARTED = 127


def _drain(stream, sink: List[str]) -> None:
    if stream is None:
        return
    try:
        for line in stream:
            sink.append(line.rstrip("\r\n"))
    except (UnicodeDecodeError, ValueError) as e:
        # Keep emptying the pipe as bytes or the tool blocks on a full buffer
        logger.warning(f"CMD_OUTPUT_UNREADABLE: {e}")
        raw = getattr(stream, "buffer", None)
        if raw is None:
            return
        for chunk in iter(lambda: raw.read(65536), b""):
            sink.extend(chunk.decode("utf-8", errors="replace").splitlines())


def run_command(argv: Sequence[str], timeout: Optional[float] = None) -> CommandResult:
    """Runs an external tool synchronously on the calling thread.

    stdout and stderr are drained by two reader threads so a chatty tool
    can never stall on a full pipe. `timeout` is optional; without it the
    call waits for the process to exit.
    """
    cmd = [str(a) for a in argv]
    logger.debug(f"CMD: {' '.join(cmd)}")

    try:
        process = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
        )
    except OSError as e:
        logger.warning(f"CMD_NOT_STARTED: {cmd[0]} ({e})")
        return CommandResult(exit_code=EXIT_NOT_STARTED, stderr=str(e))

    stdout_lines: List[str] = []
    stderr_lines: List[str] = []
    readers = [
        threading.Thread(target=_drain, args=(process.stdout, stdout_lines), daemon=True),
        threading.Thread(target=_drain, args=(process.stderr, stderr_lines), daemon=True),
    ]
    for reader in readers:
        reader.start()

    try:
        process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()
        for reader in readers:
            reader.join(timeout=1.0)
        raise ToolFailureError(
            f"{cmd[0]} timed out after {timeout}s",
            exit_code=process.returncode,
            stderr="\n".join(stderr_lines),
        )

    for reader in readers:
        reader.join()

    result = CommandResult(
        exit_code=process.returncode,
        stdout_lines=stdout_lines,
        stderr="\n".join(stderr_lines),
    )
    if not result.ok:
        logger.debug(f"CMD_FAIL: {cmd[0]} code={result.exit_code} stderr={result.stderr[:500]}")
    return result
