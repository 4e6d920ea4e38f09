import logging
import os
from pathlib import Path
from typing import Optional

LOG_FILENAME = "vfc.log"
# Frame work runs on pool threads, so every record names its thread
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(threadName)s - %(name)s - %(message)s"
# Third-party loggers that flood DEBUG output with per-image plugin chatter
QUIET_LOGGERS = ("PIL",)


def setup_logging(storage_dir: Path, debug: bool = False, log_path: Optional[Path] = None,
                  run_label: Optional[str] = None) -> logging.Logger:
    """
    Route extraction logs to a single file for this run.

    The log lives next to the albums (<storage_dir>/vfc.log) unless log_path
    points elsewhere. Earlier handlers are replaced, so repeated runs in one
    process never write to a stale file.

    Args:
        storage_dir: Album storage root, holds the default log file
        debug: If True, log at DEBUG level including every tool command line
        log_path: Optional explicit log file path
        run_label: Optional short description written in the run header
    """
    storage_dir.mkdir(parents=True, exist_ok=True)

    log_file = Path(log_path) if log_path else (storage_dir / LOG_FILENAME)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=[logging.FileHandler(log_file, encoding="utf-8")],
        force=True
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO)

    logger = logging.getLogger(__name__)
    logger.info(f"=== vfc run pid={os.getpid()}{f' {run_label}' if run_label else ''} ===")
    logger.info(f"Log file: {log_file} (debug={'ON' if debug else 'OFF'})")

    return logger
