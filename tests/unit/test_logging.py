"""Unit tests for logging infrastructure."""
import pytest
import logging
from pathlib import Path
from vfc.infrastructure.logging import setup_logging


@pytest.fixture(autouse=True)
def reset_root_logger():
    yield
    for handler in list(logging.getLogger().handlers):
        handler.close()
        logging.getLogger().removeHandler(handler)


def test_setup_logging_creates_log_file(tmp_path):
    """Test that setup_logging creates vfc.log in the given directory."""
    storage_dir = tmp_path / "storage"

    logger = setup_logging(storage_dir, debug=False)

    assert isinstance(logger, logging.Logger)
    assert (storage_dir / "vfc.log").exists()


def test_setup_logging_debug_mode(tmp_path):
    logger = setup_logging(tmp_path, debug=True)
    assert logger.getEffectiveLevel() == logging.DEBUG


def test_setup_logging_normal_mode(tmp_path):
    logger = setup_logging(tmp_path, debug=False)
    assert logger.getEffectiveLevel() == logging.INFO


def test_setup_logging_explicit_path(tmp_path):
    """Explicit log_path wins over the directory default."""
    custom = tmp_path / "logs" / "run.log"

    setup_logging(tmp_path / "storage", log_path=custom)
    logging.getLogger("vfc.test").info("JOB_START: id=1")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert custom.exists()
    assert "JOB_START: id=1" in custom.read_text()
    assert not (tmp_path / "storage" / "vfc.log").exists()


def test_setup_logging_replaces_previous_handlers(tmp_path):
    setup_logging(tmp_path / "a")
    setup_logging(tmp_path / "b")

    files = [Path(h.baseFilename) for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler)]
    assert files == [tmp_path / "b" / "vfc.log"]


def test_setup_logging_writes_run_header(tmp_path):
    setup_logging(tmp_path, run_label="extract holiday.mp4")
    for handler in logging.getLogger().handlers:
        handler.flush()

    content = (tmp_path / "vfc.log").read_text()
    assert "=== vfc run pid=" in content
    assert "extract holiday.mp4" in content
    assert " - vfc.infrastructure.logging - " in content


def test_setup_logging_keeps_pil_quiet_in_debug(tmp_path):
    setup_logging(tmp_path, debug=True)

    assert logging.getLogger("PIL").getEffectiveLevel() == logging.INFO
    assert logging.getLogger("vfc.pipeline").getEffectiveLevel() == logging.DEBUG
