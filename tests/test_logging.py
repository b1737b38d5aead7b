"""Unit tests for altmirror.utils.logging."""

import io
import logging

import pytest

from altmirror.utils import logging as log_utils
from altmirror.utils.logging import (
    SafeStreamHandler,
    _level_from_env,
    default_log_file,
    get_logger,
    reset_logging,
    run_log,
    setup_logging,
)


@pytest.fixture
def fresh_logging(monkeypatch):
    """Run a test against an unconfigured namespace, restoring handlers after."""
    root = logging.getLogger("altmirror")
    saved = list(root.handlers)
    for handler in saved:
        root.removeHandler(handler)
    monkeypatch.setattr(log_utils, "_CONFIGURED", False)
    yield root
    reset_logging()
    for handler in saved:
        root.addHandler(handler)
    log_utils._CONFIGURED = True


def _record(msg):
    return logging.LogRecord(
        name="test", level=logging.INFO, pathname="test.py",
        lineno=1, msg=msg, args=(), exc_info=None,
    )


# ============================================================================
# get_logger / setup_logging
# ============================================================================

class TestGetLogger:
    def test_returns_logger(self):
        logger = get_logger("test_module")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "test_module"

    def test_consistent_logger(self):
        assert get_logger("same_module") is get_logger("same_module")

    def test_package_loggers_are_children(self):
        assert get_logger("altmirror.sync.crawler").parent.name.startswith("altmirror")


class TestSetupLogging:
    def test_idempotent(self, fresh_logging, tmp_path):
        setup_logging(log_file=tmp_path / "a.log")
        before = len(fresh_logging.handlers)
        setup_logging(log_file=tmp_path / "b.log")
        assert len(fresh_logging.handlers) == before == 2

    def test_file_handler_writes(self, fresh_logging, tmp_path):
        target = tmp_path / "logs" / "altmirror.log"
        setup_logging(log_file=target)
        logging.getLogger("altmirror.test").debug("saved to disk")
        for handler in fresh_logging.handlers:
            handler.flush()
        assert "saved to disk" in target.read_text(encoding="utf-8")

    def test_unwritable_log_file_is_tolerated(self, fresh_logging, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        setup_logging(log_file=blocker / "sub" / "altmirror.log")
        assert [type(h) for h in fresh_logging.handlers] == [SafeStreamHandler]

    def test_reset_allows_reconfiguration(self, fresh_logging, tmp_path):
        setup_logging(log_file=tmp_path / "a.log")
        reset_logging()
        assert fresh_logging.handlers == []
        setup_logging(log_file=tmp_path / "a.log")
        assert len(fresh_logging.handlers) == 2


class TestDefaultLogFile:
    def test_env_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ALTMIRROR_LOG_FILE", str(tmp_path / "x.log"))
        assert default_log_file() == tmp_path / "x.log"

    def test_under_data_dir(self, monkeypatch):
        monkeypatch.delenv("ALTMIRROR_LOG_FILE", raising=False)
        assert default_log_file() == log_utils.DATA_DIR / "logs" / "altmirror.log"


class TestLevelFromEnv:
    def test_default_without_env(self, monkeypatch):
        monkeypatch.delenv("ALTMIRROR_LOG_LEVEL", raising=False)
        assert _level_from_env(logging.INFO) == logging.INFO

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("ALTMIRROR_LOG_LEVEL", "debug")
        assert _level_from_env(logging.INFO) == logging.DEBUG

    def test_unknown_name_falls_back(self, monkeypatch):
        monkeypatch.setenv("ALTMIRROR_LOG_LEVEL", "chatty")
        assert _level_from_env(logging.WARNING) == logging.WARNING


# ============================================================================
# run_log
# ============================================================================

class TestRunLog:
    def test_captures_messages_inside_block(self, tmp_path):
        root = logging.getLogger("altmirror")
        before = list(root.handlers)
        with run_log("crawl", tmp_path) as path:
            logging.getLogger("altmirror.sync.crawler").info("combination done")
        logging.getLogger("altmirror.sync.crawler").info("after the run")

        assert path.parent == tmp_path / "logs" / "runs"
        assert path.name.startswith("crawl-")
        text = path.read_text(encoding="utf-8")
        assert "combination done" in text
        assert "after the run" not in text
        assert root.handlers == before

    def test_handler_removed_on_error(self, tmp_path):
        root = logging.getLogger("altmirror")
        before = list(root.handlers)
        with pytest.raises(RuntimeError):
            with run_log("targeted", tmp_path):
                raise RuntimeError("boom")
        assert root.handlers == before

    def test_unwritable_directory_yields_none(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        with run_log("crawl", blocker) as path:
            assert path is None


# ============================================================================
# SafeStreamHandler
# ============================================================================

class TestSafeStreamHandler:
    def test_emits_message(self):
        stream = io.StringIO()
        SafeStreamHandler(stream).emit(_record("Test message"))
        assert "Test message" in stream.getvalue()

    def test_unencodable_characters_escaped(self):
        raw = io.BytesIO()
        stream = io.TextIOWrapper(raw, encoding="ascii", errors="strict")
        SafeStreamHandler(stream).emit(_record("Carte étoile"))
        stream.flush()
        assert b"\\xe9" in raw.getvalue()
