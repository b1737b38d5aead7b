"""Logging for altmirror.

Every module asks for its logger through :func:`get_logger`; the first call
wires the ``altmirror`` namespace to the console and to a rolling log file
under ``<data dir>/logs``.  Crawls additionally get a log of their own via
:func:`run_log`, so a long crawl split across invocations leaves one file
per invocation next to the shared log.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterator, Optional

from ..config.settings import DATA_DIR

NAMESPACE = "altmirror"
LOG_FORMAT = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 3

_CONFIGURED = False


def default_log_file() -> Path:
    override = os.environ.get("ALTMIRROR_LOG_FILE", "").strip()
    if override:
        return Path(override)
    return DATA_DIR / "logs" / "altmirror.log"


class SafeStreamHandler(logging.StreamHandler):
    """Console handler that escapes card names the terminal cannot encode."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            try:
                self.stream.write(msg + self.terminator)
            except UnicodeEncodeError:
                encoding = getattr(self.stream, "encoding", None) or "utf-8"
                escaped = msg.encode(encoding, errors="backslashreplace").decode(encoding)
                self.stream.write(escaped + self.terminator)
            self.flush()
        except Exception:
            self.handleError(record)


def _level_from_env(default: int) -> int:
    name = os.environ.get("ALTMIRROR_LOG_LEVEL", "").strip().upper()
    level = logging.getLevelName(name) if name else default
    return level if isinstance(level, int) else default


def _formatter() -> logging.Formatter:
    return logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)


def setup_logging(level: int = logging.INFO, log_file: Optional[Path] = None) -> None:
    """Attach the console and shared file handlers once per process.

    ``ALTMIRROR_LOG_LEVEL`` overrides the console level and
    ``ALTMIRROR_LOG_FILE`` the file location.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return
    _CONFIGURED = True

    root = logging.getLogger(NAMESPACE)
    root.setLevel(logging.DEBUG)

    console = SafeStreamHandler(sys.stdout)
    console.setLevel(_level_from_env(level))
    console.setFormatter(_formatter())
    root.addHandler(console)

    target = Path(log_file) if log_file else default_log_file()
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            target, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8", delay=True,
        )
    except OSError as exc:
        root.warning("File logging disabled (%s): %s", target, exc)
        return
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(_formatter())
    root.addHandler(handler)


def reset_logging() -> None:
    """Detach and close every handler so the next ``setup_logging`` starts over."""
    global _CONFIGURED
    root = logging.getLogger(NAMESPACE)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    _CONFIGURED = False


@contextmanager
def run_log(name: str, directory: Optional[Path] = None) -> Iterator[Optional[Path]]:
    """Copy everything logged inside the block to ``logs/runs/<name>-<stamp>.log``.

    Yields the file path, or None when the directory cannot be created.
    """
    setup_logging()
    base = Path(directory) if directory else DATA_DIR
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    path = base / "logs" / "runs" / f"{name}-{stamp}.log"
    root = logging.getLogger(NAMESPACE)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        root.warning("Run log disabled (%s): %s", path, exc)
        yield None
        return

    handler = logging.FileHandler(path, encoding="utf-8", delay=True)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(_formatter())
    root.addHandler(handler)
    root.info("Run log: %s", path)
    try:
        yield path
    finally:
        root.removeHandler(handler)
        handler.close()


def get_logger(name: str) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name)
