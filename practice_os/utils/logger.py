"""Structured logging for the back office.

One ``practice_os`` logger for the whole process:
  - console at ``LOG_LEVEL`` (INFO by default)
  - a fresh timestamped DEBUG file per server start
  - ``practice_os.log`` mirroring the current run for ``tail -f``

Run files beyond the newest 10 are pruned at startup.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from practice_os.config import settings

LOGGER_NAME = "practice_os"
_RUN_FILE_GLOB = f"{LOGGER_NAME}_*.log"
_MAX_RUN_FILES = 10

_FORMAT = logging.Formatter(
    "[%(asctime)s] %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _file_handler(path: Path, mode: str = "a") -> logging.FileHandler:
    handler = logging.FileHandler(path, mode=mode, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(_FORMAT)
    return handler


def _prune_run_files(logs_dir: Path) -> int:
    """Drop the oldest run files; returns how many were removed."""
    run_files = sorted(logs_dir.glob(_RUN_FILE_GLOB), key=lambda p: p.stat().st_mtime)
    removed = 0
    for old in run_files[:-_MAX_RUN_FILES]:
        try:
            old.unlink()
            removed += 1
        except OSError:
            continue
    return removed


def _setup_logger() -> logging.Logger:
    log = logging.getLogger(LOGGER_NAME)
    log.setLevel(logging.DEBUG)
    if log.handlers:
        return log

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.getLevelName(settings.LOG_LEVEL.upper()))
    console.setFormatter(_FORMAT)
    log.addHandler(console)

    logs_dir = settings.LOGS_DIR
    logs_dir.mkdir(parents=True, exist_ok=True)
    run_log = logs_dir / f"{LOGGER_NAME}_{datetime.now():%Y-%m-%d_%H-%M-%S}.log"
    log.addHandler(_file_handler(run_log))

    try:
        log.addHandler(_file_handler(logs_dir / f"{LOGGER_NAME}.log", mode="w"))
    except OSError as exc:
        log.warning("Could not open %s.log: %s", LOGGER_NAME, exc)

    removed = _prune_run_files(logs_dir)
    log.info("Log started: %s (pruned %d old run files)", run_log.name, removed)
    return log


logger = _setup_logger()
