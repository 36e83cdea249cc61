"""Unified logger for the whole project."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from msgbridge.config.settings import Settings, get_settings


LOG_FILE_NAME = "msgbridge.log"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 10
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _normalize_level(raw: str) -> int:
    candidate = str(raw or "INFO").strip().upper()
    return {
        "CRITICAL": logging.CRITICAL,
        "ERROR": logging.ERROR,
        "WARNING": logging.WARNING,
        "INFO": logging.INFO,
        "DEBUG": logging.DEBUG,
    }.get(candidate, logging.INFO)


def log_file_path(settings: Settings) -> Path | None:
    """Where the rotating log lives, or None when file logging is switched off."""
    log_dir = settings.log_dir.strip()
    if not log_dir:
        return None
    return Path(log_dir) / LOG_FILE_NAME


def _file_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler | None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8")
    except OSError:
        # 无法写文件时仅使用 stderr
        return None
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _build_logger(settings: Settings) -> logging.Logger:
    configured_logger = logging.getLogger("msgbridge")
    if configured_logger.handlers:
        return configured_logger

    resolved_level = _normalize_level(settings.log_level)
    configured_logger.setLevel(resolved_level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(resolved_level)
    stream_handler.setFormatter(formatter)
    configured_logger.addHandler(stream_handler)

    path = log_file_path(settings)
    if path is not None:
        file_handler = _file_handler(path, resolved_level, formatter)
        if file_handler is not None:
            configured_logger.addHandler(file_handler)

    configured_logger.propagate = False
    return configured_logger


logger = _build_logger(get_settings())


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under msgbridge namespace."""

    return logger.getChild(name)
