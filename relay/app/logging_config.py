"""Logging bootstrap for the relay service.

Everything goes to the console. With ``log_directory`` set, two daily-rotated
files are written as well:

* ``relay-runtime.log``: every record the relay and uvicorn emit.
* ``relay-session.log``: only session lifecycle records (state transitions,
  reinit scheduling, failures) from the supervisor and scheduler.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from pathlib import Path
from typing import Any, Dict, List

from .config import Settings

FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

SESSION_LOGGERS = ("app.supervisor", "app.reinit")
UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")
# Per-request noise from the gateway clients.
QUIET_LOGGERS = ("httpx", "httpcore", "websockets", "PIL")


def _level_name(level: str) -> str:
    name = str(level).upper()
    return name if isinstance(logging.getLevelName(name), int) else "INFO"


def _rotating_file(path: Path, level: str, retention_days: int) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.TimedRotatingFileHandler",
        "formatter": "relay",
        "level": level,
        "filename": str(path),
        "when": "midnight",
        "backupCount": max(int(retention_days), 1),
        "utc": True,
        "delay": True,
        "encoding": "utf-8",
    }


def build_logging_config(settings: Settings) -> Dict[str, Any]:
    level = _level_name(settings.log_level)
    handlers: Dict[str, Any] = {
        "console": {"class": "logging.StreamHandler", "formatter": "relay", "level": level},
    }
    root_handlers: List[str] = ["console"]
    loggers: Dict[str, Any] = {name: {"level": "WARNING"} for name in QUIET_LOGGERS}

    # uvicorn runs with log_config=None; its records reach our handlers through root.
    for name in UVICORN_LOGGERS:
        loggers[name] = {"handlers": [], "propagate": True}

    log_dir = settings.log_directory
    if log_dir is not None:
        log_dir = Path(log_dir).expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers["runtime_file"] = _rotating_file(log_dir / "relay-runtime.log", level, settings.log_retention_days)
        handlers["session_file"] = _rotating_file(log_dir / "relay-session.log", level, settings.log_retention_days)
        root_handlers.append("runtime_file")
        for name in SESSION_LOGGERS:
            loggers[name] = {"handlers": ["session_file"], "propagate": True}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"relay": {"format": FORMAT}},
        "handlers": handlers,
        "loggers": loggers,
        "root": {"level": level, "handlers": root_handlers},
    }


def configure_logging(settings: Settings) -> None:
    dictConfig(build_logging_config(settings))


__all__ = ["build_logging_config", "configure_logging"]
