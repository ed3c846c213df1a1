"""Logging setup for the ``ai_rally`` logger."""

from __future__ import annotations

import contextvars
import json
import logging
import os
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from ai_rally.transcript import read_positive_int_env

USER_CONFIG_DIRNAME = "ai-rally"
LOG_DIR_ENV_VAR = "AI_RALLY_LOG_DIR"
LOG_MAX_BYTES_ENV_VAR = "AI_RALLY_LOG_MAX_BYTES"
LOG_BACKUPS_ENV_VAR = "AI_RALLY_LOG_BACKUPS"
DEFAULT_LOG_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_LOG_BACKUPS = 5

# ContextVar holding the rally identity ("owner/repo#123") for log lines.
rally_tag: contextvars.ContextVar[str] = contextvars.ContextVar("rally_tag", default="rally")


class _RallyFormatter(logging.Formatter):
    """Log formatter that injects the rally_tag ContextVar into each record."""

    def format(self, record: logging.LogRecord) -> str:
        record.rally_tag = rally_tag.get("rally")  # type: ignore[attr-defined]
        return super().format(record)


class _JsonFormatter(logging.Formatter):
    """Structured JSON formatter for the rally logfile."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "ts": datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "rally_tag": getattr(record, "rally_tag", rally_tag.get("rally")),
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"))


def default_user_config_dir() -> Path:
    """Resolve a cross-platform user config directory for rally state."""
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        return Path(xdg_config_home).expanduser() / USER_CONFIG_DIRNAME

    if os.name == "nt":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata).expanduser() / USER_CONFIG_DIRNAME
        return Path.home() / "AppData" / "Roaming" / USER_CONFIG_DIRNAME

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / USER_CONFIG_DIRNAME

    return Path.home() / ".config" / USER_CONFIG_DIRNAME


def _resolve_log_dir() -> Path:
    override = os.environ.get(LOG_DIR_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return default_user_config_dir() / "logs"


def configure_logging(verbose: bool = False) -> None:
    """Install console and structured rotating-file handlers on the ``ai_rally`` logger.

    Safe to call more than once. Per-event agent progress is logged at DEBUG
    and only reaches the console when ``verbose`` is set; the logfile always
    receives it.
    """
    logger = logging.getLogger("ai_rally")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    console_level = logging.DEBUG if verbose else logging.INFO

    stream_handler = next(
        (
            handler
            for handler in logger.handlers
            if getattr(handler, "_ai_rally_stream_handler", False)
        ),
        None,
    )
    if stream_handler is None:
        stream_handler = logging.StreamHandler()
        stream_handler._ai_rally_stream_handler = True  # type: ignore[attr-defined]
        stream_handler.setFormatter(
            _RallyFormatter(
                "%(asctime)s [%(rally_tag)s] %(message)s",
                "%H:%M:%S",
            )
        )
        logger.addHandler(stream_handler)
    stream_handler.setLevel(console_level)

    if not any(getattr(handler, "_ai_rally_file_handler", False) for handler in logger.handlers):
        log_dir = _resolve_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / "rally.jsonl",
            maxBytes=read_positive_int_env(LOG_MAX_BYTES_ENV_VAR, DEFAULT_LOG_MAX_BYTES, 1024),
            backupCount=read_positive_int_env(LOG_BACKUPS_ENV_VAR, DEFAULT_LOG_BACKUPS, 1),
            encoding="utf-8",
        )
        file_handler._ai_rally_file_handler = True  # type: ignore[attr-defined]
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(_JsonFormatter())
        logger.addHandler(file_handler)
