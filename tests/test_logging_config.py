"""Tests for rally logfile configuration."""

from __future__ import annotations

import io
import json
import logging
from pathlib import Path

from ai_rally import logging_config


def _reset_rally_logger_handlers() -> None:
    logger = logging.getLogger("ai_rally")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def _get_stream_handler() -> logging.Handler:
    logger = logging.getLogger("ai_rally")
    for handler in logger.handlers:
        if getattr(handler, "_ai_rally_stream_handler", False):
            return handler
    raise AssertionError("Missing rally stream handler")


def _log_path(root: Path) -> Path:
    return root / "xdg" / "ai-rally" / "logs" / "rally.jsonl"


def test_configure_logging_writes_structured_log(monkeypatch, tmp_path: Path) -> None:
    _reset_rally_logger_handlers()
    monkeypatch.delenv("AI_RALLY_LOG_DIR", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))

    logging_config.configure_logging()
    logger = logging.getLogger("ai_rally")
    token = logging_config.rally_tag.set("owner/repo#7")
    try:
        logger.info("rally log entry")
    finally:
        logging_config.rally_tag.reset(token)
        _reset_rally_logger_handlers()

    log_path = _log_path(tmp_path)
    assert log_path.exists()
    lines = [line for line in log_path.read_text(encoding="utf-8").splitlines() if line.strip()]
    payload = json.loads(lines[-1])
    assert payload["message"] == "rally log entry"
    assert payload["rally_tag"] == "owner/repo#7"
    assert payload["level"] == "info"


def test_configure_logging_honours_log_dir_override(monkeypatch, tmp_path: Path) -> None:
    _reset_rally_logger_handlers()
    monkeypatch.setenv("AI_RALLY_LOG_DIR", str(tmp_path / "custom"))

    logging_config.configure_logging()
    logging.getLogger("ai_rally").info("override entry")
    _reset_rally_logger_handlers()

    assert (tmp_path / "custom" / "rally.jsonl").exists()


def test_configure_logging_rotates(monkeypatch, tmp_path: Path) -> None:
    _reset_rally_logger_handlers()
    monkeypatch.delenv("AI_RALLY_LOG_DIR", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setenv("AI_RALLY_LOG_MAX_BYTES", "1024")
    monkeypatch.setenv("AI_RALLY_LOG_BACKUPS", "2")

    logging_config.configure_logging()
    logger = logging.getLogger("ai_rally")
    for idx in range(3):
        logger.info("x" * 900 + f"-{idx}")
    _reset_rally_logger_handlers()

    base = _log_path(tmp_path)
    assert base.exists()
    assert Path(f"{base}.1").exists()


def test_progress_hidden_on_console_but_kept_in_file(monkeypatch, tmp_path: Path) -> None:
    _reset_rally_logger_handlers()
    monkeypatch.delenv("AI_RALLY_LOG_DIR", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    logging_config.configure_logging(verbose=False)
    logger = logging.getLogger("ai_rally")
    stream = io.StringIO()
    _get_stream_handler().setStream(stream)

    noisy = 'codex.progress -> {"kind":"agent_thinking","text":"Processing..."}'
    useful = "rally.state -> reviewer_reviewing => reviewee_fix"
    logger.debug(noisy)
    logger.info(useful)

    console_text = stream.getvalue()
    assert noisy not in console_text
    assert useful in console_text

    _reset_rally_logger_handlers()
    lines = _log_path(tmp_path).read_text(encoding="utf-8").splitlines()
    messages = [json.loads(line)["message"] for line in lines if line.strip()]
    assert noisy in messages
    assert useful in messages


def test_progress_visible_on_console_with_verbose(monkeypatch, tmp_path: Path) -> None:
    _reset_rally_logger_handlers()
    monkeypatch.delenv("AI_RALLY_LOG_DIR", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    logging_config.configure_logging(verbose=True)
    logger = logging.getLogger("ai_rally")
    stream = io.StringIO()
    _get_stream_handler().setStream(stream)

    logger.debug("codex.progress -> visible")

    assert "codex.progress -> visible" in stream.getvalue()
    _reset_rally_logger_handlers()


def test_configure_logging_is_idempotent(monkeypatch, tmp_path: Path) -> None:
    _reset_rally_logger_handlers()
    monkeypatch.delenv("AI_RALLY_LOG_DIR", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))

    logging_config.configure_logging()
    logging_config.configure_logging(verbose=True)

    handlers = logging.getLogger("ai_rally").handlers
    assert len(handlers) == 2
    assert _get_stream_handler().level == logging.DEBUG
    _reset_rally_logger_handlers()
