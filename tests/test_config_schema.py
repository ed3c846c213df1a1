"""Tests for the rally configuration schema."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from ai_rally.adapter import create_adapter
from ai_rally.claude_adapter import ClaudeAdapter
from ai_rally.codex_adapter import CodexAdapter
from ai_rally.config_schema import RallyConfig, load_rally_config
from ai_rally.models import ClarificationPolicy, PermissionDeniedPolicy


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("AI_RALLY_BACKEND", raising=False)
    monkeypatch.delenv("AI_RALLY_MAX_ITERATIONS", raising=False)


def test_default_config() -> None:
    config = RallyConfig()
    assert config.backend == "claude"
    assert config.max_iterations == 10
    assert config.call_timeout_seconds is None
    assert config.clarification_policy == ClarificationPolicy.HUMAN
    assert config.permission_denied_policy == PermissionDeniedPolicy.ABORT
    assert config.event_queue_size == 256
    assert config.event_history_size == 1024


def test_invalid_backend_rejected() -> None:
    with pytest.raises(ValidationError, match="Unsupported backend"):
        RallyConfig(backend="gemini")


def test_max_iterations_bounds() -> None:
    with pytest.raises(ValidationError):
        RallyConfig(max_iterations=0)
    with pytest.raises(ValidationError):
        RallyConfig(max_iterations=101)


def test_timeout_minimum() -> None:
    with pytest.raises(ValidationError):
        RallyConfig(call_timeout_seconds=0.5)


def test_blank_command_rejected() -> None:
    with pytest.raises(ValidationError, match="command must not be empty"):
        RallyConfig(codex_command="  ")


def test_load_rally_config_from_file(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "ai_rally": {
                    "backend": "codex",
                    "max_iterations": 3,
                    "permission_denied_policy": "rereview",
                    "transcript_dir": str(tmp_path / "transcripts"),
                }
            }
        ),
        encoding="utf-8",
    )
    loaded = load_rally_config(config_path)
    assert loaded.backend == "codex"
    assert loaded.max_iterations == 3
    assert loaded.permission_denied_policy == PermissionDeniedPolicy.REREVIEW
    assert loaded.transcript_dir == str(tmp_path / "transcripts")


def test_load_rally_config_missing_section_uses_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"other": {}}), encoding="utf-8")
    assert load_rally_config(config_path) == RallyConfig()

    config_path.write_text(json.dumps({"ai_rally": None}), encoding="utf-8")
    assert load_rally_config(config_path) == RallyConfig()


def test_load_rally_config_rejects_non_object_section(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"ai_rally": ["codex"]}), encoding="utf-8")
    with pytest.raises(ValueError, match="must be an object"):
        load_rally_config(config_path)


def test_load_rally_config_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_rally_config(tmp_path / "missing.json")


def test_env_overrides_file_values(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps({"ai_rally": {"backend": "claude", "max_iterations": 3}}),
        encoding="utf-8",
    )
    monkeypatch.setenv("AI_RALLY_BACKEND", "codex")
    monkeypatch.setenv("AI_RALLY_MAX_ITERATIONS", "7")
    loaded = load_rally_config(config_path)
    assert loaded.backend == "codex"
    assert loaded.max_iterations == 7


def test_invalid_env_iterations_ignored(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"ai_rally": {"max_iterations": 4}}), encoding="utf-8")
    monkeypatch.setenv("AI_RALLY_MAX_ITERATIONS", "many")
    assert load_rally_config(config_path).max_iterations == 4


def test_create_adapter_uses_config_commands(tmp_path: Path) -> None:
    config = RallyConfig(
        backend="codex",
        codex_command="/opt/bin/codex",
        call_timeout_seconds=30,
        transcript_dir=str(tmp_path),
    )
    adapter = create_adapter("codex", config)
    assert isinstance(adapter, CodexAdapter)
    assert adapter.command == "/opt/bin/codex"
    assert adapter.timeout == 30
    assert adapter.transcript_dir == str(tmp_path)

    assert isinstance(create_adapter("claude"), ClaudeAdapter)
