"""Rally runtime configuration schema."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from ai_rally.adapter import available_adapters
from ai_rally.models import ClarificationPolicy, PermissionDeniedPolicy

logger = logging.getLogger("ai_rally")

CONFIG_SECTION = "ai_rally"
MAX_ITERATIONS_ENV_VAR = "AI_RALLY_MAX_ITERATIONS"
BACKEND_ENV_VAR = "AI_RALLY_BACKEND"


class RallyConfig(BaseModel):
    """Validated rally configuration."""

    backend: str = Field(default="claude")
    max_iterations: int = Field(default=10, ge=1, le=100)
    call_timeout_seconds: float | None = Field(default=None, ge=1.0)
    clarification_policy: ClarificationPolicy = ClarificationPolicy.HUMAN
    permission_denied_policy: PermissionDeniedPolicy = PermissionDeniedPolicy.ABORT
    event_queue_size: int = Field(default=256, ge=1)
    event_history_size: int = Field(default=1024, ge=1)
    transcript_dir: str | None = None
    claude_command: str = Field(default="claude")
    codex_command: str = Field(default="codex")

    @field_validator("backend")
    @classmethod
    def _validate_backend(cls, value: str) -> str:
        known = available_adapters()
        if value not in known:
            allowed = ", ".join(known)
            raise ValueError(f"Unsupported backend: {value!r}. Allowed: {allowed}")
        return value

    @field_validator("claude_command", "codex_command")
    @classmethod
    def _validate_command(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("command must not be empty")
        return value


def _apply_env_overrides(section: dict) -> dict:
    merged = dict(section)
    backend = os.environ.get(BACKEND_ENV_VAR)
    if backend:
        merged["backend"] = backend
    raw = os.environ.get(MAX_ITERATIONS_ENV_VAR)
    if raw is not None:
        try:
            merged["max_iterations"] = int(raw)
        except ValueError:
            logger.warning("Invalid %s=%r; ignoring", MAX_ITERATIONS_ENV_VAR, raw)
    return merged


def load_rally_config(config_path: str | Path) -> RallyConfig:
    """Load rally config from the ``ai_rally`` section of a JSON file.

    Environment overrides (``AI_RALLY_BACKEND``, ``AI_RALLY_MAX_ITERATIONS``)
    are applied on top of the file values.

    Returns:
    - RallyConfig with defaults when the section is missing or null.
    - RallyConfig built from the section otherwise.
    Raises:
    - FileNotFoundError if config file is missing.
    - pydantic ValidationError on invalid values.
    - ValueError when the section is not an object.
    - json.JSONDecodeError for malformed JSON.
    """

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(path)

    payload = json.loads(path.read_text(encoding="utf-8"))
    section = payload.get(CONFIG_SECTION)
    if section is None:
        section = {}
    if not isinstance(section, dict):
        raise ValueError(f"{CONFIG_SECTION} must be an object when provided")

    return RallyConfig.model_validate(_apply_env_overrides(section))
