"""Agent adapter contract, backend registry, and shared result decoding."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel, ValidationError

from ai_rally.errors import NoActiveSessionError, OutputParseError, UnknownVariantError
from ai_rally.models import Context, RevieweeOutput, ReviewerOutput

if TYPE_CHECKING:
    from ai_rally.config_schema import RallyConfig
    from ai_rally.notifications import EventChannel

logger = logging.getLogger("ai_rally")

_ModelT = TypeVar("_ModelT", bound=BaseModel)


class Role(StrEnum):
    REVIEWER = "reviewer"
    REVIEWEE = "reviewee"


@runtime_checkable
class AgentAdapter(Protocol):
    """What the orchestrator needs from an agent backend.

    Every call spawns the backend CLI, waits for it to exit, and returns the
    normalized result or raises an ``AdapterError``. ``continue_*`` resumes
    the session opened by the matching ``run_*`` call.
    """

    @property
    def name(self) -> str: ...

    def attach_event_sink(self, channel: EventChannel) -> None: ...

    async def run_reviewer(self, prompt: str, context: Context) -> ReviewerOutput: ...

    async def run_reviewee(self, prompt: str, context: Context) -> RevieweeOutput: ...

    async def continue_reviewer(self, message: str) -> ReviewerOutput: ...

    async def continue_reviewee(self, message: str) -> RevieweeOutput: ...


@dataclass
class Session:
    session_id: str
    working_dir: str | None = None


@dataclass
class SessionSlots:
    """One resumable session per role, owned by a single adapter instance."""

    _sessions: dict[Role, Session] = field(default_factory=dict)

    def bind(self, role: Role, session_id: str, working_dir: str | None) -> None:
        self._sessions[role] = Session(session_id=session_id, working_dir=working_dir)

    def get(self, role: Role) -> Session | None:
        return self._sessions.get(role)

    def require(self, role: Role) -> Session:
        session = self._sessions.get(role)
        if session is None:
            raise NoActiveSessionError(role.value)
        return session


# -- Registry --

AdapterFactory = Callable[["RallyConfig"], AgentAdapter]
_REGISTRY: dict[str, AdapterFactory] = {}


def register_adapter(name: str, factory: AdapterFactory) -> None:
    """Register a backend under ``name``; later registrations replace earlier ones."""
    _REGISTRY[name] = factory


def _ensure_builtin_adapters() -> None:
    # Local imports avoid a cycle: the adapters import this module.
    from ai_rally.claude_adapter import ClaudeAdapter
    from ai_rally.codex_adapter import CodexAdapter

    _REGISTRY.setdefault("claude", ClaudeAdapter.from_config)
    _REGISTRY.setdefault("codex", CodexAdapter.from_config)


def available_adapters() -> list[str]:
    _ensure_builtin_adapters()
    return sorted(_REGISTRY)


def create_adapter(name: str, config: RallyConfig | None = None) -> AgentAdapter:
    """Instantiate the backend registered under ``name``."""
    _ensure_builtin_adapters()
    factory = _REGISTRY.get(name)
    if factory is None:
        allowed = ", ".join(sorted(_REGISTRY))
        raise ValueError(f"Unknown adapter: {name!r}. Available: {allowed}")
    if config is None:
        from ai_rally.config_schema import RallyConfig

        config = RallyConfig(backend=name)
    return factory(config)


# -- Result decoding --


def _strip_code_fence(text: str) -> str:
    # Agents sometimes wrap the JSON answer in a markdown fence.
    text = text.strip()
    if not text.startswith("```"):
        return text
    newline = text.find("\n")
    closing = text.rfind("```")
    if newline == -1 or closing <= newline:
        return text
    return text[newline + 1:closing].strip()


def _decode(model: type[_ModelT], payload: object, closed_field: str, label: str) -> _ModelT:
    if isinstance(payload, str):
        try:
            payload = json.loads(_strip_code_fence(payload))
        except json.JSONDecodeError as exc:
            raise OutputParseError(f"Failed to parse {label} output: {exc}") from exc
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        for error in exc.errors():
            if error["loc"] == (closed_field,) and error["type"] == "enum":
                raise UnknownVariantError(closed_field, error["input"]) from exc
        raise OutputParseError(f"Failed to parse {label} output: {exc}") from exc


def decode_reviewer_output(payload: object) -> ReviewerOutput:
    """Validate a reviewer result payload (dict or JSON text)."""
    return _decode(ReviewerOutput, payload, "action", "reviewer")


def decode_reviewee_output(payload: object) -> RevieweeOutput:
    """Validate a reviewee result payload (dict or JSON text)."""
    return _decode(RevieweeOutput, payload, "status", "reviewee")
