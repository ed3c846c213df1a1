"""Decoding of ``codex exec --json`` event lines.

Every stdout line is one JSON object tagged by ``type``; item events carry an
``item`` tagged by ``item_type``. Lines that do not parse, or carry a tag this
module does not know, decode to ``UnknownEvent`` / ``UnknownItem`` so newer
CLI versions never break a run.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator


class _Decoded(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


# -- Items --


class CommandItem(_Decoded):
    item_type: Literal["command"] = "command"
    command: str
    output: str | None = None


class MessageItem(_Decoded):
    item_type: Literal["message"] = "message"
    content: str


class FileChangeItem(_Decoded):
    item_type: Literal["file_change"] = "file_change"
    path: str
    diff: str | None = None


class UnknownItem(_Decoded):
    item_type: str | None = None


CodexItem = CommandItem | MessageItem | FileChangeItem | UnknownItem

_ITEM_MODELS: dict[str, type[_Decoded]] = {
    "command": CommandItem,
    "message": MessageItem,
    "file_change": FileChangeItem,
}


# -- Events --


class ThreadStarted(_Decoded):
    type: Literal["thread.started"] = "thread.started"
    thread_id: str


class TurnStarted(_Decoded):
    type: Literal["turn.started"] = "turn.started"
    turn_id: str | None = None


class TurnCompleted(_Decoded):
    type: Literal["turn.completed"] = "turn.completed"
    turn_id: str | None = None
    result: Any = None


class TurnFailed(_Decoded):
    type: Literal["turn.failed"] = "turn.failed"
    error: str = "unknown error"

    @field_validator("error", mode="before")
    @classmethod
    def _flatten_error(cls, value: object) -> object:
        # Some CLI versions nest the reason as {"message": ...}.
        if isinstance(value, dict) and "message" in value:
            return str(value["message"])
        if value is None:
            return "unknown error"
        if not isinstance(value, str):
            return json.dumps(value, separators=(",", ":"), default=str)
        return value


class ItemEvent(_Decoded):
    type: Literal["item.started", "item.updated", "item.completed"]
    item: CommandItem | MessageItem | FileChangeItem | UnknownItem

    @property
    def completed(self) -> bool:
        return self.type == "item.completed"


class UnknownEvent(_Decoded):
    type: str | None = None


CodexEvent = ThreadStarted | TurnStarted | TurnCompleted | TurnFailed | ItemEvent | UnknownEvent

_EVENT_MODELS: dict[str, type[_Decoded]] = {
    "thread.started": ThreadStarted,
    "turn.started": TurnStarted,
    "turn.completed": TurnCompleted,
    "turn.failed": TurnFailed,
}
_ITEM_EVENT_TYPES = {"item.started", "item.updated", "item.completed"}


def parse_item(raw: object) -> CodexItem:
    if not isinstance(raw, dict):
        return UnknownItem()
    item_type = raw.get("item_type")
    model = _ITEM_MODELS.get(item_type) if isinstance(item_type, str) else None
    if model is None:
        return UnknownItem(item_type=item_type if isinstance(item_type, str) else None)
    try:
        return model.model_validate(raw)  # type: ignore[return-value]
    except ValidationError:
        return UnknownItem(item_type=item_type)


def parse_event(line: str) -> CodexEvent:
    """Decode one stdout line; never raises."""
    try:
        payload = json.loads(line)
    except json.JSONDecodeError:
        return UnknownEvent()
    if not isinstance(payload, dict):
        return UnknownEvent()

    event_type = payload.get("type")
    if not isinstance(event_type, str):
        return UnknownEvent()
    if event_type in _ITEM_EVENT_TYPES:
        return ItemEvent(type=event_type, item=parse_item(payload.get("item")))

    model = _EVENT_MODELS.get(event_type)
    if model is None:
        return UnknownEvent(type=event_type)
    try:
        return model.model_validate(payload)  # type: ignore[return-value]
    except ValidationError:
        if model is TurnFailed:
            return TurnFailed()
        return UnknownEvent(type=event_type)
