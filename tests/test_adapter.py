"""Tests for the adapter contract, registry and result decoding."""

from __future__ import annotations

import pytest

from ai_rally.adapter import (
    _REGISTRY,
    AgentAdapter,
    Role,
    SessionSlots,
    available_adapters,
    create_adapter,
    decode_reviewee_output,
    decode_reviewer_output,
    register_adapter,
)
from ai_rally.claude_adapter import ClaudeAdapter
from ai_rally.codex_adapter import CodexAdapter
from ai_rally.errors import NoActiveSessionError, OutputParseError, UnknownVariantError
from ai_rally.models import CommentSeverity, ReviewAction, RevieweeStatus
from conftest import ScriptedAdapter, reviewer_payload


class TestRegistry:
    def test_builtin_backends_available(self) -> None:
        assert available_adapters() == ["claude", "codex"]

    def test_create_builtin_adapters(self) -> None:
        assert isinstance(create_adapter("claude"), ClaudeAdapter)
        assert isinstance(create_adapter("codex"), CodexAdapter)

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="Unknown adapter: 'gemini'"):
            create_adapter("gemini")

    def test_register_custom_backend(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("ai_rally.adapter._REGISTRY", dict(_REGISTRY))
        register_adapter("scripted", lambda config: ScriptedAdapter())
        assert "scripted" in available_adapters()
        assert isinstance(create_adapter("scripted", None), ScriptedAdapter)

    def test_builtins_satisfy_protocol(self) -> None:
        assert isinstance(ClaudeAdapter(), AgentAdapter)
        assert isinstance(CodexAdapter(), AgentAdapter)
        assert isinstance(ScriptedAdapter(), AgentAdapter)


class TestSessionSlots:
    def test_require_before_bind(self) -> None:
        slots = SessionSlots()
        with pytest.raises(NoActiveSessionError, match="No reviewer session to continue"):
            slots.require(Role.REVIEWER)

    def test_roles_are_independent(self) -> None:
        slots = SessionSlots()
        slots.bind(Role.REVIEWER, "sess-r", "/work")
        assert slots.require(Role.REVIEWER).session_id == "sess-r"
        assert slots.get(Role.REVIEWEE) is None


class TestDecoding:
    def test_decode_reviewer_dict(self) -> None:
        review = decode_reviewer_output(reviewer_payload("request_changes", "Fix it"))
        assert review.action == ReviewAction.REQUEST_CHANGES

    def test_decode_reviewer_json_text_in_code_fence(self) -> None:
        text = '```json\n{"action": "approve", "summary": "LGTM"}\n```'
        review = decode_reviewer_output(text)
        assert review.action == ReviewAction.APPROVE
        assert review.summary == "LGTM"

    def test_list_severity_degrades_instead_of_crashing(self) -> None:
        comment = {"path": "a.py", "line": 2, "body": "x", "severity": ["major"]}
        review = decode_reviewer_output(
            reviewer_payload("request_changes", "Fix it", comments=[comment])
        )
        assert review.comments[0].severity == CommentSeverity.MINOR

    def test_unknown_action_is_unknown_variant(self) -> None:
        with pytest.raises(UnknownVariantError) as excinfo:
            decode_reviewer_output(reviewer_payload("merge"))
        assert excinfo.value.field == "action"
        assert excinfo.value.value == "merge"

    def test_unknown_status_is_unknown_variant(self) -> None:
        with pytest.raises(UnknownVariantError, match="Unknown status: 'paused'"):
            decode_reviewee_output({"status": "paused", "summary": "x"})

    def test_missing_field_is_parse_error(self) -> None:
        with pytest.raises(OutputParseError) as excinfo:
            decode_reviewer_output({"action": "approve"})
        assert not isinstance(excinfo.value, UnknownVariantError)

    def test_invalid_json_text(self) -> None:
        with pytest.raises(OutputParseError, match="Failed to parse reviewee output"):
            decode_reviewee_output("not json")

    def test_status_payload_mismatch_is_parse_error(self) -> None:
        with pytest.raises(OutputParseError):
            decode_reviewee_output({"status": "needs_permission", "summary": "may I"})

    def test_decode_reviewee_permission(self) -> None:
        fix = decode_reviewee_output(
            {
                "status": "needs_permission",
                "summary": "Need a dependency",
                "files_modified": [],
                "permission_request": {"action": "run npm install", "reason": "new dep"},
            }
        )
        assert fix.status == RevieweeStatus.NEEDS_PERMISSION
        assert fix.permission_request is not None
        assert fix.permission_request.action == "run npm install"
