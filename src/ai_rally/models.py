"""Pydantic models and enums for AI rally results and events."""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ai_rally.diff_utils import extract_changed_paths


class ReviewAction(StrEnum):
    """Reviewer verdict for one review turn."""

    APPROVE = "approve"
    REQUEST_CHANGES = "request_changes"
    COMMENT = "comment"


class CommentSeverity(StrEnum):
    """Severity attached to an inline review comment."""

    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"
    SUGGESTION = "suggestion"


class RevieweeStatus(StrEnum):
    """Outcome of one reviewee fix turn."""

    COMPLETED = "completed"
    NEEDS_CLARIFICATION = "needs_clarification"
    NEEDS_PERMISSION = "needs_permission"
    ERROR = "error"


class RallyState(StrEnum):
    """Rally lifecycle states."""

    INITIALIZING = "initializing"
    REVIEWER_REVIEWING = "reviewer_reviewing"
    REVIEWEE_FIX = "reviewee_fix"
    WAITING_FOR_CLARIFICATION = "waiting_for_clarification"
    WAITING_FOR_PERMISSION = "waiting_for_permission"
    COMPLETED = "completed"
    ERROR = "error"


class ClarificationPolicy(StrEnum):
    """Who answers a reviewee clarification question."""

    HUMAN = "human"
    REVIEWER = "reviewer"


class PermissionDeniedPolicy(StrEnum):
    """What happens to the rally after a permission request is denied."""

    ABORT = "abort"
    REREVIEW = "rereview"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class Context(_Frozen):
    """Per-rally input describing the pull request under review."""

    repo: str = Field(description="e.g. 'owner/repo'")
    pr_number: int = Field(ge=1)
    pr_title: str
    pr_body: str | None = None
    diff: str
    working_dir: str | None = None

    @property
    def changed_files(self) -> list[str]:
        return extract_changed_paths(self.diff)


class ReviewComment(_Frozen):
    path: str
    line: int = Field(ge=0)
    body: str
    severity: CommentSeverity = CommentSeverity.MINOR

    @field_validator("severity", mode="before")
    @classmethod
    def _fallback_severity(cls, value: object) -> object:
        # New backend vocabulary degrades instead of failing the whole review.
        if isinstance(value, CommentSeverity):
            return value
        if isinstance(value, str) and value in CommentSeverity._value2member_map_:
            return value
        return CommentSeverity.MINOR


class ReviewerOutput(_Frozen):
    """Normalized result of a reviewer turn."""

    action: ReviewAction
    summary: str
    comments: list[ReviewComment] = Field(default_factory=list)
    blocking_issues: list[str] = Field(default_factory=list)


class PermissionRequest(_Frozen):
    action: str
    reason: str


class RevieweeOutput(_Frozen):
    """Normalized result of a reviewee turn.

    ``question`` is carried only by ``needs_clarification`` results and
    ``permission_request`` only by ``needs_permission`` results.
    """

    status: RevieweeStatus
    summary: str
    files_modified: list[str] = Field(default_factory=list)
    question: str | None = None
    permission_request: PermissionRequest | None = None
    error_details: str | None = None

    @model_validator(mode="after")
    def _check_status_payload(self) -> RevieweeOutput:
        asks_question = bool(self.question)
        if self.status == RevieweeStatus.NEEDS_CLARIFICATION and not asks_question:
            raise ValueError("needs_clarification result requires a non-empty question")
        if asks_question and self.status != RevieweeStatus.NEEDS_CLARIFICATION:
            raise ValueError(
                f"question is only allowed with needs_clarification, got {self.status}"
            )
        has_request = self.permission_request is not None
        if self.status == RevieweeStatus.NEEDS_PERMISSION and not has_request:
            raise ValueError("needs_permission result requires a permission_request")
        if has_request and self.status != RevieweeStatus.NEEDS_PERMISSION:
            raise ValueError(
                f"permission_request is only allowed with needs_permission, got {self.status}"
            )
        return self


# -- Rally events --


class IterationStarted(_Frozen):
    kind: Literal["iteration_started"] = "iteration_started"
    iteration: int


class StateChanged(_Frozen):
    kind: Literal["state_changed"] = "state_changed"
    old: RallyState
    new: RallyState


class ReviewCompleted(_Frozen):
    kind: Literal["review_completed"] = "review_completed"
    review: ReviewerOutput


class FixCompleted(_Frozen):
    kind: Literal["fix_completed"] = "fix_completed"
    fix: RevieweeOutput


class ClarificationNeeded(_Frozen):
    kind: Literal["clarification_needed"] = "clarification_needed"
    question: str


class PermissionNeeded(_Frozen):
    kind: Literal["permission_needed"] = "permission_needed"
    action: str
    reason: str


class Approved(_Frozen):
    kind: Literal["approved"] = "approved"
    summary: str


class RallyFailed(_Frozen):
    kind: Literal["error"] = "error"
    message: str


class AgentThinking(_Frozen):
    kind: Literal["agent_thinking"] = "agent_thinking"
    text: str


class AgentToolUse(_Frozen):
    kind: Literal["agent_tool_use"] = "agent_tool_use"
    tool: str
    detail: str


class AgentToolResult(_Frozen):
    kind: Literal["agent_tool_result"] = "agent_tool_result"
    tool: str
    result: str


class AgentText(_Frozen):
    kind: Literal["agent_text"] = "agent_text"
    text: str


RallyEvent = Annotated[
    IterationStarted
    | StateChanged
    | ReviewCompleted
    | FixCompleted
    | ClarificationNeeded
    | PermissionNeeded
    | Approved
    | RallyFailed
    | AgentThinking
    | AgentToolUse
    | AgentToolResult
    | AgentText,
    Field(discriminator="kind"),
]

PROGRESS_EVENT_TYPES = (AgentThinking, AgentToolUse, AgentToolResult, AgentText)
