"""Shared test fixtures and fakes for the AI rally."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest

from ai_rally.models import (
    CommentSeverity,
    Context,
    PermissionRequest,
    ReviewAction,
    ReviewComment,
    RevieweeOutput,
    RevieweeStatus,
    ReviewerOutput,
)
from ai_rally.notifications import EventChannel


class FakeStream:
    """Stands in for asyncio.StreamReader; optionally hangs until closed."""

    def __init__(self, lines: list[str] | None = None, *, hang: bool = False) -> None:
        self._lines = [f"{line}\n".encode() for line in lines or []]
        self._hang = hang
        self._eof = asyncio.Event()

    async def readline(self) -> bytes:
        if self._lines:
            await asyncio.sleep(0)
            return self._lines.pop(0)
        if self._hang:
            await self._eof.wait()
        return b""

    def close(self) -> None:
        self._eof.set()


class FakeProcess:
    def __init__(
        self,
        *,
        stdout_lines: list[str] | None = None,
        stderr_lines: list[str] | None = None,
        exit_code: int = 0,
        hang: bool = False,
        pid: int = 4321,
    ) -> None:
        self.pid = pid
        self.returncode: int | None = None
        self.stdout = FakeStream(stdout_lines, hang=hang)
        self.stderr = FakeStream(stderr_lines, hang=hang)
        self._exit_code = exit_code
        self.terminated = False
        self.killed = False

    def terminate(self) -> None:
        self.terminated = True
        self.returncode = -15
        self.stdout.close()
        self.stderr.close()

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9
        self.stdout.close()
        self.stderr.close()

    async def wait(self) -> int:
        if self.returncode is None:
            self.returncode = self._exit_code
        return self.returncode


@pytest.fixture
def spawn(monkeypatch: pytest.MonkeyPatch) -> Callable[..., AsyncMock]:
    """Patch subprocess creation to hand out the given fake processes in order."""

    def _install(*processes: FakeProcess) -> AsyncMock:
        mock = AsyncMock(side_effect=list(processes))
        monkeypatch.setattr("ai_rally.process.asyncio.create_subprocess_exec", mock)
        return mock

    return _install


@pytest.fixture
def context(tmp_path) -> Context:
    return Context(
        repo="owner/repo",
        pr_number=123,
        pr_title="Add feature",
        pr_body="This adds a new feature",
        diff="--- a/src/lib.rs\n+++ b/src/lib.rs\n@@ -1 +1,2 @@\n fn a() {}\n+fn b() {}\n",
        working_dir=str(tmp_path),
    )


@pytest.fixture
def channel() -> EventChannel:
    return EventChannel()


def reviewer_payload(
    action: str = "approve",
    summary: str = "LGTM",
    *,
    comments: list[dict] | None = None,
    blocking_issues: list[str] | None = None,
) -> dict:
    return {
        "action": action,
        "summary": summary,
        "comments": comments or [],
        "blocking_issues": blocking_issues or [],
    }


def envelope_line(session_id: str, result: object | None) -> str:
    payload: dict[str, object] = {"session_id": session_id, "cost_usd": 0.01, "duration_ms": 900}
    if result is not None:
        payload["result"] = result
    return json.dumps(payload)


def review(
    action: ReviewAction = ReviewAction.APPROVE,
    summary: str = "LGTM",
    blocking_issues: list[str] | None = None,
) -> ReviewerOutput:
    comments = []
    if action != ReviewAction.APPROVE:
        comments = [
            ReviewComment(
                path="src/lib.rs",
                line=42,
                body="Handle the error",
                severity=CommentSeverity.MAJOR,
            )
        ]
    return ReviewerOutput(
        action=action,
        summary=summary,
        comments=comments,
        blocking_issues=blocking_issues or [],
    )


def fix(
    status: RevieweeStatus = RevieweeStatus.COMPLETED,
    summary: str = "Fixed",
    *,
    files_modified: list[str] | None = None,
    question: str | None = None,
    permission: tuple[str, str] | None = None,
    error_details: str | None = None,
) -> RevieweeOutput:
    return RevieweeOutput(
        status=status,
        summary=summary,
        files_modified=files_modified or [],
        question=question,
        permission_request=(
            PermissionRequest(action=permission[0], reason=permission[1]) if permission else None
        ),
        error_details=error_details,
    )


class ScriptedAdapter:
    """Adapter double that replays scripted results and records every call."""

    name = "scripted"

    def __init__(
        self,
        reviewer: list[ReviewerOutput | Exception] | None = None,
        reviewee: list[RevieweeOutput | Exception] | None = None,
    ) -> None:
        self.reviewer_script = list(reviewer or [])
        self.reviewee_script = list(reviewee or [])
        self.calls: list[tuple[str, str]] = []
        self.spans: list[tuple[float, float]] = []
        self.sink: EventChannel | None = None
        self._active = 0
        self.max_active = 0

    def attach_event_sink(self, channel: EventChannel) -> None:
        self.sink = channel

    async def _next(self, method: str, prompt: str, script: list) -> Any:
        loop = asyncio.get_running_loop()
        started = loop.time()
        self.calls.append((method, prompt))
        self._active += 1
        self.max_active = max(self.max_active, self._active)
        try:
            await asyncio.sleep(0.001)
            item = script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        finally:
            self._active -= 1
            self.spans.append((started, loop.time()))

    async def run_reviewer(self, prompt: str, context: Context) -> ReviewerOutput:
        return await self._next("run_reviewer", prompt, self.reviewer_script)

    async def run_reviewee(self, prompt: str, context: Context) -> RevieweeOutput:
        return await self._next("run_reviewee", prompt, self.reviewee_script)

    async def continue_reviewer(self, message: str) -> ReviewerOutput:
        return await self._next("continue_reviewer", message, self.reviewer_script)

    async def continue_reviewee(self, message: str) -> RevieweeOutput:
        return await self._next("continue_reviewee", message, self.reviewee_script)

    @property
    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]
