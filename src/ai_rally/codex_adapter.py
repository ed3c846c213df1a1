"""Adapter for the streaming ``codex exec --json`` CLI.

The CLI emits one JSON event per stdout line. The final result arrives in a
``turn.completed`` event and an explicit ``turn.failed`` aborts the call, so
success is decided by the event stream rather than the exit code. Item
lifecycle events are republished on the attached event sink as they arrive.
"""

from __future__ import annotations

import logging
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ai_rally.adapter import (
    Role,
    SessionSlots,
    decode_reviewee_output,
    decode_reviewer_output,
)
from ai_rally.codex_events import (
    CodexEvent,
    CommandItem,
    FileChangeItem,
    ItemEvent,
    MessageItem,
    ThreadStarted,
    TurnCompleted,
    TurnFailed,
    TurnStarted,
    parse_event,
)
from ai_rally.errors import (
    AuthenticationError,
    NoResultError,
    ProcessExitError,
    TurnFailedError,
)
from ai_rally.models import (
    AgentText,
    AgentThinking,
    AgentToolResult,
    AgentToolUse,
    Context,
    RallyEvent,
    RevieweeOutput,
    ReviewerOutput,
)
from ai_rally.platform_spawn import CODEX_INSTALL_HINT, build_codex_argv, check_cli_available
from ai_rally.process import run_agent_process
from ai_rally.schemas import REVIEWEE_SCHEMA, REVIEWER_SCHEMA, schema_json
from ai_rally.transcript import CallTranscript

if TYPE_CHECKING:
    from ai_rally.config_schema import RallyConfig
    from ai_rally.notifications import EventChannel

logger = logging.getLogger("ai_rally")

# "auth" only as a whole word so paths like "author.py" in stderr do not match.
AUTH_FAILURE_PATTERN = re.compile(
    r"\bauth\b|unauthori[sz]ed|authenticat|not logged in",
    re.IGNORECASE,
)
AUTH_HINT = "Run 'codex auth' to authenticate"


@dataclass
class _TurnCollector:
    thread_id: str | None = None
    result: Any = None
    completed: bool = False


def is_auth_failure(stderr: str) -> bool:
    return AUTH_FAILURE_PATTERN.search(stderr) is not None


class CodexAdapter:
    def __init__(
        self,
        *,
        command: str = "codex",
        timeout: float | None = None,
        transcript_dir: str | None = None,
    ) -> None:
        self.command = command
        self.timeout = timeout
        self.transcript_dir = transcript_dir
        self.sessions = SessionSlots()
        self._sink: EventChannel | None = None

    @classmethod
    def from_config(cls, config: RallyConfig) -> CodexAdapter:
        return cls(
            command=config.codex_command,
            timeout=config.call_timeout_seconds,
            transcript_dir=config.transcript_dir,
        )

    @property
    def name(self) -> str:
        return "codex"

    def attach_event_sink(self, channel: EventChannel) -> None:
        self._sink = channel

    async def check_availability(self) -> str:
        return await check_cli_available(self.command, CODEX_INSTALL_HINT)

    def _publish(self, event: RallyEvent) -> None:
        logger.debug("codex.progress -> %s", event.model_dump_json())
        if self._sink is not None:
            self._sink.publish(event)

    def _handle_event(self, event: CodexEvent, turn: _TurnCollector) -> None:
        if isinstance(event, ThreadStarted):
            turn.thread_id = event.thread_id
            self._publish(AgentThinking(text="Starting..."))
        elif isinstance(event, TurnStarted):
            self._publish(AgentThinking(text="Processing..."))
        elif isinstance(event, TurnCompleted):
            if event.result is not None:
                turn.result = event.result
                turn.completed = True
        elif isinstance(event, TurnFailed):
            raise TurnFailedError(event.error)
        elif isinstance(event, ItemEvent):
            self._handle_item(event)
        else:
            logger.debug("codex -> ignoring unknown event type=%s", event.type)

    def _handle_item(self, event: ItemEvent) -> None:
        item = event.item
        if isinstance(item, CommandItem):
            if event.completed:
                self._publish(
                    AgentToolResult(tool=item.command, result=item.output or "completed")
                )
            else:
                self._publish(AgentToolUse(tool=item.command, detail="running..."))
        elif isinstance(item, FileChangeItem):
            tool = f"edit:{item.path}"
            if event.completed:
                self._publish(AgentToolResult(tool=tool, result="file modified"))
            else:
                self._publish(AgentToolUse(tool=tool, detail="modifying..."))
        elif isinstance(item, MessageItem):
            if event.completed:
                self._publish(AgentText(text=item.content))
            else:
                self._publish(AgentThinking(text=item.content))

    async def _stream(
        self,
        role: Role,
        prompt: str,
        schema: dict,
        *,
        working_dir: str | None,
        session_id: str | None,
    ) -> _TurnCollector:
        turn = _TurnCollector(thread_id=session_id)

        async def on_line(line: str) -> None:
            self._handle_event(parse_event(line), turn)

        transcript = (
            CallTranscript(self.transcript_dir, self.name, role.value)
            if self.transcript_dir
            else None
        )
        # --output-schema only takes a path; the directory goes away with the call.
        with tempfile.TemporaryDirectory(prefix="ai-rally-") as schema_dir:
            schema_path = Path(schema_dir) / f"{role.value}-schema.json"
            schema_path.write_text(schema_json(schema), encoding="utf-8")
            argv = build_codex_argv(
                prompt,
                schema_path=str(schema_path),
                working_dir=working_dir,
                session_id=session_id,
                full_auto=role == Role.REVIEWEE,
                command=self.command,
            )
            try:
                result = await run_agent_process(
                    argv,
                    cwd=working_dir,
                    on_stdout_line=on_line,
                    timeout=self.timeout,
                    transcript=transcript,
                )
            finally:
                if transcript is not None:
                    transcript.close()

        if result.exit_code != 0:
            stderr = result.stderr
            if is_auth_failure(stderr):
                raise AuthenticationError(self.command, result.exit_code, stderr, AUTH_HINT)
            raise ProcessExitError(self.command, result.exit_code, stderr)

        if not turn.completed:
            raise NoResultError("No result received from codex")
        logger.info("codex.%s -> thread=%s", role, turn.thread_id)
        return turn

    async def _run(self, role: Role, prompt: str, context: Context, schema: dict) -> Any:
        turn = await self._stream(
            role, prompt, schema, working_dir=context.working_dir, session_id=None
        )
        if turn.thread_id:
            self.sessions.bind(role, turn.thread_id, context.working_dir)
        else:
            logger.warning("codex.%s -> no thread.started event; session not resumable", role)
        return turn.result

    async def _continue(self, role: Role, message: str, schema: dict) -> Any:
        session = self.sessions.require(role)
        turn = await self._stream(
            role,
            message,
            schema,
            working_dir=session.working_dir,
            session_id=session.session_id,
        )
        return turn.result

    async def run_reviewer(self, prompt: str, context: Context) -> ReviewerOutput:
        result = await self._run(Role.REVIEWER, prompt, context, REVIEWER_SCHEMA)
        return decode_reviewer_output(result)

    async def run_reviewee(self, prompt: str, context: Context) -> RevieweeOutput:
        result = await self._run(Role.REVIEWEE, prompt, context, REVIEWEE_SCHEMA)
        return decode_reviewee_output(result)

    async def continue_reviewer(self, message: str) -> ReviewerOutput:
        result = await self._continue(Role.REVIEWER, message, REVIEWER_SCHEMA)
        return decode_reviewer_output(result)

    async def continue_reviewee(self, message: str) -> RevieweeOutput:
        result = await self._continue(Role.REVIEWEE, message, REVIEWEE_SCHEMA)
        return decode_reviewee_output(result)
