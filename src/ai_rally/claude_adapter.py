"""Adapter for the single-shot JSON ``claude`` CLI.

Each turn runs ``claude -p`` once; the CLI prints a single JSON envelope on
exit carrying the session id and the schema-constrained result. Success is
decided by the exit code.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, ValidationError

from ai_rally.adapter import (
    Role,
    SessionSlots,
    decode_reviewee_output,
    decode_reviewer_output,
)
from ai_rally.errors import NoResultError, OutputParseError, ProcessExitError
from ai_rally.models import AgentThinking, Context, RevieweeOutput, ReviewerOutput
from ai_rally.platform_spawn import (
    CLAUDE_INSTALL_HINT,
    CLAUDE_REVIEWEE_TOOLS,
    CLAUDE_REVIEWER_TOOLS,
    build_claude_argv,
    check_cli_available,
)
from ai_rally.process import run_agent_process
from ai_rally.schemas import REVIEWEE_SCHEMA, REVIEWER_SCHEMA, schema_json
from ai_rally.transcript import CallTranscript

if TYPE_CHECKING:
    from ai_rally.config_schema import RallyConfig
    from ai_rally.notifications import EventChannel

logger = logging.getLogger("ai_rally")


class ClaudeEnvelope(BaseModel):
    """The JSON document ``claude --output-format json`` prints on exit."""

    model_config = ConfigDict(extra="ignore")

    session_id: str
    result: Any = None
    cost_usd: float | None = None
    duration_ms: int | None = None


def parse_envelope(stdout: str) -> ClaudeEnvelope:
    try:
        return ClaudeEnvelope.model_validate_json(stdout.strip())
    except ValidationError as exc:
        raise OutputParseError(f"Failed to parse claude output as JSON: {exc}") from exc


def _require_result(envelope: ClaudeEnvelope) -> Any:
    if envelope.result is None:
        raise NoResultError("No result in claude response")
    return envelope.result


class ClaudeAdapter:
    def __init__(
        self,
        *,
        command: str = "claude",
        timeout: float | None = None,
        transcript_dir: str | None = None,
    ) -> None:
        self.command = command
        self.timeout = timeout
        self.transcript_dir = transcript_dir
        self.sessions = SessionSlots()
        self._sink: EventChannel | None = None

    @classmethod
    def from_config(cls, config: RallyConfig) -> ClaudeAdapter:
        return cls(
            command=config.claude_command,
            timeout=config.call_timeout_seconds,
            transcript_dir=config.transcript_dir,
        )

    @property
    def name(self) -> str:
        return "claude"

    def attach_event_sink(self, channel: EventChannel) -> None:
        self._sink = channel

    async def check_availability(self) -> str:
        return await check_cli_available(self.command, CLAUDE_INSTALL_HINT)

    async def _invoke(self, role: Role, argv: list[str], cwd: str | None) -> ClaudeEnvelope:
        if self._sink is not None:
            self._sink.publish(AgentThinking(text=f"claude {role} turn running..."))
        transcript = (
            CallTranscript(self.transcript_dir, self.name, role.value)
            if self.transcript_dir
            else None
        )
        try:
            result = await run_agent_process(
                argv, cwd=cwd, timeout=self.timeout, transcript=transcript
            )
        finally:
            if transcript is not None:
                transcript.close()

        if result.exit_code != 0:
            raise ProcessExitError(self.command, result.exit_code, result.stderr)

        envelope = parse_envelope(result.stdout)
        logger.info(
            "claude.%s -> session=%s cost_usd=%s duration_ms=%s",
            role,
            envelope.session_id,
            envelope.cost_usd,
            envelope.duration_ms,
        )
        return envelope

    async def _run(
        self,
        role: Role,
        prompt: str,
        context: Context,
        schema: dict,
        allowed_tools: str,
    ) -> Any:
        argv = build_claude_argv(
            prompt,
            schema=schema_json(schema),
            allowed_tools=allowed_tools,
            command=self.command,
        )
        envelope = await self._invoke(role, argv, context.working_dir)
        self.sessions.bind(role, envelope.session_id, context.working_dir)
        return _require_result(envelope)

    async def _continue(self, role: Role, message: str) -> Any:
        # Schema and tool list stay bound to the session from the first turn.
        session = self.sessions.require(role)
        argv = build_claude_argv(message, session_id=session.session_id, command=self.command)
        envelope = await self._invoke(role, argv, session.working_dir)
        return _require_result(envelope)

    async def run_reviewer(self, prompt: str, context: Context) -> ReviewerOutput:
        result = await self._run(
            Role.REVIEWER, prompt, context, REVIEWER_SCHEMA, CLAUDE_REVIEWER_TOOLS
        )
        return decode_reviewer_output(result)

    async def run_reviewee(self, prompt: str, context: Context) -> RevieweeOutput:
        result = await self._run(
            Role.REVIEWEE, prompt, context, REVIEWEE_SCHEMA, CLAUDE_REVIEWEE_TOOLS
        )
        return decode_reviewee_output(result)

    async def continue_reviewer(self, message: str) -> ReviewerOutput:
        return decode_reviewer_output(await self._continue(Role.REVIEWER, message))

    async def continue_reviewee(self, message: str) -> RevieweeOutput:
        return decode_reviewee_output(await self._continue(Role.REVIEWEE, message))
