"""Shell-free argv building for the supported agent CLIs."""

from __future__ import annotations

import asyncio
import logging

from ai_rally.errors import CliNotFoundError

logger = logging.getLogger("ai_rally")

# Reviewer may only inspect; reviewee may edit and run VCS/package-manager commands.
CLAUDE_REVIEWER_TOOLS = "Read,Glob,Grep,Bash(gh pr:*),Bash(gh api:*)"
CLAUDE_REVIEWEE_TOOLS = (
    "Read,Edit,Write,Glob,Grep,Bash(git:*),Bash(gh:*),Bash(cargo:*),"
    "Bash(npm:*),Bash(pnpm:*),Bash(bun:*)"
)

CLAUDE_INSTALL_HINT = "Install it with: npm install -g @anthropic-ai/claude-code"
CODEX_INSTALL_HINT = "Install it with: npm install -g @openai/codex"


def build_claude_argv(
    prompt: str,
    *,
    schema: str | None = None,
    allowed_tools: str | None = None,
    session_id: str | None = None,
    command: str = "claude",
) -> list[str]:
    """Build argv for a single-shot ``claude -p`` run with JSON output.

    Fresh turns carry the schema and tool allow-list; resumed turns pass only
    the message and session, since both are bound to the original session.
    """
    argv = [command, "-p", prompt, "--output-format", "json"]
    if schema is not None:
        argv += ["--json-schema", schema]
    if allowed_tools is not None:
        argv += ["--allowedTools", allowed_tools]
    if session_id is not None:
        argv += ["--resume", session_id]
    return argv


def build_codex_argv(
    prompt: str,
    *,
    schema_path: str,
    working_dir: str | None = None,
    session_id: str | None = None,
    full_auto: bool = False,
    command: str = "codex",
) -> list[str]:
    """Build argv for a streaming ``codex exec --json`` run.

    A fresh turn is ``exec <prompt>``; a continuation is
    ``exec resume <session> --message <prompt>``. ``--full-auto`` (workspace
    write access) is only added for reviewee turns.
    """
    if session_id is not None:
        argv = [command, "exec", "resume", session_id, "--message", prompt]
    else:
        argv = [command, "exec", prompt]
    argv += ["--json", "--output-schema", schema_path]
    if working_dir is not None:
        argv += ["--cd", working_dir]
    if full_auto:
        argv.append("--full-auto")
    return argv


async def check_cli_available(command: str, install_hint: str) -> str:
    """Run ``<command> --version`` and return its output.

    Raises CliNotFoundError if the CLI is missing or exits non-zero.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            command,
            "--version",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise CliNotFoundError(command, install_hint) from exc
    stdout, _ = await process.communicate()
    if process.returncode != 0:
        raise CliNotFoundError(command, install_hint)
    version = stdout.decode("utf-8", errors="replace").strip()
    logger.info("platform.check_cli -> %s %s", command, version)
    return version
