"""Agent CLI subprocess execution with concurrent stdout/stderr draining."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import shlex
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from ai_rally.errors import AdapterTimeoutError, OutputParseError, ProcessSpawnError
from ai_rally.transcript import CallTranscript

logger = logging.getLogger("ai_rally")

# Agents print whole JSON documents on one line; asyncio's 64 KiB default is too small.
STREAM_LIMIT = 16 * 1024 * 1024
TERMINATE_GRACE_SECONDS = 2.0

LineHandler = Callable[[str], Awaitable[None]]


@dataclass
class ProcessResult:
    exit_code: int
    stdout_lines: list[str] = field(default_factory=list)
    stderr_lines: list[str] = field(default_factory=list)

    @property
    def stdout(self) -> str:
        return "\n".join(self.stdout_lines)

    @property
    def stderr(self) -> str:
        return "\n".join(self.stderr_lines)


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        process.terminate()
    try:
        await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE_SECONDS)
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()


async def _settle(tasks: Sequence[asyncio.Task[None]]) -> None:
    """Let drain tasks hit EOF after the child is gone, then collect them."""
    pending = [task for task in tasks if not task.done()]
    if pending:
        _, still_pending = await asyncio.wait(pending, timeout=TERMINATE_GRACE_SECONDS)
        for task in still_pending:
            task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


async def _drain_stream(
    stream: asyncio.StreamReader,
    stream_name: str,
    sink: list[str],
    handler: LineHandler | None,
    transcript: CallTranscript | None,
    pid: int | None,
) -> None:
    while True:
        try:
            line = await stream.readline()
        except ValueError as exc:
            # StreamReader reports a line longer than STREAM_LIMIT as ValueError.
            raise OutputParseError(f"Unreadable agent {stream_name} line: {exc}") from exc
        if not line:
            break
        text = line.decode("utf-8", errors="replace").rstrip("\r\n")
        sink.append(text)
        if transcript is not None:
            transcript.record("output", stream=stream_name, message=text, pid=pid)
        if handler is not None and text.strip():
            await handler(text)


async def run_agent_process(
    argv: Sequence[str],
    *,
    cwd: str | None = None,
    on_stdout_line: LineHandler | None = None,
    timeout: float | None = None,
    transcript: CallTranscript | None = None,
) -> ProcessResult:
    """Run an agent CLI to completion and return its exit code and output.

    stdout and stderr are read by two independent tasks so a full pipe on one
    side never blocks the other; both are drained to EOF before the exit status
    is awaited. Each non-blank stdout line is passed to ``on_stdout_line`` in
    order. If the handler raises, the child is terminated and the exception
    propagates. The child is always reaped before this returns or raises.

    Raises:
    - ProcessSpawnError if the executable cannot be started.
    - AdapterTimeoutError if ``timeout`` seconds elapse first.
    - OutputParseError if a stream cannot be read line by line.
    """
    command = argv[0]
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=STREAM_LIMIT,
        )
    except OSError as exc:
        logger.warning("process.run -> spawn failed command=%s err=%s", command, exc)
        raise ProcessSpawnError(f"Failed to spawn {command} process: {exc}") from exc

    pid = process.pid
    logger.info("process.run -> spawned command=%s pid=%s cwd=%s", command, pid, cwd)
    if transcript is not None:
        transcript.record("call_started", message=shlex.join(argv), pid=pid)

    result = ProcessResult(exit_code=-1)
    assert process.stdout is not None and process.stderr is not None
    tasks = [
        asyncio.create_task(
            _drain_stream(
                process.stdout, "stdout", result.stdout_lines, on_stdout_line, transcript, pid
            )
        ),
        asyncio.create_task(
            _drain_stream(process.stderr, "stderr", result.stderr_lines, None, transcript, pid)
        ),
    ]

    loop = asyncio.get_running_loop()
    deadline = None if timeout is None else loop.time() + timeout
    try:
        done, pending = await asyncio.wait(
            tasks, timeout=timeout, return_when=asyncio.FIRST_EXCEPTION
        )
        failed = next(
            (task for task in done if not task.cancelled() and task.exception() is not None),
            None,
        )
        if failed is not None:
            await _terminate(process)
            await _settle(tasks)
            exc = failed.exception()
            assert exc is not None
            raise exc
        if pending:
            await _terminate(process)
            await _settle(tasks)
            raise AdapterTimeoutError(command, timeout or 0.0)

        remaining = None if deadline is None else max(deadline - loop.time(), 0.5)
        try:
            result.exit_code = await asyncio.wait_for(process.wait(), timeout=remaining)
        except TimeoutError:
            await _terminate(process)
            raise AdapterTimeoutError(command, timeout or 0.0) from None
    except asyncio.CancelledError:
        await _terminate(process)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    finally:
        if transcript is not None:
            transcript.record(
                "call_finished",
                pid=pid,
                exit_code=process.returncode,
            )

    logger.info(
        "process.run -> exited command=%s pid=%s exit_code=%s", command, pid, result.exit_code
    )
    return result
