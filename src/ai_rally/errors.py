"""Adapter failure taxonomy.

The orchestrator treats every ``AdapterError`` the same way (the rally moves to
``error`` with ``str(exc)`` as the message); the subclasses exist for callers
and tests that need to tell failures apart.
"""

from __future__ import annotations


class AdapterError(RuntimeError):
    """Base class for a failed adapter call."""


class ProcessSpawnError(AdapterError):
    """The agent CLI could not be started."""


class CliNotFoundError(ProcessSpawnError):
    """The agent CLI is not installed or not on PATH."""

    def __init__(self, command: str, install_hint: str) -> None:
        self.command = command
        self.install_hint = install_hint
        super().__init__(f"{command} CLI not found. {install_hint}")


class ProcessExitError(AdapterError):
    """The agent CLI exited with a non-zero status."""

    def __init__(self, command: str, exit_code: int, stderr: str) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"{command} process failed with exit code {exit_code}: {stderr}")


class AuthenticationError(ProcessExitError):
    """The agent CLI failed because it is not authenticated."""

    def __init__(self, command: str, exit_code: int, stderr: str, hint: str) -> None:
        super().__init__(command, exit_code, stderr)
        self.args = (f"{command} authentication failed. {hint}",)


class OutputParseError(AdapterError):
    """The CLI output did not match the expected envelope or result schema."""


class UnknownVariantError(OutputParseError):
    """A closed-set field (``action`` or ``status``) carried an unknown value."""

    def __init__(self, field: str, value: object) -> None:
        self.field = field
        self.value = value
        super().__init__(f"Unknown {field}: {value!r}")


class NoActiveSessionError(AdapterError):
    """A continuation was requested before the role's first turn."""

    def __init__(self, role: str) -> None:
        self.role = role
        super().__init__(f"No {role} session to continue")


class TurnFailedError(AdapterError):
    """The backend reported an aborted turn."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Turn failed: {reason}")


class NoResultError(AdapterError):
    """The CLI exited cleanly without producing a usable result."""


class AdapterTimeoutError(AdapterError):
    """The agent CLI did not finish within the per-call deadline."""

    def __init__(self, command: str, timeout: float) -> None:
        self.command = command
        self.timeout = timeout
        super().__init__(f"{command} timed out after {timeout:g}s")


class InvalidStateError(ValueError):
    """A rally operation was requested in a state that does not allow it."""
