"""Per-role JSONL transcripts of agent CLI invocations.

Each backend/role pair appends to one ``<backend>-<role>.jsonl`` file. Size
rotation is checked only when a call opens its transcript, so every record of
one call lands in the same file.
"""

from __future__ import annotations

import json
import logging
import os
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import TextIO

logger = logging.getLogger("ai_rally")

TRANSCRIPT_MAX_BYTES_ENV_VAR = "AI_RALLY_TRANSCRIPT_MAX_BYTES"
TRANSCRIPT_BACKUPS_ENV_VAR = "AI_RALLY_TRANSCRIPT_BACKUPS"
DEFAULT_TRANSCRIPT_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_TRANSCRIPT_BACKUPS = 5


def read_positive_int_env(name: str, default: int, minimum: int) -> int:
    """Integer from the environment, or ``default`` when unset or below ``minimum``."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; using default %s", name, raw, default)
        return default
    if value < minimum:
        logger.warning(
            "Invalid %s=%r; must be >= %s (using default %s)", name, raw, minimum, default
        )
        return default
    return value


def shift_backups(path: Path, backups: int) -> None:
    """Move ``path`` to ``path.1``, ``path.1`` to ``path.2`` and so on.

    The file at ``path.<backups>`` is overwritten, so at most ``backups``
    old transcripts are kept.
    """
    for index in range(backups - 1, 0, -1):
        older = Path(f"{path}.{index}")
        if older.exists():
            older.replace(Path(f"{path}.{index + 1}"))
    path.replace(Path(f"{path}.1"))


class CallTranscript:
    """Records one adapter call (argv, stream lines, exit) to a role transcript.

    Write failures are logged and never fail the call being recorded.
    """

    def __init__(
        self,
        directory: str | Path,
        backend: str,
        role: str,
        *,
        max_bytes: int | None = None,
        backups: int | None = None,
    ) -> None:
        safe_name = re.sub(r"[^A-Za-z0-9._-]", "_", f"{backend}-{role}")
        self.backend = backend
        self.role = role
        self.path = Path(directory).expanduser() / f"{safe_name}.jsonl"
        self.max_bytes = max_bytes or read_positive_int_env(
            TRANSCRIPT_MAX_BYTES_ENV_VAR, DEFAULT_TRANSCRIPT_MAX_BYTES, 1024
        )
        self.backups = backups or read_positive_int_env(
            TRANSCRIPT_BACKUPS_ENV_VAR, DEFAULT_TRANSCRIPT_BACKUPS, 1
        )
        self._file: TextIO | None = None

    def _open(self) -> TextIO:
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if self.path.exists() and self.path.stat().st_size >= self.max_bytes:
                shift_backups(self.path, self.backups)
            self._file = self.path.open("a", encoding="utf-8")
        return self._file

    def record(
        self,
        event: str,
        *,
        stream: str | None = None,
        message: str | None = None,
        pid: int | None = None,
        exit_code: int | None = None,
    ) -> None:
        entry: dict[str, object] = {
            "ts": datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "event": event,
            "backend": self.backend,
            "role": self.role,
        }
        optional = {"stream": stream, "message": message, "pid": pid, "exit_code": exit_code}
        entry.update({key: value for key, value in optional.items() if value is not None})
        try:
            handle = self._open()
            handle.write(json.dumps(entry, separators=(",", ":")) + "\n")
            handle.flush()
        except OSError:
            logger.exception("transcript.record -> write failed path=%s", self.path)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
