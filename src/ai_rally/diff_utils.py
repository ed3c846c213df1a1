"""Unified diff inspection helpers for rally contexts."""

from __future__ import annotations

import json

from unidiff import PatchSet
from unidiff.errors import UnidiffParseError


def _parse(diff_text: str) -> PatchSet | None:
    try:
        return PatchSet(diff_text)
    except UnidiffParseError:
        return None


def extract_changed_paths(diff_text: str) -> list[str]:
    """Return the target paths touched by a unified diff, in diff order.

    Returns an empty list when the diff is empty or does not parse.
    """
    patch = _parse(diff_text)
    if patch is None:
        return []
    return [patched_file.path for patched_file in patch]


def extract_affected_files(diff_text: str) -> str:
    """Parse a unified diff and return JSON describing affected files.

    Each entry contains: path, operation (create/delete/modify), added, removed.
    Returns "[]" on parse failure.
    """
    patch = _parse(diff_text)
    if patch is None:
        return "[]"

    files: list[dict[str, str | int]] = []
    for patched_file in patch:
        if patched_file.is_added_file:
            operation = "create"
        elif patched_file.is_removed_file:
            operation = "delete"
        else:
            operation = "modify"

        files.append({
            "path": patched_file.path,
            "operation": operation,
            "added": patched_file.added,
            "removed": patched_file.removed,
        })

    return json.dumps(files)


def summarize_diff(diff_text: str) -> str:
    """Render a one-line-per-file change summary for prompts."""
    entries = json.loads(extract_affected_files(diff_text))
    if not entries:
        return "(no parseable file changes)"
    return "\n".join(
        f"- {entry['path']} ({entry['operation']}, +{entry['added']}/-{entry['removed']})"
        for entry in entries
    )
