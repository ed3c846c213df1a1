"""JSON schemas the agent CLIs are asked to constrain their final answer to."""

from __future__ import annotations

import json

from ai_rally.models import CommentSeverity, ReviewAction, RevieweeStatus

REVIEWER_SCHEMA: dict = {
    "type": "object",
    "additionalProperties": False,
    "required": ["action", "summary", "comments", "blocking_issues"],
    "properties": {
        "action": {"type": "string", "enum": [action.value for action in ReviewAction]},
        "summary": {"type": "string"},
        "comments": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "required": ["path", "line", "body", "severity"],
                "properties": {
                    "path": {"type": "string"},
                    "line": {"type": "integer", "minimum": 0},
                    "body": {"type": "string"},
                    "severity": {
                        "type": "string",
                        "enum": [severity.value for severity in CommentSeverity],
                    },
                },
            },
        },
        "blocking_issues": {"type": "array", "items": {"type": "string"}},
    },
}

REVIEWEE_SCHEMA: dict = {
    "type": "object",
    "additionalProperties": False,
    "required": ["status", "summary", "files_modified"],
    "properties": {
        "status": {"type": "string", "enum": [status.value for status in RevieweeStatus]},
        "summary": {"type": "string"},
        "files_modified": {"type": "array", "items": {"type": "string"}},
        "question": {"type": ["string", "null"]},
        "permission_request": {
            "type": ["object", "null"],
            "additionalProperties": False,
            "required": ["action", "reason"],
            "properties": {
                "action": {"type": "string"},
                "reason": {"type": "string"},
            },
        },
        "error_details": {"type": ["string", "null"]},
    },
}


def schema_json(schema: dict) -> str:
    """Serialize a schema compactly for a command-line argument or temp file."""
    return json.dumps(schema, separators=(",", ":"))
