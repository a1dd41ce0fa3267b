"""JSON Schemas for the persisted integration-branch state and the run summary.

The state schema is strict (it guards decoding of commit messages); the
summary schema only pins the top-level structure so additional fields can be
added without a version bump.
"""

from __future__ import annotations

from typing import Any

from .schema_registry import get_schema_descriptor

SCHEMA_KEY = "$schema"
SCHEMA_URL = "http://json-schema.org/draft-07/schema#"

_URL_LIST: dict[str, Any] = {"type": "array", "items": {"type": "string", "minLength": 1}}


def get_schemas() -> dict[str, Any]:
    """Return a mapping of schema name -> JSON Schema dictionary.

    Keys:
        state:   ``Included PRs`` / ``Removed PRs`` / ``Dependencies`` document.
        summary: run summary written to ``output.summary_json``.
    """
    state_descriptor = get_schema_descriptor("state")
    state_schema: dict[str, Any] = {
        SCHEMA_KEY: SCHEMA_URL,
        "$comment": f"mergemaster state schema v{state_descriptor.version}",
        "title": "IntegrationBranchState",
        "type": "object",
        "required": ["Included PRs"],
        "properties": {
            "Included PRs": _URL_LIST,
            "Removed PRs": _URL_LIST,
            "Dependencies": _URL_LIST,
        },
        "additionalProperties": False,
    }

    summary_descriptor = get_schema_descriptor("summary")
    summary_schema: dict[str, Any] = {
        SCHEMA_KEY: SCHEMA_URL,
        "$comment": f"mergemaster summary schema v{summary_descriptor.version}",
        "title": "MergeMasterSummary",
        "type": "object",
        "required": ["schemaVersion", "generated_at", "command", "dry_run", "repositories"],
        "properties": {
            "schemaVersion": {"type": "string"},
            "generated_at": {"type": "string"},
            "command": {"type": "string"},
            "dry_run": {"type": "boolean"},
            "repositories": {"type": "object"},
            "releases": {"type": "array"},
            "errors": {"type": "array"},
        },
    }
    return {"state": state_schema, "summary": summary_schema}


__all__ = ["get_schemas", "SCHEMA_URL"]
