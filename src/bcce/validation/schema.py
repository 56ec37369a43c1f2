"""Published JSON schema for workflow documents (version 1).

Structural only: per-type mandatory fields and numeric bounds are checked
by the semantic pass in ``validator.py``.
"""

from typing import Any

_STRING_LIST: dict[str, Any] = {"type": "array", "items": {"type": "string"}}

POLICY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["timeout_seconds", "max_files", "max_edits", "allowed_paths"],
    "properties": {
        "timeout_seconds": {"type": "number"},
        "max_files": {"type": "integer"},
        "max_edits": {"type": "integer"},
        "allowed_paths": _STRING_LIST,
        "cmd_allowlist": _STRING_LIST,
    },
}

STEP_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["id", "type"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "type": {"enum": ["prompt", "cmd", "agent", "apply_diff"]},
        "prompt_file": {"type": "string"},
        "available_tools": _STRING_LIST,
        "inputs": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "paths": _STRING_LIST,
                "file_size_limit_kb": {"type": "integer", "minimum": 1},
            },
        },
        "command": {"type": "string"},
        "on_error": {"enum": ["continue", "fail"]},
        "policy": POLICY_SCHEMA,
        "approve": {"type": "boolean"},
    },
}

WORKFLOW_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "bcce workflow",
    "type": "object",
    "additionalProperties": False,
    "required": ["version", "workflow", "steps"],
    "properties": {
        "version": {"const": 1},
        "workflow": {"type": "string", "minLength": 1},
        "model": {"type": "string"},
        "guardrails": _STRING_LIST,
        "env": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "max_runtime_seconds": {"type": "integer"},
                "artifacts_dir": {"type": "string"},
            },
        },
        "steps": {"type": "array", "minItems": 1, "items": STEP_SCHEMA},
    },
}
