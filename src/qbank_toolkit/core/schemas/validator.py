"""
Schema Validation Utilities

Validates subject checkpoint artifacts against the bundled JSON Schema
before they are written and after they are loaded back.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema

CHECKPOINT_SCHEMA_NAME = "checkpoint"

_SCHEMAS: dict[str, dict] = {}


def _load_schema(name: str) -> dict:
    """Load a schema from the schemas directory."""
    if name not in _SCHEMAS:
        schema_path = Path(__file__).parent / f"{name}.schema.json"
        if not schema_path.exists():
            raise FileNotFoundError(f"Schema not found: {schema_path}")
        with open(schema_path, "r", encoding="utf-8") as f:
            _SCHEMAS[name] = json.load(f)
    return _SCHEMAS[name]


class ValidationError(Exception):
    """Raised when data fails schema validation."""

    def __init__(self, message: str, path: str = "", errors: list[str] | None = None):
        super().__init__(message)
        self.path = path
        self.errors = errors or []


def validate_checkpoint(data: Any) -> None:
    """
    Validate a checkpoint artifact.

    Args:
        data: Parsed JSON document.

    Raises:
        ValidationError: With every schema violation listed in ``errors``
            and the first violation's location in ``path``.
    """
    if not isinstance(data, dict):
        raise ValidationError(
            f"Checkpoint must be a JSON object, got {type(data).__name__}",
            errors=["root: not an object"],
        )

    schema = _load_schema(CHECKPOINT_SCHEMA_NAME)
    validator = jsonschema.Draft202012Validator(schema)
    violations = sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path))
    if not violations:
        return

    messages = [
        f"{'/'.join(str(p) for p in v.absolute_path) or 'root'}: {v.message}"
        for v in violations
    ]
    first_path = "/".join(str(p) for p in violations[0].absolute_path)
    raise ValidationError(
        f"Invalid checkpoint ({len(messages)} error(s)): {messages[0]}",
        path=first_path,
        errors=messages,
    )
