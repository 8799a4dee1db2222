"""JSON Schemas for persisted artifacts."""

from .validator import ValidationError, validate_checkpoint

__all__ = ["ValidationError", "validate_checkpoint"]
