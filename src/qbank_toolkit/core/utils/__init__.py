"""Serialization helpers for checkpoint artifacts."""

from .serialization import (
    LoadedCheckpoint,
    build_checkpoint,
    checkpoint_filename,
    load_checkpoint,
    save_checkpoint,
)

__all__ = [
    "LoadedCheckpoint",
    "build_checkpoint",
    "checkpoint_filename",
    "load_checkpoint",
    "save_checkpoint",
]
