"""
Diagram review and reconciliation: box editing geometry, cropping, and
matching uploaded diagrams back to stored question rows.
"""

from .bounds_editor import HANDLES, apply_handle_delta, clamp_bounds_to_page, sanitize_bounds
from .cropper import crop_diagram, encode_image_base64, is_blank_crop
from .reconciliation import (
    MatchCause,
    MatchMiss,
    MatchReport,
    attach_manual_diagram,
    build_row_payloads,
    dismiss_manual_diagrams,
    persist_package,
    reconcile_diagrams,
    resolve_match_subject,
)

__all__ = [
    "HANDLES",
    "MatchCause",
    "MatchMiss",
    "MatchReport",
    "apply_handle_delta",
    "attach_manual_diagram",
    "build_row_payloads",
    "clamp_bounds_to_page",
    "crop_diagram",
    "dismiss_manual_diagrams",
    "encode_image_base64",
    "is_blank_crop",
    "persist_package",
    "reconcile_diagrams",
    "resolve_match_subject",
    "sanitize_bounds",
]
