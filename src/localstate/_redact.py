"""Helpers for safe debug logging.

Stored values are treated as potentially sensitive. This module reduces
a value to a short description (type and size) so DEBUG logs never carry
the value itself.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any


def summarize_value(value: Any) -> str:
    """Return a redacted description of *value* suitable for debug logs."""
    if value is None:
        return "<absent>"

    if isinstance(value, bool):
        return "<bool>"

    if isinstance(value, (int, float)):
        return f"<{type(value).__name__}>"

    if isinstance(value, str):
        return f"<str:{len(value)}ch>"

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        return f"<dict:{len(value)} keys>"

    if isinstance(value, Sequence):
        return f"<list:{len(value)} items>"

    # Fallback: never dump unknown objects.
    return f"<{type(value).__name__}>"
