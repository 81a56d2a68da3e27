"""Route label normalization.

Metric labels must have bounded cardinality, so identifier-looking path
segments collapse to a single ``:id`` placeholder. Route templates
(``/items/{item_id}``) and concrete paths (``/items/42``) map to the same
label.
"""

from __future__ import annotations

import re

import structlog


ID_PLACEHOLDER = ":id"
ROOT_LABEL = "/"
UNKNOWN_LABEL = "unknown"
MAX_LABEL_LENGTH = 160

_DIGITS_RE = re.compile(r"^\d+$")
_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
_HEX_ID_RE = re.compile(r"^(?:[0-9a-f]{24}|[0-9a-f]{32})$", re.IGNORECASE)
_TOKEN_RE = re.compile(r"^[a-z0-9_-]+$", re.IGNORECASE)
_HAS_DIGIT_RE = re.compile(r"[0-9]")
_HAS_ALPHA_RE = re.compile(r"[a-z]", re.IGNORECASE)


def _is_placeholder(segment: str) -> bool:
    if segment.startswith(":"):
        return True
    return (segment.startswith("[") and segment.endswith("]")) or (
        segment.startswith("{") and segment.endswith("}")
    )


def _looks_like_opaque_token(segment: str) -> bool:
    return (
        len(segment) >= 16
        and _TOKEN_RE.match(segment) is not None
        and _HAS_DIGIT_RE.search(segment) is not None
        and _HAS_ALPHA_RE.search(segment) is not None
    )


def normalize_segment(segment: str) -> str:
    if _is_placeholder(segment):
        return ID_PLACEHOLDER
    if _DIGITS_RE.match(segment) or _UUID_RE.match(segment) or _HEX_ID_RE.match(segment):
        return ID_PLACEHOLDER
    if _looks_like_opaque_token(segment):
        return ID_PLACEHOLDER
    return segment


def normalize_route_label(raw_path: object) -> str:
    """Map a request path (or route template) to a bounded-cardinality label.

    Never raises: anything that cannot be handled becomes ``"unknown"``.
    """

    try:
        if not isinstance(raw_path, str):
            return UNKNOWN_LABEL
        if raw_path == UNKNOWN_LABEL:
            return UNKNOWN_LABEL

        path = raw_path.split("?", 1)[0].split("#", 1)[0]
        # Strip per segment so a label never changes when normalized again.
        segments = [segment.strip() for segment in path.split("/") if segment.strip()]
        if not segments:
            return ROOT_LABEL

        # Truncate on segment boundaries so the label stays idempotent.
        parts: list[str] = []
        length = 0
        for segment in segments:
            normalized = normalize_segment(segment)
            if length + 1 + len(normalized) > MAX_LABEL_LENGTH:
                break
            parts.append(normalized)
            length += 1 + len(normalized)

        if not parts:
            return "/" + ID_PLACEHOLDER
        return "/" + "/".join(parts)
    except Exception:  # noqa: BLE001
        structlog.get_logger("metrics").debug("route_label_fallback", raw_path=repr(raw_path)[:200])
        return UNKNOWN_LABEL
