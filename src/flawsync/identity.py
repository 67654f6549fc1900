"""Stable flaw identities.

Every managed ticket carries its flaw identity in the title as a bracketed
marker (``[VID:...]``), which lets a later run find the ticket again without any
local state. Two derivation rules exist:

* pipeline scans: ``VID:<cwe_id>:<source_file>:<source_line>``
* policy scans (and anything else): ``VID:<issue_id>``

Missing inputs are rendered as ``Unknown`` so every flaw gets an identity.
"""

from __future__ import annotations

from .models import Flaw, ScanType

PREFIX = "VID"
UNKNOWN = "Unknown"
_MARKER_OPEN = "[" + PREFIX


def _part(value: object) -> str:
    if value is None:
        return UNKNOWN
    text = str(value).strip()
    return text or UNKNOWN


def identity_of(flaw: Flaw) -> str:
    if flaw.scan_type is ScanType.PIPELINE:
        return ":".join(
            (PREFIX, _part(flaw.cwe_id), _part(flaw.file_path), _part(flaw.line))
        )
    return f"{PREFIX}:{_part(flaw.issue_id)}"


def format_marker(identity: str) -> str:
    return f"[{identity}]"


def extract_identity(title: str | None) -> str | None:
    """Return the identity embedded in a ticket title, or None."""
    if not title:
        return None
    start = title.find(_MARKER_OPEN)
    while start != -1:
        end = title.find("]", start)
        if end == -1:
            return None
        inner = title[start + 1 : end].strip()
        if inner.startswith(PREFIX + ":") and len(inner) > len(PREFIX) + 1:
            return inner
        start = title.find(_MARKER_OPEN, start + 1)
    return None


def has_partial_marker(title: str | None) -> bool:
    """True when the title holds an identity marker cut short (no closing bracket)."""
    if not title:
        return False
    start = title.rfind(_MARKER_OPEN)
    return start != -1 and title.find("]", start) == -1


def partial_fragment(title: str) -> str:
    """The cut-short marker text of a truncated title, without the bracket."""
    start = title.rfind(_MARKER_OPEN)
    return title[start + 1 :].strip() if start != -1 else title.strip()


def identity_scan_type(identity: str, *, truncated: bool = False) -> ScanType:
    """Scan type an identity was derived from, judged by its shape.

    Pipeline identities carry cwe, file and line; policy identities a single
    issue id. A truncated identity is pipeline as soon as the cwe is followed
    by a separator.
    """
    body = identity[len(PREFIX) + 1 :] if identity.startswith(PREFIX + ":") else identity
    separators = body.count(":")
    if truncated:
        return ScanType.PIPELINE if separators >= 1 else ScanType.POLICY
    return ScanType.PIPELINE if separators >= 2 else ScanType.POLICY


def identity_components(identity: str) -> list[str]:
    """Identity parts after the prefix, ``Unknown`` placeholders dropped.

    Pipeline file paths may contain ``:`` themselves, so the line number is
    split from the right.
    """
    body = identity[len(PREFIX) + 1 :] if identity.startswith(PREFIX + ":") else identity
    head, sep, last = body.rpartition(":")
    if sep and ":" in head:
        cwe, _, path = head.partition(":")
        parts = [cwe, path, last]
    else:
        parts = body.split(":")
    return [p for p in parts if p and p != UNKNOWN]


def matches_fragment(identity: str, title: str) -> bool:
    """Loose match of an identity against a (possibly truncated) title."""
    components = identity_components(identity)
    if not components:
        return False
    start = title.rfind(_MARKER_OPEN)
    fragment = title[start:] if start != -1 else title
    return all(component in fragment for component in components)


__all__ = [
    "PREFIX",
    "UNKNOWN",
    "identity_of",
    "format_marker",
    "extract_identity",
    "has_partial_marker",
    "partial_fragment",
    "identity_scan_type",
    "identity_components",
    "matches_fragment",
]
