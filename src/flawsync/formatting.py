"""Ticket text and severity vocabularies.

Turns a :class:`~flawsync.models.Flaw` into the title, markdown body, tags and
severity value a tracker expects, and renders the audit notes attached to
state transitions.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from urllib.parse import unquote

from .identity import format_marker
from .models import Flaw, ScanType, TicketDraft

MANAGED_TAG = "Veracode"
POLICY_LABEL = "Veracode Policy Scan"
PIPELINE_LABEL = "Veracode Pipeline Scan"
SECURITY_TAG = "Security"
MAX_TITLE_LENGTH = 255
LINE_CONTEXT = 5

DEFAULT_LEVEL = "Medium"

# Veracode ordinal severities (5 = most severe)
_ORDINAL_LEVELS = {
    5: "Very High",
    4: "High",
    3: "Medium",
    2: "Low",
    1: "Very Low",
    0: "Informational",
}

_NAMED_LEVELS = {
    "veryhigh": "Very High",
    "critical": "Very High",
    "high": "High",
    "medium": "Medium",
    "low": "Low",
    "verylow": "Very Low",
    "informational": "Informational",
    "info": "Informational",
}

ADO_SEVERITY = {
    "Very High": "1 - Critical",
    "High": "2 - High",
    "Medium": "3 - Medium",
    "Low": "4 - Low",
    "Very Low": "4 - Low",
}
ADO_DEFAULT_SEVERITY = "3 - Medium"

GITHUB_SEVERITY_LABELS = {
    "Very High": "Severity: Very High",
    "High": "Severity: High",
    "Medium": "Severity: Medium",
    "Low": "Severity: Low",
    "Very Low": "Severity: Very Low",
    "Informational": "Severity: Informational",
}


@dataclass(frozen=True)
class FormatOptions:
    tracker: str = "github"
    managed_tag: str = MANAGED_TAG
    source_base_paths: tuple[str, ...] = ()
    source_root: str | None = None
    commit_hash: str | None = None
    github_repo: str | None = None
    pr_link: str | None = None


def severity_level(raw: int | str | None) -> str:
    """Normalize a scan severity to a named level; unknown values are Medium."""
    if raw is None or isinstance(raw, bool):
        return DEFAULT_LEVEL
    if isinstance(raw, int):
        return _ORDINAL_LEVELS.get(raw, DEFAULT_LEVEL)
    text = str(raw).strip()
    if text.isdigit():
        return _ORDINAL_LEVELS.get(int(text), DEFAULT_LEVEL)
    key = "".join(ch for ch in text.lower() if ch.isalpha())
    return _NAMED_LEVELS.get(key, DEFAULT_LEVEL)


def tracker_severity(raw: int | str | None, tracker: str) -> str:
    level = severity_level(raw)
    if tracker == "ado":
        return ADO_SEVERITY.get(level, ADO_DEFAULT_SEVERITY)
    return GITHUB_SEVERITY_LABELS.get(level, GITHUB_SEVERITY_LABELS[DEFAULT_LEVEL])


def strip_base_paths(path: str, base_paths: tuple[str, ...]) -> str:
    for base in base_paths:
        if base and path.startswith(base):
            path = path[len(base) :]
    return path.lstrip("/")


@lru_cache(maxsize=1024)
def locate_source(path: str, root: str) -> str | None:
    """Find a file by basename under ``root``, skipping .git directories.

    Returns the first hit as a path relative to ``root``, or None.
    """
    name = Path(path).name
    if not name:
        return None
    for current, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if d != ".git")
        if name in files:
            return Path(current, name).relative_to(root).as_posix()
    return None


def format_title(flaw: Flaw, identity: str) -> str:
    name = flaw.cwe_name or "Security Finding"
    head = f"{name} ('{flaw.category}')" if flaw.category else name
    marker = format_marker(identity)
    room = MAX_TITLE_LENGTH - len(marker) - 1
    if len(head) > room:
        head = head[: max(room, 0)].rstrip()
    return f"{head} {marker}".strip()


def commit_permalink(flaw: Flaw, path: str, options: FormatOptions) -> str | None:
    if not (options.github_repo and options.commit_hash and path):
        return None
    url = f"https://github.com/{options.github_repo}/blob/{options.commit_hash}/{path}"
    if flaw.line:
        start = max(flaw.line - LINE_CONTEXT, 1)
        url += f"#L{start}-L{flaw.line + LINE_CONTEXT}"
    return url


def format_body(flaw: Flaw, identity: str, options: FormatOptions) -> str:
    level = severity_level(flaw.severity)
    lines: list[str] = ["# Veracode Security Finding", "", "## Details", ""]
    lines.append(f"- **Identity**: `{identity}`")
    lines.append(f"- **Issue ID**: {flaw.issue_id or 'Unknown'}")
    lines.append(f"- **Severity**: {level}")
    cwe = flaw.cwe_id or "Unknown"
    lines.append(
        f"- **CWE**: {cwe} ({flaw.cwe_name})" if flaw.cwe_name else f"- **CWE**: {cwe}"
    )
    lines.append(f"- **Category**: {flaw.category or 'Unknown'}")
    lines.append(f"- **Scan type**: {flaw.scan_type.value}")
    lines.append("")

    if flaw.file_path:
        path = strip_base_paths(flaw.file_path, options.source_base_paths)
        lines += ["## Location", "", f"- **File**: {path}"]
        if flaw.line:
            lines.append(f"- **Line**: {flaw.line}")
        if options.commit_hash:
            lines.append(f"- **Commit**: {options.commit_hash}")
        if options.tracker == "github":
            located = locate_source(path, options.source_root) if options.source_root else None
            link = commit_permalink(flaw, located or path, options)
            if link:
                lines.append(f"- **Source**: {link}")
        lines.append("")

    if flaw.description:
        lines += ["## Description", "", unquote(flaw.description), ""]
    if flaw.procedure:
        lines += ["## Procedure", "", flaw.procedure, ""]
    if flaw.references:
        lines += ["## References", ""]
        lines += [f"- {ref}" for ref in flaw.references]
        lines.append("")
    if options.pr_link:
        lines += [f"Veracode issue link to PR: {options.pr_link}", ""]
    return "\n".join(lines).rstrip() + "\n"


def format_tags(flaw: Flaw, options: FormatOptions) -> tuple[str, ...]:
    scan_label = PIPELINE_LABEL if flaw.scan_type is ScanType.PIPELINE else POLICY_LABEL
    if options.tracker == "ado":
        return (options.managed_tag, SECURITY_TAG, scan_label)
    return (options.managed_tag, scan_label)


def build_draft(flaw: Flaw, identity: str, options: FormatOptions) -> TicketDraft:
    return TicketDraft(
        title=format_title(flaw, identity),
        body=format_body(flaw, identity, options),
        tags=format_tags(flaw, options),
        severity=tracker_severity(flaw.severity, options.tracker),
        identity=identity,
    )


def _commit_suffix(options: FormatOptions) -> str:
    return f" (commit {options.commit_hash})" if options.commit_hash else ""


def reopen_note(identity: str, options: FormatOptions) -> str:
    return f"Reopened by flawsync: {identity} is present in the current Veracode scan{_commit_suffix(options)}."


def mitigated_note(identity: str, options: FormatOptions) -> str:
    return (
        f"Closed by flawsync: the mitigation for {identity} was approved in Veracode"
        f"{_commit_suffix(options)}."
    )


def stale_note(identity: str, options: FormatOptions) -> str:
    return f"Closed by flawsync: {identity} was not found in current scan{_commit_suffix(options)}."


__all__ = [
    "MANAGED_TAG",
    "POLICY_LABEL",
    "PIPELINE_LABEL",
    "ADO_SEVERITY",
    "GITHUB_SEVERITY_LABELS",
    "FormatOptions",
    "severity_level",
    "tracker_severity",
    "strip_base_paths",
    "locate_source",
    "format_title",
    "format_body",
    "format_tags",
    "build_draft",
    "reopen_note",
    "mitigated_note",
    "stale_note",
]
