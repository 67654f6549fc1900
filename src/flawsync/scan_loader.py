"""Veracode results file loading.

Two report shapes are recognised:

* pipeline scan: a JSON object carrying a ``pipeline_scan`` marker, flaws under
  ``findings`` (a bare top-level list of findings is treated the same way);
* policy / sandbox scan: a JSON object with ``_embedded.findings``.

Anything else loads as an empty report so the run ends without mutations.
Unreadable files and malformed JSON raise :class:`~flawsync.errors.ScanLoadError`.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ScanLoadError
from .logging import get_logger
from .models import Flaw, ScanType

APPROVED = "APPROVED"


@dataclass
class ScanReport:
    scan_type: ScanType | None
    flaws: list[Flaw] = field(default_factory=list)
    source: Path | None = None

    @property
    def empty(self) -> bool:
        return not self.flaws


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _int_or_none(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _severity(value: Any) -> int | str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, str)):
        return value
    if isinstance(value, float):
        return int(value)
    return None


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def pipeline_flaw(finding: Mapping[str, Any]) -> Flaw:
    source = _mapping(_mapping(finding.get("files")).get("source_file"))
    file_path = _str_or_none(source.get("file"))
    return Flaw(
        scan_type=ScanType.PIPELINE,
        issue_id=_str_or_none(finding.get("issue_id")),
        cwe_id=_str_or_none(finding.get("cwe_id")),
        cwe_name=_str_or_none(finding.get("issue_type")),
        severity=_severity(finding.get("severity")),
        file_path=file_path,
        file_name=Path(file_path).name if file_path else None,
        line=_int_or_none(source.get("line")),
        category=_str_or_none(finding.get("title")),
        mitigated=False,
        description=str(finding.get("display_text") or ""),
        references=tuple(
            ref for ref in (_str_or_none(finding.get("flaw_details_link")),) if ref
        ),
        raw=finding,
    )


def policy_flaw(finding: Mapping[str, Any]) -> Flaw:
    details = _mapping(finding.get("finding_details"))
    status = _mapping(finding.get("finding_status"))
    cwe = _mapping(details.get("cwe"))
    category = _mapping(details.get("finding_category"))
    references = tuple(
        ref for ref in (_str_or_none(cwe.get("href")),) if ref
    )
    return Flaw(
        scan_type=ScanType.POLICY,
        issue_id=_str_or_none(finding.get("issue_id")),
        cwe_id=_str_or_none(cwe.get("id")),
        cwe_name=_str_or_none(cwe.get("name")),
        severity=_severity(details.get("severity")),
        file_path=_str_or_none(details.get("file_path")),
        file_name=_str_or_none(details.get("file_name")),
        line=_int_or_none(details.get("file_line_number")),
        category=_str_or_none(category.get("name")),
        mitigated=str(status.get("resolution_status") or "").upper() == APPROVED,
        description=str(finding.get("description") or ""),
        procedure=_str_or_none(details.get("procedure")),
        references=references,
        raw=finding,
    )


def _collect(findings: Any, scan_type: ScanType) -> list[Flaw]:
    if not isinstance(findings, list):
        raise ScanLoadError(f"{scan_type.value} scan findings must be a list")
    convert = pipeline_flaw if scan_type is ScanType.PIPELINE else policy_flaw
    logger = get_logger()
    flaws: list[Flaw] = []
    for position, entry in enumerate(findings):
        if not isinstance(entry, Mapping):
            logger.warning("skipping malformed finding", position=position)
            continue
        flaws.append(convert(entry))
    return flaws


def parse_report(document: Any) -> ScanReport:
    logger = get_logger()
    if isinstance(document, list):
        logger.info("This is a pipeline scan")
        return ScanReport(ScanType.PIPELINE, _collect(document, ScanType.PIPELINE))
    if not isinstance(document, Mapping):
        logger.info("No flaws found to import!")
        return ScanReport(None)
    if "pipeline_scan" in document:
        logger.info("This is a pipeline scan")
        return ScanReport(
            ScanType.PIPELINE, _collect(document.get("findings") or [], ScanType.PIPELINE)
        )
    embedded = document.get("_embedded")
    if isinstance(embedded, Mapping) and "findings" in embedded:
        logger.info("This is a policy scan")
        return ScanReport(
            ScanType.POLICY, _collect(embedded.get("findings") or [], ScanType.POLICY)
        )
    logger.info("No flaws found to import!")
    return ScanReport(None)


def load_report(path: str | Path) -> ScanReport:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as exc:
        raise ScanLoadError(f"Cannot read scan results file {p}: {exc}") from exc
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ScanLoadError(f"Scan results file {p} is not valid JSON: {exc}") from exc
    report = parse_report(document)
    report.source = p
    return report


__all__ = ["ScanReport", "parse_report", "load_report", "pipeline_flaw", "policy_flaw"]
