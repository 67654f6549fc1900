from __future__ import annotations

import json
from pathlib import Path

import pytest

from flawsync.errors import ScanLoadError
from flawsync.models import ScanType
from flawsync.scan_loader import load_report, parse_report

PIPELINE_REPORT = {
    "scan_id": "abc",
    "pipeline_scan": "23.1.0",
    "findings": [
        {
            "issue_id": 1001,
            "title": "Improper Neutralization",
            "issue_type": "SQL Injection",
            "severity": 4,
            "cwe_id": "89",
            "display_text": "Use%20bind%20variables",
            "files": {"source_file": {"file": "src/app/db.py", "line": 42}},
            "flaw_details_link": "https://downloads.veracode.com/flaw/1001",
        },
        {
            "issue_id": 1002,
            "severity": 2,
            "cwe_id": "79",
            "files": {"source_file": {"file": "web/page.js", "line": "7"}},
        },
    ],
}

POLICY_REPORT = {
    "_embedded": {
        "findings": [
            {
                "issue_id": 101,
                "description": "SQL injection",
                "finding_status": {"resolution_status": "NONE"},
                "finding_details": {
                    "severity": 5,
                    "cwe": {"id": 89, "name": "SQL Injection", "href": "https://cwe.test/89"},
                    "file_path": "src/app/db.py",
                    "file_name": "db.py",
                    "file_line_number": 42,
                    "finding_category": {"name": "SQL Injection"},
                    "procedure": "executeQuery",
                },
            },
            {
                "issue_id": 102,
                "finding_status": {"resolution_status": "APPROVED"},
                "finding_details": {"severity": 2, "cwe": {"id": 79}},
            },
        ]
    }
}


def _write(tmp_path: Path, payload) -> Path:
    p = tmp_path / "results.json"
    p.write_text(json.dumps(payload))
    return p


def test_pipeline_report_is_parsed(tmp_path):
    report = load_report(_write(tmp_path, PIPELINE_REPORT))
    assert report.scan_type is ScanType.PIPELINE
    assert len(report.flaws) == 2
    first, second = report.flaws
    assert first.cwe_id == "89"
    assert first.file_path == "src/app/db.py"
    assert first.file_name == "db.py"
    assert first.line == 42
    assert first.cwe_name == "SQL Injection"
    assert first.references == ("https://downloads.veracode.com/flaw/1001",)
    assert second.line == 7
    assert not any(f.mitigated for f in report.flaws)


def test_top_level_list_is_a_pipeline_report():
    report = parse_report(PIPELINE_REPORT["findings"])
    assert report.scan_type is ScanType.PIPELINE
    assert len(report.flaws) == 2


def test_policy_report_is_parsed_with_mitigation(tmp_path):
    report = load_report(_write(tmp_path, POLICY_REPORT))
    assert report.scan_type is ScanType.POLICY
    first, second = report.flaws
    assert first.issue_id == "101"
    assert first.cwe_id == "89"
    assert first.severity == 5
    assert first.procedure == "executeQuery"
    assert first.references == ("https://cwe.test/89",)
    assert first.mitigated is False
    assert second.mitigated is True


def test_unrecognized_report_is_empty():
    report = parse_report({"something": "else"})
    assert report.scan_type is None
    assert report.empty


def test_empty_findings_is_empty_report():
    assert parse_report({"_embedded": {"findings": []}}).empty


def test_malformed_entries_are_skipped():
    report = parse_report({"pipeline_scan": "1", "findings": ["oops", {"issue_id": 1}]})
    assert len(report.flaws) == 1


def test_findings_must_be_a_list():
    with pytest.raises(ScanLoadError):
        parse_report({"_embedded": {"findings": {"issue_id": 1}}})


def test_invalid_json_raises(tmp_path):
    p = tmp_path / "broken.json"
    p.write_text("{not json")
    with pytest.raises(ScanLoadError):
        load_report(p)


def test_missing_file_raises(tmp_path):
    with pytest.raises(ScanLoadError):
        load_report(tmp_path / "missing.json")
