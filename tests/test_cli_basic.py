from __future__ import annotations

import json
import textwrap
from pathlib import Path

import pytest

from flawsync import cli
from flawsync.models import RunSummary

POLICY_REPORT = {
    "_embedded": {
        "findings": [
            {
                "issue_id": 101,
                "finding_status": {"resolution_status": "NONE"},
                "finding_details": {"severity": 5, "cwe": {"id": 89, "name": "SQL Injection"}},
            },
            {
                "issue_id": 102,
                "finding_status": {"resolution_status": "APPROVED"},
                "finding_details": {"severity": 2, "cwe": {"id": 79, "name": "XSS"}},
            },
        ]
    }
}


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for name in ("GITHUB_REPOSITORY", "GITHUB_TOKEN", "GH_TOKEN", "FLAWSYNC_GITHUB_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    (tmp_path / "results.json").write_text(json.dumps(POLICY_REPORT))
    (tmp_path / "flawsync.config.yaml").write_text(
        textwrap.dedent(
            """\
            github:
              repo: acme/widgets
            scan:
              results_file: results.json
            """
        )
    )
    return tmp_path


def test_validate_reports_scan(workspace, capsys):
    assert cli.main(["validate"]) == 0
    out = capsys.readouterr().out
    assert "[validate] tracker=github scan=policy flaws=2" in out


def test_summary_lists_identities(workspace, capsys):
    assert cli.main(["summary", "--limit", "1"]) == 0
    out = capsys.readouterr().out
    assert "Total flaws: 2" in out
    assert "- VID:101 [Very High] SQL Injection" in out
    assert "... 1 more" in out


def test_sync_without_token_is_usage_error(workspace, capsys):
    assert cli.main(["sync"]) == cli.EXIT_USAGE
    assert "token" in capsys.readouterr().err


def test_missing_results_file_is_usage_error(workspace, capsys):
    assert cli.main(["validate", "--results", "absent.json"]) == cli.EXIT_USAGE
    assert "Cannot read scan results file" in capsys.readouterr().err


def test_unknown_config_file_is_usage_error(workspace):
    assert cli.main(["validate", "--config", "nope.yaml"]) == cli.EXIT_USAGE


def test_sync_flags_reach_the_run(workspace, monkeypatch):
    seen = {}

    def _fake_run(cfg):
        seen["cfg"] = cfg
        return RunSummary(dry_run=cfg.dry_run)

    monkeypatch.setattr(cli, "run_sync", _fake_run)
    rc = cli.main(
        [
            "sync",
            "--dry-run",
            "--wait-time",
            "0",
            "--source-base-path",
            "/build/",
            "--pr-number",
            "7",
            "--commit",
            "abc",
            "--fail-fast",
            "--source-root",
            "checkout",
        ]
    )
    assert rc == 0
    cfg = seen["cfg"]
    assert cfg.dry_run and cfg.fail_fast
    assert cfg.wait_time == 0
    assert cfg.source_base_paths == ["/build/"]
    assert cfg.source_root == Path("checkout")
    assert cfg.pr_link == "https://github.com/acme/widgets/pull/7"
    assert cfg.commit_hash == "abc"


def test_tracker_failure_aborts_with_exit_one(workspace, monkeypatch):
    def _boom(cfg):
        raise RuntimeError("Connection reset by peer")

    monkeypatch.setattr(cli, "run_sync", _boom)
    assert cli.main(["--quiet", "sync"]) == cli.EXIT_ABORTED


def test_abort_log_names_the_command(workspace, monkeypatch, capsys):
    def _boom(cfg):
        raise RuntimeError("Connection reset by peer")

    monkeypatch.setattr(cli, "run_sync", _boom)
    assert cli.main(["sync", "--json-logs"]) == cli.EXIT_ABORTED
    entry = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert entry["message"] == "sync aborted"
    assert entry["command"] == "sync"
