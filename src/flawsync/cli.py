"""flawsync CLI.

Subcommands:
  sync      -> reconcile tracker tickets with a Veracode results file
  validate  -> check configuration and load the results file (no tracker I/O)
  summary   -> list the flaws of a results file with their identities

Exit codes: 0 success, 1 aborted run, 2 configuration or input error.
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from flawsync.config import ConfigError, RunConfig, load_config, validate_config
from flawsync.errors import ScanLoadError, classify_error
from flawsync.formatting import severity_level
from flawsync.identity import identity_of
from flawsync.logging import configure_logging
from flawsync.observability import configure_telemetry
from flawsync.orchestrator import run_sync
from flawsync.scan_loader import load_report

CONFIG_DEFAULT = "flawsync.config.yaml"
EXIT_ABORTED = 1
EXIT_USAGE = 2

_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--config",
        help=f"YAML configuration file (default: {CONFIG_DEFAULT} when present)",
    )
    p.add_argument("--results", help="Veracode scan results JSON file")
    p.add_argument("--tracker", choices=["github", "ado"], help="Issue tracker backend")
    p.add_argument("--repo", help="GitHub repository (owner/repo)")
    p.add_argument("--ado-org", help="Azure DevOps organization")
    p.add_argument("--ado-project", help="Azure DevOps project")
    p.add_argument("--work-item-type", help="Azure DevOps work item type (default Bug)")


def _build_parser() -> argparse.ArgumentParser:
    """Construct top-level CLI parser with subcommands."""
    p = _FormatterArgumentParser(
        prog="flawsync", description="Reconcile Veracode flaws with issue tracker tickets"
    )
    p.add_argument(
        "--quiet",
        action="store_true",
        help="Only log warnings and errors",
    )
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    ps = sub.add_parser("sync", help="Create, reopen and close tickets from a scan report")
    _add_common(ps)
    ps.add_argument("--wait-time", type=float, help="Seconds between tracker calls")
    ps.add_argument(
        "--source-base-path",
        action="append",
        default=[],
        help="Prefix stripped from file paths in ticket bodies (up to three)",
    )
    ps.add_argument(
        "--source-root", help="Checkout searched by file name to build source permalinks"
    )
    ps.add_argument("--commit", help="Commit hash referenced in ticket bodies and notes")
    ps.add_argument("--pr-number", type=int, help="Pull request linked from created tickets")
    ps.add_argument("--fail-fast", action="store_true", help="Abort on the first tracker error")
    ps.add_argument("--verbose", action="store_true", help="Log full tracker diagnostics")
    ps.add_argument("--dry-run", action="store_true", help="Plan only, no tracker mutation")
    ps.add_argument("--summary-json", help="Write the run summary to this JSON file")
    ps.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    pv = sub.add_parser("validate", help="Validate configuration and the scan report")
    _add_common(pv)

    psm = sub.add_parser("summary", help="List flaws of a scan report with their identities")
    _add_common(psm)
    psm.add_argument("--limit", type=int, default=20)
    return p


def _resolve_config_path(args: argparse.Namespace) -> Path | None:
    if args.config:
        return Path(args.config)
    default = Path(CONFIG_DEFAULT)
    return default if default.exists() else None


def _apply_overrides(cfg: RunConfig, args: argparse.Namespace) -> RunConfig:
    if args.results:
        cfg.results_file = Path(args.results)
    if args.tracker:
        cfg.tracker = args.tracker
    if args.repo:
        cfg.github_repo = args.repo
    if args.ado_org:
        cfg.ado_organization = args.ado_org
    if args.ado_project:
        cfg.ado_project = args.ado_project
    if args.work_item_type:
        cfg.ado_work_item_type = args.work_item_type
    if getattr(args, "wait_time", None) is not None:
        cfg.wait_time = args.wait_time
    if getattr(args, "source_base_path", None):
        cfg.source_base_paths = list(args.source_base_path)
    if getattr(args, "source_root", None):
        cfg.source_root = Path(args.source_root)
    if getattr(args, "commit", None):
        cfg.commit_hash = args.commit
    if getattr(args, "pr_number", None) is not None:
        cfg.pr_number = args.pr_number
    for flag in ("fail_fast", "verbose", "dry_run"):
        if getattr(args, flag, False):
            setattr(cfg, flag, True)
    if getattr(args, "summary_json", None):
        cfg.summary_json = args.summary_json
    if getattr(args, "json_logs", False):
        cfg.logging_json_enabled = True
    return cfg


def _cmd_sync(cfg: RunConfig) -> int:
    if cfg.telemetry_enabled:
        configure_telemetry(exporter=cfg.telemetry_exporter, endpoint=cfg.telemetry_endpoint)
    summary = run_sync(cfg)
    if cfg.dry_run:
        print(f"[flawsync] dry run planned {sum(summary.counters().values())} action(s)")
    return 0


def _cmd_validate(cfg: RunConfig) -> int:
    validate_config(cfg, require_credentials=False)
    assert cfg.results_file is not None
    report = load_report(cfg.results_file)
    kind = report.scan_type.value if report.scan_type else "unrecognized"
    print(f"[validate] tracker={cfg.tracker} scan={kind} flaws={len(report.flaws)}")
    return 0


def _cmd_summary(cfg: RunConfig, limit: int) -> int:
    if cfg.results_file is None:
        raise ConfigError("No scan results file configured")
    report = load_report(cfg.results_file)
    print(f"Total flaws: {len(report.flaws)}")
    for flaw in report.flaws[: max(limit, 0)]:
        state = " (mitigated)" if flaw.mitigated else ""
        print(f"- {identity_of(flaw)} [{severity_level(flaw.severity)}] {flaw.cwe_name or ''}{state}")
    if len(report.flaws) > limit:
        print(f"... {len(report.flaws) - limit} more")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        cfg = _apply_overrides(load_config(_resolve_config_path(args)), args)
    except ConfigError as exc:
        print(f"[flawsync] configuration error: {exc}", file=sys.stderr)
        return EXIT_USAGE
    level = "WARNING" if args.quiet else cfg.logging_level
    logger = configure_logging(json_logging=cfg.logging_json_enabled, level=level)
    logger.bind(command=args.cmd)
    try:
        if args.cmd == "sync":
            return _cmd_sync(cfg)
        if args.cmd == "validate":
            return _cmd_validate(cfg)
        if args.cmd == "summary":
            return _cmd_summary(cfg, args.limit)
    except (ConfigError, ScanLoadError) as exc:
        print(f"[flawsync] {exc}", file=sys.stderr)
        return EXIT_USAGE
    except Exception as exc:
        info = classify_error(exc)
        logger.log_error(
            "sync aborted",
            error=info.message,
            category=info.category,
            original_type=info.original_type,
        )
        return EXIT_ABORTED
    parser.error(f"unknown command {args.cmd}")
    return EXIT_USAGE  # pragma: no cover - parser.error exits


__all__ = ["main"]
