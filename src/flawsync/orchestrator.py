"""One complete reconciliation run.

Validates configuration, loads the scan report, snapshots the tracker, drives
the executor and reports the RunSummary. Configuration and input errors are
raised before the tracker is contacted.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

from .ado_rest import AzureDevOpsClient
from .config import RunConfig, validate_config
from .executor import ExecutorOptions, ReconciliationExecutor, Sleep
from .formatting import FormatOptions
from .github_rest import GitHubRestClient
from .logging import get_logger
from .models import RunSummary
from .observability import get_tracer
from .scan_loader import load_report
from .state_index import build_index
from .tracker import AsyncTracker, TrackerClient


def build_client(cfg: RunConfig) -> TrackerClient:
    if cfg.tracker == "ado":
        return AsyncTracker(
            AzureDevOpsClient(
                pat=cfg.ado_pat or "",
                organization=cfg.ado_organization or "",
                project=cfg.ado_project or "",
                work_item_type=cfg.ado_work_item_type,
                reopen_state=cfg.ado_reopen_state,
                close_state=cfg.ado_close_state,
                base_url=cfg.ado_base_url,
            )
        )
    return AsyncTracker(
        GitHubRestClient(
            token=cfg.github_token or "",
            repo=cfg.github_repo or "",
            base_url=cfg.github_api_url,
        )
    )


def executor_options(cfg: RunConfig) -> ExecutorOptions:
    return ExecutorOptions(
        wait_time=cfg.wait_time,
        fail_fast=cfg.fail_fast,
        verbose=cfg.verbose,
        dry_run=cfg.dry_run,
        formatting=FormatOptions(
            tracker=cfg.tracker,
            managed_tag=cfg.managed_tag,
            source_base_paths=tuple(cfg.source_base_paths),
            source_root=str(cfg.source_root) if cfg.source_root else None,
            commit_hash=cfg.commit_hash,
            github_repo=cfg.github_repo,
            pr_link=cfg.pr_link,
        ),
    )


def format_summary(summary: RunSummary) -> list[str]:
    lines = [
        "[flawsync] Run summary"
        + (" (dry run)" if summary.dry_run else "")
        + f": flaws={summary.flaws_total} considered={summary.flaws_considered}",
    ]
    for key, value in summary.counters().items():
        lines.append(f"  {key}: {value}")
    return lines


def report_summary(summary: RunSummary) -> None:
    logger = get_logger()
    for line in format_summary(summary):
        logger.info(line)
    logger.log_operation("sync_complete", **summary.counters())
    if not summary.consistent:
        logger.warning(
            "created + reopened + skipped does not match the number of flaws processed",
            considered=summary.flaws_considered,
            accounted=summary.created + summary.reopened + summary.skipped,
        )


def write_summary(summary: RunSummary, path: str | Path) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(summary.to_dict(), indent=2) + "\n", encoding="utf-8")


async def sync_flaws(
    cfg: RunConfig,
    *,
    client: TrackerClient | None = None,
    sleep: Sleep = asyncio.sleep,
) -> RunSummary:
    validate_config(cfg, require_credentials=client is None)
    logger = get_logger()
    assert cfg.results_file is not None
    report = load_report(cfg.results_file)
    if report.empty:
        logger.info("No flaws found to import, nothing to do")
        summary = RunSummary(dry_run=cfg.dry_run)
        report_summary(summary)
        if cfg.summary_json:
            write_summary(summary, cfg.summary_json)
        return summary

    tracker = client or build_client(cfg)
    with get_tracer().start_as_current_span("flawsync.sync") as span:
        span.set_attribute("flawsync.tracker", tracker.name)
        span.set_attribute("flawsync.flaws", len(report.flaws))
        run_context = logger.context(tracker=tracker.name, dry_run=cfg.dry_run)
        with run_context, logger.timed_operation("sync"):
            index = await build_index(tracker, cfg.managed_tag)
            executor = ReconciliationExecutor(tracker, executor_options(cfg), sleep=sleep)
            summary = await executor.run(report.flaws, index)
        for key, value in summary.counters().items():
            span.set_attribute(f"flawsync.{key}", value)

    report_summary(summary)
    if cfg.summary_json:
        write_summary(summary, cfg.summary_json)
    return summary


def run_sync(cfg: RunConfig) -> RunSummary:
    return asyncio.run(sync_flaws(cfg))


__all__ = [
    "build_client",
    "executor_options",
    "format_summary",
    "report_summary",
    "write_summary",
    "sync_flaws",
    "run_sync",
]
