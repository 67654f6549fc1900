"""flawsync - reconcile Veracode scan flaws with issue tracker tickets.

High-level public API:

from flawsync import load_config, run_sync

cfg = load_config('flawsync.config.yaml')
summary = run_sync(cfg)
print(summary.counters())

The engine pieces (identity derivation, tracker snapshot, planner, executor)
are importable on their own for embedding and testing; the CLI delegates to
this library.
"""

from __future__ import annotations

from .config import ConfigError, RunConfig, load_config, validate_config
from .executor import ExecutorOptions, ReconciliationExecutor
from .identity import identity_of
from .models import Decision, DecisionKind, Flaw, RunSummary, ScanType, TicketState, TrackerTicket
from .orchestrator import run_sync, sync_flaws
from .planner import ReconciliationPlanner, build_plan
from .state_index import TrackerStateIndex, build_index

__version__ = "0.2.0"

__all__ = [
    "ConfigError",
    "RunConfig",
    "load_config",
    "validate_config",
    "ExecutorOptions",
    "ReconciliationExecutor",
    "identity_of",
    "Decision",
    "DecisionKind",
    "Flaw",
    "RunSummary",
    "ScanType",
    "TicketState",
    "TrackerTicket",
    "run_sync",
    "sync_flaws",
    "ReconciliationPlanner",
    "build_plan",
    "TrackerStateIndex",
    "build_index",
    "__version__",
]
