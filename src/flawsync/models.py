from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ScanType(str, Enum):
    PIPELINE = "pipeline"
    POLICY = "policy"


class TicketState(str, Enum):
    """Tracker lifecycle states normalized across backends."""

    OPEN = "OPEN"
    CLOSED = "CLOSED"
    RESOLVED = "RESOLVED"
    REMOVED = "REMOVED"

    @property
    def is_active(self) -> bool:
        return self is TicketState.OPEN


class DecisionKind(str, Enum):
    CREATE = "create"
    REOPEN = "reopen"
    SKIP = "skip"
    CLOSE_MITIGATED = "close_mitigated"
    CLOSE_STALE = "close_stale"


@dataclass(frozen=True)
class Flaw:
    """One finding of a Veracode scan report, normalized across scan types.

    ``severity`` keeps the raw scan value (an ordinal 0-5 or a named level);
    mapping to tracker vocabularies happens in :mod:`flawsync.formatting`.
    """

    scan_type: ScanType
    issue_id: str | None = None
    cwe_id: str | None = None
    cwe_name: str | None = None
    severity: int | str | None = None
    file_path: str | None = None
    file_name: str | None = None
    line: int | None = None
    category: str | None = None
    mitigated: bool = False
    description: str = ""
    procedure: str | None = None
    references: tuple[str, ...] = ()
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class TrackerTicket:
    id: int
    title: str
    state: TicketState
    tags: tuple[str, ...] = ()
    last_changed: datetime = EPOCH
    url: str | None = None
    raw_state: str | None = None


@dataclass(frozen=True)
class TicketDraft:
    """Fields of a ticket about to be created; adapters map them to their API."""

    title: str
    body: str
    tags: tuple[str, ...]
    severity: str
    identity: str


@dataclass(frozen=True)
class Decision:
    kind: DecisionKind
    identity: str
    flaw: Flaw | None = None
    ticket: TrackerTicket | None = None
    reason: str | None = None


@dataclass
class RunSummary:
    created: int = 0
    reopened: int = 0
    skipped: int = 0
    closed_mitigated: int = 0
    closed_stale: int = 0
    errors: int = 0
    flaws_total: int = 0
    flaws_considered: int = 0
    dry_run: bool = False
    changes: list[dict[str, Any]] = field(default_factory=list)

    def counters(self) -> dict[str, int]:
        return {
            "created": self.created,
            "reopened": self.reopened,
            "skipped": self.skipped,
            "closed_mitigated": self.closed_mitigated,
            "closed_stale": self.closed_stale,
            "errors": self.errors,
        }

    @property
    def consistent(self) -> bool:
        return self.created + self.reopened + self.skipped == self.flaws_considered

    def to_dict(self) -> dict[str, Any]:
        return {
            "totals": {
                **self.counters(),
                "flaws": self.flaws_total,
                "considered": self.flaws_considered,
            },
            "dry_run": self.dry_run,
            "consistent": self.consistent,
            "changes": list(self.changes),
        }


__all__ = [
    "EPOCH",
    "ScanType",
    "TicketState",
    "DecisionKind",
    "Flaw",
    "TrackerTicket",
    "TicketDraft",
    "Decision",
    "RunSummary",
]
