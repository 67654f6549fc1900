"""Decide what to do with each flaw and each leftover ticket.

``plan_flaw`` classifies one flaw against the tracker snapshot:

* mitigated upstream, matching active ticket -> ``CLOSE_MITIGATED``
* mitigated upstream, nothing open           -> no decision
* no matching ticket                         -> ``CREATE``
* matching closed / resolved ticket          -> ``REOPEN``
* matching open ticket                       -> ``SKIP``

Every identity is recorded as seen, whatever the branch. Once all flaws are
planned, ``plan_stale_closures`` emits ``CLOSE_STALE`` for every active
ticket of the report's scan type whose identity never showed up in it. Tickets
of the other scan type belong to other runs and are left alone.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from .identity import identity_of, matches_fragment, partial_fragment
from .models import Decision, DecisionKind, Flaw, ScanType, TicketState, TrackerTicket
from .state_index import TrackerStateIndex, ticket_scan_type

_REOPENABLE = frozenset({TicketState.CLOSED, TicketState.RESOLVED})


class ReconciliationPlanner:
    def __init__(self, scan_type: ScanType | None = None) -> None:
        self.scan_type = scan_type
        self.seen: set[str] = set()

    def plan_flaw(self, flaw: Flaw, index: TrackerStateIndex) -> Decision | None:
        identity = identity_of(flaw)
        repeated = identity in self.seen
        self.seen.add(identity)
        ticket = index.lookup(identity)

        if flaw.mitigated:
            if ticket is not None and ticket.state.is_active and not repeated:
                return Decision(DecisionKind.CLOSE_MITIGATED, identity, flaw, ticket)
            return None

        if repeated:
            return Decision(
                DecisionKind.SKIP, identity, flaw, ticket, reason="duplicate in report"
            )
        if ticket is None or ticket.state is TicketState.REMOVED:
            return Decision(DecisionKind.CREATE, identity, flaw)
        if ticket.state in _REOPENABLE:
            return Decision(DecisionKind.REOPEN, identity, flaw, ticket)
        return Decision(DecisionKind.SKIP, identity, flaw, ticket, reason="already open")

    def plan_stale_closures(self, index: TrackerStateIndex) -> list[Decision]:
        return plan_stale_closures(index, self.seen, self.scan_type)


def plan_stale_closures(
    index: TrackerStateIndex,
    seen: Iterable[str],
    scan_type: ScanType | None = None,
) -> list[Decision]:
    """CLOSE_STALE for active tickets nobody in ``seen`` accounts for.

    With a ``scan_type`` only tickets of that scan type are considered.
    Truncated-title tickets are stale when no seen identity matches their
    marker fragment.
    """
    seen_set = set(seen)

    def in_scope(ticket: TrackerTicket) -> bool:
        return scan_type is None or ticket_scan_type(ticket) is scan_type

    decisions: list[Decision] = []
    for identity, ticket in index.by_identity.items():
        if ticket.state.is_active and identity not in seen_set and in_scope(ticket):
            decisions.append(Decision(DecisionKind.CLOSE_STALE, identity, ticket=ticket))
    for ticket in index.partial:
        if not ticket.state.is_active or not in_scope(ticket):
            continue
        if any(matches_fragment(identity, ticket.title) for identity in seen_set):
            continue
        decisions.append(
            Decision(DecisionKind.CLOSE_STALE, partial_fragment(ticket.title), ticket=ticket)
        )
    return decisions


def report_scan_type(flaws: Sequence[Flaw]) -> ScanType | None:
    return flaws[0].scan_type if flaws else None


def build_plan(flaws: Iterable[Flaw], index: TrackerStateIndex) -> list[Decision]:
    """Full plan for a report: flaw decisions first, stale closures last."""
    report = list(flaws)
    planner = ReconciliationPlanner(report_scan_type(report))
    plan = [d for d in (planner.plan_flaw(f, index) for f in report) if d is not None]
    plan.extend(planner.plan_stale_closures(index))
    return plan


__all__ = ["ReconciliationPlanner", "plan_stale_closures", "report_scan_type", "build_plan"]
