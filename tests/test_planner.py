from __future__ import annotations

from flawsync.models import DecisionKind, Flaw, ScanType, TicketState
from flawsync.planner import ReconciliationPlanner, build_plan, plan_stale_closures
from flawsync.state_index import TrackerStateIndex, index_tickets


def _flaw(issue_id: str, *, mitigated: bool = False) -> Flaw:
    return Flaw(scan_type=ScanType.POLICY, issue_id=issue_id, mitigated=mitigated)


def _kinds(plan):
    return [(d.kind, d.identity) for d in plan]


def test_mitigated_flaw_closes_open_ticket(ticket):
    index = index_tickets([ticket(1, "[VID:7]")])
    plan = build_plan([_flaw("7", mitigated=True)], index)
    assert _kinds(plan) == [(DecisionKind.CLOSE_MITIGATED, "VID:7")]


def test_mitigated_flaw_without_open_ticket_is_a_noop(ticket):
    index = index_tickets([ticket(1, "[VID:7]", TicketState.CLOSED)])
    assert build_plan([_flaw("7", mitigated=True)], index) == []
    assert build_plan([_flaw("8", mitigated=True)], TrackerStateIndex()) == []


def test_unseen_open_ticket_is_stale(ticket):
    index = index_tickets([ticket(1, "[VID:old]"), ticket(2, "[VID:gone]", TicketState.CLOSED)])
    plan = build_plan([_flaw("new")], index)
    assert _kinds(plan) == [
        (DecisionKind.CREATE, "VID:new"),
        (DecisionKind.CLOSE_STALE, "VID:old"),
    ]


def test_mitigated_identity_is_seen_and_not_stale(ticket):
    index = index_tickets([ticket(1, "[VID:7]", TicketState.CLOSED)])
    planner = ReconciliationPlanner()
    assert planner.plan_flaw(_flaw("7", mitigated=True), index) is None
    assert "VID:7" in planner.seen
    assert planner.plan_stale_closures(index) == []


def test_closed_and_resolved_tickets_reopen(ticket):
    index = index_tickets(
        [ticket(1, "[VID:1]", TicketState.CLOSED), ticket(2, "[VID:2]", TicketState.RESOLVED)]
    )
    plan = build_plan([_flaw("1"), _flaw("2")], index)
    assert [d.kind for d in plan] == [DecisionKind.REOPEN, DecisionKind.REOPEN]
    assert [d.ticket.id for d in plan] == [1, 2]


def test_removed_ticket_gets_replaced(ticket):
    index = index_tickets([ticket(1, "[VID:1]", TicketState.REMOVED)])
    assert _kinds(build_plan([_flaw("1")], index)) == [(DecisionKind.CREATE, "VID:1")]


def test_open_ticket_is_skipped(ticket):
    index = index_tickets([ticket(1, "[VID:1]")])
    (decision,) = build_plan([_flaw("1")], index)
    assert decision.kind is DecisionKind.SKIP
    assert decision.reason == "already open"


def test_repeated_identity_in_report_is_skipped():
    plan = build_plan([_flaw("1"), _flaw("1")], TrackerStateIndex())
    assert [d.kind for d in plan] == [DecisionKind.CREATE, DecisionKind.SKIP]
    assert plan[1].reason == "duplicate in report"


def test_duplicates_are_never_closed(ticket):
    index = index_tickets(
        [ticket(1, "[VID:9]", age_minutes=30), ticket(2, "[VID:9]", age_minutes=1)]
    )
    stale = plan_stale_closures(index, seen=set())
    assert [d.ticket.id for d in stale] == [2]


def _pipeline_flaw(cwe: str, path: str, line: int) -> Flaw:
    return Flaw(scan_type=ScanType.PIPELINE, cwe_id=cwe, file_path=path, line=line)


def test_pipeline_run_leaves_policy_tickets_open(ticket):
    index = index_tickets(
        [
            ticket(1, "SQL Injection [VID:101]", tags=("Veracode", "Veracode Policy Scan")),
            ticket(2, "Old [VID:22:src/legacy.py:3]", tags=("Veracode", "Veracode Pipeline Scan")),
        ]
    )
    plan = build_plan([_pipeline_flaw("89", "src/app/db.py", 42)], index)
    assert _kinds(plan) == [
        (DecisionKind.CREATE, "VID:89:src/app/db.py:42"),
        (DecisionKind.CLOSE_STALE, "VID:22:src/legacy.py:3"),
    ]


def test_policy_run_leaves_untagged_pipeline_tickets_open(ticket):
    index = index_tickets([ticket(1, "[VID:22:src/legacy.py:3]"), ticket(2, "[VID:5]")])
    plan = build_plan([_flaw("6")], index)
    assert _kinds(plan) == [
        (DecisionKind.CREATE, "VID:6"),
        (DecisionKind.CLOSE_STALE, "VID:5"),
    ]


def test_scan_label_wins_over_identity_shape(ticket):
    # a policy-scan ticket whose title happens to look like a pipeline identity
    index = index_tickets([ticket(1, "[VID:1:a:2]", tags=("Veracode", "Veracode Policy Scan"))])
    assert plan_stale_closures(index, set(), ScanType.PIPELINE) == []
    assert len(plan_stale_closures(index, set(), ScanType.POLICY)) == 1


def test_truncated_ticket_without_a_match_is_stale(ticket):
    cut = ticket(7, "A very long finding name [VID:89:src/app/db.py:4")
    index = index_tickets([cut, ticket(8, "Done [VID:79:web/a.js:1", TicketState.CLOSED)])

    (decision,) = plan_stale_closures(index, set())

    assert decision.kind is DecisionKind.CLOSE_STALE
    assert decision.ticket is cut
    assert decision.identity == "VID:89:src/app/db.py:4"


def test_truncated_ticket_matched_by_a_seen_identity_stays_open(ticket):
    index = index_tickets([ticket(7, "A very long finding name [VID:89:src/app/db.py:42")])
    plan = build_plan([_pipeline_flaw("89", "src/app/db.py", 42)], index)
    assert [d.kind for d in plan] == [DecisionKind.SKIP]
