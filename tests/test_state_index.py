from __future__ import annotations

import asyncio

from flawsync.models import ScanType, TicketState
from flawsync.state_index import build_index, fetch_all_tickets, index_tickets, ticket_scan_type


def test_three_pages_are_drained(fake_tracker, ticket):
    tickets = [ticket(i, f"Flaw {i} [VID:{i}]") for i in range(1, 6)]
    tracker = fake_tracker(tickets, page_size=2)

    async def _run():
        return await fetch_all_tickets(tracker, "Veracode")

    fetched = asyncio.run(_run())
    assert [t.id for t in fetched] == [1, 2, 3, 4, 5]
    assert [c for c in tracker.calls if c[0] == "list"] == [("list", 1), ("list", 2), ("list", 3)]

    index = index_tickets(fetched)
    assert len(index) == 5
    assert not index.duplicates


def test_listing_stops_on_empty_page(ticket):
    from flawsync.tracker import TrackerPage

    class _AlwaysMore:
        name = "odd"

        def __init__(self):
            self.pages = 0

        async def list_tickets(self, tag, page):
            self.pages += 1
            if page == 1:
                return TrackerPage([ticket(1, "[VID:1]")], more=True)
            return TrackerPage([], more=True)

    client = _AlwaysMore()
    fetched = asyncio.run(fetch_all_tickets(client, "Veracode"))
    assert len(fetched) == 1
    assert client.pages == 2


def test_only_tagged_tickets_are_listed(fake_tracker, ticket):
    tracker = fake_tracker(
        [ticket(1, "[VID:1]"), ticket(2, "[VID:2]", tags=("other",))]
    )
    index = asyncio.run(build_index(tracker, "Veracode"))
    assert list(index.by_identity) == ["VID:1"]


def test_most_recent_duplicate_is_canonical(ticket):
    older = ticket(10, "Old [VID:101]", TicketState.CLOSED, age_minutes=60)
    newer = ticket(20, "New [VID:101]", TicketState.OPEN, age_minutes=5)
    index = index_tickets([older, newer])
    assert index.lookup("VID:101") is newer
    assert index.duplicates["VID:101"] == [older]
    assert index.active == [newer]


def test_duplicate_tie_breaks_on_lowest_id(ticket):
    a = ticket(30, "[VID:5]")
    b = ticket(12, "[VID:5]")
    index = index_tickets([a, b])
    assert index.lookup("VID:5").id == 12


def test_titles_without_marker_are_ignored(ticket):
    index = index_tickets([ticket(1, "Plain bug"), ticket(2, "[VID:2]"), ticket(2, "[VID:2]")])
    assert index.ignored == 1
    assert len(index) == 1


def test_truncated_marker_is_found_by_fragment(ticket):
    cut = ticket(7, "A very long finding name [VID:89:src/app/db.py:42")
    index = index_tickets([cut])
    assert index.partial == [cut]
    assert index.lookup("VID:89:src/app/db.py:42") is cut
    assert index.lookup("VID:89:src/app/other.py:42") is None


def test_read_failure_degrades_to_empty_index(fake_tracker, capsys):
    tracker = fake_tracker(fail_listing=True)
    index = asyncio.run(build_index(tracker, "Veracode"))
    assert index.degraded
    assert len(index) == 0
    assert "could not list existing tickets" in capsys.readouterr().out


def test_truncated_tickets_are_split_by_state(ticket):
    cut = ticket(7, "A very long finding name [VID:89:src/app/db.py:4")
    done = ticket(8, "Another long one [VID:79:web/a.js", TicketState.CLOSED)
    index = index_tickets([cut, done])
    assert index.active == [cut]
    assert index.inactive == [done]
    assert len(index) == 0


def test_ticket_scan_type_prefers_the_label(ticket):
    assert ticket_scan_type(ticket(1, "[VID:101]")) is ScanType.POLICY
    assert ticket_scan_type(ticket(2, "[VID:89:a.py:4]")) is ScanType.PIPELINE
    assert ticket_scan_type(ticket(3, "X [VID:89:src/ap")) is ScanType.PIPELINE
    labelled = ticket(4, "[VID:101]", tags=("Veracode", "Veracode Pipeline Scan"))
    assert ticket_scan_type(labelled) is ScanType.PIPELINE
