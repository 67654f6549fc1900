"""Pytest configuration for flawsync tests.

Ensures the in-repo `src` directory is on `sys.path` so the package can be
imported without an editable install, and provides an in-memory tracker that
records every call the engine makes.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

py_path = os.environ.get("PYTHONPATH", "")
parts = [p for p in py_path.split(os.pathsep) if p]
if str(SRC) not in parts:
    parts.insert(0, str(SRC))
    os.environ["PYTHONPATH"] = os.pathsep.join(parts)

pytest_plugins = ["pytest_asyncio"]

from flawsync.identity import extract_identity  # noqa: E402
from flawsync.logging import configure_logging  # noqa: E402
from flawsync.models import TicketDraft, TicketState, TrackerTicket  # noqa: E402
from flawsync.tracker import TrackerAPIError, TrackerPage  # noqa: E402

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_ticket(
    ticket_id: int,
    title: str,
    state: TicketState = TicketState.OPEN,
    *,
    age_minutes: int = 0,
    tags: Iterable[str] = ("Veracode",),
) -> TrackerTicket:
    return TrackerTicket(
        id=ticket_id,
        title=title,
        state=state,
        tags=tuple(tags),
        last_changed=BASE_TIME - timedelta(minutes=age_minutes),
    )


class FakeTracker:
    """In-memory tracker. Mutations update its own ticket list."""

    name = "fake"
    notes_inline = True

    def __init__(
        self,
        tickets: Iterable[TrackerTicket] = (),
        *,
        page_size: int = 100,
        fail_listing: bool = False,
        fail_on: Iterable[str] = (),
    ) -> None:
        self.tickets: list[TrackerTicket] = list(tickets)
        self.page_size = page_size
        self.fail_listing = fail_listing
        self.fail_on = set(fail_on)
        self.calls: list[tuple[str, object]] = []
        self._next_id = 1000

    async def list_tickets(self, tag: str, page: int) -> TrackerPage:
        self.calls.append(("list", page))
        if self.fail_listing:
            raise TrackerAPIError("listing failed", status=502)
        tagged = [t for t in self.tickets if tag in t.tags]
        start = (page - 1) * self.page_size
        chunk = tagged[start : start + self.page_size]
        return TrackerPage(tickets=chunk, more=start + self.page_size < len(tagged))

    async def create_ticket(self, draft: TicketDraft) -> TrackerTicket:
        self.calls.append(("create", draft))
        if draft.identity in self.fail_on:
            raise TrackerAPIError(
                "create failed",
                status=422,
                response_text='{"message": "Validation Failed"}',
                method="POST",
                url="/issues",
            )
        self._next_id += 1
        ticket = TrackerTicket(
            id=self._next_id,
            title=draft.title,
            state=TicketState.OPEN,
            tags=draft.tags,
            last_changed=BASE_TIME + timedelta(minutes=self._next_id),
        )
        self.tickets.append(ticket)
        return ticket

    async def set_ticket_state(
        self, ticket_id: int, state: TicketState, note: str
    ) -> TrackerTicket:
        self.calls.append(("state", (ticket_id, state, note)))
        for position, ticket in enumerate(self.tickets):
            if ticket.id == ticket_id:
                if extract_identity(ticket.title) in self.fail_on:
                    raise TrackerAPIError("transition failed", status=500)
                updated = TrackerTicket(
                    id=ticket.id,
                    title=ticket.title,
                    state=state,
                    tags=ticket.tags,
                    last_changed=BASE_TIME + timedelta(days=1),
                )
                self.tickets[position] = updated
                return updated
        raise TrackerAPIError(f"ticket {ticket_id} not found", status=404)

    async def add_note(self, ticket_id: int, note: str) -> None:
        self.calls.append(("note", (ticket_id, note)))

    def mutations(self) -> list[tuple[str, object]]:
        return [c for c in self.calls if c[0] != "list"]


@pytest.fixture
def fake_tracker() -> type[FakeTracker]:
    return FakeTracker


@pytest.fixture
def ticket() -> object:
    return make_ticket


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture(autouse=True)
def _fresh_logger(capsys: pytest.CaptureFixture[str]) -> None:
    # bind the global logger to the stdout captured for the current test
    configure_logging()


@pytest.hookimpl(tryfirst=True)
def pytest_runtest_call(item: pytest.Item) -> None:
    # capture streams are replaced between setup and call; rebind to the call-phase stdout
    configure_logging()
