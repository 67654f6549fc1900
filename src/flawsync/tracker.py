"""Tracker capability shared by the GitHub and Azure DevOps backends.

The reconciliation engine only ever talks to a :class:`TrackerClient`. The
concrete REST clients are blocking (``requests``); :class:`AsyncTracker` runs
their calls on the default executor so the engine can await them one at a time
without blocking the event loop.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, TypeVar

from .models import EPOCH, TicketDraft, TicketState, TrackerTicket

T = TypeVar("T")


class TrackerAPIError(RuntimeError):
    """Raised when a tracker REST API returns a non-success response."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        response_text: str | None = None,
        method: str | None = None,
        url: str | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.response_text = response_text
        self.method = method
        self.url = url

    def diagnostics(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "response": self.response_text,
            "request": f"{self.method} {self.url}" if self.method else self.url,
        }


@dataclass
class TrackerPage:
    tickets: list[TrackerTicket] = field(default_factory=list)
    more: bool = False


class TrackerClient(Protocol):
    """Async capability set the engine consumes.

    ``notes_inline`` tells whether ``set_ticket_state`` records the audit note
    in the same request. When it is False the note goes through ``add_note``,
    a mutating call of its own.
    """

    name: str
    notes_inline: bool

    async def list_tickets(self, tag: str, page: int) -> TrackerPage: ...

    async def create_ticket(self, draft: TicketDraft) -> TrackerTicket: ...

    async def set_ticket_state(
        self, ticket_id: int, state: TicketState, note: str
    ) -> TrackerTicket: ...

    async def add_note(self, ticket_id: int, note: str) -> None: ...


class RestBackend(Protocol):
    """Blocking REST client contract implemented by each backend."""

    name: str
    notes_inline: bool

    def list_page(self, tag: str, page: int) -> TrackerPage: ...

    def create(self, draft: TicketDraft) -> TrackerTicket: ...

    def set_state(self, ticket_id: int, state: TicketState, note: str) -> TrackerTicket: ...

    def add_note(self, ticket_id: int, note: str) -> None: ...


class AsyncTracker:
    """Adapts a blocking :class:`RestBackend` to :class:`TrackerClient`."""

    def __init__(self, backend: RestBackend):
        self.backend = backend
        self.name = backend.name
        self.notes_inline = backend.notes_inline

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    async def list_tickets(self, tag: str, page: int) -> TrackerPage:
        return await self._call(self.backend.list_page, tag, page)

    async def create_ticket(self, draft: TicketDraft) -> TrackerTicket:
        return await self._call(self.backend.create, draft)

    async def set_ticket_state(
        self, ticket_id: int, state: TicketState, note: str
    ) -> TrackerTicket:
        return await self._call(self.backend.set_state, ticket_id, state, note)

    async def add_note(self, ticket_id: int, note: str) -> None:
        await self._call(self.backend.add_note, ticket_id, note)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 tracker timestamp; unknown values sort oldest."""
    if not isinstance(value, str) or not value.strip():
        return EPOCH
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # ADO returns up to 7 fractional digits, fromisoformat accepts at most 6
    if "." in text:
        head, _, tail = text.partition(".")
        digits = ""
        rest = ""
        for i, ch in enumerate(tail):
            if not ch.isdigit():
                rest = tail[i:]
                break
            digits += ch
        text = f"{head}.{digits[:6]}{rest}" if digits else head + rest
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=EPOCH.tzinfo)
    return parsed


__all__ = [
    "TrackerAPIError",
    "TrackerPage",
    "TrackerClient",
    "RestBackend",
    "AsyncTracker",
    "parse_timestamp",
]
