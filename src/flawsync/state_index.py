"""Snapshot of the managed tickets that already exist in the tracker.

The index is built once per run from a tag-filtered, paginated listing and is
never refreshed afterwards; decisions are taken against this snapshot even if
the tracker changes underneath the run.

Lookup keys are flaw identities extracted from ticket titles. When several
tickets carry the same identity the most recently changed one is canonical
(lowest ticket id on ties) and the others are kept aside as read-only
duplicates.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .errors import redact
from .formatting import PIPELINE_LABEL, POLICY_LABEL
from .identity import (
    extract_identity,
    has_partial_marker,
    identity_scan_type,
    matches_fragment,
    partial_fragment,
)
from .logging import get_logger
from .models import ScanType, TrackerTicket
from .tracker import TrackerClient


@dataclass
class TrackerStateIndex:
    by_identity: dict[str, TrackerTicket] = field(default_factory=dict)
    active: list[TrackerTicket] = field(default_factory=list)
    inactive: list[TrackerTicket] = field(default_factory=list)
    duplicates: dict[str, list[TrackerTicket]] = field(default_factory=dict)
    partial: list[TrackerTicket] = field(default_factory=list)
    ignored: int = 0
    degraded: bool = False

    def __len__(self) -> int:
        return len(self.by_identity)

    def lookup(self, identity: str) -> TrackerTicket | None:
        ticket = self.by_identity.get(identity)
        if ticket is not None:
            return ticket
        for candidate in self.partial:
            if matches_fragment(identity, candidate.title):
                return candidate
        return None


def ticket_scan_type(ticket: TrackerTicket) -> ScanType:
    """Scan type a managed ticket belongs to.

    The scan label written at creation wins; tickets without one are judged by
    the shape of their identity marker.
    """
    if PIPELINE_LABEL in ticket.tags:
        return ScanType.PIPELINE
    if POLICY_LABEL in ticket.tags:
        return ScanType.POLICY
    identity = extract_identity(ticket.title)
    if identity is not None:
        return identity_scan_type(identity)
    return identity_scan_type(partial_fragment(ticket.title), truncated=True)


def _canonical_key(ticket: TrackerTicket) -> tuple[float, int]:
    return (-ticket.last_changed.timestamp(), ticket.id)


def index_tickets(tickets: list[TrackerTicket]) -> TrackerStateIndex:
    """Build an index from an already fetched ticket list."""
    logger = get_logger()
    grouped: dict[str, list[TrackerTicket]] = {}
    seen_ids: set[int] = set()
    index = TrackerStateIndex()
    for ticket in tickets:
        if ticket.id in seen_ids:
            continue
        seen_ids.add(ticket.id)
        identity = extract_identity(ticket.title)
        if identity is None:
            if has_partial_marker(ticket.title):
                index.partial.append(ticket)
                (index.active if ticket.state.is_active else index.inactive).append(ticket)
            else:
                logger.debug(
                    f'Ticket "{ticket.title}" has no Veracode flaw ID, ignored.',
                    ticket_id=ticket.id,
                )
                index.ignored += 1
            continue
        grouped.setdefault(identity, []).append(ticket)

    for identity, group in grouped.items():
        ordered = sorted(group, key=_canonical_key)
        canonical = ordered[0]
        if len(ordered) > 1:
            index.duplicates[identity] = ordered[1:]
            logger.warning(
                "duplicate tickets share one flaw identity; using most recent",
                identity=identity,
                ticket_id=canonical.id,
                duplicates=[t.id for t in ordered[1:]],
            )
        index.by_identity[identity] = canonical
        if canonical.state.is_active:
            index.active.append(canonical)
        else:
            index.inactive.append(canonical)
    return index


async def fetch_all_tickets(client: TrackerClient, tag: str) -> list[TrackerTicket]:
    """Drain every page of the tag-filtered listing.

    Paging stops as soon as a page reports no further results or comes back
    empty, whichever happens first.
    """
    logger = get_logger()
    tickets: list[TrackerTicket] = []
    page_number = 1
    while True:
        page = await client.list_tickets(tag, page_number)
        logger.debug(
            f"{len(page.tickets)} ticket(s) found on page {page_number}",
            tracker=client.name,
        )
        tickets.extend(page.tickets)
        if not (page.more and page.tickets):
            break
        page_number += 1
    return tickets


async def build_index(client: TrackerClient, tag: str) -> TrackerStateIndex:
    """Snapshot the tracker; a failing read degrades to an empty index."""
    logger = get_logger()
    try:
        tickets = await fetch_all_tickets(client, tag)
    except Exception as exc:
        logger.warning(
            "could not list existing tickets; continuing with an empty snapshot "
            "(duplicate tickets may be created)",
            tracker=client.name,
            error=redact(str(exc)),
        )
        return TrackerStateIndex(degraded=True)
    index = index_tickets(tickets)
    logger.log_operation(
        "index_built",
        tracker=client.name,
        tickets=len(tickets),
        indexed=len(index),
        active=len(index.active),
        inactive=len(index.inactive),
        duplicates=sum(len(v) for v in index.duplicates.values()),
    )
    return index


__all__ = [
    "TrackerStateIndex",
    "ticket_scan_type",
    "index_tickets",
    "fetch_all_tickets",
    "build_index",
]
