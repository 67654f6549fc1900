"""Sequential execution of reconciliation decisions against a tracker.

One remote call is in flight at a time. A fixed ``wait_time`` elapses before
every mutating call except the first one of the run; there is no adaptive
backoff and no retry. A failing item is logged and counted, and the run either
moves on or aborts (``fail_fast``). Mutations already applied are never undone.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from .errors import classify_error, redact
from .formatting import (
    FormatOptions,
    build_draft,
    mitigated_note,
    reopen_note,
    stale_note,
)
from .logging import get_logger
from .models import Decision, DecisionKind, Flaw, RunSummary, TicketState, TrackerTicket
from .planner import ReconciliationPlanner, report_scan_type
from .state_index import TrackerStateIndex
from .tracker import TrackerAPIError, TrackerClient

PROGRESS_EVERY = 25

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class ExecutorOptions:
    wait_time: float = 2.0
    fail_fast: bool = False
    verbose: bool = False
    dry_run: bool = False
    formatting: FormatOptions = field(default_factory=FormatOptions)


class ReconciliationExecutor:
    def __init__(
        self,
        client: TrackerClient,
        options: ExecutorOptions | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.client = client
        self.options = options or ExecutorOptions()
        self._sleep = sleep
        self._calls = 0
        self.logger = get_logger()

    async def run(self, flaws: Sequence[Flaw], index: TrackerStateIndex) -> RunSummary:
        summary = RunSummary(flaws_total=len(flaws), dry_run=self.options.dry_run)
        planner = ReconciliationPlanner(report_scan_type(flaws))
        self.logger.info(
            f"Processing {len(flaws)} flaw(s) against {self.client.name}, "
            f"{self.options.wait_time} seconds between tracker calls"
        )
        for position, flaw in enumerate(flaws, start=1):
            if not flaw.mitigated:
                summary.flaws_considered += 1
            decision = planner.plan_flaw(flaw, index)
            if decision is not None:
                await self._apply(decision, summary)
            if position % PROGRESS_EVERY == 0:
                self.logger.info(f"Processed {position} flaws")

        for decision in planner.plan_stale_closures(index):
            await self._apply(decision, summary)
        return summary

    # --- per decision --------------------------------------------------
    async def _apply(self, decision: Decision, summary: RunSummary) -> None:
        if decision.kind is DecisionKind.SKIP:
            summary.skipped += 1
            self.logger.debug(
                f"ticket already tracked, skipping ({decision.reason})",
                identity=decision.identity,
                ticket_id=decision.ticket.id if decision.ticket else None,
            )
            return
        try:
            ticket = await self._mutate(decision)
        except Exception as exc:
            summary.errors += 1
            self._report_failure(decision, exc)
            if self.options.fail_fast:
                raise
            return
        self._count(decision, summary)
        ticket_id = ticket.id if ticket else (decision.ticket.id if decision.ticket else None)
        summary.changes.append(
            {"action": decision.kind.value, "identity": decision.identity, "ticket": ticket_id}
        )
        self.logger.log_ticket_action(
            decision.kind.value,
            decision.identity,
            ticket_id=ticket_id,
            dry_run=self.options.dry_run,
            tracker=self.client.name,
        )

    async def _mutate(self, decision: Decision) -> TrackerTicket | None:
        if self.options.dry_run:
            return None
        fmt = self.options.formatting
        await self._throttle()
        if decision.kind is DecisionKind.CREATE:
            assert decision.flaw is not None
            draft = build_draft(decision.flaw, decision.identity, fmt)
            return await self.client.create_ticket(draft)
        assert decision.ticket is not None
        if decision.kind is DecisionKind.REOPEN:
            state, note = TicketState.OPEN, reopen_note(decision.identity, fmt)
        elif decision.kind is DecisionKind.CLOSE_MITIGATED:
            state, note = TicketState.CLOSED, mitigated_note(decision.identity, fmt)
        else:
            state, note = TicketState.CLOSED, stale_note(decision.identity, fmt)
        inline = self.client.notes_inline
        ticket = await self.client.set_ticket_state(
            decision.ticket.id, state, note if inline else ""
        )
        if note and not inline:
            # the audit note is a separate request and is paced like any other
            await self._throttle()
            await self.client.add_note(decision.ticket.id, note)
        return ticket

    async def _throttle(self) -> None:
        if self._calls and self.options.wait_time > 0:
            await self._sleep(self.options.wait_time)
        self._calls += 1

    @staticmethod
    def _count(decision: Decision, summary: RunSummary) -> None:
        if decision.kind is DecisionKind.CREATE:
            summary.created += 1
        elif decision.kind is DecisionKind.REOPEN:
            summary.reopened += 1
        elif decision.kind is DecisionKind.CLOSE_MITIGATED:
            summary.closed_mitigated += 1
        elif decision.kind is DecisionKind.CLOSE_STALE:
            summary.closed_stale += 1

    def _report_failure(self, decision: Decision, exc: Exception) -> None:
        info = classify_error(exc)
        context: dict[str, object] = {
            "identity": decision.identity,
            "action": decision.kind.value,
            "category": info.category,
            "tracker": self.client.name,
        }
        if decision.ticket is not None:
            context["ticket_id"] = decision.ticket.id
        if self.options.verbose:
            context["original_type"] = info.original_type
            if isinstance(exc, TrackerAPIError):
                for key, value in exc.diagnostics().items():
                    context[key] = redact(value) if isinstance(value, str) else value
        self.logger.log_error(
            f"Failed to {decision.kind.value.replace('_', ' ')} ticket for {decision.identity}",
            error=info.message,
            **context,
        )


__all__ = ["ExecutorOptions", "ReconciliationExecutor", "PROGRESS_EVERY"]
