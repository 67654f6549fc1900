"""Azure DevOps work item backend.

Listing runs a WIQL query for every work item carrying the managed tag and then
fetches the items in batches; each batch is one page of the tracker listing.
Mutations use JSON-patch documents, and the audit note of a state change is
written to ``System.History`` in the same request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

import requests

from .models import TicketDraft, TicketState, TrackerTicket
from .tracker import TrackerAPIError, TrackerPage, parse_timestamp

DEFAULT_BASE_URL = "https://dev.azure.com"
API_VERSION = "7.0"
USER_AGENT = "flawsync-ado/0.2.0"
HTTP_ERROR_STATUS = 400
BATCH_SIZE = 200
REQUEST_TIMEOUT = 30

WORK_ITEM_TYPES = frozenset(
    {
        "Bug",
        "Issue",
        "Task",
        "User Story",
        "Product Backlog Item",
        "Feature",
        "Epic",
        "Impediment",
    }
)

_STATE_MAP = {
    "new": TicketState.OPEN,
    "active": TicketState.OPEN,
    "approved": TicketState.OPEN,
    "committed": TicketState.OPEN,
    "in progress": TicketState.OPEN,
    "to do": TicketState.OPEN,
    "doing": TicketState.OPEN,
    "proposed": TicketState.OPEN,
    "resolved": TicketState.RESOLVED,
    "closed": TicketState.CLOSED,
    "done": TicketState.CLOSED,
    "completed": TicketState.CLOSED,
    "removed": TicketState.REMOVED,
}

_FIELDS = (
    "System.Id",
    "System.Title",
    "System.State",
    "System.Tags",
    "System.ChangedDate",
)


def normalize_state(raw: str | None) -> TicketState:
    """Map a process-template state name; unknown names count as open."""
    return _STATE_MAP.get((raw or "").strip().lower(), TicketState.OPEN)


def _split_tags(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, str):
        return ()
    return tuple(t.strip() for t in raw.split(";") if t.strip())


def _wiql_literal(value: str) -> str:
    return value.replace("'", "''")


@dataclass
class AzureDevOpsClient:
    """Blocking REST client for Azure DevOps work items."""

    pat: str
    organization: str
    project: str
    work_item_type: str = "Bug"
    reopen_state: str = "Active"
    close_state: str = "Closed"
    base_url: str = DEFAULT_BASE_URL
    session: requests.Session | None = None
    name: str = "ado"
    notes_inline: ClassVar[bool] = True
    _session: requests.Session = field(init=False, repr=False)
    _ids: list[int] | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self._session = self.session or requests.Session()
        self._session.auth = ("", self.pat)
        self._session.headers.setdefault("Accept", "application/json")
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    # ---- REST helpers -------------------------------------------------
    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
        content_type: str = "application/json",
    ) -> Any:
        url = self._url(path)
        query = {"api-version": API_VERSION, **(params or {})}
        headers = {**self._session.headers, "Content-Type": content_type}
        try:
            response = self._session.request(
                method,
                url,
                params=query,
                json=json_body,
                headers=headers,
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise TrackerAPIError(
                f"Azure DevOps {method} {url} failed: {exc}", method=method, url=url
            ) from exc
        if response.status_code >= HTTP_ERROR_STATUS:
            raise TrackerAPIError(
                f"Azure DevOps {method} {url} failed with {response.status_code}",
                status=response.status_code,
                response_text=response.text,
                method=method,
                url=url,
            )
        if not response.text:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise TrackerAPIError(
                f"Azure DevOps {method} {url} returned invalid JSON",
                status=response.status_code,
                response_text=response.text,
                method=method,
                url=url,
            ) from exc

    def _ticket(self, data: Any, method: str, path: str) -> TrackerTicket:
        if not isinstance(data, dict) or not isinstance(data.get("id"), int):
            raise TrackerAPIError(
                f"Azure DevOps {method} {path} returned no work item",
                response_text=str(data),
                method=method,
                url=path,
            )
        fields = data.get("fields") if isinstance(data.get("fields"), dict) else {}
        raw_state = fields.get("System.State")
        links = data.get("_links") if isinstance(data.get("_links"), dict) else {}
        html = links.get("html") if isinstance(links.get("html"), dict) else {}
        return TrackerTicket(
            id=int(data["id"]),
            title=str(fields.get("System.Title") or ""),
            state=normalize_state(raw_state),
            tags=_split_tags(fields.get("System.Tags")),
            last_changed=parse_timestamp(fields.get("System.ChangedDate")),
            url=html.get("href") if isinstance(html.get("href"), str) else None,
            raw_state=raw_state if isinstance(raw_state, str) else None,
        )

    def _query_ids(self, tag: str) -> list[int]:
        query = (
            "SELECT [System.Id] FROM WorkItems "
            f"WHERE [System.TeamProject] = '{_wiql_literal(self.project)}' "
            f"AND [System.Tags] CONTAINS '{_wiql_literal(tag)}' "
            "ORDER BY [System.Id]"
        )
        data = self._request(
            "POST",
            f"/{self.organization}/{self.project}/_apis/wit/wiql",
            json_body={"query": query},
        )
        ids: list[int] = []
        items = data.get("workItems") if isinstance(data, dict) else None
        if isinstance(items, list):
            for item in items:
                if isinstance(item, dict) and isinstance(item.get("id"), int):
                    ids.append(item["id"])
        return ids

    # ---- Tracker operations ------------------------------------------
    def list_page(self, tag: str, page: int) -> TrackerPage:
        if page <= 1 or self._ids is None:
            self._ids = self._query_ids(tag)
        start = (max(page, 1) - 1) * BATCH_SIZE
        batch = self._ids[start : start + BATCH_SIZE]
        if not batch:
            return TrackerPage(tickets=[], more=False)
        path = f"/{self.organization}/_apis/wit/workitems"
        data = self._request(
            "GET",
            path,
            params={"ids": ",".join(str(i) for i in batch), "fields": ",".join(_FIELDS)},
        )
        values = data.get("value") if isinstance(data, dict) else None
        tickets = [
            self._ticket(entry, "GET", path)
            for entry in (values if isinstance(values, list) else [])
        ]
        return TrackerPage(tickets=tickets, more=start + BATCH_SIZE < len(self._ids))

    def create(self, draft: TicketDraft) -> TrackerTicket:
        path = f"/{self.organization}/{self.project}/_apis/wit/workitems/${self.work_item_type}"
        patch = [
            {"op": "add", "path": "/fields/System.Title", "value": draft.title},
            {"op": "add", "path": "/fields/System.Description", "value": draft.body},
            {"op": "add", "path": "/fields/System.Tags", "value": ";".join(draft.tags)},
            {
                "op": "add",
                "path": "/fields/Microsoft.VSTS.Common.Severity",
                "value": draft.severity,
            },
        ]
        data = self._request(
            "POST", path, json_body=patch, content_type="application/json-patch+json"
        )
        return self._ticket(data, "POST", path)

    def set_state(self, ticket_id: int, state: TicketState, note: str) -> TrackerTicket:
        target = self.reopen_state if state is TicketState.OPEN else self.close_state
        patch: list[dict[str, Any]] = [
            {"op": "add", "path": "/fields/System.State", "value": target}
        ]
        if note:
            patch.append({"op": "add", "path": "/fields/System.History", "value": note})
        path = f"/{self.organization}/_apis/wit/workitems/{ticket_id}"
        data = self._request(
            "PATCH", path, json_body=patch, content_type="application/json-patch+json"
        )
        return self._ticket(data, "PATCH", path)

    def add_note(self, ticket_id: int, note: str) -> None:
        path = f"/{self.organization}/_apis/wit/workitems/{ticket_id}"
        patch = [{"op": "add", "path": "/fields/System.History", "value": note}]
        self._request(
            "PATCH", path, json_body=patch, content_type="application/json-patch+json"
        )


__all__ = ["AzureDevOpsClient", "WORK_ITEM_TYPES", "normalize_state", "DEFAULT_BASE_URL"]
