from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

import requests

from .models import TicketDraft, TicketState, TrackerTicket
from .tracker import TrackerAPIError, TrackerPage, parse_timestamp

DEFAULT_API_URL = "https://api.github.com"
USER_AGENT = "flawsync-github/0.2.0"
HTTP_ERROR_STATUS = 400
PAGE_SIZE = 100
REQUEST_TIMEOUT = 30


def _label_names(raw: Any) -> tuple[str, ...]:
    names: list[str] = []
    if isinstance(raw, list):
        for lbl in raw:
            if isinstance(lbl, dict):
                name = lbl.get("name")
                if isinstance(name, str):
                    names.append(name)
            elif isinstance(lbl, str):
                names.append(lbl)
    return tuple(names)


def _has_next_page(link_header: str | None) -> bool:
    if not link_header:
        return False
    return any('rel="next"' in part for part in link_header.split(","))


def ticket_from_issue(entry: dict[str, Any]) -> TrackerTicket:
    raw_state = str(entry.get("state") or "open").lower()
    return TrackerTicket(
        id=int(entry["number"]),
        title=str(entry.get("title") or ""),
        state=TicketState.OPEN if raw_state == "open" else TicketState.CLOSED,
        tags=_label_names(entry.get("labels")),
        last_changed=parse_timestamp(entry.get("updated_at")),
        url=entry.get("html_url") if isinstance(entry.get("html_url"), str) else None,
        raw_state=raw_state,
    )


@dataclass
class GitHubRestClient:
    """Blocking REST client for the GitHub Issues API."""

    token: str
    repo: str
    base_url: str = DEFAULT_API_URL
    session: requests.Session | None = None
    name: str = "github"
    notes_inline: ClassVar[bool] = False
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._session = self.session or requests.Session()
        self._session.headers.setdefault("Authorization", f"Bearer {self.token}")
        self._session.headers.setdefault("Accept", "application/vnd.github+json")
        self._session.headers.setdefault("X-GitHub-Api-Version", "2022-11-28")
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    # ---- REST helpers -------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> requests.Response:
        url = (
            path
            if path.startswith("http")
            else f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        )
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._session.headers,
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise TrackerAPIError(
                f"GitHub API {method} {url} failed: {exc}", method=method, url=url
            ) from exc
        if response.status_code >= HTTP_ERROR_STATUS:
            raise TrackerAPIError(
                f"GitHub API {method} {url} failed with {response.status_code}",
                status=response.status_code,
                response_text=response.text,
                method=method,
                url=url,
            )
        return response

    @staticmethod
    def _json(response: requests.Response) -> Any:
        if not response.text:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    def _expect_issue(self, data: Any, method: str, path: str) -> TrackerTicket:
        if not isinstance(data, dict) or not isinstance(data.get("number"), int):
            raise TrackerAPIError(
                f"GitHub API {method} {path} returned no issue",
                response_text=str(data),
                method=method,
                url=path,
            )
        return ticket_from_issue(data)

    # ---- Tracker operations ------------------------------------------
    def list_page(self, tag: str, page: int) -> TrackerPage:
        response = self._request(
            "GET",
            f"/repos/{self.repo}/issues",
            params={"labels": tag, "state": "all", "per_page": PAGE_SIZE, "page": page},
        )
        data = self._json(response)
        tickets: list[TrackerTicket] = []
        if isinstance(data, list):
            for entry in data:
                # the issues endpoint also returns pull requests
                if isinstance(entry, dict) and "pull_request" not in entry:
                    tickets.append(ticket_from_issue(entry))
        more = _has_next_page(response.headers.get("Link"))
        return TrackerPage(tickets=tickets, more=more and isinstance(data, list) and bool(data))

    def create(self, draft: TicketDraft) -> TrackerTicket:
        labels = list(dict.fromkeys([*draft.tags, draft.severity]))
        payload = {"title": draft.title, "body": draft.body, "labels": labels}
        path = f"/repos/{self.repo}/issues"
        data = self._json(self._request("POST", path, json_body=payload))
        return self._expect_issue(data, "POST", path)

    def set_state(self, ticket_id: int, state: TicketState, note: str) -> TrackerTicket:
        payload: dict[str, Any]
        if state is TicketState.OPEN:
            payload = {"state": "open"}
        else:
            payload = {"state": "closed", "state_reason": "completed"}
        path = f"/repos/{self.repo}/issues/{ticket_id}"
        data = self._json(self._request("PATCH", path, json_body=payload))
        ticket = self._expect_issue(data, "PATCH", path)
        if note:
            self.add_note(ticket_id, note)
        return ticket

    def add_note(self, ticket_id: int, note: str) -> None:
        self._request(
            "POST", f"/repos/{self.repo}/issues/{ticket_id}/comments", json_body={"body": note}
        )


__all__ = ["GitHubRestClient", "ticket_from_issue", "DEFAULT_API_URL"]
