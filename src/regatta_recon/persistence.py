"""regatta_recon.persistence

Persistence collaborator for the reconciliation session.

The session only needs generic list/get/create/update/delete over the
event-administration backend's REST resources.  RestPersistenceClient
implements that over one requests.Session per thread; tests pass any
object with the same five methods.

Snapshot assembly (fetch_snapshot) issues the independent read requests
concurrently: the four event listings first, then one roster request per
crew.  A failed roster request falls back to the roster embedded in the
crew listing; any failed listing request fails the whole snapshot.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

import requests

from regatta_recon.decode import (
    PayloadError,
    decode_category,
    decode_crew,
    decode_distance,
    decode_list,
    decode_race,
)
from regatta_recon.models import InternalCategory, InternalCrew, InternalDistance, InternalRace

log = logging.getLogger(__name__)

# Event-scoped listing path per resource.
_EVENT_LIST_PATHS = {
    "crews":      "crews/event/{event_id}",
    "categories": "categories/event/{event_id}/with-crews",
    "distances":  "distances/event/{event_id}",
    "races":      "races/event/{event_id}",
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class PersistenceError(Exception):
    """Raised when a backend request fails or returns an unusable body."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Client protocol + REST implementation
# ---------------------------------------------------------------------------

class PersistenceClient(Protocol):
    def list(self, resource: str, event_id: str) -> Any: ...

    def get(self, resource: str, record_id: str) -> Any: ...

    def create(self, resource: str, payload: dict[str, Any]) -> Any: ...

    def update(self, resource: str, record_id: str, payload: dict[str, Any]) -> Any: ...

    def delete(self, resource: str, record_id: str) -> Any: ...


class RestPersistenceClient:
    """JSON-over-HTTP client for the backend API.

    requests.Session is not thread-safe, so each thread that issues
    requests gets its own session from session_factory.  Snapshot reads
    and apply writes fan out over a thread pool and share one client.

    Args:
        base_url: API root, e.g. "https://api.example.org".
        token: Bearer token, sent on every request when set.
        timeout: Per-request timeout in seconds.
        session_factory: Builds a requests.Session per thread (tests inject mocks).
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: int = 30,
        session_factory: Callable[[], requests.Session] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {"Accept": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self._session_factory = session_factory or requests.Session
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        """The calling thread's session, built on first use."""
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._session_factory()
            session.headers.update(self.headers)
            self._local.session = session
        return session

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        url = self._url(path)
        try:
            resp = self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise PersistenceError(f"{method} {url} failed: {exc}") from exc

        if resp.status_code >= 400:
            message = _error_message(resp)
            raise PersistenceError(
                f"{method} {url} returned {resp.status_code}: {message}",
                status_code=resp.status_code,
            )
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise PersistenceError(f"{method} {url} returned a non-JSON body") from exc

    def list(self, resource: str, event_id: str) -> Any:
        template = _EVENT_LIST_PATHS.get(resource, f"{resource}/event/{{event_id}}")
        return self._request("GET", template.format(event_id=event_id))

    def get(self, resource: str, record_id: str) -> Any:
        return self._request("GET", f"{resource}/{record_id}")

    def create(self, resource: str, payload: dict[str, Any]) -> Any:
        return self._request("POST", resource, payload)

    def update(self, resource: str, record_id: str, payload: dict[str, Any]) -> Any:
        return self._request("PUT", f"{resource}/{record_id}", payload)

    def delete(self, resource: str, record_id: str) -> Any:
        return self._request("DELETE", f"{resource}/{record_id}")


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason or ""
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return str(body)[:200]


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

@dataclass
class Snapshot:
    """Read-only view of one event's internal records."""

    crews: list[InternalCrew] = field(default_factory=list)
    categories: list[InternalCategory] = field(default_factory=list)
    distances: list[InternalDistance] = field(default_factory=list)
    races: list[InternalRace] = field(default_factory=list)

    def distance(self, distance_id: str) -> InternalDistance | None:
        return next((d for d in self.distances if d.id == distance_id), None)

    def crew(self, crew_id: str) -> InternalCrew | None:
        return next((c for c in self.crews if c.id == crew_id), None)


def _fetch_crew_detail(client: PersistenceClient, crew_id: str) -> Any:
    try:
        return client.get("crews", crew_id)
    except PersistenceError as exc:
        log.warning("Roster fetch for crew %s failed (%s); using listing roster.", crew_id, exc)
        return None


def fetch_snapshot(client: PersistenceClient, event_id: str, max_workers: int = 8) -> Snapshot:
    """Assemble the event snapshot with concurrent read requests.

    Raises:
        PersistenceError: If any listing request fails or returns a bad body.
    """
    resources = list(_EVENT_LIST_PATHS)
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {r: pool.submit(client.list, r, event_id) for r in resources}
        bodies = {r: f.result() for r, f in futures.items()}

        try:
            crew_rows = decode_list(bodies["crews"], "crews")
            snapshot = Snapshot(
                categories=[decode_category(r) for r in decode_list(bodies["categories"], "categories")],
                distances=[decode_distance(r) for r in decode_list(bodies["distances"], "distances")],
                races=[decode_race(r) for r in decode_list(bodies["races"], "races")],
            )
        except PayloadError as exc:
            raise PersistenceError(f"event {event_id}: {exc}") from exc

        detail_futures = [
            pool.submit(_fetch_crew_detail, client, str(row.get("id"))) for row in crew_rows
        ]
        details = [f.result() for f in detail_futures]

    try:
        snapshot.crews = [decode_crew(row, detail) for row, detail in zip(crew_rows, details)]
    except PayloadError as exc:
        raise PersistenceError(f"event {event_id}: {exc}") from exc

    log.info(
        "Snapshot for event %s: %d crews, %d categories, %d distances, %d races",
        event_id, len(snapshot.crews), len(snapshot.categories),
        len(snapshot.distances), len(snapshot.races),
    )
    return snapshot
