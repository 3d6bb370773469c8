"""Shared fixtures: isolated CLI home and an in-memory Trustify API."""

from __future__ import annotations

import json
import time
from collections import defaultdict, deque
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Iterable
from urllib.parse import parse_qs

import httpx
import pytest

from trustify_cli.config.loader import ENV_FIELDS, HOME_ENV
from trustify_cli.engine import AuthCredentials, TokenManager, Transport, WorkerPool

BASE_URL = "https://trustify.test"
SSO_URL = "https://sso.test/realms/trustify"
TOKEN_URL = f"{SSO_URL}/protocol/openid-connect/token"


def make_record(
    record_id: str,
    document_id: str,
    published: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": record_id,
        "document_id": document_id,
        "name": extra.pop("name", f"sbom-{record_id}"),
        "ingested": extra.pop("ingested", "2024-01-01T00:00:00Z"),
        "size": extra.pop("size", 1024),
    }
    if published is not None:
        payload["published"] = published
    payload.update(extra)
    return payload


class FakeInventoryApi:
    """Thread-safe fake of the SBOM listing, get and delete endpoints plus SSO."""

    def __init__(
        self,
        records: Iterable[dict[str, Any]] = (),
        *,
        require_auth: bool = False,
        expires_in: float | None = 300,
        delay: float = 0.0,
    ) -> None:
        self.records: list[dict[str, Any]] = list(records)
        self.require_auth = require_auth
        self.expires_in = expires_in
        self.delay = delay
        self._lock = Lock()
        self._token_serial = 0
        self.valid_token: str | None = None
        self.token_requests = 0
        self.token_status = 200
        self.requests: list[tuple[str, str]] = []
        self.deleted: list[str] = []
        self.list_offsets: list[int] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._scripted: dict[tuple[str, str], deque[int]] = defaultdict(deque)

    # ------------------------------------------------------------------
    def fail_next(self, method: str, path: str, *statuses: int) -> None:
        """Answer the next calls to ``method path`` with ``statuses``."""

        with self._lock:
            self._scripted[(method, path)].extend(statuses)

    def expire_tokens(self) -> None:
        with self._lock:
            self.valid_token = None

    def count(self, method: str, path: str | None = None) -> int:
        with self._lock:
            return sum(
                1 for m, p in self.requests if m == method and (path is None or p == path)
            )

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    # ------------------------------------------------------------------
    def handler(self, request: httpx.Request) -> httpx.Response:
        if str(request.url).startswith(TOKEN_URL):
            return self._token(request)

        path = request.url.path
        with self._lock:
            self.requests.append((request.method, path))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            scripted = self._scripted.get((request.method, path))
            status = scripted.popleft() if scripted else None
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.require_auth and not self._authorised(request):
                return httpx.Response(401, text="token expired")
            if status is not None:
                return httpx.Response(status, text=f"scripted {status}")
            return self._route(request, path)
        finally:
            with self._lock:
                self.in_flight -= 1

    def _authorised(self, request: httpx.Request) -> bool:
        header = request.headers.get("Authorization", "")
        with self._lock:
            return self.valid_token is not None and header == f"Bearer {self.valid_token}"

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = parse_qs(request.content.decode())
        with self._lock:
            self.token_requests += 1
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_client"})
            assert form["grant_type"] == ["client_credentials"]
            self._token_serial += 1
            self.valid_token = f"token-{self._token_serial}"
            payload: dict[str, Any] = {"access_token": self.valid_token, "token_type": "Bearer"}
            if self.expires_in is not None:
                payload["expires_in"] = self.expires_in
        return httpx.Response(200, json=payload)

    def _route(self, request: httpx.Request, path: str) -> httpx.Response:
        if path == "/api/v2/sbom" and request.method == "GET":
            params = request.url.params
            offset = int(params.get("offset", 0))
            limit = int(params.get("limit", 25))
            query = params.get("q")
            with self._lock:
                self.list_offsets.append(offset)
                matches = [
                    record
                    for record in self.records
                    if query is None or query in record.get("name", "")
                ]
            return httpx.Response(
                200,
                json={"items": matches[offset : offset + limit], "total": len(matches)},
            )
        if path.startswith("/api/v2/sbom/"):
            record_id = path.rsplit("/", 1)[-1]
            with self._lock:
                record = next((r for r in self.records if r["id"] == record_id), None)
                if record is None:
                    return httpx.Response(404, text="not found")
                if request.method == "DELETE":
                    self.records.remove(record)
                    self.deleted.append(record_id)
            if request.method == "DELETE":
                return httpx.Response(200, json=record)
            return httpx.Response(200, content=json.dumps(record).encode())
        return httpx.Response(404, text="no route")


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    monkeypatch.setenv(HOME_ENV, str(home))
    for name in ENV_FIELDS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return home


@pytest.fixture()
def fake_api() -> FakeInventoryApi:
    return FakeInventoryApi()


@pytest.fixture()
def make_transport() -> Callable[..., Transport]:
    """Build a Transport (and TokenManager when ``auth``) over a fake API."""

    def _factory(api: FakeInventoryApi, *, auth: bool = False, **kwargs: Any) -> Transport:
        client = api.client()
        token_manager = None
        if auth:
            token_manager = TokenManager(
                AuthCredentials.from_sso_url(SSO_URL, "cli", "secret"),
                client=client,
            )
        kwargs.setdefault("sleep", lambda _delay: None)
        return Transport(BASE_URL, token_manager, client=client, **kwargs)

    return _factory


@pytest.fixture()
def pool() -> WorkerPool:
    return WorkerPool(thread_name_prefix="test")
