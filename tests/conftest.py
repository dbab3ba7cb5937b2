"""Shared fixtures: a controllable clock and a scriptable fake backend."""

from typing import Any, Callable, Optional, Union

import httpx
import pytest

from messmate.audit import SyncEventLogger
from messmate.cache import ResponseCache
from messmate.connectivity import ConnectivityMonitor
from messmate.data_service import DataService
from messmate.services.remote import RemoteClient
from messmate.services.storage import InMemoryMedium, LocalStore


BASE_URL = "http://backend.test/api"


class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


Handler = Callable[[httpx.Request], Union[httpx.Response, Any]]


class FakeBackend:
    """
    Request handler for `httpx.MockTransport`.

    Routes are keyed by (method, path without the /api prefix). `/health`
    answers from `mongodb` unless `reachable` is False, in which case every
    request fails at the transport level.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], Handler] = {}
        self.calls: list[tuple[str, str]] = []
        self.reachable = True
        self.mongodb = "connected"

    def route(
        self,
        method: str,
        path: str,
        payload: Optional[dict] = None,
        status: int = 200,
        handler: Optional[Handler] = None,
    ) -> None:
        if handler is None:
            def handler(request, payload=payload, status=status):
                return httpx.Response(status, json=payload)
        self.routes[(method, path)] = handler

    def count(self, method: str, path: str) -> int:
        return self.calls.count((method, path))

    def __call__(self, request: httpx.Request):
        path = request.url.path.removeprefix("/api")
        self.calls.append((request.method, path))
        if not self.reachable:
            raise httpx.ConnectError("Connection refused", request=request)
        if (request.method, path) == ("GET", "/health") and ("GET", "/health") not in self.routes:
            return httpx.Response(200, json={"success": True, "mongodb": self.mongodb})
        handler = self.routes.get((request.method, path))
        if handler is None:
            return httpx.Response(404, json={"success": False, "error": "Not found"})
        return handler(request)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def make_service(backend, clock):
    """Build a DataService over the fake backend and a fresh in-memory store."""

    def build(
        remote: bool = True,
        on_fallback=None,
        local: Optional[LocalStore] = None,
        auto_health_check: bool = True,
    ) -> DataService:
        client = None
        if remote:
            client = RemoteClient(
                BASE_URL,
                timeout_seconds=2.0,
                transport=httpx.MockTransport(backend),
            )
        return DataService(
            local=local or LocalStore(InMemoryMedium()),
            remote=client,
            monitor=ConnectivityMonitor(
                remote_configured=remote,
                check_interval_seconds=60.0,
                clock=clock,
            ),
            cache=ResponseCache(clock=clock),
            events=SyncEventLogger(),
            auto_health_check=auto_health_check,
            on_fallback=on_fallback,
        )

    return build
