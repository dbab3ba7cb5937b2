"""
Remote Client

Thin request wrapper around the remote authoritative service.

DESIGN DECISION: `request()` never raises. Every call resolves to a
`RemoteResult` that says whether the service answered and, if it did not,
whether the cause was connectivity (fall back) or the application itself
(show the message). The caller decides what to do with each class.

Classification:
- Transport error, timeout, non-JSON body        -> connectivity failure
- 502/503/504 (gateway cannot reach the service)  -> connectivity failure
- Body reports `mongodb` other than "connected"   -> connectivity failure
- Other non-2xx, or `success: false`              -> application error
- 2xx                                             -> success
"""

import asyncio
from typing import Any, Optional

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field


logger = structlog.get_logger("messmate.remote")

GATEWAY_FAILURE_CODES = frozenset({502, 503, 504})


class RemoteRequest(BaseModel):
    """Fixed request descriptor. Built once, sent as-is."""
    model_config = ConfigDict(frozen=True)

    method: str = "GET"
    path: str
    params: Optional[dict[str, Any]] = None
    body: Optional[dict[str, Any]] = None
    auth_required: bool = True


class RemoteResult(BaseModel):
    """Classified outcome of one remote call."""
    success: bool
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    is_connectivity_failure: bool = False
    status_code: Optional[int] = None
    store_connected: Optional[bool] = Field(
        default=None,
        description="The `mongodb` flag of the body, when present"
    )

    @classmethod
    def unreachable(cls, error: str, status_code: Optional[int] = None,
                    store_connected: Optional[bool] = None) -> "RemoteResult":
        return cls(
            success=False,
            error=error,
            is_connectivity_failure=True,
            status_code=status_code,
            store_connected=store_connected,
        )


class HealthStatus(BaseModel):
    backend_available: bool
    data_store_connected: bool


class AuthTokenStore:
    """Holds the bearer token of the signed-in user."""

    def __init__(self, token: Optional[str] = None):
        self._token = token

    def get_token(self) -> Optional[str]:
        return self._token

    def set_token(self, token: Optional[str]) -> None:
        self._token = token or None

    def clear(self) -> None:
        self._token = None


class RemoteClient:
    """
    Async HTTP client for the remote service.

    Usage:
        client = RemoteClient("http://localhost:5000/api")
        result = await client.request(RemoteRequest(path="/meals", params={"monthId": m}))
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        token_store: Optional[AuthTokenStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._timeout = timeout_seconds
        self._tokens = token_store or AuthTokenStore()
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    @property
    def tokens(self) -> AuthTokenStore:
        return self._tokens

    async def aclose(self) -> None:
        await self._http.aclose()

    def _headers(self, auth_required: bool) -> dict[str, str]:
        token = self._tokens.get_token()
        if auth_required and token:
            return {"Authorization": f"Bearer {token}"}
        return {}

    async def request(self, req: RemoteRequest) -> RemoteResult:
        """Send one request and classify the outcome. Never raises."""
        try:
            response = await asyncio.wait_for(
                self._http.request(
                    req.method,
                    req.path,
                    params=req.params,
                    json=req.body,
                    headers=self._headers(req.auth_required),
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("remote_timeout", method=req.method, path=req.path)
            return RemoteResult.unreachable(f"Request timed out after {self._timeout}s")
        except httpx.HTTPError as e:
            logger.warning("remote_transport_error", method=req.method, path=req.path,
                           error=str(e))
            return RemoteResult.unreachable(f"Network error: {e}")

        return self._classify(response)

    @staticmethod
    def _classify(response: httpx.Response) -> RemoteResult:
        status = response.status_code
        try:
            payload = response.json()
        except ValueError:
            payload = None

        store_connected = None
        if isinstance(payload, dict) and "mongodb" in payload:
            store_connected = payload["mongodb"] == "connected"

        if status in GATEWAY_FAILURE_CODES:
            return RemoteResult.unreachable(
                f"Gateway error {status}", status_code=status, store_connected=store_connected
            )
        if not isinstance(payload, dict):
            return RemoteResult.unreachable("Unparseable response", status_code=status)
        if store_connected is False:
            return RemoteResult.unreachable(
                "Remote data store disconnected", status_code=status, store_connected=False
            )

        if not response.is_success or payload.get("success") is False:
            message = payload.get("error") or payload.get("message") or f"HTTP {status}"
            return RemoteResult(success=False, error=str(message), status_code=status,
                                store_connected=store_connected)

        return RemoteResult(success=True, data=payload, status_code=status,
                            store_connected=store_connected)

    async def check_health(self) -> HealthStatus:
        """
        Probe `GET /health`.

        The service counts as available when it answered with a parseable body,
        even if that body reports its data store as disconnected.
        """
        result = await self.request(RemoteRequest(path="/health", auth_required=False))
        backend_available = result.success or result.store_connected is not None
        return HealthStatus(
            backend_available=backend_available,
            data_store_connected=bool(result.store_connected),
        )
