"""
Connectivity Monitor

Tracks whether the remote service and its backing data store are reachable.

DESIGN DECISION: The monitor never guesses. Until a health check (or a
successful remote response) has reported both the service and its data
store as up, `should_use_remote()` answers False and the local store is used.

One monitor belongs to one DataService; there is no process-wide state, so
independent services (and tests) never share connectivity flags.
"""

import threading
import time
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict


class ConnectivityState(BaseModel):
    """Immutable snapshot of the monitor's flags."""
    model_config = ConfigDict(frozen=True)

    remote_configured: bool
    backend_available: bool
    data_store_connected: bool
    confirmed_working: bool
    last_checked_at: Optional[float]
    check_valid: bool
    use_remote: bool


class ConnectivityMonitor:
    """
    Connectivity flags plus a time-boxed cache of the last health check.

    The validity window doubles once the remote has proven reliable
    (`confirmed_working`), which cuts health-check churn on a stable link.
    """

    def __init__(
        self,
        remote_configured: bool,
        check_interval_seconds: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._remote_configured = remote_configured
        self._interval = check_interval_seconds
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()

        self._backend_available = False
        self._data_store_connected = False
        self._confirmed_working = False
        self._last_checked_at: Optional[float] = None

    @property
    def remote_configured(self) -> bool:
        return self._remote_configured

    def record_health(self, data_store_connected: bool, backend_available: bool) -> None:
        """Record the outcome of a health check (or of a response carrying one)."""
        with self._lock:
            self._data_store_connected = data_store_connected
            self._backend_available = backend_available
            self._last_checked_at = self._clock()
            if data_store_connected or backend_available:
                self._confirmed_working = True

    def mark_down(self) -> None:
        """
        Record a connectivity failure seen by a regular operation.

        The check time is stamped so the down state holds until the next
        valid health check.
        """
        with self._lock:
            self._backend_available = False
            self._data_store_connected = False
            self._last_checked_at = self._clock()

    def reset_confirmation(self) -> None:
        """Forget earned trust and force the next operation to re-check."""
        with self._lock:
            self._confirmed_working = False
            self._last_checked_at = None

    def is_check_valid(self) -> bool:
        with self._lock:
            return self._is_check_valid()

    def _is_check_valid(self) -> bool:
        if self._last_checked_at is None:
            return False
        window = self._interval * 2 if self._confirmed_working else self._interval
        return self._clock() - self._last_checked_at < window

    def should_use_remote(self) -> bool:
        with self._lock:
            return self._should_use_remote()

    def _should_use_remote(self) -> bool:
        return (
            self._remote_configured
            and self._backend_available
            and self._data_store_connected
        )

    def snapshot(self) -> ConnectivityState:
        with self._lock:
            return ConnectivityState(
                remote_configured=self._remote_configured,
                backend_available=self._backend_available,
                data_store_connected=self._data_store_connected,
                confirmed_working=self._confirmed_working,
                last_checked_at=self._last_checked_at,
                check_valid=self._is_check_valid(),
                use_remote=self._should_use_remote(),
            )
