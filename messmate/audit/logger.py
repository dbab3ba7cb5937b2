"""
Sync Event Logger

DESIGN DECISION: Every data-source decision is logged.
This provides:
1. Traceability of which backend answered each operation
2. A record of when and why the app fell back to the local store
3. A recent-events feed the UI can show as an offline banner

The logger:
- Never raises (a logging failure must not break a data operation)
- Keeps a bounded in-memory history of recent events
"""

import logging
from collections import deque
from typing import Optional

import structlog

from messmate.models.events import SyncEvent, SyncEventBuilder, SyncSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through stdlib logging at `level`."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper()))


class SyncEventLogger:
    """
    Central sync event logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. A bounded in-memory history (for the UI)
    """

    def __init__(self, history_size: int = 200):
        self._logger = structlog.get_logger("messmate.sync")
        self._history: deque[SyncEvent] = deque(maxlen=history_size)

    def log(self, event: SyncEvent) -> None:
        """Log a sync event. Never raises."""
        self._history.append(event)
        log_dict = event.to_log_dict()

        try:
            if event.severity == SyncSeverity.ERROR:
                self._logger.error("sync_event", **log_dict)
            elif event.severity == SyncSeverity.WARNING:
                self._logger.warning("sync_event", **log_dict)
            elif event.severity == SyncSeverity.DEBUG:
                self._logger.debug("sync_event", **log_dict)
            else:
                self._logger.info("sync_event", **log_dict)
        except Exception as e:
            # Keep the data path alive; report through plain logging.
            logging.getLogger(__name__).warning("Failed to emit sync event: %s", e)

    def recent_events(self, limit: Optional[int] = None) -> list[SyncEvent]:
        """Most recent events, newest first."""
        events = list(reversed(self._history))
        return events[:limit] if limit is not None else events

    def log_health_check(self, backend_available: bool, data_store_connected: bool) -> None:
        self.log(SyncEventBuilder.health_check(backend_available, data_store_connected))

    def log_remote_restored(self) -> None:
        self.log(SyncEventBuilder.remote_restored())

    def log_fallback(self, operation: str, reason: str) -> None:
        self.log(SyncEventBuilder.fallback_activated(operation, reason))

    def log_remote_rejected(
        self,
        operation: str,
        message: str,
        status_code: Optional[int] = None,
    ) -> None:
        self.log(SyncEventBuilder.remote_rejected(operation, message, status_code))

    def log_protocol_error(self, operation: str, message: str) -> None:
        self.log(SyncEventBuilder.protocol_error(operation, message))

    def log_local_write(self, operation: str, collection: str) -> None:
        self.log(SyncEventBuilder.local_write(operation, collection))

    def log_storage_error(self, operation: str, message: str) -> None:
        self.log(SyncEventBuilder.storage_error(operation, message))

    def log_cache_invalidated(self, operation: str, keys: list[str]) -> None:
        self.log(SyncEventBuilder.cache_invalidated(operation, keys))
