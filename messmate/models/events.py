"""
Sync Event Models

Every decision the sync layer makes about WHERE data lives is recorded:
health checks, mode switches, remote rejections, cache invalidations.
This provides:
1. A visible trail of when the app dropped to the local store and why
2. Debugging information for mismatches between remote and local data
3. A feed the UI can render as "offline mode" banners
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class SyncEventType(str, Enum):
    """Types of events the sync layer records."""
    # Connectivity
    HEALTH_CHECK_PASSED = "health_check_passed"
    HEALTH_CHECK_FAILED = "health_check_failed"
    REMOTE_RESTORED = "remote_restored"
    FALLBACK_ACTIVATED = "fallback_activated"

    # Remote outcomes
    REMOTE_REJECTED = "remote_rejected"
    PROTOCOL_ERROR = "protocol_error"

    # Local store
    LOCAL_WRITE = "local_write"
    STORAGE_ERROR = "storage_error"

    # Cache
    CACHE_INVALIDATED = "cache_invalidated"


class SyncSeverity(str, Enum):
    """Severity level for sync events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class SyncEvent(BaseModel):
    """A single sync-layer event."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    event_type: SyncEventType
    severity: SyncSeverity = SyncSeverity.INFO

    # Logical operation that triggered the event (e.g. "get_meals")
    operation: Optional[str] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "operation": self.operation,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class SyncEventBuilder:
    """
    Helper class to build sync events with common patterns.

    Usage:
        event = SyncEventBuilder.fallback_activated("get_meals", "timed out")
    """

    @staticmethod
    def health_check(
        backend_available: bool,
        data_store_connected: bool,
    ) -> SyncEvent:
        passed = backend_available and data_store_connected
        return SyncEvent(
            event_type=(
                SyncEventType.HEALTH_CHECK_PASSED if passed
                else SyncEventType.HEALTH_CHECK_FAILED
            ),
            severity=SyncSeverity.INFO if passed else SyncSeverity.WARNING,
            operation="check_health",
            description=(
                "Remote service and data store reachable" if passed
                else "Remote service or its data store unavailable"
            ),
            details={
                "backend_available": backend_available,
                "data_store_connected": data_store_connected,
            },
        )

    @staticmethod
    def remote_restored() -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.REMOTE_RESTORED,
            description="Remote service available again, leaving local mode",
        )

    @staticmethod
    def fallback_activated(operation: str, reason: str) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.FALLBACK_ACTIVATED,
            severity=SyncSeverity.WARNING,
            operation=operation,
            description="Remote unavailable, serving from local store",
            error_message=reason,
        )

    @staticmethod
    def remote_rejected(
        operation: str,
        message: str,
        status_code: Optional[int],
    ) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.REMOTE_REJECTED,
            operation=operation,
            description="Remote service rejected the operation",
            details={"status_code": status_code},
            error_message=message,
        )

    @staticmethod
    def protocol_error(operation: str, message: str) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.PROTOCOL_ERROR,
            severity=SyncSeverity.ERROR,
            operation=operation,
            description="Remote response did not match the expected shape",
            error_message=message,
        )

    @staticmethod
    def local_write(operation: str, collection: str) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.LOCAL_WRITE,
            severity=SyncSeverity.DEBUG,
            operation=operation,
            description=f"Wrote {collection} to local store",
            details={"collection": collection},
        )

    @staticmethod
    def storage_error(operation: str, message: str) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.STORAGE_ERROR,
            severity=SyncSeverity.ERROR,
            operation=operation,
            description="Local store unavailable",
            error_message=message,
        )

    @staticmethod
    def cache_invalidated(operation: str, keys: list[str]) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.CACHE_INVALIDATED,
            severity=SyncSeverity.DEBUG,
            operation=operation,
            description="Invalidated cached reads affected by a write",
            details={"keys": keys},
        )
