"""
Data Models Package

This package contains all Pydantic models used by MessMate.
Every record moving between remote, local store and UI conforms to these schemas.
"""

from messmate.models.entities import (
    BazarDate,
    Credential,
    Deposit,
    JoinRequest,
    JoinRequestStatus,
    Meal,
    MealCost,
    Mess,
    MessRecord,
    Month,
    Note,
    Notice,
    Notification,
    NotificationType,
    OtherCost,
    User,
    UserRole,
    generate_id,
    utc_now,
)
from messmate.models.events import (
    SyncEvent,
    SyncEventBuilder,
    SyncEventType,
    SyncSeverity,
)
from messmate.models.results import (
    DataSource,
    ErrorKind,
    Failed,
    Outcome,
    Served,
)
from messmate.models.summary import (
    MemberSummary,
    MonthLedger,
    MonthSummary,
)

__all__ = [
    # Entities
    "BazarDate",
    "Credential",
    "Deposit",
    "JoinRequest",
    "JoinRequestStatus",
    "Meal",
    "MealCost",
    "Mess",
    "MessRecord",
    "Month",
    "Note",
    "Notice",
    "Notification",
    "NotificationType",
    "OtherCost",
    "User",
    "UserRole",
    "generate_id",
    "utc_now",
    # Sync events
    "SyncEvent",
    "SyncEventBuilder",
    "SyncEventType",
    "SyncSeverity",
    # Outcomes
    "DataSource",
    "ErrorKind",
    "Failed",
    "Outcome",
    "Served",
    # Summaries
    "MemberSummary",
    "MonthLedger",
    "MonthSummary",
]
