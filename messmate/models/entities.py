"""
Core Data Models for MessMate

These models define the schemas for every record the sync layer moves
between the remote service, the local store and the UI. They are designed to:
1. Validate records at the boundary (remote decode, local load)
2. Serialize to the camelCase JSON both backends use
3. Accept the legacy field names the remote service still emits

DESIGN DECISION: Python attributes are snake_case, wire and persisted JSON
are camelCase. `to_record()` is the only way a model leaves Python.
"""

import datetime as dt
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_core import to_jsonable_python


def generate_id() -> str:
    """Random unique identifier (uuid4, hex form)."""
    return uuid4().hex


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


# Fields the store assigns; partial updates never touch them.
IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, Enum):
    """Role inside a mess. Exactly one manager per mess."""
    MANAGER = "manager"
    MEMBER = "member"


class JoinRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class NotificationType(str, Enum):
    """Notification kinds raised by mess activity."""
    JOIN_REQUEST = "join_request"
    JOIN_APPROVED = "join_approved"
    JOIN_REJECTED = "join_rejected"
    NOTICE_ADD = "notice_add"
    NOTE_ADD = "note_add"
    BAZAR_DATE = "bazar_date"
    MEAL_UPDATE = "meal_update"
    DEPOSIT_ADD = "deposit_add"
    COST_ADD = "cost_add"
    GENERAL = "general"


# =============================================================================
# BASE
# =============================================================================

class MessRecord(BaseModel):
    """
    Base for every persisted entity.

    Remote payloads may carry `_id` instead of `id`; both are accepted.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    id: str = Field(
        default_factory=generate_id,
        validation_alias=AliasChoices("id", "_id"),
        serialization_alias="id",
    )
    created_at: dt.datetime = Field(default_factory=utc_now)

    def to_record(self) -> dict[str, Any]:
        """JSON-compatible camelCase dict, as stored locally and sent remotely."""
        return self.model_dump(mode="json", by_alias=True)

    def apply_changes(self, changes: dict[str, Any]):
        """
        Return a re-validated copy with `changes` (snake_case field names) applied.

        `id` and `created_at` are never overwritten.
        """
        self.check_fields(changes)
        data = self.model_dump()
        data.update({k: v for k, v in changes.items() if k not in IMMUTABLE_FIELDS})
        return type(self).model_validate(data)

    @classmethod
    def check_fields(cls, changes: dict[str, Any]) -> None:
        unknown = set(changes) - set(cls.model_fields)
        if unknown:
            raise ValueError(
                f"Unknown {cls.__name__} field(s): {', '.join(sorted(unknown))}"
            )

    @classmethod
    def wire_changes(cls, changes: dict[str, Any]) -> dict[str, Any]:
        """Translate a snake_case partial update into a camelCase request body."""
        cls.check_fields(changes)
        body = {}
        for name, value in changes.items():
            if name in IMMUTABLE_FIELDS:
                continue
            field = cls.model_fields[name]
            key = field.serialization_alias or field.alias or name
            body[key] = to_jsonable_python(value)
        return body


# =============================================================================
# MEMBERSHIP
# =============================================================================

class User(MessRecord):
    """
    A person using the app.

    The remote service names the display name `name`; locally it is `fullName`.
    Records returned by the remote members endpoint omit the approval flags,
    so both default to True (being listed means being a member).
    """
    email: str = Field(..., min_length=3, max_length=254)
    full_name: str = Field(
        default="",
        max_length=200,
        validation_alias=AliasChoices("fullName", "full_name", "name"),
        serialization_alias="fullName",
    )
    phone: str = Field(default="", max_length=30)
    role: UserRole = UserRole.MEMBER
    mess_id: Optional[str] = None
    is_approved: bool = True
    is_active: bool = True


class Mess(MessRecord):
    """A household group. `code` is the unique join code."""
    name: str = Field(..., min_length=1, max_length=200)
    code: str = Field(
        default="",
        max_length=12,
        validation_alias=AliasChoices("code", "messCode", "mess_code"),
        serialization_alias="code",
    )
    manager_id: Optional[str] = None


class Month(MessRecord):
    """
    A billing period of a mess.

    At most one month per mess is active at any time.
    """
    mess_id: str
    name: str = Field(..., min_length=1, max_length=100)
    year: Optional[int] = Field(default=None, ge=1970, le=9999)
    month: Optional[int] = Field(default=None, ge=1, le=12)
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    is_active: bool = False


class JoinRequest(MessRecord):
    mess_id: str
    user_id: str = Field(
        ...,
        validation_alias=AliasChoices("userId", "user_id", "oderId"),
        serialization_alias="userId",
    )
    mess_code: Optional[str] = None
    status: JoinRequestStatus = JoinRequestStatus.PENDING


# =============================================================================
# ACTIVITY RECORDS (scoped to one month and one user)
# =============================================================================

class Meal(MessRecord):
    """Meal counts of one member for one day. Half meals are allowed."""
    month_id: str
    user_id: str
    date: dt.date
    breakfast: float = Field(default=0, ge=0)
    lunch: float = Field(default=0, ge=0)
    dinner: float = Field(default=0, ge=0)

    @property
    def total(self) -> float:
        return self.breakfast + self.lunch + self.dinner


class Deposit(MessRecord):
    month_id: str
    user_id: str
    amount: float = Field(..., ge=0)
    date: dt.date
    note: Optional[str] = Field(default=None, max_length=500)


class MealCost(MessRecord):
    """Money spent on groceries for shared meals."""
    month_id: str
    user_id: str
    amount: float = Field(..., ge=0)
    date: dt.date
    description: str = Field(default="", max_length=500)


class OtherCost(MessRecord):
    """
    Non-meal cost. Shared costs are split across current members,
    individual costs are charged to `user_id` only.
    """
    month_id: str
    user_id: str
    amount: float = Field(..., ge=0)
    date: dt.date
    description: str = Field(default="", max_length=500)
    is_shared: bool = False


# =============================================================================
# AUXILIARY RECORDS
# =============================================================================

class Notice(MessRecord):
    """Mess-wide notice. Creating one deactivates the previous ones."""
    mess_id: str
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(default="", max_length=5000)
    created_by: Optional[str] = None
    is_active: bool = True
    updated_at: dt.datetime = Field(default_factory=utc_now)


class Note(MessRecord):
    mess_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    created_by: Optional[str] = None
    updated_at: dt.datetime = Field(default_factory=utc_now)


class BazarDate(MessRecord):
    """A day a member is on grocery (bazar) duty."""
    mess_id: str
    user_id: str = Field(
        ...,
        validation_alias=AliasChoices("userId", "user_id", "oderId"),
        serialization_alias="userId",
    )
    user_name: str = Field(
        default="",
        validation_alias=AliasChoices("userName", "user_name", "odername"),
        serialization_alias="userName",
    )
    date: dt.date


class Notification(MessRecord):
    user_id: str = Field(
        ...,
        validation_alias=AliasChoices("userId", "user_id", "oderId"),
        serialization_alias="userId",
    )
    mess_id: Optional[str] = None
    type: NotificationType = NotificationType.GENERAL
    title: str = Field(..., max_length=200)
    message: str = Field(default="", max_length=1000)
    seen: bool = False


class Credential(MessRecord):
    """
    Local-only password record.

    Kept out of `User` so password material never reaches the UI or the cache.
    """
    user_id: str
    salt: str
    password_hash: str
