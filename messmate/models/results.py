"""
Operation Outcomes

Every public DataService operation resolves to exactly one of:

    Served(source=REMOTE|LOCAL, value, fell_back)
    Failed(kind, message)

DESIGN DECISION: The source that answered is part of the result type.
Callers cannot read a value without also being handed where it came from,
and a fallback is flagged on the result itself instead of a side channel.
"""

from enum import Enum
from typing import ClassVar, Generic, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict


T = TypeVar("T")


class DataSource(str, Enum):
    """Which backend answered an operation."""
    REMOTE = "remote"
    LOCAL = "local"


class ErrorKind(str, Enum):
    """
    Failure taxonomy.

    CONNECTIVITY never reaches callers while the local store works;
    it is handled by falling back.
    """
    CONNECTIVITY = "connectivity"   # transport failed or remote store disconnected
    APPLICATION = "application"     # business rejection (duplicate email, bad code)
    PROTOCOL = "protocol"           # remote answered with an unexpected shape
    STORAGE = "storage"             # local medium unusable


class Served(BaseModel, Generic[T]):
    """A successful operation and the backend that served it."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    ok: ClassVar[bool] = True

    source: DataSource
    value: T
    fell_back: bool = False

    @property
    def from_remote(self) -> bool:
        return self.source == DataSource.REMOTE

    @property
    def from_local(self) -> bool:
        return self.source == DataSource.LOCAL

    def value_or(self, default):
        return self.value


class Failed(BaseModel):
    """A failed operation. Carries the server's (or store's) message verbatim."""
    model_config = ConfigDict(frozen=True)

    ok: ClassVar[bool] = False

    kind: ErrorKind
    message: str
    status_code: Optional[int] = None

    def value_or(self, default):
        return default


Outcome = Union[Served[T], Failed]
