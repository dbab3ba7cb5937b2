"""Services package."""

from messmate.services.remote import (
    AuthTokenStore,
    RemoteClient,
    RemoteRequest,
    RemoteResult,
    ResponseShapeError,
)
from messmate.services.storage import (
    CorruptCollectionError,
    InMemoryMedium,
    JsonFileMedium,
    LocalStore,
    RejectedError,
    StorageError,
    StorageMedium,
)

__all__ = [
    # Remote services
    "AuthTokenStore",
    "RemoteClient",
    "RemoteRequest",
    "RemoteResult",
    "ResponseShapeError",
    # Storage services
    "CorruptCollectionError",
    "InMemoryMedium",
    "JsonFileMedium",
    "LocalStore",
    "RejectedError",
    "StorageError",
    "StorageMedium",
]
