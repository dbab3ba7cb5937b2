"""Local storage package."""

from messmate.services.storage.interface import (
    CorruptCollectionError,
    RejectedError,
    StorageError,
    StorageMedium,
)
from messmate.services.storage.local_store import (
    CURRENT_USER_KEY,
    Collection,
    LocalStore,
)
from messmate.services.storage.medium import InMemoryMedium, JsonFileMedium

__all__ = [
    # Interface
    "StorageMedium",
    "StorageError",
    "CorruptCollectionError",
    "RejectedError",
    # Media
    "InMemoryMedium",
    "JsonFileMedium",
    # Store
    "CURRENT_USER_KEY",
    "Collection",
    "LocalStore",
]
