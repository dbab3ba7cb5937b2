"""
Abstract Storage Medium

DESIGN DECISION: The local store talks to an abstract key-value medium.
This allows us to:
1. Persist to JSON files on disk in the app
2. Use in-memory storage for tests and throwaway sessions
3. Keep the collection logic (filters, invariants) independent of the medium

The interface is intentionally tiny: whole values are read and written per
key. There are no partial writes.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class StorageMedium(ABC):
    """
    Abstract interface for the local persistent key-value medium.

    Values are JSON-compatible (lists and dicts of primitives).
    """

    @abstractmethod
    async def read(self, key: str) -> Optional[Any]:
        """
        Read the value stored under `key`.

        Returns:
            The stored value, or None if the key was never written

        Raises:
            StorageError: If the medium cannot be read or the value is corrupt
        """
        pass

    @abstractmethod
    async def write(self, key: str, value: Any) -> None:
        """
        Replace the value stored under `key`.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Remove `key`.

        Returns:
            True if something was removed
        """
        pass

    @abstractmethod
    async def keys(self) -> list[str]:
        """List every key currently stored."""
        pass


class StorageError(Exception):
    """Base exception for local storage operations."""
    pass


class CorruptCollectionError(StorageError):
    """A stored value could not be parsed."""
    pass


class RejectedError(Exception):
    """
    The local store refused an operation for a business reason
    (duplicate email, wrong credentials, invalid join code, ...).

    These mirror the rejections the remote service would return.
    """
    pass
