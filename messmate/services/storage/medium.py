"""
Storage Media

Concrete `StorageMedium` implementations.

JsonFileMedium stores one JSON document per key inside a data directory.
TRADEOFFS:
- Every mutation rewrites a whole collection (fine for one household)
- No transactions; atomicity per key comes from write-then-rename
- Blocking file I/O runs in a worker thread so the event loop stays free
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from messmate.services.storage.interface import (
    CorruptCollectionError,
    StorageError,
    StorageMedium,
)


class JsonFileMedium(StorageMedium):
    """One `<key>.json` file per key under `data_dir`."""

    def __init__(self, data_dir: Path):
        self._data_dir = Path(data_dir)

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise StorageError(f"Invalid storage key: {key!r}")
        return self._data_dir / f"{key}.json"

    def _read_file(self, path: Path) -> Optional[Any]:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise CorruptCollectionError(f"Corrupt data in {path.name}: {e}")

    def _write_file(self, path: Path, value: Any) -> None:
        self._data_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._data_dir, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(value, handle, ensure_ascii=False)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def read(self, key: str) -> Optional[Any]:
        path = self._path(key)
        try:
            return await asyncio.to_thread(self._read_file, path)
        except StorageError:
            raise
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=0.5),
        retry=retry_if_exception_type(OSError),
        reraise=True,
    )
    async def _write_with_retry(self, path: Path, value: Any) -> None:
        await asyncio.to_thread(self._write_file, path, value)

    async def write(self, key: str, value: Any) -> None:
        path = self._path(key)
        try:
            await self._write_with_retry(path, value)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to write {key}: {e}")

    async def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            await asyncio.to_thread(path.unlink)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}")

    async def keys(self) -> list[str]:
        if not self._data_dir.exists():
            return []
        return sorted(
            p.stem for p in self._data_dir.glob("*.json") if not p.name.startswith(".")
        )


class InMemoryMedium(StorageMedium):
    """
    Process-local medium.

    Values are stored as JSON text so readers always get an independent copy,
    exactly as with the file medium. Every call yields to the event loop once,
    the way real I/O would.
    """

    def __init__(self):
        self._data: dict[str, str] = {}

    async def read(self, key: str) -> Optional[Any]:
        await asyncio.sleep(0)
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    async def write(self, key: str, value: Any) -> None:
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Failed to write {key}: {e}")
        await asyncio.sleep(0)
        self._data[key] = raw

    async def delete(self, key: str) -> bool:
        await asyncio.sleep(0)
        return self._data.pop(key, None) is not None

    async def keys(self) -> list[str]:
        return sorted(self._data)
