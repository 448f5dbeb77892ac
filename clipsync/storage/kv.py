"""Key-value backends for clipsync state.

Both backends satisfy ``clipsync.protocols.KeyValueStore``. Values must be
JSON-serializable and are copied on the way in and out.
"""

import asyncio
import copy
import errno
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from clipsync.protocols import PersistenceError, QuotaExceededError

logger = logging.getLogger(__name__)

# Rough size of the browser's local storage area
DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024

_QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


def _encoded_size(data: Dict[str, Any]) -> int:
    return len(json.dumps(data, separators=(",", ":")).encode("utf-8"))


class MemoryKeyValueStore:
    """In-memory store, used by tests and as a scratch backend.

    Args:
        initial: Optional starting contents.
        quota_bytes: When set, a write that would grow the encoded store past
            this size raises QuotaExceededError and leaves the store unchanged.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None, quota_bytes: Optional[int] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self.quota_bytes = quota_bytes
        self.write_count = 0

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        return {key: copy.deepcopy(self._data[key]) for key in keys if key in self._data}

    async def set(self, items: Dict[str, Any]) -> None:
        try:
            staged = {**self._data, **json.loads(json.dumps(items))}
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Value is not serializable: {e}") from e

        if self.quota_bytes is not None:
            size = _encoded_size(staged)
            if size > self.quota_bytes:
                raise QuotaExceededError(
                    f"Storage quota exceeded ({size} > {self.quota_bytes} bytes)"
                )

        self._data = staged
        self.write_count += 1

    def dump(self) -> Dict[str, Any]:
        """Copy of everything stored."""
        return copy.deepcopy(self._data)


class JsonFileKeyValueStore:
    """Durable store backed by a single JSON file.

    Writes are atomic (temp file + rename) and serialized by a lock. The file
    holds the encryption key and is created with 0600 permissions.

    Args:
        path: Location of the JSON file.
        quota_bytes: Maximum encoded size; larger writes raise QuotaExceededError.
    """

    def __init__(self, path: Path, quota_bytes: Optional[int] = DEFAULT_QUOTA_BYTES):
        self.path = Path(path)
        self.quota_bytes = quota_bytes
        self._data: Optional[Dict[str, Any]] = None
        self._lock = asyncio.Lock()

    def _read_file(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning(f"State file {self.path} is corrupt, starting empty: {e}")
            return {}
        except OSError as e:
            raise PersistenceError(f"Failed to read {self.path}: {e}") from e
        if not isinstance(data, dict):
            logger.warning(f"State file {self.path} does not hold an object, starting empty")
            return {}
        return data

    def _write_file(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, separators=(",", ":"))
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if e.errno in _QUOTA_ERRNOS:
                raise QuotaExceededError(f"No space left writing {self.path}") from e
            raise PersistenceError(f"Failed to write {self.path}: {e}") from e
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    logger.debug(f"Could not remove temp file {tmp_path}", exc_info=True)

    async def _ensure_loaded(self) -> Dict[str, Any]:
        if self._data is None:
            self._data = await asyncio.to_thread(self._read_file)
        return self._data

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        data = await self._ensure_loaded()
        return {key: copy.deepcopy(data[key]) for key in keys if key in data}

    async def set(self, items: Dict[str, Any]) -> None:
        async with self._lock:
            data = await self._ensure_loaded()
            try:
                staged = {**data, **json.loads(json.dumps(items))}
            except (TypeError, ValueError) as e:
                raise PersistenceError(f"Value is not serializable: {e}") from e

            if self.quota_bytes is not None:
                size = _encoded_size(staged)
                if size > self.quota_bytes:
                    raise QuotaExceededError(
                        f"Storage quota exceeded ({size} > {self.quota_bytes} bytes)"
                    )

            await asyncio.to_thread(self._write_file, staged)
            self._data = staged
