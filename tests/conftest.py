"""
Pytest fixtures and test configuration for clipsync tests.
"""

import json
from typing import Any, Dict, Iterable, List, Optional

import httpx
import pytest

from clipsync.crypto import KeyManager
from clipsync.protocols import PersistenceError
from clipsync.storage import (
    ClipboardStore,
    MemoryKeyValueStore,
    SettingsStore,
    TemplateStore,
)
from clipsync.transport import SyncTransport
from clipsync.types import ClipboardItem, ContentType, ItemSource

BACKEND_URL = "https://sync.example.com/api/sync"
AUTH_TOKEN = "test-token"
DEVICE_ID = "device_test_0001"


class FlakyKeyValueStore(MemoryKeyValueStore):
    """Memory store whose next ``fail_times`` writes raise ``error``."""

    def __init__(self, fail_times: int = 0, error: Optional[Exception] = None, **kwargs):
        super().__init__(**kwargs)
        self.fail_times = fail_times
        self.error = error or PersistenceError("disk unavailable")
        self.set_attempts = 0

    async def set(self, items: Dict[str, Any]) -> None:
        self.set_attempts += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise self.error
        await super().set(items)


class FakeSyncServer:
    """In-memory stand-in for the sync service, served through httpx.MockTransport."""

    def __init__(self):
        self.data: Optional[Dict[str, Any]] = None
        # Served by download instead of ``data``: another device's upload
        # landing between this device's upload and download
        self.pinned_download: Optional[Dict[str, Any]] = None
        self.device_count = 1
        self.requests: List[httpx.Request] = []
        self.uploads: List[Dict[str, Any]] = []
        self.fail_status: Dict[str, int] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        action = request.url.path.rsplit("/", 1)[-1]

        if action in self.fail_status:
            return httpx.Response(self.fail_status[action], json={"error": "failure"})

        if action == "upload":
            body = json.loads(request.content)
            self.uploads.append(body)
            self.data = body["data"]
            return httpx.Response(200, json={"success": True})

        if action == "download":
            data = self.pinned_download or self.data
            if data is None:
                return httpx.Response(404, json={"error": "No sync data found"})
            return httpx.Response(200, json={"data": data, "timestamp": 1700000000000})

        if action == "clear":
            self.data = None
            self.pinned_download = None
            return httpx.Response(200, json={"success": True})

        if action == "devices":
            return httpx.Response(200, json={"deviceCount": self.device_count})

        return httpx.Response(404)

    def paths(self) -> List[str]:
        return [f"{r.method} {r.url.path.rsplit('/', 1)[-1]}" for r in self.requests]


def make_item(
    item_id: int,
    timestamp: str = "2024-01-01T00:00:00+00:00",
    content: Optional[str] = None,
    **kwargs,
) -> ClipboardItem:
    """Build a clipboard item without going through the classifier."""
    return ClipboardItem(
        id=item_id,
        content=content if content is not None else f"item {item_id}",
        type=kwargs.pop("type", ContentType.TEXT),
        source=kwargs.pop("source", ItemSource()),
        timestamp=timestamp,
        **kwargs,
    )


def make_items(count: int, start_id: int = 1) -> List[ClipboardItem]:
    return [make_item(start_id + i) for i in range(count)]


def ids(items: Iterable[ClipboardItem]) -> List[int]:
    return [item.id for item in items]


@pytest.fixture
def kv():
    """Empty in-memory key-value store."""
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv):
    """Clipboard store without retry delays."""
    return ClipboardStore(kv, max_items=100, backoff_base=0)


@pytest.fixture
def templates(kv):
    return TemplateStore(kv)


@pytest.fixture
def user_settings(kv):
    return SettingsStore(kv)


@pytest.fixture
def key_manager(kv):
    return KeyManager(kv)


@pytest.fixture
def server():
    return FakeSyncServer()


@pytest.fixture
def transport(server):
    """Transport wired to the fake sync server."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(server.handler))
    return SyncTransport(BACKEND_URL, AUTH_TOKEN, DEVICE_ID, client=client)
