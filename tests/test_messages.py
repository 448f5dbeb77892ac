"""
Tests for the action message router.

Covers:
- Every history action and its response shape
- Search filters and data export
- Unknown actions
- Sync actions with and without a configured backend
- Store failures reported in the response
"""

import pytest
from conftest import FlakyKeyValueStore

from clipsync.config import Settings
from clipsync.context import create_context
from clipsync.messages import MessageRouter
from clipsync.storage import MemoryKeyValueStore
from clipsync.types import SourceKind


async def make_router(tmp_path, kv=None, transport=None):
    settings = Settings(data_dir=tmp_path, tier="premium", _env_file=None)
    ctx = await create_context(
        settings, kv=kv or MemoryKeyValueStore(), transport=transport, start_sync=False
    )
    return MessageRouter(ctx), ctx


class TestHistoryActions:
    @pytest.mark.asyncio
    async def test_add_and_get(self, tmp_path):
        router, _ = await make_router(tmp_path)

        response = await router.handle(
            {"action": "add-clipboard-item", "content": "hello", "source": "https://a.example"}
        )
        history = (await router.handle({"action": "get-clipboard-history"}))["history"]

        assert response == {"success": True}
        assert len(history) == 1
        assert history[0]["content"] == "hello"
        assert history[0]["source"]["hostname"] == "a.example"

    @pytest.mark.asyncio
    async def test_add_empty_content_is_silently_ignored(self, tmp_path):
        router, ctx = await make_router(tmp_path)

        assert await router.handle({"action": "add-clipboard-item", "content": "  "}) == {
            "success": True
        }
        assert len(ctx.clipboard) == 0

    @pytest.mark.asyncio
    async def test_delete_favorite_record_use(self, tmp_path):
        router, ctx = await make_router(tmp_path)
        await router.handle({"action": "add-clipboard-item", "content": "first"})
        await router.handle({"action": "add-clipboard-item", "content": "second"})
        first, second = ctx.clipboard.snapshot()[1], ctx.clipboard.snapshot()[0]

        await router.handle({"action": "toggle-favorite", "id": first.id})
        assert ctx.clipboard.get(first.id).favorite is True

        assert await router.handle({"action": "record-use", "id": first.id}) == {"success": True}
        assert ctx.clipboard.snapshot()[0].id == first.id
        assert await router.handle({"action": "record-use", "id": -1}) == {"success": False}

        await router.handle({"action": "delete-clipboard-item", "id": second.id})
        assert [i.id for i in ctx.clipboard.snapshot()] == [first.id]

    @pytest.mark.asyncio
    async def test_clear(self, tmp_path):
        router, ctx = await make_router(tmp_path)
        await router.handle({"action": "add-clipboard-item", "content": "bye"})

        assert await router.handle({"action": "clear-history"}) == {"success": True}
        assert len(ctx.clipboard) == 0

    @pytest.mark.asyncio
    async def test_search(self, tmp_path):
        router, _ = await make_router(tmp_path)
        await router.handle({"action": "add-clipboard-item", "content": "https://example.com"})
        await router.handle({"action": "add-clipboard-item", "content": "grocery list"})

        by_query = await router.handle({"action": "search-history", "query": "grocery"})
        by_type = await router.handle({"action": "search-history", "type": "url"})
        bad_type = await router.handle({"action": "search-history", "type": "video"})

        assert [i["content"] for i in by_query["history"]] == ["grocery list"]
        assert [i["content"] for i in by_type["history"]] == ["https://example.com"]
        assert bad_type["success"] is False

    @pytest.mark.asyncio
    async def test_search_filters(self, tmp_path):
        router, _ = await make_router(tmp_path)
        await router.handle(
            {"action": "add-clipboard-item", "content": "from docs", "source": "https://docs.example.com"}
        )
        await router.handle({"action": "add-clipboard-item", "content": "z" * 300, "source": "manual"})

        by_source = await router.handle({"action": "search-history", "source": "docs"})
        by_length = await router.handle({"action": "search-history", "length": "long"})
        today = await router.handle({"action": "search-history", "dateRange": "today"})
        too_old = await router.handle({"action": "search-history", "until": "2000-01-01"})

        assert [i["content"] for i in by_source["history"]] == ["from docs"]
        assert [len(i["content"]) for i in by_length["history"]] == [300]
        assert len(today["history"]) == 2
        assert too_old["history"] == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "params",
        [{"length": "huge"}, {"dateRange": "decade"}, {"since": "not a date"}, {"source": 42}],
    )
    async def test_search_invalid_filters(self, tmp_path, params):
        router, _ = await make_router(tmp_path)

        response = await router.handle({"action": "search-history", **params})

        assert response["success"] is False
        assert response["error"]

    @pytest.mark.asyncio
    async def test_add_with_malformed_source(self, tmp_path):
        router, ctx = await make_router(tmp_path)

        response = await router.handle(
            {"action": "add-clipboard-item", "content": "kept", "source": {"url": 5}}
        )

        assert response == {"success": True}
        assert ctx.clipboard.snapshot()[0].source.kind == SourceKind.UNKNOWN

    @pytest.mark.asyncio
    async def test_export_data(self, tmp_path):
        router, _ = await make_router(tmp_path)
        await router.handle({"action": "add-clipboard-item", "content": "backup me"})

        response = await router.handle({"action": "export-data"})

        assert response["success"] is True
        assert [i["content"] for i in response["data"]["history"]] == ["backup me"]
        assert "maxItems" in response["data"]["settings"]
        assert response["data"]["exportDate"]

    @pytest.mark.asyncio
    async def test_unknown_action(self, tmp_path):
        router, _ = await make_router(tmp_path)

        assert await router.handle({"action": "launch-rockets"}) == {"error": "Unknown action"}
        assert await router.handle({}) == {"error": "Unknown action"}

    @pytest.mark.asyncio
    async def test_persistence_failure_reported(self, tmp_path):
        kv = FlakyKeyValueStore()
        router, _ = await make_router(tmp_path, kv=kv)
        kv.fail_times = 10
        router._ctx.clipboard._backoff_base = 0

        response = await router.handle({"action": "add-clipboard-item", "content": "lost"})

        assert response["success"] is False
        assert "Failed to save" in response["error"]


class TestSyncActions:
    @pytest.mark.asyncio
    async def test_sync_not_configured(self, tmp_path):
        router, _ = await make_router(tmp_path)

        response = await router.handle({"action": "sync-now"})
        status = await router.handle({"action": "get-sync-status"})

        assert response["success"] is False
        assert "not configured" in response["error"]
        assert status == {"status": {"enabled": False, "configured": False}}

    @pytest.mark.asyncio
    async def test_sync_disabled(self, tmp_path, transport):
        router, _ = await make_router(tmp_path, transport=transport)

        response = await router.handle({"action": "sync-now"})

        assert response["success"] is False
        assert "not enabled" in response["error"]

    @pytest.mark.asyncio
    async def test_sync_now_and_status(self, tmp_path, transport, server):
        router, ctx = await make_router(tmp_path, transport=transport)
        await ctx.sync_engine.enable()
        await ctx.sync_engine.stop_scheduler()
        server.device_count = 2

        response = await router.handle({"action": "sync-now"})
        status = (await router.handle({"action": "get-sync-status"}))["status"]

        assert response == {"success": True}
        assert status["enabled"] is True
        assert status["configured"] is True
        assert status["device_count"] == 2

    @pytest.mark.asyncio
    async def test_sync_failure_reported(self, tmp_path, transport, server):
        router, ctx = await make_router(tmp_path, transport=transport)
        await ctx.sync_engine.enable()
        await ctx.sync_engine.stop_scheduler()
        server.fail_status["upload"] = 401

        response = await router.handle({"action": "sync-now"})

        assert response["success"] is False
        assert "401" in response["error"]
