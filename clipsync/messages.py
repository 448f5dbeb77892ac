"""Message contract between capture/UI collaborators and the clipsync core.

Collaborators send ``{"action": ..., **params}`` dicts and get a dict back.
Store failures are reported in the response as ``{"success": False, "error"}``.
"""

import logging
from typing import Any, Awaitable, Callable, Dict

from clipsync.context import ClipSyncContext
from clipsync.protocols import ClipSyncError
from clipsync.storage import parse_date_bound, period_range
from clipsync.types import ContentType

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


class MessageRouter:
    """Dispatches action messages to the stores and the sync engine."""

    def __init__(self, context: ClipSyncContext):
        self._ctx = context
        self._handlers: Dict[str, Handler] = {
            "add-clipboard-item": self._add_item,
            "get-clipboard-history": self._get_history,
            "delete-clipboard-item": self._delete_item,
            "toggle-favorite": self._toggle_favorite,
            "clear-history": self._clear_history,
            "record-use": self._record_use,
            "search-history": self._search_history,
            "export-data": self._export_data,
            "sync-now": self._sync_now,
            "get-sync-status": self._sync_status,
        }

    async def handle(self, message: Dict[str, Any]) -> Dict[str, Any]:
        handler = self._handlers.get(message.get("action"))
        if handler is None:
            return {"error": "Unknown action"}
        try:
            return await handler(message)
        except ClipSyncError as e:
            logger.error(f"{message.get('action')} failed: {e}")
            return {"success": False, "error": str(e)}

    async def _add_item(self, message: Dict[str, Any]) -> Dict[str, Any]:
        await self._ctx.clipboard.add(message.get("content"), message.get("source"))
        return {"success": True}

    async def _get_history(self, message: Dict[str, Any]) -> Dict[str, Any]:
        return {"history": [item.to_dict() for item in self._ctx.clipboard.snapshot()]}

    async def _delete_item(self, message: Dict[str, Any]) -> Dict[str, Any]:
        await self._ctx.clipboard.delete(message.get("id"))
        return {"success": True}

    async def _toggle_favorite(self, message: Dict[str, Any]) -> Dict[str, Any]:
        await self._ctx.clipboard.toggle_favorite(message.get("id"))
        return {"success": True}

    async def _clear_history(self, message: Dict[str, Any]) -> Dict[str, Any]:
        await self._ctx.clipboard.clear()
        return {"success": True}

    async def _record_use(self, message: Dict[str, Any]) -> Dict[str, Any]:
        found = await self._ctx.clipboard.record_use(message.get("id"))
        return {"success": found}

    async def _search_history(self, message: Dict[str, Any]) -> Dict[str, Any]:
        type_value = message.get("type")
        try:
            content_type = ContentType(type_value) if type_value else None
        except ValueError:
            return {"success": False, "error": f"Unknown content type {type_value!r}"}
        source = message.get("source")
        if source is not None and not isinstance(source, str):
            return {"success": False, "error": "source filter must be a string"}

        since = until = None
        if message.get("dateRange"):
            since, until = period_range(message["dateRange"])
        if message.get("since"):
            since = parse_date_bound(message["since"])
        if message.get("until"):
            until = parse_date_bound(message["until"], end_of_day=True)

        items = self._ctx.clipboard.search(
            message.get("query") or "",
            content_type,
            source=source,
            since=since,
            until=until,
            length=message.get("length"),
        )
        return {"history": [item.to_dict() for item in items]}

    async def _export_data(self, message: Dict[str, Any]) -> Dict[str, Any]:
        return {"success": True, "data": self._ctx.export_data()}

    async def _sync_now(self, message: Dict[str, Any]) -> Dict[str, Any]:
        result = await self._ctx.require_sync().sync_now()
        response: Dict[str, Any] = {"success": result.success}
        if not result.success:
            response["error"] = "; ".join(result.errors)
        return response

    async def _sync_status(self, message: Dict[str, Any]) -> Dict[str, Any]:
        if self._ctx.sync_engine is None:
            return {"status": {"enabled": False, "configured": False}}
        status = await self._ctx.sync_engine.status()
        status["configured"] = True
        return {"status": status}
