"""User settings persisted as a flat mapping."""

import asyncio
import logging
from typing import Any, Dict

from clipsync.protocols import KeyValueStore

from .keys import SETTINGS_KEY

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict[str, Any] = {
    "maxItems": 100,
    "autoCategorize": True,
    "showPreviews": True,
    "soundNotifications": False,
    "theme": "auto",
}


class SettingsStore:
    """Settings map; written with defaults the first time it is loaded."""

    def __init__(self, kv: KeyValueStore):
        self._kv = kv
        self._settings: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def load(self) -> Dict[str, Any]:
        stored = await self._kv.get([SETTINGS_KEY])
        settings = stored.get(SETTINGS_KEY)
        async with self._lock:
            if settings is None:
                self._settings = dict(DEFAULT_SETTINGS)
                await self._kv.set({SETTINGS_KEY: self._settings})
                logger.info("Initialized default settings")
            else:
                self._settings = dict(settings)
        return self.get()

    def get(self) -> Dict[str, Any]:
        return dict(self._settings)

    async def update(self, **values: Any) -> Dict[str, Any]:
        async with self._lock:
            self._settings.update(values)
            await self._kv.set({SETTINGS_KEY: self._settings})
        return self.get()

    async def replace(self, settings: Dict[str, Any]) -> None:
        async with self._lock:
            self._settings = dict(settings)
            await self._kv.set({SETTINGS_KEY: self._settings})
