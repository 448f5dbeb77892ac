"""Application context.

Everything clipsync needs is built once at process start by
``create_context`` and passed explicitly to whoever needs it; there is no
module-level state.
"""

import logging
import secrets
import string
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from clipsync.config import Settings, load_credentials
from clipsync.crypto import KeyManager
from clipsync.protocols import KeyValueStore, SyncDisabledError
from clipsync.storage import (
    ClipboardStore,
    JsonFileKeyValueStore,
    SettingsStore,
    TemplateStore,
)
from clipsync.storage.keys import DEVICE_ID_KEY
from clipsync.sync_engine import SyncEngine
from clipsync.transport import SyncTransport
from clipsync.types import utc_now

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_device_id() -> str:
    """Random device identifier, e.g. ``device_lq2k3j9a_8f3kd02mz1x``."""
    stamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(11))
    return f"device_{stamp}_{suffix}"


async def ensure_device_id(kv: KeyValueStore) -> str:
    """Return the persisted device id, creating it on first run."""
    stored = await kv.get([DEVICE_ID_KEY])
    device_id = stored.get(DEVICE_ID_KEY)
    if not device_id:
        device_id = generate_device_id()
        await kv.set({DEVICE_ID_KEY: device_id})
        logger.info(f"Registered new device {device_id}")
    return device_id


@dataclass
class ClipSyncContext:
    """Handles to every clipsync component for one process."""

    settings: Settings
    kv: KeyValueStore
    device_id: str
    clipboard: ClipboardStore
    templates: TemplateStore
    user_settings: SettingsStore
    key_manager: KeyManager
    transport: Optional[SyncTransport] = None
    sync_engine: Optional[SyncEngine] = None

    def require_sync(self) -> SyncEngine:
        """The sync engine, or SyncDisabledError when no backend is configured."""
        if self.sync_engine is None:
            raise SyncDisabledError(
                "Cloud sync is not configured (set CLIPSYNC_BACKEND_URL and CLIPSYNC_AUTH_TOKEN)"
            )
        return self.sync_engine

    async def apply_tier(self, tier: str) -> None:
        """Apply the ceilings of ``tier`` (called by the entitlement collaborator)."""
        self.settings.tier = tier
        await self.clipboard.set_max_items(self.settings.limit("clipboardHistory"))
        self.templates.max_templates = self.settings.limit("templates")

    def export_data(self) -> Dict[str, Any]:
        """History and settings as one JSON-ready document."""
        return {
            "history": [item.to_dict() for item in self.clipboard.snapshot()],
            "settings": self.user_settings.get(),
            "exportDate": utc_now(),
        }

    async def close(self) -> None:
        if self.sync_engine is not None:
            await self.sync_engine.stop_scheduler()
        if self.transport is not None:
            await self.transport.aclose()


async def create_context(
    settings: Settings,
    kv: Optional[KeyValueStore] = None,
    transport: Optional[SyncTransport] = None,
    start_sync: bool = True,
) -> ClipSyncContext:
    """Build and load every component.

    Args:
        settings: Application settings.
        kv: Key-value backend (defaults to the JSON state file in ``data_dir``).
        transport: Sync transport (defaults to one built from the credentials).
        start_sync: Resume the periodic scheduler if sync was left enabled.
    """
    kv = kv or JsonFileKeyValueStore(settings.state_path, quota_bytes=settings.storage_quota_bytes)
    device_id = await ensure_device_id(kv)

    clipboard = ClipboardStore(kv, max_items=settings.limit("clipboardHistory"))
    templates = TemplateStore(kv, max_templates=settings.limit("templates"))
    user_settings = SettingsStore(kv)
    await clipboard.load()
    await templates.load()
    await user_settings.load()

    key_manager = KeyManager(kv)

    if transport is None:
        creds = load_credentials(settings)
        if creds:
            transport = SyncTransport(
                creds["backend_url"],
                creds["auth_token"],
                device_id,
                timeout=settings.request_timeout,
            )
        else:
            logger.debug("No sync credentials configured, cloud sync unavailable")

    engine = None
    if transport is not None:
        engine = SyncEngine(
            kv,
            clipboard,
            templates,
            user_settings,
            key_manager,
            transport,
            device_id,
            interval=settings.sync_interval,
        )
        if start_sync:
            await engine.load()

    return ClipSyncContext(
        settings=settings,
        kv=kv,
        device_id=device_id,
        clipboard=clipboard,
        templates=templates,
        user_settings=user_settings,
        key_manager=key_manager,
        transport=transport,
        sync_engine=engine,
    )
