"""Sync engine for clipsync.

SyncEngine runs the encrypted upload/download/merge cycle, guarantees at most
one cycle in flight per process, and owns the periodic scheduler. It receives
the stores, the key manager and the transport from the application context.

Cycle:
    1. Build the local snapshot
    2. Encrypt and upload it (local state reaches the cloud even if later steps fail)
    3. Download the remote snapshot; stop here if there is none
    4. Decrypt it; an authentication failure aborts before anything is merged
    5. Merge local and remote
    6. Replace local history, templates and settings with the merge result
    7. Encrypt and upload the merge result
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from clipsync.crypto import KeyManager
from clipsync.merge import merge_snapshots
from clipsync.protocols import (
    ClipSyncError,
    KeyInitializationError,
    KeyValueStore,
    SyncDisabledError,
    SyncInProgressError,
    TransportError,
)
from clipsync.storage import ClipboardStore, SettingsStore, TemplateStore
from clipsync.storage.keys import LAST_SYNC_KEY, SYNC_ENABLED_KEY
from clipsync.transport import SyncTransport
from clipsync.types import SyncResult, SyncSnapshot, SyncState, now_ms

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL = 5 * 60  # seconds


class SyncEngine:
    """Encrypted snapshot sync with a single in-flight cycle.

    Args:
        kv: Key-value store for the enabled flag and last sync time.
        clipboard: Clipboard history store.
        templates: Template store.
        settings: Settings store.
        key_manager: Encrypts and decrypts snapshots.
        transport: Sync service client.
        device_id: This device's identifier.
        interval: Seconds between periodic syncs.
        on_state_change: Optional callback invoked with every new state.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        clipboard: ClipboardStore,
        templates: TemplateStore,
        settings: SettingsStore,
        key_manager: KeyManager,
        transport: SyncTransport,
        device_id: str,
        interval: float = DEFAULT_SYNC_INTERVAL,
        on_state_change: Optional[Callable[[SyncState], None]] = None,
    ):
        self._kv = kv
        self._clipboard = clipboard
        self._templates = templates
        self._settings = settings
        self._key_manager = key_manager
        self._transport = transport
        self.device_id = device_id
        self.interval = interval
        self._on_state_change = on_state_change

        self._state = SyncState.DISABLED
        self._in_flight = False
        self._scheduler: Optional[asyncio.Task] = None
        self._cycle_owner: Optional[asyncio.Task] = None
        self.last_sync_time: Optional[int] = None
        self.last_error: Optional[str] = None

    # === State ===

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def enabled(self) -> bool:
        return self._state != SyncState.DISABLED

    @property
    def in_progress(self) -> bool:
        return self._in_flight

    def _set_state(self, state: SyncState) -> None:
        if state == self._state:
            return
        logger.debug(f"Sync state {self._state.value} -> {state.value}")
        self._state = state
        if self._on_state_change:
            try:
                self._on_state_change(state)
            except Exception:
                logger.exception("Sync state listener failed")

    async def load(self) -> None:
        """Restore the enabled flag and last sync time; resume the scheduler if enabled."""
        stored = await self._kv.get([SYNC_ENABLED_KEY, LAST_SYNC_KEY])
        self.last_sync_time = stored.get(LAST_SYNC_KEY)
        if not stored.get(SYNC_ENABLED_KEY):
            return
        try:
            await self._key_manager.ensure_key()
        except KeyInitializationError as e:
            self.last_error = str(e)
            logger.error(f"Cloud sync stays disabled: {e}")
            return
        self._set_state(SyncState.IDLE)
        self.start_scheduler()

    # === Enable / Disable ===

    async def enable(self) -> SyncResult:
        """Turn on cloud sync, run the first sync and start the scheduler.

        Raises:
            KeyInitializationError: If no encryption key is available; sync stays disabled
        """
        try:
            await self._key_manager.ensure_key()
        except KeyInitializationError as e:
            self.last_error = str(e)
            self._set_state(SyncState.DISABLED)
            raise

        await self._kv.set({SYNC_ENABLED_KEY: True})
        if self._state == SyncState.DISABLED:
            self._set_state(SyncState.IDLE)
        logger.info("Cloud sync enabled")

        result = await self.sync_now()
        self.start_scheduler()
        return result

    async def disable(self, clear_remote: bool = False) -> None:
        """Turn off cloud sync and stop the scheduler.

        Args:
            clear_remote: Also delete the remote data (requires user confirmation upstream)

        Raises:
            TransportError: If remote deletion was requested and failed
        """
        await self.stop_scheduler()
        self._set_state(SyncState.DISABLED)
        await self._kv.set({SYNC_ENABLED_KEY: False})
        logger.info("Cloud sync disabled")

        if clear_remote:
            await self._transport.clear()
            logger.info("Cleared remote sync data")

    # === Sync ===

    async def sync_now(self) -> SyncResult:
        """Run one sync cycle right away.

        Raises:
            SyncDisabledError: If sync is not enabled
            SyncInProgressError: If a cycle is already running
        """
        if not self.enabled:
            raise SyncDisabledError("Cloud sync is not enabled")
        if self._in_flight:
            raise SyncInProgressError("Sync already in progress")
        return await self._run_cycle()

    async def _run_cycle(self) -> SyncResult:
        self._in_flight = True
        self._set_state(SyncState.SYNCING)
        result = SyncResult()

        try:
            await self._sync_once(result)
        except ClipSyncError as e:
            self._record_failure(result, e)
        except Exception as e:
            logger.error(f"Unexpected sync failure: {e}", exc_info=True)
            self._record_failure(result, e)
        else:
            self.last_error = None
            logger.info(
                f"Sync complete: uploaded={result.uploaded}, merged={result.merged}, "
                f"items={result.item_count}"
            )
        finally:
            self._in_flight = False
            if self._state != SyncState.DISABLED:
                self._set_state(SyncState.IDLE)

        return result

    def _record_failure(self, result: SyncResult, error: Exception) -> None:
        self._set_state(SyncState.ERROR)
        self.last_error = str(error)
        result.error = error
        result.errors.append(f"{type(error).__name__}: {error}")
        logger.warning(f"Sync failed: {error}")

    async def _sync_once(self, result: SyncResult) -> None:
        local = self.build_snapshot()

        await self._transport.upload(await self._key_manager.encrypt(local.to_dict()))
        result.uploaded += 1

        remote_payload = await self._transport.download()
        if remote_payload is not None:
            result.downloaded = True
            remote_data = await self._key_manager.decrypt(remote_payload)
            try:
                remote = SyncSnapshot.from_dict(remote_data)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                raise ClipSyncError(f"Remote snapshot is malformed: {e}") from e

            merged = merge_snapshots(local, remote, device_id=self.device_id)
            result.merged = True

            await self._clipboard.replace(merged.clipboard_history)
            await self._templates.replace(merged.templates)
            await self._settings.replace(merged.settings)

            await self._transport.upload(await self._key_manager.encrypt(merged.to_dict()))
            result.uploaded += 1

        result.item_count = len(self._clipboard)
        self.last_sync_time = now_ms()
        await self._kv.set({LAST_SYNC_KEY: self.last_sync_time})

    def build_snapshot(self) -> SyncSnapshot:
        """Snapshot of the local stores as they are right now."""
        return SyncSnapshot(
            clipboard_history=self._clipboard.snapshot(),
            templates=self._templates.list_templates(),
            settings=self._settings.get(),
            last_modified=now_ms(),
            device_id=self.device_id,
        )

    # === Scheduler ===

    def start_scheduler(self) -> None:
        """Start periodic syncing; a no-op if already running."""
        if self._scheduler is not None and not self._scheduler.done():
            return
        self._scheduler = asyncio.create_task(self._periodic_loop(), name="clipsync-scheduler")

    async def stop_scheduler(self) -> None:
        """Stop periodic syncing.

        A scheduled cycle that has already started runs to completion first.
        """
        task, self._scheduler = self._scheduler, None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        if self._cycle_owner is not task:
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _periodic_loop(self) -> None:
        # Exits once stop_scheduler() unregisters it. The next tick is only
        # armed after the previous cycle has finished.
        me = asyncio.current_task()
        while self.enabled and self._scheduler is me:
            await asyncio.sleep(self.interval)
            if not self.enabled or self._scheduler is not me:
                break
            if self._in_flight:
                logger.debug("Periodic sync skipped: a sync is already running")
                continue
            self._cycle_owner = me
            try:
                await self._run_cycle()
            except Exception:
                logger.exception("Periodic sync crashed")
            finally:
                self._cycle_owner = None

    # === Status ===

    async def status(self) -> Dict[str, Any]:
        """Current sync status, including the remote device count."""
        device_count = 1
        if self.enabled:
            try:
                device_count = await self._transport.device_count()
            except TransportError as e:
                logger.debug(f"Failed to get device count: {e}")

        return {
            "enabled": self.enabled,
            "state": self._state.value,
            "in_progress": self._in_flight,
            "last_sync": self.last_sync_time,
            "last_error": self.last_error,
            "device_id": self.device_id,
            "device_count": device_count,
        }
