"""
clipsync Protocol Definitions
=============================

Interface contracts and the error taxonomy shared by every clipsync component.

Components:
- Classifier:      pure text -> (type, tags)
- Clipboard Store: ordered, bounded history persisted through a KeyValueStore
- Key Manager:     symmetric key lifecycle, encrypt/decrypt of snapshots
- Sync Transport:  authenticated HTTP upload/download/clear/devices
- Sync Engine:     one sync at a time, periodic scheduler

Error handling philosophy:
- Empty or malformed captures raise ValidationError; the store drops them
- Storage failures raise PersistenceError (QuotaExceededError when out of space)
- Remote failures raise TransportError carrying the HTTP status
- Authentication failures on decrypt raise DecryptionError and are never retried
- Sync errors abort one cycle only; they never terminate the host process
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional, Protocol, runtime_checkable

# =============================================================================
# ERRORS
# =============================================================================


class ClipSyncError(Exception):
    """Base exception for all clipsync errors."""

    pass


class ValidationError(ClipSyncError, ValueError):
    """Captured content is empty or malformed."""

    pass


class PersistenceError(ClipSyncError):
    """Writing to the key-value store failed.

    ``data_loss`` is set when items were evicted to recover and the write
    still failed, so the caller knows local history may be gone.
    """

    def __init__(self, message: str, *, data_loss: bool = False, evicted: int = 0):
        super().__init__(message)
        self.data_loss = data_loss
        self.evicted = evicted


class QuotaExceededError(PersistenceError):
    """The key-value store has no room for the write."""

    pass


class DecryptionError(ClipSyncError):
    """Ciphertext failed authentication or could not be decoded."""

    pass


class TransportError(ClipSyncError):
    """The remote sync service answered with a non-2xx status or was unreachable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class KeyInitializationError(ClipSyncError):
    """The encryption key could not be generated or imported."""

    pass


class SyncInProgressError(ClipSyncError):
    """A sync was requested while another one is running."""

    pass


class SyncDisabledError(ClipSyncError):
    """A sync was requested while cloud sync is turned off."""

    pass


class LimitExceededError(ClipSyncError):
    """A tier ceiling (e.g. number of templates) has been reached."""

    pass


# =============================================================================
# STORAGE PROTOCOL
# =============================================================================


@runtime_checkable
class KeyValueStore(Protocol):
    """Narrow async key-value interface the stores and the engine persist through.

    Writes to distinct keys are independent. Implementations raise
    PersistenceError (or QuotaExceededError) when a write cannot be stored.
    """

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Return the stored values for the keys that exist."""
        ...

    async def set(self, items: Dict[str, Any]) -> None:
        """Store every key in ``items``."""
        ...
