"""Snapshot merge for clipsync.

Deterministic two-way merge with last-writer-wins per record. Pure functions:
no I/O and no hidden state.

Tie-break policy: when both sides carry the same id with exactly equal
timestamps, the local record is kept.
"""

import logging
from typing import Any, Dict, List, Optional

from clipsync.types import ClipboardItem, SyncSnapshot, Template, timestamp_key

logger = logging.getLogger(__name__)

# Settings that stay device-specific when the local side has a value
LOCAL_PREFERRED_SETTINGS = ("theme",)


def merge_items(local: List[ClipboardItem], remote: List[ClipboardItem]) -> List[ClipboardItem]:
    """Union by id; the later ``timestamp`` wins; newest first."""
    merged: Dict[int, ClipboardItem] = {}
    for item in [*local, *remote]:
        existing = merged.get(item.id)
        if existing is None or timestamp_key(item.timestamp) > timestamp_key(existing.timestamp):
            merged[item.id] = item
    # sorted() is stable, so equal timestamps keep local-first order
    return sorted(merged.values(), key=lambda item: timestamp_key(item.timestamp), reverse=True)


def merge_templates(local: List[Template], remote: List[Template]) -> List[Template]:
    """Union by id; the later ``modified`` (or ``created``) wins."""
    merged: Dict[int, Template] = {}
    for template in [*local, *remote]:
        existing = merged.get(template.id)
        if existing is None or timestamp_key(template.revision_time) > timestamp_key(
            existing.revision_time
        ):
            merged[template.id] = template
    return list(merged.values())


def merge_settings(local: Dict[str, Any], remote: Dict[str, Any]) -> Dict[str, Any]:
    """Remote values win per key, except device-specific ones set locally."""
    merged = {**local, **remote}
    for key in LOCAL_PREFERRED_SETTINGS:
        if local.get(key):
            merged[key] = local[key]
    return merged


def merge_snapshots(
    local: SyncSnapshot, remote: SyncSnapshot, device_id: Optional[str] = None
) -> SyncSnapshot:
    """Merge the local snapshot with one downloaded from the cloud.

    Args:
        local: Snapshot built from this device's stores.
        remote: Decrypted snapshot from the sync service.
        device_id: Device recorded on the result (defaults to the local one).

    Returns:
        A new snapshot; neither input is modified.
    """
    items = merge_items(local.clipboard_history, remote.clipboard_history)
    templates = merge_templates(local.templates, remote.templates)
    settings = merge_settings(local.settings, remote.settings)

    logger.debug(
        f"Merged snapshots: {len(local.clipboard_history)} local + "
        f"{len(remote.clipboard_history)} remote -> {len(items)} items"
    )

    return SyncSnapshot(
        clipboard_history=items,
        templates=templates,
        settings=settings,
        last_modified=max(local.last_modified, remote.last_modified),
        device_id=device_id or local.device_id,
    )
