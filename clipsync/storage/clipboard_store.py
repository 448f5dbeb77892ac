"""Clipboard history store.

ClipboardStore owns the ordered (most recent first) history, enforces the
capacity ceiling and the capture debounce, and mirrors every mutation to the
key-value store with retry, backoff and quota recovery.
"""

import asyncio
import calendar
import logging
import math
from datetime import datetime, timedelta
from typing import Any, List, Mapping, Optional, Tuple, Union

from clipsync.classifier import classify, generate_preview, validate_content
from clipsync.protocols import KeyValueStore, PersistenceError, QuotaExceededError, ValidationError
from clipsync.types import ClipboardItem, ContentType, ItemSource, now_ms, parse_datetime, utc_now

from .keys import HISTORY_KEY

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITEMS = 100
MAX_WRITE_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 0.1
QUOTA_EVICTION_RATIO = 0.3

# Content length filter: short < 50 <= medium <= 200 < long
SHORT_MAX_LENGTH = 50
LONG_MIN_LENGTH = 200
LENGTH_BUCKETS = ("short", "medium", "long")
DATE_PERIODS = ("today", "yesterday", "week", "month")

SourceLike = Union[None, str, Mapping[str, Any], ItemSource]


def _length_matches(size: int, bucket: str) -> bool:
    if bucket == "short":
        return size < SHORT_MAX_LENGTH
    if bucket == "medium":
        return SHORT_MAX_LENGTH <= size <= LONG_MIN_LENGTH
    return size > LONG_MIN_LENGTH


def period_range(period: str, now: Optional[datetime] = None) -> Tuple[datetime, Optional[datetime]]:
    """``(since, until)`` bounds for a named period in local time.

    ``until`` is only set for ``yesterday``; the other periods run up to now.

    Raises:
        ValidationError: If ``period`` is not a known period
    """
    now = now or datetime.now().astimezone()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "today":
        return today, None
    if period == "yesterday":
        return today - timedelta(days=1), today - timedelta(microseconds=1)
    if period == "week":
        return today - timedelta(days=7), None
    if period == "month":
        year, month = (today.year, today.month - 1) if today.month > 1 else (today.year - 1, 12)
        day = min(today.day, calendar.monthrange(year, month)[1])
        return today.replace(year=year, month=month, day=day), None
    raise ValidationError(f"Unknown date period {period!r}")


def parse_date_bound(value: str, end_of_day: bool = False) -> datetime:
    """Parse a ``since``/``until`` bound.

    A bare date (``2024-05-01``) means the start of that day, or its last
    second when ``end_of_day`` is set.

    Raises:
        ValidationError: If the value is not an ISO date or datetime
    """
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValidationError(f"Invalid date {value!r}")
    if end_of_day and "T" not in value and " " not in value.strip():
        parsed = parsed.replace(hour=23, minute=59, second=59)
    return parsed


class ClipboardStore:
    """Single source of truth for the clipboard history.

    Args:
        kv: Backend the history is persisted to.
        max_items: Capacity ceiling (tier limit injected by the caller).
        backoff_base: Seconds for the first retry delay; doubles per attempt.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        max_items: int = DEFAULT_MAX_ITEMS,
        backoff_base: float = BACKOFF_BASE_SECONDS,
    ):
        if max_items < 1:
            raise ValueError("max_items must be at least 1")
        self._kv = kv
        self._max_items = max_items
        self._backoff_base = backoff_base
        self._history: List[ClipboardItem] = []
        self._last_content: Optional[str] = None
        self._last_id = 0
        self._lock = asyncio.Lock()

    @property
    def max_items(self) -> int:
        return self._max_items

    def __len__(self) -> int:
        return len(self._history)

    # === Loading ===

    async def load(self) -> int:
        """Load persisted history, skipping malformed entries.

        Returns:
            Number of items loaded
        """
        stored = await self._kv.get([HISTORY_KEY])
        raw_items = stored.get(HISTORY_KEY) or []

        items = []
        for raw in raw_items:
            try:
                items.append(ClipboardItem.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed clipboard item: {e}")

        async with self._lock:
            self._history = items[: self._max_items]
            if items:
                self._last_id = max(item.id for item in items)
                self._last_content = self._history[0].content

        logger.info(f"Loaded clipboard history: {len(self._history)} items")
        return len(self._history)

    # === Reads ===

    def snapshot(self) -> List[ClipboardItem]:
        """Copy of the ordered history."""
        return [self._copy(item) for item in self._history]

    def get(self, item_id: int) -> Optional[ClipboardItem]:
        for item in self._history:
            if item.id == item_id:
                return self._copy(item)
        return None

    def search(
        self,
        query: str = "",
        content_type: Optional[ContentType] = None,
        *,
        source: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        length: Optional[str] = None,
    ) -> List[ClipboardItem]:
        """Filter the history.

        Args:
            query: Substring of the content, type or a tag (case-insensitive).
            content_type: Only items of this type.
            source: Substring of the capture hostname (case-insensitive).
            since: Only items captured at or after this time.
            until: Only items captured at or before this time.
            length: One of ``short``, ``medium`` or ``long``.

        Raises:
            ValidationError: If ``length`` is not a known bucket
        """
        if length is not None and length not in LENGTH_BUCKETS:
            raise ValidationError(f"Unknown length filter {length!r}")

        needle = query.lower()
        host_needle = (source or "").lower()
        results = []
        for item in self._history:
            if content_type is not None and item.type != content_type:
                continue
            if needle and not (
                needle in item.content.lower()
                or needle in item.type.value
                or any(needle in tag.lower() for tag in item.tags)
            ):
                continue
            if host_needle and host_needle not in item.source.hostname.lower():
                continue
            if since is not None or until is not None:
                captured = parse_datetime(item.timestamp)
                if captured is None:
                    continue
                if since is not None and captured < since:
                    continue
                if until is not None and captured > until:
                    continue
            if length is not None and not _length_matches(len(item.content), length):
                continue
            results.append(self._copy(item))
        return results

    # === Mutations ===

    async def add(self, content: Any, source: SourceLike = None) -> Optional[ClipboardItem]:
        """Capture ``content``.

        Empty content and content identical to the previous capture are
        ignored. Only the immediately previous capture is compared, so
        re-copying an older entry creates a new item. The previous capture
        outlives ``clear()``. A malformed source is recorded as unknown.

        Returns:
            The stored item, or None if the capture was dropped

        Raises:
            PersistenceError: If the history could not be written
        """
        try:
            text = validate_content(content)
        except ValidationError as e:
            logger.debug(f"Dropping capture: {e}")
            return None

        try:
            item_source = ItemSource.normalize(source)
        except TypeError as e:
            logger.warning(f"Ignoring malformed capture source: {e}")
            item_source = ItemSource()

        async with self._lock:
            if text == self._last_content:
                return None

            content_type, tags = classify(text)
            item = ClipboardItem(
                id=self._next_id(),
                content=text,
                type=content_type,
                source=item_source,
                timestamp=utc_now(),
                tags=tags,
                preview=generate_preview(text),
            )

            self._history.insert(0, item)
            self._evict_over_capacity()
            self._last_content = text
            await self._persist_locked()

        logger.debug(f"Added clipboard item: {item.type.value} {item.preview!r}")
        return self._copy(item)

    async def delete(self, item_id: int) -> bool:
        async with self._lock:
            remaining = [item for item in self._history if item.id != item_id]
            if len(remaining) == len(self._history):
                return False
            self._history = remaining
            await self._persist_locked()
        return True

    async def toggle_favorite(self, item_id: int) -> bool:
        async with self._lock:
            item = self._find(item_id)
            if item is None:
                return False
            item.favorite = not item.favorite
            await self._persist_locked()
        return True

    async def record_use(self, item_id: int) -> bool:
        """Mark an item as copied back: bump usage and move it to the front."""
        async with self._lock:
            item = self._find(item_id)
            if item is None:
                return False
            item.usage_count = (item.usage_count or 0) + 1
            item.last_used = utc_now()
            self._history.remove(item)
            self._history.insert(0, item)
            await self._persist_locked()
        return True

    async def clear(self) -> None:
        async with self._lock:
            self._history = []
            await self._persist_locked()

    async def replace(self, items: List[ClipboardItem]) -> None:
        """Swap in a pre-built history (merge result); capacity still applies."""
        async with self._lock:
            self._history = [self._copy(item) for item in items]
            self._evict_over_capacity()
            if self._history:
                self._last_id = max(self._last_id, max(item.id for item in self._history))
            await self._persist_locked()

    async def set_max_items(self, max_items: int) -> None:
        """Apply a new capacity ceiling, trimming and persisting if needed."""
        if max_items < 1:
            raise ValueError("max_items must be at least 1")
        async with self._lock:
            self._max_items = max_items
            if self._evict_over_capacity():
                await self._persist_locked()

    async def persist(self) -> None:
        """Write the full history to the key-value store.

        Raises:
            PersistenceError: If every attempt failed; ``data_loss`` is set
                when items were evicted and the write still failed
        """
        async with self._lock:
            await self._persist_locked()

    # === Internals ===

    async def _persist_locked(self) -> None:
        last_error: Optional[PersistenceError] = None

        # Quota errors go through the plain retries too; eviction is the last resort.
        for attempt in range(MAX_WRITE_ATTEMPTS):
            try:
                await self._write()
                return
            except PersistenceError as e:
                last_error = e
                logger.warning(
                    f"Save attempt {attempt + 1}/{MAX_WRITE_ATTEMPTS} failed: {e}"
                )
                if attempt + 1 < MAX_WRITE_ATTEMPTS:
                    await asyncio.sleep(self._backoff_base * (2**attempt))

        if not isinstance(last_error, QuotaExceededError):
            raise PersistenceError(
                f"Failed to save clipboard history after {MAX_WRITE_ATTEMPTS} attempts: {last_error}"
            ) from last_error

        evicted = self._evict_for_quota()
        logger.warning(f"Storage still full after {MAX_WRITE_ATTEMPTS} attempts, removed {evicted} oldest items")
        try:
            await self._write()
        except PersistenceError as e:
            logger.error(f"Unable to save clipboard data after quota recovery: {e}")
            raise PersistenceError(
                f"Failed to save clipboard history after evicting {evicted} items: {e}",
                data_loss=True,
                evicted=evicted,
            ) from e

    async def _write(self) -> None:
        await self._kv.set({HISTORY_KEY: [item.to_dict() for item in self._history]})

    def _evict_over_capacity(self) -> bool:
        if len(self._history) <= self._max_items:
            return False
        dropped = len(self._history) - self._max_items
        self._history = self._history[: self._max_items]
        logger.debug(f"Evicted {dropped} items over capacity")
        return True

    def _evict_for_quota(self) -> int:
        count = math.floor(len(self._history) * QUOTA_EVICTION_RATIO)
        if count:
            self._history = self._history[:-count]
        return count

    def _next_id(self) -> int:
        candidate = now_ms()
        if candidate <= self._last_id:
            candidate = self._last_id + 1
        self._last_id = candidate
        return candidate

    def _find(self, item_id: int) -> Optional[ClipboardItem]:
        for item in self._history:
            if item.id == item_id:
                return item
        return None

    @staticmethod
    def _copy(item: ClipboardItem) -> ClipboardItem:
        return ClipboardItem.from_dict(item.to_dict())
