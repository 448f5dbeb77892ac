"""clipsync storage layer.

Local-first state behind a narrow async key-value interface: clipboard
history, templates and settings.
"""

from .clipboard_store import (
    DATE_PERIODS,
    LENGTH_BUCKETS,
    ClipboardStore,
    parse_date_bound,
    period_range,
)
from .keys import (
    DEVICE_ID_KEY,
    ENCRYPTION_KEY,
    HISTORY_KEY,
    LAST_SYNC_KEY,
    SETTINGS_KEY,
    SYNC_ENABLED_KEY,
    TEMPLATES_KEY,
)
from .kv import JsonFileKeyValueStore, MemoryKeyValueStore
from .settings import DEFAULT_SETTINGS, SettingsStore
from .templates import TemplateStore, extract_variables, fill_template

__all__ = [
    "ClipboardStore",
    "LENGTH_BUCKETS",
    "DATE_PERIODS",
    "period_range",
    "parse_date_bound",
    "TemplateStore",
    "SettingsStore",
    "MemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "DEFAULT_SETTINGS",
    "extract_variables",
    "fill_template",
    "HISTORY_KEY",
    "TEMPLATES_KEY",
    "SETTINGS_KEY",
    "DEVICE_ID_KEY",
    "ENCRYPTION_KEY",
    "SYNC_ENABLED_KEY",
    "LAST_SYNC_KEY",
]
