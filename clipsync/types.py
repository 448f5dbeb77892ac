"""
Shared types for clipsync.

Every record that crosses a component boundary lives here: clipboard items,
their capture source, templates, the sync snapshot and the encrypted payload.
The ``to_dict``/``from_dict`` pairs define the persisted and wire format, which
uses the camelCase keys the browser clients already store.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union
from urllib.parse import urlparse

# === Shared Utility Functions ===

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return datetime.now(timezone.utc).isoformat()


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse an ISO datetime string, returning None when it cannot be parsed.

    Naive values are assumed to be UTC so they compare with aware ones.
    """
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except (TypeError, ValueError, AttributeError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def timestamp_key(s: Optional[str]) -> datetime:
    """Sort key for ISO timestamps; unparseable values sort as the epoch."""
    return parse_datetime(s) or _EPOCH


def extract_hostname(url: str) -> str:
    """Hostname of ``url``, or the input itself when it has none."""
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return url
    return hostname or url


# === Enums ===


class ContentType(str, Enum):
    """Category assigned to a capture by the classifier."""

    TEXT = "text"
    URL = "url"
    EMAIL = "email"
    CODE = "code"
    PHONE = "phone"


class SourceKind(str, Enum):
    """Where a capture came from."""

    UNKNOWN = "unknown"
    WEB = "web"
    MANUAL = "manual"
    TEMPLATE = "template"


VALID_SOURCE_KINDS = frozenset(k.value for k in SourceKind)


class SyncState(str, Enum):
    """Sync engine lifecycle states."""

    DISABLED = "disabled"
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


# === Records ===


@dataclass
class ItemSource:
    """Capture source, resolved once when the item is created."""

    kind: SourceKind = SourceKind.UNKNOWN
    url: str = ""
    hostname: str = ""
    title: str = ""
    timestamp: str = field(default_factory=utc_now)

    @classmethod
    def normalize(cls, raw: Union[None, str, Mapping[str, Any], "ItemSource"]) -> "ItemSource":
        """Build a source from the loose shapes capture collaborators send.

        Accepts an existing ItemSource, a mapping with ``type``/``url``/
        ``hostname``/``title``/``timestamp``, a URL string, a kind name
        (``"manual"``, ``"template"``), or nothing at all.

        Raises:
            TypeError: If a mapping carries a non-string field
        """
        if isinstance(raw, ItemSource):
            return raw

        if isinstance(raw, Mapping):
            fields = {}
            for key in ("type", "kind", "url", "hostname", "title", "timestamp"):
                value = raw.get(key)
                if value is not None and not isinstance(value, str):
                    raise TypeError(f"source {key} must be a string, got {type(value).__name__}")
                fields[key] = value or ""
            kind_value = fields["type"] or fields["kind"]
            url = fields["url"]
            kind = SourceKind(kind_value) if kind_value in VALID_SOURCE_KINDS else SourceKind.UNKNOWN
            if kind == SourceKind.UNKNOWN and url.startswith("http"):
                kind = SourceKind.WEB
            return cls(
                kind=kind,
                url=url,
                hostname=fields["hostname"] or extract_hostname(url),
                title=fields["title"],
                timestamp=fields["timestamp"] or utc_now(),
            )

        if isinstance(raw, str):
            if raw.startswith("http"):
                return cls(kind=SourceKind.WEB, url=raw, hostname=extract_hostname(raw))
            if raw in VALID_SOURCE_KINDS:
                return cls(kind=SourceKind(raw))

        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "url": self.url,
            "hostname": self.hostname,
            "title": self.title,
            "timestamp": self.timestamp,
        }


@dataclass
class ClipboardItem:
    """One captured clipboard entry."""

    id: int
    content: str
    type: ContentType
    source: ItemSource
    timestamp: str
    favorite: bool = False
    tags: List[str] = field(default_factory=list)
    preview: str = ""
    usage_count: Optional[int] = None
    last_used: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "content": self.content,
            "type": self.type.value,
            "source": self.source.to_dict(),
            "timestamp": self.timestamp,
            "favorite": self.favorite,
            "tags": list(self.tags),
            "preview": self.preview,
        }
        if self.usage_count is not None:
            data["usageCount"] = self.usage_count
        if self.last_used is not None:
            data["lastUsed"] = self.last_used
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ClipboardItem":
        """Rebuild an item from its stored form.

        Raises:
            KeyError, ValueError, TypeError: If required fields are missing or invalid
        """
        content = data["content"]
        if not isinstance(content, str):
            raise TypeError("content must be a string")
        type_value = data.get("type", ContentType.TEXT.value)
        return cls(
            id=int(data["id"]),
            content=content,
            type=ContentType(type_value),
            source=ItemSource.normalize(data.get("source")),
            timestamp=data["timestamp"],
            favorite=bool(data.get("favorite", False)),
            tags=list(data.get("tags") or []),
            preview=data.get("preview") or "",
            usage_count=data.get("usageCount"),
            last_used=data.get("lastUsed"),
        )


@dataclass
class Template:
    """Reusable text snippet with ``{{variable}}`` placeholders."""

    id: int
    name: str
    content: str
    description: str = ""
    shortcut: str = ""
    created: str = field(default_factory=utc_now)
    modified: Optional[str] = None
    usage_count: int = 0
    last_used: Optional[str] = None

    @property
    def revision_time(self) -> str:
        """Timestamp used for last-writer-wins merging."""
        return self.modified or self.created

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "content": self.content,
            "shortcut": self.shortcut,
            "created": self.created,
            "usageCount": self.usage_count,
        }
        if self.modified is not None:
            data["modified"] = self.modified
        if self.last_used is not None:
            data["lastUsed"] = self.last_used
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Template":
        return cls(
            id=int(data["id"]),
            name=data.get("name") or "",
            content=data.get("content") or "",
            description=data.get("description") or "",
            shortcut=data.get("shortcut") or "",
            created=data.get("created") or utc_now(),
            modified=data.get("modified"),
            usage_count=int(data.get("usageCount") or 0),
            last_used=data.get("lastUsed"),
        )


@dataclass
class SyncSnapshot:
    """Full exportable state: the unit of encryption, upload and merge."""

    clipboard_history: List[ClipboardItem] = field(default_factory=list)
    templates: List[Template] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)
    last_modified: int = 0
    device_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clipboardHistory": [item.to_dict() for item in self.clipboard_history],
            "templates": [t.to_dict() for t in self.templates],
            "settings": dict(self.settings),
            "lastModified": self.last_modified,
            "deviceId": self.device_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SyncSnapshot":
        return cls(
            clipboard_history=[
                ClipboardItem.from_dict(item) for item in data.get("clipboardHistory") or []
            ],
            templates=[Template.from_dict(t) for t in data.get("templates") or []],
            settings=dict(data.get("settings") or {}),
            last_modified=int(data.get("lastModified") or 0),
            device_id=data.get("deviceId"),
        )


@dataclass
class EncryptedPayload:
    """AES-GCM ciphertext (tag appended) and its 12-byte nonce."""

    encrypted: bytes
    iv: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {"encrypted": list(self.encrypted), "iv": list(self.iv)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EncryptedPayload":
        """Parse the wire form.

        Raises:
            KeyError, ValueError, TypeError: If the payload is malformed
        """
        return cls(encrypted=bytes(data["encrypted"]), iv=bytes(data["iv"]))


@dataclass
class SyncResult:
    """Result of one sync cycle."""

    uploaded: int = 0  # Upload requests that succeeded
    downloaded: bool = False  # Remote snapshot existed
    merged: bool = False  # Merge step ran
    item_count: int = 0  # History length after the cycle
    errors: List[str] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def success(self) -> bool:
        return len(self.errors) == 0
