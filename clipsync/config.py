"""Configuration settings for clipsync."""

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import urlparse

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Per-tier ceilings handed to the stores by the entitlement collaborator
TIER_LIMITS: Dict[str, Dict[str, int]] = {
    "free": {"clipboardHistory": 20, "templates": 3},
    "premium": {"clipboardHistory": 1000, "templates": 100},
}


class Settings(BaseSettings):
    """Application settings loaded from environment (``CLIPSYNC_*``)."""

    data_dir: Path = Path.home() / ".clipsync"

    # Remote sync service
    backend_url: Optional[str] = None
    auth_token: Optional[str] = None
    request_timeout: float = 30.0  # seconds per HTTP request
    sync_interval: float = 300.0  # seconds between periodic syncs

    # Local storage
    tier: str = "free"
    storage_quota_bytes: int = 5 * 1024 * 1024

    class Config:
        env_prefix = "CLIPSYNC_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def state_path(self) -> Path:
        return self.data_dir / "state.json"

    @property
    def credentials_path(self) -> Path:
        return self.data_dir / "credentials.json"

    def limit(self, name: str) -> int:
        """Ceiling ``name`` for the configured tier (unknown tiers get free limits)."""
        limits = TIER_LIMITS.get(self.tier, TIER_LIMITS["free"])
        return limits[name]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


LOCAL_SYNC_HOSTS = frozenset({"localhost", "127.0.0.1"})


def validate_backend_url(url: Optional[str], *, allow_localhost_http: bool = True) -> Optional[str]:
    """Return ``url`` if the sync token may be sent there, otherwise None.

    https is always fine. Plain http is only used for a sync server on this
    machine, and not at all when ``allow_localhost_http`` is off.
    """
    if not url:
        return None

    parsed = urlparse(url)
    if not parsed.netloc:
        problem = "no host"
    elif parsed.scheme == "https":
        return url
    elif parsed.scheme != "http":
        problem = f"unsupported scheme {parsed.scheme!r}"
    elif not allow_localhost_http:
        problem = "plain http is turned off"
    elif parsed.hostname not in LOCAL_SYNC_HOSTS:
        problem = "plain http outside localhost would expose the auth token"
    else:
        return url

    logger.warning(f"Ignoring sync backend {url}: {problem}")
    return None


def load_credentials(settings: Settings) -> Optional[Dict[str, str]]:
    """Resolve the sync backend URL and token.

    Priority:
    1. Settings (``CLIPSYNC_BACKEND_URL`` / ``CLIPSYNC_AUTH_TOKEN``)
    2. ``{data_dir}/credentials.json``

    Returns:
        Dict with 'backend_url' and 'auth_token', or None if not configured.
    """
    backend_url = settings.backend_url
    auth_token = settings.auth_token

    if not backend_url or not auth_token:
        path = settings.credentials_path
        if path.exists():
            try:
                with open(path) as f:
                    creds = json.load(f)
                backend_url = backend_url or creds.get("backend_url")
                auth_token = auth_token or creds.get("auth_token") or creds.get("token")
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Ignoring unreadable credentials file {path}: {e}")

    backend_url = validate_backend_url(backend_url)
    if backend_url and auth_token:
        return {"backend_url": backend_url.rstrip("/"), "auth_token": auth_token}
    return None
