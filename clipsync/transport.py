"""HTTP transport for the clipsync cloud service.

Stateless request wrapper: every call carries the bearer token and the device
identifier, and only encrypted payloads are ever sent.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from clipsync.protocols import TransportError
from clipsync.types import EncryptedPayload, now_ms

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "1.0"
DEFAULT_TIMEOUT = 30.0


class SyncTransport:
    """Upload/download/clear/devices client for the sync backend.

    Args:
        backend_url: Base URL of the sync service (e.g. ``https://host/sync``).
        auth_token: Bearer credential.
        device_id: Sent as ``X-Device-ID`` on every request.
        timeout: Per-request timeout in seconds.
        client: Optional preconfigured ``httpx.AsyncClient`` (tests inject one
            built on ``httpx.MockTransport``).
    """

    def __init__(
        self,
        backend_url: str,
        auth_token: str,
        device_id: str,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.backend_url = backend_url.rstrip("/")
        self._auth_token = auth_token
        self.device_id = device_id
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._auth_token}",
            "X-Device-ID": self.device_id,
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.backend_url}{path}"
        try:
            return await self._client.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except httpx.HTTPError as e:
            logger.debug(f"{method} {path} failed: {e}")
            raise TransportError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _check(response: httpx.Response, action: str) -> None:
        if not response.is_success:
            raise TransportError(
                f"{action} failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

    @staticmethod
    def _json(response: httpx.Response, action: str) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(
                f"{action} returned invalid JSON", status_code=response.status_code
            ) from e

    async def upload(self, payload: EncryptedPayload) -> Dict[str, Any]:
        """Store ``payload`` as the user's current remote snapshot."""
        response = await self._request(
            "POST",
            "/upload",
            json={
                "data": payload.to_dict(),
                "timestamp": now_ms(),
                "version": PROTOCOL_VERSION,
            },
        )
        self._check(response, "Upload")
        return self._json(response, "Upload")

    async def download(self) -> Optional[EncryptedPayload]:
        """Fetch the remote snapshot; None when nothing has been uploaded yet."""
        response = await self._request("GET", "/download")
        if response.status_code == 404:
            return None
        self._check(response, "Download")

        body = self._json(response, "Download")
        data = body.get("data") if isinstance(body, dict) else None
        if data is None:
            return None
        try:
            return EncryptedPayload.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise TransportError(
                f"Download returned a malformed payload: {e}", status_code=response.status_code
            ) from e

    async def clear(self) -> None:
        """Delete the user's remote data."""
        response = await self._request("DELETE", "/clear")
        self._check(response, "Clear")

    async def device_count(self) -> int:
        """Number of devices registered for this user."""
        response = await self._request("GET", "/devices")
        self._check(response, "Device count")
        body = self._json(response, "Device count")
        count = body.get("deviceCount") if isinstance(body, dict) else None
        return int(count) if count else 1

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
