"""
End-to-end encryption for clipsync snapshots.

Provides AES-256-GCM key management:
- Key generation and persistence (exported as a JWK string)
- Key import/export for adding another device of the same user
- Authenticated encryption and decryption of JSON-serializable objects

Only ciphertext and nonces leave this module; raw key bytes never do.
"""

import base64
import json
import logging
import os
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from clipsync.protocols import DecryptionError, KeyInitializationError, KeyValueStore
from clipsync.storage.keys import ENCRYPTION_KEY
from clipsync.types import EncryptedPayload

logger = logging.getLogger(__name__)

KEY_BITS = 256
NONCE_BYTES = 12


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def export_jwk(key: bytes) -> str:
    """Serialize raw key bytes as an octet JWK string."""
    return json.dumps(
        {
            "kty": "oct",
            "k": _b64url_encode(key),
            "alg": "A256GCM",
            "ext": True,
            "key_ops": ["encrypt", "decrypt"],
        }
    )


def import_jwk(jwk: str) -> bytes:
    """Parse an octet JWK string back into raw key bytes.

    Raises:
        KeyInitializationError: If the JWK is malformed or not a 256-bit key
    """
    try:
        data = json.loads(jwk)
        if data.get("kty") != "oct":
            raise ValueError(f"unsupported key type {data.get('kty')!r}")
        key = _b64url_decode(data["k"])
    except (TypeError, ValueError, KeyError, AttributeError) as e:
        raise KeyInitializationError(f"Invalid key material: {e}") from e

    if len(key) * 8 != KEY_BITS:
        raise KeyInitializationError(f"Expected a {KEY_BITS}-bit key, got {len(key) * 8} bits")
    return key


class KeyManager:
    """Owns the symmetric key used to encrypt sync snapshots.

    The key is persisted in the key-value store under ``encryptionKey`` as a
    JWK string and cached in memory as an AESGCM handle.
    """

    def __init__(self, kv: KeyValueStore):
        self._kv = kv
        self._aead: Optional[AESGCM] = None
        self._jwk: Optional[str] = None

    @property
    def has_key(self) -> bool:
        return self._aead is not None

    async def ensure_key(self) -> None:
        """Load the persisted key, or generate and persist a new one.

        Raises:
            KeyInitializationError: If the key could not be generated or imported
        """
        if self._aead is not None:
            return

        try:
            stored = await self._kv.get([ENCRYPTION_KEY])
        except Exception as e:
            raise KeyInitializationError(f"Failed to read encryption key: {e}") from e

        jwk = stored.get(ENCRYPTION_KEY)
        if jwk:
            self._install(import_jwk(jwk), jwk)
            logger.debug("Imported existing encryption key")
            return

        try:
            key = AESGCM.generate_key(bit_length=KEY_BITS)
            jwk = export_jwk(key)
            await self._kv.set({ENCRYPTION_KEY: jwk})
        except Exception as e:
            logger.error(f"Encryption initialization failed: {e}")
            raise KeyInitializationError(f"Failed to generate encryption key: {e}") from e

        self._install(key, jwk)
        logger.info("Generated new encryption key")

    async def export_key(self) -> str:
        """JWK string for transferring the key to another device."""
        await self.ensure_key()
        return self._jwk

    async def import_key(self, jwk: str) -> None:
        """Replace the current key with one exported from another device.

        Raises:
            KeyInitializationError: If the key is invalid or could not be stored
        """
        key = import_jwk(jwk)
        try:
            await self._kv.set({ENCRYPTION_KEY: jwk})
        except Exception as e:
            raise KeyInitializationError(f"Failed to store imported key: {e}") from e
        self._install(key, jwk)
        logger.info("Imported encryption key from another device")

    async def encrypt(self, obj: Any) -> EncryptedPayload:
        """Serialize ``obj`` to JSON and encrypt it under a fresh nonce."""
        await self.ensure_key()
        plaintext = json.dumps(obj, separators=(",", ":")).encode("utf-8")
        nonce = os.urandom(NONCE_BYTES)
        return EncryptedPayload(encrypted=self._aead.encrypt(nonce, plaintext, None), iv=nonce)

    async def decrypt(self, payload: EncryptedPayload) -> Any:
        """Authenticate and decrypt ``payload`` back into an object.

        Raises:
            DecryptionError: If authentication fails or the plaintext is not JSON
        """
        await self.ensure_key()
        if len(payload.iv) != NONCE_BYTES:
            raise DecryptionError(f"Invalid nonce length {len(payload.iv)}")
        try:
            plaintext = self._aead.decrypt(payload.iv, payload.encrypted, None)
        except InvalidTag as e:
            raise DecryptionError("Payload failed authentication") from e
        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise DecryptionError(f"Decrypted payload is not valid JSON: {e}") from e

    def _install(self, key: bytes, jwk: str) -> None:
        try:
            self._aead = AESGCM(key)
        except ValueError as e:
            raise KeyInitializationError(f"Invalid key: {e}") from e
        self._jwk = jwk
