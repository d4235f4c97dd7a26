"""Fernet encryption for cached analysis payloads and model artifacts.

Cached trends, alerts and model coefficients are derived from personal health
readings, so they are sealed before they reach SQLite. Several keys may be
configured (comma separated, newest first) to rotate keys without losing the
existing cache.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when sealing/opening a payload fails."""


class PayloadEncryptor:
    """Seals JSON-serializable payloads into Fernet tokens and opens them again.

    Usage::

        encryptor = PayloadEncryptor(key="...")
        token = encryptor.seal({"direction": "stable", "slope": 0.01})
        payload = encryptor.open(token)
    """

    def __init__(self, key: str) -> None:
        """Initialize with one or more Fernet keys.

        Args:
            key: A Fernet key, or several comma-separated keys (newest first).
                The first key encrypts; all keys are tried when decrypting.

        Raises:
            EncryptionError: If no key is given or any key is invalid.
        """
        keys = [k.strip() for k in (key or "").split(",") if k.strip()]
        if not keys:
            raise EncryptionError("Encryption key must not be empty")
        try:
            self._fernet = MultiFernet([Fernet(k.encode()) for k in keys])
        except ValueError as exc:
            raise EncryptionError(f"Invalid encryption key: {exc}") from exc
        self._key_count = len(keys)

    @property
    def key_count(self) -> int:
        return self._key_count

    def seal(self, payload: Any) -> str:
        """Serialize ``payload`` to JSON and encrypt it.

        Raises:
            EncryptionError: If the payload is not JSON-serializable.
        """
        try:
            plaintext = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Payload is not JSON-serializable: {exc}") from exc
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def open(self, token: str) -> Any:
        """Decrypt a token produced by :meth:`seal`.

        Raises:
            EncryptionError: If the token is empty, tampered with, or sealed
                with a key that is no longer configured.
        """
        if not token:
            raise EncryptionError("Cannot open an empty token")
        try:
            plaintext = self._fernet.decrypt(token.encode("utf-8"))
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc
        try:
            return json.loads(plaintext)
        except ValueError as exc:
            raise EncryptionError(f"Decrypted payload is not valid JSON: {exc}") from exc

    def rotate(self, token: str) -> str:
        """Re-encrypt a token under the primary (first) key."""
        try:
            return self._fernet.rotate(token.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise EncryptionError("Rotation failed: invalid token or wrong key") from exc

    @staticmethod
    def generate_key() -> str:
        """Generate a new URL-safe base64-encoded Fernet key."""
        return Fernet.generate_key().decode("utf-8")
