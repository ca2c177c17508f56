# remoteaccess/identity/secrets.py
"""
Device-bound secret handling.

The keystore password is never stored in clear: it is encrypted with a
per-device AES-256-GCM key kept in a private file. Wiping that file (or the
stored ciphertext) is how the identity is reset.
"""

import base64
import logging
import os
import secrets
import string
from pathlib import Path

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

DEVICE_KEY_SIZE = 32
NONCE_SIZE = 12
_ALPHANUMERIC = string.ascii_letters + string.digits


class SecretGenerator:
    def __init__(self, device_key_path: Path):
        self.device_key_path = Path(device_key_path)

    def _device_key(self) -> bytes:
        """Load (or generate) the 32-byte device key."""
        try:
            key = self.device_key_path.read_bytes()
        except FileNotFoundError:
            key = os.urandom(DEVICE_KEY_SIZE)
            self.device_key_path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.device_key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(key)
            logger.info("[Secrets] Generated a new device key")
            return key
        if len(key) != DEVICE_KEY_SIZE:
            raise ValueError(f"Device key has {len(key)} bytes, expected {DEVICE_KEY_SIZE}")
        return key

    def encrypt_data(self, plaintext: str) -> str:
        aesgcm = AESGCM(self._device_key())
        nonce = os.urandom(NONCE_SIZE)
        ct = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + ct).decode("ascii")

    def decrypt_data(self, token: str) -> str:
        """
        Raises:
            cryptography.exceptions.InvalidTag: wrong device key or tampered data
            ValueError: malformed token or device key
        """
        data = base64.b64decode(token.encode("ascii"), validate=True)
        if len(data) <= NONCE_SIZE:
            raise ValueError("Encrypted secret is truncated")
        aesgcm = AESGCM(self._device_key())
        return aesgcm.decrypt(data[:NONCE_SIZE], data[NONCE_SIZE:], None).decode("utf-8")

    def remove_keys(self) -> None:
        self.device_key_path.unlink(missing_ok=True)
        logger.warning("[Secrets] Device key removed")

    @staticmethod
    def generate_random_string(nbytes: int = 32) -> str:
        return secrets.token_urlsafe(nbytes)

    @staticmethod
    def generate_random_alphanumeric_string(length: int) -> str:
        return "".join(secrets.choice(_ALPHANUMERIC) for _ in range(length))
