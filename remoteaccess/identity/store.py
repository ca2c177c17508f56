# ============================================================================
# remoteaccess/identity/store.py
# TLS Identity Store
# ============================================================================
#
# PURPOSE:
# Keeps the server's TLS identity stable across restarts: one self-signed
# certificate + RSA key in a password-protected PKCS#12 keystore, plus the two
# cookie keys used by the session layer.
#
# LIFECYCLE:
# 1. Recover the keystore password (encrypted with the device key in settings).
#    Bounded retries; from the second retry on, secrets are wiped first.
# 2. Load the key entry from the keystore. Unreadable keystore == empty.
# 3. Missing entry -> generate RSA-2048 + certificate valid from yesterday
#    for 25 years, persist the keystore.
# 4. Load or generate the cookie encryption / signing keys.
#
# Deleting the keystore (reset()) starts over with a new certificate, which
# browsers then warn about again.
#
# ============================================================================

from __future__ import annotations

import datetime
import hashlib
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from cryptography import x509
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from remoteaccess.base.config import RemoteAccessConfig
from remoteaccess.base.settings import (
    COOKIE_ENCRYPT_KEY,
    COOKIE_SIGN_KEY,
    KEYSTORE_PASSWORD,
    SettingsStore,
)
from remoteaccess.errors import ErrorCode, IdentityError
from remoteaccess.identity.secrets import SecretGenerator

logger = logging.getLogger(__name__)

KEY_ALIAS = b"remote-access"
RSA_KEY_SIZE = 2048
CERT_VALIDITY_YEARS = 25
COOKIE_KEY_LENGTH = 32

# Retries after the first failed password recovery
PASSWORD_RETRIES = 3


@dataclass(frozen=True)
class Identity:
    certificate: x509.Certificate
    private_key: rsa.RSAPrivateKey
    keystore_password: str
    cookie_encrypt_key: str
    cookie_sign_key: str

    def certificate_der(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.DER)

    def private_key_der(self) -> bytes:
        return self.private_key.private_bytes(
            serialization.Encoding.DER,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )

    @property
    def fingerprint(self) -> str:
        return hashlib.sha256(self.certificate_der()).hexdigest()


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}-")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp, 0o600)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class IdentityStore:
    def __init__(
        self,
        keystore_path: Path,
        settings: SettingsStore,
        secret_generator: SecretGenerator,
        tls_dir: Optional[Path] = None,
    ):
        self.keystore_path = Path(keystore_path)
        self.settings = settings
        self.secrets = secret_generator
        self.tls_dir = Path(tls_dir) if tls_dir else self.keystore_path.parent / "tls"

    @classmethod
    def from_config(cls, config: RemoteAccessConfig, settings: SettingsStore) -> "IdentityStore":
        return cls(
            keystore_path=config.storage.keystore_path,
            settings=settings,
            secret_generator=SecretGenerator(config.storage.device_key_path),
            tls_dir=config.storage.tls_path,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def ensure_identity(self) -> Identity:
        """
        Return the persisted identity, generating whatever is missing.

        Blocking (RSA generation, PKCS#12 encoding): call it off the event loop.

        Raises:
            IdentityError: password unrecoverable after retries, or key
                generation / keystore encoding failed
        """
        password = self._retrieve_keystore_password()

        key, cert = self._load_keystore(password)
        if key is None or cert is None:
            key, cert = self._self_signed_certificate()
            self._store_keystore(key, cert, password)

        return Identity(
            certificate=cert,
            private_key=key,
            keystore_password=password,
            cookie_encrypt_key=self._cookie_key(COOKIE_ENCRYPT_KEY),
            cookie_sign_key=self._cookie_key(COOKIE_SIGN_KEY),
        )

    def export_tls_files(self, identity: Identity) -> Tuple[Path, Path]:
        """
        Write the certificate and the password-encrypted key as PEM for the
        TLS listener. Returns (cert_path, key_path).
        """
        cert_path = self.tls_dir / "server.crt"
        key_path = self.tls_dir / "server.key"
        _atomic_write(cert_path, identity.certificate.public_bytes(serialization.Encoding.PEM))
        _atomic_write(
            key_path,
            identity.private_key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.BestAvailableEncryption(identity.keystore_password.encode("utf-8")),
            ),
        )
        return cert_path, key_path

    def clear_cookie_keys(self) -> None:
        """Drop both cookie keys: every existing session becomes invalid."""
        self.settings.remove(COOKIE_ENCRYPT_KEY)
        self.settings.remove(COOKIE_SIGN_KEY)
        logger.warning("[Identity] Cookie keys cleared, all sessions revoked")

    def reset(self) -> None:
        """Wipe keystore, password, device key and cookie keys."""
        self._reset_secrets()
        self.keystore_path.unlink(missing_ok=True)
        for name in ("server.crt", "server.key"):
            (self.tls_dir / name).unlink(missing_ok=True)
        self.clear_cookie_keys()
        logger.warning("[Identity] Identity reset, a new certificate will be generated")

    # ------------------------------------------------------------------
    # Keystore password
    # ------------------------------------------------------------------

    def _read_password(self) -> str:
        if not self.settings.get_string(KEYSTORE_PASSWORD):
            self.settings.put(
                KEYSTORE_PASSWORD,
                self.secrets.encrypt_data(SecretGenerator.generate_random_string()),
            )
        return self.secrets.decrypt_data(self.settings.get_string(KEYSTORE_PASSWORD))

    def _reset_secrets(self) -> None:
        self.secrets.remove_keys()
        self.settings.remove(KEYSTORE_PASSWORD)

    def _retrieve_keystore_password(self) -> str:
        attempt = 0
        while True:
            try:
                return self._read_password()
            except (InvalidTag, ValueError, OSError) as e:
                logger.error(f"[Identity] Keystore password recovery failed (attempt {attempt + 1}): {e}")
                if attempt >= PASSWORD_RETRIES:
                    raise IdentityError(
                        ErrorCode.IDENTITY_PASSWORD_UNRECOVERABLE,
                        "Cannot retrieve the keystore password",
                        details={"attempts": attempt + 1},
                    ) from e
            attempt += 1
            if attempt > 1:
                # Failed more than once: start over from fresh secrets
                self._reset_secrets()

    # ------------------------------------------------------------------
    # Keystore
    # ------------------------------------------------------------------

    def _load_keystore(self, password: str) -> Tuple[Optional[rsa.RSAPrivateKey], Optional[x509.Certificate]]:
        try:
            data = self.keystore_path.read_bytes()
        except FileNotFoundError:
            return None, None
        except OSError as e:
            logger.error(f"[Identity] Cannot read keystore {self.keystore_path}: {e}")
            return None, None

        try:
            key, cert, _ = pkcs12.load_key_and_certificates(data, password.encode("utf-8"))
        except ValueError as e:
            logger.error(f"[Identity] Keystore unreadable, a new identity will be generated: {e}")
            return None, None

        if not isinstance(key, rsa.RSAPrivateKey):
            return None, None
        return key, cert

    def _store_keystore(self, key: rsa.RSAPrivateKey, cert: x509.Certificate, password: str) -> None:
        try:
            data = pkcs12.serialize_key_and_certificates(
                name=KEY_ALIAS,
                key=key,
                cert=cert,
                cas=None,
                encryption_algorithm=serialization.BestAvailableEncryption(password.encode("utf-8")),
            )
            _atomic_write(self.keystore_path, data)
        except (ValueError, TypeError, OSError) as e:
            raise IdentityError(
                ErrorCode.IDENTITY_KEYSTORE_WRITE_FAILED,
                "Cannot persist the keystore",
                details={"path": str(self.keystore_path), "error": str(e)},
            ) from e
        logger.info(f"[Identity] Keystore saved to {self.keystore_path}")

    def _self_signed_certificate(self) -> Tuple[rsa.RSAPrivateKey, x509.Certificate]:
        try:
            key = rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)

            # Valid from yesterday
            not_before = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(days=1)
            try:
                not_after = not_before.replace(year=not_before.year + CERT_VALIDITY_YEARS)
            except ValueError:  # Feb 29
                not_after = not_before + datetime.timedelta(days=365 * CERT_VALIDITY_YEARS + 7)

            owner = x509.Name([
                x509.NameAttribute(NameOID.COMMON_NAME, "remote-access"),
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Remote Access Server"),
            ])
            cert = (
                x509.CertificateBuilder()
                .subject_name(owner)
                .issuer_name(owner)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(not_before)
                .not_valid_after(not_after)
                .sign(key, hashes.SHA256())
            )
        except (ValueError, TypeError) as e:
            raise IdentityError(
                ErrorCode.IDENTITY_KEYGEN_FAILED,
                "Cannot generate the self-signed certificate",
                details={"error": str(e)},
            ) from e

        logger.info("[Identity] Generated a new self-signed certificate")
        return key, cert

    def _cookie_key(self, name: str) -> str:
        value = self.settings.get_string(name)
        if not value:
            value = SecretGenerator.generate_random_alphanumeric_string(COOKIE_KEY_LENGTH)
            self.settings.put(name, value)
        return value
