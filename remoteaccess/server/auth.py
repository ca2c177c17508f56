# ============================================================================
# remoteaccess/server/auth.py
# Session / Auth Gate
# ============================================================================
#
# PURPOSE:
# Decides whether a request may reach a protected route or the push channel.
#
# FLOW:
#   1. Browser POSTs /code          -> host shows a short pairing code
#   2. Browser POSTs /verify-code   -> session created, `user_session` cookie set
#   3. Every protected request      -> cookie decoded, session file checked
#
# COOKIE FORMAT:
#   urlsafe_b64( iv[16] | AES-256-CBC(session_id) | HMAC-SHA256(iv|ct)[32] )
#   AES key  = SHA-256(cookie_encrypt_key)
#   HMAC key = SHA-256(cookie_sign_key)
#
# Failures answer 401 JSON on HTTP and close code 4001 on WebSocket upgrades,
# never a redirect.
#
# ============================================================================

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import os
import re
import secrets
import string
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from fastapi import Request, WebSocket
from starlette.responses import Response

from remoteaccess.base.config import SecurityConfig
from remoteaccess.errors import ErrorCode, RemoteAccessError

logger = logging.getLogger(__name__)

IV_SIZE = 16
MAC_SIZE = 32
MAX_CODE_ATTEMPTS = 5
_SESSION_ID = re.compile(r"^[0-9a-f]{32}$")


# ============================================================================
# Cookie codec
# ============================================================================

class SessionCodec:
    def __init__(self, encrypt_key: str, sign_key: str):
        self._aes_key = hashlib.sha256(encrypt_key.encode("utf-8")).digest()
        self._mac_key = hashlib.sha256(sign_key.encode("utf-8")).digest()

    def encode(self, session_id: str) -> str:
        iv = os.urandom(IV_SIZE)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(session_id.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._aes_key), modes.CBC(iv)).encryptor()
        payload = iv + encryptor.update(padded) + encryptor.finalize()
        mac = hmac.new(self._mac_key, payload, hashlib.sha256).digest()
        return base64.urlsafe_b64encode(payload + mac).decode("ascii").rstrip("=")

    def decode(self, value: str) -> Optional[str]:
        """Session id carried by the cookie, or None if tampered, truncated or foreign."""
        try:
            raw = base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
        except (ValueError, TypeError):
            return None
        if len(raw) < IV_SIZE + algorithms.AES.block_size // 8 + MAC_SIZE:
            return None

        payload, mac = raw[:-MAC_SIZE], raw[-MAC_SIZE:]
        expected = hmac.new(self._mac_key, payload, hashlib.sha256).digest()
        if not hmac.compare_digest(mac, expected):
            return None

        try:
            decryptor = Cipher(algorithms.AES(self._aes_key), modes.CBC(payload[:IV_SIZE])).decryptor()
            padded = decryptor.update(payload[IV_SIZE:]) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            return None


# ============================================================================
# Server-side session records
# ============================================================================

@dataclass(frozen=True)
class UserSession:
    id: str
    created: float


class DirectorySessionStorage:
    """One JSON file per session id."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Optional[Path]:
        if not _SESSION_ID.match(session_id):
            return None
        return self.directory / f"{session_id}.json"

    def write(self, session: UserSession) -> None:
        path = self._path(session.id)
        if path is None:
            raise ValueError(f"Invalid session id: {session.id!r}")
        path.write_text(json.dumps({"id": session.id, "created": session.created}), encoding="utf-8")

    def read(self, session_id: str) -> Optional[UserSession]:
        path = self._path(session_id)
        if path is None:
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return UserSession(id=session_id, created=float(data["created"]))
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"[Auth] Dropping unreadable session {session_id}: {e}")
            self.invalidate(session_id)
            return None

    def invalidate(self, session_id: str) -> None:
        path = self._path(session_id)
        if path is not None:
            path.unlink(missing_ok=True)

    def clear(self) -> int:
        count = 0
        for path in self.directory.glob("*.json"):
            path.unlink(missing_ok=True)
            count += 1
        return count


# ============================================================================
# Gate
# ============================================================================

class AuthGate:
    def __init__(
        self,
        codec: SessionCodec,
        storage: DirectorySessionStorage,
        security: SecurityConfig,
        clock: Callable[[], float] = time.time,
    ):
        self.codec = codec
        self.storage = storage
        self.security = security
        self._clock = clock
        self._pending_code: Optional[Tuple[str, float]] = None
        self._code_failures = 0
        self._lockouts = 0
        self._locked_until = 0.0

    @property
    def bypass(self) -> bool:
        return self.security.bypass_auth

    @property
    def cookie_name(self) -> str:
        return self.security.cookie_name

    @property
    def max_age(self) -> int:
        return self.security.session_max_age

    # -- sessions ----------------------------------------------------------

    def create_session(self) -> Tuple[UserSession, str]:
        """Create and persist a session. Returns (session, cookie value)."""
        session = UserSession(id=secrets.token_hex(16), created=self._clock())
        self.storage.write(session)
        return session, self.codec.encode(session.id)

    def validate(self, cookie: Optional[str]) -> Optional[UserSession]:
        if not cookie:
            return None
        session_id = self.codec.decode(cookie)
        if session_id is None:
            return None
        session = self.storage.read(session_id)
        if session is None:
            return None
        if self._clock() - session.created >= self.max_age:
            logger.info(f"[Auth] Session {session_id[:8]} expired")
            self.storage.invalidate(session_id)
            return None
        return session

    def revoke(self, cookie: Optional[str]) -> None:
        session_id = self.codec.decode(cookie) if cookie else None
        if session_id:
            self.storage.invalidate(session_id)

    # -- pairing code ------------------------------------------------------

    def lockout_remaining(self) -> float:
        return max(0.0, self._locked_until - self._clock())

    def issue_code(self) -> str:
        """
        Replace the pending code with a fresh one.

        Wrong guesses are counted across reissues, so asking for a new code
        does not reset the attempt budget.

        Raises:
            RemoteAccessError: AUTH_CODE_LOCKED while a lockout is running
        """
        remaining = self.lockout_remaining()
        if remaining > 0:
            raise RemoteAccessError(
                ErrorCode.AUTH_CODE_LOCKED,
                "Too many wrong codes, try again later",
                details={"retry_after": int(remaining) + 1},
            )
        code = "".join(secrets.choice(string.digits) for _ in range(self.security.login_code_length))
        self._pending_code = (code, self._clock() + self.security.login_code_ttl)
        return code

    def verify_code(self, code: str) -> bool:
        """Single use, time limited, constant-time compare."""
        if self._pending_code is None:
            return False
        expected, expires = self._pending_code
        if self._clock() > expires:
            self._pending_code = None
            return False
        if hmac.compare_digest(code.encode("utf-8"), expected.encode("utf-8")):
            self._pending_code = None
            self._code_failures = 0
            self._lockouts = 0
            return True
        self._code_failures += 1
        if self._code_failures >= MAX_CODE_ATTEMPTS:
            self._lock_out()
        return False

    def _lock_out(self) -> None:
        cooldown = min(
            self.security.login_lockout * (2 ** self._lockouts),
            self.security.login_lockout_max,
        )
        self._lockouts += 1
        self._code_failures = 0
        self._pending_code = None
        self._locked_until = self._clock() + cooldown
        logger.warning(f"[Auth] Too many wrong codes, pairing code discarded, locked for {cooldown}s")

    # -- cookie helpers ----------------------------------------------------

    def set_cookie(self, response: Response, value: str) -> None:
        response.set_cookie(
            self.cookie_name,
            value,
            max_age=self.max_age,
            httponly=True,
            samesite="lax",
            path="/",
        )

    def clear_cookie(self, response: Response) -> None:
        response.delete_cookie(self.cookie_name, path="/")


# ============================================================================
# FastAPI integration
# ============================================================================

def get_auth_gate(request: Request) -> AuthGate:
    return request.app.state.context.auth


async def require_session(request: Request) -> Optional[UserSession]:
    """Dependency for protected routes."""
    gate = get_auth_gate(request)
    if gate.bypass:
        return None
    cookie = request.cookies.get(gate.cookie_name)
    if not cookie:
        raise RemoteAccessError(
            ErrorCode.AUTH_SESSION_MISSING,
            "Authentication required",
            details={"endpoint": str(request.url.path)},
        )
    session = gate.validate(cookie)
    if session is None:
        raise RemoteAccessError(
            ErrorCode.AUTH_SESSION_INVALID,
            "Session invalid or expired",
            details={"endpoint": str(request.url.path)},
        )
    return session


async def validate_websocket_connection(websocket: WebSocket, gate: AuthGate, endpoint_name: str) -> bool:
    """
    Check the session cookie of an upgrade request before accepting it.

    Closes with 4001 and returns False when the session is missing or invalid.
    """
    if gate.bypass:
        return True
    if gate.validate(websocket.cookies.get(gate.cookie_name)) is None:
        client = websocket.client.host if websocket.client else "unknown"
        logger.warning(f"[WebSocket] {endpoint_name} denied: no valid session (peer {client})")
        await websocket.close(code=4001, reason="Unauthorized")
        return False
    return True
