"""
Key/value settings store shared with the host application.

The host owns preference storage; the server only needs a handful of keys
(feature toggles and persisted secrets). JsonSettings is the file-backed
implementation used when the server runs standalone.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)

# Keys read or written by the server
KEYSTORE_PASSWORD = "keystore_password"
COOKIE_ENCRYPT_KEY = "cookie_encrypt_key"
COOKIE_SIGN_KEY = "cookie_sign_key"
NETWORK_BROWSER_CONTENT = "remote_access_network_browser_content"
PLAYBACK_CONTROL = "remote_access_playback_control"
LAST_STATE_STOPPED = "remote_access_last_state_stopped"


class SettingsStore(Protocol):
    def get_string(self, key: str, default: str = "") -> str:
        ...

    def get_bool(self, key: str, default: bool = False) -> bool:
        ...

    def put(self, key: str, value: Any) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class JsonSettings:
    """
    Settings persisted as one JSON document.

    Every write rewrites the whole file through a temp file + os.replace, so a
    crash mid-write never leaves a truncated document behind.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._values: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"[Settings] Unreadable settings file {self.path}, starting empty: {e}")
            return {}
        if not isinstance(data, dict):
            logger.error(f"[Settings] Settings file {self.path} is not an object, starting empty")
            return {}
        return data

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".settings-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._values, f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get_string(self, key: str, default: str = "") -> str:
        with self._lock:
            value = self._values.get(key)
        return value if isinstance(value, str) else default

    def get_bool(self, key: str, default: bool = False) -> bool:
        with self._lock:
            value = self._values.get(key)
        return value if isinstance(value, bool) else default

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        with self._lock:
            return self._values.get(key, default)

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value
            self._flush()

    def remove(self, key: str) -> None:
        with self._lock:
            if self._values.pop(key, None) is not None:
                self._flush()
