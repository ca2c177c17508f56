# ============================================================================
# remoteaccess/base/config.py
# Application Configuration Management
# ============================================================================
#
# PURPOSE:
# Defines every tunable of the remote access server: ports, session lifetime,
# storage locations, debounce window, discovery timeout and logging.
#
# KEY CONCEPTS:
# 1. Frozen dataclasses: each section is an immutable value object
# 2. Environment variables: REMOTE_ACCESS_* overrides (see from_env)
# 3. Singleton: one process-wide config, replaceable in tests via set_config
#
# ============================================================================

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


# ============================================================================
# Listener Configuration
# ============================================================================

@dataclass(frozen=True)
class ServerConfig:
    # Listen on every interface: the whole point is LAN access from a phone/browser
    host: str = "0.0.0.0"

    # Preferred ports; each falls back once to an OS-assigned port when busy
    http_port: int = 8080
    https_port: int = 8443

    # Bind the TLS listener in addition to the plaintext one
    tls_enabled: bool = True

    # WebSocket keepalive (seconds)
    ws_ping_interval: float = 15.0
    ws_ping_timeout: float = 15.0

    # How long start() waits for both listeners to report ready (seconds)
    startup_timeout: float = 10.0


# ============================================================================
# Security & Session Configuration
# ============================================================================

@dataclass(frozen=True)
class SecurityConfig:
    # Development override: skip the session gate entirely.
    # Must stay False for anything handed to users.
    bypass_auth: bool = False

    # Lifetime of a browser session (cookie Max-Age and server-side expiry)
    session_max_age: int = 7 * 24 * 3600

    # Name of the session cookie
    cookie_name: str = "user_session"

    # Pairing code shown on the host when a browser asks to log in
    login_code_length: int = 4
    login_code_ttl: int = 5 * 60

    # Cooldown after too many wrong codes; doubles on each lockout up to the cap
    login_lockout: int = 60
    login_lockout_max: int = 3600


# ============================================================================
# File Storage Configuration
# ============================================================================

@dataclass(frozen=True)
class StorageConfig:
    # Private app storage: keystore, settings, sessions, web assets
    base_dir: Path = field(default_factory=lambda: Path.home() / ".remoteaccess")

    keystore_name: str = ".keystore"
    settings_name: str = "settings.json"
    device_key_name: str = ".device_key"

    # Where uploaded files land (the "public downloads" folder of the host)
    uploads_dir: Optional[Path] = None

    @property
    def keystore_path(self) -> Path:
        return self.base_dir / self.keystore_name

    @property
    def settings_path(self) -> Path:
        return self.base_dir / self.settings_name

    @property
    def device_key_path(self) -> Path:
        return self.base_dir / self.device_key_name

    @property
    def server_dir(self) -> Path:
        return self.base_dir / "server"

    @property
    def static_path(self) -> Path:
        return self.server_dir / "public"

    @property
    def sessions_path(self) -> Path:
        return self.server_dir / "cache"

    @property
    def tls_path(self) -> Path:
        return self.server_dir / "tls"

    @property
    def downloads_path(self) -> Path:
        return self.base_dir / "downloads"

    @property
    def uploads_path(self) -> Path:
        return self.uploads_dir or (self.base_dir / "uploads")

    @property
    def logs_path(self) -> Path:
        return self.base_dir / "logs"


# ============================================================================
# Push Protocol Configuration
# ============================================================================

@dataclass(frozen=True)
class PushConfig:
    # Minimum spacing between two now-playing pushes with the same playing flag
    now_playing_debounce: float = 0.5

    # Pending frames per channel before new frames are dropped for that channel
    channel_queue_size: int = 256


# ============================================================================
# Network Discovery Configuration
# ============================================================================

@dataclass(frozen=True)
class DiscoveryConfig:
    # Hard wall-clock limit of one discovery run (seconds)
    timeout: float = 30.0

    # mDNS service types advertised by network shares
    service_types: tuple = (
        "_smb._tcp.local.",
        "_nfs._tcp.local.",
        "_ftp._tcp.local.",
        "_sftp-ssh._tcp.local.",
    )


# ============================================================================
# Logging Configuration
# ============================================================================

@dataclass(frozen=True)
class LogConfig:
    level: str = "INFO"
    format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    file_enabled: bool = True
    file_name: str = "remoteaccess.log"
    max_file_size_mb: int = 5
    backup_count: int = 3


# ============================================================================
# Master Configuration Container
# ============================================================================

@dataclass  # Not frozen because __post_init__ creates directories
class RemoteAccessConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    push: PushConfig = field(default_factory=PushConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    log: LogConfig = field(default_factory=LogConfig)

    # Debug mode logs every request with its headers
    debug: bool = False

    def __post_init__(self):
        for path in (
            self.storage.base_dir,
            self.storage.static_path,
            self.storage.sessions_path,
            self.storage.tls_path,
            self.storage.downloads_path,
            self.storage.logs_path,
        ):
            path.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls) -> "RemoteAccessConfig":
        server = ServerConfig(
            host=os.getenv("REMOTE_ACCESS_HOST", "0.0.0.0"),
            http_port=int(os.getenv("REMOTE_ACCESS_HTTP_PORT", "8080")),
            https_port=int(os.getenv("REMOTE_ACCESS_HTTPS_PORT", "8443")),
            tls_enabled=_env_bool("REMOTE_ACCESS_TLS", True),
        )

        security = SecurityConfig(
            bypass_auth=_env_bool("REMOTE_ACCESS_BYPASS_AUTH", False),
            session_max_age=int(os.getenv("REMOTE_ACCESS_SESSION_MAX_AGE", str(7 * 24 * 3600))),
        )

        base_dir = Path(os.getenv("REMOTE_ACCESS_DATA_DIR", str(Path.home() / ".remoteaccess")))
        uploads = os.getenv("REMOTE_ACCESS_UPLOADS_DIR")
        storage = StorageConfig(base_dir=base_dir, uploads_dir=Path(uploads) if uploads else None)

        push = PushConfig(
            now_playing_debounce=float(os.getenv("REMOTE_ACCESS_NOW_PLAYING_DEBOUNCE", "0.5")),
        )

        discovery = DiscoveryConfig(
            timeout=float(os.getenv("REMOTE_ACCESS_DISCOVERY_TIMEOUT", "30")),
        )

        log = LogConfig(
            level=os.getenv("REMOTE_ACCESS_LOG_LEVEL", "INFO"),
        )

        return cls(
            server=server,
            security=security,
            storage=storage,
            push=push,
            discovery=discovery,
            log=log,
            debug=_env_bool("REMOTE_ACCESS_DEBUG", False),
        )


# ============================================================================
# Global Configuration Singleton
# ============================================================================

_config: Optional[RemoteAccessConfig] = None


def get_config() -> RemoteAccessConfig:
    """
    Get the global configuration instance, loading it from the environment
    the first time.
    """
    global _config
    if _config is None:
        _config = RemoteAccessConfig.from_env()
    return _config


def set_config(config: RemoteAccessConfig) -> None:
    """Replace the global configuration (mainly used for testing)."""
    global _config
    _config = config


def setup_logging(config: Optional[RemoteAccessConfig] = None) -> None:
    """
    Configure logging: console handler plus a rotating file in the logs dir.

    The rotating files are also what the log gathering endpoint zips up.
    """
    cfg = config or get_config()

    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if cfg.log.file_enabled:
        from logging.handlers import RotatingFileHandler
        log_path = cfg.storage.logs_path / cfg.log.file_name
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=cfg.log.max_file_size_mb * 1024 * 1024,
            backupCount=cfg.log.backup_count,
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, cfg.log.level.upper()),
        format=cfg.log.format,
        handlers=handlers,
        force=True,
    )
