# ============================================================================
# remoteaccess/server/controller.py
# Server Lifecycle Controller
# ============================================================================
#
# PURPOSE:
# Owns one run of the remote access server and ties every component together.
#
# LIFECYCLE:
#   NOT_INIT -> CONNECTING -> STARTED -> STOPPING -> STOPPED
#   (ERROR from any active state on an unrecoverable failure)
#
# start():
#   1. last_state_stopped=false, status CONNECTING, stale downloads cleared
#   2. TLS identity ensured (off the loop)
#   3. Plaintext and TLS sockets bound, each falling back once to port 0
#   4. Two uvicorn servers started on those sockets under the TaskSupervisor
#   5. Both report started -> STARTED, host event pump running
#
# stop():
#   channels closed, discovery and pump cancelled, uvicorn servers exited,
#   log gathering released, registry reset, downloads cleared,
#   last_state_stopped=true, status STOPPED
#
# THREADING:
# The host calls post_event() from any thread; events are marshaled onto the
# server loop with call_soon_threadsafe and dispatched by one pump task.
# Status and registry are only written on the server loop.
#
# ============================================================================

from __future__ import annotations

import asyncio
import logging
import socket
from pathlib import Path
from typing import Callable, List, Optional

import uvicorn

from remoteaccess.base.config import RemoteAccessConfig
from remoteaccess.base.settings import (
    LAST_STATE_STOPPED,
    NETWORK_BROWSER_CONTENT,
    SettingsStore,
)
from remoteaccess.errors import ErrorCode, RemoteAccessError
from remoteaccess.host.events import (
    BrowserDescriptionChanged,
    HostEvent,
    LibraryChanged,
    LoginDialogChanged,
    MediaEvent,
    MediaEventKind,
    NowPlayingChanged,
    PlayerEvent,
    PlayerEventKind,
    PlayerVisibilityChanged,
    ResumeConfirmationChanged,
    VolumeChanged,
)
from remoteaccess.host.interfaces import MediaCatalog, PlaybackEngine
from remoteaccess.identity.store import Identity, IdentityStore
from remoteaccess.server.api import create_app
from remoteaccess.server.auth import AuthGate, DirectorySessionStorage, SessionCodec
from remoteaccess.server.commands import CommandDispatcher
from remoteaccess.server.connections import ConnectionRegistry
from remoteaccess.server.context import ServerContext
from remoteaccess.server.discovery import NetworkDiscovery, ShareScanner, ZeroconfShareScanner
from remoteaccess.server.hub import PushHub
from remoteaccess.server.logs import LogGatherer
from remoteaccess.server.messages import (
    BrowserDescription,
    GenericError,
    LibraryRefreshNeeded,
    LoginNeeded,
    PlayerStatus,
    ResumeConfirmationNeeded,
    Volume,
)
from remoteaccess.server.playback import NowPlayingDebouncer, NowPlayingPublisher
from remoteaccess.server.state import ServerStatus
from remoteaccess.utils.async_helpers import TaskSupervisor, create_safe_task
from remoteaccess.utils.net import bind_socket, get_ip_addresses
from remoteaccess.utils.observer import ObservableValue

logger = logging.getLogger(__name__)


def _log_login_code(code: str) -> None:
    logger.warning(f"[Auth] Login code for the remote access client: {code}")


class RemoteAccessServer:
    """
    The remote access server of one host process.

    One instance per process: the host constructs it explicitly and keeps the
    reference. start() and stop() must be awaited on the same event loop.
    """

    def __init__(
        self,
        config: RemoteAccessConfig,
        settings: SettingsStore,
        engine: PlaybackEngine,
        catalog: MediaCatalog,
        identity_store: Optional[IdentityStore] = None,
        scanner_factory: Optional[Callable[[], ShareScanner]] = None,
        login_prompt: Callable[[str], None] = _log_login_code,
    ):
        self.config = config
        self.settings = settings
        self.engine = engine
        self.catalog = catalog
        self.identity_store = identity_store or IdentityStore.from_config(config, settings)
        self.login_prompt = login_prompt

        self.status: ObservableValue[ServerStatus] = ObservableValue(ServerStatus.NOT_INIT)
        self.registry = ConnectionRegistry()
        self.connections = self.registry.connections
        self.hub = PushHub(spawn=self._spawn)

        self.publisher = NowPlayingPublisher(
            self.hub,
            engine,
            NowPlayingDebouncer(config.push.now_playing_debounce),
            spawn=self._spawn,
        )
        self.commands = CommandDispatcher(engine, settings, self.hub)
        self.discovery = NetworkDiscovery(
            self.hub,
            scanner_factory or (lambda: ZeroconfShareScanner(config.discovery.service_types)),
            enabled=lambda: settings.get_bool(NETWORK_BROWSER_CONTENT, True),
            timeout=config.discovery.timeout,
            spawn=self._spawn,
        )
        self.log_gatherer = LogGatherer(config.storage.logs_path, config.storage.downloads_path)

        self.context: Optional[ServerContext] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._supervisor: Optional[TaskSupervisor] = None
        self._events: Optional["asyncio.Queue[HostEvent]"] = None
        self._servers: List[uvicorn.Server] = []
        self._server_tasks: List[asyncio.Task] = []
        self._sockets: List[socket.socket] = []
        self._http_port: Optional[int] = None
        self._https_port: Optional[int] = None
        self._last_played_location = ""

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Raises:
            IdentityError: TLS identity could not be loaded or generated
            BindError: no port could be bound
            RemoteAccessError: listeners did not come up in time
        """
        if self.status.value in (ServerStatus.CONNECTING, ServerStatus.STARTED, ServerStatus.STOPPING):
            logger.warning(f"[Server] start() ignored, server is {self.status.value.value}")
            return

        self._loop = asyncio.get_running_loop()
        self.registry.bind_loop(self._loop)
        self.settings.put(LAST_STATE_STOPPED, False)
        self._set_status(ServerStatus.CONNECTING)
        self._supervisor = TaskSupervisor(on_failure=self._on_task_failure)

        try:
            await asyncio.to_thread(self.clear_downloads)
            identity = await asyncio.to_thread(self.identity_store.ensure_identity)
            self.context = self._build_context(identity)
            await self._start_listeners(identity)
            await asyncio.wait_for(self._wait_started(), timeout=self.config.server.startup_timeout)
        except asyncio.TimeoutError as e:
            await self._abort()
            raise RemoteAccessError(
                ErrorCode.SERVER_START_TIMEOUT,
                "Listeners did not start in time",
                details={"timeout": self.config.server.startup_timeout},
            ) from e
        except Exception:
            await self._abort()
            raise

        self._events = asyncio.Queue()
        self._supervisor.spawn(self._pump_events(), name="host-event-pump")
        self._set_status(ServerStatus.STARTED)
        logger.info(f"[Server] Started: {', '.join(self.get_addresses()) or 'no LAN address'}")

        await self.publisher.publish(force=True)

    async def stop(self) -> None:
        if self.status.value not in (ServerStatus.CONNECTING, ServerStatus.STARTED, ServerStatus.ERROR):
            logger.debug(f"[Server] stop() ignored, server is {self.status.value.value}")
            return

        self._set_status(ServerStatus.STOPPING)
        self._events = None
        await self._teardown()
        await asyncio.to_thread(self.clear_downloads)
        self.settings.put(LAST_STATE_STOPPED, True)
        self._set_status(ServerStatus.STOPPED)

    async def wait_closed(self) -> None:
        """Block until the listeners exit (interrupt signal or stop())."""
        tasks = list(self._server_tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _abort(self) -> None:
        await self._teardown()
        self._set_status(ServerStatus.ERROR)

    async def _teardown(self) -> None:
        await self.hub.close_all()
        await self.discovery.cancel()
        await self.publisher.close()

        for server in self._servers:
            server.should_exit = True
        if self._server_tasks:
            await asyncio.wait(self._server_tasks, timeout=self.config.server.startup_timeout)
        if self._supervisor is not None:
            await self._supervisor.cancel_all()

        self.log_gatherer.release()
        self.registry.reset()

        for sock in self._sockets:
            sock.close()
        self._sockets.clear()
        self._servers.clear()
        self._server_tasks.clear()
        self._http_port = None
        self._https_port = None

    async def _start_listeners(self, identity: Identity) -> None:
        app = create_app(self.context)
        host = self.config.server.host

        http_sock = bind_socket(host, self.config.server.http_port)
        self._sockets.append(http_sock)
        self._http_port = http_sock.getsockname()[1]
        listeners = [(http_sock, self._uvicorn_config(app))]

        if self.config.server.tls_enabled:
            cert_path, key_path = await asyncio.to_thread(self.identity_store.export_tls_files, identity)
            https_sock = bind_socket(host, self.config.server.https_port)
            self._sockets.append(https_sock)
            self._https_port = https_sock.getsockname()[1]
            listeners.append((https_sock, self._uvicorn_config(app, cert_path, key_path, identity.keystore_password)))

        for sock, config in listeners:
            config.load()
            server = uvicorn.Server(config)
            self._servers.append(server)
            port = sock.getsockname()[1]
            self._server_tasks.append(self._supervisor.spawn(server.serve(sockets=[sock]), name=f"uvicorn:{port}"))

    def _uvicorn_config(
        self,
        app,
        cert_path: Optional[Path] = None,
        key_path: Optional[Path] = None,
        key_password: Optional[str] = None,
    ) -> uvicorn.Config:
        return uvicorn.Config(
            app,
            ssl_certfile=str(cert_path) if cert_path else None,
            ssl_keyfile=str(key_path) if key_path else None,
            ssl_keyfile_password=key_password,
            ws_ping_interval=self.config.server.ws_ping_interval,
            ws_ping_timeout=self.config.server.ws_ping_timeout,
            lifespan="off",
            log_config=None,
            access_log=self.config.debug,
            timeout_graceful_shutdown=5,
        )

    async def _wait_started(self) -> None:
        while not all(server.started for server in self._servers):
            for task in self._server_tasks:
                if task.done():
                    raise RemoteAccessError(
                        ErrorCode.SERVER_INTERNAL_ERROR,
                        "A listener exited during startup",
                        details={"task": task.get_name()},
                    )
            await asyncio.sleep(0.05)

    def _build_context(self, identity: Identity) -> ServerContext:
        auth = AuthGate(
            SessionCodec(identity.cookie_encrypt_key, identity.cookie_sign_key),
            DirectorySessionStorage(self.config.storage.sessions_path),
            self.config.security,
        )
        return ServerContext(
            config=self.config,
            settings=self.settings,
            engine=self.engine,
            catalog=self.catalog,
            hub=self.hub,
            registry=self.registry,
            auth=auth,
            commands=self.commands,
            publisher=self.publisher,
            discovery=self.discovery,
            log_gatherer=self.log_gatherer,
            login_prompt=self.login_prompt,
            secure_port=lambda: self._https_port,
        )

    def _spawn(self, coro, name: Optional[str] = None) -> asyncio.Task:
        if self._supervisor is not None:
            return self._supervisor.spawn(coro, name=name)
        return create_safe_task(coro, name=name)

    def _on_task_failure(self, exc: BaseException) -> None:
        if self.status.value == ServerStatus.STARTED:
            logger.error(f"[Server] Background task failed: {exc}")
            self._set_status(ServerStatus.ERROR)

    def _set_status(self, status: ServerStatus) -> None:
        if self.status.value != status:
            logger.info(f"[Server] Status {self.status.value.value} -> {status.value}")
            self.status.set(status)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_addresses(self) -> List[str]:
        if self._http_port is None:
            return []
        return [f"http://{ip}:{self._http_port}" for ip in get_ip_addresses(use_ipv4=True)]

    def is_tls_enabled(self) -> bool:
        return self._https_port is not None

    def get_secure_url(self, host: str) -> Optional[str]:
        if self._https_port is None:
            return None
        return f"https://{host}:{self._https_port}"

    @property
    def http_port(self) -> Optional[int]:
        return self._http_port

    @property
    def https_port(self) -> Optional[int]:
        return self._https_port

    # ------------------------------------------------------------------
    # Host side
    # ------------------------------------------------------------------

    def clear_downloads(self) -> None:
        downloads = self.config.storage.downloads_path
        if not downloads.is_dir():
            return
        for path in downloads.iterdir():
            if path.is_file():
                path.unlink(missing_ok=True)

    async def launch_discovery(self) -> bool:
        return await self.discovery.launch()

    def post_event(self, event: HostEvent) -> bool:
        """
        Queue a host event for the server. Safe from any thread.

        Returns:
            False when the server is not running (event dropped)
        """
        loop, queue = self._loop, self._events
        if loop is None or queue is None or self.status.value != ServerStatus.STARTED:
            logger.debug(f"[Server] Dropping {type(event).__name__}, server not started")
            return False
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            queue.put_nowait(event)
            return True
        try:
            loop.call_soon_threadsafe(queue.put_nowait, event)
        except RuntimeError:
            logger.debug(f"[Server] Dropping {type(event).__name__}, loop closed")
            return False
        return True

    async def _pump_events(self) -> None:
        queue = self._events
        while True:
            event = await queue.get()
            try:
                await self.dispatch(event)
            except Exception as e:
                logger.error(f"[Server] Failed to handle {type(event).__name__}: {e}", exc_info=e)

    async def dispatch(self, event: HostEvent) -> None:
        hub = self.hub
        if isinstance(event, NowPlayingChanged):
            await self.publisher.publish()
        elif isinstance(event, MediaEvent):
            if event.kind == MediaEventKind.PARSED_CHANGED:
                await hub.broadcast(LibraryRefreshNeeded())
            await self.publisher.publish()
        elif isinstance(event, PlayerEvent):
            location = self.engine.current_location
            if location:
                self._last_played_location = location
            if event.kind == PlayerEventKind.ENCOUNTERED_ERROR:
                await hub.broadcast(GenericError(text=f"Invalid location: {self._last_played_location}"))
            elif event.kind == PlayerEventKind.TIME_CHANGED:
                await self.publisher.publish()
        elif isinstance(event, PlayerVisibilityChanged):
            await hub.broadcast(PlayerStatus(playing=self.engine.is_playing or event.playing))
        elif isinstance(event, LoginDialogChanged):
            await hub.broadcast(LoginNeeded(dialog_opened=event.shown))
        elif isinstance(event, ResumeConfirmationChanged):
            await hub.broadcast(
                ResumeConfirmationNeeded(media_title=event.media_title, consumed=event.media_title is None)
            )
        elif isinstance(event, LibraryChanged):
            await hub.broadcast(LibraryRefreshNeeded())
        elif isinstance(event, BrowserDescriptionChanged):
            await hub.broadcast(BrowserDescription(path=event.path, description=event.description))
        elif isinstance(event, VolumeChanged):
            await hub.broadcast(Volume(volume=event.volume))
        else:
            raise TypeError(f"Unknown host event: {event!r}")
