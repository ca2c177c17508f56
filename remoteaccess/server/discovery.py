# ============================================================================
# remoteaccess/server/discovery.py
# Network Share Discovery
# ============================================================================
#
# PURPOSE:
# Finds network shares (SMB, NFS, FTP, SFTP) on the LAN and streams them to
# the live clients as `network-shares` messages.
#
# STATE MACHINE:
#   IDLE -> RUNNING -> FINISHED | TIMED_OUT -> IDLE
#
# - Entered through a non-blocking lock acquire; a launch() while RUNNING
#   re-publishes the current results instead of starting a second scan
# - Results are cleared at the start of every run
# - Every share found is pushed immediately (partial snapshot)
# - mDNS browsing never signals completion: the hard timeout finalizes it
# - Scanner release, final snapshot and guard release run once, in `finally`,
#   for completion, timeout and cancellation alike
#
# ============================================================================

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from pydantic import ValidationError
from zeroconf import ServiceInfo, ServiceListener, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from remoteaccess.server.hub import PushHub
from remoteaccess.server.messages import PlayQueueItem
from remoteaccess.server.playback import build_network_shares, share_to_queue_item
from remoteaccess.utils.async_helpers import create_safe_task

logger = logging.getLogger(__name__)


class DiscoveryState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    FINISHED = "finished"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class DiscoveredShare:
    title: str
    uri: str


OnShare = Callable[[DiscoveredShare], Awaitable[None]]


class ShareScanner(Protocol):
    async def scan(self, on_share: OnShare) -> None:
        """Report shares through on_share until done (or forever)."""
        ...

    async def release(self) -> None:
        ...


class NetworkDiscovery:
    def __init__(
        self,
        hub: PushHub,
        scanner_factory: Callable[[], ShareScanner],
        enabled: Callable[[], bool] = lambda: True,
        timeout: float = 30.0,
        spawn: Optional[Callable[..., asyncio.Task]] = None,
    ):
        self.hub = hub
        self.scanner_factory = scanner_factory
        self.enabled = enabled
        self.timeout = timeout
        self._spawn = spawn or create_safe_task
        self._guard = threading.Lock()
        self._task: Optional[asyncio.Task] = None
        self.state = DiscoveryState.IDLE
        self.last_outcome: Optional[DiscoveryState] = None
        self.results: List[PlayQueueItem] = []

    @property
    def running(self) -> bool:
        return self._guard.locked()

    async def launch(self) -> bool:
        """
        Start a scan unless one is running.

        Returns:
            True when a new scan was started
        """
        if not self.enabled():
            logger.debug("[Discovery] Network browsing disabled, not scanning")
            return False

        if not self._guard.acquire(blocking=False):
            await self.hub.broadcast(build_network_shares(self.results))
            return False

        self.state = DiscoveryState.RUNNING
        self.results = []
        try:
            task = self._spawn(self._run(), name="network-discovery")
        except BaseException:
            self.state = DiscoveryState.IDLE
            self._guard.release()
            raise
        self._task = task
        task.add_done_callback(self._release_if_abandoned)
        return True

    def _release_if_abandoned(self, task: asyncio.Task) -> None:
        # Cancelled before its first step: _run never reached its cleanup
        if self._task is task:
            self._task = None
            self.state = DiscoveryState.IDLE
            self._guard.release()

    async def wait(self) -> None:
        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def cancel(self) -> None:
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _on_share(self, share: DiscoveredShare) -> None:
        if any(item.path == share.uri for item in self.results):
            return
        try:
            item = share_to_queue_item(len(self.results), share.title, share.uri)
        except ValidationError as e:
            logger.warning(f"[Discovery] Skipping share {share!r}: {e}")
            return
        self.results.append(item)
        await self.hub.broadcast(build_network_shares(self.results))

    async def _run(self) -> None:
        scanner: Optional[ShareScanner] = None
        outcome = DiscoveryState.FINISHED
        try:
            scanner = self.scanner_factory()
            await asyncio.wait_for(scanner.scan(self._on_share), timeout=self.timeout)
        except asyncio.TimeoutError:
            outcome = DiscoveryState.TIMED_OUT
            logger.info(f"[Discovery] Scan stopped after {self.timeout}s, {len(self.results)} share(s)")
        except asyncio.CancelledError:
            logger.info("[Discovery] Scan cancelled")
            raise
        except Exception as e:
            logger.error(f"[Discovery] Scan failed: {e}", exc_info=e)
        finally:
            self.state = outcome
            self.last_outcome = outcome
            if scanner is not None:
                try:
                    await scanner.release()
                except Exception as e:
                    logger.warning(f"[Discovery] Scanner release failed: {e}")
            try:
                await self.hub.broadcast(build_network_shares(self.results))
            finally:
                self.state = DiscoveryState.IDLE
                self._task = None
                self._guard.release()


# ============================================================================
# mDNS scanner
# ============================================================================

_SCHEMES: Dict[str, tuple] = {
    "_smb._tcp.local.": ("smb", 445),
    "_nfs._tcp.local.": ("nfs", 2049),
    "_ftp._tcp.local.": ("ftp", 21),
    "_sftp-ssh._tcp.local.": ("sftp", 22),
}


class _ShareListener(ServiceListener):
    """Forwards added services from the zeroconf thread onto the scan loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: "asyncio.Queue[tuple]"):
        self.loop = loop
        self.queue = queue

    def add_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self.loop.call_soon_threadsafe(self.queue.put_nowait, (type_, name))

    def remove_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        logger.debug(f"[Discovery] Service removed: {name}")

    def update_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        pass


def share_from_service(type_: str, name: str, info: ServiceInfo) -> Optional[DiscoveredShare]:
    scheme, default_port = _SCHEMES.get(type_, (None, None))
    if scheme is None:
        return None
    addresses = info.parsed_addresses()
    host = addresses[0] if addresses else (info.server or "").rstrip(".")
    if not host:
        return None
    if ":" in host:
        host = f"[{host}]"
    uri = f"{scheme}://{host}"
    if info.port and info.port != default_port:
        uri += f":{info.port}"
    title = name[: -len(type_) - 1] if name.endswith("." + type_) else name
    return DiscoveredShare(title=title, uri=uri)


class ZeroconfShareScanner:
    def __init__(self, service_types: Sequence[str], request_timeout_ms: int = 3000):
        self.service_types = list(service_types)
        self.request_timeout_ms = request_timeout_ms
        self._aiozc: Optional[AsyncZeroconf] = None
        self._browser: Optional[AsyncServiceBrowser] = None

    async def scan(self, on_share: OnShare) -> None:
        queue: "asyncio.Queue[tuple]" = asyncio.Queue()
        self._aiozc = AsyncZeroconf()
        self._browser = AsyncServiceBrowser(
            self._aiozc.zeroconf,
            self.service_types,
            listener=_ShareListener(asyncio.get_running_loop(), queue),
        )
        logger.info(f"[Discovery] Browsing {', '.join(self.service_types)}")

        while True:
            type_, name = await queue.get()
            info = AsyncServiceInfo(type_, name)
            if not await info.async_request(self._aiozc.zeroconf, self.request_timeout_ms):
                logger.debug(f"[Discovery] No answer for {name}")
                continue
            share = share_from_service(type_, name, info)
            if share is not None:
                await on_share(share)

    async def release(self) -> None:
        browser, self._browser = self._browser, None
        aiozc, self._aiozc = self._aiozc, None
        if browser is not None:
            await browser.async_cancel()
        if aiozc is not None:
            await aiozc.async_close()
