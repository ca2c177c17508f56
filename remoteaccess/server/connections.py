# ============================================================================
# remoteaccess/server/connections.py
# Connection Registry
# ============================================================================
#
# PURPOSE:
# Remembers every distinct peer address that reached the server during the
# current run, for the host UI ("who is connected").
#
# RULES:
# - Unique by address, appended in first-seen order
# - Never pruned while running; reset() empties it when the server stops
# - Mutated on the server loop only: calls from other threads are marshaled
#   with call_soon_threadsafe
#
# ============================================================================

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from starlette.types import ASGIApp, Receive, Scope, Send

from remoteaccess.utils.observer import ObservableValue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteAccessConnection:
    ip: str


class ConnectionRegistry:
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self.connections: ObservableValue[List[RemoteAccessConnection]] = ObservableValue([])

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def _on_loop_thread(self) -> bool:
        if self._loop is None or not self._loop.is_running():
            return True
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def on_request(self, peer_address: Optional[str]) -> None:
        if not peer_address:
            return
        if self._on_loop_thread():
            self._record(peer_address)
        else:
            self._loop.call_soon_threadsafe(self._record, peer_address)

    def _record(self, peer_address: str) -> None:
        current = self.connections.value
        if any(c.ip == peer_address for c in current):
            return
        logger.info(f"[Connections] New connection from {peer_address}")
        self.connections.set(current + [RemoteAccessConnection(peer_address)])

    def reset(self) -> None:
        if self.connections.value:
            self.connections.set([])

    def __len__(self) -> int:
        return len(self.connections.value)


class ConnectionInterceptorMiddleware:
    """Raw ASGI middleware: records the peer of every http/websocket scope before routing."""

    def __init__(self, app: ASGIApp, registry: ConnectionRegistry):
        self.app = app
        self.registry = registry

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] in ("http", "websocket"):
            client = scope.get("client")
            if client:
                self.registry.on_request(client[0])
        await self.app(scope, receive, send)
