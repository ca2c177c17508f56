# ============================================================================
# remoteaccess/server/hub.py
# Push Protocol Hub
# ============================================================================
#
# PURPOSE:
# Holds the live push channels and fans messages out to them.
#
# DELIVERY MODEL:
# - Best effort, at most once per channel per broadcast, no replay for late joiners
# - Each channel owns a bounded FIFO queue drained by its own writer task, so a
#   slow client never delays the others
# - A failed send closes that channel only; the hub prunes closed channels on
#   the next broadcast
#
# ============================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional, Protocol

from remoteaccess.server.messages import WireModel, encode_message
from remoteaccess.utils.async_helpers import create_safe_task

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def send_text(self, data: str) -> None:
        ...

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        ...


class PushChannel:
    """One live client: a transport plus its outbound queue and writer task."""

    def __init__(self, transport: Transport, peer: str = "", max_pending: int = 256):
        self.transport = transport
        self.peer = peer
        self._queue: "asyncio.Queue[str]" = asyncio.Queue(maxsize=max_pending)
        self._writer: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self, spawn: Optional[Callable[..., asyncio.Task]] = None) -> None:
        if self._writer is None and not self._closed:
            self._writer = (spawn or create_safe_task)(self._drain(), name=f"push-writer:{self.peer}")

    def offer(self, text: str) -> bool:
        """Queue a frame without waiting. False when closed or full."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning(f"[Hub] Channel {self.peer} is not keeping up, frame dropped")
            return False
        return True

    async def _drain(self) -> None:
        while True:
            text = await self._queue.get()
            try:
                await self.transport.send_text(text)
            except Exception as e:
                logger.info(f"[Hub] Send to {self.peer} failed, closing channel: {e}")
                self._closed = True
                self._discard_pending()
                return
            finally:
                self._queue.task_done()

    def _discard_pending(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._queue.task_done()

    async def flush(self) -> None:
        """Wait until every queued frame was written (or dropped on failure)."""
        await self._queue.join()

    async def close(self, code: int = 1001) -> None:
        """Cancel outstanding sends and close the transport. Idempotent."""
        was_open = not self._closed
        self._closed = True
        writer, self._writer = self._writer, None
        if writer is not None and not writer.done():
            writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)
        self._discard_pending()
        if was_open:
            try:
                await self.transport.close(code=code)
            except Exception as e:
                logger.debug(f"[Hub] Transport of {self.peer} already gone: {e}")


class PushHub:
    def __init__(self, spawn: Optional[Callable[..., asyncio.Task]] = None):
        self._channels: List[PushChannel] = []
        self._spawn = spawn

    def __len__(self) -> int:
        return len(self._channels)

    @property
    def channels(self) -> List[PushChannel]:
        return list(self._channels)

    def add_channel(self, channel: PushChannel) -> None:
        channel.start(self._spawn)
        self._channels.append(channel)
        logger.debug(f"[Hub] Channel {channel.peer} attached ({len(self._channels)} live)")

    async def remove_channel(self, channel: PushChannel) -> None:
        if channel in self._channels:
            self._channels.remove(channel)
        await channel.close()
        logger.debug(f"[Hub] Channel {channel.peer} detached ({len(self._channels)} live)")

    async def broadcast(self, message: WireModel) -> int:
        """
        Queue the message on every open channel.

        Returns:
            Number of channels the frame was offered to
        """
        self._channels = [c for c in self._channels if not c.closed]
        if not self._channels:
            return 0
        text = encode_message(message)
        attempts = 0
        for channel in list(self._channels):
            attempts += 1
            channel.offer(text)
        return attempts

    async def send(self, channel: PushChannel, message: Any) -> bool:
        """Direct reply to one channel."""
        return channel.offer(encode_message(message))

    async def close_all(self) -> None:
        channels, self._channels = self._channels, []
        if channels:
            await asyncio.gather(*(c.close() for c in channels), return_exceptions=True)
            logger.info(f"[Hub] Closed {len(channels)} channel(s)")
