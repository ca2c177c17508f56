"""
Playback snapshots and the debounced now-playing publisher.

Snapshots are derived on demand from the host PlaybackEngine; nothing here
caches player state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Iterable, Optional

from remoteaccess.host.interfaces import MediaItem, PlaybackEngine
from remoteaccess.server.hub import PushHub
from remoteaccess.server.messages import (
    NetworkShares,
    NowPlaying,
    PlayQueue,
    PlayQueueItem,
    WSBookmark,
    WSChapter,
)
from remoteaccess.utils.async_helpers import create_safe_task

logger = logging.getLogger(__name__)

Spawn = Callable[..., asyncio.Task]


def media_to_queue_item(media: MediaItem, playing: bool = False) -> PlayQueueItem:
    return PlayQueueItem(
        id=media.id,
        title=media.title,
        artist=media.artist,
        duration=media.duration,
        artwork_url=media.artwork_url,
        playing=playing,
        resolution=media.resolution,
        path=media.uri,
        is_folder=media.is_folder,
        progress=media.progress,
        played=media.played,
        file_type=media.file_type,
        favorite=media.is_favorite,
    )


def build_now_playing(engine: PlaybackEngine) -> Optional[NowPlaying]:
    """Current playback state, or None when nothing is loaded."""
    media = engine.current_media
    if media is None:
        return None
    return NowPlaying(
        title=media.title,
        artist=media.artist,
        playing=engine.is_playing,
        is_video_playing=engine.is_video_playing,
        progress=engine.time,
        duration=engine.length,
        id=media.id,
        artwork_url=media.artwork_url,
        uri=media.uri,
        volume=engine.volume,
        speed=round(engine.speed, 2),
        sleep_timer=engine.sleep_timer,
        wait_for_media_end=engine.wait_for_media_end,
        reset_on_interaction=engine.reset_on_interaction,
        shuffle=engine.is_shuffling,
        repeat=int(engine.repeat_type),
        should_show=engine.should_show,
        bookmarks=[WSBookmark(id=b.id, title=b.title, time=b.time) for b in media.bookmarks],
        chapters=[WSChapter(title=c.title, time=c.time) for c in engine.chapters()],
    )


def build_play_queue(engine: PlaybackEngine) -> PlayQueue:
    current = engine.current_index
    return PlayQueue(
        medias=[media_to_queue_item(m, playing=(i == current)) for i, m in enumerate(engine.media_list())]
    )


# Discovered shares are numbered from here so their ids never collide with queue items
SHARE_ID_BASE = 3000


def share_to_queue_item(index: int, title: str, uri: str) -> PlayQueueItem:
    return PlayQueueItem(
        id=SHARE_ID_BASE + index,
        title=title,
        artist=" ",
        duration=0,
        path=uri,
        is_folder=True,
    )


def build_network_shares(items: Iterable[PlayQueueItem]) -> NetworkShares:
    return NetworkShares(shares=list(items))


class NowPlayingDebouncer:
    """
    Drops a now-playing push that follows the previous one within `interval`
    seconds unless the playing flag flipped.
    """

    def __init__(self, interval: float = 0.5, clock: Callable[[], float] = time.monotonic):
        self.interval = interval
        self._clock = clock
        self._last_sent: Optional[float] = None
        self._last_playing: Optional[bool] = None

    def allow(self, playing: bool) -> bool:
        now = self._clock()
        if (
            self._last_sent is not None
            and playing == self._last_playing
            and now - self._last_sent < self.interval
        ):
            return False
        self.record(playing, now)
        return True

    def record(self, playing: bool, now: Optional[float] = None) -> None:
        self._last_sent = self._clock() if now is None else now
        self._last_playing = playing

    def remaining(self) -> float:
        if self._last_sent is None:
            return 0.0
        return max(0.0, self.interval - (self._clock() - self._last_sent))

    def reset(self) -> None:
        self._last_sent = None
        self._last_playing = None


class NowPlayingPublisher:
    """
    Pushes now-playing (always followed by play-queue) through the hub.

    A push dropped by the debouncer arms one trailing push at the end of the
    window, so the last state always reaches clients.
    """

    def __init__(
        self,
        hub: PushHub,
        engine: PlaybackEngine,
        debouncer: Optional[NowPlayingDebouncer] = None,
        spawn: Optional[Spawn] = None,
    ):
        self.hub = hub
        self.engine = engine
        self.debouncer = debouncer or NowPlayingDebouncer()
        self._spawn = spawn or create_safe_task
        self._trailing: Optional[asyncio.Task] = None

    async def publish(self, force: bool = False) -> bool:
        snapshot = build_now_playing(self.engine)
        if snapshot is None:
            return False

        if force:
            self.debouncer.record(snapshot.playing)
        elif not self.debouncer.allow(snapshot.playing):
            self._arm_trailing()
            return False

        self._cancel_trailing()
        await self.hub.broadcast(snapshot)
        await self.hub.broadcast(build_play_queue(self.engine))
        return True

    def _arm_trailing(self) -> None:
        if self._trailing is not None and not self._trailing.done():
            return
        self._trailing = self._spawn(self._trailing_push(self.debouncer.remaining()), name="now-playing-trailing")

    def _cancel_trailing(self) -> None:
        trailing, self._trailing = self._trailing, None
        if trailing is not None and trailing is not asyncio.current_task() and not trailing.done():
            trailing.cancel()

    async def _trailing_push(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._trailing = None
        await self.publish(force=True)

    async def close(self) -> None:
        trailing, self._trailing = self._trailing, None
        if trailing is not None and not trailing.done():
            trailing.cancel()
            await asyncio.gather(trailing, return_exceptions=True)
        self.debouncer.reset()
