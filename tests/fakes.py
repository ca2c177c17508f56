"""In-memory stand-ins for the host and the network used across the test suite."""

import asyncio
import json
from typing import Any, Dict, List, Optional

from remoteaccess.host.interfaces import Bookmark, Chapter, MediaItem, RepeatMode
from remoteaccess.server.discovery import DiscoveredShare


def make_media(media_id: int = 1, title: str = "Song", **kwargs) -> MediaItem:
    kwargs.setdefault("uri", f"file:///music/{media_id}.mp3")
    kwargs.setdefault("artist", "Artist")
    kwargs.setdefault("duration", 180_000)
    return MediaItem(id=media_id, title=title, **kwargs)


class FakePlaybackEngine:
    def __init__(self, queue: Optional[List[MediaItem]] = None, current_index: int = 0):
        self.queue = list(queue) if queue is not None else [make_media(1, "First"), make_media(2, "Second")]
        self.current_index = current_index if self.queue else -1
        self.is_playing = False
        self.is_video_playing = False
        self.current_location = self.queue[0].uri if self.queue else ""
        self.time = 0
        self.length = 180_000
        self.volume = 50
        self.speed = 1.0
        self.is_shuffling = False
        self.repeat_type = RepeatMode.NONE
        self.has_playlist = True
        self.sleep_timer = 0
        self.wait_for_media_end = False
        self.reset_on_interaction = False
        self.should_show = True
        self.art: Optional[bytes] = None
        self.chapter_list: List[Chapter] = []
        self.calls: List[tuple] = []

    @property
    def current_media(self) -> Optional[MediaItem]:
        if 0 <= self.current_index < len(self.queue):
            return self.queue[self.current_index]
        return None

    def media_list(self) -> List[MediaItem]:
        return list(self.queue)

    def chapters(self) -> List[Chapter]:
        return list(self.chapter_list)

    def cover_art(self) -> Optional[bytes]:
        return self.art

    def play(self) -> None:
        self.calls.append(("play",))
        self.is_playing = True

    def pause(self) -> None:
        self.calls.append(("pause",))
        self.is_playing = False

    def previous(self) -> None:
        self.calls.append(("previous",))

    def next(self) -> None:
        self.calls.append(("next",))

    def seek(self, position: int) -> None:
        self.calls.append(("seek", position))
        self.time = position

    def shuffle(self) -> None:
        self.calls.append(("shuffle",))
        self.is_shuffling = not self.is_shuffling

    def set_repeat_type(self, mode: RepeatMode) -> None:
        self.calls.append(("repeat", mode))
        self.repeat_type = mode

    def set_volume(self, volume: int) -> None:
        self.calls.append(("volume", volume))
        self.volume = volume

    def set_speed(self, speed: float) -> None:
        self.calls.append(("speed", speed))
        self.speed = speed


class FakeCatalog:
    def __init__(self, results: Optional[Dict[str, List[MediaItem]]] = None):
        self.results = results or {}
        self.queries: List[str] = []

    def search(self, query: str) -> Dict[str, List[MediaItem]]:
        self.queries.append(query)
        return self.results

    def browse(self, category: str) -> List[MediaItem]:
        return self.results.get(category, [])


class FakeTransport:
    """Records frames like a WebSocket; can be told to fail or to stall."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[str] = []
        self.closed_with: List[int] = []
        self.gate: Optional[asyncio.Event] = None

    async def send_text(self, data: str) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ConnectionResetError("peer gone")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.closed_with.append(code)

    def frames(self) -> List[Dict[str, Any]]:
        return [json.loads(text) for text in self.sent]

    def types(self) -> List[str]:
        return [frame["type"] for frame in self.frames()]


class FakeScanner:
    """
    Reports the given shares, then either returns or hangs until cancelled.
    """

    def __init__(self, shares: List[DiscoveredShare], hang: bool = False, delay: float = 0.0):
        self.shares = shares
        self.hang = hang
        self.delay = delay
        self.scans = 0
        self.releases = 0

    async def scan(self, on_share) -> None:
        self.scans += 1
        for share in self.shares:
            if self.delay:
                await asyncio.sleep(self.delay)
            await on_share(share)
        if self.hang:
            await asyncio.Event().wait()

    async def release(self) -> None:
        self.releases += 1


async def settle(*channels) -> None:
    """Let every channel writer drain its queue."""
    for channel in channels:
        await asyncio.wait_for(channel.flush(), timeout=2.0)


__all__ = [
    "Bookmark",
    "Chapter",
    "FakeCatalog",
    "FakePlaybackEngine",
    "FakeScanner",
    "FakeTransport",
    "make_media",
    "settle",
]
