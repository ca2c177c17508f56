"""
Interfaces of the host application consumed by the server.

The playback engine and the media catalog live in the host; the server only
reads state and issues commands through these protocols.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional, Protocol, Sequence


class RepeatMode(IntEnum):
    NONE = 0
    ONE = 1
    ALL = 2


@dataclass(frozen=True)
class Bookmark:
    id: int
    title: str
    time: int  # ms


@dataclass(frozen=True)
class Chapter:
    title: str
    time: int  # ms


@dataclass(frozen=True)
class MediaItem:
    id: int
    title: str
    uri: str
    artist: str = ""
    duration: int = 0  # ms
    artwork_url: str = ""
    is_favorite: bool = False
    resolution: str = ""
    progress: int = 0
    played: bool = False
    file_type: str = ""
    is_folder: bool = False
    bookmarks: Sequence[Bookmark] = field(default_factory=tuple)


class PlaybackEngine(Protocol):
    """Player state and controls. Called from the server loop, must not block for long."""

    @property
    def is_playing(self) -> bool: ...

    @property
    def is_video_playing(self) -> bool: ...

    @property
    def current_media(self) -> Optional[MediaItem]: ...

    @property
    def current_location(self) -> str: ...

    @property
    def time(self) -> int: ...

    @property
    def length(self) -> int: ...

    @property
    def volume(self) -> int: ...

    @property
    def speed(self) -> float: ...

    @property
    def is_shuffling(self) -> bool: ...

    @property
    def repeat_type(self) -> RepeatMode: ...

    @property
    def has_playlist(self) -> bool: ...

    @property
    def sleep_timer(self) -> int: ...

    @property
    def wait_for_media_end(self) -> bool: ...

    @property
    def reset_on_interaction(self) -> bool: ...

    @property
    def should_show(self) -> bool: ...

    @property
    def current_index(self) -> int: ...

    def media_list(self) -> List[MediaItem]: ...

    def chapters(self) -> List[Chapter]: ...

    def cover_art(self) -> Optional[bytes]:
        """Current cover art as JPEG bytes, or None."""
        ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def previous(self) -> None: ...

    def next(self) -> None: ...

    def seek(self, position: int) -> None: ...

    def shuffle(self) -> None: ...

    def set_repeat_type(self, mode: RepeatMode) -> None: ...

    def set_volume(self, volume: int) -> None: ...

    def set_speed(self, speed: float) -> None: ...


class MediaCatalog(Protocol):
    """Read-only view on the host media library."""

    def search(self, query: str) -> Dict[str, List[MediaItem]]:
        """Results grouped by category (albums, artists, genres, playlists, videos, tracks)."""
        ...

    def browse(self, category: str) -> List[MediaItem]: ...
