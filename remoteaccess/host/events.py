"""
Events the host posts to the server.

The set is closed: the controller's dispatcher handles each variant and
ignores nothing silently. Events are plain immutable values so they can cross
from host threads into the server loop.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class MediaEventKind(Enum):
    PARSED_CHANGED = "parsed-changed"
    META_CHANGED = "meta-changed"
    OTHER = "other"


class PlayerEventKind(Enum):
    TIME_CHANGED = "time-changed"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"
    ENCOUNTERED_ERROR = "encountered-error"
    OTHER = "other"


@dataclass(frozen=True)
class NowPlayingChanged:
    """Generic player update (track change, play/pause, metadata)."""


@dataclass(frozen=True)
class MediaEvent:
    kind: MediaEventKind


@dataclass(frozen=True)
class PlayerEvent:
    kind: PlayerEventKind


@dataclass(frozen=True)
class PlayerVisibilityChanged:
    """Host mini player shown or hidden."""
    playing: bool


@dataclass(frozen=True)
class LoginDialogChanged:
    """Host asks the user to log in (e.g. to a network share)."""
    shown: bool


@dataclass(frozen=True)
class ResumeConfirmationChanged:
    """Host waits for a resume confirmation; None once consumed."""
    media_title: Optional[str]


@dataclass(frozen=True)
class LibraryChanged:
    """Media library content changed, clients should refresh their lists."""


@dataclass(frozen=True)
class BrowserDescriptionChanged:
    path: str
    description: str


@dataclass(frozen=True)
class VolumeChanged:
    volume: int


HostEvent = Union[
    NowPlayingChanged,
    MediaEvent,
    PlayerEvent,
    PlayerVisibilityChanged,
    LoginDialogChanged,
    ResumeConfirmationChanged,
    LibraryChanged,
    BrowserDescriptionChanged,
    VolumeChanged,
]
