# ============================================================================
# remoteaccess/server/messages.py
# Push Protocol Messages
# ============================================================================
#
# PURPOSE:
# Every frame the server pushes to live clients, as a closed tagged union.
# The `type` field is the tag (kebab-case on the wire), payload fields are
# camelCase.
#
# KEY CONCEPTS:
# 1. One pydantic model per tag with a Literal `type` default
# 2. PushMessage is a discriminated union: decoding dispatches on `type`
# 3. Unknown tags and malformed JSON decode to None, never raise
#
# ============================================================================

from __future__ import annotations

import logging
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Payload parts
# ============================================================================

class WSBookmark(WireModel):
    id: int
    title: str
    time: int


class WSChapter(WireModel):
    title: str
    time: int


class PlayQueueItem(WireModel):
    id: int
    title: str
    artist: str
    duration: int
    artwork_url: str = Field(default="", alias="artworkURL")
    playing: bool = False
    resolution: str = ""
    path: str = ""
    is_folder: bool = False
    progress: int = 0
    played: bool = False
    file_type: str = ""
    favorite: bool = False


# ============================================================================
# Push messages
# ============================================================================

class NowPlaying(WireModel):
    type: Literal["now-playing"] = "now-playing"
    title: str
    artist: str
    playing: bool
    is_video_playing: bool
    progress: int
    duration: int
    id: int
    artwork_url: str = Field(alias="artworkURL")
    uri: str
    volume: int
    speed: float
    sleep_timer: int
    wait_for_media_end: bool
    reset_on_interaction: bool
    shuffle: bool
    repeat: int
    should_show: bool
    bookmarks: List[WSBookmark] = Field(default_factory=list)
    chapters: List[WSChapter] = Field(default_factory=list)


class PlayQueue(WireModel):
    type: Literal["play-queue"] = "play-queue"
    medias: List[PlayQueueItem]


class WebSocketAuthorization(WireModel):
    type: Literal["auth"] = "auth"
    status: str
    initial_message: str = ""


class Volume(WireModel):
    type: Literal["volume"] = "volume"
    volume: int


class PlayerStatus(WireModel):
    type: Literal["player-status"] = "player-status"
    playing: bool


class LoginNeeded(WireModel):
    type: Literal["login-needed"] = "login-needed"
    dialog_opened: bool


class ResumeConfirmationNeeded(WireModel):
    type: Literal["resume-confirmation"] = "resume-confirmation"
    media_title: Optional[str] = None
    consumed: bool


class LibraryRefreshNeeded(WireModel):
    type: Literal["library-refresh-needed"] = "library-refresh-needed"
    refresh_needed: bool = True


class BrowserDescription(WireModel):
    type: Literal["browser-description"] = "browser-description"
    path: str
    description: str


class PlaybackControlForbidden(WireModel):
    type: Literal["playback-control-forbidden"] = "playback-control-forbidden"
    forbidden: bool = True


class GenericError(WireModel):
    type: Literal["error"] = "error"
    text: str


class NetworkShares(WireModel):
    type: Literal["network-shares"] = "network-shares"
    shares: List[PlayQueueItem]


PushMessage = Annotated[
    Union[
        NowPlaying,
        PlayQueue,
        WebSocketAuthorization,
        Volume,
        PlayerStatus,
        LoginNeeded,
        ResumeConfirmationNeeded,
        LibraryRefreshNeeded,
        BrowserDescription,
        PlaybackControlForbidden,
        GenericError,
        NetworkShares,
    ],
    Field(discriminator="type"),
]

_push_adapter: TypeAdapter = TypeAdapter(PushMessage)


# ============================================================================
# REST payloads (not pushed)
# ============================================================================

class SearchResults(WireModel):
    albums: List[PlayQueueItem] = Field(default_factory=list)
    artists: List[PlayQueueItem] = Field(default_factory=list)
    genres: List[PlayQueueItem] = Field(default_factory=list)
    playlists: List[PlayQueueItem] = Field(default_factory=list)
    videos: List[PlayQueueItem] = Field(default_factory=list)
    tracks: List[PlayQueueItem] = Field(default_factory=list)


class BreadcrumbItem(WireModel):
    title: str
    path: str


class BrowsingResult(WireModel):
    content: List[PlayQueueItem]
    breadcrumb: List[BreadcrumbItem] = Field(default_factory=list)


# ============================================================================
# Codec
# ============================================================================

def encode_message(message: WireModel) -> str:
    return message.model_dump_json(by_alias=True)


def decode_message(text: str) -> Optional[WireModel]:
    """Parse one pushed frame. Returns None for unknown tags or malformed JSON."""
    try:
        return _push_adapter.validate_json(text)
    except ValidationError as e:
        logger.debug(f"[Messages] Ignoring undecodable frame: {e.error_count()} error(s)")
        return None


__all__ = [
    "WSBookmark",
    "WSChapter",
    "PlayQueueItem",
    "NowPlaying",
    "PlayQueue",
    "WebSocketAuthorization",
    "Volume",
    "PlayerStatus",
    "LoginNeeded",
    "ResumeConfirmationNeeded",
    "LibraryRefreshNeeded",
    "BrowserDescription",
    "PlaybackControlForbidden",
    "GenericError",
    "NetworkShares",
    "PushMessage",
    "SearchResults",
    "BreadcrumbItem",
    "BrowsingResult",
    "encode_message",
    "decode_message",
]
