"""Stand-in host used by the CLI when no player is attached: nothing plays, the library is empty."""

from typing import Dict, List, Optional

from remoteaccess.host.interfaces import Chapter, MediaItem, RepeatMode


class IdlePlaybackEngine:
    is_playing = False
    is_video_playing = False
    current_media: Optional[MediaItem] = None
    current_location = ""
    time = 0
    length = 0
    volume = 0
    speed = 1.0
    is_shuffling = False
    repeat_type = RepeatMode.NONE
    has_playlist = False
    sleep_timer = 0
    wait_for_media_end = False
    reset_on_interaction = False
    should_show = False
    current_index = -1

    def media_list(self) -> List[MediaItem]:
        return []

    def chapters(self) -> List[Chapter]:
        return []

    def cover_art(self) -> Optional[bytes]:
        return None

    def play(self) -> None:
        pass

    def pause(self) -> None:
        pass

    def previous(self) -> None:
        pass

    def next(self) -> None:
        pass

    def seek(self, position: int) -> None:
        pass

    def shuffle(self) -> None:
        pass

    def set_repeat_type(self, mode: RepeatMode) -> None:
        pass

    def set_volume(self, volume: int) -> None:
        pass

    def set_speed(self, speed: float) -> None:
        pass


class EmptyCatalog:
    def search(self, query: str) -> Dict[str, List[MediaItem]]:
        return {}

    def browse(self, category: str) -> List[MediaItem]:
        return []
