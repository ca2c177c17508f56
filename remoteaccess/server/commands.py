"""
Inbound commands received on a push channel.

Two frame shapes are accepted:
    play                                  plain-text token
    {"message": "set-volume", "id": 40}   JSON frame, `id` carries the argument

Commands are fire-and-forget and forwarded synchronously to the host player.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

from remoteaccess.base.settings import PLAYBACK_CONTROL, SettingsStore
from remoteaccess.host.interfaces import PlaybackEngine, RepeatMode
from remoteaccess.server.hub import PushChannel, PushHub
from remoteaccess.server.messages import PlaybackControlForbidden, Volume

logger = logging.getLogger(__name__)

SEEK_STEP_MS = 10_000

CONTROL_COMMANDS = frozenset({
    "play",
    "pause",
    "previous",
    "next",
    "previous10",
    "next10",
    "shuffle",
    "repeat",
    "set-volume",
    "set-speed",
    "seek",
})
QUERY_COMMANDS = frozenset({"get-volume"})


@dataclass(frozen=True)
class InboundCommand:
    message: str
    id: Any = None


def parse_command(frame: str) -> Optional[InboundCommand]:
    text = frame.strip()
    if not text:
        return None
    if not text.startswith("{"):
        return InboundCommand(text)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("message"), str):
        return None
    return InboundCommand(data["message"], data.get("id"))


def numeric_argument(value: Any) -> float:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError("argument must be a finite number")
    return number


def next_repeat_mode(current: RepeatMode, has_playlist: bool) -> RepeatMode:
    if current == RepeatMode.NONE:
        return RepeatMode.ONE
    if current == RepeatMode.ONE:
        return RepeatMode.ALL if has_playlist else RepeatMode.NONE
    return RepeatMode.NONE


class CommandDispatcher:
    def __init__(self, engine: PlaybackEngine, settings: SettingsStore, hub: PushHub):
        self.engine = engine
        self.settings = settings
        self.hub = hub

    def playback_control_allowed(self) -> bool:
        return self.settings.get_bool(PLAYBACK_CONTROL, True)

    async def handle(self, channel: PushChannel, frame: str) -> bool:
        """Run one frame. Returns True when a command was executed."""
        command = parse_command(frame)
        if command is None:
            logger.debug(f"[Commands] Ignoring frame from {channel.peer}: {frame[:64]!r}")
            return False

        if command.message in QUERY_COMMANDS:
            await self.hub.send(channel, Volume(volume=self.engine.volume))
            return True

        if command.message not in CONTROL_COMMANDS:
            logger.debug(f"[Commands] Unknown command from {channel.peer}: {command.message}")
            return False

        if not self.playback_control_allowed():
            await self.hub.send(channel, PlaybackControlForbidden())
            return False

        try:
            self._execute(command)
        except (TypeError, ValueError, OverflowError) as e:
            logger.warning(f"[Commands] Bad argument for {command.message}: {command.id!r} ({e})")
            return False
        return True

    def _execute(self, command: InboundCommand) -> None:
        engine = self.engine
        name = command.message
        if name == "play":
            engine.play()
        elif name == "pause":
            engine.pause()
        elif name == "previous":
            engine.previous()
        elif name == "next":
            engine.next()
        elif name == "previous10":
            engine.seek(max(engine.time - SEEK_STEP_MS, 0))
        elif name == "next10":
            engine.seek(min(engine.time + SEEK_STEP_MS, engine.length))
        elif name == "shuffle":
            engine.shuffle()
        elif name == "repeat":
            engine.set_repeat_type(next_repeat_mode(engine.repeat_type, engine.has_playlist))
        elif name == "set-volume":
            engine.set_volume(max(0, min(int(numeric_argument(command.id)), 100)))
        elif name == "set-speed":
            engine.set_speed(numeric_argument(command.id))
        elif name == "seek":
            engine.seek(max(0, min(int(numeric_argument(command.id)), engine.length)))
