"""Structured status messages emitted by the playback core.

The core decides what to announce; rendering is left to whoever implements
``Notifier`` (the music cog renders them as embeds).
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .audio_source import Track
    from .session import LoopMode


class NoticeKind(Enum):
    NOW_PLAYING = auto()
    QUEUE_EMPTY = auto()
    TRACK_FAILED = auto()
    IDLE_DISCONNECT = auto()
    CONNECTION_LOST = auto()


@dataclass(frozen=True)
class Notice:
    kind: NoticeKind
    guild_id: int
    track: Track | None = None
    loop_mode: LoopMode | None = None
    pending: int = 0
    reason: str = ""


class Notifier(Protocol):
    async def notify(self, channel_id: int | None, notice: Notice) -> None: ...
