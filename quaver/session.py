from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING

from .audio_source import Track

if TYPE_CHECKING:
    from .timers import DelayedTask
    from .transport import VoiceTransport


class LoopMode(Enum):
    OFF = auto()
    TRACK = auto()
    QUEUE = auto()

    def next(self) -> LoopMode:
        order = [LoopMode.OFF, LoopMode.TRACK, LoopMode.QUEUE]
        idx = order.index(self)
        return order[(idx + 1) % len(order)]

    def label(self) -> str:
        return {
            LoopMode.OFF: "Off",
            LoopMode.TRACK: "Track",
            LoopMode.QUEUE: "Queue",
        }[self]


@dataclass(frozen=True)
class Snapshot:
    """Read-only view of a guild's playback state."""

    guild_id: int
    active: bool
    current: Track | None = None
    loading: Track | None = None
    pending: tuple[Track, ...] = ()
    loop_mode: LoopMode = LoopMode.OFF
    playing: bool = False
    paused: bool = False
    elapsed: int = 0
    retry_count: int = 0
    idle_deadline: float | None = None

    @classmethod
    def empty(cls, guild_id: int) -> Snapshot:
        return cls(guild_id=guild_id, active=False)


class PlaybackSession:
    """Per-guild playback state. Mutated only by PlaybackManager under ``lock``."""

    def __init__(self, guild_id: int) -> None:
        self.guild_id = guild_id
        self.pending: deque[Track] = deque()
        self.current: Track | None = None
        self.loop_mode: LoopMode = LoopMode.OFF
        self.playing: bool = False
        self.paused: bool = False
        self.retry_count: int = 0
        self.announce_channel_id: int | None = None
        self.transport: VoiceTransport | None = None
        self.lock = asyncio.Lock()
        self.closed: bool = False

        # Track being resolved, and the token that scopes callbacks to it.
        self.loading: Track | None = None
        self.attempt: int = 0
        self.force_advance: bool = False

        self.retry_timer: DelayedTask | None = None
        self.idle_timer: DelayedTask | None = None

        self._started_at: float = 0.0
        self._paused_at: float = 0.0
        self._paused_total: float = 0.0

    @property
    def idle_deadline(self) -> float | None:
        if self.idle_timer is not None and self.idle_timer.active:
            return self.idle_timer.deadline
        return None

    def select_next(self, *, force: bool = False) -> Track | None:
        """Pick the next track to load, respecting loop mode.

        TRACK loop reuses ``current`` unless ``force`` is set. Otherwise the
        track leaving ``current`` goes back onto the tail under QUEUE loop,
        and the head of ``pending`` is popped.
        """
        if self.loop_mode == LoopMode.TRACK and self.current is not None and not force:
            return self.current

        if self.loop_mode == LoopMode.QUEUE and self.current is not None:
            self.pending.append(self.current)

        if not self.pending:
            return None
        return self.pending.popleft()

    def discard(self, track: Track) -> None:
        """Forget a track that can never be played so it is not selected again."""
        if self.current is track:
            self.current = None

    # ── elapsed time ─────────────────────────────────────────────────────

    def mark_started(self) -> None:
        self._started_at = time.monotonic()
        self._paused_at = 0.0
        self._paused_total = 0.0

    def mark_paused(self) -> None:
        self.paused = True
        self._paused_at = time.monotonic()

    def mark_resumed(self) -> None:
        if self._paused_at:
            self._paused_total += time.monotonic() - self._paused_at
        self._paused_at = 0.0
        self.paused = False

    def elapsed(self) -> int:
        if not self.playing or not self._started_at:
            return 0
        end = self._paused_at or time.monotonic()
        return max(0, int(end - self._started_at - self._paused_total))

    def clear(self) -> None:
        self.pending.clear()
        self.current = None
        self.loading = None
        self.playing = False
        self.paused = False
        self.force_advance = False
        self.retry_count = 0
        self._started_at = 0.0

    def snapshot(self) -> Snapshot:
        return Snapshot(
            guild_id=self.guild_id,
            active=not self.closed,
            current=self.current,
            loading=self.loading,
            pending=tuple(self.pending),
            loop_mode=self.loop_mode,
            playing=self.playing,
            paused=self.paused,
            elapsed=self.elapsed(),
            retry_count=self.retry_count,
            idle_deadline=self.idle_deadline,
        )
