"""Per-guild playback orchestration.

``PlaybackManager`` owns one ``PlaybackSession`` per guild. Every mutation of
a session happens while holding that session's lock, so operations on one
guild are linearized while different guilds proceed independently.

Callbacks from the outside world (the voice transport finishing or failing a
track, retry and idle timers firing, the voice connection dropping) are turned
into typed events and handled as separate tasks that take the same lock.
Each load attempt carries a token; events and stream results for an attempt
that has since been skipped or stopped are discarded.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine, Optional, Protocol, Union

from .audio_source import Track
from .config import IDLE_TIMEOUT, MAX_RETRIES, RECONNECT_GRACE, RETRY_DELAY
from .errors import (
    AlreadyPaused,
    NotPaused,
    NotPlaying,
    NothingActive,
    ResolutionFailed,
    TransportFatal,
)
from .metrics import (
    active_sessions,
    playback_errors_total,
    queue_size,
    resolution_attempts_total,
    resolution_failures_total,
    tracks_played_total,
    tracks_skipped_total,
)
from .notices import Notice, NoticeKind, Notifier
from .session import LoopMode, PlaybackSession, Snapshot
from .timers import DelayedTask
from .transport import VoiceTransport

log = logging.getLogger(__name__)


class Resolver(Protocol):
    async def resolve(self, track: Track) -> Any: ...


Connector = Callable[[Any], Awaitable[VoiceTransport]]


# ── events ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TrackFinished:
    attempt: int


@dataclass(frozen=True)
class TrackErrored:
    attempt: int
    error: Exception


@dataclass(frozen=True)
class TransportDisconnected:
    pass


@dataclass(frozen=True)
class TimerExpired:
    timer: DelayedTask


Event = Union[TrackFinished, TrackErrored, TransportDisconnected, TimerExpired]


@dataclass(frozen=True)
class EnqueueResult:
    track: Track
    position: int  # 1-based position in the pending queue, 0 when loading right away

    @property
    def now_playing(self) -> bool:
        return self.position == 0


class PlaybackManager:
    """Maps guild ids to playback sessions and drives track advancement."""

    def __init__(
        self,
        resolver: Resolver,
        connector: Connector,
        notifier: Optional[Notifier] = None,
        *,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
        idle_timeout: float = IDLE_TIMEOUT,
        reconnect_grace: float = RECONNECT_GRACE,
    ) -> None:
        self._resolver = resolver
        self._connector = connector
        self._notifier = notifier
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.idle_timeout = idle_timeout
        self.reconnect_grace = reconnect_grace
        self._sessions: dict[int, PlaybackSession] = {}
        self._tasks: set[asyncio.Task] = set()

    def __contains__(self, guild_id: int) -> bool:
        return guild_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def guild_ids(self) -> list[int]:
        return list(self._sessions)

    # ── public operations ────────────────────────────────────────────────

    async def enqueue(
        self,
        guild_id: int,
        track: Track,
        announce_channel_id: int | None,
        voice_channel: Any,
    ) -> EnqueueResult:
        """Append ``track`` to the guild's queue, creating the session if needed.

        Starts loading immediately when nothing is playing or loading.
        Raises TransportFatal if a new session cannot join ``voice_channel``.
        """
        while True:
            session = self._sessions.get(guild_id)
            if session is None:
                session = PlaybackSession(guild_id)
                self._sessions[guild_id] = session
                active_sessions.inc()
                log.info("Created playback session for guild %s", guild_id)

            async with session.lock:
                if session.closed:
                    # Torn down while we waited; start over with a fresh session.
                    continue

                if session.transport is None:
                    try:
                        session.transport = await self._connector(voice_channel)
                    except BaseException:
                        self._forget(session)
                        raise

                session.announce_channel_id = announce_channel_id
                session.pending.append(track)
                self._disarm_idle(session)
                self._publish(session)
                log.debug("Guild %s: enqueued %r (%d pending)", guild_id, track.title, len(session.pending))

                if session.playing or session.loading is not None:
                    return EnqueueResult(track, len(session.pending))

                await self._advance(session)
                return EnqueueResult(track, 0)

    async def skip(self, guild_id: int) -> Track:
        """Stop the current track and move on, even under TRACK loop."""
        session = self._sessions.get(guild_id)
        if session is None:
            raise NotPlaying(guild_id)
        async with session.lock:
            if session.closed:
                raise NotPlaying(guild_id)

            if session.playing and session.current is not None:
                skipped = session.current
                session.force_advance = True
                # The transport reports the stopped track as finished; the
                # finished handler does the advancing.
                session.transport.stop()
                log.info("Guild %s: skipping %r", guild_id, skipped.title)
                return skipped

            if session.loading is not None:
                skipped = session.loading
                self._cancel_attempt(session)
                # Leaves through ``current`` so QUEUE loop keeps it in the cycle.
                session.current = skipped
                log.info("Guild %s: skipping %r while it was loading", guild_id, skipped.title)
                await self._advance(session, force=True)
                return skipped

            raise NotPlaying(guild_id)

    async def stop(self, guild_id: int) -> None:
        """Clear the queue, leave the voice channel and drop the session."""
        session = self._sessions.get(guild_id)
        if session is None:
            raise NothingActive(guild_id)
        async with session.lock:
            if session.closed:
                raise NothingActive(guild_id)
            await self._destroy(session, reason="stopped")

    async def pause(self, guild_id: int) -> Track:
        session = self._sessions.get(guild_id)
        if session is None:
            raise NotPlaying(guild_id)
        async with session.lock:
            if session.closed or not session.playing:
                raise NotPlaying(guild_id)
            if session.paused:
                raise AlreadyPaused(guild_id)
            session.transport.pause()
            session.mark_paused()
            return session.current

    async def resume(self, guild_id: int) -> Track:
        session = self._sessions.get(guild_id)
        if session is None:
            raise NotPaused(guild_id)
        async with session.lock:
            if session.closed or not session.playing or not session.paused:
                raise NotPaused(guild_id)
            session.transport.resume()
            session.mark_resumed()
            return session.current

    async def set_loop_mode(self, guild_id: int, mode: LoopMode) -> LoopMode:
        return await self._change_loop_mode(guild_id, lambda current: mode)

    async def cycle_loop_mode(self, guild_id: int) -> LoopMode:
        """Advance the loop mode OFF -> TRACK -> QUEUE -> OFF."""
        return await self._change_loop_mode(guild_id, LoopMode.next)

    async def _change_loop_mode(
        self, guild_id: int, choose: Callable[[LoopMode], LoopMode]
    ) -> LoopMode:
        session = self._sessions.get(guild_id)
        if session is None:
            raise NothingActive(guild_id)
        async with session.lock:
            if session.closed:
                raise NothingActive(guild_id)
            session.loop_mode = choose(session.loop_mode)
            self._publish(session)
            log.info("Guild %s: loop mode %s", guild_id, session.loop_mode.name)
            return session.loop_mode

    def snapshot(self, guild_id: int) -> Snapshot:
        session = self._sessions.get(guild_id)
        if session is None:
            return Snapshot.empty(guild_id)
        return session.snapshot()

    async def transport_lost(self, guild_id: int) -> None:
        """Tear the session down unless the voice connection recovers in time."""
        session = self._sessions.get(guild_id)
        if session is None:
            return
        log.warning("Guild %s: voice connection lost, waiting %.1fs", guild_id, self.reconnect_grace)
        await asyncio.sleep(self.reconnect_grace)
        if session.closed:
            return
        if session.transport is not None and session.transport.is_connected():
            log.info("Guild %s: voice connection recovered", guild_id)
            return
        await self._handle(session, TransportDisconnected())

    async def shutdown(self) -> None:
        for guild_id in self.guild_ids:
            try:
                await self.stop(guild_id)
            except NothingActive:
                pass
        for task in list(self._tasks):
            task.cancel()

    # ── track advancer ───────────────────────────────────────────────────

    async def _advance(self, session: PlaybackSession, *, force: bool = False) -> None:
        """Select the next track and start loading it. Caller holds the lock."""
        session.playing = False
        session.paused = False
        track = session.select_next(force=force)

        if track is None:
            session.current = None
            self._publish(session)
            self._arm_idle(session)
            log.info("Guild %s: queue empty, idle for up to %.0fs", session.guild_id, self.idle_timeout)
            await self._notify(session, Notice(NoticeKind.QUEUE_EMPTY, session.guild_id))
            return

        if track is not session.current:
            session.current = None
        self._disarm_idle(session)
        session.attempt += 1
        session.retry_count = 0
        session.loading = track
        self._publish(session)
        self._spawn(self._load(session, track, session.attempt))

    async def _load(self, session: PlaybackSession, track: Track, attempt: int) -> None:
        resolution_attempts_total.inc()
        log.debug("Guild %s: resolving %r (attempt token %d, retry %d)",
                  session.guild_id, track.title, attempt, session.retry_count)
        try:
            source = await self._resolver.resolve(track)
        except Exception as exc:
            if not isinstance(exc, ResolutionFailed):
                log.exception("Unexpected error resolving %r", track.title)
                exc = ResolutionFailed(track, ResolutionFailed.NETWORK_ERROR, str(exc))
            resolution_failures_total.labels(reason=exc.reason).inc()
            async with session.lock:
                if self._stale(session, attempt):
                    return
                await self._resolution_failed(session, track, exc)
            return

        async with session.lock:
            if self._stale(session, attempt):
                log.debug("Guild %s: discarding stream for %r, attempt superseded",
                          session.guild_id, track.title)
                source.cleanup()
                return

            try:
                session.transport.play(source, self._after_callback(session, attempt))
            except TransportFatal as exc:
                log.error("Guild %s: transport refused %r: %s", session.guild_id, track.title, exc)
                source.cleanup()
                await self._destroy(session, reason="transport failure", notice=NoticeKind.CONNECTION_LOST)
                return

            session.loading = None
            session.current = track
            session.playing = True
            session.paused = False
            session.retry_count = 0
            session.mark_started()
            tracks_played_total.inc()
            log.info("Guild %s: now playing %r", session.guild_id, track.title)
            await self._notify(session, Notice(
                NoticeKind.NOW_PLAYING,
                session.guild_id,
                track=track,
                loop_mode=session.loop_mode,
                pending=len(session.pending),
            ))

    async def _resolution_failed(
        self, session: PlaybackSession, track: Track, exc: ResolutionFailed
    ) -> None:
        if session.retry_count < self.max_retries:
            session.retry_count += 1
            log.warning("Guild %s: could not resolve %r (%s), retry %d/%d in %.1fs",
                        session.guild_id, track.title, exc.reason,
                        session.retry_count, self.max_retries, self.retry_delay)
            session.retry_timer = DelayedTask(self.retry_delay, self._timer_callback(session))
            return

        log.error("Guild %s: giving up on %r after %d attempts: %s",
                  session.guild_id, track.title, session.retry_count + 1, exc)
        tracks_skipped_total.inc()
        session.loading = None
        session.discard(track)
        await self._notify(session, Notice(
            NoticeKind.TRACK_FAILED, session.guild_id, track=track, reason=exc.reason
        ))
        await self._advance(session, force=True)

    # ── events ───────────────────────────────────────────────────────────

    def _after_callback(self, session: PlaybackSession, attempt: int) -> Callable[[Exception | None], None]:
        loop = asyncio.get_running_loop()

        def after(error: Exception | None) -> None:
            event = TrackErrored(attempt, error) if error else TrackFinished(attempt)
            loop.call_soon_threadsafe(self._post, session, event)

        return after

    def _timer_callback(self, session: PlaybackSession) -> Callable[[DelayedTask], None]:
        return lambda timer: self._post(session, TimerExpired(timer))

    def _post(self, session: PlaybackSession, event: Event) -> None:
        self._spawn(self._handle(session, event))

    async def _handle(self, session: PlaybackSession, event: Event) -> None:
        async with session.lock:
            if session.closed:
                return

            if isinstance(event, (TrackFinished, TrackErrored)):
                if event.attempt != session.attempt or not session.playing:
                    return
                force = session.force_advance
                if isinstance(event, TrackErrored):
                    log.error("Guild %s: playback error on %r: %s",
                              session.guild_id, session.current.title, event.error)
                    playback_errors_total.inc()
                    force = True
                session.force_advance = False
                await self._advance(session, force=force)

            elif isinstance(event, TimerExpired):
                if event.timer is session.retry_timer:
                    session.retry_timer = None
                    if session.loading is not None:
                        self._spawn(self._load(session, session.loading, session.attempt))
                elif event.timer is session.idle_timer:
                    session.idle_timer = None
                    log.info("Guild %s: idle timeout expired", session.guild_id)
                    await self._destroy(session, reason="idle", notice=NoticeKind.IDLE_DISCONNECT)

            elif isinstance(event, TransportDisconnected):
                await self._destroy(session, reason="disconnected", notice=NoticeKind.CONNECTION_LOST)

    # ── helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _stale(session: PlaybackSession, attempt: int) -> bool:
        return session.closed or attempt != session.attempt or session.loading is None

    def _cancel_attempt(self, session: PlaybackSession) -> None:
        session.attempt += 1
        session.loading = None
        if session.retry_timer is not None:
            session.retry_timer.cancel()
            session.retry_timer = None

    def _arm_idle(self, session: PlaybackSession) -> None:
        self._disarm_idle(session)
        session.idle_timer = DelayedTask(self.idle_timeout, self._timer_callback(session))

    @staticmethod
    def _disarm_idle(session: PlaybackSession) -> None:
        if session.idle_timer is not None:
            session.idle_timer.cancel()
            session.idle_timer = None

    async def _destroy(
        self,
        session: PlaybackSession,
        *,
        reason: str,
        notice: NoticeKind | None = None,
    ) -> None:
        """Release the transport and drop the session. Caller holds the lock."""
        session.closed = True
        self._cancel_attempt(session)
        self._disarm_idle(session)
        session.clear()

        try:
            if session.transport is not None:
                session.transport.stop()
                await session.transport.disconnect()
        finally:
            self._forget(session)
        log.info("Destroyed playback session for guild %s (%s)", session.guild_id, reason)
        if notice is not None:
            await self._notify(session, Notice(notice, session.guild_id))

    def _forget(self, session: PlaybackSession) -> None:
        session.closed = True
        if self._sessions.get(session.guild_id) is session:
            del self._sessions[session.guild_id]
            active_sessions.dec()
            try:
                queue_size.remove(str(session.guild_id))
            except KeyError:
                pass

    @staticmethod
    def _publish(session: PlaybackSession) -> None:
        queue_size.labels(guild_id=str(session.guild_id)).set(len(session.pending))

    async def _notify(self, session: PlaybackSession, notice: Notice) -> None:
        if self._notifier is None:
            return
        await self._notifier.notify(session.announce_channel_id, notice)

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("Playback task failed", exc_info=exc)
