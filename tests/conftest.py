"""Shared fakes for the playback tests."""

import asyncio

import pytest

from quaver.audio_source import Track
from quaver.errors import ResolutionFailed, TransportFatal
from quaver.manager import PlaybackManager


def run(coro):
    return asyncio.run(coro)


async def wait_until(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


async def settle(rounds=50):
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_track(name, **kwargs):
    return Track(title=name, url=f"https://www.youtube.com/watch?v={name}", **kwargs)


class FakeSource:
    def __init__(self, track):
        self.track = track
        self.cleaned = False

    def cleanup(self):
        self.cleaned = True


class FakeResolver:
    """Resolves every track unless told to fail it ``failures[url]`` times."""

    def __init__(self, failures=None):
        self.failures = dict(failures or {})
        self.calls = []
        self.gates = {}
        self.sources = []

    def fail_always(self, track):
        self.failures[track.url] = 10**6

    def gate(self, track):
        event = asyncio.Event()
        self.gates[track.url] = event
        return event

    def attempts(self, track):
        return self.calls.count(track.url)

    async def resolve(self, track):
        self.calls.append(track.url)
        gate = self.gates.get(track.url)
        if gate is not None:
            await gate.wait()
        remaining = self.failures.get(track.url, 0)
        if remaining:
            self.failures[track.url] = remaining - 1
            raise ResolutionFailed(track, ResolutionFailed.NETWORK_ERROR, "boom")
        source = FakeSource(track)
        self.sources.append(source)
        return source


class FakeTransport:
    """Stands in for VoiceTransport; ``finish`` simulates a track ending on its own."""

    def __init__(self):
        self.played = []
        self.stops = 0
        self.paused = False
        self.connected = True
        self.disconnected = False
        self._on_end = None

    @property
    def now_playing(self):
        return self.played[-1] if self._on_end is not None else None

    def play(self, source, on_end):
        if self._on_end is not None:
            self.stop()
        self.played.append(source.track)
        self._on_end = on_end

    def _end(self, error=None):
        on_end, self._on_end = self._on_end, None
        self.paused = False
        if on_end is not None:
            on_end(error)

    def finish(self, error=None):
        self._end(error)

    def stop(self):
        self.stops += 1
        self._end()

    def pause(self):
        self.paused = True

    def resume(self):
        self.paused = False

    def is_paused(self):
        return self.paused

    def is_connected(self):
        return self.connected

    async def disconnect(self):
        self.connected = False
        self.disconnected = True


class FakeNotifier:
    def __init__(self):
        self.notices = []

    async def notify(self, channel_id, notice):
        self.notices.append((channel_id, notice))

    def kinds(self):
        return [n.kind for _, n in self.notices]


class Harness:
    """A PlaybackManager wired to in-memory collaborators."""

    def __init__(self, *, connect_error=None, connect_raises=None, **options):
        options.setdefault("retry_delay", 0.001)
        options.setdefault("idle_timeout", 60)
        options.setdefault("reconnect_grace", 0.01)
        self.resolver = FakeResolver()
        self.notifier = FakeNotifier()
        self.transports = []
        self.connect_error = connect_error
        self.connect_raises = connect_raises
        self.manager = PlaybackManager(self.resolver, self.connect, self.notifier, **options)

    async def connect(self, voice_channel):
        if self.connect_error is not None:
            raise TransportFatal(self.connect_error)
        if self.connect_raises is not None:
            raise self.connect_raises
        transport = FakeTransport()
        self.transports.append(transport)
        return transport

    @property
    def transport(self):
        return self.transports[-1]

    async def enqueue(self, track, guild_id=1, channel_id=100):
        return await self.manager.enqueue(guild_id, track, channel_id, object())

    def snapshot(self, guild_id=1):
        return self.manager.snapshot(guild_id)

    async def until_playing(self, track, guild_id=1):
        await wait_until(lambda: self.snapshot(guild_id).current is track
                         and self.snapshot(guild_id).playing)


@pytest.fixture
def harness_factory():
    return Harness
