import asyncio
from types import SimpleNamespace

import pytest

from quaver.errors import TransportFatal
from quaver.transport import VoiceTransport

from conftest import run


class FakeChannel:
    def __init__(self, error=None):
        self.id = 10
        self.guild = SimpleNamespace(id=1, voice_client=None)
        self.error = error
        self.connects = 0

    async def connect(self, *, self_deaf=False):
        self.connects += 1
        if self.error is not None:
            raise self.error
        return SimpleNamespace(channel=self)


class TestConnect:
    def test_connects_new_client(self):
        channel = FakeChannel()
        transport = run(VoiceTransport.connect(channel))
        assert transport.voice_client.channel is channel
        assert channel.connects == 1

    def test_timeout_becomes_transport_fatal(self):
        """Should report a voice handshake timeout as TransportFatal."""
        with pytest.raises(TransportFatal):
            run(VoiceTransport.connect(FakeChannel(asyncio.TimeoutError())))

    def test_reuses_client_in_same_channel(self):
        channel = FakeChannel()
        existing = SimpleNamespace(channel=channel)
        channel.guild.voice_client = existing
        transport = run(VoiceTransport.connect(channel))
        assert transport.voice_client is existing
        assert channel.connects == 0
