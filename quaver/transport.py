from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

import discord

from .errors import TransportFatal

log = logging.getLogger(__name__)


class VoiceTransport:
    """Owns one guild's voice connection and the source playing on it.

    ``play``'s ``on_end`` runs on discord.py's audio thread; callers are
    expected to hop back onto the event loop themselves.
    """

    def __init__(self, voice_client: discord.VoiceClient) -> None:
        self.voice_client = voice_client

    @classmethod
    async def connect(cls, channel: discord.VoiceChannel) -> VoiceTransport:
        vc: Optional[discord.VoiceClient] = channel.guild.voice_client  # type: ignore[assignment]
        try:
            if vc is None:
                vc = await channel.connect(self_deaf=True)
            elif vc.channel != channel:
                await vc.move_to(channel)
        except (discord.ClientException, discord.HTTPException, asyncio.TimeoutError) as exc:
            raise TransportFatal(f"could not join {channel}: {exc}") from exc
        log.info("Connected to voice channel %s in guild %s", channel.id, channel.guild.id)
        return cls(vc)

    def play(
        self, source: discord.AudioSource, on_end: Callable[[Exception | None], None]
    ) -> None:
        if self.voice_client.is_playing() or self.voice_client.is_paused():
            self.voice_client.stop()
        try:
            self.voice_client.play(source, after=on_end)
        except discord.ClientException as exc:
            raise TransportFatal(f"voice client cannot play: {exc}") from exc

    def pause(self) -> None:
        self.voice_client.pause()

    def resume(self) -> None:
        self.voice_client.resume()

    def stop(self) -> None:
        self.voice_client.stop()

    def is_paused(self) -> bool:
        return self.voice_client.is_paused()

    def is_connected(self) -> bool:
        return self.voice_client.is_connected()

    async def disconnect(self) -> None:
        await self.voice_client.disconnect(force=True)
