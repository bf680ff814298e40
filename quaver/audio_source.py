from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

import discord
import yt_dlp

from .errors import ResolutionFailed
from .metrics import resolution_seconds
from .url_parser import InputType, classify

log = logging.getLogger(__name__)

YTDL_OPTIONS = {
    "format": "bestaudio[acodec=opus]/bestaudio/best",
    "noplaylist": True,
    "nocheckcertificate": True,
    "ignoreerrors": False,
    "quiet": True,
    "no_warnings": True,
    "default_search": "ytsearch",
    "source_address": "0.0.0.0",
}

FFMPEG_OPTIONS = {
    "before_options": (
        "-reconnect 1 -reconnect_streamed 1 -reconnect_on_network_error 1"
        " -reconnect_on_http_error 5xx -reconnect_delay_max 5"
    ),
    "options": "-vn -ar 48000 -bufsize 64k",
}


@dataclass(frozen=True)
class Track:
    """One queue entry: metadata plus the canonical source URL, never audio bytes."""

    title: str
    url: str
    duration: int | None = None  # seconds, None when unknown (live streams)
    thumbnail: str | None = None
    requester: str = ""


class YTDLSource(discord.PCMVolumeTransformer):
    """Wraps FFmpegPCMAudio with volume control and the track it was built for."""

    def __init__(
        self,
        source: discord.AudioSource,
        *,
        track: Track,
        stream_url: str,
        codec: str = "",
        volume: float = 0.5,
    ) -> None:
        super().__init__(source, volume)
        self.track = track
        self.stream_url = stream_url
        self.codec = codec

    @classmethod
    def from_stream_url(
        cls, stream_url: str, *, track: Track, codec: str = "", volume: float = 0.5
    ) -> YTDLSource:
        source = discord.FFmpegPCMAudio(
            stream_url,
            before_options=FFMPEG_OPTIONS["before_options"],
            options=FFMPEG_OPTIONS["options"],
        )
        return cls(source, track=track, stream_url=stream_url, codec=codec, volume=volume)


def _classify_download_error(exc: Exception) -> str:
    text = str(exc).lower()
    if "429" in text or "too many requests" in text or ("rate" in text and "limit" in text):
        return ResolutionFailed.RATE_LIMITED
    if (
        "unavailable" in text
        or "private video" in text
        or "not found" in text
        or "404" in text
        or "has been removed" in text
    ):
        return ResolutionFailed.NOT_FOUND
    return ResolutionFailed.NETWORK_ERROR


def _track_from_entry(entry: dict, requester: str = "") -> Track:
    duration = entry.get("duration")
    thumbnails = entry.get("thumbnails") or []
    thumbnail = entry.get("thumbnail") or (thumbnails[0].get("url") if thumbnails else None)
    return Track(
        title=entry.get("title") or "Unknown",
        url=entry.get("webpage_url") or entry.get("url", ""),
        duration=int(duration) if duration else None,
        thumbnail=thumbnail,
        requester=requester,
    )


class AudioResolver:
    """Turns queries into track metadata and tracks into playable sources.

    Both operations run the blocking yt-dlp extractor in the default executor
    so that one slow lookup never stalls other guilds.
    """

    def __init__(self, *, cookiefile: str | None = None, volume: float = 0.5) -> None:
        self._options = dict(YTDL_OPTIONS)
        if cookiefile:
            self._options["cookiefile"] = cookiefile
        self.volume = volume

    async def _extract(self, query: str, **overrides) -> dict | None:
        loop = asyncio.get_running_loop()
        ytdl = yt_dlp.YoutubeDL({**self._options, **overrides})
        return await loop.run_in_executor(
            None, lambda: ytdl.extract_info(query, download=False)
        )

    async def search(self, query: str, *, requester: str = "") -> Track | None:
        """Return metadata for a YouTube link or the best search match, or None."""
        input_type, value = classify(query)
        if input_type == InputType.SEARCH_QUERY:
            value = f"ytsearch1:{value}"
        try:
            data = await self._extract(value)
        except yt_dlp.utils.DownloadError as exc:
            reason = _classify_download_error(exc)
            if reason == ResolutionFailed.RATE_LIMITED:
                log.error(
                    "YouTube rate limit hit while searching %r; "
                    "consider setting YTDL_COOKIEFILE", query,
                )
            else:
                log.warning("Search failed for %r: %s", query, exc)
            return None

        if not data:
            return None
        if "entries" in data:
            entries = [e for e in data["entries"] or [] if e]
            if not entries:
                return None
            data = entries[0]
        return _track_from_entry(data, requester)

    async def resolve(self, track: Track) -> YTDLSource:
        """Build a playable source for ``track``; raises ResolutionFailed."""
        started = time.monotonic()
        try:
            data = await self._extract(track.url)
        except yt_dlp.utils.DownloadError as exc:
            raise ResolutionFailed(track, _classify_download_error(exc), str(exc)) from exc
        except OSError as exc:
            raise ResolutionFailed(track, ResolutionFailed.NETWORK_ERROR, str(exc)) from exc
        finally:
            resolution_seconds.observe(time.monotonic() - started)

        if data and "entries" in data:
            entries = [e for e in data["entries"] or [] if e]
            data = entries[0] if entries else None
        if not data or not data.get("url"):
            raise ResolutionFailed(track, ResolutionFailed.NOT_FOUND, "no playable stream")

        return YTDLSource.from_stream_url(
            data["url"], track=track, codec=data.get("acodec") or "", volume=self.volume
        )
