"""Prometheus metric definitions for Quaver."""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

tracks_played_total = Counter(
    "quaver_tracks_played_total",
    "Total tracks loaded into a voice connection across all guilds",
)
resolution_attempts_total = Counter(
    "quaver_resolution_attempts_total",
    "Stream resolution attempts, including retries",
)
resolution_failures_total = Counter(
    "quaver_resolution_failures_total",
    "Failed stream resolution attempts",
    ["reason"],
)
tracks_skipped_total = Counter(
    "quaver_tracks_skipped_total",
    "Tracks discarded after exhausting resolution retries",
)
playback_errors_total = Counter(
    "quaver_playback_errors_total",
    "Errors reported by the voice transport while a track was playing",
)
active_sessions = Gauge(
    "quaver_active_sessions",
    "Number of guilds with a live playback session",
)
queue_size = Gauge(
    "quaver_queue_size",
    "Pending tracks per guild",
    ["guild_id"],
)
resolution_seconds = Histogram(
    "quaver_resolution_seconds",
    "Time to resolve a playable stream with yt-dlp",
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)


def start_metrics_server(port: int = 9090) -> None:
    start_http_server(port)
