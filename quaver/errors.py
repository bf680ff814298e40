"""Error taxonomy for Quaver.

Command-level rejections carry the locale key of the single notice the
command layer shows for them.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .audio_source import Track


class QuaverError(Exception):
    """Base class for every error raised by the playback core."""


class ConfigError(QuaverError):
    pass


class CommandRejected(QuaverError):
    """A command whose precondition does not hold."""

    key = "error_generic"

    def __init__(self, guild_id: int | None = None) -> None:
        super().__init__(self.key)
        self.guild_id = guild_id


class NotInVoice(CommandRejected):
    key = "error_not_in_voice"


class NotPlaying(CommandRejected):
    key = "error_not_playing"


class AlreadyPaused(NotPlaying):
    key = "error_already_paused"


class NotPaused(CommandRejected):
    key = "error_not_paused"


class NothingActive(CommandRejected):
    key = "error_nothing_active"


class PermissionDenied(CommandRejected):
    key = "error_permission_denied"

    def __init__(self, guild_id: int | None = None, *, missing: str = "") -> None:
        super().__init__(guild_id)
        self.missing = missing


class ResolutionFailed(QuaverError):
    """A track could not be turned into a playable stream. Retried by the advancer."""

    NOT_FOUND = "NotFound"
    RATE_LIMITED = "RateLimited"
    NETWORK_ERROR = "NetworkError"

    def __init__(self, track: Track, reason: str, detail: str = "") -> None:
        super().__init__(f"{reason}: {track.title} ({detail})" if detail else f"{reason}: {track.title}")
        self.track = track
        self.reason = reason
        self.detail = detail


class TransportFatal(QuaverError):
    """The voice connection failed or was lost for good."""
