from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from dotenv import load_dotenv

from .errors import ConfigError

IDLE_TIMEOUT = 300.0  # 5 minutes of inactivity before leaving
MAX_RETRIES = 2
RETRY_DELAY = 1.0
RECONNECT_GRACE = 5.0


def _number(env: Mapping[str, str], name: str, default: float, cast=float):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return cast(default)
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {raw!r}")
    return value


def _port(env: Mapping[str, str], name: str, default: int | None) -> int | None:
    raw = env.get(name)
    if raw is None:
        return default
    if raw.strip() == "":
        return None
    try:
        port = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a port number, got {raw!r}") from None
    if not 0 < port < 65536:
        raise ConfigError(f"{name} out of range: {port}")
    return port


@dataclass
class Settings:
    token: str
    prefix: str = "%"
    idle_timeout: float = IDLE_TIMEOUT
    max_retries: int = MAX_RETRIES
    retry_delay: float = RETRY_DELAY
    reconnect_grace: float = RECONNECT_GRACE
    web_port: int | None = 5000
    metrics_port: int | None = None
    ytdl_cookiefile: str | None = None
    default_activity: str = "music | %help"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``env`` (defaults to os.environ after loading .env)."""
        if env is None:
            load_dotenv()
            env = os.environ

        token = env.get("DISCORD_BOT_TOKEN", "").strip()
        if not token:
            raise ConfigError("DISCORD_BOT_TOKEN is not set")

        prefix = env.get("COMMAND_PREFIX", "%").strip() or "%"
        return cls(
            token=token,
            prefix=prefix,
            idle_timeout=_number(env, "IDLE_TIMEOUT", IDLE_TIMEOUT),
            max_retries=_number(env, "MAX_RETRIES", MAX_RETRIES, int),
            retry_delay=_number(env, "RETRY_DELAY", RETRY_DELAY),
            reconnect_grace=_number(env, "RECONNECT_GRACE", RECONNECT_GRACE),
            web_port=_port(env, "WEB_PORT", 5000),
            metrics_port=_port(env, "METRICS_PORT", None),
            ytdl_cookiefile=env.get("YTDL_COOKIEFILE") or None,
            default_activity=env.get("DEFAULT_ACTIVITY") or f"music | {prefix}help",
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )
