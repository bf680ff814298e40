"""Keep-alive status server for Quaver.

Shares the bot process and reads playback state straight from MusicCog.
Started from the bot's setup_hook when WEB_PORT is set (default 5000).
"""
from __future__ import annotations

import html
import logging
import time
from typing import TYPE_CHECKING

import aiohttp.web as web

if TYPE_CHECKING:
    from discord.ext import commands

    from quaver.audio_source import Track

log = logging.getLogger(__name__)

routes = web.RouteTableDef()

_PAGE = """<!DOCTYPE html>
<html>
<head>
  <title>Quaver</title>
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <style>
    * {{ margin: 0; padding: 0; box-sizing: border-box; }}
    body {{
      font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
      background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);
      min-height: 100vh; display: flex; align-items: center; justify-content: center; padding: 20px;
    }}
    .container {{
      background: white; border-radius: 20px; padding: 40px;
      box-shadow: 0 20px 60px rgba(0,0,0,0.3); max-width: 600px; width: 100%;
    }}
    h1 {{ color: #5865F2; margin-bottom: 10px; font-size: 2em; }}
    .status {{
      display: inline-block; padding: 5px 15px; border-radius: 20px;
      font-size: 0.9em; font-weight: 600; margin-bottom: 30px; color: white;
    }}
    .status.online {{ background: #43b581; }}
    .status.offline {{ background: #f04747; }}
    .info-grid {{
      display: grid; grid-template-columns: repeat(auto-fit, minmax(150px, 1fr));
      gap: 20px; margin-bottom: 30px;
    }}
    .info-card {{ background: #f7f7f7; padding: 20px; border-radius: 10px; text-align: center; }}
    .info-card h3 {{
      color: #666; font-size: 0.9em; margin-bottom: 10px;
      text-transform: uppercase; letter-spacing: 1px;
    }}
    .info-card p {{ color: #333; font-size: 1.5em; font-weight: 600; }}
    .commands {{ background: #f7f7f7; padding: 20px; border-radius: 10px; margin-top: 20px; }}
    .commands h2 {{ color: #333; margin-bottom: 15px; font-size: 1.2em; }}
    .command {{
      background: white; padding: 10px 15px; border-radius: 5px; margin-bottom: 8px;
      font-family: 'Courier New', monospace; color: #5865F2;
    }}
    .footer {{ text-align: center; margin-top: 30px; color: #666; font-size: 0.9em; }}
  </style>
</head>
<body>
  <div class="container">
    <h1>🎵 Quaver</h1>
    <div class="status {status_class}">{status}</div>
    <div class="info-grid">
      <div class="info-card"><h3>Bot Name</h3><p>{bot_name}</p></div>
      <div class="info-card"><h3>Servers</h3><p>{servers}</p></div>
      <div class="info-card"><h3>Uptime</h3><p>{uptime}</p></div>
      <div class="info-card"><h3>Active Queues</h3><p>{active}</p></div>
    </div>
    <div class="commands">
      <h2>Quick Commands</h2>
      <div class="command">{prefix}play &lt;song&gt; - Play music</div>
      <div class="command">{prefix}queue - Show queue</div>
      <div class="command">{prefix}skip - Skip song</div>
      <div class="command">{prefix}help - All commands</div>
    </div>
    <div class="footer">Music bot powered by discord.py • Prefix: {prefix}</div>
  </div>
</body>
</html>
"""


def format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}h {minutes}m {secs}s"


def _uptime(request: web.Request) -> float:
    return time.monotonic() - request.app["started_at"]


def _active_sessions(bot: commands.Bot) -> int:
    cog = bot.get_cog("MusicCog")
    return len(cog.playback) if cog is not None else 0  # type: ignore[attr-defined]


def _track(t: Track | None) -> dict | None:
    if t is None:
        return None
    return {"title": t.title, "url": t.url, "duration": t.duration,
            "thumbnail": t.thumbnail, "requester": t.requester}


# ── Status page ──────────────────────────────────────────────────────────

@routes.get("/")
async def index(request: web.Request) -> web.Response:
    bot: commands.Bot = request.app["bot"]
    online = bot.user is not None
    page = _PAGE.format(
        status_class="online" if online else "offline",
        status="Online" if online else "Offline",
        bot_name=html.escape(str(bot.user) if online else "Not logged in"),
        servers=len(bot.guilds),
        uptime=format_uptime(_uptime(request)),
        active=_active_sessions(bot),
        prefix=html.escape(request.app["prefix"]),
    )
    return web.Response(text=page, content_type="text/html")


# ── Health ───────────────────────────────────────────────────────────────

@routes.get("/health")
async def health(request: web.Request) -> web.Response:
    bot: commands.Bot = request.app["bot"]
    return web.json_response({
        "status": "ok",
        "uptime": round(_uptime(request), 1),
        "bot": str(bot.user) if bot.user else None,
    })


# ── Queue ────────────────────────────────────────────────────────────────

@routes.get("/api/guilds/{guild_id}/queue")
async def get_queue(request: web.Request) -> web.Response:
    bot: commands.Bot = request.app["bot"]
    cog = bot.get_cog("MusicCog")
    if cog is None:
        raise web.HTTPServiceUnavailable(text="MusicCog not loaded")
    try:
        guild_id = int(request.match_info["guild_id"])
    except ValueError:
        raise web.HTTPBadRequest(text="Invalid guild id") from None

    snap = cog.playback.snapshot(guild_id)  # type: ignore[attr-defined]
    if not snap.active:
        raise web.HTTPNotFound(text="No active session for that guild")

    return web.json_response({
        "current": _track(snap.current),
        "loading": _track(snap.loading),
        "queue": [_track(t) for t in snap.pending],
        "loop_mode": snap.loop_mode.name,
        "playing": snap.playing,
        "paused": snap.paused,
        "elapsed": snap.elapsed,
    })


# ── Server lifecycle ─────────────────────────────────────────────────────

def create_app(bot: commands.Bot, prefix: str = "%") -> web.Application:
    app = web.Application()
    app["bot"] = bot
    app["prefix"] = prefix
    app["started_at"] = time.monotonic()
    app.router.add_routes(routes)
    return app


async def start_web_server(bot: commands.Bot, port: int = 5000, prefix: str = "%") -> web.AppRunner:
    runner = web.AppRunner(create_app(bot, prefix))
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()
    return runner
