from __future__ import annotations

import logging
from typing import Optional

import discord
from discord.ext import commands

from quaver.audio_source import AudioResolver, Track
from quaver.errors import (
    CommandRejected,
    NotInVoice,
    NotPlaying,
    PermissionDenied,
    TransportFatal,
)
from quaver.i18n import DEFAULT_LOCALE, pick_locale, t
from quaver.manager import EnqueueResult, PlaybackManager
from quaver.notices import Notice, NoticeKind
from quaver.session import Snapshot
from quaver.transport import VoiceTransport

log = logging.getLogger(__name__)

QUEUE_PAGE = 10
ACTIVITY_MAX = 128

# (command, catalog key of its one-line description)
MUSIC_COMMANDS = [
    ("play <song>", "help_play"),
    ("skip", "help_skip"),
    ("stop", "help_stop"),
    ("pause", "help_pause"),
    ("resume", "help_resume"),
    ("queue", "help_queue"),
    ("nowplaying", "help_nowplaying"),
    ("loop", "help_loop"),
]
OTHER_COMMANDS = [
    ("help", "help_help"),
    ("setactivity <text>", "help_setactivity"),
]


def format_duration(seconds: int | None) -> str:
    if seconds is None:
        return "LIVE"
    m, s = divmod(max(0, int(seconds)), 60)
    h, m = divmod(m, 60)
    if h:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m}:{s:02d}"


def progress_bar(elapsed: int, total: int | None, length: int = 20) -> str:
    if not total:
        return "▬" * length
    filled = round(length * min(elapsed / total, 1.0))
    return "▬" * filled + "🔘" + "▬" * max(0, length - filled - 1)


def _embed(title: str, description: str | None = None, *, color: discord.Color) -> discord.Embed:
    return discord.Embed(
        title=title,
        description=description,
        color=color,
        timestamp=discord.utils.utcnow(),
    )


def error_embed(key: str, locale: str = DEFAULT_LOCALE, **kwargs) -> discord.Embed:
    return _embed(t(f"{key}_title", locale), t(key, locale, **kwargs), color=discord.Color.red())


def rejection_embed(error: CommandRejected, locale: str = DEFAULT_LOCALE) -> discord.Embed:
    embed = error_embed(error.key, locale)
    if isinstance(error, PermissionDenied) and error.missing:
        embed.description = t("error_missing_voice_permissions", locale, missing=error.missing)
    return embed


def framework_error_embed(error: commands.CommandError, locale: str = DEFAULT_LOCALE) -> discord.Embed:
    """Embed for discord.py's own check and argument failures."""
    if isinstance(error, commands.NoPrivateMessage):
        return error_embed("error_guild_only", locale)
    if isinstance(error, commands.CheckFailure):
        return error_embed("error_permission_denied", locale)
    return error_embed("error_bad_input", locale, detail=str(error))


def track_link(track: Track) -> str:
    return f"**[{track.title}]({track.url})**"


def _requester(track: Track, locale: str) -> str:
    return track.requester or t("unknown_requester", locale)


def _add_track_fields(embed: discord.Embed, track: Track, locale: str) -> None:
    embed.add_field(name=t("field_duration", locale), value=format_duration(track.duration), inline=True)
    embed.add_field(name=t("field_requested_by", locale), value=_requester(track, locale), inline=True)
    if track.thumbnail:
        embed.set_thumbnail(url=track.thumbnail)


def enqueue_embed(result: EnqueueResult, pending: int, locale: str = DEFAULT_LOCALE) -> discord.Embed:
    track = result.track
    if result.now_playing:
        embed = _embed(t("loading_title", locale), track_link(track), color=discord.Color.blue())
        _add_track_fields(embed, track, locale)
    else:
        embed = _embed(t("queued_title", locale), track_link(track), color=discord.Color.blue())
        embed.add_field(name=t("field_duration", locale), value=format_duration(track.duration), inline=True)
        embed.add_field(name=t("field_position", locale), value=f"#{result.position}", inline=True)
        embed.add_field(name=t("field_requested_by", locale), value=_requester(track, locale), inline=True)
        if track.thumbnail:
            embed.set_thumbnail(url=track.thumbnail)
    embed.set_footer(text=t("queue_count_footer", locale, count=pending))
    return embed


def notice_embed(notice: Notice, *, idle_timeout: float = 300, locale: str = DEFAULT_LOCALE) -> discord.Embed:
    """Render a playback notice from the manager."""
    kind = notice.kind
    if kind == NoticeKind.NOW_PLAYING:
        track = notice.track
        embed = _embed(t("now_playing_title", locale), track_link(track), color=discord.Color.green())
        _add_track_fields(embed, track, locale)
        loop = notice.loop_mode.label() if notice.loop_mode else "Off"
        embed.set_footer(text=t("now_playing_footer", locale, loop=loop, count=notice.pending))
        return embed
    if kind == NoticeKind.TRACK_FAILED:
        return _embed(
            t("track_failed_title", locale),
            t("track_failed", locale, title=notice.track.title if notice.track else "?"),
            color=discord.Color.red(),
        )
    if kind == NoticeKind.QUEUE_EMPTY:
        minutes = max(1, round(idle_timeout / 60))
        return _embed(
            t("queue_finished_title", locale),
            t("queue_finished", locale, minutes=minutes),
            color=discord.Color.blue(),
        )
    if kind == NoticeKind.IDLE_DISCONNECT:
        return _embed(t("idle_disconnect_title", locale), t("idle_disconnect", locale), color=discord.Color.orange())
    return _embed(t("connection_lost_title", locale), t("connection_lost", locale), color=discord.Color.red())


def queue_embed(snap: Snapshot, locale: str = DEFAULT_LOCALE) -> discord.Embed:
    embed = _embed(t("queue_title", locale), color=discord.Color.blue())
    if snap.current:
        track = snap.current
        embed.add_field(
            name=t("paused_now_playing_title" if snap.paused else "now_playing_title", locale),
            value=(
                f"{track_link(track)}\n"
                f"{t('field_duration', locale)}: {format_duration(track.duration)} | "
                f"{t('field_requested_by', locale)}: {_requester(track, locale)}"
            ),
            inline=False,
        )
    elif snap.loading:
        embed.add_field(name=t("queue_loading", locale), value=track_link(snap.loading), inline=False)

    if snap.pending:
        lines = [
            f"**{i + 1}.** [{track.title}]({track.url})\n"
            f"{t('field_duration', locale)}: {format_duration(track.duration)} | "
            f"{t('field_requested_by', locale)}: {_requester(track, locale)}"
            for i, track in enumerate(snap.pending[:QUEUE_PAGE])
        ]
        value = "\n\n".join(lines)
        if len(value) > 1024:
            value = value[:1020] + "\n…"
        embed.add_field(name=t("up_next", locale, count=len(snap.pending)), value=value, inline=False)
        if len(snap.pending) > QUEUE_PAGE:
            embed.set_footer(text=t("and_more", locale, count=len(snap.pending) - QUEUE_PAGE))

    embed.add_field(
        name=t("settings", locale),
        value=t("settings_loop", locale, loop=snap.loop_mode.label()),
        inline=False,
    )
    return embed


def nowplaying_embed(snap: Snapshot, locale: str = DEFAULT_LOCALE) -> discord.Embed:
    track = snap.current
    title = t("paused_now_playing_title" if snap.paused else "now_playing_title", locale)
    embed = _embed(title, track_link(track), color=discord.Color.blue())
    embed.add_field(
        name=t("field_progress", locale),
        value=(
            f"{progress_bar(snap.elapsed, track.duration)}\n"
            f"{format_duration(snap.elapsed)} / {format_duration(track.duration)}"
        ),
        inline=False,
    )
    embed.add_field(name=t("field_requested_by", locale), value=_requester(track, locale), inline=True)
    embed.add_field(name=t("field_loop", locale), value=snap.loop_mode.label(), inline=True)
    if track.thumbnail:
        embed.set_thumbnail(url=track.thumbnail)
    embed.set_footer(text=t("queue_count_footer", locale, count=len(snap.pending)))
    return embed


def help_embed(prefix: str, locale: str = DEFAULT_LOCALE) -> discord.Embed:
    def listing(entries):
        return "\n".join(f"`{prefix}{usage}` - {t(key, locale)}" for usage, key in entries)

    embed = _embed(t("help_title", locale), t("help_description", locale), color=discord.Color.blue())
    embed.add_field(name=t("help_music", locale), value=listing(MUSIC_COMMANDS), inline=False)
    embed.add_field(name=t("help_other", locale), value=listing(OTHER_COMMANDS), inline=False)
    embed.set_footer(text=t("help_footer", locale, prefix=prefix))
    return embed


def context_locale(ctx: commands.Context) -> str:
    """The invoking user's client language for slash commands, else the guild's."""
    interaction = ctx.interaction
    guild = ctx.guild
    return pick_locale(
        interaction.locale if interaction is not None else None,
        guild.preferred_locale if guild is not None else None,
    )


class MusicCog(commands.Cog):
    """Routes chat commands into the playback manager and renders its notices."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot
        self.settings = bot.settings  # type: ignore[attr-defined]
        self.resolver = AudioResolver(cookiefile=self.settings.ytdl_cookiefile)
        self.playback = PlaybackManager(
            self.resolver,
            VoiceTransport.connect,
            self,
            max_retries=self.settings.max_retries,
            retry_delay=self.settings.retry_delay,
            idle_timeout=self.settings.idle_timeout,
            reconnect_grace=self.settings.reconnect_grace,
        )

    async def cog_unload(self) -> None:
        await self.playback.shutdown()

    # ── notifier ─────────────────────────────────────────────────────────

    async def notify(self, channel_id: int | None, notice: Notice) -> None:
        """Post a playback notice to the guild's announce channel, best-effort."""
        if channel_id is None:
            return
        channel = self.bot.get_channel(channel_id)
        if channel is None or not hasattr(channel, "send"):
            return
        guild = self.bot.get_guild(notice.guild_id)
        locale = pick_locale(guild.preferred_locale if guild is not None else None)
        embed = notice_embed(notice, idle_timeout=self.settings.idle_timeout, locale=locale)
        try:
            await channel.send(embed=embed)  # type: ignore[union-attr]
        except discord.HTTPException as exc:
            log.warning("Could not deliver %s notice to channel %s: %s", notice.kind.name, channel_id, exc)

    # ── helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _require_voice(ctx: commands.Context) -> discord.VoiceState:
        voice: Optional[discord.VoiceState] = getattr(ctx.author, "voice", None)
        if voice is None or voice.channel is None:
            raise NotInVoice(ctx.guild.id if ctx.guild else None)
        return voice

    @staticmethod
    def _check_voice_permissions(ctx: commands.Context, channel: discord.abc.GuildChannel) -> None:
        perms = channel.permissions_for(ctx.guild.me)  # type: ignore[union-attr]
        missing = [name for name, ok in (("Connect", perms.connect), ("Speak", perms.speak)) if not ok]
        if missing:
            raise PermissionDenied(ctx.guild.id, missing=" and ".join(missing))  # type: ignore[union-attr]

    # ── commands ─────────────────────────────────────────────────────────

    @commands.hybrid_command(name="play", aliases=["p"], description="Play a song or add it to the queue")
    @commands.guild_only()
    async def play(self, ctx: commands.Context, *, query: str = "") -> None:
        locale = context_locale(ctx)
        voice = self._require_voice(ctx)
        if not query.strip():
            await ctx.reply(embed=error_embed("usage_play", locale, prefix=self.settings.prefix))
            return
        if ctx.guild.id not in self.playback:  # type: ignore[union-attr]
            self._check_voice_permissions(ctx, voice.channel)  # type: ignore[arg-type]

        # Every outcome below edits this one reply.
        msg = await ctx.reply(embed=_embed(t("searching", locale), color=discord.Color.yellow()))
        try:
            track = await self.resolver.search(query, requester=str(ctx.author))
        except Exception:
            log.exception("Search for %r failed", query)
            await msg.edit(embed=error_embed("error_generic", locale))
            return
        if track is None:
            await msg.edit(embed=error_embed("not_found", locale))
            return

        try:
            result = await self.playback.enqueue(
                ctx.guild.id, track, ctx.channel.id, voice.channel  # type: ignore[union-attr]
            )
        except TransportFatal as exc:
            log.error("Could not join voice in guild %s: %s", ctx.guild.id, exc)  # type: ignore[union-attr]
            await msg.edit(embed=error_embed("connect_failed", locale))
            return
        except Exception:
            log.exception("Could not queue %r in guild %s", track.title, ctx.guild.id)  # type: ignore[union-attr]
            await msg.edit(embed=error_embed("error_generic", locale))
            return

        pending = len(self.playback.snapshot(ctx.guild.id).pending)  # type: ignore[union-attr]
        await msg.edit(embed=enqueue_embed(result, pending, locale))

    @commands.hybrid_command(name="skip", aliases=["s"], description="Skip the current song")
    @commands.guild_only()
    async def skip(self, ctx: commands.Context) -> None:
        self._require_voice(ctx)
        skipped = await self.playback.skip(ctx.guild.id)  # type: ignore[union-attr]
        await ctx.reply(embed=_embed(
            t("skipped_title", context_locale(ctx)), f"**{skipped.title}**", color=discord.Color.green()
        ))

    @commands.hybrid_command(name="stop", description="Stop playback and clear the queue")
    @commands.guild_only()
    async def stop(self, ctx: commands.Context) -> None:
        self._require_voice(ctx)
        await self.playback.stop(ctx.guild.id)  # type: ignore[union-attr]
        locale = context_locale(ctx)
        await ctx.reply(embed=_embed(t("stopped_title", locale), t("stopped", locale), color=discord.Color.green()))

    @commands.hybrid_command(name="pause", description="Pause the current song")
    @commands.guild_only()
    async def pause(self, ctx: commands.Context) -> None:
        self._require_voice(ctx)
        track = await self.playback.pause(ctx.guild.id)  # type: ignore[union-attr]
        await ctx.reply(embed=_embed(
            t("paused_title", context_locale(ctx)), f"**{track.title}**", color=discord.Color.green()
        ))

    @commands.hybrid_command(name="resume", aliases=["r"], description="Resume playback")
    @commands.guild_only()
    async def resume(self, ctx: commands.Context) -> None:
        self._require_voice(ctx)
        track = await self.playback.resume(ctx.guild.id)  # type: ignore[union-attr]
        await ctx.reply(embed=_embed(
            t("resumed_title", context_locale(ctx)), f"**{track.title}**", color=discord.Color.green()
        ))

    @commands.hybrid_command(name="queue", aliases=["q"], description="Show the current queue")
    @commands.guild_only()
    async def queue(self, ctx: commands.Context) -> None:
        locale = context_locale(ctx)
        snap = self.playback.snapshot(ctx.guild.id)  # type: ignore[union-attr]
        if snap.current is None and snap.loading is None and not snap.pending:
            await ctx.reply(embed=error_embed("queue_empty", locale, prefix=self.settings.prefix))
            return
        await ctx.reply(embed=queue_embed(snap, locale))

    @commands.hybrid_command(name="nowplaying", aliases=["np"], description="Show the current song with progress")
    @commands.guild_only()
    async def nowplaying(self, ctx: commands.Context) -> None:
        snap = self.playback.snapshot(ctx.guild.id)  # type: ignore[union-attr]
        if snap.current is None:
            raise NotPlaying(ctx.guild.id)  # type: ignore[union-attr]
        await ctx.reply(embed=nowplaying_embed(snap, context_locale(ctx)))

    @commands.hybrid_command(name="loop", aliases=["l"], description="Cycle loop mode: Off → Track → Queue")
    @commands.guild_only()
    async def loop(self, ctx: commands.Context) -> None:
        snap = self.playback.snapshot(ctx.guild.id)  # type: ignore[union-attr]
        if snap.current is None and snap.loading is None:
            raise NotPlaying(ctx.guild.id)  # type: ignore[union-attr]
        mode = await self.playback.cycle_loop_mode(ctx.guild.id)  # type: ignore[union-attr]
        locale = context_locale(ctx)
        await ctx.reply(embed=_embed(
            t("loop_changed_title", locale), t("loop_changed", locale, mode=mode.label()),
            color=discord.Color.green(),
        ))

    @commands.hybrid_command(name="help", aliases=["h"], description="Show all commands")
    async def help(self, ctx: commands.Context) -> None:
        await ctx.reply(embed=help_embed(self.settings.prefix, context_locale(ctx)))

    @commands.hybrid_command(name="setactivity", description="Set the bot's status text (admin only)")
    @commands.guild_only()
    async def setactivity(self, ctx: commands.Context, *, text: str = "") -> None:
        perms = getattr(ctx.author, "guild_permissions", None)
        if perms is None or not perms.administrator:
            raise PermissionDenied(ctx.guild.id)  # type: ignore[union-attr]
        locale = context_locale(ctx)
        if not text.strip():
            await ctx.reply(embed=error_embed("usage_activity", locale, prefix=self.settings.prefix))
            return
        text = text.strip()[:ACTIVITY_MAX]
        await self.bot.change_presence(activity=discord.Game(name=text))
        log.info("Activity set to %r by %s", text, ctx.author)
        await ctx.reply(embed=_embed(
            t("activity_updated_title", locale), t("activity_updated", locale, text=text),
            color=discord.Color.green(),
        ))

    # ── errors & listeners ───────────────────────────────────────────────

    async def cog_command_error(self, ctx: commands.Context, error: commands.CommandError) -> None:
        locale = context_locale(ctx)
        expected = (CommandRejected, commands.CheckFailure, commands.UserInputError)
        original: BaseException = error
        while not isinstance(original, expected) and getattr(original, "original", None) is not None:
            original = original.original  # type: ignore[attr-defined]

        if isinstance(original, CommandRejected):
            log.debug("Rejected %s in guild %s: %s", ctx.command, ctx.guild and ctx.guild.id, type(original).__name__)
            embed = rejection_embed(original, locale)
        elif isinstance(original, (commands.CheckFailure, commands.UserInputError)):
            log.debug("Refused %s: %s", ctx.command, original)
            embed = framework_error_embed(original, locale)
        else:
            log.error("Command %s failed", ctx.command, exc_info=original)
            embed = error_embed("error_generic", locale)
        try:
            await ctx.reply(embed=embed)
        except discord.HTTPException as exc:
            log.warning("Could not report command error: %s", exc)

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        """Hand a lost voice connection of our own to the manager."""
        if self.bot.user is None or member.id != self.bot.user.id:
            return
        if before.channel is not None and after.channel is None and member.guild.id in self.playback:
            await self.playback.transport_lost(member.guild.id)


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(MusicCog(bot))
