import logging

import discord
from discord.ext import commands

from quaver.config import Settings
from quaver.errors import ConfigError

log = logging.getLogger("quaver")


class Quaver(commands.AutoShardedBot):
    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        intents.message_content = True
        intents.voice_states = True
        super().__init__(
            command_prefix=settings.prefix,
            intents=intents,
            help_command=None,
        )
        self.settings = settings
        self._web_runner = None

    async def setup_hook(self) -> None:
        from quaver.i18n import load_locales
        load_locales()

        await self.load_extension("cogs.music_cog")
        await self.tree.sync()
        log.info("Command tree synced.")

        if self.settings.metrics_port:
            from quaver.metrics import start_metrics_server
            try:
                start_metrics_server(self.settings.metrics_port)
            except OSError as exc:
                log.warning("Failed to start metrics server: %s", exc)
            else:
                log.info("Prometheus metrics server started on :%s", self.settings.metrics_port)

        if self.settings.web_port:
            from web.app import start_web_server
            try:
                self._web_runner = await start_web_server(
                    self, self.settings.web_port, self.settings.prefix
                )
            except OSError as exc:
                log.warning("Failed to start web server: %s", exc)
            else:
                log.info("Web server running on port %s", self.settings.web_port)

    async def on_ready(self) -> None:
        log.info("Logged in as %s (ID: %s) — %d guilds, %s shard(s)",
                 self.user, self.user.id, len(self.guilds),
                 self.shard_count or 1)
        activity = discord.Activity(
            type=discord.ActivityType.listening,
            name=self.settings.default_activity,
        )
        await self.change_presence(activity=activity)

    async def on_command_error(self, ctx: commands.Context, error: commands.CommandError) -> None:
        if isinstance(error, commands.CommandNotFound):
            return
        await super().on_command_error(ctx, error)

    async def close(self) -> None:
        cog = self.get_cog("MusicCog")
        if cog is not None:
            await cog.playback.shutdown()  # type: ignore[attr-defined]
        if self._web_runner is not None:
            await self._web_runner.cleanup()
        await super().close()


def main() -> None:
    try:
        settings = Settings.from_env()
    except ConfigError as exc:
        raise SystemExit(f"Configuration error: {exc}") from None

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    bot = Quaver(settings)
    bot.run(settings.token, log_handler=None)


if __name__ == "__main__":
    main()
