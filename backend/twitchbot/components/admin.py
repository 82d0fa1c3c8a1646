"""Broadcaster commands: !reloadcommands, !bot mute|unmute."""

import logging
from typing import TYPE_CHECKING

from twitchio.ext import commands

from shared.models.chat_command import AccessLevel

if TYPE_CHECKING:
    from twitchbot.core.bot import Bot

LOGGER = logging.getLogger("AdminComponent")


class AdminComponent(commands.Component):
    def __init__(self, bot: commands.Bot) -> None:
        self.bot: Bot = bot  # type: ignore[assignment]

    def _is_broadcaster(self, ctx: commands.Context["Bot"]) -> bool:
        return self.bot.access.level_for(ctx.chatter) >= AccessLevel.BROADCASTER

    @commands.command(name="reloadcommands")
    async def reload_commands(self, ctx: commands.Context["Bot"]) -> None:
        """Reload chat commands, channel state and regulars from the database.

        Usage: !reloadcommands
        """
        if not self._is_broadcaster(ctx):
            return

        try:
            await self.bot.reload_all()
        except Exception as e:
            LOGGER.exception(f"Manual reload failed: {e}")
            await ctx.send(f"@{ctx.chatter.name} Reload failed, check the logs.")
            return

        await ctx.send(f"@{ctx.chatter.name} Commands and regulars reloaded!")
        LOGGER.info(f"Commands reloaded by {ctx.chatter.name} in {ctx.channel.name}")

    @commands.command(name="bot")
    async def bot_control(self, ctx: commands.Context["Bot"], action: str | None = None) -> None:
        """Mute or unmute the bot in this channel.

        Usage: !bot mute, !bot unmute
        """
        if not self._is_broadcaster(ctx):
            return

        action = (action or "").lower()
        if action not in ("mute", "unmute"):
            await ctx.send(f"@{ctx.chatter.name} Usage: !bot mute|unmute")
            return

        muted = action == "mute"
        channel_name = ctx.channel.name or ""
        try:
            await self.bot.set_channel_muted(channel_name, str(ctx.channel.id), muted)
        except Exception as e:
            LOGGER.warning(f"Failed to persist mute state for {channel_name}: {type(e).__name__}: {e}")

        await ctx.send(f"@{ctx.chatter.name}, I have been {'muted' if muted else 'unmuted'}.")


async def setup(bot: commands.Bot) -> None:
    await bot.add_component(AdminComponent(bot))
    LOGGER.info("Admin component loaded")


async def teardown(bot: commands.Bot) -> None:
    LOGGER.info("Admin component unloaded")
