"""Discord client wiring for the VM management bot."""

from __future__ import annotations

import logging
import os
from typing import Any

import discord
from discord import app_commands
from discord.ext import commands

from virtbot.bot.cogs.components import ComponentsCog
from virtbot.bot.cogs.machines import MachinesCog
from virtbot.bot.cogs.monitoring import MonitoringCog
from virtbot.bot.cogs.panels import PanelsCog
from virtbot.bot.common import error_text, interaction_log_fields, reply
from virtbot.core.config import AppConfig, load_config
from virtbot.logging import bind_log_context, new_correlation_id
from virtbot.manager.virtualization import VirtualizationManager
from virtbot.monitor.monitor import VirtualizationMonitor

logger = logging.getLogger("virtbot.bot")

TOKEN_ENV = "DISCORD_TOKEN"


class VirtBotTree(app_commands.CommandTree):
    """Command tree that tags each invocation with a correlation id and never lets errors escape."""

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        # Bound for the rest of this interaction's task.
        bind_log_context(correlation_id=new_correlation_id(), **interaction_log_fields(interaction))
        return True

    async def on_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        command = interaction.command.qualified_name if interaction.command else "unknown"
        original = getattr(error, "original", error)
        logger.error(
            "Command /%s failed",
            command,
            exc_info=original,
            extra={"event": "command_error", "guild_id": interaction.guild_id},
        )
        try:
            await reply(interaction, error_text("Command failed", original))
        except discord.HTTPException:
            logger.warning("Could not report command failure", exc_info=True)


class VirtBot(commands.Bot):
    """Bot that owns one virtualization manager and one status monitor."""

    def __init__(
        self,
        manager: VirtualizationManager,
        *,
        config: AppConfig | None = None,
        monitor: VirtualizationMonitor | None = None,
        **options: Any,
    ) -> None:
        intents = discord.Intents.default()
        super().__init__(command_prefix=commands.when_mentioned, intents=intents, tree_cls=VirtBotTree, **options)
        self.config = config or load_config()
        self.manager = manager
        self.monitor = monitor or VirtualizationMonitor(self, manager, self.config.monitor.interval_ms)

    async def setup_hook(self) -> None:
        await self.add_cog(MachinesCog(self))
        await self.add_cog(PanelsCog(self))
        await self.add_cog(MonitoringCog(self))
        await self.add_cog(ComponentsCog(self))

        await self.monitor.start()

        guild_id = self.config.discord.sync_guild_id
        if guild_id:
            guild = discord.Object(id=guild_id)
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
        else:
            synced = await self.tree.sync()
        logger.info("Synced %s slash commands", len(synced), extra={"guild_id": guild_id})

    async def on_ready(self) -> None:
        logger.info("Logged in as %s", self.user, extra={"guilds": len(self.guilds)})

    async def close(self) -> None:
        logger.info("Shutting down bot")
        try:
            await self.monitor.stop()
            await self.manager.disconnect_all()
        finally:
            await super().close()


def run_bot(config: AppConfig | None = None) -> None:
    """Run the bot until interrupted; the token comes from ``DISCORD_TOKEN``."""
    token = os.getenv(TOKEN_ENV)
    if not token:
        raise RuntimeError(f"{TOKEN_ENV} is not set")
    config = config or load_config()
    bot = VirtBot(VirtualizationManager(config=config), config=config)
    bot.run(token, log_handler=None)


__all__ = ["VirtBot", "VirtBotTree", "run_bot"]
