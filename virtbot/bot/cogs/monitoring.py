"""/monitor slash commands that bind live status messages to VMs."""

from __future__ import annotations

import logging
from typing import Any, Optional

import discord
from discord import app_commands
from discord.ext import commands

from virtbot.bot.common import (
    GUILD_ONLY_MESSAGE,
    owned_panel,
    panel_choices,
    reply,
    reply_error,
    vm_choices,
)
from virtbot.monitor.monitor import MonitorEntry
from virtbot.monitor.views import control_view, status_embed

logger = logging.getLogger("virtbot.bot.monitoring")


class MonitoringCog(commands.GroupCog, group_name="monitor", group_description="Live VM status messages"):
    def __init__(self, bot: Any) -> None:
        self.bot = bot
        super().__init__()

    @app_commands.command(name="start", description="Send a user a live status panel for a VM")
    @app_commands.describe(panel="Panel ID", vm_id="VM ID", user="User who receives the panel")
    @app_commands.rename(vm_id="vm-id")
    async def start(
        self,
        interaction: discord.Interaction,
        panel: int,
        vm_id: str,
        user: discord.User,
    ) -> None:
        if interaction.guild_id is None:
            await reply(interaction, GUILD_ONLY_MESSAGE)
            return
        guild_id = str(interaction.guild_id)
        await interaction.response.defer(ephemeral=True, thinking=True)

        if await owned_panel(self.bot.manager, interaction, panel) is None:
            await reply_error(interaction, "Failed to start monitor", f"no panel with ID {panel} on this server")
            return

        vm_result = await self.bot.manager.get_vm(panel, vm_id)
        if not vm_result.success:
            await reply_error(interaction, f"Failed to get VM {vm_id}", vm_result.error)
            return
        vm = vm_result.data

        try:
            message = await user.send(embed=status_embed(vm), view=control_view(vm))
        except discord.HTTPException as exc:
            await reply_error(interaction, f"Could not send a direct message to {user.display_name}", exc.text or exc)
            return

        entry = MonitorEntry(
            guild_id=guild_id,
            channel_id=str(message.channel.id),
            message_id=str(message.id),
            panel_id=panel,
            vm_id=vm_id,
            user_id=str(user.id),
        )
        if not await self.bot.monitor.add_monitor(entry):
            try:
                await message.delete()
            except discord.HTTPException:
                logger.debug("Orphaned monitor message already gone", extra=entry.log_context())
            await reply_error(interaction, "Failed to start monitor", "the monitor could not be saved")
            return

        logger.info(
            "Monitor started by %s",
            interaction.user.id,
            extra={"event": "monitor_started", **entry.log_context()},
        )
        await reply(interaction, f"✅ Live status of **{vm.name}** sent to {user.mention}.")

    @app_commands.command(name="stop", description="Stop every live status panel of a VM")
    @app_commands.describe(vm_id="VM ID", panel="Panel ID; every panel when omitted")
    @app_commands.rename(vm_id="vm-id")
    async def stop(self, interaction: discord.Interaction, vm_id: str, panel: Optional[int] = None) -> None:
        if interaction.guild_id is None:
            await reply(interaction, GUILD_ONLY_MESSAGE)
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        removed = await self.bot.monitor.stop_monitor_for_vm(vm_id, panel)
        if not removed:
            await reply(interaction, f"⚠️ VM {vm_id} has no active monitors.")
            return
        await reply(interaction, f"🗑️ Stopped {removed} monitor(s) for VM {vm_id}.")

    @start.autocomplete("panel")
    @stop.autocomplete("panel")
    async def panel_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> list[app_commands.Choice[int]]:
        return await panel_choices(self.bot.manager, interaction, current)

    @start.autocomplete("vm_id")
    @stop.autocomplete("vm_id")
    async def vm_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> list[app_commands.Choice[str]]:
        return await vm_choices(self.bot.manager, interaction, interaction.namespace.panel, current)


__all__ = ["MonitoringCog"]
