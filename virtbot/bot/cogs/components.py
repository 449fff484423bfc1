"""Routes clicks on persistent VM control buttons by custom id prefix."""

from __future__ import annotations

import logging
from typing import Any

import discord
from discord.ext import commands

from virtbot.bot.common import error_text, find_panel, interaction_log_fields
from virtbot.logging import log_context, new_correlation_id
from virtbot.monitor.views import MONITOR_STOP_PREFIX, RESTART_PREFIX, START_PREFIX, STOP_PREFIX
from virtbot.providers.models import VMAction

logger = logging.getLogger("virtbot.bot.components")

POWER_PREFIXES = (
    (START_PREFIX, "start"),
    (STOP_PREFIX, "stop"),
    (RESTART_PREFIX, "restart"),
)


def parse_custom_id(custom_id: str) -> tuple[str, str] | None:
    """Split a control button id into ``(verb, vm_id)``; ``None`` if it is not ours."""
    if custom_id.startswith(MONITOR_STOP_PREFIX):
        return "monitor-stop", custom_id[len(MONITOR_STOP_PREFIX) :]
    for prefix, verb in POWER_PREFIXES:
        if custom_id.startswith(prefix):
            return verb, custom_id[len(prefix) :]
    return None


class ComponentsCog(commands.Cog):
    def __init__(self, bot: Any) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type != discord.InteractionType.component:
            return
        parsed = parse_custom_id(str((interaction.data or {}).get("custom_id", "")))
        if parsed is None:
            return
        verb, vm_id = parsed

        fields = interaction_log_fields(interaction)
        with log_context(correlation_id=new_correlation_id(), vm_id=vm_id, button=verb, **fields):
            try:
                if verb == "monitor-stop":
                    await self.handle_monitor_stop(interaction, vm_id)
                else:
                    await self.handle_power(interaction, verb, vm_id)
            except Exception:
                logger.exception("Error in VM button handler")
                await self._followup(interaction, "❌ Internal error.")

    async def _followup(self, interaction: discord.Interaction, content: str) -> None:
        try:
            if interaction.response.is_done():
                await interaction.followup.send(content, ephemeral=True)
            else:
                await interaction.response.send_message(content, ephemeral=True)
        except discord.HTTPException:
            logger.warning("Could not deliver button feedback", exc_info=True)

    async def handle_power(self, interaction: discord.Interaction, verb: str, vm_id: str) -> None:
        await interaction.response.defer()
        manager = self.bot.manager

        panel_id = await find_panel(manager, self.bot.monitor, interaction, vm_id)
        if panel_id is None:
            await self._followup(interaction, f"❌ Could not determine the panel for VM {vm_id}.")
            return

        entry = self.bot.monitor.get_monitor_by_message_id(str(interaction.message.id))
        guild_id = entry.guild_id if entry else None
        if guild_id is None and interaction.guild_id is not None:
            guild_id = str(interaction.guild_id)
        result = await manager.execute_vm_action(
            panel_id,
            VMAction(type=verb, vm_id=vm_id),
            str(interaction.user.id),
            guild_id=guild_id,
        )
        if not result.success:
            await self._followup(interaction, error_text(f"Failed to {verb} VM", result.error))

    async def handle_monitor_stop(self, interaction: discord.Interaction, vm_id: str) -> None:
        await interaction.response.defer()
        message_id = str(interaction.message.id)
        await self.bot.monitor.remove_monitor(message_id)
        logger.info(
            "Monitor closed from its message",
            extra={"event": "monitor_closed", "message_id": message_id, "vm_id": vm_id},
        )
        try:
            await interaction.message.delete()
        except discord.HTTPException:
            logger.debug("Monitor message already gone", extra={"message_id": message_id})


__all__ = ["ComponentsCog", "parse_custom_id"]
