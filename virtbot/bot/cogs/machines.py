"""/vm slash commands: list, status and power actions."""

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
from virtbot.bot.paginator import Paginator
from virtbot.manager.listing import collect_vms
from virtbot.monitor.views import status_embed, vm_list_embed
from virtbot.providers.models import VMAction

logger = logging.getLogger("virtbot.bot.machines")

ACTION_CHOICES = [
    app_commands.Choice(name=label, value=value)
    for value, label in (
        ("start", "Start"),
        ("stop", "Stop"),
        ("restart", "Restart"),
        ("pause", "Pause"),
        ("resume", "Resume"),
        ("reset", "Reset"),
    )
]
LIST_PAGE_SIZE = 5


class MachinesCog(commands.GroupCog, group_name="vm", group_description="Manage virtual machines"):
    def __init__(self, bot: Any) -> None:
        self.bot = bot
        super().__init__()

    async def _check_panel(self, interaction: discord.Interaction, panel_id: int) -> bool:
        if await owned_panel(self.bot.manager, interaction, panel_id) is None:
            await reply_error(interaction, "Panel not found", f"no panel with ID {panel_id} on this server")
            return False
        return True

    @app_commands.command(name="list", description="List virtual machines")
    @app_commands.describe(panel="Panel ID; all panels of this server when omitted")
    async def list_vms(self, interaction: discord.Interaction, panel: Optional[int] = None) -> None:
        if interaction.guild_id is None:
            await reply(interaction, GUILD_ONLY_MESSAGE)
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        if panel is not None and not await self._check_panel(interaction, panel):
            return

        result = await collect_vms(self.bot.manager, str(interaction.guild_id), panel)
        if not result.success:
            await reply_error(interaction, "Failed to list virtual machines", result.error)
            return
        if not result.data:
            await reply(interaction, "No virtual machines found.")
            return

        paginator = Paginator(
            result.data, vm_list_embed, owner_id=interaction.user.id, per_page=LIST_PAGE_SIZE
        )
        await interaction.followup.send(embed=paginator.embed(), view=paginator, ephemeral=True)

    @app_commands.command(name="status", description="Show the status of a virtual machine")
    @app_commands.describe(panel="Panel ID", vm_id="VM ID")
    @app_commands.rename(vm_id="vm-id")
    async def status(self, interaction: discord.Interaction, panel: int, vm_id: str) -> None:
        if interaction.guild_id is None:
            await reply(interaction, GUILD_ONLY_MESSAGE)
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        if not await self._check_panel(interaction, panel):
            return
        result = await self.bot.manager.get_vm(panel, vm_id)
        if not result.success:
            await reply_error(interaction, f"Failed to get status of VM {vm_id}", result.error)
            return
        await interaction.followup.send(embed=status_embed(result.data), ephemeral=True)

    @app_commands.command(name="action", description="Run a power action on a virtual machine")
    @app_commands.describe(panel="Panel ID", vm_id="VM ID", action="Action to run")
    @app_commands.rename(vm_id="vm-id")
    @app_commands.choices(action=ACTION_CHOICES)
    async def action(
        self,
        interaction: discord.Interaction,
        panel: int,
        vm_id: str,
        action: app_commands.Choice[str],
    ) -> None:
        if interaction.guild_id is None:
            await reply(interaction, GUILD_ONLY_MESSAGE)
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        if not await self._check_panel(interaction, panel):
            return
        result = await self.bot.manager.execute_vm_action(
            panel,
            VMAction(type=action.value, vm_id=vm_id),
            str(interaction.user.id),
            guild_id=str(interaction.guild_id),
        )
        if not result.success:
            await reply_error(interaction, f"Failed to {action.value} VM {vm_id}", result.error)
            return
        await reply(interaction, f"✅ Action '{action.value}' sent to VM {vm_id}.")

    @list_vms.autocomplete("panel")
    @status.autocomplete("panel")
    @action.autocomplete("panel")
    async def panel_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> list[app_commands.Choice[int]]:
        return await panel_choices(self.bot.manager, interaction, current)

    @status.autocomplete("vm_id")
    @action.autocomplete("vm_id")
    async def vm_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> list[app_commands.Choice[str]]:
        return await vm_choices(self.bot.manager, interaction, interaction.namespace.panel, current)


__all__ = ["MachinesCog"]
