"""/panel slash commands for registering and inspecting hypervisor panels."""

from __future__ import annotations

import logging
from typing import Any

import discord
from discord import app_commands
from discord.ext import commands

from virtbot.bot.common import (
    GUILD_ONLY_MESSAGE,
    MANAGE_ONLY_MESSAGE,
    can_manage,
    owned_panel,
    panel_choices,
    provider_choices,
    reply,
    reply_error,
    token_credentials,
)
from virtbot.core.config import load_config
from virtbot.core.exceptions import ValidationFailedError
from virtbot.manager import policy
from virtbot.providers.models import PanelConfig
from virtbot.storage import monitors as monitor_store

logger = logging.getLogger("virtbot.bot.panels")

DEFAULT_PROVIDER = "proxmox"


def _panel_line(panel: PanelConfig) -> str:
    state = "🟢 active" if panel.active else "🔴 disabled"
    default = " · ⭐ default" if panel.is_default else ""
    return f"`{panel.id}` **{panel.name}** ({panel.type}) · {state}{default}"


class PanelsCog(commands.GroupCog, group_name="panel", group_description="Manage virtualization panels"):
    def __init__(self, bot: Any) -> None:
        self.bot = bot
        super().__init__()

    async def _guild_panel(self, interaction: discord.Interaction, panel_id: int) -> PanelConfig | None:
        panel = await owned_panel(self.bot.manager, interaction, panel_id)
        if panel is None:
            await reply_error(interaction, "Panel not found", f"no panel with ID {panel_id} on this server")
        return panel

    @app_commands.command(name="list", description="List the panels of this server")
    async def list_panels(self, interaction: discord.Interaction) -> None:
        if interaction.guild_id is None:
            await reply(interaction, GUILD_ONLY_MESSAGE)
            return
        result = await self.bot.manager.get_panels_by_guild(str(interaction.guild_id))
        if not result.success:
            await reply_error(interaction, "Failed to list panels", result.error)
            return
        embed = discord.Embed(title="Virtualization panels", color=discord.Color.blurple())
        embed.description = "\n".join(_panel_line(panel) for panel in result.data) or "No panels configured."
        await reply(interaction, embed=embed)

    @app_commands.command(name="info", description="Show details of a panel")
    @app_commands.describe(panel="Panel ID")
    async def info(self, interaction: discord.Interaction, panel: int) -> None:
        if interaction.guild_id is None:
            await reply(interaction, GUILD_ONLY_MESSAGE)
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        config = await self._guild_panel(interaction, panel)
        if config is None:
            return

        embed = discord.Embed(title=f"Panel {config.name}", color=discord.Color.blurple())
        embed.add_field(name="ID", value=str(config.id))
        embed.add_field(name="Type", value=config.type)
        embed.add_field(name="URL", value=config.api_url, inline=False)
        embed.add_field(name="Status", value="🟢 active" if config.active else "🔴 disabled")

        info = await self.bot.manager.get_system_info(panel)
        if info.success:
            embed.add_field(name="Version", value=info.data.version)
            nodes = ", ".join(f"{node.name} ({node.status})" for node in info.data.nodes)
            embed.add_field(name="Nodes", value=nodes or "none", inline=False)
        else:
            embed.add_field(name="Connection", value=f"❌ {info.error}", inline=False)
        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="new", description="Register a new panel")
    @app_commands.describe(
        name="Display name", url="API URL", api_key="API token (user@realm!id=secret)", provider="Provider"
    )
    @app_commands.rename(api_key="api-key")
    async def new(
        self,
        interaction: discord.Interaction,
        name: str,
        url: str,
        api_key: str,
        provider: str = DEFAULT_PROVIDER,
    ) -> None:
        if interaction.guild_id is None:
            await reply(interaction, GUILD_ONLY_MESSAGE)
            return
        if not can_manage(interaction):
            await reply(interaction, MANAGE_ONLY_MESSAGE)
            return
        guild_id = str(interaction.guild_id)
        config = load_config()
        try:
            name = policy.validate_panel_name(name, config)
            policy.validate_provider_type(provider, config, self.bot.manager.available_providers())
            url = policy.validate_api_url(url, config)
            policy.ensure_capacity(guild_id, config)
            policy.ensure_unique_name(guild_id, name)
        except ValidationFailedError as exc:
            await reply_error(interaction, "Cannot create panel", exc.message)
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self.bot.manager.add_panel(
            guild_id, name, provider, url, token_credentials(api_key)
        )
        if not result.success:
            await reply_error(interaction, "Failed to create panel", result.error)
            return
        await reply(interaction, f"✅ Panel **{result.data.name}** created with ID `{result.data.id}`.")

    @app_commands.command(name="delete", description="Delete a panel")
    @app_commands.describe(panel_id="Panel ID")
    @app_commands.rename(panel_id="panel-id")
    async def delete(self, interaction: discord.Interaction, panel_id: int) -> None:
        if interaction.guild_id is None:
            await reply(interaction, GUILD_ONLY_MESSAGE)
            return
        if not can_manage(interaction):
            await reply(interaction, MANAGE_ONLY_MESSAGE)
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        panel = await self._guild_panel(interaction, panel_id)
        if panel is None:
            return

        monitors = monitor_store.count_by_panel(panel_id)
        if monitors > 0:
            await reply_error(
                interaction,
                "Cannot delete panel",
                f"{monitors} VM monitor(s) are still active. Stop them first.",
            )
            return

        result = await self.bot.manager.remove_panel(panel_id)
        if not result.success:
            await reply_error(interaction, "Failed to delete panel", result.error)
            return
        await reply(interaction, f"🗑️ Panel **{panel.name}** deleted.")

    @app_commands.command(name="test", description="Test a panel connection without saving it")
    @app_commands.describe(url="API URL", api_key="API token (user@realm!id=secret)", provider="Provider")
    @app_commands.rename(api_key="api-key")
    async def test(
        self,
        interaction: discord.Interaction,
        url: str,
        api_key: str,
        provider: str = DEFAULT_PROVIDER,
    ) -> None:
        config = load_config()
        try:
            url = policy.validate_api_url(url, config)
        except ValidationFailedError as exc:
            await reply_error(interaction, "Connection test failed", exc.message)
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self.bot.manager.validate_panel_credentials(
            provider, url, token_credentials(api_key)
        )
        if not result.success or not result.data:
            await reply_error(interaction, "Connection test failed", result.error or "could not connect")
            return
        await reply(interaction, "✅ Connection successful.")

    @info.autocomplete("panel")
    async def panel_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> list[app_commands.Choice[int]]:
        return await panel_choices(self.bot.manager, interaction, current)

    @delete.autocomplete("panel_id")
    async def panel_id_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> list[app_commands.Choice[int]]:
        return await panel_choices(self.bot.manager, interaction, current)

    @new.autocomplete("provider")
    @test.autocomplete("provider")
    async def provider_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> list[app_commands.Choice[str]]:
        return provider_choices(self.bot.manager, current)


__all__ = ["PanelsCog"]
