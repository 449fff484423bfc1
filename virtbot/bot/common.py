"""Helpers shared by the bot's slash commands and component handlers."""

from __future__ import annotations

import logging
from typing import Any

import discord
from discord import app_commands

from virtbot.manager.listing import collect_vms
from virtbot.manager.virtualization import VirtualizationManager
from virtbot.monitor.monitor import VirtualizationMonitor
from virtbot.providers.models import PanelConfig, TokenCredentials, TokenData

logger = logging.getLogger("virtbot.bot")

GUILD_ONLY_MESSAGE = "❌ This command can only be used in a server."
MANAGE_ONLY_MESSAGE = "❌ You need the Manage Server permission to do that."

# Discord rejects autocomplete responses with more choices or longer names.
MAX_CHOICES = 25
MAX_CHOICE_NAME = 100


def can_manage(interaction: discord.Interaction) -> bool:
    return bool(interaction.permissions.manage_guild)


def interaction_log_fields(interaction: discord.Interaction) -> dict[str, Any]:
    """Who and where an interaction came from, for the bound log context."""
    command = getattr(interaction, "command", None)
    return {
        "guild_id": str(interaction.guild_id) if interaction.guild_id is not None else None,
        "user_id": str(interaction.user.id),
        "command": command.qualified_name if command is not None else None,
    }


def error_text(framing: str, error: Any) -> str:
    return f"❌ {framing}: {error}"


async def reply(interaction: discord.Interaction, content: str | None = None, **kwargs: Any) -> None:
    """Send an ephemeral reply whether or not the interaction was already acknowledged."""
    kwargs.setdefault("ephemeral", True)
    if content is not None:
        kwargs["content"] = content
    if interaction.response.is_done():
        await interaction.followup.send(**kwargs)
    else:
        await interaction.response.send_message(**kwargs)


async def reply_error(interaction: discord.Interaction, framing: str, error: Any) -> None:
    await reply(interaction, error_text(framing, error))


def token_credentials(api_key: str) -> TokenCredentials:
    """Credentials for a ``user@realm!tokenid=secret`` API token typed into a command."""
    return TokenCredentials(type="token", data=TokenData(token=api_key.strip()))


async def owned_panel(
    manager: VirtualizationManager, interaction: discord.Interaction, panel_id: int
) -> PanelConfig | None:
    """Return the panel only if it belongs to the guild the interaction came from."""
    if interaction.guild_id is None:
        return None
    result = await manager.get_panel(panel_id)
    if not result.success or result.data.guild_id != str(interaction.guild_id):
        return None
    return result.data


async def find_panel(
    manager: VirtualizationManager,
    monitor: VirtualizationMonitor | None,
    interaction: discord.Interaction,
    vm_id: str,
) -> int | None:
    """Resolve which panel a clicked VM belongs to.

    The monitor entry of the clicked message wins; otherwise each panel of the
    guild is probed for ``vm_id`` in order.
    """
    if monitor is not None and interaction.message is not None:
        entry = monitor.get_monitor_by_message_id(str(interaction.message.id))
        if entry is not None:
            return entry.panel_id

    if interaction.guild_id is None:
        return None
    panels = await manager.get_panels_by_guild(str(interaction.guild_id))
    if not panels.success:
        return None
    for panel in panels.data:
        if not panel.active:
            continue
        vm = await manager.get_vm(panel.id, vm_id)
        if vm.success:
            return panel.id
    return None



def _matching(choices: list[app_commands.Choice], current: str) -> list[app_commands.Choice]:
    needle = (current or "").lower()
    return [choice for choice in choices if needle in choice.name.lower()][:MAX_CHOICES]


async def panel_choices(
    manager: VirtualizationManager, interaction: discord.Interaction, current: str
) -> list[app_commands.Choice[int]]:
    """Panels of the invoking guild whose label contains ``current``."""
    if interaction.guild_id is None:
        return []
    result = await manager.get_panels_by_guild(str(interaction.guild_id))
    if not result.success:
        return []
    choices = [
        app_commands.Choice(name=f"{panel.name} (ID: {panel.id})"[:MAX_CHOICE_NAME], value=panel.id)
        for panel in result.data
    ]
    return _matching(choices, current)


async def vm_choices(
    manager: VirtualizationManager,
    interaction: discord.Interaction,
    panel_id: Any,
    current: str,
) -> list[app_commands.Choice[str]]:
    """VMs of the chosen panel, or of every guild panel when none is chosen yet."""
    if interaction.guild_id is None:
        return []
    if isinstance(panel_id, int):
        if await owned_panel(manager, interaction, panel_id) is None:
            return []
        result = await manager.list_vms(panel_id)
    else:
        result = await collect_vms(manager, str(interaction.guild_id))
    if not result.success:
        return []
    choices = [
        app_commands.Choice(name=f"{vm.id}: {vm.name}"[:MAX_CHOICE_NAME], value=vm.id)
        for vm in result.data
    ]
    return _matching(choices, current)


def provider_choices(manager: VirtualizationManager, current: str) -> list[app_commands.Choice[str]]:
    choices = [app_commands.Choice(name=name, value=name) for name in manager.available_providers()]
    return _matching(choices, current)


__all__ = [
    "GUILD_ONLY_MESSAGE",
    "MANAGE_ONLY_MESSAGE",
    "MAX_CHOICES",
    "can_manage",
    "error_text",
    "find_panel",
    "interaction_log_fields",
    "owned_panel",
    "panel_choices",
    "provider_choices",
    "reply",
    "reply_error",
    "token_credentials",
    "vm_choices",
]
