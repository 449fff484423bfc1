"""Discord embeds and control rows for VM status displays."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Sequence

import discord

from virtbot.providers.models import VMStatus

START_PREFIX = "vm-start_"
STOP_PREFIX = "vm-stop_"
RESTART_PREFIX = "vm-restart_"
MONITOR_STOP_PREFIX = "vm-monitor-stop_"

_STATUS_LABELS = {
    "running": ("🟢", "Online"),
    "stopped": ("🔴", "Offline"),
    "paused": ("🟡", "Paused"),
    "suspended": ("🟡", "Suspended"),
}

_STATUS_COLORS = {
    "running": discord.Color.green(),
    "stopped": discord.Color.red(),
    "paused": discord.Color.gold(),
    "suspended": discord.Color.gold(),
}

GIB = 1024**3


def format_uptime(seconds: float | None) -> str:
    """Render ``seconds`` as ``"Xd Yh Zm"``, dropping zero parts; under a minute as ``"Ns"``."""
    if not seconds:
        return "0s"
    total = int(seconds)
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if not parts:
        parts.append(f"{total}s")
    return " ".join(parts)


def status_label(status: str) -> str:
    emoji, label = _STATUS_LABELS.get(status, ("⚪", "Unknown"))
    return f"{emoji} {label}"


def control_states(vm: VMStatus) -> dict[str, bool]:
    """Disabled flag per power button for the VM's current state."""
    return {
        "start": vm.status == "running",
        "stop": vm.status == "stopped",
        "restart": vm.status == "stopped",
    }


def status_embed(vm: VMStatus) -> discord.Embed:
    cpu = f"{vm.cpu_usage:.2f}" if vm.cpu_usage else "0"
    ram = f"{vm.memory_usage / GIB:.2f}" if vm.memory_usage else "0"
    embed = discord.Embed(
        title=f"Manage status {vm.name}",
        description="\n".join(
            [
                f"**Status**: {status_label(vm.status)}",
                f"**CPU**: {cpu}%",
                f"**RAM**: {ram} GB",
                f"**Uptime**: {format_uptime(vm.uptime)}",
            ]
        ),
        color=_STATUS_COLORS.get(vm.status, discord.Color.light_grey()),
        timestamp=datetime.now(timezone.utc),
    )
    embed.set_footer(text=f"VM {vm.id} on {vm.node}")
    return embed


def control_view(vm: VMStatus) -> discord.ui.View:
    """Persistent button row; clicks are routed by custom id, not by view callbacks."""
    disabled = control_states(vm)
    view = discord.ui.View(timeout=None)
    view.add_item(
        discord.ui.Button(
            custom_id=f"{START_PREFIX}{vm.id}",
            label="Start",
            emoji="🟢",
            style=discord.ButtonStyle.success,
            disabled=disabled["start"],
        )
    )
    view.add_item(
        discord.ui.Button(
            custom_id=f"{STOP_PREFIX}{vm.id}",
            label="Stop",
            emoji="🔴",
            style=discord.ButtonStyle.danger,
            disabled=disabled["stop"],
        )
    )
    view.add_item(
        discord.ui.Button(
            custom_id=f"{RESTART_PREFIX}{vm.id}",
            label="Restart",
            emoji="🔄",
            style=discord.ButtonStyle.primary,
            disabled=disabled["restart"],
        )
    )
    view.add_item(
        discord.ui.Button(
            custom_id=f"{MONITOR_STOP_PREFIX}{vm.id}",
            label="Close panel",
            style=discord.ButtonStyle.secondary,
        )
    )
    return view


def page_count(total: int, per_page: int) -> int:
    return max(1, math.ceil(total / per_page))


def vm_list_embed(vms: Sequence[VMStatus], page: int = 0, per_page: int = 10) -> discord.Embed:
    pages = page_count(len(vms), per_page)
    page = min(max(page, 0), pages - 1)
    chunk = vms[page * per_page : (page + 1) * per_page]

    embed = discord.Embed(title="Virtual machines", color=discord.Color.blurple())
    if not chunk:
        embed.description = "No virtual machines found."
    for vm in chunk:
        panel = f" · panel {vm.panel_id}" if vm.panel_id is not None else ""
        embed.add_field(
            name=f"{vm.name} ({vm.id})",
            value=f"{status_label(vm.status)} · {vm.node}{panel}",
            inline=False,
        )
    embed.set_footer(text=f"Page {page + 1}/{pages} · {len(vms)} VMs")
    return embed


__all__ = [
    "MONITOR_STOP_PREFIX",
    "RESTART_PREFIX",
    "START_PREFIX",
    "STOP_PREFIX",
    "control_states",
    "control_view",
    "format_uptime",
    "page_count",
    "status_embed",
    "status_label",
    "vm_list_embed",
]
