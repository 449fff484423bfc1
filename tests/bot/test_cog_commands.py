from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from discord import app_commands

from virtbot.bot.cogs.machines import MachinesCog
from virtbot.bot.cogs.monitoring import MonitoringCog
from virtbot.bot.cogs.panels import PanelsCog
from virtbot.manager.results import ManagerResult
from virtbot.providers.models import PanelConfig, VMActionResult, VMStatus, parse_credentials
from virtbot.storage import monitors as monitor_store
from virtbot.storage import panels as panel_store

TOKEN = parse_credentials({"type": "token", "data": {"token": "root@pam!ci=T"}})
VM = VMStatus(id="100", node="pve1", name="web", status="running")


def _panel_config(panel_id: int = 1, guild_id: str = "1") -> PanelConfig:
    return PanelConfig(
        id=panel_id, guild_id=guild_id, name="main", type="proxmox", api_url="https://h:8006", credentials=TOKEN
    )


class CommandManager:
    def __init__(self, panels: list[PanelConfig] | None = None) -> None:
        self.panels = {panel.id: panel for panel in panels or [_panel_config()]}
        self.removed: list[int] = []
        self.added: list[tuple] = []
        self.actions: list[tuple] = []

    def available_providers(self):
        return ["proxmox"]

    async def get_panel(self, panel_id):
        panel = self.panels.get(panel_id)
        if panel is None:
            return ManagerResult.fail("Panel not found", "RESOURCE_NOT_FOUND")
        return ManagerResult.ok(panel)

    async def get_vm(self, panel_id, vm_id):
        if vm_id == VM.id:
            return ManagerResult.ok(VM, provider="proxmox")
        return ManagerResult.fail("VM not found", "VM_NOT_FOUND")

    async def remove_panel(self, panel_id):
        self.removed.append(panel_id)
        return ManagerResult.ok(True)

    async def add_panel(self, guild_id, name, provider_type, api_url, credentials, **kwargs):
        self.added.append((guild_id, name, provider_type, api_url, credentials.data.token))
        return ManagerResult.ok(_panel_config(7, guild_id).model_copy(update={"name": name}))

    async def execute_vm_action(self, panel_id, action, user_id, guild_id=None):
        self.actions.append((panel_id, action.type, action.vm_id, user_id, guild_id))
        return ManagerResult.ok(VMActionResult(success=True, message="ok"), provider="proxmox")


@pytest.mark.asyncio
async def test_panel_delete_refuses_while_monitors_are_active(memory_db, interaction_factory, replies_of):
    manager = CommandManager()
    cog = PanelsCog(SimpleNamespace(manager=manager))
    monitor_store.create_monitor(
        guild_id="1", channel_id="10", message_id="500", panel_id=1, vm_id="100", user_id="42"
    )
    interaction = interaction_factory()

    await cog.delete.callback(cog, interaction, 1)

    assert manager.removed == []
    assert replies_of(interaction) == [
        "❌ Cannot delete panel: 1 VM monitor(s) are still active. Stop them first."
    ]


@pytest.mark.asyncio
async def test_panel_delete_requires_manage_permission(interaction_factory, replies_of):
    manager = CommandManager()
    cog = PanelsCog(SimpleNamespace(manager=manager))
    interaction = interaction_factory(manage_guild=False)

    await cog.delete.callback(cog, interaction, 1)

    assert manager.removed == []
    assert replies_of(interaction) == ["❌ You need the Manage Server permission to do that."]


@pytest.mark.asyncio
async def test_panel_delete_of_foreign_panel(memory_db, interaction_factory, replies_of):
    manager = CommandManager([_panel_config(guild_id="other")])
    cog = PanelsCog(SimpleNamespace(manager=manager))
    interaction = interaction_factory()

    await cog.delete.callback(cog, interaction, 1)

    assert manager.removed == []
    assert replies_of(interaction) == ["❌ Panel not found: no panel with ID 1 on this server"]


@pytest.mark.asyncio
async def test_panel_new_registers_token_credentials(memory_db, interaction_factory, replies_of):
    manager = CommandManager()
    cog = PanelsCog(SimpleNamespace(manager=manager))
    interaction = interaction_factory()

    await cog.new.callback(cog, interaction, "lab", "https://pve:8006/", " root@pam!ci=T ", "proxmox")

    assert manager.added == [("1", "lab", "proxmox", "https://pve:8006", "root@pam!ci=T")]
    assert replies_of(interaction) == ["✅ Panel **lab** created with ID `7`."]


@pytest.mark.asyncio
async def test_panel_new_rejects_duplicate_name(memory_db, interaction_factory, replies_of):
    panel_store.create_panel(
        guild_id="1", name="lab", type="proxmox", api_url="https://pve:8006", credentials=TOKEN
    )
    manager = CommandManager()
    cog = PanelsCog(SimpleNamespace(manager=manager))
    interaction = interaction_factory()

    await cog.new.callback(cog, interaction, "lab", "https://pve:8006", "root@pam!ci=T", "proxmox")

    assert manager.added == []
    assert replies_of(interaction) == ["❌ Cannot create panel: A panel named 'lab' already exists"]


@pytest.mark.asyncio
async def test_vm_action_on_foreign_panel_is_refused(interaction_factory, replies_of):
    manager = CommandManager([_panel_config(guild_id="other")])
    cog = MachinesCog(SimpleNamespace(manager=manager))
    interaction = interaction_factory()
    choice = app_commands.Choice(name="Start", value="start")

    await cog.action.callback(cog, interaction, 1, "100", choice)

    assert manager.actions == []
    assert replies_of(interaction) == ["❌ Panel not found: no panel with ID 1 on this server"]


@pytest.mark.asyncio
async def test_vm_action_sends_action(interaction_factory, replies_of):
    manager = CommandManager()
    cog = MachinesCog(SimpleNamespace(manager=manager))
    interaction = interaction_factory()
    choice = app_commands.Choice(name="Restart", value="restart")

    await cog.action.callback(cog, interaction, 1, "100", choice)

    assert manager.actions == [(1, "restart", "100", "42", "1")]
    assert replies_of(interaction) == ["✅ Action 'restart' sent to VM 100."]


class MonitorStub:
    def __init__(self, accept: bool = True) -> None:
        self.accept = accept
        self.added = []

    async def add_monitor(self, entry):
        self.added.append(entry)
        return self.accept


def _user(message):
    return SimpleNamespace(
        id=99, display_name="ops", mention="<@99>", send=AsyncMock(return_value=message)
    )


@pytest.mark.asyncio
async def test_monitor_start_sends_dm_and_registers_entry(interaction_factory, replies_of):
    monitor = MonitorStub()
    cog = MonitoringCog(SimpleNamespace(manager=CommandManager(), monitor=monitor))
    message = SimpleNamespace(id=500, channel=SimpleNamespace(id=10), delete=AsyncMock())
    user = _user(message)
    interaction = interaction_factory()

    await cog.start.callback(cog, interaction, 1, "100", user)

    user.send.assert_awaited_once()
    [entry] = monitor.added
    assert (entry.guild_id, entry.channel_id, entry.message_id) == ("1", "10", "500")
    assert (entry.panel_id, entry.vm_id, entry.user_id) == (1, "100", "99")
    assert replies_of(interaction) == ["✅ Live status of **web** sent to <@99>."]


@pytest.mark.asyncio
async def test_monitor_start_deletes_message_when_registration_fails(interaction_factory, replies_of):
    cog = MonitoringCog(SimpleNamespace(manager=CommandManager(), monitor=MonitorStub(accept=False)))
    message = SimpleNamespace(id=500, channel=SimpleNamespace(id=10), delete=AsyncMock())
    interaction = interaction_factory()

    await cog.start.callback(cog, interaction, 1, "100", _user(message))

    message.delete.assert_awaited_once()
    assert replies_of(interaction) == ["❌ Failed to start monitor: the monitor could not be saved"]


@pytest.mark.asyncio
async def test_monitor_start_for_missing_vm(interaction_factory, replies_of):
    monitor = MonitorStub()
    cog = MonitoringCog(SimpleNamespace(manager=CommandManager(), monitor=monitor))
    user = _user(None)
    interaction = interaction_factory()

    await cog.start.callback(cog, interaction, 1, "404", user)

    user.send.assert_not_awaited()
    assert monitor.added == []
    assert replies_of(interaction) == ["❌ Failed to get VM 404: VM not found"]
