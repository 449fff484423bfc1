from __future__ import annotations

import pytest

from virtbot.bot.paginator import Paginator
from virtbot.monitor.views import vm_list_embed
from virtbot.providers.models import VMStatus

VMS = [VMStatus(id=str(100 + i), node="pve1", name=f"vm-{i}", status="running") for i in range(12)]


@pytest.mark.asyncio
async def test_buttons_follow_page_bounds(interaction_factory):
    paginator = Paginator(VMS, vm_list_embed, owner_id=42, per_page=5)

    assert paginator.total_pages == 3
    assert paginator.previous_page.disabled is True
    assert paginator.next_page.disabled is False

    interaction = interaction_factory(user_id=42)
    await paginator._turn(interaction, 5)

    assert paginator.page == 2
    assert paginator.next_page.disabled is True
    assert paginator.previous_page.disabled is False
    [edit] = interaction.response.edited
    assert edit["embed"].footer.text == "Page 3/3 · 12 VMs"


@pytest.mark.asyncio
async def test_only_owner_may_turn_pages(interaction_factory):
    paginator = Paginator(VMS, vm_list_embed, owner_id=42, per_page=5)

    stranger = interaction_factory(user_id=7)
    owner = interaction_factory(user_id=42)

    assert await paginator.interaction_check(stranger) is False
    assert stranger.response.sent[0]["ephemeral"] is True
    assert await paginator.interaction_check(owner) is True


@pytest.mark.asyncio
async def test_single_page_disables_both_buttons():
    paginator = Paginator(VMS[:3], vm_list_embed, owner_id=42, per_page=5)

    assert paginator.previous_page.disabled is True
    assert paginator.next_page.disabled is True
    assert len(paginator.embed().fields) == 3
