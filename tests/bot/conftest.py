from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest


class FakeResponse:
    def __init__(self) -> None:
        self.done = False
        self.sent: list[dict] = []
        self.deferred = False
        self.edited: list[dict] = []

    def is_done(self) -> bool:
        return self.done

    async def defer(self, **kwargs) -> None:
        self.deferred = True
        self.done = True

    async def send_message(self, content=None, **kwargs) -> None:
        self.sent.append({"content": content, **kwargs})
        self.done = True

    async def edit_message(self, **kwargs) -> None:
        self.edited.append(kwargs)
        self.done = True


class FakeFollowup:
    def __init__(self) -> None:
        self.sent: list[dict] = []

    async def send(self, content=None, **kwargs) -> None:
        self.sent.append({"content": content, **kwargs})


def make_interaction(
    *,
    guild_id: int | None = 1,
    user_id: int = 42,
    manage_guild: bool = True,
    message_id: int | None = None,
    custom_id: str | None = None,
    namespace: dict | None = None,
):
    message = None
    if message_id is not None:
        message = SimpleNamespace(id=message_id, delete=AsyncMock())
    return SimpleNamespace(
        guild_id=guild_id,
        user=SimpleNamespace(id=user_id),
        permissions=SimpleNamespace(manage_guild=manage_guild),
        message=message,
        data={"custom_id": custom_id} if custom_id else {},
        response=FakeResponse(),
        followup=FakeFollowup(),
        command=None,
        namespace=SimpleNamespace(**{"panel": None, **(namespace or {})}),
    )


def replies(interaction) -> list[str]:
    """Every text sent back, in order, regardless of channel."""
    return [item["content"] for item in interaction.response.sent + interaction.followup.sent if item["content"]]


@pytest.fixture
def interaction_factory():
    return make_interaction


@pytest.fixture
def replies_of():
    return replies
