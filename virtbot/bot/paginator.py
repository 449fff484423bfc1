"""Previous/next button view for paged embeds."""

from __future__ import annotations

from typing import Any, Callable, Sequence

import discord

from virtbot.monitor.views import page_count


class Paginator(discord.ui.View):
    """Pages through ``entries``; only the invoking user may turn pages."""

    def __init__(
        self,
        entries: Sequence[Any],
        render: Callable[[Sequence[Any], int, int], discord.Embed],
        *,
        owner_id: int,
        per_page: int = 10,
        timeout: float = 300,
    ) -> None:
        super().__init__(timeout=timeout)
        self.entries = entries
        self.render = render
        self.owner_id = owner_id
        self.per_page = per_page
        self.page = 0
        self._sync_buttons()

    @property
    def total_pages(self) -> int:
        return page_count(len(self.entries), self.per_page)

    def embed(self) -> discord.Embed:
        return self.render(self.entries, self.page, self.per_page)

    def _sync_buttons(self) -> None:
        self.previous_page.disabled = self.page <= 0
        self.next_page.disabled = self.page >= self.total_pages - 1

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.owner_id:
            await interaction.response.send_message(
                "❌ Only the user who ran the command can change pages.", ephemeral=True
            )
            return False
        return True

    async def _turn(self, interaction: discord.Interaction, delta: int) -> None:
        self.page = min(max(self.page + delta, 0), self.total_pages - 1)
        self._sync_buttons()
        await interaction.response.edit_message(embed=self.embed(), view=self)

    @discord.ui.button(label="◀", style=discord.ButtonStyle.secondary)
    async def previous_page(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await self._turn(interaction, -1)

    @discord.ui.button(label="▶", style=discord.ButtonStyle.secondary)
    async def next_page(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await self._turn(interaction, 1)


__all__ = ["Paginator"]
