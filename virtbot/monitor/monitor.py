"""Polling loop that keeps live Discord status messages in sync with VM state."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any

import discord

from virtbot.manager.virtualization import VirtualizationManager
from virtbot.storage import monitors as monitor_store

from .views import control_view, status_embed

logger = logging.getLogger("virtbot.monitor")

DEFAULT_INTERVAL_MS = 5000


@dataclass
class MonitorEntry:
    guild_id: str
    channel_id: str
    message_id: str
    panel_id: int
    vm_id: str
    user_id: str
    last_update: float = field(default_factory=time.time)

    def log_context(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "panel_id": self.panel_id,
            "vm_id": self.vm_id,
            "guild_id": self.guild_id,
        }


class VirtualizationMonitor:
    """One global loop for every watched message, keyed by message id.

    ``stop`` only halts scheduling; ticks already in flight run to completion.
    Ticks are not serialized: a slow tick may overlap the next one.
    """

    def __init__(
        self,
        client: discord.Client,
        manager: VirtualizationManager,
        interval_ms: int = DEFAULT_INTERVAL_MS,
    ) -> None:
        self._client = client
        self._manager = manager
        self._interval = interval_ms / 1000
        self._entries: dict[str, MonitorEntry] = {}
        self._scheduler: asyncio.Task[None] | None = None
        self._ticks: set[asyncio.Task[None]] = set()

    @property
    def running(self) -> bool:
        return self._scheduler is not None and not self._scheduler.done()

    def entries(self) -> list[MonitorEntry]:
        return list(self._entries.values())

    def get_monitor_by_message_id(self, message_id: str) -> MonitorEntry | None:
        return self._entries.get(str(message_id))

    async def start(self) -> None:
        if self.running:
            return
        try:
            rows = monitor_store.list_monitors()
        except Exception:
            logger.exception("Failed to load monitors from storage", extra={"event": "monitor_load_failed"})
            rows = []
        self._entries = {row["message_id"]: MonitorEntry(**row) for row in rows}
        if rows:
            logger.info("Loaded %s monitors from storage", len(rows))

        logger.info("Starting virtualization monitor loop", extra={"interval_s": self._interval})
        self._scheduler = asyncio.create_task(self._schedule(), name="virtbot-monitor")

    async def stop(self) -> None:
        scheduler = self._scheduler
        if scheduler is None:
            return
        self._scheduler = None
        scheduler.cancel()
        try:
            await scheduler
        except asyncio.CancelledError:
            pass
        logger.info("Stopped virtualization monitor loop")

    async def _schedule(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            tick = asyncio.create_task(self.process_updates())
            self._ticks.add(tick)
            tick.add_done_callback(self._ticks.discard)

    async def process_updates(self) -> None:
        """Refresh every watched message concurrently; one failure never aborts the rest."""
        entries = list(self._entries.values())
        if not entries:
            return
        results = await asyncio.gather(
            *(self._update_entry(entry) for entry in entries), return_exceptions=True
        )
        for entry, result in zip(entries, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Monitor update failed",
                    exc_info=result,
                    extra={"event": "monitor_update_failed", **entry.log_context()},
                )

    async def _update_entry(self, entry: MonitorEntry) -> None:
        result = await self._manager.get_vm(entry.panel_id, entry.vm_id)
        if not result.success:
            logger.debug(
                "Skipping monitor this tick: %s", result.error, extra=entry.log_context()
            )
            return
        vm = result.data

        channel = await self._resolve_channel(entry.channel_id)
        if channel is None:
            logger.info("Monitor channel is gone", extra=entry.log_context())
            await self.remove_monitor(entry.message_id)
            return

        try:
            message = await channel.fetch_message(int(entry.message_id))
            await message.edit(embed=status_embed(vm), view=control_view(vm))
        except discord.HTTPException as exc:
            logger.warning(
                "Failed to update monitor message: %s",
                exc,
                extra={"event": "monitor_message_lost", **entry.log_context()},
            )
            await self.remove_monitor(entry.message_id)
            return
        entry.last_update = time.time()

    async def _resolve_channel(self, channel_id: str) -> Any:
        channel = self._client.get_channel(int(channel_id))
        if channel is not None:
            return channel
        try:
            return await self._client.fetch_channel(int(channel_id))
        except (discord.NotFound, discord.Forbidden):
            return None

    async def add_monitor(self, entry: MonitorEntry) -> bool:
        """Persist the binding, then register it; nothing is kept in memory if the write fails."""
        if entry.message_id in self._entries:
            logger.warning("Message is already monitored", extra=entry.log_context())
            return False
        row = asdict(entry)
        row.pop("last_update")
        try:
            monitor_store.create_monitor(**row)
        except Exception:
            logger.exception(
                "Failed to save monitor", extra={"event": "monitor_persist_failed", **entry.log_context()}
            )
            return False
        self._entries[entry.message_id] = entry
        logger.debug("Added VM monitor", extra=entry.log_context())
        return True

    async def remove_monitor(self, message_id: str) -> None:
        """Drop the binding from memory and storage; an unknown id is not an error."""
        message_id = str(message_id)
        self._entries.pop(message_id, None)
        try:
            monitor_store.delete_monitor(message_id)
        except Exception:
            logger.warning(
                "Failed to delete monitor from storage",
                exc_info=True,
                extra={"message_id": message_id},
            )

    async def stop_monitor_for_vm(self, vm_id: str, panel_id: int | None = None) -> int:
        """Remove every monitor of ``vm_id`` and delete its message if still there."""
        matches = [
            entry
            for entry in self._entries.values()
            if entry.vm_id == vm_id and (panel_id is None or entry.panel_id == panel_id)
        ]
        for entry in matches:
            await self.remove_monitor(entry.message_id)
            try:
                channel = await self._resolve_channel(entry.channel_id)
                if channel is not None:
                    message = await channel.fetch_message(int(entry.message_id))
                    await message.delete()
            except discord.HTTPException:
                logger.debug("Monitor message already gone", extra=entry.log_context())
        return len(matches)


__all__ = ["DEFAULT_INTERVAL_MS", "MonitorEntry", "VirtualizationMonitor"]
