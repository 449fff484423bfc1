"""Guild-wide VM listing across every panel."""

from __future__ import annotations

import asyncio
import logging
import sys

from virtbot.core.exceptions import ErrorCode
from virtbot.providers.models import VMStatus

from .results import ManagerResult
from .virtualization import VirtualizationManager

logger = logging.getLogger("virtbot.manager.listing")

NO_PANELS_MESSAGE = "No virtualization panels configured for this server"


def _sort_key(vm: VMStatus) -> tuple[str, int, str]:
    numeric = int(vm.id) if vm.id.isdigit() else sys.maxsize
    return (vm.node, numeric, vm.id)


def _tag(vms: list[VMStatus], panel_id: int) -> list[VMStatus]:
    return [vm.model_copy(update={"panel_id": panel_id}) for vm in vms]


async def collect_vms(
    manager: VirtualizationManager,
    guild_id: str,
    panel_id: int | None = None,
) -> ManagerResult[list[VMStatus]]:
    """List VMs for one panel, or best-effort across all active panels of a guild.

    A panel that fails is logged and skipped; the call only fails when every
    panel failed, carrying the last error.
    """
    if panel_id is not None:
        result = await manager.list_vms(panel_id)
        if not result.success:
            return result
        return ManagerResult.ok(sorted(_tag(result.data, panel_id), key=_sort_key), result.provider)

    panels_result = await manager.get_panels_by_guild(guild_id)
    if not panels_result.success:
        return ManagerResult.fail(panels_result.error, panels_result.error_code)

    panels = [panel for panel in panels_result.data if panel.active]
    if not panels:
        return ManagerResult.fail(NO_PANELS_MESSAGE, ErrorCode.RESOURCE_NOT_FOUND)

    results = await asyncio.gather(*(manager.list_vms(panel.id) for panel in panels))

    collected: list[VMStatus] = []
    last_failure: ManagerResult[list[VMStatus]] | None = None
    succeeded = 0
    for panel, result in zip(panels, results):
        if not result.success:
            logger.warning(
                "Skipping panel %s in guild listing: %s",
                panel.name,
                result.error,
                extra={"panel_id": panel.id, "guild_id": guild_id, "error_code": result.error_code},
            )
            last_failure = result
            continue
        succeeded += 1
        collected.extend(_tag(result.data, panel.id))

    if not succeeded and last_failure is not None:
        return ManagerResult.fail(last_failure.error, last_failure.error_code)
    return ManagerResult.ok(sorted(collected, key=_sort_key))


__all__ = ["NO_PANELS_MESSAGE", "collect_vms"]
