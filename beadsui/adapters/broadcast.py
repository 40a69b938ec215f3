"""Snapshot fan-out after mutations.

After a mutating command succeeds the project's full issue list is
re-read from ``bd`` and pushed to every connection bound to that
project. Refresh failures are dropped: the next successful mutation
triggers a fresh attempt.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from beadsui.adapters.bd_gateway import BdGateway
from beadsui.adapters.registry import ConnectionRegistry
from beadsui.shared.models.envelope import snapshot_push

logger = logging.getLogger(__name__)


class BroadcastEngine:
    """Pushes project snapshots to same-project connections."""

    def __init__(self, gateway: BdGateway, registry: ConnectionRegistry) -> None:
        self._gateway = gateway
        self._registry = registry
        self._tasks: set[asyncio.Task] = set()

    async def refresh(self, project: Path) -> int:
        """Fetch the list and push it. Returns the number of clients reached."""
        result = await self._gateway.list_issues(project)
        if not result.ok:
            logger.warning(
                "Broadcast refresh for %s dropped (%s): %s",
                project, result.kind, result.error.strip()[:200],
            )
            return 0

        # Bindings may have changed while bd was running.
        targets = self._registry.list_by_project(project)
        if not targets:
            return 0
        text = snapshot_push(result.data).to_json()
        sent = await asyncio.gather(*(conn.send_text(text) for conn in targets))
        delivered = sum(1 for ok in sent if ok)
        logger.debug(
            "Broadcast snapshot project=%s items=%d delivered=%d/%d",
            project, len(result.data), delivered, len(targets),
        )
        return delivered

    def schedule(self, project: Path) -> asyncio.Task:
        """Run :meth:`refresh` in the background so the reply goes out first."""
        task = asyncio.create_task(self._refresh_quietly(project))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _refresh_quietly(self, project: Path) -> None:
        try:
            await self.refresh(project)
        except Exception:
            logger.exception("Broadcast refresh for %s failed", project)

    async def drain(self) -> None:
        """Wait for every scheduled refresh to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
