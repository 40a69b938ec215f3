"""Per-project "seen" markers stored in <project>/.beads/seen.json.

The file records which issue IDs the user has reviewed:

    {"seen": ["demo-1", "demo-4"], "updated_at": "2026-01-02T03:04:05+00:00"}

Read-modify-write updates are serialized per project inside this process
so two connections marking issues at the same time cannot drop each
other's change.
"""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from beadsui.engine.config import DEFAULT_MARKER_DIR

logger = logging.getLogger(__name__)

SEEN_FILENAME = "seen.json"


@dataclass
class SeenState:
    seen: list[str] = field(default_factory=list)
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"seen": list(self.seen), "updated_at": self.updated_at}

    @classmethod
    def from_dict(cls, data: Any) -> SeenState | None:
        """Validate a decoded file body; None when the shape is wrong."""
        if not isinstance(data, dict):
            return None
        seen = data.get("seen", [])
        if not isinstance(seen, list):
            return None
        ids: list[str] = []
        for item in seen:
            if isinstance(item, str) and item not in ids:
                ids.append(item)
        updated_at = data.get("updated_at")
        return cls(seen=ids, updated_at=updated_at if isinstance(updated_at, str) else None)


@dataclass
class _ProjectLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


def _atomic_write_text(path: Path, content: str) -> None:
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


class SeenStore:
    """Reads and writes seen-state files."""

    def __init__(self, marker_dir: str = DEFAULT_MARKER_DIR) -> None:
        self._marker_dir = marker_dir
        self._locks: dict[Path, _ProjectLock] = {}

    def path_for(self, project: Path) -> Path:
        return project / self._marker_dir / SEEN_FILENAME

    @contextlib.asynccontextmanager
    async def _serialized(self, project: Path):
        """Hold the project's lock; the entry is dropped once nobody uses it."""
        entry = self._locks.get(project)
        if entry is None:
            entry = self._locks[project] = _ProjectLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[project]

    def _read_sync(self, project: Path) -> SeenState:
        target = self.path_for(project)
        try:
            if not target.exists():
                return SeenState()
            state = SeenState.from_dict(json.loads(target.read_text(encoding="utf-8")))
        except (OSError, ValueError):
            logger.warning("Failed to read %s; using empty seen state", target)
            return SeenState()
        if state is None:
            logger.warning("Unexpected shape in %s; using empty seen state", target)
            return SeenState()
        return state

    def _write_sync(self, project: Path, state: SeenState) -> bool:
        target = self.path_for(project)
        state.updated_at = datetime.now(timezone.utc).isoformat()
        try:
            _atomic_write_text(target, json.dumps(state.to_dict(), indent=2))
        except OSError:
            logger.exception("Failed to write %s", target)
            return False
        return True

    async def read(self, project: Path) -> SeenState:
        """Current state; an empty default when missing or unreadable."""
        return await asyncio.to_thread(self._read_sync, project)

    async def write(self, project: Path, state: SeenState) -> bool:
        """Persist the full state, stamping a fresh ``updated_at``."""
        return await asyncio.to_thread(self._write_sync, project, state)

    async def add(self, project: Path, issue_id: str) -> SeenState:
        async with self._serialized(project):
            state = await self.read(project)
            if issue_id not in state.seen:
                state.seen.append(issue_id)
                await self.write(project, state)
            return state

    async def remove(self, project: Path, issue_id: str) -> SeenState:
        async with self._serialized(project):
            state = await self.read(project)
            if issue_id in state.seen:
                state.seen = [i for i in state.seen if i != issue_id]
                await self.write(project, state)
            return state
