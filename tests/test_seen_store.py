from __future__ import annotations

import asyncio
import json
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from beadsui.shared.services.seen_store import SeenState, SeenStore


def _project(tmpdir: str) -> Path:
    project = Path(tmpdir) / "demo"
    (project / ".beads").mkdir(parents=True)
    return project


@pytest.mark.asyncio
async def test_read_missing_file_returns_empty_state() -> None:
    with TemporaryDirectory() as tmpdir:
        store = SeenStore()
        state = await store.read(_project(tmpdir))
        assert state.to_dict() == {"seen": [], "updated_at": None}


@pytest.mark.asyncio
@pytest.mark.parametrize("body", ["{not json", '["demo-1"]', '{"seen": "demo-1"}'])
async def test_read_unusable_file_returns_empty_state(body: str) -> None:
    with TemporaryDirectory() as tmpdir:
        project = _project(tmpdir)
        store = SeenStore()
        store.path_for(project).write_text(body, encoding="utf-8")

        state = await store.read(project)

        assert state.seen == []
        assert state.updated_at is None


@pytest.mark.asyncio
async def test_write_stamps_updated_at_and_serializes_full_state() -> None:
    with TemporaryDirectory() as tmpdir:
        project = _project(tmpdir)
        store = SeenStore()

        ok = await store.write(project, SeenState(seen=["demo-1", "demo-2"]))

        assert ok is True
        data = json.loads(store.path_for(project).read_text(encoding="utf-8"))
        assert data["seen"] == ["demo-1", "demo-2"]
        assert isinstance(data["updated_at"], str)
        assert (await store.read(project)).seen == ["demo-1", "demo-2"]


@pytest.mark.asyncio
async def test_write_failure_returns_false() -> None:
    with TemporaryDirectory() as tmpdir:
        project = Path(tmpdir) / "no-marker"
        project.mkdir()
        store = SeenStore()
        assert await store.write(project, SeenState(seen=["demo-1"])) is False


@pytest.mark.asyncio
async def test_mark_seen_twice_equals_once() -> None:
    with TemporaryDirectory() as tmpdir:
        project = _project(tmpdir)
        store = SeenStore()

        once = await store.add(project, "demo-1")
        twice = await store.add(project, "demo-1")

        assert once.seen == ["demo-1"]
        assert twice.seen == ["demo-1"]


@pytest.mark.asyncio
async def test_unseen_after_seen_restores_prior_set() -> None:
    with TemporaryDirectory() as tmpdir:
        project = _project(tmpdir)
        store = SeenStore()
        await store.add(project, "demo-1")
        await store.add(project, "demo-2")
        before = list((await store.read(project)).seen)

        await store.add(project, "demo-3")
        after = await store.remove(project, "demo-3")

        assert after.seen == before


@pytest.mark.asyncio
async def test_remove_absent_id_leaves_file_untouched() -> None:
    with TemporaryDirectory() as tmpdir:
        project = _project(tmpdir)
        store = SeenStore()

        state = await store.remove(project, "demo-9")

        assert state.seen == []
        assert not store.path_for(project).exists()


@pytest.mark.asyncio
async def test_concurrent_adds_do_not_lose_updates() -> None:
    with TemporaryDirectory() as tmpdir:
        project = _project(tmpdir)
        store = SeenStore()
        ids = [f"demo-{n}" for n in range(20)]

        await asyncio.gather(*(store.add(project, issue_id) for issue_id in ids))

        assert sorted((await store.read(project)).seen) == sorted(ids)


@pytest.mark.asyncio
async def test_project_locks_are_released_after_use() -> None:
    with TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        projects = [_project(str(root / f"p{n}")) for n in range(5)]
        store = SeenStore()

        await asyncio.gather(*(store.add(p, "demo-1") for p in projects for _ in range(3)))
        await store.remove(projects[0], "demo-1")

        assert store._locks == {}
        assert (await store.read(projects[1])).seen == ["demo-1"]
