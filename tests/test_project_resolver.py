from __future__ import annotations

from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from beadsui.engine.errors import ProjectNotFoundError
from beadsui.shared.services.project import ProjectResolver


def _make_project(root: Path, *parts: str) -> Path:
    project = root.joinpath(*parts)
    (project / ".beads").mkdir(parents=True)
    return project


def test_absolute_path_with_marker_resolves() -> None:
    with TemporaryDirectory() as tmpdir:
        project = _make_project(Path(tmpdir), "code", "demo")
        resolver = ProjectResolver(search_paths=[])

        resolved = resolver.resolve(str(project))

        assert resolved == project.resolve()
        assert resolver.project_name(resolved) == "demo"


def test_absolute_path_without_marker_is_rejected() -> None:
    with TemporaryDirectory() as tmpdir:
        plain = Path(tmpdir) / "code" / "plain"
        plain.mkdir(parents=True)
        resolver = ProjectResolver(search_paths=[Path(tmpdir) / "code"])

        with pytest.raises(ProjectNotFoundError):
            resolver.resolve(str(plain))


def test_marker_must_be_a_directory() -> None:
    with TemporaryDirectory() as tmpdir:
        project = Path(tmpdir) / "demo"
        project.mkdir()
        (project / ".beads").write_text("not a dir", encoding="utf-8")
        resolver = ProjectResolver(search_paths=[])

        with pytest.raises(ProjectNotFoundError):
            resolver.resolve(str(project))


def test_short_name_first_match_in_declared_order_wins() -> None:
    with TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        first = root / "code"
        second = root / "projects"
        _make_project(second, "demo")
        expected = _make_project(first, "demo")
        resolver = ProjectResolver(search_paths=[first, second])

        results = {resolver.resolve("demo") for _ in range(5)}

        assert results == {expected.resolve()}


def test_short_name_skips_candidates_without_marker() -> None:
    with TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        (root / "code" / "demo").mkdir(parents=True)
        expected = _make_project(root / "dev", "demo")
        resolver = ProjectResolver(search_paths=[root / "code", root / "projects", root / "dev"])

        assert resolver.resolve("demo") == expected.resolve()


def test_url_path_form_of_short_name_resolves() -> None:
    with TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        expected = _make_project(root / "code", "demo")
        resolver = ProjectResolver(search_paths=[root / "code"])

        assert resolver.resolve("/demo") == expected.resolve()
        assert resolver.resolve("/demo?tab=board") == expected.resolve()


def test_unknown_short_name_is_rejected() -> None:
    with TemporaryDirectory() as tmpdir:
        resolver = ProjectResolver(search_paths=[Path(tmpdir)])

        with pytest.raises(ProjectNotFoundError) as exc_info:
            resolver.resolve("missing")
        assert exc_info.value.identifier == "missing"


@pytest.mark.parametrize("identifier", ["", "   ", "/", "../demo", "code/../../etc"])
def test_degenerate_identifiers_are_rejected(identifier: str) -> None:
    with TemporaryDirectory() as tmpdir:
        _make_project(Path(tmpdir), "demo")
        resolver = ProjectResolver(search_paths=[Path(tmpdir) / "sub"])

        with pytest.raises(ProjectNotFoundError):
            resolver.resolve(identifier)


def test_custom_marker_directory() -> None:
    with TemporaryDirectory() as tmpdir:
        project = Path(tmpdir) / "demo"
        (project / ".tracker").mkdir(parents=True)
        resolver = ProjectResolver(search_paths=[], marker_dir=".tracker")

        assert resolver.is_project(project)
        assert resolver.resolve(str(project)) == project.resolve()
