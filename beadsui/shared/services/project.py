"""Project resolver: maps client identifiers to beads project directories.

A project is a directory containing the ``.beads`` marker directory
written by ``bd init``. Clients send either an absolute path or a short
name (usually the browser URL path, e.g. ``/demo``); short names are
looked up under a fixed, ordered list of parent directories and the
first match wins.
"""
from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath

from beadsui.engine.config import DEFAULT_MARKER_DIR, default_search_paths
from beadsui.engine.errors import ProjectNotFoundError

logger = logging.getLogger(__name__)


class ProjectResolver:
    """Resolves identifiers to validated project paths. Filesystem reads only."""

    def __init__(
        self,
        search_paths: list[Path] | None = None,
        marker_dir: str = DEFAULT_MARKER_DIR,
    ) -> None:
        self._search_paths = list(search_paths) if search_paths is not None else default_search_paths()
        self._marker_dir = marker_dir

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    @property
    def marker_dir(self) -> str:
        return self._marker_dir

    def is_project(self, path: Path) -> bool:
        """True if *path* directly contains the marker directory."""
        try:
            return (path / self._marker_dir).is_dir()
        except OSError:
            return False

    @staticmethod
    def project_name(path: Path) -> str:
        return path.name

    def resolve(self, identifier: str) -> Path:
        """Resolve *identifier* to a canonical project path.

        Raises:
            ProjectNotFoundError: when no candidate contains the marker.
        """
        if not isinstance(identifier, str):
            raise ProjectNotFoundError(repr(identifier), "identifier must be a string")
        cleaned = identifier.strip().split("?", 1)[0]
        if not cleaned or cleaned == "/":
            raise ProjectNotFoundError(identifier, "empty identifier")

        parts = PurePosixPath(cleaned).parts
        if ".." in parts:
            raise ProjectNotFoundError(identifier, "parent references are not allowed")

        candidate = Path(cleaned).expanduser()
        if candidate.is_absolute():
            if self.is_project(candidate):
                return candidate.resolve()
            # "/demo" is the URL form of the short name "demo".
            if len(parts) != 2:
                raise ProjectNotFoundError(identifier)
            cleaned = parts[1]

        short_name = cleaned.strip("/")
        for parent in self._search_paths:
            candidate = parent / short_name
            if self.is_project(candidate):
                logger.debug("Resolved %r to %s via %s", identifier, candidate, parent)
                return candidate.resolve()

        raise ProjectNotFoundError(identifier)
