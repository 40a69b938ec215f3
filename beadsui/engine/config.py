"""Server configuration loaded from defaults, YAML and environment.

All settings have sensible defaults. Override via BEADS_UI_* env vars
(and ``PORT`` for the listen port).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3050
DEFAULT_MARKER_DIR = ".beads"


def default_search_paths() -> list[Path]:
    """Parent directories probed, in order, for short project names."""
    home = Path.home()
    return [
        home / "code",
        home / "projects",
        home / "Developer",
        home / "dev",
    ]


def _env_int(name: str, fallback: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return fallback
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"expected an integer, got {raw!r}", source=name) from exc


@dataclass
class ServerConfig:
    """beads-ui server configuration."""

    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    # Built browser UI; index.html is the SPA fallback document.
    static_dir: Path = field(default_factory=lambda: Path.cwd() / "dist")
    # Requests beyond this many in flight on one socket are refused with BUSY.
    # Set to 0 to disable the cap.
    max_inflight_requests: int = 64

    # External tool
    bd_command: str = "bd"

    # Project resolution
    marker_dir: str = DEFAULT_MARKER_DIR
    search_paths: list[Path] = field(default_factory=default_search_paths)

    # Logging
    log_level: str = "INFO"

    def with_env(self) -> ServerConfig:
        """Return a copy with BEADS_UI_* / PORT environment overrides applied."""
        env_vars = {
            k: v for k, v in os.environ.items()
            if k.startswith("BEADS_UI_") or k == "PORT"
        }
        if env_vars:
            logger.info(
                "ServerConfig: env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(env_vars.items())),
            )

        search_env = os.getenv("BEADS_UI_SEARCH_PATHS")
        search_paths = self.search_paths
        if search_env:
            search_paths = [
                Path(p).expanduser() for p in search_env.split(os.pathsep) if p.strip()
            ]

        static_env = os.getenv("BEADS_UI_STATIC_DIR")
        return replace(
            self,
            host=os.getenv("BEADS_UI_HOST", self.host),
            port=_env_int("PORT", self.port),
            static_dir=Path(static_env).expanduser() if static_env else self.static_dir,
            max_inflight_requests=_env_int(
                "BEADS_UI_MAX_INFLIGHT", self.max_inflight_requests
            ),
            bd_command=os.getenv("BEADS_UI_BD_COMMAND", self.bd_command),
            search_paths=search_paths,
            log_level=os.getenv("BEADS_UI_LOG_LEVEL", self.log_level).upper(),
        )

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load configuration from defaults plus environment variables."""
        return cls().with_env()

    def with_overrides(self, **overrides: Any) -> ServerConfig:
        """Apply CLI overrides, ignoring ones left as None."""
        applied = {k: v for k, v in overrides.items() if v is not None}
        if "static_dir" in applied:
            applied["static_dir"] = Path(applied["static_dir"]).expanduser()
        return replace(self, **applied)
