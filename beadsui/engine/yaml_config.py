"""YAML configuration loader.

Loads an optional YAML file layered between the built-in defaults and
the environment. Every section is optional.

Example YAML:
    server:
      host: 0.0.0.0
      port: 3050
      static_dir: ~/code/beads-ui/dist
      max_inflight_requests: 64

    bd:
      command: /usr/local/bin/bd

    projects:
      marker: .beads
      search_paths:
        - ~/code
        - ~/work

    logging:
      level: DEBUG
"""
from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from .config import ServerConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "beads-ui.yaml"
GLOBAL_CONFIG_PATH = Path.home() / ".beads-ui" / "config.yaml"


def _section(raw: dict[str, Any], name: str, source: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"section '{name}' must be a mapping", source=source)
    return value


def _expect(value: Any, kind: type, key: str, source: str) -> Any:
    # bool is an int subclass; a YAML "port: yes" is a mistake, not 1.
    if isinstance(value, bool) and kind is not bool:
        raise ConfigError(f"'{key}' must be {kind.__name__}", source=source)
    if not isinstance(value, kind):
        raise ConfigError(f"'{key}' must be {kind.__name__}", source=source)
    return value


def apply_yaml_config(base: ServerConfig, raw: dict[str, Any], source: str = "<yaml>") -> ServerConfig:
    """Overlay a parsed YAML mapping onto *base*."""
    if not isinstance(raw, dict):
        raise ConfigError("top level must be a mapping", source=source)

    server = _section(raw, "server", source)
    bd = _section(raw, "bd", source)
    projects = _section(raw, "projects", source)
    log_section = _section(raw, "logging", source)

    updates: dict[str, Any] = {}
    if "host" in server:
        updates["host"] = _expect(server["host"], str, "server.host", source)
    if "port" in server:
        updates["port"] = _expect(server["port"], int, "server.port", source)
    if "static_dir" in server:
        updates["static_dir"] = Path(
            _expect(server["static_dir"], str, "server.static_dir", source)
        ).expanduser()
    if "max_inflight_requests" in server:
        updates["max_inflight_requests"] = _expect(
            server["max_inflight_requests"], int, "server.max_inflight_requests", source,
        )
    if "command" in bd:
        updates["bd_command"] = _expect(bd["command"], str, "bd.command", source)
    if "marker" in projects:
        updates["marker_dir"] = _expect(projects["marker"], str, "projects.marker", source)
    if "search_paths" in projects:
        paths = _expect(projects["search_paths"], list, "projects.search_paths", source)
        updates["search_paths"] = [
            Path(_expect(p, str, "projects.search_paths[]", source)).expanduser()
            for p in paths
        ]
    if "level" in log_section:
        updates["log_level"] = _expect(
            log_section["level"], str, "logging.level", source,
        ).upper()

    return replace(base, **updates)


def load_yaml_config(path: str | Path, base: ServerConfig | None = None) -> ServerConfig:
    """Load a YAML config file and overlay it onto *base* (or defaults)."""
    path = Path(path).expanduser()
    logger.info("load_yaml_config: loading %s (exists=%s)", path, path.exists())
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error("load_yaml_config: config file not found at %s", path.absolute())
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise ConfigError(f"invalid YAML: {exc}", source=str(path)) from exc
    return apply_yaml_config(base or ServerConfig(), raw, source=str(path))


def discover_config_path(cwd: Path | None = None) -> Path | None:
    """Return the first existing config file: ./beads-ui.yaml, then the global one."""
    candidates = [(cwd or Path.cwd()) / CONFIG_FILENAME, GLOBAL_CONFIG_PATH]
    for candidate in candidates:
        if candidate.is_file():
            logger.info("Auto-discovered config: %s", candidate)
            return candidate
    logger.debug(
        "No config file found (tried %s); using defaults",
        ", ".join(str(c) for c in candidates),
    )
    return None


def build_config(
    config_path: str | Path | None = None,
    *,
    cwd: Path | None = None,
    **overrides: Any,
) -> ServerConfig:
    """Build the effective config: defaults < YAML < environment < overrides."""
    config = ServerConfig()
    path = Path(config_path) if config_path else discover_config_path(cwd)
    if path is not None:
        config = load_yaml_config(path, base=config)
    return config.with_env().with_overrides(**overrides)
