"""beads-ui engine: configuration, errors and the command dispatcher."""
from .config import ServerConfig
from .errors import (
    BeadsUIError,
    ConfigError,
    EnvelopeError,
    PayloadError,
    ProjectNotFoundError,
)

__all__ = [
    "BeadsUIError",
    "ConfigError",
    "EnvelopeError",
    "PayloadError",
    "ProjectNotFoundError",
    "ServerConfig",
]
