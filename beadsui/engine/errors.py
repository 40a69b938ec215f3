"""Exception hierarchy for the beads-ui server.

Specific exceptions for each failure mode. The dispatcher converts
them into reply error codes; none of them should reach the socket
handler.
"""
from __future__ import annotations


class BeadsUIError(Exception):
    """Base exception for all beads-ui errors."""


class ProjectNotFoundError(BeadsUIError):
    """Identifier does not resolve to a directory containing the marker."""
    def __init__(self, identifier: str, reason: str = ""):
        self.identifier = identifier
        self.reason = reason
        detail = f" ({reason})" if reason else ""
        super().__init__(f"Not a beads project: {identifier}{detail}")


class EnvelopeError(BeadsUIError):
    """Inbound frame is not a well-formed request envelope."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Malformed envelope: {reason}")


class PayloadError(BeadsUIError):
    """Request payload is missing a required field or has a bad value."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigError(BeadsUIError):
    """Configuration file or environment value is invalid."""
    def __init__(self, message: str, source: str | None = None):
        self.source = source
        prefix = f"{source}: " if source else ""
        super().__init__(f"{prefix}{message}")
