"""Adapters package - bridges between the dispatcher and the outside world.

This package contains the bd subprocess gateway, the connection
registry and the snapshot broadcaster.
"""
from __future__ import annotations

__all__ = [
    "BdGateway",
    "BroadcastEngine",
    "Connection",
    "ConnectionRegistry",
]

from beadsui.adapters.bd_gateway import BdGateway
from beadsui.adapters.broadcast import BroadcastEngine
from beadsui.adapters.registry import Connection, ConnectionRegistry
