"""Registry of live WebSocket connections and their project bindings."""
from __future__ import annotations

import itertools
import logging
import weakref
from pathlib import Path
from typing import Any

from aiohttp import web

logger = logging.getLogger(__name__)

_connection_ids = itertools.count(1)


class Connection:
    """Per-socket state. Mutated only by the dispatcher and the registry."""

    def __init__(self, socket: web.WebSocketResponse | Any, remote: str | None = None) -> None:
        self.conn_id = next(_connection_ids)
        self.socket = socket
        self.remote = remote
        self.bound_project: Path | None = None
        self.subscriptions: set[str] = set()
        self.inflight = 0

    @property
    def closed(self) -> bool:
        return bool(getattr(self.socket, "closed", False))

    async def send_text(self, text: str) -> bool:
        """Send one text frame; False if the socket is already gone."""
        if self.closed:
            return False
        try:
            await self.socket.send_str(text)
        except (ConnectionResetError, RuntimeError) as exc:
            logger.debug("Send to conn=%d failed: %s", self.conn_id, exc)
            return False
        return True

    def __repr__(self) -> str:
        return f"Connection(id={self.conn_id}, project={self.bound_project})"


class ConnectionRegistry:
    """Tracks live connections by identity.

    Held weakly: a connection that was dropped without an ``unregister``
    call disappears once collected, and closed sockets are never listed.
    """

    def __init__(self) -> None:
        self._connections: weakref.WeakSet[Connection] = weakref.WeakSet()

    def register(self, conn: Connection) -> None:
        self._connections.add(conn)
        logger.info("Client connected conn=%d active=%d", conn.conn_id, len(self._connections))

    def unregister(self, conn: Connection) -> None:
        self._connections.discard(conn)
        conn.bound_project = None
        conn.subscriptions.clear()
        logger.info("Client disconnected conn=%d active=%d", conn.conn_id, len(self._connections))

    def bind(self, conn: Connection, project: Path) -> None:
        if conn.bound_project != project:
            logger.info("conn=%d bound to %s", conn.conn_id, project)
        conn.bound_project = project

    def unbind(self, conn: Connection) -> None:
        conn.bound_project = None

    def connections(self) -> list[Connection]:
        return list(self._connections)

    def list_by_project(self, project: Path) -> list[Connection]:
        """Open connections bound to exactly *project*."""
        return [
            conn for conn in list(self._connections)
            if conn.bound_project is not None
            and conn.bound_project == project
            and not conn.closed
        ]

    def __len__(self) -> int:
        return len(self._connections)
