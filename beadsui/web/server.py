"""HTTP + WebSocket server for beads-ui.

Serves the built browser UI (with single-page-app fallback) and one
WebSocket per client. Each WebSocket carries request/reply traffic for
the command catalog plus unsolicited snapshot pushes for the project the
connection is bound to.

Usage:
    beads-ui [--port PORT]
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
import time
import uuid
from pathlib import Path, PurePosixPath

from aiohttp import WSCloseCode, WSMsgType, web

from beadsui.adapters.bd_gateway import BdGateway, open_in_file_browser
from beadsui.adapters.broadcast import BroadcastEngine
from beadsui.adapters.registry import Connection, ConnectionRegistry
from beadsui.engine.config import ServerConfig
from beadsui.engine.dispatcher import CommandDispatcher, Opener
from beadsui.shared.services.project import ProjectResolver
from beadsui.shared.services.seen_store import SeenStore

logger = logging.getLogger(__name__)

MIME_TYPES = {
    ".html": "text/html",
    ".js": "application/javascript",
    ".css": "text/css",
    ".json": "application/json",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
}


class BeadsServer:
    """HTTP + WebSocket front end wiring the dispatcher to client sockets.

    Thin adapter: issue state lives in ``bd``; this class only handles
    routing, socket lifecycles and frame scheduling.
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        *,
        gateway: BdGateway | None = None,
        opener: Opener | None = None,
    ) -> None:
        self._config = config or ServerConfig()
        self._host = self._config.host
        self._port = self._config.port
        self._static_dir = Path(self._config.static_dir).resolve()
        self._started_at = time.time()

        self._gateway = gateway or BdGateway(self._config.bd_command)
        self._resolver = ProjectResolver(self._config.search_paths, self._config.marker_dir)
        self._registry = ConnectionRegistry()
        self._broadcaster = BroadcastEngine(self._gateway, self._registry)
        self._seen = SeenStore(self._config.marker_dir)
        self._dispatcher = CommandDispatcher(
            self._gateway,
            self._resolver,
            self._registry,
            self._broadcaster,
            self._seen,
            max_inflight=self._config.max_inflight_requests,
            opener=opener or open_in_file_browser,
        )
        self._frame_tasks: set[asyncio.Task] = set()

        self._app = web.Application(middlewares=[self._access_log_middleware])
        self._app.on_shutdown.append(self._on_shutdown)
        self._setup_routes()

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def broadcaster(self) -> BroadcastEngine:
        return self._broadcaster

    @property
    def dispatcher(self) -> CommandDispatcher:
        return self._dispatcher

    # ── Middleware ──

    @web.middleware
    async def _access_log_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        """One log line per request; WebSocket upgrades are logged when the socket closes."""
        tag = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        request["req_id"] = tag
        started = time.perf_counter()
        status: int | str = "error"
        try:
            response = await handler(request)
            status = response.status
            return response
        except web.HTTPException as exc:
            status = exc.status
            raise
        except Exception:
            logger.exception("%s %s req=%s crashed", request.method, request.path_qs, tag)
            raise
        finally:
            channel = "WS" if request.headers.get("Upgrade", "").lower() == "websocket" else "HTTP"
            logger.info(
                "%s %s %s req=%s remote=%s status=%s %.1fms",
                channel, request.method, request.path_qs, tag, request.remote,
                status, (time.perf_counter() - started) * 1000,
            )

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/health", self._handle_health)
        r.add_get("/ws", self._handle_ws)
        # Static assets, SPA fallback, and WebSocket upgrades on any path.
        r.add_get("/{tail:.*}", self._handle_static)

    # ── Lifecycle ──

    async def start(self) -> None:
        """Start the server and print the port to stdout."""
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()

        actual_port = self._bound_port(runner)
        if actual_port is None:
            raise RuntimeError("beads-ui server started but no listening socket was reported.")
        self._port = actual_port

        sys.stdout.write(json.dumps({"port": actual_port}) + "\n")
        sys.stdout.flush()
        logger.info("beads-ui server listening on http://%s:%d", self._host, actual_port)
        logger.info("Open a project: http://%s:%d/<project-name>", self._host, actual_port)
        if not (self._static_dir / "index.html").is_file():
            logger.warning("No UI build found at %s; only the WebSocket API is usable", self._static_dir)

        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Server shutting down")
        finally:
            await runner.cleanup()

    async def _on_shutdown(self, app: web.Application) -> None:
        for conn in self._registry.connections():
            await conn.socket.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")
        await self._broadcaster.drain()

    @staticmethod
    def _bound_port(runner: web.AppRunner) -> int | None:
        """Port of the first listening TCP socket (resolves ``port=0``)."""
        for address in runner.addresses:
            if isinstance(address, tuple) and len(address) >= 2:
                return int(address[1])
        return None

    # ── HTTP handlers ──

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "pid": os.getpid(),
            "uptime_seconds": round(max(0.0, time.time() - self._started_at), 3),
            "connections": len(self._registry),
        })

    async def _handle_static(self, request: web.Request) -> web.StreamResponse:
        if request.headers.get("Upgrade", "").lower() == "websocket":
            return await self._handle_ws(request)

        rel_path = request.match_info.get("tail", "")
        ext = PurePosixPath(rel_path).suffix.lower()
        if ext in MIME_TYPES:
            full_path = (self._static_dir / rel_path.lstrip("/")).resolve()
            if not full_path.is_relative_to(self._static_dir):
                return web.Response(status=403, text="Forbidden")
            if not full_path.is_file():
                return web.Response(status=404, text="Not Found")
            return web.FileResponse(full_path, headers={"Content-Type": MIME_TYPES[ext]})

        index = self._static_dir / "index.html"
        if not index.is_file():
            return web.Response(status=404, text="Not Found - build the UI first")
        return web.FileResponse(index, headers={"Content-Type": "text/html"})

    # ── WebSocket ──

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=30.0)
        await ws.prepare(request)

        conn = Connection(ws, remote=request.remote)
        self._registry.register(conn)
        try:
            async for msg in ws:
                if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                    self._schedule_frame(conn, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning("conn=%d socket error: %s", conn.conn_id, ws.exception())
        finally:
            self._registry.unregister(conn)
        return ws

    def _schedule_frame(self, conn: Connection, data: str | bytes) -> None:
        # One task per frame: dispatch order follows arrival, completion may not.
        task = asyncio.create_task(self._process_frame(conn, data))
        self._frame_tasks.add(task)
        task.add_done_callback(self._frame_tasks.discard)

    async def _process_frame(self, conn: Connection, data: str | bytes) -> None:
        try:
            reply = await self._dispatcher.handle_frame(conn, data)
            if reply is None:
                return
            if not await conn.send_text(reply.to_json()):
                logger.debug("conn=%d reply to req=%s discarded (socket closed)", conn.conn_id, reply.id)
        except Exception:
            logger.exception("conn=%d frame processing failed", conn.conn_id)
