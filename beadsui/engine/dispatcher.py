"""Command dispatcher: the per-connection protocol state machine.

Each inbound frame is parsed into a request envelope, the effective
project is resolved (explicit ``payload.path`` or the connection's
binding), and the request is routed by ``type`` to a handler that
returns exactly one reply. Mutating handlers translate the request into
a ``bd`` argument vector and, on success, schedule a snapshot broadcast
for the project.

A connection starts unbound; ``set-project`` binds it. Every other
command needs a project.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from beadsui.adapters.bd_gateway import BdGateway, open_in_file_browser
from beadsui.adapters.broadcast import BroadcastEngine
from beadsui.adapters.registry import Connection, ConnectionRegistry
from beadsui.engine.errors import EnvelopeError, PayloadError, ProjectNotFoundError
from beadsui.shared.models.envelope import (
    DEFAULT_LIST_KEY,
    SNAPSHOT_TYPE,
    ReplyEnvelope,
    RequestEnvelope,
    parse_request,
)
from beadsui.shared.services.project import ProjectResolver
from beadsui.shared.services.seen_store import SeenStore

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, RequestEnvelope, dict[str, Any], Path], Awaitable[ReplyEnvelope]]
Opener = Callable[[Path], Awaitable[None]]

# Error codes
INVALID_PROJECT = "INVALID_PROJECT"
NO_PROJECT = "NO_PROJECT"
FETCH_ERROR = "FETCH_ERROR"
UPDATE_ERROR = "UPDATE_ERROR"
CREATE_ERROR = "CREATE_ERROR"
DELETE_ERROR = "DELETE_ERROR"
LABEL_ERROR = "LABEL_ERROR"
SHOW_ERROR = "SHOW_ERROR"
COMMENT_ERROR = "COMMENT_ERROR"
OPEN_ERROR = "OPEN_ERROR"
UNKNOWN_TYPE = "UNKNOWN_TYPE"
INVALID_PAYLOAD = "INVALID_PAYLOAD"
BUSY = "BUSY"

SET_PROJECT = "set-project"

_PRIORITY_RE = re.compile(r"^[Pp]?[0-4]$")


# ── Payload validation ──


def _require(payload: dict[str, Any], *keys: str) -> tuple[str, ...]:
    """Non-empty string values for *keys*, or PayloadError naming them all."""
    values = tuple(payload.get(key) for key in keys)
    if not all(isinstance(v, str) and v.strip() for v in values):
        raise PayloadError(f"Missing {' or '.join(keys)}")
    return values


def _issue_id(payload: dict[str, Any], *extra: str) -> tuple[str, ...]:
    values = _require(payload, "id", *extra)
    if values[0].startswith("-"):
        raise PayloadError(f"Invalid issue id: {values[0]}")
    return values


def _optional_str(payload: dict[str, Any], key: str, default: str = "") -> str:
    value = payload.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise PayloadError(f"{key} must be a string")
    return value


def _priority(value: Any) -> str:
    if isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 4:
        return str(value)
    if isinstance(value, str) and _PRIORITY_RE.match(value.strip()):
        return value.strip()
    raise PayloadError(f"Invalid priority: {value!r}")


def _estimate(value: Any) -> str:
    if value is None or value == "":
        return "0"
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return str(value)
    if isinstance(value, str) and value.strip().isdigit():
        return value.strip()
    raise PayloadError(f"Invalid estimate: {value!r}")


def _labels(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise PayloadError("labels must be a list of strings")
    return [v.strip() for v in value if v.strip()]


class CommandDispatcher:
    """Routes request envelopes to command handlers."""

    def __init__(
        self,
        gateway: BdGateway,
        resolver: ProjectResolver,
        registry: ConnectionRegistry,
        broadcaster: BroadcastEngine,
        seen_store: SeenStore,
        *,
        max_inflight: int = 0,
        opener: Opener = open_in_file_browser,
    ) -> None:
        self._gateway = gateway
        self._resolver = resolver
        self._registry = registry
        self._broadcaster = broadcaster
        self._seen = seen_store
        self._max_inflight = max_inflight
        self._opener = opener
        self._commands: dict[str, Handler] = {
            "subscribe-list": self._cmd_subscribe_list,
            "show-issue": self._cmd_show_issue,
            "create-issue": self._cmd_create_issue,
            "update-status": self._cmd_update_status,
            "update-priority": self._cmd_update_priority,
            "update-title": self._cmd_update_title,
            "update-type": self._cmd_update_type,
            "update-estimate": self._cmd_update_estimate,
            "update-external-ref": self._cmd_update_external_ref,
            "delete-issue": self._cmd_delete_issue,
            "label-add": self._cmd_label_add,
            "label-remove": self._cmd_label_remove,
            "add-comment": self._cmd_add_comment,
            "get-seen": self._cmd_get_seen,
            "mark-seen": self._cmd_mark_seen,
            "mark-unseen": self._cmd_mark_unseen,
            "get-project-info": self._cmd_get_project_info,
            "open-in-finder": self._cmd_open_in_finder,
        }

    @property
    def command_names(self) -> list[str]:
        return sorted([SET_PROJECT, *self._commands])

    # ── Entry points ──

    async def handle_frame(self, conn: Connection, raw: str | bytes) -> ReplyEnvelope | None:
        """Parse and dispatch one frame.

        Returns None when no reply must be sent: the frame was malformed
        (its id cannot be trusted) or the handler failed unexpectedly.
        """
        try:
            request = parse_request(raw)
        except EnvelopeError as exc:
            logger.debug("conn=%d dropped frame: %s", conn.conn_id, exc.reason)
            return None

        if self._max_inflight > 0 and conn.inflight >= self._max_inflight:
            logger.warning(
                "conn=%d refused req=%s type=%s: %d requests in flight",
                conn.conn_id, request.id, request.type, conn.inflight,
            )
            return request.fail(BUSY, "Too many requests in flight")

        conn.inflight += 1
        try:
            return await self.dispatch(conn, request)
        except Exception:
            logger.exception(
                "conn=%d req=%s type=%s handler failed",
                conn.conn_id, request.id, request.type,
            )
            return None
        finally:
            conn.inflight -= 1

    async def dispatch(self, conn: Connection, request: RequestEnvelope) -> ReplyEnvelope:
        """Route a parsed request to its handler and return its reply."""
        logger.debug("conn=%d req=%s type=%s", conn.conn_id, request.id, request.type)

        if request.type != SET_PROJECT and request.type not in self._commands:
            return request.fail(UNKNOWN_TYPE, f"Unknown message type: {request.type}")

        payload = request.payload if request.payload is not None else {}
        if not isinstance(payload, dict):
            return request.fail(INVALID_PAYLOAD, "payload must be an object")

        try:
            if request.type == SET_PROJECT:
                return self._set_project(conn, request, payload)

            project, error = self._effective_project(conn, request, payload)
            if error is not None:
                return error
            return await self._commands[request.type](conn, request, payload, project)
        except PayloadError as exc:
            return request.fail(INVALID_PAYLOAD, exc.message)

    # ── Project binding ──

    def _set_project(
        self, conn: Connection, request: RequestEnvelope, payload: dict[str, Any],
    ) -> ReplyEnvelope:
        (identifier,) = _require(payload, "path")
        try:
            project = self._resolver.resolve(identifier)
        except ProjectNotFoundError as exc:
            logger.info("conn=%d set-project rejected: %s", conn.conn_id, exc)
            return request.fail(INVALID_PROJECT, f"Not a beads project: {identifier}")
        self._registry.bind(conn, project)
        return request.reply(self._project_info(project))

    def _effective_project(
        self, conn: Connection, request: RequestEnvelope, payload: dict[str, Any],
    ) -> tuple[Path | None, ReplyEnvelope | None]:
        explicit = payload.get("path")
        if explicit:
            try:
                return self._resolver.resolve(explicit), None
            except ProjectNotFoundError:
                return None, request.fail(INVALID_PROJECT, f"Not a beads project: {explicit}")

        project = conn.bound_project
        if project is None:
            return None, request.fail(
                NO_PROJECT,
                "No project path set. Send set-project first or include path in payload.",
            )
        if not self._resolver.is_project(project):
            logger.warning("conn=%d bound project %s is no longer valid", conn.conn_id, project)
            self._registry.unbind(conn)
            return None, request.fail(INVALID_PROJECT, f"Not a beads project: {project}")
        return project, None

    def _project_info(self, project: Path) -> dict[str, str]:
        return {"path": str(project), "name": self._resolver.project_name(project)}

    # ── Shared handler shapes ──

    async def _mutate(
        self, request: RequestEnvelope, project: Path, args: list[str], error_code: str,
    ) -> ReplyEnvelope:
        result = await self._gateway.invoke(args, project)
        if not result.ok:
            return request.fail(error_code, result.error_message(self._gateway.command))
        self._broadcaster.schedule(project)
        return request.reply(None)

    async def _update_field(
        self, request: RequestEnvelope, project: Path, issue_id: str, flag: str, value: str,
    ) -> ReplyEnvelope:
        return await self._mutate(
            request, project, ["update", issue_id, flag, value], UPDATE_ERROR,
        )

    # ── Read-only commands ──

    async def _cmd_subscribe_list(self, conn, request, payload, project):
        list_key = _optional_str(payload, "list") or DEFAULT_LIST_KEY
        conn.subscriptions.add(list_key)
        result = await self._gateway.list_issues(project)
        if not result.ok:
            return request.fail(FETCH_ERROR, result.error)
        return request.reply(
            {"id": list_key, "type": SNAPSHOT_TYPE, "items": result.data},
            type=SNAPSHOT_TYPE,
        )

    async def _cmd_show_issue(self, conn, request, payload, project):
        (issue_id,) = _issue_id(payload)
        result = await self._gateway.show_issue(issue_id, project)
        if not result.ok:
            return request.fail(SHOW_ERROR, result.error)
        return request.reply(result.data)

    async def _cmd_get_project_info(self, conn, request, payload, project):
        return request.reply(self._project_info(project))

    # ── Mutating commands ──

    async def _cmd_create_issue(self, conn, request, payload, project):
        (title,) = _require(payload, "title")
        args = ["create"]
        issue_type = _optional_str(payload, "type")
        if issue_type:
            args += ["--type", issue_type]
        if payload.get("priority") is not None:
            args += ["--priority", _priority(payload["priority"])]
        description = _optional_str(payload, "description")
        if description:
            args += ["--description", description]
        labels = _labels(payload.get("labels"))
        if labels:
            args += ["--labels", ",".join(labels)]
        parent_id = _optional_str(payload, "parentId")
        if parent_id:
            args += ["--parent", parent_id]
        # "--" ends option parsing so a title like "-h" stays a title.
        args += ["--", title]
        return await self._mutate(request, project, args, CREATE_ERROR)

    async def _cmd_update_status(self, conn, request, payload, project):
        issue_id, status = _issue_id(payload, "status")
        return await self._update_field(request, project, issue_id, "--status", status)

    async def _cmd_update_priority(self, conn, request, payload, project):
        (issue_id,) = _issue_id(payload)
        if payload.get("priority") is None:
            raise PayloadError("Missing id or priority")
        priority = _priority(payload["priority"])
        return await self._update_field(request, project, issue_id, "--priority", priority)

    async def _cmd_update_title(self, conn, request, payload, project):
        issue_id, title = _issue_id(payload, "title")
        return await self._update_field(request, project, issue_id, "--title", title)

    async def _cmd_update_type(self, conn, request, payload, project):
        issue_id, issue_type = _issue_id(payload, "type")
        return await self._update_field(request, project, issue_id, "--type", issue_type)

    async def _cmd_update_estimate(self, conn, request, payload, project):
        (issue_id,) = _issue_id(payload)
        estimate = _estimate(payload.get("estimate"))
        return await self._update_field(request, project, issue_id, "--estimate", estimate)

    async def _cmd_update_external_ref(self, conn, request, payload, project):
        (issue_id,) = _issue_id(payload)
        ref = _optional_str(payload, "externalRef")
        return await self._update_field(request, project, issue_id, "--external-ref", ref)

    async def _cmd_delete_issue(self, conn, request, payload, project):
        (issue_id,) = _issue_id(payload)
        return await self._mutate(
            request, project, ["delete", issue_id, "--force"], DELETE_ERROR,
        )

    async def _cmd_label_add(self, conn, request, payload, project):
        issue_id, label = _issue_id(payload, "label")
        return await self._mutate(
            request, project, ["label", "add", "--", issue_id, label], LABEL_ERROR,
        )

    async def _cmd_label_remove(self, conn, request, payload, project):
        issue_id, label = _issue_id(payload, "label")
        return await self._mutate(
            request, project, ["label", "remove", "--", issue_id, label], LABEL_ERROR,
        )

    async def _cmd_add_comment(self, conn, request, payload, project):
        issue_id, content = _issue_id(payload, "content")
        result = await self._gateway.invoke(["comments", "add", "--", issue_id, content], project)
        if not result.ok:
            return request.fail(COMMENT_ERROR, result.error_message(self._gateway.command))
        self._broadcaster.schedule(project)

        detail = await self._gateway.show_issue(issue_id, project)
        if not detail.ok:
            logger.info("Comment added to %s but re-fetch failed: %s", issue_id, detail.error)
            return request.reply(None)
        return request.reply(detail.data)

    # ── Seen state ──

    async def _cmd_get_seen(self, conn, request, payload, project):
        state = await self._seen.read(project)
        return request.reply(state.to_dict())

    async def _cmd_mark_seen(self, conn, request, payload, project):
        (issue_id,) = _require(payload, "id")
        state = await self._seen.add(project, issue_id)
        return request.reply(state.to_dict())

    async def _cmd_mark_unseen(self, conn, request, payload, project):
        (issue_id,) = _require(payload, "id")
        state = await self._seen.remove(project, issue_id)
        return request.reply(state.to_dict())

    # ── Host integration ──

    async def _cmd_open_in_finder(self, conn, request, payload, project):
        try:
            await self._opener(project)
        except OSError as exc:
            logger.warning("Could not open %s in file browser: %s", project, exc)
            return request.fail(OPEN_ERROR, f"Could not open file browser: {exc.strerror or exc}")
        return request.reply({"opened": True})
