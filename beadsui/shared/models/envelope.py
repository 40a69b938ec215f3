"""Wire envelopes exchanged over the WebSocket.

Request:  {id, type, payload?}
Reply:    {id, type, ok, payload, error?: {code, message}}
Push:     {id: "broadcast", type: "snapshot", ok: true,
           payload: {id, type: "snapshot", items}}
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from beadsui.engine.errors import EnvelopeError

BROADCAST_ID = "broadcast"
SNAPSHOT_TYPE = "snapshot"
DEFAULT_LIST_KEY = "all-issues"


@dataclass
class ErrorInfo:
    code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


@dataclass
class RequestEnvelope:
    """Inbound request. ``id`` is opaque and only used for correlation."""

    id: str
    type: str
    payload: Any = None

    def reply(self, payload: Any = None, *, type: str | None = None) -> ReplyEnvelope:
        return ReplyEnvelope(id=self.id, type=type or self.type, ok=True, payload=payload)

    def fail(self, code: str, message: str) -> ReplyEnvelope:
        return ReplyEnvelope(
            id=self.id, type=self.type, ok=False, error=ErrorInfo(code, message),
        )


@dataclass
class ReplyEnvelope:
    """Outbound reply or push."""

    id: str
    type: str
    ok: bool = True
    payload: Any = None
    error: ErrorInfo | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "ok": self.ok,
            "payload": self.payload,
        }
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def snapshot_push(items: list[dict[str, Any]], list_key: str = DEFAULT_LIST_KEY) -> ReplyEnvelope:
    """Build the unsolicited push sent after a mutation."""
    return ReplyEnvelope(
        id=BROADCAST_ID,
        type=SNAPSHOT_TYPE,
        ok=True,
        payload={"id": list_key, "type": SNAPSHOT_TYPE, "items": items},
    )


def parse_request(raw: str | bytes) -> RequestEnvelope:
    """Parse one inbound frame.

    Raises:
        EnvelopeError: if the frame is not JSON, not an object, or lacks a
            non-empty string ``id`` and ``type``. Such frames get no reply.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EnvelopeError("frame is not UTF-8") from exc
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as exc:
        raise EnvelopeError("frame is not JSON") from exc
    if not isinstance(data, dict):
        raise EnvelopeError("frame is not a JSON object")

    req_id = data.get("id")
    req_type = data.get("type")
    if not isinstance(req_id, str) or not req_id:
        raise EnvelopeError("missing or non-string id")
    if not isinstance(req_type, str) or not req_type:
        raise EnvelopeError("missing or non-string type")

    return RequestEnvelope(
        id=req_id,
        type=req_type,
        payload=data.get("payload"),
    )
