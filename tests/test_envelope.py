from __future__ import annotations

import json

import pytest

from beadsui.engine.errors import EnvelopeError
from beadsui.shared.models.envelope import (
    BROADCAST_ID,
    ReplyEnvelope,
    parse_request,
    snapshot_push,
)


def test_parse_request_with_payload() -> None:
    req = parse_request('{"id": "7", "type": "show-issue", "payload": {"id": "demo-1"}}')
    assert req.id == "7"
    assert req.type == "show-issue"
    assert req.payload == {"id": "demo-1"}


def test_parse_request_accepts_binary_utf8_frames() -> None:
    req = parse_request(b'{"id": "a", "type": "get-seen"}')
    assert req.type == "get-seen"
    assert req.payload is None


@pytest.mark.parametrize(
    "frame",
    [
        "not json",
        "[1, 2, 3]",
        '"just a string"',
        '{"type": "get-seen"}',
        '{"id": "1"}',
        '{"id": 1, "type": "get-seen"}',
        '{"id": "", "type": "get-seen"}',
        '{"id": "1", "type": ""}',
        b"\xff\xfe",
    ],
)
def test_malformed_frames_raise(frame) -> None:
    with pytest.raises(EnvelopeError):
        parse_request(frame)


def test_fail_reply_carries_error_and_echoes_id() -> None:
    req = parse_request('{"id": "x9", "type": "update-status"}')
    reply = req.fail("INVALID_PAYLOAD", "Missing id or status")
    data = json.loads(reply.to_json())
    assert data == {
        "id": "x9",
        "type": "update-status",
        "ok": False,
        "payload": None,
        "error": {"code": "INVALID_PAYLOAD", "message": "Missing id or status"},
    }


def test_success_reply_omits_error_key() -> None:
    data = ReplyEnvelope(id="1", type="get-seen", payload={"seen": []}).to_dict()
    assert data["ok"] is True
    assert "error" not in data


def test_snapshot_push_shape() -> None:
    items = [{"id": "demo-1", "status": "closed"}]
    data = snapshot_push(items).to_dict()
    assert data == {
        "id": BROADCAST_ID,
        "type": "snapshot",
        "ok": True,
        "payload": {"id": "all-issues", "type": "snapshot", "items": items},
    }
