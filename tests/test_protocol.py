"""Tests for ptybridge.protocol (message model, encode/decode)."""

from __future__ import annotations

import json

import pytest

from ptybridge.errors import ProtocolError
from ptybridge.protocol import (
    ClosedMessage,
    CreatedMessage,
    CreateMessage,
    OutputMessage,
    ResizeMessage,
    TerminateMessage,
    UnknownMessage,
    WriteMessage,
    decode_message,
    encode_message,
)


# ---------------------------------------------------------------------------
# encode_message
# ---------------------------------------------------------------------------


class TestEncode:
    def test_one_line_with_newline(self) -> None:
        data = encode_message(WriteMessage(id=3, data="ls\n"))
        assert data.endswith(b"\n")
        # The embedded newline is escaped, so the frame is a single line
        assert data.count(b"\n") == 1

    def test_create_has_no_id(self) -> None:
        msg = CreateMessage(argv=["/bin/echo", "hi"], rows=24, columns=80, env={"A": "1"})
        payload = json.loads(encode_message(msg))
        assert payload == {
            "type": "create",
            "argv": ["/bin/echo", "hi"],
            "rows": 24,
            "columns": 80,
            "env": {"A": "1"},
        }

    def test_terminate_is_type_only(self) -> None:
        payload = json.loads(encode_message(TerminateMessage()))
        assert payload == {"type": "terminate"}

    def test_request_id_included_when_set(self) -> None:
        msg = CreateMessage(argv=["sh"], request_id=5)
        assert json.loads(encode_message(msg))["request_id"] == 5

    def test_resize_fields(self) -> None:
        payload = json.loads(encode_message(ResizeMessage(id=2, rows=40, columns=120)))
        assert payload == {"type": "resize", "id": 2, "rows": 40, "columns": 120}

    def test_non_ascii_is_utf8(self) -> None:
        data = encode_message(WriteMessage(id=1, data="héllo ✓"))
        assert json.loads(data.decode("utf-8"))["data"] == "héllo ✓"


# ---------------------------------------------------------------------------
# decode_message
# ---------------------------------------------------------------------------


class TestDecode:
    def test_created(self) -> None:
        msg = decode_message(b'{"type":"created","id":7}')
        assert isinstance(msg, CreatedMessage)
        assert msg.id == 7
        assert msg.request_id is None

    def test_output(self) -> None:
        msg = decode_message('{"type":"output","id":3,"data":"hello"}')
        assert isinstance(msg, OutputMessage)
        assert msg.data == "hello"

    def test_closed(self) -> None:
        msg = decode_message(b'{"type":"closed","id":4}')
        assert isinstance(msg, ClosedMessage)
        assert msg.id == 4

    def test_host_direction_types_decode(self) -> None:
        assert isinstance(decode_message(b'{"type":"terminate"}'), TerminateMessage)
        assert isinstance(
            decode_message(b'{"type":"write","id":1,"data":"x"}'), WriteMessage
        )

    def test_extra_fields_ignored(self) -> None:
        msg = decode_message(b'{"type":"closed","id":4,"exit_code":0}')
        assert isinstance(msg, ClosedMessage)

    def test_invalid_json(self) -> None:
        with pytest.raises(ProtocolError) as exc_info:
            decode_message(b'{"type": "created", ')
        assert exc_info.value.line == b'{"type": "created", '

    def test_invalid_utf8(self) -> None:
        with pytest.raises(ProtocolError):
            decode_message(b'{"type":"output","id":1,"data":"\xff"}')

    def test_not_an_object(self) -> None:
        with pytest.raises(ProtocolError):
            decode_message(b"[1, 2, 3]")

    def test_missing_type(self) -> None:
        with pytest.raises(ProtocolError):
            decode_message(b'{"id": 1}')

    def test_unknown_type(self) -> None:
        message = decode_message(b'{"type":"bogus","id":1}')
        assert isinstance(message, UnknownMessage)
        assert message.type == "bogus"

    def test_non_string_type(self) -> None:
        with pytest.raises(ProtocolError):
            decode_message(b'{"type":5,"id":1}')

    def test_missing_id(self) -> None:
        with pytest.raises(ProtocolError):
            decode_message(b'{"type":"output","data":"x"}')

    def test_negative_id_rejected(self) -> None:
        with pytest.raises(ProtocolError):
            decode_message(b'{"type":"created","id":-1}')
