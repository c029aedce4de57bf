"""Tests for wire frames."""

from __future__ import annotations

import json

import pytest

from sessionflow import SerializationError
from sessionflow.codec import CHOICE, MESSAGE, Frame, decode_frame, encode_frame


class TestFrame:
    def test_message_frame(self):
        frame = Frame.message("Client", "int", 3)
        assert frame.kind == MESSAGE
        assert not frame.is_choice
        assert frame.to_dict() == {
            "kind": "message",
            "sender": "Client",
            "schema": "int",
            "value": 3,
        }

    def test_choice_frame(self):
        frame = Frame.choice("Client", "stop")
        assert frame.kind == CHOICE
        assert frame.is_choice
        assert frame.to_dict() == {"kind": "choice", "sender": "Client", "label": "stop"}

    def test_from_dict(self):
        data = {"kind": "message", "sender": "A", "schema": "str", "value": "hi"}
        assert Frame.from_dict(data) == Frame.message("A", "str", "hi")

    @pytest.mark.parametrize(
        "data",
        [
            [],
            {"kind": "poke", "sender": "A"},
            {"kind": "message", "schema": "str"},
            {"kind": "message", "sender": "", "schema": "str"},
            {"kind": "message", "sender": "A"},
            {"kind": "choice", "sender": "A"},
        ],
    )
    def test_malformed_frames(self, data):
        with pytest.raises(SerializationError):
            Frame.from_dict(data)


class TestEncoding:
    def test_encoding_is_compact_json(self):
        data = encode_frame(Frame.message("A", "list[int]", [1, 2]))
        assert data == b'{"kind":"message","sender":"A","schema":"list[int]","value":[1,2]}'
        assert json.loads(data)["value"] == [1, 2]

    def test_decode(self):
        frame = Frame.choice("A", "more")
        assert decode_frame(encode_frame(frame)) == frame

    def test_decode_accepts_text(self):
        assert decode_frame('{"kind":"choice","sender":"A","label":"x"}').label == "x"

    def test_unencodable_value(self):
        with pytest.raises(SerializationError) as exc_info:
            encode_frame(Frame.message("A", "any", object()))
        assert exc_info.value.details["schema"] == "any"

    def test_malformed_json(self):
        with pytest.raises(SerializationError):
            decode_frame(b"{not json")

    def test_unicode_payload(self):
        frame = Frame.message("A", "str", "héllo → wörld")
        assert decode_frame(encode_frame(frame)).value == "héllo → wörld"
