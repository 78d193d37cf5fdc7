"""Tests for SSE framing (storybeat/providers/sse.py) and the generation event wire format."""
from __future__ import annotations

import json

import pytest

from storybeat.protocol.events import (
    GenerationEvent,
    PingEvent,
    ProtocolSerializationError,
    emit,
    parse_event as parse_generation_event,
)
from storybeat.providers.sse import SSEFrameBuffer, parse_event


class TestSSEFrameBuffer:
    """Frames are released only once their blank line arrives."""

    def test_single_frame(self) -> None:
        buffer = SSEFrameBuffer()
        assert buffer.feed('data: {"a":1}\n\n') == ['{"a":1}']

    def test_frame_split_across_reads(self) -> None:
        buffer = SSEFrameBuffer()
        assert buffer.feed('data: {"te') == []
        assert buffer.feed('xt":"hi"}\n') == []
        assert buffer.feed("\n") == ['{"text":"hi"}']

    def test_several_frames_in_one_read(self) -> None:
        buffer = SSEFrameBuffer()
        assert buffer.feed("data: 1\n\ndata: 2\n\ndata: 3") == ["1", "2"]
        assert buffer.pending == "data: 3"
        assert buffer.flush() == ["3"]

    def test_crlf_split_across_reads(self) -> None:
        buffer = SSEFrameBuffer()
        assert buffer.feed("data: x\r") == []
        assert buffer.feed("\n\r\n") == ["x"]

    def test_comments_and_other_fields_ignored(self) -> None:
        buffer = SSEFrameBuffer()
        assert buffer.feed(": keep-alive\n\nevent: message\nid: 4\ndata: y\n\n") == ["y"]

    def test_multiline_data(self) -> None:
        assert parse_event("data: a\ndata: b") == "a\nb"

    def test_flush_empty(self) -> None:
        assert SSEFrameBuffer().flush() == []


class TestGenerationEventWire:
    def test_emit_chunk(self) -> None:
        line = emit(GenerationEvent(beat_id="b1", chunk="Hé"))
        assert line == 'data: {"beatId":"b1","chunk":"Hé","isComplete":false}\n\n'

    def test_completion_has_empty_chunk(self) -> None:
        payload = json.loads(emit(GenerationEvent.completion("b1"))[len("data: "):])
        assert payload == {"beatId": "b1", "chunk": "", "isComplete": True}

    def test_ping(self) -> None:
        assert emit(PingEvent()) == 'data: {"type":"ping"}\n\n'

    def test_parse_round_trip(self) -> None:
        event = parse_generation_event({"beatId": "b1", "chunk": "x", "isComplete": False})
        assert event == GenerationEvent(beat_id="b1", chunk="x")

    def test_parse_rejects_unknown_fields(self) -> None:
        with pytest.raises(ProtocolSerializationError):
            parse_generation_event({"beatId": "b1", "bogus": 1})

    def test_emit_rejects_other_objects(self) -> None:
        with pytest.raises(TypeError):
            emit({"beatId": "b1"})  # type: ignore[arg-type]
