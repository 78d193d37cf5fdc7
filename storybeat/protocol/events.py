"""Generation event model and its SSE wire encoding.

Wire format: ``data: {"beatId": ..., "chunk": ..., "isComplete": ...}\\n\\n``.
The completion event always carries an empty chunk.
"""
from __future__ import annotations

import json
from collections.abc import Mapping

from pydantic import ConfigDict, ValidationError

from storybeat.models.base import CamelModel, to_camel


class ProtocolSerializationError(Exception):
    """Raised when an inbound event dict does not validate."""


class GenerationEvent(CamelModel):
    """One streamed chunk for a beat, or the end of its stream."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )

    beat_id: str
    chunk: str = ""
    is_complete: bool = False

    @classmethod
    def completion(cls, beat_id: str) -> GenerationEvent:
        return cls(beat_id=beat_id, chunk="", is_complete=True)


class PingEvent(CamelModel):
    """Keep-alive sent on idle SSE connections."""

    type: str = "ping"


def emit(event: GenerationEvent | PingEvent) -> str:
    """Serialize an event to SSE wire format."""
    if not isinstance(event, (GenerationEvent, PingEvent)):
        raise TypeError(f"emit() requires a protocol event, got {type(event).__name__}.")
    data = event.model_dump(by_alias=True)
    return f"data: {json.dumps(data, separators=(',', ':'), ensure_ascii=False)}\n\n"


def parse_event(data: Mapping[str, object]) -> GenerationEvent:
    """Inverse of ``emit`` for generation events."""
    try:
        return GenerationEvent.model_validate(dict(data))
    except ValidationError as exc:
        raise ProtocolSerializationError(f"Generation event failed validation: {exc}") from exc
