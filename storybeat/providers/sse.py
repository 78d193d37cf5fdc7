"""Incremental server-sent-events framing.

Network reads do not line up with SSE events: a ``data:`` line can arrive
split across two reads, and one read can carry several events. The buffer
only releases an event once its terminating blank line has been seen.
"""
from __future__ import annotations

from typing import Optional


class SSEFrameBuffer:
    """Accumulates raw text and yields the data payload of each complete event."""

    def __init__(self) -> None:
        self._buffer = ""
        self._pending_cr = ""

    def feed(self, text: str) -> list[str]:
        """Add a read and return the payloads of events it completed."""
        data = self._pending_cr + text
        self._pending_cr = ""
        # A trailing CR may be the first half of a CRLF split across reads.
        if data.endswith("\r"):
            data, self._pending_cr = data[:-1], "\r"
        self._buffer += data.replace("\r\n", "\n").replace("\r", "\n")

        payloads: list[str] = []
        while "\n\n" in self._buffer:
            raw, self._buffer = self._buffer.split("\n\n", 1)
            payload = parse_event(raw)
            if payload is not None:
                payloads.append(payload)
        return payloads

    def flush(self) -> list[str]:
        """Payload of a final event the server closed without a blank line."""
        remaining = (self._buffer + self._pending_cr.replace("\r", "\n")).strip("\n")
        self._buffer = ""
        self._pending_cr = ""
        if not remaining:
            return []
        payload = parse_event(remaining)
        return [payload] if payload is not None else []

    @property
    def pending(self) -> str:
        return self._buffer


def parse_event(raw: str) -> Optional[str]:
    """Join the ``data:`` lines of one event; None for comment-only events."""
    data_lines: list[str] = []
    for line in raw.split("\n"):
        if not line or line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field != "data":
            continue
        data_lines.append(value[1:] if value.startswith(" ") else value)
    if not data_lines:
        return None
    return "\n".join(data_lines)
