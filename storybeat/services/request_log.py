"""
Bounded log of provider requests.

Every call a provider adapter makes is recorded as pending and later
resolved to success, error or aborted. The newest entries come first and
the log never grows past its configured size.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)

PROMPT_PREVIEW_CHARS = 2000


class RequestStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    ABORTED = "aborted"


@dataclass
class RequestLogEntry:
    id: str
    provider: str
    model: str
    endpoint: str
    prompt: str
    max_tokens: int
    streaming: bool
    word_count: Optional[int] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: RequestStatus = RequestStatus.PENDING
    response: Optional[str] = None
    error: Optional[str] = None
    http_status: Optional[int] = None
    duration_ms: Optional[int] = None
    safety: Optional[dict[str, Any]] = None
    _started: float = field(default_factory=time.monotonic, repr=False)

    def _finish(self, status: RequestStatus) -> None:
        self.status = status
        self.duration_ms = int((time.monotonic() - self._started) * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "provider": self.provider,
            "model": self.model,
            "endpoint": self.endpoint,
            "prompt": self.prompt,
            "maxTokens": self.max_tokens,
            "wordCount": self.word_count,
            "streaming": self.streaming,
            "status": self.status.value,
            "response": self.response,
            "error": self.error,
            "httpStatus": self.http_status,
            "duration": self.duration_ms,
            "safety": self.safety,
        }


class RequestLog:
    """In-memory request history, newest first."""

    def __init__(self, max_entries: int = 50) -> None:
        self.max_entries = max_entries
        self._entries: list[RequestLogEntry] = []

    def log_request(
        self,
        *,
        provider: str,
        model: str,
        endpoint: str,
        prompt: str,
        max_tokens: int,
        streaming: bool,
        word_count: Optional[int] = None,
    ) -> str:
        entry = RequestLogEntry(
            id=uuid.uuid4().hex,
            provider=provider,
            model=model,
            endpoint=endpoint,
            prompt=prompt[:PROMPT_PREVIEW_CHARS],
            max_tokens=max_tokens,
            streaming=streaming,
            word_count=word_count,
        )
        self._entries.insert(0, entry)
        del self._entries[self.max_entries:]
        return entry.id

    def get(self, log_id: str) -> Optional[RequestLogEntry]:
        for entry in self._entries:
            if entry.id == log_id:
                return entry
        return None

    def log_success(self, log_id: str, response: str, safety: Optional[dict[str, Any]] = None) -> None:
        entry = self.get(log_id)
        if entry is None:
            return
        entry.response = response
        entry.safety = safety
        entry._finish(RequestStatus.SUCCESS)

    def log_error(self, log_id: str, error: str, http_status: Optional[int] = None) -> None:
        entry = self.get(log_id)
        if entry is None:
            return
        entry.error = error
        entry.http_status = http_status
        entry._finish(RequestStatus.ERROR)

    def log_aborted(self, log_id: str) -> None:
        entry = self.get(log_id)
        if entry is None:
            return
        entry._finish(RequestStatus.ABORTED)

    def entries(self) -> list[RequestLogEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()
