"""
Error types for beat generation.

Provider failures are normalized into ``ProviderError`` subclasses so the
orchestrator can decide between the non-streaming fallback, the synthetic
fallback text, and a silent cancel without knowing which backend failed.
"""
from __future__ import annotations

from typing import Any, Optional


class StorybeatError(Exception):
    """Base class for all storybeat errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(StorybeatError):
    """No usable provider or model for a generation.

    Raised before any network attempt.
    """

    code = "configuration"


class ProviderError(StorybeatError):
    """A backend failed to produce text.

    Carries the normalized error shape ``{message, code, httpStatus, details}``.
    """

    code = "provider_error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        http_status: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        if code is not None:
            self.code = code
        self.http_status = http_status

    def to_dict(self) -> dict[str, Any]:
        """Wire shape, omitting empty optional fields."""
        data: dict[str, Any] = {"message": self.message, "code": self.code}
        if self.http_status is not None:
            data["httpStatus"] = self.http_status
        if self.details:
            data["details"] = self.details
        return data


class TransportError(ProviderError):
    """Network, HTTP status, or stream parse failure.

    Eligible for the single non-streaming fallback.
    """

    code = "transport_error"


class ContentFilterError(ProviderError):
    """The backend refused or truncated the output on safety grounds."""

    code = "content_filtered"

    def __init__(
        self,
        message: str,
        blocked_category: Optional[str] = None,
        finish_reason: Optional[str] = None,
        http_status: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        merged = dict(details or {})
        if blocked_category:
            merged.setdefault("blockedCategory", blocked_category)
        if finish_reason:
            merged.setdefault("finishReason", finish_reason)
        super().__init__(message, http_status=http_status, details=merged)
        self.blocked_category = blocked_category
        self.finish_reason = finish_reason


class InvalidPositionError(StorybeatError):
    """A document position does not resolve where an operation needs it."""

    def __init__(self, pos: int, reason: str):
        self.pos = pos
        self.reason = reason
        super().__init__(f"Invalid position {pos}: {reason}")
