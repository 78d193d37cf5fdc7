"""
Generation State Machine.

Explicit lifecycle of one beat generation. Never set a status directly;
always go through assert_transition().

States:
    IDLE: no generation for the beat
    REQUESTING: prompt built, provider request sent, no chunk yet
    STREAMING: at least one chunk received
    COMPLETED: final text delivered
    CANCELLED: stopped by the user or superseded by a newer generation
    FAILED: provider failed past the single fallback; placeholder text delivered

Every terminal state returns to IDLE once the beat's attributes are finalized.
"""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class GenerationStatus(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATES: frozenset[GenerationStatus] = frozenset({
    GenerationStatus.COMPLETED,
    GenerationStatus.CANCELLED,
    GenerationStatus.FAILED,
})

_TRANSITIONS: dict[GenerationStatus, frozenset[GenerationStatus]] = {
    GenerationStatus.IDLE: frozenset({
        GenerationStatus.REQUESTING,
    }),
    GenerationStatus.REQUESTING: frozenset({
        GenerationStatus.STREAMING,
        GenerationStatus.COMPLETED,
        GenerationStatus.CANCELLED,
        GenerationStatus.FAILED,
    }),
    GenerationStatus.STREAMING: frozenset({
        GenerationStatus.COMPLETED,
        GenerationStatus.CANCELLED,
        GenerationStatus.FAILED,
    }),
    GenerationStatus.COMPLETED: frozenset({GenerationStatus.IDLE}),
    GenerationStatus.CANCELLED: frozenset({GenerationStatus.IDLE}),
    GenerationStatus.FAILED: frozenset({GenerationStatus.IDLE}),
}


class InvalidTransitionError(Exception):
    """Raised when a state transition violates the state machine."""

    def __init__(self, from_state: GenerationStatus, to_state: GenerationStatus):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} → {to_state.value}")


def assert_transition(from_state: GenerationStatus, to_state: GenerationStatus) -> None:
    """Raise InvalidTransitionError if the transition is not allowed."""
    allowed = _TRANSITIONS.get(from_state, frozenset())
    if to_state not in allowed:
        raise InvalidTransitionError(from_state, to_state)


def is_terminal(status: GenerationStatus) -> bool:
    return status in TERMINAL_STATES


def is_active(status: GenerationStatus) -> bool:
    """A request is out and the beat is waiting on it."""
    return status in (GenerationStatus.REQUESTING, GenerationStatus.STREAMING)
