"""API route modules."""
from __future__ import annotations

from storybeat.api.routes import beats, health, stories

__all__ = ["beats", "health", "stories"]
