"""View binding for beat nodes."""
from storybeat.views.beat_view import BeatView, EventTarget, ViewCallbacks, ViewContext, ViewEvent
from storybeat.views.registry import NodeViewRegistry

__all__ = [
    "BeatView",
    "EventTarget",
    "NodeViewRegistry",
    "ViewCallbacks",
    "ViewContext",
    "ViewEvent",
]
