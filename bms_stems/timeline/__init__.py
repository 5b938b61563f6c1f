"""Chart position -> song time under tempo changes and stops."""

from .resolver import BpmChangeEvent, StopEvent, Timeline, TimelineCursor, stop_seconds

__all__ = [
    "BpmChangeEvent",
    "StopEvent",
    "Timeline",
    "TimelineCursor",
    "stop_seconds",
]
