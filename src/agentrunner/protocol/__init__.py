"""Wire protocol: inbound frame taxonomy, log projection, outbound commands."""

from .commands import StartParams
from .events import AuxiliaryType, ControlType, Event, EventType, Frame, parse_frame
from .projection import project

__all__ = [
    "AuxiliaryType",
    "ControlType",
    "Event",
    "EventType",
    "Frame",
    "StartParams",
    "parse_frame",
    "project",
]
