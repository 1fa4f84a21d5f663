from .base import CalendarBackend
from .caldav import CaldavBackend
from .vdir import VdirBackend

__all__ = ["CalendarBackend", "CaldavBackend", "VdirBackend"]
