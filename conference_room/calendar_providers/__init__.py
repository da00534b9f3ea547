"""Calendar provider abstractions and implementations."""

from .base import Attendee, CalendarEvent, CalendarProvider
from .memory import InMemoryCalendarProvider

__all__ = ["Attendee", "CalendarProvider", "CalendarEvent", "InMemoryCalendarProvider"]
