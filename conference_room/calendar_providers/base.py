"""Abstract base class for room calendar providers.

Defines the interface the room status engine uses to read a room's
upcoming events and to rewrite/create them.  Any calendar backend
(Google, Exchange, etc.) implements this ABC.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

FREE = "free"
BUSY = "busy"

NORMAL = "normal"
PRIVATE = "private"
CONFIDENTIAL = "confidential"


@dataclass
class Attendee:
    """A meeting organizer or attendee."""

    name: str = ""
    address: Optional[str] = None
    is_mailbox: bool = True  # False for distribution lists, external contacts, ...


@dataclass
class CalendarEvent:
    """One occurrence of a meeting on a room's calendar."""

    id: str
    subject: Optional[str]
    start: datetime
    end: datetime
    organizer: Attendee = field(default_factory=Attendee)
    sensitivity: str = NORMAL
    required_attendees: list[Attendee] = field(default_factory=list)
    optional_attendees: list[Attendee] = field(default_factory=list)
    is_all_day: bool = False
    free_busy_status: str = BUSY
    location: str = ""

    @property
    def attendees(self) -> list[Attendee]:
        return self.required_attendees + self.optional_attendees


class CalendarProvider(ABC):
    """Abstract room calendar backend.

    Implementations raise ``AccessDeniedError`` when the room's calendar
    does not exist or may not be read, and let every other failure
    propagate unchanged.
    """

    @abstractmethod
    async def find_upcoming_events(
        self, room_address: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        """Return the room's events overlapping ``[start, end)``."""

    @abstractmethod
    async def get_event(self, room_address: str, event_id: str) -> CalendarEvent:
        """Load one event, including its attendees."""

    @abstractmethod
    async def rewrite_event_end(
        self, room_address: str, event_id: str, new_end: datetime
    ) -> CalendarEvent:
        """Move an event's end time without notifying attendees.

        Returns the updated event.
        """

    @abstractmethod
    async def create_event(
        self,
        room_address: str,
        start: datetime,
        end: datetime,
        title: str,
        body: str = "",
    ) -> str:
        """Create an event on the room's calendar and return its id."""

    @abstractmethod
    async def resolve_room_identity(self, room_address: str) -> Optional[str]:
        """Return the room's display name, or None if it does not exist."""
