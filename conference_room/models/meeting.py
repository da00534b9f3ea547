"""Pydantic models for meetings and computed room status."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from conference_room.security import SecurityStatus


class MeetingInfo(BaseModel):
    """Locally-owned lifecycle flags for one calendar event id.

    The calendar stays authoritative for start/end; these flags are
    authoritative for started / ended-early / cancelled.
    """

    id: str
    is_started: bool = False
    is_ended_early: bool = False
    is_cancelled: bool = False


class Meeting(BaseModel):
    """A calendar event merged with its MeetingInfo flags."""

    unique_id: str
    subject: Optional[str] = None
    start: datetime
    end: datetime
    organizer: Optional[str] = None
    required_attendees: int = 0
    optional_attendees: int = 0
    external_attendees: int = 0
    is_started: bool = False
    is_ended_early: bool = False
    is_cancelled: bool = False
    is_not_managed: bool = False  # all-day or > 6 hours, never auto-cancelled


class RoomStatus(str, Enum):
    FREE = "Free"
    BUSY = "Busy"
    BUSY_NOT_CONFIRMED = "BusyNotConfirmed"


class RoomStatusInfo(BaseModel):
    """Snapshot computed per request, never stored."""

    status: RoomStatus = RoomStatus.FREE
    near_term_meetings: list[Meeting] = []
    previous_meeting: Optional[Meeting] = None
    current_meeting: Optional[Meeting] = None
    next_meeting: Optional[Meeting] = None
    next_change_seconds: Optional[float] = None
    is_tracking_changes: bool = False


class RoomInfo(BaseModel):
    current_time: datetime
    display_name: str
    security_status: SecurityStatus
