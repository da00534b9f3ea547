"""Data models for the conference room engine."""

from .criteria import (
    OFFICE_TIMEZONES,
    BookingCriteria,
    OfficeOptions,
    RoomBaseCriteria,
    SearchCriteria,
    StatusCriteria,
)
from .meeting import Meeting, MeetingInfo, RoomInfo, RoomStatus, RoomStatusInfo
from .room import OrganizationCalendarConfig, RoomRecord

__all__ = [
    "BookingCriteria",
    "Meeting",
    "MeetingInfo",
    "OFFICE_TIMEZONES",
    "OfficeOptions",
    "OrganizationCalendarConfig",
    "RoomBaseCriteria",
    "RoomInfo",
    "RoomRecord",
    "RoomStatus",
    "RoomStatusInfo",
    "SearchCriteria",
    "StatusCriteria",
]
