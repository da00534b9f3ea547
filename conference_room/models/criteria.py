"""Criteria accumulators filled in by the conversational slot-filling flow.

A criteria object starts out (partially) pre-filled from the utterance
that started the conversation and is completed one field at a time.  It
is never persisted; the bot acts on it and drops it.
"""

from __future__ import annotations

from datetime import datetime, tzinfo
from enum import Enum
from typing import ClassVar, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from conference_room.config import settings
from conference_room.nlu import BUILDING, ROOM, NluResult
from conference_room.temporal import resolve_end, resolve_start_end, rezone


class OfficeOptions(str, Enum):
    ATLANTA = "Atlanta"
    BOSTON = "Boston"
    CHICAGO = "Chicago"
    DALLAS = "Dallas"
    DENVER = "Denver"
    DETROIT = "Detroit"
    LOS_ANGELES = "Los_Angeles"

    @classmethod
    def parse(cls, text: str | None) -> Optional["OfficeOptions"]:
        """Match free text ("los angeles", "Los-Angeles") to an office."""
        if not text:
            return None
        key = text.strip().lower().replace(" ", "_").replace("-", "_")
        for office in cls:
            if office.value.lower() == key:
                return office
        return None


OFFICE_TIMEZONES: dict[OfficeOptions, str] = {
    OfficeOptions.ATLANTA: "America/New_York",
    OfficeOptions.BOSTON: "America/New_York",
    OfficeOptions.DETROIT: "America/Detroit",
    OfficeOptions.CHICAGO: "America/Chicago",
    OfficeOptions.DALLAS: "America/Chicago",
    OfficeOptions.DENVER: "America/Denver",
    OfficeOptions.LOS_ANGELES: "America/Los_Angeles",
}


def get_timezone(office: OfficeOptions | None) -> tzinfo:
    """Timezone of an office, or the configured default."""
    return ZoneInfo(OFFICE_TIMEZONES.get(office, settings.default_timezone))


class RoomBaseCriteria(BaseModel):
    """Shared time window for all criteria types."""

    required_fields: ClassVar[tuple[str, ...]] = ("start_time", "end_time")

    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def timezone(self) -> tzinfo:
        return get_timezone(None)

    def load_time_criteria(self, result: NluResult, now: datetime | None = None) -> None:
        resolved = resolve_start_end(result, self.timezone(), now)
        self.start_time = resolved.start_time
        self.end_time = resolved.end_time

    def load_end_time_criteria(self, result: NluResult, now: datetime | None = None) -> None:
        self.end_time = resolve_end(result, self.timezone(), self.start_time, now)

    def missing_fields(self) -> list[str]:
        return [name for name in self.required_fields if not getattr(self, name)]

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()


class BookingCriteria(RoomBaseCriteria):
    required_fields: ClassVar[tuple[str, ...]] = ("room", "start_time", "end_time")

    room: Optional[str] = None

    @classmethod
    def parse_criteria(cls, result: NluResult, now: datetime | None = None) -> "BookingCriteria":
        criteria = cls(room=result.first_entity_text(ROOM))
        criteria.load_time_criteria(result, now)
        return criteria


class SearchCriteria(RoomBaseCriteria):
    required_fields: ClassVar[tuple[str, ...]] = ("office", "start_time", "end_time")

    office: Optional[OfficeOptions] = None

    def timezone(self) -> tzinfo:
        return get_timezone(self.office)

    def set_office(self, office: OfficeOptions, now: datetime | None = None) -> None:
        """Set the office; times already given keep their wall-clock reading there."""
        self.office = office
        tz = self.timezone()
        self.start_time = rezone(self.start_time, tz, now)
        self.end_time = rezone(self.end_time, tz, now)

    @classmethod
    def parse_criteria(
        cls,
        result: NluResult,
        now: datetime | None = None,
        default_office: OfficeOptions | None = None,
    ) -> "SearchCriteria":
        office = OfficeOptions.parse(result.first_entity_text(BUILDING)) or default_office
        criteria = cls(office=office)
        criteria.load_time_criteria(result, now)
        return criteria


class StatusCriteria(RoomBaseCriteria):
    required_fields: ClassVar[tuple[str, ...]] = ("room", "start_time")

    room: Optional[str] = None

    @classmethod
    def parse_criteria(cls, result: NluResult, now: datetime | None = None) -> "StatusCriteria":
        criteria = cls(room=result.first_entity_text(ROOM))
        criteria.load_time_criteria(result, now)
        return criteria
