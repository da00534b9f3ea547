"""Temporal criteria resolver.

Turns the datetimeV2 entities of an NLU result into concrete start/end
instants in a given timezone.  The resolver never raises: anything it
cannot make sense of is simply left unresolved, and the caller decides
whether to ask again.

Resolution order for ``resolve_start_end``:

  1. an explicit time range wins outright;
  2. otherwise the first point-in-time candidate is the start and the
     second (if any) is the end;
  3. with only a start, a duration entity supplies the end;
  4. a start within 10 seconds of now means "now" and is moved forward
     to the assumed start time;
  5. anything more than 15 minutes in the past rolls forward a day at a
     time ("3pm" said at 5pm means tomorrow).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from conference_room.config import settings
from conference_room.nlu import DATETIME, DATETIME_RANGE, DURATION, TIME, TIME_RANGE, NluResult

log = logging.getLogger("conference_room.temporal")

NOW_WINDOW = timedelta(seconds=10)
PAST_GRACE = timedelta(minutes=15)

_DATETIME_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M")
_TIME_FORMATS = ("%H:%M:%S", "%H:%M")


class ResolvedTimeCriteria(BaseModel):
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


def resolve_start_end(
    result: NluResult,
    tz: tzinfo | str,
    now: datetime | None = None,
) -> ResolvedTimeCriteria:
    """Resolve both ends of the requested window from one utterance."""
    tz = _zone(tz)
    now = _now(now, tz)

    time_range = _parse_time_range(result, tz, now)
    times = _parse_times(result, tz, now)
    duration = _parse_duration(result)

    if time_range is None and len(times) > 2:
        log.warning(
            "Got %d point-in-time candidates for %r, using the first two",
            len(times), result.query,
        )

    if time_range is not None:
        start = time_range[0]
    elif times:
        start = times[0]
    else:
        start = None

    if start is not None and abs(start - now) <= NOW_WINDOW:
        # user said "now"
        start = assumed_start_time(start, settings.now_snap_minutes)
    start = _roll_forward(start, now)

    if time_range is not None:
        end = time_range[1]
    elif len(times) >= 2:
        end = times[1]
    elif duration is not None and start is not None:
        end = start + duration
    else:
        end = None
    end = _roll_forward(end, now)

    return ResolvedTimeCriteria(start_time=start, end_time=end)


def resolve_end(
    result: NluResult,
    tz: tzinfo | str,
    existing_start: datetime | None,
    now: datetime | None = None,
) -> datetime | None:
    """Resolve an end time (or a duration from ``existing_start``)."""
    tz = _zone(tz)
    now = _now(now, tz)

    times = _parse_times(result, tz, now)
    duration = _parse_duration(result)

    if times:
        end = times[0]
    elif duration is not None and existing_start is not None:
        end = existing_start + duration
    else:
        end = None
    return _roll_forward(end, now)


def rezone(value: datetime | None, tz: tzinfo | str, now: datetime | None = None) -> datetime | None:
    """Keep the wall-clock reading of ``value`` but place it in ``tz``.

    "3pm" heard before the office was known was read in the default zone;
    once the office is known it means 3pm there.
    """
    if value is None:
        return None
    tz = _zone(tz)
    return _roll_forward(value.replace(tzinfo=tz), _now(now, tz))


def assumed_start_time(value: datetime, round_minutes: int) -> datetime:
    """Next ``round_minutes`` boundary strictly after ``value``.

    10:03:12 -> 10:05, 10:05:00 -> 10:10 (with 5-minute rounding).
    """
    base = value.replace(second=0, microsecond=0)
    minute = (base.minute // round_minutes + 1) * round_minutes
    return base.replace(minute=0) + timedelta(minutes=minute)


# ── Entity parsing ────────────────────────────────────────────────


def _parse_times(result: NluResult, tz: tzinfo, now: datetime) -> list[datetime]:
    """First usable candidate of each point-in-time entity, in entity order."""
    times: list[datetime] = []
    for entity in result.entities_of_type(TIME, DATETIME):
        values = [
            v for v in (_parse_instant(c.get("value"), tz, now) for c in entity.values)
            if v is not None
        ]
        # ambiguous ("3 o'clock"): prefer the candidates still ahead of us
        if len(values) > 1 and not all(v > now for v in values):
            values = [v for v in values if v > now]
        if values:
            times.append(values[0])
    return times


def _parse_time_range(
    result: NluResult, tz: tzinfo, now: datetime,
) -> tuple[datetime, datetime] | None:
    for entity in result.entities_of_type(TIME_RANGE, DATETIME_RANGE):
        for candidate in entity.values:
            start = _parse_instant(candidate.get("start"), tz, now)
            end = _parse_instant(candidate.get("end"), tz, now)
            if start is not None and end is not None:
                return start, end
    return None


def _parse_duration(result: NluResult) -> timedelta | None:
    for entity in result.entities_of_type(DURATION):
        for candidate in entity.values:
            try:
                return timedelta(seconds=float(candidate["value"]))
            except (KeyError, TypeError, ValueError):
                log.debug("Skipping unresolvable duration %r", candidate)
    return None


def _parse_instant(value: object, tz: tzinfo, now: datetime) -> datetime | None:
    """Parse a LUIS ``value`` (full datetime or bare time of day) in ``tz``."""
    if not isinstance(value, str) or not value.strip():
        return None
    value = value.strip()

    for fmt in _DATETIME_FORMATS:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=tz)
        except ValueError:
            continue

    for fmt in _TIME_FORMATS:
        try:
            time_of_day = datetime.strptime(value, fmt).time()
        except ValueError:
            continue
        return datetime.combine(now.astimezone(tz).date(), time_of_day, tzinfo=tz)

    log.debug("Could not parse datetime value %r", value)
    return None


def _roll_forward(value: datetime | None, now: datetime) -> datetime | None:
    if value is None:
        return None
    while value < now - PAST_GRACE:
        value += timedelta(days=1)
    return value


def _zone(tz: tzinfo | str) -> tzinfo:
    return ZoneInfo(tz) if isinstance(tz, str) else tz


def _now(now: datetime | None, tz: tzinfo) -> datetime:
    if now is None:
        return datetime.now(tz)
    if now.tzinfo is None:
        return now.replace(tzinfo=tz)
    return now
