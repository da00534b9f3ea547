"""Room status & lifecycle engine.

Reads a room's upcoming events from the calendar (through the meeting
cache), overlays the locally-owned MeetingInfo flags, and derives the
room's status.  Mutations (start/cancel/end/new meeting) are gated by the
security repository, serialized per room, and always finish by evicting
the room's cached events and broadcasting the change.

Status rules, for the first non-cancelled, non-ended-early meeting that
has not finished yet (the "current" meeting):

  - no such meeting                 -> Free
  - before its start                -> Busy if already started, else Free
  - inside its window               -> Busy if started, else BusyNotConfirmed
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from conference_room.broadcast import RoomUpdateBroadcaster
from conference_room.cache import MeetingCacheService
from conference_room.calendar_providers.base import FREE, NORMAL, CalendarEvent, CalendarProvider
from conference_room.change_notifications import ChangeNotificationService
from conference_room.config import Settings, settings
from conference_room.errors import (
    AccessDeniedError,
    MeetingNotFoundError,
    MeetingNotManagedError,
    RoomNotFreeError,
    UnauthorizedError,
)
from conference_room.messaging import (
    EmailService,
    InstantMessagePriority,
    InstantMessagingService,
    SmsAddressLookupService,
    SmsMessagingService,
)
from conference_room.models.meeting import Meeting, MeetingInfo, RoomInfo, RoomStatus, RoomStatusInfo
from conference_room.repositories import MeetingRepository
from conference_room.security import SecurityRepository, SecurityStatus, SignatureService, redact_secret

log = logging.getLogger("conference_room.room_service")

MAX_MANAGED_DURATION = timedelta(hours=6)
MAX_NEW_MEETING_MINUTES = 120
UPCOMING_WINDOW_DAYS = 2


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _truncate_to_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


class ConferenceRoomService:
    def __init__(
        self,
        *,
        calendar_provider: CalendarProvider,
        meeting_repository: MeetingRepository,
        security_repository: SecurityRepository,
        broadcaster: RoomUpdateBroadcaster,
        meeting_cache: MeetingCacheService,
        change_notifications: ChangeNotificationService,
        signature_service: SignatureService,
        instant_messaging: InstantMessagingService,
        sms_messaging: SmsMessagingService,
        sms_address_lookup: SmsAddressLookupService,
        email_service: EmailService,
        clock: Callable[[], datetime] = _utcnow,
        config: Settings | None = None,
    ) -> None:
        self._calendar = calendar_provider
        self._meeting_repository = meeting_repository
        self._security_repository = security_repository
        self._broadcaster = broadcaster
        self._meeting_cache = meeting_cache
        self._change_notifications = change_notifications
        self._signature_service = signature_service
        self._instant_messaging = instant_messaging
        self._sms_messaging = sms_messaging
        self._sms_address_lookup = sms_address_lookup
        self._email_service = email_service
        self._clock = clock
        self._settings = config or settings
        self._room_locks: dict[str, asyncio.Lock] = {}

    # ── Reads ────────────────────────────────────────────────────

    async def get_info(self, room_address: str, security_key: str | None = None) -> Optional[RoomInfo]:
        """Display name and the caller's rights, or None for an unknown room."""
        display_name = await self._calendar.resolve_room_identity(room_address)
        if display_name is None:
            return None

        rights = await self._security_repository.get_security_rights(room_address, security_key)
        if rights == SecurityStatus.GRANTED and self._settings.use_change_notification:
            # make sure we track rooms we're controlling
            self._change_notifications.track_room(room_address)

        return RoomInfo(current_time=self._clock(), display_name=display_name, security_status=rights)

    async def request_access(self, room_address: str, security_key: str, client_info: str) -> None:
        await self._security_repository.request_access(room_address, security_key, client_info)

    async def get_upcoming_appointments_for_room(self, room_address: str) -> list[Meeting]:
        is_tracked = self._change_notifications.is_tracked_for_changes(room_address)
        return await self._meeting_cache.get_upcoming_appointments_for_room(
            room_address, is_tracked, lambda: self._fetch_upcoming(room_address),
        )

    def room_changed(self, room_address: str) -> None:
        """Drop cached events and tell displays after a booking made elsewhere."""
        self._broadcast_update(room_address)

    async def get_status(self, room_address: str) -> RoomStatusInfo:
        now = self._clock()
        all_meetings = sorted(
            await self.get_upcoming_appointments_for_room(room_address),
            key=lambda m: m.start,
        )
        meetings = [
            m for m in all_meetings
            if not m.is_cancelled and not m.is_ended_early and m.end > now
        ][:2]

        ended = [m for m in all_meetings if m.end < now]
        current = meetings[0] if meetings else None

        info = RoomStatusInfo(
            is_tracking_changes=self._change_notifications.is_tracked_for_changes(room_address),
            near_term_meetings=all_meetings,
            previous_meeting=ended[-1] if ended else None,
            current_meeting=current,
            next_meeting=meetings[1] if len(meetings) > 1 else None,
        )
        if current is None:
            info.status = RoomStatus.FREE
        elif now < current.start:
            # pre-start occupancy requires an explicit start
            info.status = RoomStatus.BUSY if current.is_started else RoomStatus.FREE
            info.next_change_seconds = (current.start - now).total_seconds()
        else:
            info.status = RoomStatus.BUSY if current.is_started else RoomStatus.BUSY_NOT_CONFIRMED
            info.next_change_seconds = (current.end - now).total_seconds()

        return info

    # ── Mutations ────────────────────────────────────────────────

    async def start_meeting(self, room_address: str, event_id: str, security_key: str | None) -> None:
        async with self._room_lock(room_address):
            await self._security_check(room_address, event_id, security_key)
            log.debug("Starting %s for %s", event_id, room_address)
            await self._meeting_repository.start_meeting(event_id)
            self._broadcast_update(room_address)

    async def start_meeting_from_client(self, room_address: str, event_id: str, signature: str | None) -> bool:
        if not self._signature_service.verify_signature(event_id, signature):
            log.error("Invalid signature: %s for %s", redact_secret(signature), event_id)
            return False
        async with self._room_lock(room_address):
            log.debug("Starting %s for %s from client link", event_id, room_address)
            await self._meeting_repository.start_meeting(event_id)
            self._broadcast_update(room_address)
        return True

    async def warn_meeting(
        self,
        room_address: str,
        event_id: str,
        security_key: str | None,
        build_url: Callable[[str], str],
    ) -> None:
        """Email the attendees that their unstarted meeting is about to be cancelled."""
        await self._managed_meeting(room_address, event_id, security_key)
        event = await self._calendar.get_event(room_address, event_id)
        log.debug("Warning %s for %s, which should start at %s", event_id, room_address, event.start)

        start_url = build_url(self._signature_service.get_signature(event_id))
        await self._send_email(
            event,
            f"WARNING: your meeting '{event.subject}' in {self._location(event, room_address)} "
            "is about to be cancelled.",
            "Use the conference room management device to start the meeting ASAP, "
            f"or go to {start_url} .",
        )

    async def cancel_meeting(self, room_address: str, event_id: str, security_key: str | None) -> None:
        async with self._room_lock(room_address):
            await self._managed_meeting(room_address, event_id, security_key)
            try:
                event = await self._cut_short(room_address, event_id, "Cancelling")
                await self._meeting_repository.cancel_meeting(event_id)
            finally:
                self._broadcast_update(room_address)
            await self._send_email(
                event,
                f"Your meeting '{event.subject}' in {self._location(event, room_address)} has been cancelled.",
                "If you want to keep the room, use the conference room management device "
                "to start a new meeting ASAP.",
            )

    async def end_meeting(self, room_address: str, event_id: str, security_key: str | None) -> None:
        async with self._room_lock(room_address):
            await self._managed_meeting(room_address, event_id, security_key)
            try:
                event = await self._cut_short(room_address, event_id, "Ending")
                await self._meeting_repository.end_meeting(event_id)
            finally:
                self._broadcast_update(room_address)
            await self._send_email(
                event,
                f"Your meeting '{event.subject}' in {self._location(event, room_address)} has been ended.",
                "The room has been released for others to use.",
            )

    async def message_meeting(self, room_address: str, event_id: str, security_key: str | None) -> None:
        """Ask the internal attendees (SMS + urgent IM) to wrap up."""
        await self._managed_meeting(room_address, event_id, security_key)

        event = await self._calendar.get_event(room_address, event_id)
        location = self._location(event, room_address)
        addresses = [
            a.address for a in event.attendees
            if a.address is not None and self._is_internal(a.address)
        ]

        sms_numbers = await self._sms_address_lookup.lookup_addresses(addresses)
        if sms_numbers:
            await self._sms_messaging.send(
                sms_numbers,
                f"Your meeting in {location} is over - please finish up ASAP - others are waiting outside.",
            )
        if addresses:
            await self._instant_messaging.send_message(
                addresses,
                f"Meeting in {location} is over",
                f"Your meeting in {location} is over - people for the next meeting are patiently "
                "waiting at the door. Please wrap up ASAP.",
                InstantMessagePriority.URGENT,
            )

    async def start_new_meeting(
        self,
        room_address: str,
        security_key: str | None,
        title: str,
        minutes: int,
    ) -> str:
        """Book the room from now for up to ``minutes`` and mark it started."""
        rights = await self._security_repository.get_security_rights(room_address, security_key)
        if rights != SecurityStatus.GRANTED:
            raise UnauthorizedError(f"No rights on {room_address}")

        async with self._room_lock(room_address):
            status = await self.get_status(room_address)
            if status.status != RoomStatus.FREE:
                raise RoomNotFreeError(room_address)

            now = _truncate_to_minute(self._clock())
            limit = MAX_NEW_MEETING_MINUTES
            upcoming = next(
                (m for m in (status.current_meeting, status.next_meeting) if m is not None and m.start > now),
                None,
            )
            if upcoming is not None:
                limit = min(limit, int((upcoming.start - now).total_seconds() // 60))
            minutes = max(0, min(minutes, limit))

            event_id = await self._calendar.create_event(
                room_address,
                now,
                now + timedelta(minutes=minutes),
                title,
                "Scheduled via conference room management system",
            )
            log.debug("Created %s for %s", event_id, room_address)

            await self._meeting_repository.start_meeting(event_id)
            self._broadcast_update(room_address)
            return event_id

    # ── Internals ────────────────────────────────────────────────

    def _room_lock(self, room_address: str) -> asyncio.Lock:
        return self._room_locks.setdefault(room_address, asyncio.Lock())

    async def _fetch_upcoming(self, room_address: str) -> list[Meeting]:
        today = self._clock().astimezone(ZoneInfo(self._settings.default_timezone)).replace(
            hour=0, minute=0, second=0, microsecond=0,
        )
        try:
            events = await self._calendar.find_upcoming_events(
                room_address, today, today + timedelta(days=UPCOMING_WINDOW_DAYS),
            )
        except AccessDeniedError:
            log.debug("Access denied getting appointments for %s", room_address)
            if self._change_notifications.is_tracked_for_changes(room_address):
                self._change_notifications.untrack_room(room_address)
            raise
        except Exception:
            log.exception("Unexpected error getting appointments for %s", room_address)
            raise

        log.debug("Got %d appointments for %s", len(events), room_address)
        if self._settings.ignore_free:
            events = [e for e in events if e.free_busy_status != FREE]

        infos = {
            i.id: i for i in await self._meeting_repository.get_meeting_info([e.id for e in events])
        }
        return [self._build_meeting(e, infos.get(e.id) or MeetingInfo(id=e.id)) for e in events]

    def _build_meeting(self, event: CalendarEvent, info: MeetingInfo) -> Meeting:
        if event.sensitivity != NORMAL:
            subject = event.sensitivity.capitalize()
        elif event.subject is not None and event.subject.strip() == event.organizer.name.strip():
            subject = None
        else:
            subject = event.subject

        return Meeting(
            unique_id=event.id,
            subject=subject,
            start=event.start,
            end=event.end,
            organizer=event.organizer.name,
            required_attendees=len(event.required_attendees),
            optional_attendees=len(event.optional_attendees),
            external_attendees=sum(
                1 for a in event.attendees if a.address is None or not self._is_internal(a.address)
            ),
            is_started=info.is_started,
            is_ended_early=info.is_ended_early,
            is_cancelled=info.is_cancelled,
            is_not_managed=event.is_all_day or abs(event.end - event.start) > MAX_MANAGED_DURATION,
        )

    async def _security_check(self, room_address: str, event_id: str, security_key: str | None) -> Meeting:
        rights = await self._security_repository.get_security_rights(room_address, security_key)
        if rights != SecurityStatus.GRANTED:
            log.warning("Rejected %s on %s for key %s", event_id, room_address, redact_secret(security_key))
            raise UnauthorizedError(f"No rights on {room_address}")

        meetings = await self.get_upcoming_appointments_for_room(room_address)
        meeting = next((m for m in meetings if m.unique_id == event_id), None)
        if meeting is None:
            raise MeetingNotFoundError(room_address, event_id)
        return meeting

    async def _managed_meeting(self, room_address: str, event_id: str, security_key: str | None) -> Meeting:
        meeting = await self._security_check(room_address, event_id, security_key)
        if meeting.is_not_managed:
            raise MeetingNotManagedError(event_id)
        return meeting

    async def _cut_short(self, room_address: str, event_id: str, verb: str) -> CalendarEvent:
        """Move the event's end to now, or to its start if it has not begun."""
        event = await self._calendar.get_event(room_address, event_id)
        log.debug("%s %s for %s, which should start at %s", verb, event_id, room_address, event.start)
        now = _truncate_to_minute(self._clock())
        new_end = now if now >= event.start else event.start
        return await self._calendar.rewrite_event_end(room_address, event_id, new_end)

    def _broadcast_update(self, room_address: str) -> None:
        self._meeting_cache.clear_upcoming_appointments_for_room(room_address)
        self._broadcaster.notify_room_updated(room_address)

    async def _send_email(self, event: CalendarEvent, subject: str, body: str) -> None:
        to = [event.organizer] if event.organizer.is_mailbox and event.organizer.address else []
        cc = [
            a for a in event.attendees
            if a.address is not None and self._is_internal(a.address)
            and a.address != event.organizer.address
        ]
        if not to and not cc:
            log.debug("No recipients for '%s'", subject)
            return
        await self._email_service.send_email(to, cc, subject, body)

    def _is_internal(self, address: str) -> bool:
        return address.lower().endswith(self._settings.internal_domain.lower())

    @staticmethod
    def _location(event: CalendarEvent, room_address: str) -> str:
        return event.location or room_address
