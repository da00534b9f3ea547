"""Tracking of rooms registered for push change notifications."""

from __future__ import annotations

import logging

from conference_room.broadcast import RoomUpdateBroadcaster
from conference_room.cache import MeetingCacheService

log = logging.getLogger("conference_room.change_notifications")


class ChangeNotificationService:
    """Knows which rooms get push notifications and reacts to them.

    A tracked room's cached events are evicted by incoming notifications
    rather than by TTL expiry.
    """

    def __init__(self, meeting_cache: MeetingCacheService, broadcaster: RoomUpdateBroadcaster) -> None:
        self._meeting_cache = meeting_cache
        self._broadcaster = broadcaster
        self._tracked: set[str] = set()

    def is_tracked_for_changes(self, room_address: str) -> bool:
        return room_address in self._tracked

    def track_room(self, room_address: str) -> None:
        if room_address not in self._tracked:
            self._tracked.add(room_address)
            log.info("Tracking %s for changes", room_address)

    def untrack_room(self, room_address: str) -> None:
        self._tracked.discard(room_address)
        log.info("Stopped tracking %s for changes", room_address)

    def handle_notification(self, room_address: str, client_state: str = "") -> None:
        """Apply a push notification: evict the room's events and tell clients."""
        log.info("Change notification for %s (client_state=%s)", room_address, client_state)
        self._meeting_cache.clear_upcoming_appointments_for_room(room_address)
        self._broadcaster.notify_room_updated(room_address)
