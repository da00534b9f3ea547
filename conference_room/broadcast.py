"""Room update broadcaster for connected room displays.

Every mutation (start/cancel/end/new meeting) and every push change
notification ends in ``notify_room_updated``.  The event is pushed to
every subscriber's asyncio.Queue for delivery over WebSocket; clients
re-fetch the room's status when they see their room.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TypedDict

log = logging.getLogger("conference_room.broadcast")


class RoomUpdateEvent(TypedDict):
    type: str          # room_updated
    timestamp: float
    room_address: str


class RoomUpdateBroadcaster:
    """Fire-and-forget fan-out using one asyncio.Queue per subscriber."""

    def __init__(self, max_queue: int = 200) -> None:
        self._max_queue = max_queue
        self._subscribers: list[asyncio.Queue[RoomUpdateEvent]] = []

    def subscribe(self) -> asyncio.Queue[RoomUpdateEvent]:
        """Create a new subscriber queue and return it."""
        q: asyncio.Queue[RoomUpdateEvent] = asyncio.Queue(maxsize=self._max_queue)
        self._subscribers.append(q)
        log.info("Room update subscriber added (total: %d)", len(self._subscribers))
        return q

    def unsubscribe(self, q: asyncio.Queue[RoomUpdateEvent]) -> None:
        """Remove a subscriber queue."""
        try:
            self._subscribers.remove(q)
        except ValueError:
            pass
        log.info("Room update subscriber removed (total: %d)", len(self._subscribers))

    def notify_room_updated(self, room_address: str) -> None:
        """Broadcast an update for ``room_address`` to all subscribers."""
        event: RoomUpdateEvent = {
            "type": "room_updated",
            "timestamp": time.time(),
            "room_address": room_address,
        }
        log.debug("Broadcasting update for %s to %d subscribers", room_address, len(self._subscribers))

        for q in self._subscribers:
            try:
                q.put_nowait(event)
            except asyncio.QueueFull:
                # Drop oldest event to make room
                try:
                    q.get_nowait()
                    q.put_nowait(event)
                except (asyncio.QueueEmpty, asyncio.QueueFull):
                    pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
