"""Exceptions raised by the room status engine and its collaborators."""


class ConferenceRoomError(Exception):
    """Base class for conference room errors."""


class AccessDeniedError(ConferenceRoomError):
    """The calendar reported the room's mailbox/calendar as missing or forbidden."""


class UnauthorizedError(ConferenceRoomError):
    """The caller's security key does not grant rights on the room."""


class PreconditionError(ConferenceRoomError):
    """A mutation was rejected before anything was changed."""


class MeetingNotFoundError(PreconditionError):
    def __init__(self, room_address: str, event_id: str) -> None:
        super().__init__(f"Meeting {event_id} is not upcoming in {room_address}")
        self.room_address = room_address
        self.event_id = event_id


class MeetingNotManagedError(PreconditionError):
    def __init__(self, event_id: str) -> None:
        super().__init__(f"Cannot manage meeting {event_id}")
        self.event_id = event_id


class RoomNotFreeError(PreconditionError):
    def __init__(self, room_address: str) -> None:
        super().__init__(f"Room {room_address} is not free")
        self.room_address = room_address
