"""Room security rights and signed client start links."""

from __future__ import annotations

import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from enum import Enum

log = logging.getLogger("conference_room.security")


def redact_secret(value: str | None) -> str:
    """Mask keys/signatures for logging: show first 3 and last 2 chars only."""
    if not value or len(value) <= 5:
        return "***"
    return value[:3] + "***" + value[-2:]


class SecurityStatus(str, Enum):
    GRANTED = "Granted"
    DENIED = "Denied"
    UNKNOWN = "Unknown"


class SecurityRepository(ABC):
    """Looks up what a device/security key may do with a room."""

    @abstractmethod
    async def get_security_rights(self, room_address: str, security_key: str | None) -> SecurityStatus:
        """Return the rights ``security_key`` holds on ``room_address``."""

    @abstractmethod
    async def request_access(self, room_address: str, security_key: str, client_info: str) -> None:
        """Record a pending access request for an administrator to approve."""


class InMemorySecurityRepository(SecurityRepository):
    """Grants and pending requests held in process memory."""

    def __init__(self, grants: dict[str, set[str]] | None = None) -> None:
        # room address -> granted keys
        self._grants: dict[str, set[str]] = {k: set(v) for k, v in (grants or {}).items()}
        self._denied: dict[str, set[str]] = {}
        self.pending_requests: list[tuple[str, str, str]] = []

    def grant(self, room_address: str, security_key: str) -> None:
        self._grants.setdefault(room_address, set()).add(security_key)
        self._denied.get(room_address, set()).discard(security_key)

    def deny(self, room_address: str, security_key: str) -> None:
        self._denied.setdefault(room_address, set()).add(security_key)
        self._grants.get(room_address, set()).discard(security_key)

    async def get_security_rights(self, room_address: str, security_key: str | None) -> SecurityStatus:
        if not security_key:
            return SecurityStatus.DENIED
        if security_key in self._grants.get(room_address, ()):
            return SecurityStatus.GRANTED
        if security_key in self._denied.get(room_address, ()):
            return SecurityStatus.DENIED
        return SecurityStatus.UNKNOWN

    async def request_access(self, room_address: str, security_key: str, client_info: str) -> None:
        log.info("Access requested for %s by %s (%s)", room_address, redact_secret(security_key), client_info)
        self.pending_requests.append((room_address, security_key, client_info))


class SignatureService:
    """HMAC-SHA256 signatures over event ids for emailed start links."""

    def __init__(self, key: str) -> None:
        self._key = key.encode("utf-8")

    def get_signature(self, event_id: str) -> str:
        return hmac.new(self._key, event_id.encode("utf-8"), hashlib.sha256).hexdigest()

    def verify_signature(self, event_id: str, signature: str | None) -> bool:
        if not signature:
            return False
        return hmac.compare_digest(self.get_signature(event_id), signature)
