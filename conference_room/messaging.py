"""Outbound messaging: instant messages, SMS and email.

Delivery itself belongs to the concrete services.  ``TwilioSmsService``
talks to the Twilio REST API; ``LoggingMessagingService`` is what the app
falls back to when a channel is not configured.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Sequence

import aiohttp

from conference_room.calendar_providers.base import Attendee

log = logging.getLogger("conference_room.messaging")


class InstantMessagePriority(str, Enum):
    NORMAL = "normal"
    URGENT = "urgent"


class InstantMessagingService(ABC):
    @abstractmethod
    async def send_message(
        self,
        addresses: Sequence[str],
        subject: str,
        body: str,
        priority: InstantMessagePriority = InstantMessagePriority.NORMAL,
    ) -> None: ...


class SmsMessagingService(ABC):
    @abstractmethod
    async def send(self, numbers: Sequence[str], body: str) -> None: ...


class SmsAddressLookupService(ABC):
    @abstractmethod
    async def lookup_addresses(self, addresses: Sequence[str]) -> list[str]:
        """Phone numbers for the given email addresses (unknown ones skipped)."""


class EmailService(ABC):
    @abstractmethod
    async def send_email(
        self,
        to: Sequence[Attendee],
        cc: Sequence[Attendee],
        subject: str,
        body: str,
    ) -> None: ...


class StaticSmsAddressLookupService(SmsAddressLookupService):
    """Email -> phone number table supplied at startup."""

    def __init__(self, numbers: dict[str, str] | None = None) -> None:
        self._numbers = {k.lower(): v for k, v in (numbers or {}).items()}

    async def lookup_addresses(self, addresses: Sequence[str]) -> list[str]:
        return [self._numbers[a.lower()] for a in addresses if a.lower() in self._numbers]


class LoggingMessagingService(InstantMessagingService, SmsMessagingService, EmailService):
    """Logs instead of delivering; used when a channel has no credentials."""

    async def send_message(self, addresses, subject, body, priority=InstantMessagePriority.NORMAL) -> None:
        log.info("IM (%s) to %s: %s", priority.value, list(addresses), subject)

    async def send(self, numbers, body) -> None:
        log.info("SMS to %d numbers: %s", len(numbers), body)

    async def send_email(self, to, cc, subject, body) -> None:
        log.info(
            "Email to %s cc %s: %s",
            [a.address for a in to], [a.address for a in cc], subject,
        )


class TwilioSmsService(SmsMessagingService):
    """Sends SMS through the Twilio Messages REST endpoint."""

    def __init__(self, account_sid: str, auth_token: str, from_number: str) -> None:
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number

    async def send(self, numbers: Sequence[str], body: str) -> None:
        url = f"https://api.twilio.com/2010-04-01/Accounts/{self._account_sid}/Messages.json"

        async with aiohttp.ClientSession() as session:
            for number in numbers:
                async with session.post(
                    url,
                    data={"To": number, "From": self._from_number, "Body": body},
                    auth=aiohttp.BasicAuth(self._account_sid, self._auth_token),
                ) as resp:
                    if resp.status != 201:
                        text = await resp.text()
                        log.error("Twilio SMS to %s failed (%d): %s", number, resp.status, text)
                        resp.raise_for_status()
                    log.info("Sent SMS to %s", number)
