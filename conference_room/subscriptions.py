"""Push-subscription renewal for room calendars.

For every organization with calendar application credentials, each room
gets one concurrent renew-or-create task:

  1. a room with a subscription id on record is renewed for another day;
     a successful renewal ends the task;
  2. otherwise (no id, or the renewal failed) a new subscription on the
     room's events is created and its id saved back onto the room record.

A failing room is logged and never takes its siblings down.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any, Callable, Optional

from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials as TokenCredentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from conference_room.calendar_providers.google import SCOPES
from conference_room.change_notifications import ChangeNotificationService
from conference_room.models.room import OrganizationCalendarConfig, RoomRecord
from conference_room.repositories import OrganizationConfigRepository, RoomRepository

log = logging.getLogger("conference_room.subscriptions")

SUBSCRIPTION_LIFETIME = timedelta(days=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionClient(ABC):
    """The calendar service's push-subscription API."""

    @abstractmethod
    async def get_token(self, config: OrganizationCalendarConfig) -> str:
        """Acquire an access token with the organization's calendar credentials."""

    @abstractmethod
    async def renew(self, token: str, room_address: str, subscription_id: str, expires: datetime) -> bool:
        """Extend a subscription; False if the service did not accept it."""

    @abstractmethod
    async def create(self, token: str, room_address: str, client_state: str, expires: datetime) -> str:
        """Create a subscription on the room's events and return its id."""


class GoogleWatchSubscriptionClient(SubscriptionClient):
    """Google Calendar push channels (``events().watch``) on room calendars.

    Channels cannot be extended, so ``renew`` stops the old channel and
    reports failure; the coordinator then opens a fresh one.  Subscription
    ids are stored as ``<channel id>:<resource id>``, both of which are
    needed to stop a channel.
    """

    def __init__(self, webhook_url: str) -> None:
        self._webhook_url = webhook_url

    async def _run_in_executor(self, func, *args, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    def _service(self, token: str):
        return build("calendar", "v3", credentials=TokenCredentials(token), cache_discovery=False)

    @staticmethod
    def _refresh(config: OrganizationCalendarConfig) -> str:
        credentials = service_account.Credentials.from_service_account_file(
            config.service_account_json, scopes=SCOPES,
        )
        if config.impersonate_user:
            credentials = credentials.with_subject(config.impersonate_user)
        credentials.refresh(Request())
        return credentials.token

    async def get_token(self, config: OrganizationCalendarConfig) -> str:
        return await self._run_in_executor(self._refresh, config)

    async def renew(self, token: str, room_address: str, subscription_id: str, expires: datetime) -> bool:
        channel_id, _, resource_id = subscription_id.partition(":")
        log.info("Replacing channel %s for %s", channel_id, room_address)
        request = self._service(token).channels().stop(body={"id": channel_id, "resourceId": resource_id})
        try:
            await self._run_in_executor(request.execute)
        except HttpError as exc:
            # already expired or never existed
            log.info("Unable to stop channel %s for %s: %s", channel_id, room_address, exc.resp.status)
        return False

    async def create(self, token: str, room_address: str, client_state: str, expires: datetime) -> str:
        body = {
            "id": uuid.uuid4().hex,
            "type": "web_hook",
            "address": self._webhook_url,
            "token": client_state,
            "expiration": str(int(expires.timestamp() * 1000)),
        }
        log.info("Opening channel %s for %s", body["id"], room_address)
        request = self._service(token).events().watch(calendarId=room_address, body=body)
        try:
            channel = await self._run_in_executor(request.execute)
        except HttpError as exc:
            log.warning("Unable to create new channel for %s: %s", room_address, exc.resp.status)
            raise
        return f"{channel['id']}:{channel['resourceId']}"


@dataclass
class SubscriptionRunResult:
    renewed: list[str] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped_organizations: list[str] = field(default_factory=list)


class SubscriptionCoordinator:
    def __init__(
        self,
        room_repository: RoomRepository,
        config_repository: OrganizationConfigRepository,
        client: SubscriptionClient,
        clock: Callable[[], datetime] = _utcnow,
        change_notifications: Optional[ChangeNotificationService] = None,
    ) -> None:
        self._rooms = room_repository
        self._configs = config_repository
        self._client = client
        self._clock = clock
        self._change_notifications = change_notifications

    async def run(self) -> SubscriptionRunResult:
        """One pass over every organization's rooms."""
        result = SubscriptionRunResult()
        all_rooms = await self._rooms.get_rooms()

        for org_id, rooms in all_rooms.items():
            config = await self._configs.get_calendar_config(org_id)
            if config is None:
                log.info("No calendar configuration found for %s - skipping %d rooms", org_id, len(rooms))
                result.skipped_organizations.append(org_id)
                continue
            if not config.is_configured:
                log.info("Missing some calendar configuration for %s - skipping %d rooms", org_id, len(rooms))
                result.skipped_organizations.append(org_id)
                continue

            try:
                token = await self._client.get_token(config)
            except Exception:
                log.exception("Could not get an access token for %s", org_id)
                result.failed.extend(r.room_address for r in rooms)
                for room in rooms:
                    self._set_tracked(room, False)
                continue
            log.info("Got access token for %s", org_id)

            outcomes = await asyncio.gather(
                *(self._renew_or_create(token, room) for room in rooms),
                return_exceptions=True,
            )
            for room, outcome in zip(rooms, outcomes):
                if isinstance(outcome, BaseException):
                    log.error("Subscription update failed for %s: %r", room.room_address, outcome)
                    result.failed.append(room.room_address)
                    self._set_tracked(room, False)
                    continue
                self._set_tracked(room, True)
                if outcome == "renewed":
                    result.renewed.append(room.room_address)
                else:
                    result.created.append(room.room_address)

        log.info(
            "Subscription pass done: %d renewed, %d created, %d failed, %d organizations skipped",
            len(result.renewed), len(result.created), len(result.failed), len(result.skipped_organizations),
        )
        return result

    async def run_periodically(self, interval_seconds: float) -> None:
        """Run a pass every ``interval_seconds`` until cancelled."""
        while True:
            try:
                await self.run()
            except Exception:
                log.exception("Subscription pass failed")
            await asyncio.sleep(interval_seconds)

    def _set_tracked(self, room: RoomRecord, has_channel: bool) -> None:
        # only rooms with a live channel may rely on pushes instead of the TTL
        if self._change_notifications is None:
            return
        if has_channel:
            self._change_notifications.track_room(room.room_address)
        elif self._change_notifications.is_tracked_for_changes(room.room_address):
            self._change_notifications.untrack_room(room.room_address)

    async def _renew_or_create(self, token: str, room: RoomRecord) -> str:
        expires = self._clock() + SUBSCRIPTION_LIFETIME

        if room.subscription_id:
            if await self._client.renew(token, room.room_address, room.subscription_id, expires):
                return "renewed"

        # either there wasn't an existing subscription, or we were unable to renew it
        log.info("Creating new subscription for %s", room.room_address)
        subscription_id = await self._client.create(token, room.room_address, room.client_state, expires)
        await self._rooms.save_subscription_id(room, subscription_id)
        log.info("Created subscription %s for %s and updated room record", subscription_id, room.room_address)
        return "created"
