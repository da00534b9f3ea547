"""FastAPI application: HTTP + WebSocket endpoints for room displays and the bot.

Endpoints:

  GET  /health                                          Health check
  GET  /api/rooms/{room}/info                           Display name + caller rights
  POST /api/rooms/{room}/request-access                 Ask an admin for rights
  GET  /api/rooms/{room}/status                         Free / Busy / BusyNotConfirmed
  POST /api/rooms/{room}/meetings/{id}/start|cancel|end|message|warn
  GET|POST /api/rooms/{room}/meetings/{id}/start-from-client?sig=...
  POST /api/rooms/{room}/new-meeting                    Walk-up booking
  POST /api/messages                                    One bot turn
  POST /api/notifications                               Google push channel webhook
  POST /admin/subscriptions/run                         Renew push subscriptions now
  GET  /admin/sessions                                  Active criteria sessions
  WS   /ws/rooms                                        Room update stream

Room displays send their key in the ``X-Security-Key`` header.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from typing import Optional

# Configure root logger early so all app loggers have a handler and are
# visible when run via `uvicorn conference_room.app:app`.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
)

from fastapi import Depends, FastAPI, Header, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from conference_room.auth import require_admin_token, security_key_header
from conference_room.bot import RoomBot
from conference_room.broadcast import RoomUpdateBroadcaster
from conference_room.cache import MeetingCacheService
from conference_room.calendar_providers import CalendarProvider, InMemoryCalendarProvider
from conference_room.change_notifications import ChangeNotificationService
from conference_room.config import Settings, settings
from conference_room.criteria_session import get_active_sessions
from conference_room.errors import AccessDeniedError, PreconditionError, UnauthorizedError
from conference_room.messaging import (
    LoggingMessagingService,
    SmsMessagingService,
    StaticSmsAddressLookupService,
    TwilioSmsService,
)
from conference_room.nlu import LuisNluService
from conference_room.repositories import (
    InMemoryMeetingRepository,
    InMemoryOrganizationConfigRepository,
    InMemoryRoomRepository,
    RoomRepository,
)
from conference_room.room_service import ConferenceRoomService
from conference_room.security import InMemorySecurityRepository, SignatureService
from conference_room.subscriptions import GoogleWatchSubscriptionClient, SubscriptionCoordinator

log = logging.getLogger("conference_room.app")

_START_TIME = time.time()


@dataclass
class AppServices:
    """Everything the endpoints talk to, wired once per app."""

    room_service: ConferenceRoomService
    broadcaster: RoomUpdateBroadcaster
    change_notifications: ChangeNotificationService
    room_repository: RoomRepository
    bot: Optional[RoomBot] = None
    subscription_coordinator: Optional[SubscriptionCoordinator] = None


class NewMeetingRequest(BaseModel):
    title: str = "Impromptu meeting"
    minutes: int = 30


class AccessRequest(BaseModel):
    client_info: str = ""


class MessageRequest(BaseModel):
    conversation_id: str
    text: str = ""


def build_services(config: Settings = settings) -> AppServices:
    """Default wiring: Google calendars when configured, in-memory storage."""
    calendar_provider: CalendarProvider
    if config.google_service_account_json:
        from conference_room.calendar_providers.google import GoogleCalendarProvider
        calendar_provider = GoogleCalendarProvider(
            service_account_path=config.google_service_account_json,
        )
    else:
        log.warning("Google Calendar not configured, using in-memory calendars")
        calendar_provider = InMemoryCalendarProvider()

    # pushes only arrive through Google channels on Google calendars
    push_enabled = bool(config.google_service_account_json and config.subscription_webhook_url)
    if config.use_change_notification and not push_enabled:
        log.warning("No push channel for room calendars, change tracking disabled")
        config = config.model_copy(update={"use_change_notification": False})

    broadcaster = RoomUpdateBroadcaster()
    meeting_cache = MeetingCacheService()
    change_notifications = ChangeNotificationService(meeting_cache, broadcaster)
    room_repository = InMemoryRoomRepository()
    messaging = LoggingMessagingService()

    sms: SmsMessagingService = messaging
    if config.twilio_account_sid and config.twilio_auth_token:
        sms = TwilioSmsService(
            config.twilio_account_sid, config.twilio_auth_token, config.twilio_phone_number,
        )

    room_service = ConferenceRoomService(
        calendar_provider=calendar_provider,
        meeting_repository=InMemoryMeetingRepository(),
        security_repository=InMemorySecurityRepository(),
        broadcaster=broadcaster,
        meeting_cache=meeting_cache,
        change_notifications=change_notifications,
        signature_service=SignatureService(config.signature_key),
        instant_messaging=messaging,
        sms_messaging=sms,
        sms_address_lookup=StaticSmsAddressLookupService(),
        email_service=messaging,
        config=config,
    )

    bot = None
    if config.luis_app_id and config.luis_api_key:
        nlu = LuisNluService(config.luis_app_id, config.luis_api_key, config.luis_endpoint)
        bot = RoomBot(nlu, room_service, calendar_provider, room_repository)

    coordinator = None
    if push_enabled:
        coordinator = SubscriptionCoordinator(
            room_repository,
            InMemoryOrganizationConfigRepository(),
            GoogleWatchSubscriptionClient(config.subscription_webhook_url),
            change_notifications=change_notifications,
        )

    return AppServices(
        room_service=room_service,
        broadcaster=broadcaster,
        change_notifications=change_notifications,
        room_repository=room_repository,
        bot=bot,
        subscription_coordinator=coordinator,
    )


def create_app(services: AppServices | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    services = services or build_services()

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        if services.subscription_coordinator is not None:
            task = asyncio.create_task(
                services.subscription_coordinator.run_periodically(settings.subscription_interval_seconds)
            )
        yield
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    app = FastAPI(
        title="Conference Room Engine",
        description="Room status, meeting lifecycle and booking bot",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services
    room_service = services.room_service

    # ── Error mapping ──────────────────────────────────────────

    @app.exception_handler(UnauthorizedError)
    async def unauthorized(request: Request, exc: UnauthorizedError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=403)

    @app.exception_handler(AccessDeniedError)
    async def access_denied(request: Request, exc: AccessDeniedError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=404)

    @app.exception_handler(PreconditionError)
    async def precondition_failed(request: Request, exc: PreconditionError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=409)

    # ── Health check ───────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        """Lightweight health check: confirms the event loop is responsive."""
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({"status": "ok", "uptime": uptime})

    # ── Rooms ──────────────────────────────────────────────────

    @app.get("/api/rooms/{room_address}/info")
    async def room_info(room_address: str, key: str | None = Depends(security_key_header)):
        info = await room_service.get_info(room_address, key)
        if info is None:
            return JSONResponse({"error": "Room not found"}, status_code=404)
        return JSONResponse(info.model_dump(mode="json"))

    @app.post("/api/rooms/{room_address}/request-access")
    async def request_access(
        room_address: str,
        body: AccessRequest,
        key: str | None = Depends(security_key_header),
    ):
        if not key:
            return JSONResponse({"error": "X-Security-Key header required"}, status_code=400)
        await room_service.request_access(room_address, key, body.client_info)
        return JSONResponse({"status": "requested"}, status_code=202)

    @app.get("/api/rooms/{room_address}/status")
    async def room_status(room_address: str):
        status = await room_service.get_status(room_address)
        return JSONResponse(status.model_dump(mode="json"))

    # ── Meeting lifecycle ──────────────────────────────────────

    @app.post("/api/rooms/{room_address}/meetings/{event_id}/start")
    async def start_meeting(room_address: str, event_id: str, key: str | None = Depends(security_key_header)):
        await room_service.start_meeting(room_address, event_id, key)
        return Response(status_code=204)

    @app.post("/api/rooms/{room_address}/meetings/{event_id}/cancel")
    async def cancel_meeting(room_address: str, event_id: str, key: str | None = Depends(security_key_header)):
        await room_service.cancel_meeting(room_address, event_id, key)
        return Response(status_code=204)

    @app.post("/api/rooms/{room_address}/meetings/{event_id}/end")
    async def end_meeting(room_address: str, event_id: str, key: str | None = Depends(security_key_header)):
        await room_service.end_meeting(room_address, event_id, key)
        return Response(status_code=204)

    @app.post("/api/rooms/{room_address}/meetings/{event_id}/message")
    async def message_meeting(room_address: str, event_id: str, key: str | None = Depends(security_key_header)):
        await room_service.message_meeting(room_address, event_id, key)
        return Response(status_code=204)

    @app.post("/api/rooms/{room_address}/meetings/{event_id}/warn")
    async def warn_meeting(
        request: Request,
        room_address: str,
        event_id: str,
        key: str | None = Depends(security_key_header),
    ):
        def build_url(signature: str) -> str:
            url = request.url_for("start_meeting_from_client", room_address=room_address, event_id=event_id)
            return str(url.include_query_params(sig=signature))

        await room_service.warn_meeting(room_address, event_id, key, build_url)
        return Response(status_code=204)

    @app.api_route(
        "/api/rooms/{room_address}/meetings/{event_id}/start-from-client",
        methods=["GET", "POST"],
        name="start_meeting_from_client",
    )
    async def start_meeting_from_client(room_address: str, event_id: str, sig: str = Query(default="")):
        """Target of the signed link in warning emails."""
        if not await room_service.start_meeting_from_client(room_address, event_id, sig):
            return JSONResponse({"error": "Invalid signature"}, status_code=403)
        return JSONResponse({"status": "started"})

    @app.post("/api/rooms/{room_address}/new-meeting")
    async def new_meeting(
        room_address: str,
        body: NewMeetingRequest,
        key: str | None = Depends(security_key_header),
    ):
        event_id = await room_service.start_new_meeting(room_address, key, body.title, body.minutes)
        return JSONResponse({"id": event_id}, status_code=201)

    # ── Bot ────────────────────────────────────────────────────

    @app.post("/api/messages")
    async def bot_message(body: MessageRequest):
        if services.bot is None:
            return JSONResponse({"error": "Bot not configured"}, status_code=503)
        replies = await services.bot.handle_message(body.conversation_id, body.text)
        return JSONResponse({"replies": replies})

    # ── Change notifications ───────────────────────────────────

    @app.post("/api/notifications")
    async def change_notifications(
        x_goog_channel_token: str | None = Header(default=None),
        x_goog_resource_state: str | None = Header(default=None),
    ):
        """Google Calendar push channel webhook; the body is always empty."""
        if not x_goog_channel_token:
            return JSONResponse({"error": "X-Goog-Channel-Token header required"}, status_code=400)

        rooms = await services.room_repository.get_rooms()
        room = next(
            (r for org_rooms in rooms.values() for r in org_rooms if r.client_state == x_goog_channel_token),
            None,
        )
        if room is None:
            log.warning("Notification for unknown channel token %s", x_goog_channel_token)
        elif x_goog_resource_state == "sync":
            log.info("Push channel open for %s", room.room_address)
        else:
            services.change_notifications.handle_notification(room.room_address, x_goog_channel_token)

        return Response(status_code=202)


    # ── Admin ──────────────────────────────────────────────────

    @app.post("/admin/subscriptions/run", dependencies=[Depends(require_admin_token)])
    async def run_subscriptions():
        if services.subscription_coordinator is None:
            return JSONResponse({"error": "Subscriptions not configured"}, status_code=503)
        result = await services.subscription_coordinator.run()
        return JSONResponse({
            "renewed": result.renewed,
            "created": result.created,
            "failed": result.failed,
            "skipped_organizations": result.skipped_organizations,
        })

    @app.get("/admin/sessions", dependencies=[Depends(require_admin_token)])
    async def list_sessions():
        """Return summary of all active criteria sessions."""
        sessions = get_active_sessions()
        return JSONResponse({
            "sessions": [s.to_dict() for s in sessions.values()],
            "count": len(sessions),
        })

    # ── Room update stream ─────────────────────────────────────

    @app.websocket("/ws/rooms")
    async def room_updates(websocket: WebSocket, room: str | None = None) -> None:
        """Stream room_updated events; ``?room=`` limits it to one room."""
        await websocket.accept()
        queue = services.broadcaster.subscribe()

        async def forward() -> None:
            while True:
                event = await queue.get()
                if room is None or event["room_address"] == room:
                    await websocket.send_json(event)

        forwarder: asyncio.Task | None = None
        try:
            await websocket.send_json({"type": "subscribed", "room_address": room})
            forwarder = asyncio.create_task(forward())
            # clients only listen; wait here until they hang up
            while (await websocket.receive())["type"] != "websocket.disconnect":
                pass
        except WebSocketDisconnect:
            pass
        except Exception as e:
            log.warning("Room update stream error: %s", e)
        finally:
            if forwarder is not None:
                forwarder.cancel()
                # collects a send failure as well as the cancellation
                with contextlib.suppress(Exception, asyncio.CancelledError):
                    await forwarder
            services.broadcaster.unsubscribe(queue)

    return app


# ── Module-level app instance for uvicorn ──────────────────────

app = create_app()


if __name__ == "__main__":
    import uvicorn

    for warning in settings.validate_startup():
        log.warning(warning)

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )

    uvicorn.run(
        "conference_room.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
    )
