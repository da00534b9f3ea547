"""Application configuration via environment variables."""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings

log = logging.getLogger("conference_room.config")


class Settings(BaseSettings):
    # Google Calendar (room calendars)
    google_service_account_json: str = ""
    default_timezone: str = "America/Chicago"

    # Room status engine
    ignore_free: bool = False
    use_change_notification: bool = True
    cache_seconds: int = 60
    tracked_cache_seconds: int = 3600
    internal_domain: str = "@rightpoint.com"
    signature_key: str = ""

    # Conversational criteria
    now_snap_minutes: int = 5

    # LUIS
    luis_app_id: str = ""
    luis_api_key: str = ""
    luis_endpoint: str = "https://westus.api.cognitive.microsoft.com"

    # Push channels (Google Calendar events.watch)
    subscription_webhook_url: str = ""
    subscription_interval_seconds: int = 6 * 3600

    # Twilio SMS
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""

    # Admin auth
    admin_api_key: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []
        _placeholders = {"AC...", "path/to/service-account.json", "changeme"}

        if self.now_snap_minutes <= 0 or 60 % self.now_snap_minutes:
            raise ValueError(
                "NOW_SNAP_MINUTES must be a positive divisor of 60, "
                f"got {self.now_snap_minutes}."
            )

        if not self.signature_key or self.signature_key in _placeholders:
            if self.debug:
                warnings.append(
                    "SIGNATURE_KEY not set. Client start links use an empty key (DEBUG=true)."
                )
            else:
                raise ValueError(
                    "SIGNATURE_KEY is missing or still a placeholder. "
                    "Set it in .env to sign meeting start links."
                )

        if not self.admin_api_key:
            if self.debug:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are open (DEBUG=true)."
                )
            else:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are locked in production. "
                    "Set ADMIN_API_KEY in .env to enable admin access."
                )

        if self.google_service_account_json in _placeholders:
            warnings.append(
                "GOOGLE_SERVICE_ACCOUNT_JSON is a placeholder, calendar integration disabled."
            )

        if not self.luis_app_id or not self.luis_api_key:
            warnings.append("LUIS_APP_ID / LUIS_API_KEY not set, the bot cannot understand messages.")

        if not self.subscription_webhook_url:
            warnings.append(
                "SUBSCRIPTION_WEBHOOK_URL not set, room calendars are polled instead of pushed."
            )
        elif not self.google_service_account_json:
            warnings.append(
                "SUBSCRIPTION_WEBHOOK_URL needs GOOGLE_SERVICE_ACCOUNT_JSON, push channels disabled."
            )

        if self.twilio_account_sid in _placeholders:
            warnings.append("TWILIO_ACCOUNT_SID is a placeholder, SMS will only be logged.")

        return warnings


settings = Settings()
