"""Pydantic models for room records and per-organization calendar config."""

from typing import Optional

from pydantic import BaseModel

from conference_room.models.criteria import OfficeOptions


class RoomRecord(BaseModel):
    """A managed room.  ``subscription_id`` is its push-subscription record."""

    organization_id: str
    room_id: str
    room_address: str
    name: str = ""
    office: Optional[OfficeOptions] = None
    floor: Optional[str] = None
    subscription_id: Optional[str] = None

    @property
    def client_state(self) -> str:
        """Correlation token sent with subscriptions to identify this record."""
        return f"{self.organization_id}_{self.room_id}"


class OrganizationCalendarConfig(BaseModel):
    """Service-account credentials for an organization's Google Workspace."""

    service_account_json: str = ""
    # Workspace admin to act as, for domain-wide delegation
    impersonate_user: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.service_account_json)
