"""Slot order for the search, booking and status criteria workflows."""

from __future__ import annotations

from conference_room.models.criteria import (
    BookingCriteria,
    RoomBaseCriteria,
    SearchCriteria,
    StatusCriteria,
)
from conference_room.workflows.schema import CriteriaWorkflowDef, SlotDef

_ROOM = SlotDef(
    name="room",
    kind="text",
    state="AwaitingRoom",
    prompt="For what room?",
)

_BUILDING = SlotDef(
    name="office",
    kind="office",
    state="AwaitingBuilding",
    prompt="In which office?",
    not_understood="Sorry, I don't know that office.",
)

_START_TIME = SlotDef(
    name="start_time",
    kind="start_time",
    state="AwaitingStartTime",
    prompt="Starting when?",
    not_understood="Sorry, I couldn't understand that start time.",
)

_END_TIME = SlotDef(
    name="end_time",
    kind="end_time",
    state="AwaitingEndTime",
    prompt="Ending when?",
    not_understood="Sorry, I couldn't understand that end time or duration.",
)

SEARCH_WORKFLOW = CriteriaWorkflowDef(
    id="search",
    slots=[_BUILDING, _START_TIME, _END_TIME],
)

BOOKING_WORKFLOW = CriteriaWorkflowDef(
    id="booking",
    slots=[_ROOM, _START_TIME, _END_TIME],
)

STATUS_WORKFLOW = CriteriaWorkflowDef(
    id="status",
    slots=[
        _ROOM,
        _START_TIME.model_copy(update={
            "prompt": "At what time?",
            "not_understood": "Sorry, I couldn't understand that time.",
        }),
    ],
)

WORKFLOWS: dict[type[RoomBaseCriteria], CriteriaWorkflowDef] = {
    SearchCriteria: SEARCH_WORKFLOW,
    BookingCriteria: BOOKING_WORKFLOW,
    StatusCriteria: STATUS_WORKFLOW,
}


def workflow_for(criteria: RoomBaseCriteria) -> CriteriaWorkflowDef:
    return WORKFLOWS[type(criteria)]
