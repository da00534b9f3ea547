"""Per-conversation slot-filling session: acquires complete criteria.

Each conversation that is collecting search/booking/status criteria gets a
CriteriaSession that:
  1. Holds the criteria object being filled in
  2. Tracks which single field it is waiting for (one outstanding prompt)
  3. Feeds each user reply into that field, through the NLU service and
     the temporal resolver for time fields
  4. Ends Complete (criteria available via ``result``) or Abandoned

A session suspends only between ``start``/``handle_utterance`` calls.
Replies for the same conversation are processed one at a time.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from conference_room.models.criteria import OfficeOptions, RoomBaseCriteria
from conference_room.nlu import NluService
from conference_room.workflows.criteria import workflow_for
from conference_room.workflows.schema import CriteriaWorkflowDef, SlotDef

log = logging.getLogger("conference_room.criteria_session")


class CriteriaState(str, Enum):
    AWAITING_ROOM = "AwaitingRoom"
    AWAITING_START_TIME = "AwaitingStartTime"
    AWAITING_END_TIME = "AwaitingEndTime"
    AWAITING_BUILDING = "AwaitingBuilding"
    COMPLETE = "Complete"
    ABANDONED = "Abandoned"


_TERMINAL = {CriteriaState.COMPLETE, CriteriaState.ABANDONED}


@dataclass
class CriteriaTurn:
    """What one step of the session produced."""

    state: CriteriaState
    messages: list[str] = field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.state in _TERMINAL


# ── Session registry ─────────────────────────────────────────────

_active_sessions: dict[str, "CriteriaSession"] = {}


def register_session(conversation_id: str, session: "CriteriaSession") -> None:
    """Register the conversation's session, replacing any earlier one."""
    session._conversation_id = conversation_id
    _active_sessions[conversation_id] = session
    log.info("Criteria session registered: %s", conversation_id)


def unregister_session(conversation_id: str) -> None:
    """Remove a session from the registry."""
    _active_sessions.pop(conversation_id, None)
    log.info("Criteria session unregistered: %s", conversation_id)


def get_active_sessions() -> dict[str, "CriteriaSession"]:
    """Return all active sessions."""
    return _active_sessions


def get_session(conversation_id: str) -> "CriteriaSession | None":
    """Look up a session by conversation ID."""
    return _active_sessions.get(conversation_id)


class CriteriaSession:
    """One conversation's criteria acquisition.

    Typical lifecycle::

        session = CriteriaSession(BookingCriteria.parse_criteria(result), nlu)
        turn = session.start()             # -> "For what room?"
        while not turn.done:
            turn = await session.handle_utterance(user_text)
        if session.state is CriteriaState.COMPLETE:
            criteria = session.result
    """

    def __init__(
        self,
        criteria: RoomBaseCriteria,
        nlu: NluService,
        workflow: CriteriaWorkflowDef | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._criteria = criteria
        self._nlu = nlu
        self._workflow = workflow or workflow_for(criteria)
        self._clock = clock

        self._conversation_id: str = ""
        self._state: CriteriaState | None = None
        self._pending: SlotDef | None = None
        self._lock = asyncio.Lock()

    # ── Public API ────────────────────────────────────────────

    @property
    def state(self) -> CriteriaState | None:
        return self._state

    @property
    def is_done(self) -> bool:
        return self._state in _TERMINAL

    @property
    def criteria(self) -> RoomBaseCriteria:
        return self._criteria

    @property
    def result(self) -> Optional[RoomBaseCriteria]:
        """The finished criteria, or None unless the session completed."""
        return self._criteria if self._state is CriteriaState.COMPLETE else None

    def to_dict(self) -> dict[str, Any]:
        """Serialize session state for the API."""
        return {
            "conversation_id": self._conversation_id,
            "workflow": self._workflow.id,
            "state": self._state.value if self._state else None,
            "awaiting": self._pending.name if self._pending else None,
            "criteria": self._criteria.model_dump(mode="json"),
        }

    def start(self) -> CriteriaTurn:
        """Prompt for the first missing field (or complete immediately)."""
        return self._prompt_next()

    async def handle_utterance(self, text: str | None) -> CriteriaTurn:
        """Fill the pending field from one user reply."""
        async with self._lock:
            if self.is_done or self._pending is None:
                return CriteriaTurn(state=self._state or CriteriaState.ABANDONED)

            slot = self._pending
            reply = (text or "").strip()
            if not reply or reply.lower() in self._workflow.exit_phrases:
                log.info("Criteria session %s abandoned at %s", self._conversation_id, slot.name)
                return self._finish(CriteriaState.ABANDONED)

            if not await self._fill(slot, reply):
                log.info(
                    "Criteria session %s could not use %r for %s",
                    self._conversation_id, reply, slot.name,
                )
                return self._finish(CriteriaState.ABANDONED, slot.not_understood)

            return self._prompt_next()

    # ── Internal ──────────────────────────────────────────────

    async def _fill(self, slot: SlotDef, reply: str) -> bool:
        """Store ``reply`` into ``slot``; False if it could not be understood."""
        if slot.kind == "text":
            setattr(self._criteria, slot.name, reply)
            return True

        now = self._clock() if self._clock else None
        if slot.kind == "office":
            office = OfficeOptions.parse(reply)
            if office is None:
                return False
            self._criteria.set_office(office, now)
            return True

        result = await self._nlu.query(reply)
        if slot.kind == "start_time":
            self._criteria.load_time_criteria(result, now)
            return self._criteria.start_time is not None
        if slot.kind == "end_time":
            self._criteria.load_end_time_criteria(result, now)
            return self._criteria.end_time is not None

        raise ValueError(f"Unknown slot kind {slot.kind!r} for {slot.name}")

    def _prompt_next(self) -> CriteriaTurn:
        missing = set(self._criteria.missing_fields())
        slot = next((s for s in self._workflow.slots if s.name in missing), None)
        if slot is None:
            log.info("Criteria session %s complete", self._conversation_id)
            return self._finish(CriteriaState.COMPLETE)

        self._pending = slot
        self._state = CriteriaState(slot.state)
        log.debug("Criteria session %s awaiting %s", self._conversation_id, slot.name)
        return CriteriaTurn(state=self._state, messages=[slot.prompt])

    def _finish(self, state: CriteriaState, message: str = "") -> CriteriaTurn:
        self._state = state
        self._pending = None
        return CriteriaTurn(state=state, messages=[message] if message else [])
