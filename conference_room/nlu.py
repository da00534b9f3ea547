"""NLU query service: entity models and the LUIS client.

The NLU model is a black box.  ``query(text)`` returns the top intent and
a list of tagged entities, each carrying a LUIS-style ``resolution``
payload (``{"values": [...]}`` for the datetimeV2 types).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import BaseModel

log = logging.getLogger("conference_room.nlu")

# Entity type tags
TIME = "builtin.datetimeV2.time"
DATETIME = "builtin.datetimeV2.datetime"
DURATION = "builtin.datetimeV2.duration"
TIME_RANGE = "builtin.datetimeV2.timerange"
DATETIME_RANGE = "builtin.datetimeV2.datetimerange"
BUILDING = "building"
FLOOR = "floor"
ROOM = "room"


class NluEntity(BaseModel):
    """One tagged span from the user's text."""

    type: str
    entity: str = ""
    resolution: dict[str, Any] = {}

    @property
    def values(self) -> list[dict[str, Any]]:
        """Candidate resolutions (empty for entities without a values list)."""
        values = self.resolution.get("values") or []
        return [v for v in values if isinstance(v, dict)]


class NluResult(BaseModel):
    query: str = ""
    intent: str = "None"
    score: float = 0.0
    entities: list[NluEntity] = []

    def entities_of_type(self, *types: str) -> list[NluEntity]:
        return [e for e in self.entities if e.type in types]

    def first_entity_text(self, entity_type: str) -> str | None:
        for entity in self.entities_of_type(entity_type):
            if entity.entity.strip():
                return entity.entity.strip()
        return None

    @classmethod
    def from_luis(cls, data: dict[str, Any]) -> "NluResult":
        """Build a result from a LUIS v2 prediction response."""
        top = data.get("topScoringIntent") or {}
        return cls(
            query=data.get("query", ""),
            intent=top.get("intent", "None"),
            score=top.get("score", 0.0),
            entities=[NluEntity(**e) for e in data.get("entities", [])],
        )


class NluService(ABC):
    """Turns free text into an intent plus entities."""

    @abstractmethod
    async def query(self, text: str) -> NluResult:
        """Run the NLU model over ``text``."""


class LuisNluService(NluService):
    """NluService backed by a LUIS v2 application."""

    def __init__(
        self,
        app_id: str,
        api_key: str,
        endpoint: str,
        timeout: float = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._app_id = app_id
        self._api_key = api_key
        self._endpoint = endpoint.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def query(self, text: str) -> NluResult:
        url = f"{self._endpoint}/luis/v2.0/apps/{self._app_id}"
        params = {
            "q": text,
            "subscription-key": self._api_key,
            "verbose": "true",
            "timezoneOffset": "0",
        }
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            resp = await client.get(url, params=params)
            resp.raise_for_status()
            data = resp.json()

        result = NluResult.from_luis(data)
        log.debug(
            "LUIS intent=%s score=%.2f entities=%s",
            result.intent, result.score, [e.type for e in result.entities],
        )
        return result
