"""Tests for NLU result models and the LUIS client."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import httpx
import pytest

from conference_room.nlu import BUILDING, DURATION, TIME, LuisNluService, NluEntity, NluResult

LUIS_RESPONSE = {
    "query": "find a room in denver at 2pm for 30 minutes",
    "topScoringIntent": {"intent": "findRoom", "score": 0.97},
    "entities": [
        {"entity": "denver", "type": "building", "startIndex": 15, "endIndex": 20},
        {
            "entity": "2pm",
            "type": "builtin.datetimeV2.time",
            "resolution": {"values": [{"timex": "T14", "type": "time", "value": "14:00:00"}]},
        },
        {
            "entity": "30 minutes",
            "type": "builtin.datetimeV2.duration",
            "resolution": {"values": [{"timex": "PT30M", "type": "duration", "value": "1800"}]},
        },
    ],
}


class TestNluResult:
    def test_from_luis(self):
        result = NluResult.from_luis(LUIS_RESPONSE)

        assert result.intent == "findRoom"
        assert result.score == pytest.approx(0.97)
        assert [e.type for e in result.entities] == [BUILDING, TIME, DURATION]
        assert result.entities[1].values == [{"timex": "T14", "type": "time", "value": "14:00:00"}]

    def test_missing_intent_is_none(self):
        assert NluResult.from_luis({"query": "hello"}).intent == "None"

    def test_first_entity_text_skips_blank(self):
        result = NluResult(entities=[
            NluEntity(type=BUILDING, entity="  "),
            NluEntity(type=BUILDING, entity=" Denver "),
        ])
        assert result.first_entity_text(BUILDING) == "Denver"
        assert result.first_entity_text("room") is None

    def test_values_ignores_malformed_resolution(self):
        entity = NluEntity(type=TIME, resolution={"values": ["14:00", {"value": "14:00:00"}]})
        assert entity.values == [{"value": "14:00:00"}]


class TestLuisNluService:
    async def test_query_calls_prediction_endpoint(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=LUIS_RESPONSE)

        nlu = LuisNluService(
            "app-123", "luis-key", "https://westus.api.cognitive.microsoft.com/",
            transport=httpx.MockTransport(handler),
        )

        result = await nlu.query("find a room in denver at 2pm for 30 minutes")

        assert result.intent == "findRoom"
        request = seen[0]
        assert request.url.path == "/luis/v2.0/apps/app-123"
        assert request.url.params["q"] == "find a room in denver at 2pm for 30 minutes"
        assert request.url.params["subscription-key"] == "luis-key"

    async def test_http_errors_propagate(self):
        nlu = LuisNluService(
            "app-123", "bad-key", "https://luis.example.com",
            transport=httpx.MockTransport(lambda request: httpx.Response(401)),
        )

        with pytest.raises(httpx.HTTPStatusError):
            await nlu.query("hello")
