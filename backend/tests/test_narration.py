import asyncio
import json

import httpx
import pytest
from backend.app import openai_async
from backend.app.chat import narration
from backend.app.deadline import TurnDeadline, wants_extended_budget
from backend.app.json_utils import extract_json_dict, parse_json_from_text
from backend.app.places.types import PlaceCandidate
from backend.app.scoring import RankedResult
from backend.app.settings import settings

RESULTS = [
    RankedResult(
        PlaceCandidate("p1", "Golden Noodle House", rating=4.4, distance_meters=420.0),
        0.8,
        "Golden Noodle House is 420m away, 4.4★.",
        ["distance", "rating"],
    ),
    RankedResult(PlaceCandidate("p2", "Shan Kitchen"), 0.5, "Shan Kitchen.", []),
]


class TestSanitizeMessage:
    def test_prose_passes(self):
        assert narration.sanitize_message('  "Two cosy noodle spots nearby."  ') == (
            "Two cosy noodle spots nearby."
        )

    @pytest.mark.parametrize(
        "text",
        [
            None,
            "",
            '{"places": []}',
            "```json\n[1, 2]\n```",
            "Traceback (most recent call last):\n  File \"x.py\", line 1",
            "2024-05-01 12:00:01 ERROR upstream failed",
            "[WARN] retrying",
            "x" * 601,
        ],
    )
    def test_non_prose_is_dropped(self, text):
        assert narration.sanitize_message(text) is None


def test_intro_line():
    assert narration.intro_line(1500, None) == "Here are a few options within ~1.5 km of you."
    assert narration.intro_line(3000, "Bahan, Yangon") == (
        "Here are a few options within ~3 km of Bahan, Yangon."
    )
    assert narration.intro_line(None, None).endswith("~1.5 km of you.")


def test_fallback_narration_lists_facts():
    assert narration.fallback_narration(RESULTS) == (
        "Here are a few nearby options:\n1. Golden Noodle House (4.4★, 420m)\n2. Shan Kitchen"
    )


class TestNarrate:
    def test_disabled_uses_numbered_list(self):
        text = asyncio.run(narration.narrate("noodle", RESULTS, enabled=False))
        assert text.startswith("Here are a few nearby options:")

    def test_no_results(self):
        assert asyncio.run(narration.narrate("noodle", [], enabled=True)) == narration.NO_RESULTS

    def test_model_prose_is_used(self, monkeypatch):
        seen = {}

        async def fake_complete(messages, **kwargs):
            seen["facts"] = json.loads(messages[1]["content"])
            return "Golden Noodle House is a short walk away and well rated."

        monkeypatch.setattr(narration, "complete", fake_complete)
        text = asyncio.run(narration.narrate("noodle", RESULTS, enabled=True))
        assert text == "Golden Noodle House is a short walk away and well rated."
        assert seen["facts"]["request"] == "noodle"
        assert seen["facts"]["places"][0]["distance"] == "420m"

    def test_model_json_falls_back(self, monkeypatch):
        async def fake_complete(messages, **kwargs):
            return '{"text": "hi"}'

        monkeypatch.setattr(narration, "complete", fake_complete)
        text = asyncio.run(narration.narrate("noodle", RESULTS, enabled=True))
        assert text.startswith("Here are a few nearby options:")

    def test_model_failure_falls_back(self, monkeypatch):
        async def fake_complete(messages, **kwargs):
            raise openai_async.LLMUnavailable("timeout")

        monkeypatch.setattr(narration, "complete", fake_complete)
        text = asyncio.run(narration.narrate("noodle", RESULTS, enabled=True))
        assert text.startswith("Here are a few nearby options:")

    @pytest.mark.parametrize(
        "body",
        [{"choices": [{"message": None}]}, {"choices": "none"}, ["not", "a", "dict"]],
    )
    def test_malformed_completion_body_falls_back(self, monkeypatch, body):
        async def fake_post(*args, **kwargs):
            return body

        monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr(openai_async, "post_json", fake_post)
        text = asyncio.run(narration.narrate("noodle", RESULTS, enabled=True))
        assert text.startswith("Here are a few nearby options:")


def test_build_response_serializes_places():
    response = narration.build_response(
        "ok", session_id="s1", results=RESULTS, mode="recommend", next_page_token="t"
    )
    assert response.meta.mode == "recommend"
    assert response.meta.next_page_token == "t"
    assert response.places[0].distance_meters == 420.0
    assert response.places[0].explanation == "Golden Noodle House is 420m away, 4.4★."
    assert response.places[1].lat is None


class TestCompletionClient:
    """The chat-completions wrapper, driven through an in-memory transport."""

    @staticmethod
    def _complete(monkeypatch, handler, **kwargs):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr(settings, "LLM_MODEL", kwargs.pop("model", "gpt-4o-mini"))

        async def scenario():
            openai_async._client = httpx.AsyncClient(
                base_url="https://llm.test/v1", transport=httpx.MockTransport(handler)
            )
            try:
                return await openai_async.complete(
                    [{"role": "user", "content": "hi"}], timeout=2.0, **kwargs
                )
            finally:
                await openai_async.close_async_client()

        return asyncio.run(scenario())

    def test_request_shape_and_reply(self, monkeypatch):
        captured = {}

        def handler(request):
            captured["auth"] = request.headers["Authorization"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": [{"message": {"content": " Hello! "}}]})

        text = self._complete(monkeypatch, handler, json_mode=True, max_tokens=50)
        assert text == "Hello!"
        assert captured["auth"] == "Bearer sk-test"
        assert captured["body"]["max_completion_tokens"] == 50
        assert captured["body"]["response_format"] == {"type": "json_object"}

    def test_legacy_model_uses_max_tokens(self, monkeypatch):
        captured = {}

        def handler(request):
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

        self._complete(monkeypatch, handler, model="gpt-3.5-turbo", max_tokens=20)
        assert captured["body"]["max_tokens"] == 20
        assert "max_completion_tokens" not in captured["body"]

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500, text="upstream exploded"),
            httpx.Response(200, json={"choices": []}),
            httpx.Response(200, text="not json"),
        ],
    )
    def test_failures_raise_unavailable(self, monkeypatch, response):
        with pytest.raises(openai_async.LLMUnavailable):
            self._complete(monkeypatch, lambda request: response)

    def test_missing_key(self):
        async def scenario():
            try:
                await openai_async.complete([{"role": "user", "content": "hi"}], timeout=1.0)
            finally:
                await openai_async.close_async_client()

        with pytest.raises(openai_async.LLMUnavailable):
            asyncio.run(scenario())

    def test_no_time_left(self):
        with pytest.raises(openai_async.LLMUnavailable):
            asyncio.run(openai_async.complete([], timeout=0))


class TestTurnDeadline:
    def test_budget_shrinks_with_elapsed_time(self):
        now = [100.0]
        deadline = TurnDeadline(10.0, clock=lambda: now[0])
        assert deadline.timeout_for(4.0) == 4.0
        now[0] = 108.0
        assert deadline.timeout_for(4.0) == 2.0
        assert deadline.elapsed_ms() == 8000
        now[0] = 111.0
        assert deadline.timeout_for(4.0) == 0.0
        assert deadline.expired()

    def test_extended_budget_for_pagination(self, monkeypatch):
        monkeypatch.setattr(settings, "TURN_TIMEOUT_SECONDS", 12.0)
        monkeypatch.setattr(settings, "TURN_EXTENDED_TIMEOUT_SECONDS", 25.0)
        assert wants_extended_budget("show more please")
        assert wants_extended_budget("", action="next_page")
        assert not wants_extended_budget("ramen")
        assert TurnDeadline.for_turn("show more").budget_seconds == 25.0
        assert TurnDeadline.for_turn("ramen").budget_seconds == 12.0


class TestJsonExtraction:
    def test_embedded_json(self):
        assert parse_json_from_text('Sure! {"intent": "smalltalk"} hope that helps') == {
            "intent": "smalltalk"
        }
        assert parse_json_from_text("```json\n[1, 2]\n```") == [1, 2]
        assert parse_json_from_text("no json here") is None

    def test_extract_json_dict_requires_object(self):
        with pytest.raises(ValueError):
            extract_json_dict("[1, 2]")
        with pytest.raises(ValueError):
            extract_json_dict("   ")
