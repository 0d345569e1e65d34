import asyncio
import json
import time

import pytest
from backend.app import llm_intent, openai_async
from backend.app.chat.intent import (
    IntentMemory,
    classify_heuristic,
    classify_intent,
    extract_preferences,
    extract_radius_m,
    extract_search_keyword,
    is_greeting,
    is_too_vague_for_search,
    looks_like_search,
)
from backend.app.settings import settings

WITH_LIST = IntentMemory(
    has_location=True,
    last_intent="food_search",
    last_place_names=["Golden Noodle House", "Sakura Sushi"],
)


class TestHeuristics:
    @pytest.mark.parametrize("message", ["hi", "Hello there!", "thanks", "မင်္ဂလာပါ", "ok thank you"])
    def test_greetings_are_smalltalk(self, message):
        assert is_greeting(message)
        assert classify_heuristic(message).intent == "smalltalk"

    def test_search_without_location_needs_one(self):
        result = classify_heuristic("sushi")
        assert result.intent == "needs_location"
        assert result.extracted.cuisine == "sushi"

    def test_search_with_known_location(self):
        assert classify_heuristic("sushi", IntentMemory(has_location=True)).intent == "food_search"

    def test_location_hint_counts_as_location(self):
        assert classify_heuristic("dim sum near Hledan").intent == "food_search"

    def test_smalltalk_question(self):
        assert classify_heuristic("how are you doing today?").intent == "smalltalk"

    def test_list_question_about_previous_results(self):
        result = classify_heuristic("which one is closest?", WITH_LIST)
        assert result.intent == "list_question"
        assert result.list_question.kind == "closest"

    def test_new_cuisine_is_a_search_not_a_list_question(self):
        result = classify_heuristic("best sushi nearby", WITH_LIST)
        assert result.intent == "food_search"

    def test_compare_is_a_list_question(self):
        result = classify_heuristic("compare Golden Noodle vs Sakura Sushi", WITH_LIST)
        assert result.intent == "list_question"
        assert result.list_question.compare_targets == ("Golden Noodle", "Sakura Sushi")

    @pytest.mark.parametrize(
        "message, refinement",
        [
            ("anything cheaper?", "cheaper"),
            ("something closer please", "closer"),
            ("which are still open", "open_now"),
            ("show me something quieter", None),
        ],
    )
    def test_refinements_need_previous_results(self, message, refinement):
        result = classify_heuristic(message, WITH_LIST)
        assert result.intent == "refine"
        assert result.refinement == refinement
        assert classify_heuristic(message, IntentMemory(has_location=True)) is None or (
            classify_heuristic(message, IntentMemory(has_location=True)).intent != "refine"
        )

    def test_place_followup(self):
        result = classify_heuristic("tell me more about Golden Noodle House?")
        assert result.intent == "place_followup"
        assert result.extracted.place_name == "golden noodle house"

    def test_unmatched_message_returns_none(self):
        assert classify_heuristic("surprise me") is None


class TestExtraction:
    def test_preferences(self):
        extracted = extract_preferences("cheap vegan ramen, something cozy within 2km")
        assert extracted.cuisine == "ramen"
        assert extracted.budget == "cheap"
        assert extracted.dietary == "vegan"
        assert extracted.vibe == "cozy"
        assert extracted.radius_m == 2000

    def test_radius_units(self):
        assert extract_radius_m("within 1.5 km") == 1500
        assert extract_radius_m("within 800 m") == 800
        assert extract_radius_m("close by") is None

    def test_search_keyword_strips_filler(self):
        assert extract_search_keyword("hi, I want some sushi please") == "sushi"
        assert extract_search_keyword("food near me") is None
        assert extract_search_keyword("hello") is None

    def test_vague_messages(self):
        assert is_too_vague_for_search("food")
        assert is_too_vague_for_search("hi there")
        assert not is_too_vague_for_search("korean bbq")

    def test_looks_like_search(self):
        assert looks_like_search("where can I get mohinga")
        assert looks_like_search("halal")
        assert not looks_like_search("Sanchaung")

    def test_food_words_inside_place_names_are_not_searches(self):
        for reply in ("Phoenix", "Barcelona", "Kabar Aye", "Teaneck"):
            assert not looks_like_search(reply), reply
        assert looks_like_search("rooftop bars")
        assert looks_like_search("bubble tea")


class TestClassifyIntent:
    def test_heuristic_wins_without_model(self, monkeypatch):
        async def fail(*args, **kwargs):
            raise AssertionError("model should not be called")

        monkeypatch.setattr(llm_intent, "complete", fail)
        result = asyncio.run(classify_intent("sushi", llm_enabled=True))
        assert result.intent == "needs_location"
        assert result.source == "heuristic"

    def test_disabled_model_falls_back_to_smalltalk(self):
        result = asyncio.run(classify_intent("surprise me", llm_enabled=False))
        assert result.intent == "smalltalk"
        assert result.source == "fallback"

    def test_model_result_is_mapped(self, monkeypatch):
        async def fake_complete(messages, **kwargs):
            assert kwargs["json_mode"] is True
            return json.dumps(
                {"intent": "search", "extracted": {"cuisine": "ramen", "budget": "Cheap", "radius": 2000}}
            )

        monkeypatch.setattr(llm_intent, "complete", fake_complete)
        result = asyncio.run(
            classify_intent("surprise me", IntentMemory(has_location=True), llm_enabled=True)
        )
        assert result.intent == "food_search"
        assert result.source == "llm"
        assert result.extracted.cuisine == "ramen"
        assert result.extracted.budget == "cheap"
        assert result.extracted.radius_m == 2000

    def test_model_search_without_location_needs_location(self, monkeypatch):
        async def fake_complete(messages, **kwargs):
            return '```json\n{"intent": "food_search", "extracted": {"dish": "mohinga"}}\n```'

        monkeypatch.setattr(llm_intent, "complete", fake_complete)
        result = asyncio.run(classify_intent("surprise me", llm_enabled=True))
        assert result.intent == "needs_location"
        assert result.extracted.dish == "mohinga"

    def test_model_list_question_without_list_is_smalltalk(self, monkeypatch):
        async def fake_complete(messages, **kwargs):
            return '{"intent": "list_question"}'

        monkeypatch.setattr(llm_intent, "complete", fake_complete)
        result = asyncio.run(classify_intent("surprise me", llm_enabled=True))
        assert result.intent == "smalltalk"

    def test_malformed_model_output_is_smalltalk(self, monkeypatch):
        async def fake_complete(messages, **kwargs):
            return "I think they want food"

        monkeypatch.setattr(llm_intent, "complete", fake_complete)
        result = asyncio.run(classify_intent("surprise me", llm_enabled=True))
        assert result.intent == "smalltalk"
        assert result.source == "fallback"

    @pytest.mark.parametrize(
        "body",
        [
            {"choices": [{"message": None}]},
            {"choices": {"message": {"content": "{}"}}},
            {"choices": ["oops"]},
            {"choices": [{"message": {"content": 42}}]},
            [{"message": {"content": '{"intent": "food_search"}'}}],
        ],
    )
    def test_malformed_completion_body_is_smalltalk(self, monkeypatch, body):
        async def fake_post(*args, **kwargs):
            return body

        monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr(openai_async, "post_json", fake_post)
        result = asyncio.run(classify_intent("surprise me", llm_enabled=True))
        assert result.intent == "smalltalk"
        assert result.source == "fallback"

    @pytest.mark.parametrize("radius", ["1e999", "Infinity", "-Infinity", "NaN", "900000"])
    def test_out_of_range_radius_is_smalltalk(self, monkeypatch, radius):
        async def fake_complete(messages, **kwargs):
            return '{"intent": "food_search", "extracted": {"radius": %s}}' % radius

        monkeypatch.setattr(llm_intent, "complete", fake_complete)
        result = asyncio.run(
            classify_intent("surprise me", IntentMemory(has_location=True), llm_enabled=True)
        )
        assert result.intent == "smalltalk"
        assert result.source == "fallback"

    def test_model_timeout_is_smalltalk(self, monkeypatch):
        """A hung model call is cut off by the classifier budget, never turned into a search."""

        async def slow_post(*args, **kwargs):
            await asyncio.sleep(5)
            return {"choices": [{"message": {"content": '{"intent": "food_search"}'}}]}

        monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr(openai_async, "post_json", slow_post)

        started = time.perf_counter()
        result = asyncio.run(classify_intent("surprise me", llm_enabled=True, timeout=0.05))
        assert result.intent == "smalltalk"
        assert result.source == "fallback"
        assert time.perf_counter() - started < 2


class TestCooldown:
    def test_repeated_failures_pause_model_calls(self, monkeypatch):
        calls = []

        async def failing_complete(messages, **kwargs):
            calls.append(1)
            raise openai_async.LLMUnavailable("boom")

        monkeypatch.setattr(llm_intent, "complete", failing_complete)
        for _ in range(llm_intent.MAX_FAILURES + 2):
            with pytest.raises(llm_intent.IntentUnavailable):
                asyncio.run(llm_intent.classify_with_llm("surprise me", False, timeout=1.0))
        assert len(calls) == llm_intent.MAX_FAILURES

    def test_success_resets_failure_count(self, monkeypatch):
        responses = iter([openai_async.LLMUnavailable("boom"), '{"intent": "smalltalk"}'])

        async def flaky_complete(messages, **kwargs):
            item = next(responses)
            if isinstance(item, Exception):
                raise item
            return item

        monkeypatch.setattr(llm_intent, "complete", flaky_complete)
        with pytest.raises(llm_intent.IntentUnavailable):
            asyncio.run(llm_intent.classify_with_llm("hmm", False, timeout=1.0))
        result = asyncio.run(llm_intent.classify_with_llm("hmm", False, timeout=1.0))
        assert result.intent == "smalltalk"
        assert llm_intent._failure_count == 0
