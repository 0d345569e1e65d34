"""Search ladder behaviour against a scripted tool backend."""

import asyncio

from backend.app.deadline import TurnDeadline
from backend.app.places import search as search_module
from backend.app.places.mcp_client import ToolCallError
from backend.app.places.search import (
    SearchOrchestrator,
    SearchRequest,
    build_food_query,
    build_text_query,
    included_types_for,
)
from backend.app.places.types import Coords
from backend.tests.fakes import FakeMcpClient, json_result, make_catalog, place, tool

ORIGIN = Coords(16.78, 96.155)


def _orchestrator(client, **overrides):
    options = dict(
        min_radius=500,
        max_radius=10_000,
        default_radius=1500,
        ladder=[3000, 8000],
        max_results=20,
        details_limit=0,
    )
    options.update(overrides)
    return SearchOrchestrator(make_catalog(client), **options)


def _nearby_by_radius(results_by_radius):
    def handler(arguments):
        return json_result({"places": results_by_radius.get(arguments["radius"], [])})

    return handler


def _empty(_arguments):
    return json_result({"places": []})


def _search(orchestrator, deadline=None, **kwargs):
    kwargs.setdefault("keyword", "sushi")
    kwargs.setdefault("coords", ORIGIN)
    return asyncio.run(orchestrator.search(SearchRequest(**kwargs), deadline))


class TestRadius:
    def test_clamp_radius(self):
        orchestrator = _orchestrator(FakeMcpClient())
        assert orchestrator.clamp_radius(-50) == 500
        assert orchestrator.clamp_radius(50_000) == 10_000
        assert orchestrator.clamp_radius(None) == 1500
        assert orchestrator.clamp_radius(float("nan")) == 1500
        assert orchestrator.clamp_radius(2500.7) == 2500

    def test_ladder_only_widens(self):
        orchestrator = _orchestrator(FakeMcpClient())
        assert orchestrator.radius_ladder(1500) == [1500, 3000, 8000]
        assert orchestrator.radius_ladder(5000) == [5000, 8000]
        assert orchestrator.radius_ladder(10_000) == [10_000]

    def test_negative_radius_clamped_before_any_call(self):
        client = FakeMcpClient(handlers={"maps_search_nearby": _empty, "maps_text_search": _empty})
        _search(_orchestrator(client), radius_m=-50)
        radii = [args["radius"] for args in client.calls_to("maps_search_nearby")]
        assert radii == [500, 3000, 8000]

    def test_oversized_radius_clamped_before_any_call(self):
        client = FakeMcpClient(handlers={"maps_search_nearby": _empty, "maps_text_search": _empty})
        _search(_orchestrator(client), radius_m=50_000)
        radii = [args["radius"] for args in client.calls_to("maps_search_nearby")]
        assert radii == [10_000]
        bias = client.calls_to("maps_text_search")[0]["locationBias"]
        assert bias["circle"]["radius"] == 10_000.0


class TestLadder:
    def test_stops_at_first_rung_with_results(self):
        client = FakeMcpClient(
            handlers={
                "maps_search_nearby": _nearby_by_radius(
                    {3000: [place("p1", "Sakura Sushi", 16.79, 96.16, rating=4.5)]}
                ),
                "maps_text_search": _empty,
            }
        )
        outcome = _search(_orchestrator(client))
        assert outcome.status == "ok"
        assert outcome.strategy == "nearby"
        assert outcome.used_radius_m == 3000
        assert [c.place_id for c in outcome.candidates] == ["p1"]
        assert [a.status for a in outcome.attempts] == ["empty", "ok"]
        assert client.calls_to("maps_text_search") == []

    def test_nearby_arguments(self):
        client = FakeMcpClient(
            handlers={"maps_search_nearby": _nearby_by_radius({1500: [place("p1", "Cafe", 16.78, 96.155)]})}
        )
        _search(_orchestrator(client), keyword="coffee")
        args = client.calls_to("maps_search_nearby")[0]
        assert args["latitude"] == 16.78
        assert args["longitude"] == 96.155
        assert args["keyword"] == "coffee"
        assert args["type"] == ["restaurant", "cafe"]

    def test_text_search_after_empty_ladder(self):
        client = FakeMcpClient(
            handlers={
                "maps_search_nearby": _empty,
                "maps_text_search": lambda _: json_result(
                    {"places": [place("t1", "Hotpot House", 16.8, 96.16)]}
                ),
            }
        )
        outcome = _search(_orchestrator(client), keyword="hotpot")
        assert outcome.status == "ok"
        assert outcome.strategy == "text"
        assert outcome.used_radius_m == 8000
        assert len(client.calls_to("maps_search_nearby")) == 3
        query = client.calls_to("maps_text_search")[0]["query"]
        assert query.startswith("hotpot restaurant near (16.78")

    def test_failing_rungs_do_not_abort_the_ladder(self):
        client = FakeMcpClient(
            handlers={
                "maps_search_nearby": lambda _: ToolCallError("backend exploded"),
                "maps_text_search": lambda _: json_result({"places": [place("t1", "Noodle Bar", 16.78, 96.156)]}),
            }
        )
        outcome = _search(_orchestrator(client))
        assert outcome.status == "ok"
        assert [a.status for a in outcome.attempts] == ["error", "error", "error", "ok"]
        assert outcome.attempts[0].error == "backend exploded"

    def test_unreadable_payload_counts_as_an_empty_rung(self, monkeypatch):
        real_normalize = search_module.normalize_places
        calls = []

        def flaky_normalize(result, origin):
            calls.append(1)
            if len(calls) == 1:
                raise ValueError("cannot convert float NaN to integer")
            return real_normalize(result, origin)

        monkeypatch.setattr(search_module, "normalize_places", flaky_normalize)
        client = FakeMcpClient(
            handlers={
                "maps_search_nearby": lambda _: json_result(
                    {"places": [place("p1", "Sakura Sushi", 16.781, 96.156, rating=4.5)]}
                ),
            }
        )
        outcome = _search(_orchestrator(client))
        assert outcome.status == "ok"
        assert outcome.used_radius_m == 3000
        assert [a.status for a in outcome.attempts] == ["error", "ok"]
        assert outcome.attempts[0].error.startswith("malformed payload")

    def test_no_results_anywhere(self):
        client = FakeMcpClient(handlers={"maps_search_nearby": _empty, "maps_text_search": _empty})
        outcome = _search(_orchestrator(client))
        assert outcome.status == "no_results"
        assert outcome.candidates == []
        assert len(outcome.attempts) == 4

    def test_text_only_catalog(self):
        client = FakeMcpClient(
            tools=[tool("find_place_text_search", "query")],
            handlers={"find_place_text_search": lambda _: json_result({"results": [{"name": "Ramen Ya", "place_id": "r1"}]})},
        )
        outcome = _search(_orchestrator(client), keyword="ramen")
        assert outcome.strategy == "text"
        assert [c.place_id for c in outcome.candidates] == ["r1"]


class TestResultSet:
    def test_far_places_dropped_and_duplicates_removed(self):
        client = FakeMcpClient(
            handlers={
                "maps_search_nearby": _nearby_by_radius(
                    {
                        1500: [
                            place("near", "Near Noodle", 16.781, 96.155),
                            place("far", "Mandalay Noodle", 21.97, 96.08),
                            place("near", "Near Noodle again", 16.781, 96.155),
                        ]
                    }
                )
            }
        )
        outcome = _search(_orchestrator(client))
        assert [c.place_id for c in outcome.candidates] == ["near"]
        assert outcome.dropped_by_distance == 1

    def test_non_food_places_filtered(self):
        client = FakeMcpClient(
            handlers={
                "maps_search_nearby": _nearby_by_radius(
                    {
                        1500: [
                            place("atm", "City Bank ATM", 16.78, 96.155, types=("atm",)),
                            place("food", "Tea Shop", 16.78, 96.155),
                        ]
                    }
                )
            }
        )
        outcome = _search(_orchestrator(client))
        assert [c.place_id for c in outcome.candidates] == ["food"]

    def test_page_token_only_when_tool_accepts_one(self):
        payload = {"places": [place("p1", "Cafe", 16.78, 96.155)], "nextPageToken": "tok-2"}
        plain = FakeMcpClient(handlers={"maps_search_nearby": lambda _: json_result(payload)})
        assert _search(_orchestrator(plain)).next_page_token is None

        paged = FakeMcpClient(
            tools=[tool("maps_search_nearby", "lat", "lng", "radius", "keyword", "pageToken")],
            handlers={"maps_search_nearby": lambda _: json_result(payload)},
        )
        assert _search(_orchestrator(paged)).next_page_token == "tok-2"

    def test_details_fill_missing_facts(self):
        client = FakeMcpClient(
            handlers={
                "maps_search_nearby": _nearby_by_radius({1500: [place("p1", "Golden Noodle", 16.78, 96.156)]}),
                "maps_place_details": lambda args: json_result(
                    {"result": place(args["place_id"], "Golden Noodle", 16.78, 96.156, rating=4.7, reviews=90, open_now=True)}
                ),
            }
        )
        outcome = _search(_orchestrator(client, details_limit=2))
        candidate = outcome.candidates[0]
        assert candidate.rating == 4.7
        assert candidate.review_count == 90
        assert candidate.open_now is True


class TestDegradedBackends:
    def test_catalog_unavailable(self):
        client = FakeMcpClient(list_error=ToolCallError("tools/list timed out", retryable=True))
        outcome = _search(_orchestrator(client))
        assert outcome.status == "unavailable"
        assert outcome.attempts[0].status == "error"

    def test_no_search_tools(self):
        client = FakeMcpClient(tools=[tool("maps_geocode", "address")])
        outcome = _search(_orchestrator(client))
        assert outcome.status == "no_tools"
        assert client.calls == []

    def test_exhausted_deadline_skips_calls(self):
        client = FakeMcpClient(handlers={"maps_search_nearby": _empty, "maps_text_search": _empty})
        outcome = _search(_orchestrator(client), deadline=TurnDeadline(0.0))
        assert client.calls == []
        assert {a.status for a in outcome.attempts} == {"skipped"}
        assert outcome.status == "no_results"


class TestFetchMore:
    def test_widens_radius_without_token(self):
        client = FakeMcpClient(
            handlers={
                "maps_search_nearby": lambda _: json_result(
                    {"places": [place("old", "Seen Before", 16.78, 96.155), place("new", "Fresh Find", 16.781, 96.155)]}
                )
            }
        )
        outcome = asyncio.run(
            _orchestrator(client).fetch_more(
                keyword="sushi",
                coords=ORIGIN,
                radius_m=1500,
                page_token=None,
                exclude_ids=frozenset({"old"}),
            )
        )
        assert client.calls_to("maps_search_nearby")[0]["radius"] == 2250
        assert [c.place_id for c in outcome.candidates] == ["new"]

    def test_reuses_radius_with_token(self):
        client = FakeMcpClient(
            tools=[tool("maps_search_nearby", "lat", "lng", "radius", "pageToken")],
            handlers={"maps_search_nearby": lambda _: json_result({"places": [place("n", "Next Page Cafe", 16.78, 96.155)]})},
        )
        asyncio.run(
            _orchestrator(client).fetch_more(
                keyword="cafe", coords=ORIGIN, radius_m=1500, page_token="tok-2"
            )
        )
        args = client.calls_to("maps_search_nearby")[0]
        assert args["radius"] == 1500
        assert args["pageToken"] == "tok-2"


def test_query_builders():
    assert build_food_query("sushi") == "sushi"
    assert build_food_query("Hlaing tower") == "Hlaing tower restaurant"
    assert build_food_query("") == "restaurants"
    assert build_text_query("food", location_text="Bahan") == "restaurant near Bahan"
    assert included_types_for("coffee and bakery") == ["restaurant", "cafe", "bakery"]
    assert included_types_for("rooftop bar") == ["restaurant", "bar"]
