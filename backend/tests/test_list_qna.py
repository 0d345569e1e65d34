"""Questions about the last shown list, answered without a new search."""

import pytest
from backend.app.chat.list_qna import (
    ListQuestion,
    answer_list_question,
    describe_place,
    detect_list_question,
    format_distance,
    resolve_place_reference,
)
from backend.app.places.types import PlaceCandidate

PLACES = [
    PlaceCandidate("p1", "Golden Noodle House", rating=4.3, review_count=420, distance_meters=850.0),
    PlaceCandidate("p2", "Sakura Sushi", rating=4.7, review_count=3, distance_meters=1600.0),
    PlaceCandidate(
        "p3",
        "Shan Kitchen",
        rating=4.1,
        review_count=95,
        distance_meters=240.0,
        address="12 Bogyoke Road",
        open_now=True,
        maps_url="https://maps.example/p3",
    ),
]


class TestDetectListQuestion:
    @pytest.mark.parametrize(
        "message, kind",
        [
            ("which one has the highest rating?", "highest_rating"),
            ("which is nearest", "closest"),
            ("which one is most popular", "most_reviews"),
            ("just pick one for me", "recommend_one"),
            ("good for a date?", "vibe"),
        ],
    )
    def test_kinds(self, message, kind):
        assert detect_list_question(message).kind == kind

    def test_top_n_words_and_digits(self):
        assert detect_list_question("show the top 2").top_n == 2
        assert detect_list_question("best three please").top_n == 3

    def test_compare_patterns(self):
        assert detect_list_question("Golden Noodle vs Sakura").compare_targets == (
            "Golden Noodle",
            "Sakura",
        )
        assert detect_list_question("between Shan Kitchen and Sakura Sushi?").compare_targets == (
            "Shan Kitchen",
            "Sakura Sushi",
        )

    def test_unrelated_message(self):
        assert detect_list_question("tell me a joke") is None
        assert detect_list_question("") is None


class TestAnswers:
    def test_highest_rating_warns_about_few_reviews(self):
        answer = answer_list_question(ListQuestion("highest_rating"), PLACES)
        assert answer.places[0].place_id == "p2"
        assert "4.7★" in answer.message
        assert "small number of reviews" in answer.message

    def test_closest(self):
        answer = answer_list_question(ListQuestion("closest"), PLACES)
        assert answer.places[0].place_id == "p3"
        assert "240m" in answer.message

    def test_closest_without_distances(self):
        answer = answer_list_question(ListQuestion("closest"), [PlaceCandidate("x", "X")])
        assert answer.places == []
        assert "distance data" in answer.message

    def test_most_reviews(self):
        answer = answer_list_question(ListQuestion("most_reviews"), PLACES)
        assert answer.places[0].place_id == "p1"
        assert "(420)" in answer.message

    def test_top_n_orders_by_rating(self):
        answer = answer_list_question(ListQuestion("top_n", top_n=2), PLACES)
        assert [p.place_id for p in answer.places] == ["p2", "p1"]

    def test_recommend_one_balances_rating_reviews_and_distance(self):
        answer = answer_list_question(ListQuestion("recommend_one"), PLACES)
        assert answer.places[0].place_id == "p1"
        assert answer.message.startswith("I'd go with Golden Noodle House.")

    def test_compare_resolves_fuzzy_names(self):
        answer = answer_list_question(
            ListQuestion("compare", compare_targets=("golden noodle", "shan kitchen")), PLACES
        )
        assert [p.place_id for p in answer.places] == ["p1", "p3"]
        assert "lean toward Golden Noodle House" in answer.message

    def test_compare_with_unknown_name(self):
        answer = answer_list_question(
            ListQuestion("compare", compare_targets=("golden noodle", "pizza planet")), PLACES
        )
        assert answer.places == []
        assert "couldn't match" in answer.message

    def test_vibe_admits_missing_data(self):
        answer = answer_list_question(ListQuestion("vibe"), PLACES)
        assert "ambience" in answer.message
        assert answer.places[0].place_id == "p2"

    def test_empty_list(self):
        answer = answer_list_question(ListQuestion("closest"), [])
        assert "recent list" in answer.message


class TestPlaceReference:
    def test_exact_and_contained_names(self):
        assert resolve_place_reference("Sakura Sushi", PLACES).score == 1.0
        assert resolve_place_reference("golden noodle", PLACES).place.place_id == "p1"

    def test_typo_still_matches(self):
        assert resolve_place_reference("shan kitchn", PLACES).place.place_id == "p3"

    def test_unrelated_text_does_not_match(self):
        assert resolve_place_reference("pizza planet", PLACES) is None
        assert resolve_place_reference("", PLACES) is None


def test_describe_place():
    text = describe_place(PLACES[2])
    assert text.startswith("Shan Kitchen: 4.1★, 95 reviews, about 240m away, open now.")
    assert "Address: 12 Bogyoke Road." in text
    assert text.endswith("Map: https://maps.example/p3")


def test_format_distance():
    assert format_distance(None) == "distance unknown"
    assert format_distance(999.6) == "1000m"
    assert format_distance(1340) == "1.3km"
