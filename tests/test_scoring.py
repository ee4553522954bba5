import pytest

from predictor.services.leaderboard_service import sort_stats
from predictor.services.results import UserStats
from predictor.utils.scoring import (
    calculate_points,
    classify_points,
    classify_prediction,
    determine_outcome,
    ranking_key,
)


@pytest.mark.parametrize(
    "predicted, actual, multiplier, expected",
    [
        ((2, 1), (2, 1), 1, 3),
        ((2, 1), (2, 1), 2, 6),
        ((1, 0), (2, 1), 2, 2),
        ((0, 2), (2, 1), 2, 0),
        ((1, 1), (0, 0), 1, 1),
        ((0, 0), (0, 0), 3, 9),
        ((0, 3), (1, 2), 1, 1),
        ((3, 0), (1, 2), 5, 0),
    ],
)
def test_calculate_points(predicted, actual, multiplier, expected):
    assert calculate_points(*predicted, *actual, multiplier) == expected


def test_calculate_points_defaults_to_multiplier_one():
    assert calculate_points(2, 1, 2, 1) == 3


def test_points_are_deterministic_and_in_allowed_set():
    for multiplier in (1, 2, 3):
        allowed = {0, multiplier, 3 * multiplier}
        for ph in range(4):
            for pa in range(4):
                for ah in range(4):
                    for aa in range(4):
                        first = calculate_points(ph, pa, ah, aa, multiplier)
                        assert first == calculate_points(ph, pa, ah, aa, multiplier)
                        assert first in allowed


def test_determine_outcome():
    assert determine_outcome(2, 1) == "home"
    assert determine_outcome(0, 1) == "away"
    assert determine_outcome(2, 2) == "draw"


def test_classify_prediction():
    assert classify_prediction(2, 1, 2, 1) == "exact"
    assert classify_prediction(3, 1, 2, 1) == "outcome"
    assert classify_prediction(1, 1, 2, 1) == "miss"


def test_classify_points_uses_multiplier():
    assert classify_points(None, 2) is None
    assert classify_points(6, 2) == "exact"
    assert classify_points(2, 2) == "outcome"
    assert classify_points(0, 2) == "miss"
    assert classify_points(3, 2) == "miss"


def test_sort_breaks_ties_on_scorelines_then_outcomes():
    stats = [
        UserStats(user_id=1, name="Bob", total_points=10, correct_scorelines=2, correct_outcomes=0),
        UserStats(user_id=2, name="Ann", total_points=10, correct_scorelines=1, correct_outcomes=3),
        UserStats(user_id=3, name="Zed", total_points=10, correct_scorelines=1, correct_outcomes=1),
    ]

    ordered = sort_stats(reversed(stats))

    assert [s.name for s in ordered] == ["Bob", "Ann", "Zed"]


def test_sort_falls_back_to_name_then_user_id():
    stats = [
        UserStats(user_id=7, name="zoe", total_points=4),
        UserStats(user_id=5, name="", total_points=4),
        UserStats(user_id=3, name="Zoe", total_points=4),
        UserStats(user_id=9, name="adam", total_points=4),
        UserStats(user_id=1, name="max", total_points=9),
    ]

    ordered = sort_stats(stats)

    assert [s.user_id for s in ordered] == [1, 5, 9, 3, 7]


def test_ranking_key_is_total_order():
    a = ranking_key(5, 1, 1, "Sam", 1)
    b = ranking_key(5, 1, 1, "Sam", 2)
    assert a != b
    assert a < b
