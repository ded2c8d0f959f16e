import itertools

import pytest

from livematch.services import StreakPair, next_streak, normalize_threshold, winner_from_score


def test_draw_with_override_resets_both() -> None:
    result = next_streak(many_present_rule=True, winner="draw",
                         black_streak=2, orange_streak=0, threshold=3)
    assert result == StreakPair(0, 0)


def test_draw_tie_winner_carries_streak() -> None:
    result = next_streak(many_present_rule=False, winner="draw", tie_winner="black",
                         black_streak=0, orange_streak=0, threshold=3)
    assert result == (1, 0)


def test_draw_tie_winner_saturates_and_hands_off() -> None:
    streaks = StreakPair(0, 0)
    for _ in range(2):
        streaks = next_streak(many_present_rule=False, winner="draw", tie_winner="black",
                              black_streak=streaks.black, orange_streak=streaks.orange)
    assert streaks == (2, 0)

    streaks = next_streak(many_present_rule=False, winner="draw", tie_winner="black",
                          black_streak=streaks.black, orange_streak=streaks.orange)
    assert streaks == (0, 1)

    orange = next_streak(many_present_rule=False, winner="draw", tie_winner="orange",
                         black_streak=0, orange_streak=2)
    assert orange == (1, 0)


def test_draw_without_tie_winner_resets() -> None:
    assert next_streak(many_present_rule=False, winner="draw",
                       black_streak=1, orange_streak=2) == (0, 0)


def test_clear_win_increments_winner_and_resets_loser() -> None:
    result = next_streak(many_present_rule=True, winner="black",
                         black_streak=1, orange_streak=0, threshold=3)
    assert result == (2, 0)

    result = next_streak(many_present_rule=False, winner="orange",
                         black_streak=2, orange_streak=1)
    assert result == (0, 2)


def test_third_win_saturates_to_zero() -> None:
    assert next_streak(many_present_rule=False, winner="black",
                       black_streak=2, orange_streak=0) == (0, 0)


def test_unknown_winner_resets() -> None:
    assert next_streak(many_present_rule=False, winner=None,
                       black_streak=2, orange_streak=1) == (0, 0)
    assert next_streak(many_present_rule=False, winner="purple",
                       black_streak=2, orange_streak=1) == (0, 0)


@pytest.mark.parametrize("threshold", [1, 2, 3, 5])
def test_never_reaches_threshold(threshold) -> None:
    winners = ["black", "orange", "draw", None]
    tie_winners = ["black", "orange", None]
    values = range(threshold)
    for winner, tie, rule, black, orange in itertools.product(
            winners, tie_winners, [True, False], values, values):
        result = next_streak(many_present_rule=rule, winner=winner, tie_winner=tie,
                             black_streak=black, orange_streak=orange, threshold=threshold)
        assert result.black < threshold and result.orange < threshold, (
            winner, tie, rule, black, orange, result)


def test_threshold_normalization() -> None:
    assert normalize_threshold(3.9) == 3
    assert normalize_threshold(-4) == 1
    assert normalize_threshold("nonsense") == 3
    assert normalize_threshold(None) == 3
    assert normalize_threshold("5") == 5


@pytest.mark.parametrize("threshold", [float("inf"), float("-inf"), float("nan"), "inf"])
def test_non_finite_threshold_falls_back_to_default(threshold) -> None:
    assert normalize_threshold(threshold) == 3
    result = next_streak(many_present_rule=False, winner="black",
                         black_streak=1, threshold=threshold)
    assert result == (2, 0)


def test_winner_from_score() -> None:
    assert winner_from_score(3, 1) == "black"
    assert winner_from_score(0, 2) == "orange"
    assert winner_from_score(2, 2) == "draw"
