"""Win-streak rule: next consecutive-win counters after a match outcome."""

from typing import NamedTuple, Optional

from ..utils import BLACK, ORANGE, DRAW, DEFAULT_WIN_STREAK_THRESHOLD


class StreakPair(NamedTuple):
    black: int
    orange: int


def normalize_threshold(threshold) -> int:
    """Floor the threshold to an integer of at least 1, defaulting on bad input."""
    try:
        value = int(float(threshold or DEFAULT_WIN_STREAK_THRESHOLD))
    except (TypeError, ValueError, OverflowError):
        value = DEFAULT_WIN_STREAK_THRESHOLD
    return max(1, value)


def winner_from_score(black_score: int, orange_score: int) -> str:
    if black_score > orange_score:
        return BLACK
    if orange_score > black_score:
        return ORANGE
    return DRAW


def next_streak(
    *,
    many_present_rule: bool,
    winner: Optional[str],
    tie_winner: Optional[str] = None,
    black_streak: int = 0,
    orange_streak: int = 0,
    threshold=DEFAULT_WIN_STREAK_THRESHOLD,
) -> StreakPair:
    """
    Compute the win-streak counters that follow a match.

    A streak that reaches ``threshold`` resets to zero instead of growing, so
    the result never holds a value of ``threshold`` or more. On a draw without
    the many-present override, the tie-break winner carries the streak; if that
    saturates, momentum is handed to the opposing team (its counter becomes 1).

    Args:
        many_present_rule: Whether the many-present override is enabled
        winner: ``black``, ``orange`` or ``draw``; anything else resets both
        tie_winner: Winner of the tie-break procedure (draws only)
        black_streak: Black counter before the match
        orange_streak: Orange counter before the match
        threshold: Saturation point, floored to at least 1

    Returns:
        StreakPair with the next black and orange counters
    """
    black_prev = int(black_streak or 0)
    orange_prev = int(orange_streak or 0)
    limit = normalize_threshold(threshold)
    # the handed-off momentum saturates too when the threshold is 1
    handoff = 1 if limit > 1 else 0

    if winner == DRAW:
        if many_present_rule:
            return StreakPair(0, 0)
        if tie_winner == BLACK:
            nxt = black_prev + 1
            return StreakPair(0, handoff) if nxt >= limit else StreakPair(nxt, 0)
        if tie_winner == ORANGE:
            nxt = orange_prev + 1
            return StreakPair(handoff, 0) if nxt >= limit else StreakPair(0, nxt)
        return StreakPair(0, 0)

    if winner == BLACK:
        nxt = black_prev + 1
        return StreakPair(0 if nxt >= limit else nxt, 0)

    if winner == ORANGE:
        nxt = orange_prev + 1
        return StreakPair(0, 0 if nxt >= limit else nxt)

    return StreakPair(0, 0)
