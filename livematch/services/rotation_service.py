"""
Rotation service for the Live Match Sync application.

Decides, after a finished match, which team stays on the pitch, which team
leaves, and whether the next line-up has to be picked manually.
"""
import logging
from typing import Iterable, List, Sequence

from ..models import RotationInput, RotationMode, RotationOutcome, other_team, unique_ids
from ..utils import BLACK, DRAW, DEFAULT_WIN_STREAK_THRESHOLD, MANY_PRESENT_LIMIT
from .win_streak import StreakPair, next_streak, normalize_threshold, winner_from_score

logger = logging.getLogger(__name__)


def recompute_bench(previous_bench: Iterable[int], outgoing: Iterable[int],
                    incoming: Iterable[int] = ()) -> List[int]:
    """(previous bench + outgoing players) minus incoming players, de-duplicated in order."""
    incoming_ids = set(unique_ids(incoming))
    return [pid for pid in unique_ids(list(previous_bench) + list(outgoing))
            if pid not in incoming_ids]


class RotationService:
    """
    Rotation decision engine.

    Rules are checked in a fixed order; the first that applies wins:

    1. Draw with the many-present override on, or a draw with more than
       ``many_present_limit`` present: both teams leave, streaks reset.
    2. Any other draw: the tie-break winner stays, unless its streak was one
       win away from the threshold, in which case both leave. Until the
       tie-break is known, the decision stays manual.
    3. A winner whose streak was one win away from the threshold: both leave.
    4. More than ``many_present_limit`` present: both leave.
    5. Otherwise the loser leaves and the winner stays.
    """

    def __init__(self, threshold: int = DEFAULT_WIN_STREAK_THRESHOLD,
                 many_present_limit: int = MANY_PRESENT_LIMIT):
        self.threshold = normalize_threshold(threshold)
        self.many_present_limit = many_present_limit

    def decide(self, facts: RotationInput) -> RotationOutcome:
        """Return the rotation outcome for a finished match."""
        winner = winner_from_score(facts.black_score, facts.orange_score)
        crowded = facts.present_count > self.many_present_limit
        about_to_saturate = self.threshold - 1

        if winner == DRAW:
            if facts.many_present_rule or crowded:
                return self._both_leave(facts, StreakPair(0, 0), reason="draw")
            if facts.tie_winner is None:
                return self._awaiting_tie_break(facts)
            streaks = self._streaks(facts, DRAW)
            if facts.streak(facts.tie_winner) >= about_to_saturate:
                return self._both_leave(facts, streaks, reason="tie-break winner saturates")
            return self._keep(facts, facts.tie_winner, streaks)

        streaks = self._streaks(facts, winner)
        if facts.streak(winner) >= about_to_saturate:
            return self._both_leave(facts, streaks, reason="winner saturates")
        if crowded:
            return self._both_leave(facts, streaks, reason="too many present")
        return self._keep(facts, winner, streaks)

    def suggest_challengers(self, previous_bench: Sequence[int], size: int,
                            exclude: Iterable[int] = ()) -> List[int]:
        """First ``size`` players waiting on the previous bench, in bench order."""
        skip = set(exclude)
        waiting = [pid for pid in unique_ids(previous_bench) if pid not in skip]
        return waiting[:max(0, size)]

    def apply_challengers(self, outcome: RotationOutcome,
                          incoming: Iterable[int]) -> RotationOutcome:
        """
        Fill the open slot of a keep-winner outcome with ``incoming`` players.

        Raises:
            ValueError: If the outcome has no single open slot or a challenger
                        is already on the staying team
        """
        slot = outcome.open_slot
        if slot is None:
            raise ValueError("Outcome has no open challenger slot")
        challengers = unique_ids(incoming)
        staying = outcome.next_black if outcome.staying_team == BLACK else outcome.next_orange
        clash = set(challengers) & set(staying)
        if clash:
            raise ValueError(f"Challengers already on the staying team: {sorted(clash)}")
        if slot == BLACK:
            outcome.next_black = challengers
        else:
            outcome.next_orange = challengers
        outcome.bench_candidates = recompute_bench(outcome.bench_candidates, (), challengers)
        return outcome

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _streaks(self, facts: RotationInput, winner: str) -> StreakPair:
        return next_streak(
            many_present_rule=facts.many_present_rule,
            winner=winner,
            tie_winner=facts.tie_winner,
            black_streak=facts.black_streak,
            orange_streak=facts.orange_streak,
            threshold=self.threshold,
        )

    def _both_leave(self, facts: RotationInput, streaks: StreakPair,
                    reason: str) -> RotationOutcome:
        logger.info("Both teams leave (%s)", reason)
        outgoing = facts.black_roster + facts.orange_roster
        return RotationOutcome(
            mode=RotationMode.BOTH_LEAVE,
            bench_candidates=recompute_bench(facts.bench, outgoing),
            next_black_streak=streaks.black,
            next_orange_streak=streaks.orange,
            manual_reselection=True,
        )

    def _awaiting_tie_break(self, facts: RotationInput) -> RotationOutcome:
        return RotationOutcome(
            mode=RotationMode.MANUAL,
            bench_candidates=recompute_bench(facts.bench, ()),
            next_black_streak=facts.black_streak,
            next_orange_streak=facts.orange_streak,
            next_black=list(facts.black_roster),
            next_orange=list(facts.orange_roster),
            manual_reselection=True,
            tie_break_pending=True,
        )

    def _keep(self, facts: RotationInput, staying: str,
              streaks: StreakPair) -> RotationOutcome:
        leaving = other_team(staying)
        kept = list(facts.roster(staying))
        return RotationOutcome(
            mode=RotationMode.KEEP_WINNER,
            staying_team=staying,
            leaving_team=leaving,
            bench_candidates=recompute_bench(facts.bench, facts.roster(leaving)),
            next_black_streak=streaks.black,
            next_orange_streak=streaks.orange,
            next_black=kept if staying == BLACK else [],
            next_orange=kept if staying != BLACK else [],
        )

