"""Performance-weighted Elo engine.

Pure functions only: no I/O and no shared state, so every function here is
safe to call from any number of concurrent settlements.
"""

import math
from dataclasses import dataclass
from typing import Sequence

from ..config import DEFAULT_MATCH_DURATION_MS, NEUTRAL_FIELD_RATING

# (exclusive upper bound, K) pairs, checked in order.
K_FACTOR_TIERS: tuple[tuple[float, int], ...] = (
    (800, 50),
    (1200, 40),
    (2000, 32),
)
ELITE_K_FACTOR = 16

MAX_TIME_BONUS = 10.0
TIME_BONUS_SPAN = 15.0
WIN_ATTEMPT_PENALTY = 2
OTHER_ATTEMPT_PENALTY = 1


@dataclass(frozen=True)
class RatingResult:
    delta: int
    new_rating: int


@dataclass(frozen=True)
class HeadToHeadResult:
    winner: RatingResult
    loser: RatingResult


@dataclass(frozen=True)
class DrawResult:
    first: RatingResult
    second: RatingResult


@dataclass(frozen=True)
class TeamResult:
    team1: list[RatingResult]
    team2: list[RatingResult]

    @property
    def team1_deltas(self) -> list[int]:
        return [r.delta for r in self.team1]

    @property
    def team2_deltas(self) -> list[int]:
        return [r.delta for r in self.team2]


def k_factor(rating: float) -> int:
    """Return the K-factor for ``rating``; volatility drops as skill rises."""
    for upper, k in K_FACTOR_TIERS:
        if rating < upper:
            return k
    return ELITE_K_FACTOR


def expected_score(player_rating: float, opponent_rating: float) -> float:
    return 1 / (1 + 10 ** ((opponent_rating - player_rating) / 400))


def round_half_up(value: float) -> int:
    """Round to the nearest integer, sending exact halves towards +inf.

    ``2.5 -> 3`` and ``-2.5 -> -2``. Python's built-in ``round`` uses
    banker's rounding, which would make ``.5`` deltas depend on parity.
    """
    return math.floor(value + 0.5)


def time_bonus(outcome: float, solve_time_ms: int, match_duration_ms: int) -> float:
    """Linear bonus from +10 (instant solve) down to -5 (solved at the limit).

    Only a win with a recorded solve time inside a positive duration earns
    (or loses) anything.
    """
    if outcome != 1 or solve_time_ms <= 0 or match_duration_ms <= 0:
        return 0.0
    ratio = min(1.0, solve_time_ms / match_duration_ms)
    return MAX_TIME_BONUS - TIME_BONUS_SPAN * ratio


def attempts_penalty(outcome: float, wrong_attempts: int) -> int:
    per_attempt = WIN_ATTEMPT_PENALTY if outcome == 1 else OTHER_ATTEMPT_PENALTY
    return -per_attempt * wrong_attempts


def compute_delta(
    player_rating: float,
    opponent_rating: float,
    outcome: float,
    solve_time_ms: int = 0,
    match_duration_ms: int = DEFAULT_MATCH_DURATION_MS,
    wrong_attempts: int = 0,
) -> int:
    """Return the rating delta for one player.

    Args:
        player_rating: The player's rating before the match.
        opponent_rating: Rating of the opponent, or the average of the
            opposing team/field.
        outcome: ``1`` for a win, ``0`` for a loss, ``0.5`` for a draw, or any
            value in between for ranked finishes.
        solve_time_ms: Time to a correct solve; ``0`` means not solved.
        match_duration_ms: Length of the match.
        wrong_attempts: Wrong submissions made by the player.

    The delta itself is not clamped; see :func:`apply_delta` for the floor.
    """
    base = k_factor(player_rating) * (outcome - expected_score(player_rating, opponent_rating))
    total = (
        base
        + time_bonus(outcome, solve_time_ms, match_duration_ms)
        + attempts_penalty(outcome, wrong_attempts)
    )
    return round_half_up(total)


def apply_delta(rating: int, delta: int) -> int:
    """Ratings never drop below zero; there is no upper bound."""
    return max(0, rating + delta)


def _result(rating: int, delta: int) -> RatingResult:
    return RatingResult(delta=delta, new_rating=apply_delta(rating, delta))


def head_to_head(
    winner_rating: int,
    loser_rating: int,
    solve_time_ms: int = 0,
    match_duration_ms: int = DEFAULT_MATCH_DURATION_MS,
    winner_attempts: int = 0,
    loser_attempts: int = 0,
) -> HeadToHeadResult:
    winner_delta = compute_delta(
        winner_rating, loser_rating, 1, solve_time_ms, match_duration_ms, winner_attempts
    )
    # Losers never earn a time bonus.
    loser_delta = compute_delta(
        loser_rating, winner_rating, 0, 0, match_duration_ms, loser_attempts
    )
    return HeadToHeadResult(
        winner=_result(winner_rating, winner_delta),
        loser=_result(loser_rating, loser_delta),
    )


def draw(
    rating_a: int,
    rating_b: int,
    attempts_a: int = 0,
    attempts_b: int = 0,
) -> DrawResult:
    delta_a = compute_delta(rating_a, rating_b, 0.5, 0, DEFAULT_MATCH_DURATION_MS, attempts_a)
    delta_b = compute_delta(rating_b, rating_a, 0.5, 0, DEFAULT_MATCH_DURATION_MS, attempts_b)
    return DrawResult(first=_result(rating_a, delta_a), second=_result(rating_b, delta_b))


def average_rating(ratings: Sequence[float], default: float = NEUTRAL_FIELD_RATING) -> float:
    if not ratings:
        return float(default)
    return sum(ratings) / len(ratings)


def team(
    team1_ratings: Sequence[int],
    team2_ratings: Sequence[int],
    team1_won: bool,
    solve_time_ms: int = 0,
    match_duration_ms: int = DEFAULT_MATCH_DURATION_MS,
    team1_attempts: Sequence[int] | None = None,
    team2_attempts: Sequence[int] | None = None,
) -> TeamResult:
    """Rate an N v N match.

    Each member is compared against the *average* rating of the opposing
    team, with their own K-factor and wrong-attempt count. ``solve_time_ms``
    belongs to the winning side; the other side never gets a time bonus.
    """
    team1_attempts = list(team1_attempts or [])
    team2_attempts = list(team2_attempts or [])
    avg1 = average_rating(team1_ratings)
    avg2 = average_rating(team2_ratings)

    def rate_side(ratings, opponent_avg, won, attempts):
        results = []
        for i, rating in enumerate(ratings):
            wrong = attempts[i] if i < len(attempts) and attempts[i] else 0
            delta = compute_delta(
                rating,
                opponent_avg,
                1 if won else 0,
                solve_time_ms if won else 0,
                match_duration_ms,
                wrong,
            )
            results.append(_result(rating, delta))
        return results

    return TeamResult(
        team1=rate_side(team1_ratings, avg2, team1_won, team1_attempts),
        team2=rate_side(team2_ratings, avg1, not team1_won, team2_attempts),
    )


def battle_royale_outcome(position: int, total_players: int) -> float:
    """Map a finishing position onto ``[0, 1]``: first is 1, last is 0.

    A single-player field counts as a win. Positions past the end of the
    field count as last.
    """
    outcome = 1 - (position - 1) / max(1, total_players - 1)
    return min(1.0, max(0.0, outcome))


def field_average(ratings: Sequence[float]) -> float:
    """Average rating of the whole field, or the neutral reference when empty."""
    return average_rating(ratings, NEUTRAL_FIELD_RATING)


def battle_royale(
    player_rating: int,
    field_rating: float,
    position: int,
    total_players: int,
    solve_time_ms: int = 0,
    match_duration_ms: int = DEFAULT_MATCH_DURATION_MS,
    wrong_attempts: int = 0,
) -> RatingResult:
    outcome = battle_royale_outcome(position, total_players)
    delta = compute_delta(
        player_rating,
        field_rating,
        outcome,
        solve_time_ms,
        match_duration_ms,
        wrong_attempts,
    )
    return _result(player_rating, delta)
