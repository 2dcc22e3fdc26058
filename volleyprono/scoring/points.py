"""
Prediction scoring: pure functions.

Scale:
- exact summary (sets won per side): 3, +2 when the detailed set scores
  match the actual ones exactly and in order
- correct winner only: 1
- wrong winner: 0
Risky mode doubles any positive award and turns a wrong winner into -2.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from volleyprono.scoring.set_validator import RawSet, as_pairs, strip_placeholders

EXACT_SCORE_POINTS = 3
EXACT_SETS_BONUS = 2
CORRECT_WINNER_POINTS = 1
RISKY_MULTIPLIER = 2
RISKY_PENALTY = -2
MAX_POINTS_PER_PREDICTION = EXACT_SCORE_POINTS + EXACT_SETS_BONUS


@dataclass(frozen=True)
class ScoreBreakdown:
    """How a prediction fared against the actual result."""

    points: int
    exact_score: bool
    correct_winner: bool
    correct_difference: bool
    exact_sets: bool
    is_risky: bool
    reason: str


def _same_sets(
    actual_set_scores: Optional[Iterable[RawSet]],
    predicted_set_scores: Optional[Iterable[RawSet]],
) -> bool:
    """Both lists present, same length, identical pairs in order (0-0 slots ignored)."""
    actual = strip_placeholders(as_pairs(actual_set_scores))
    predicted = strip_placeholders(as_pairs(predicted_set_scores))
    if not actual or not predicted:
        return False
    return actual == predicted


def score_prediction(
    actual_summary: tuple[int, int],
    actual_set_scores: Optional[Iterable[RawSet]],
    predicted_summary: tuple[int, int],
    predicted_set_scores: Optional[Iterable[RawSet]],
    is_risky: bool,
) -> ScoreBreakdown:
    actual_home, actual_away = actual_summary
    predicted_home, predicted_away = predicted_summary

    exact_score = actual_home == predicted_home and actual_away == predicted_away
    correct_winner = (actual_home > actual_away) == (predicted_home > predicted_away)
    correct_difference = abs(actual_home - actual_away) == abs(predicted_home - predicted_away)
    exact_sets = exact_score and _same_sets(actual_set_scores, predicted_set_scores)

    if exact_score:
        points = EXACT_SCORE_POINTS + (EXACT_SETS_BONUS if exact_sets else 0)
        reason = "Exact score and sets" if exact_sets else "Exact score"
    elif correct_winner:
        points = CORRECT_WINNER_POINTS
        reason = "Correct winner"
    else:
        points = 0
        reason = "Wrong winner"

    if is_risky:
        points = points * RISKY_MULTIPLIER if points > 0 else RISKY_PENALTY
        reason += " (risky)"

    return ScoreBreakdown(
        points=points,
        exact_score=exact_score,
        correct_winner=correct_winner,
        correct_difference=correct_difference,
        exact_sets=exact_sets,
        is_risky=is_risky,
        reason=reason,
    )


def compute_points(
    actual_summary: tuple[int, int],
    actual_set_scores: Optional[Iterable[RawSet]],
    predicted_summary: tuple[int, int],
    predicted_set_scores: Optional[Iterable[RawSet]],
    is_risky: bool,
) -> int:
    """Points awarded to one prediction. Deterministic, so re-scoring overwrites safely."""
    return score_prediction(
        actual_summary, actual_set_scores, predicted_summary, predicted_set_scores, is_risky
    ).points


def summarize_points(awards: Iterable[int]) -> dict:
    """
    Aggregate stats over a collection of awarded points.

    success_rate is relative to the non-risky maximum (5 per prediction),
    so risky wins can push it above 100.
    """
    awards = list(awards)
    count = len(awards)
    total = sum(awards)
    max_possible = count * MAX_POINTS_PER_PREDICTION

    return {
        "total_points": total,
        "max_possible_points": max_possible,
        "success_rate": round(total / max_possible * 100, 2) if max_possible else 0.0,
        "average_points": round(total / count, 2) if count else 0.0,
        "distribution": {
            "exact_with_bonus": sum(1 for p in awards if p in (5, 10)),
            "exact_only": sum(1 for p in awards if p in (3, 6)),
            "winner": sum(1 for p in awards if p in (1, 2)),
            "zero": sum(1 for p in awards if p == 0),
            "penalty": sum(1 for p in awards if p < 0),
        },
    }
