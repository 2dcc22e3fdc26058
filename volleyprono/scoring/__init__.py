"""Pure scoring rules: set-score validation, points and the lock predicate."""

from volleyprono.scoring.lock import effective_status, is_locked, lock_deadline
from volleyprono.scoring.points import ScoreBreakdown, compute_points, score_prediction, summarize_points
from volleyprono.scoring.set_validator import ensure_valid_set_scores, validate_set_scores

__all__ = [
    "ScoreBreakdown",
    "compute_points",
    "effective_status",
    "ensure_valid_set_scores",
    "is_locked",
    "lock_deadline",
    "score_prediction",
    "summarize_points",
    "validate_set_scores",
]
