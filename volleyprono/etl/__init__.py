"""Observation providers and match reconciliation."""

from volleyprono.etl.base import MatchObservation, ObservationProvider
from volleyprono.etl.feed_provider import JSONFeedProvider
from volleyprono.etl.reconciler import MatchReconciler, ReconcileResult

__all__ = [
    "JSONFeedProvider",
    "MatchObservation",
    "MatchReconciler",
    "ObservationProvider",
    "ReconcileResult",
]
