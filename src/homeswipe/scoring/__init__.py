"""
Motor de scoring.

Score cold start por atributos intrínsecos y score aprendido a partir
de las señales del historial de swipes.
"""

from homeswipe.scoring.engine import (
    ScoreBreakdown,
    ScoringEngine,
    average_commute,
    cold_start_score,
    compute_score,
    score_listing,
)
from homeswipe.scoring.ratios import range_distance_ratio

__all__ = [
    "ScoreBreakdown",
    "ScoringEngine",
    "average_commute",
    "cold_start_score",
    "compute_score",
    "range_distance_ratio",
    "score_listing",
]
