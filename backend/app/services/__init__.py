"""Rating engine, settlement pipeline and their collaborators."""

from .rating import compute_delta, k_factor, expected_score
from .rating_pipeline import RatingPipeline, create_pipeline
from .progression import DefaultProgression, ProgressionEvaluator
from .stores import MatchStore, PlayerStore, SqlMatchStore, SqlPlayerStore
from .locks import SettlementLocks

__all__ = [
    "compute_delta",
    "k_factor",
    "expected_score",
    "RatingPipeline",
    "create_pipeline",
    "DefaultProgression",
    "ProgressionEvaluator",
    "MatchStore",
    "PlayerStore",
    "SqlMatchStore",
    "SqlPlayerStore",
    "SettlementLocks",
]
