"""Utility modules for patch retrieval."""

from patch_retrieval.utils.ranking import (
    rank_by,
    rank_archive,
)

from patch_retrieval.utils.evaluation import (
    precision_at_k,
    average_precision,
    retrieval_report,
)

__all__ = [
    # Ranking
    "rank_by",
    "rank_archive",
    # Evaluation
    "precision_at_k",
    "average_precision",
    "retrieval_report",
]
