"""Uncertainty sampling: pick pool patches closest to the SVM hyperplane."""
from __future__ import annotations
import logging
from typing import Callable, List, Sequence

import numpy as np

from patch_retrieval import config
from patch_retrieval.data.patch import Patch
from patch_retrieval.utils.ranking import rank_by

logger = logging.getLogger(__name__)

DecisionFunction = Callable[[Sequence[Patch]], np.ndarray]


def functional_distances(pool: Sequence[Patch], decision_fn: DecisionFunction) -> np.ndarray:
    return np.abs(np.asarray(decision_fn(pool), dtype=float))


def select_uncertain(pool: Sequence[Patch], decision_fn: DecisionFunction, q: int, iteration: int,
                     num_initial_iterations: int = config.NUM_INITIAL_ITERATIONS,
                     margin: float = config.MARGIN_WIDTH) -> List[Patch]:
    """Return up to ``q`` pool patches with the smallest functional distance.

    During the first ``num_initial_iterations`` rounds every patch inside the
    margin qualifies, in pool order, as long as there are at least ``q`` of
    them. Otherwise patches are ranked by ascending ``|decision value|``.
    """
    if q <= 0 or len(pool) == 0:
        return []
    distances = functional_distances(pool, decision_fn)
    indices = list(range(len(pool)))

    if iteration < num_initial_iterations:
        inside = [i for i in indices if distances[i] < margin]
        if len(inside) >= q:
            logger.debug(f"{len(inside)} patches inside the margin, keeping the first {q}")
            return [pool[i] for i in inside[:q]]
        logger.debug(f"Only {len(inside)} patches inside the margin (need {q}); ranking whole pool")

    chosen = rank_by(indices, key=lambda i: distances[i], limit=q)
    return [pool[i] for i in chosen]


__all__ = ['select_uncertain', 'functional_distances']
