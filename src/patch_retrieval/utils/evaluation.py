"""Retrieval quality of a scored archive against known ground truth."""
from typing import Dict, Hashable, Sequence

import numpy as np
from sklearn.metrics import average_precision_score

from patch_retrieval.data.patch import Patch
from patch_retrieval.utils.ranking import rank_archive


def precision_at_k(patches: Sequence[Patch], relevant_ids: Sequence[Hashable], k: int) -> float:
    if k <= 0:
        return 0.0
    relevant = set(relevant_ids)
    top = rank_archive(patches)[:k]
    if not top:
        return 0.0
    return sum(1 for p in top if p.patch_id in relevant) / len(top)


def average_precision(patches: Sequence[Patch], relevant_ids: Sequence[Hashable]) -> float:
    """Average precision of the decision-value ranking; 0.0 without positives."""
    scored = [p for p in patches if p.distance is not None]
    relevant = set(relevant_ids)
    y_true = np.array([p.patch_id in relevant for p in scored], dtype=int)
    if y_true.sum() == 0:
        return 0.0
    y_score = np.array([p.distance for p in scored], dtype=float)
    return float(average_precision_score(y_true, y_score))


def retrieval_report(patches: Sequence[Patch], relevant_ids: Sequence[Hashable], ks=(10, 50, 100)) -> Dict[str, float]:
    report = {'average_precision': average_precision(patches, relevant_ids)}
    for k in ks:
        report[f'precision@{k}'] = precision_at_k(patches, relevant_ids, k)
    return report


__all__ = ['precision_at_k', 'average_precision', 'retrieval_report']
