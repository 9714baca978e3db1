"""Ordering helpers shared by the selectors and archive scoring."""
from __future__ import annotations
from typing import Callable, List, Optional, Sequence, TypeVar

from patch_retrieval.data.patch import Patch

T = TypeVar('T')


def rank_by(items: Sequence[T], key: Callable[[T], float], descending: bool = False, limit: Optional[int] = None) -> List[T]:
    """Stable sort of ``items`` by ``key``; equal keys keep their input order.

    ``limit`` truncates the result to at most that many items.
    """
    ranked = sorted(items, key=key, reverse=descending)
    if limit is not None:
        ranked = ranked[:max(limit, 0)]
    return ranked


def rank_archive(patches: Sequence[Patch]) -> List[Patch]:
    """Most relevant first, by decision value. Unscored patches go last."""
    scored = [p for p in patches if p.distance is not None]
    unscored = [p for p in patches if p.distance is None]
    return rank_by(scored, key=lambda p: p.distance, descending=True) + unscored


__all__ = ['rank_by', 'rank_archive']
