"""Kernel k-means used to pick diverse patches among the uncertain ones.

Clustering happens in the feature space induced by the classifier's kernel,
so no centroid vector ever exists. The squared distance from point ``x`` to
the centroid of cluster ``C`` is expanded from kernel values only::

    ||phi(x) - mu_C||^2 = K(x, x) - 2/|C| sum_c K(x, c) + 1/|C|^2 sum_{c, c'} K(c, c')
"""
from __future__ import annotations
import logging
from typing import Callable, List, Optional, Sequence

import numpy as np

from patch_retrieval import config
from patch_retrieval.data.patch import Patch
from patch_retrieval.errors import ClassifierFailure, DiversitySelectionMismatch

logger = logging.getLogger(__name__)

KernelFunction = Callable[[Sequence[Patch], Sequence[Patch]], np.ndarray]


def centroid_distances(K: np.ndarray, assignment: np.ndarray, n_clusters: int) -> np.ndarray:
    """Squared kernel-space distance of every point to every cluster centroid.

    Columns of empty clusters are ``inf``.
    """
    n = K.shape[0]
    diag = np.diag(K)
    D = np.full((n, n_clusters), np.inf)
    for c in range(n_clusters):
        members = np.flatnonzero(assignment == c)
        m = len(members)
        if m == 0:
            continue
        cross = K[:, members].sum(axis=1) / m
        within = K[np.ix_(members, members)].sum() / (m * m)
        D[:, c] = np.maximum(diag - 2.0 * cross + within, 0.0)
    return D


def evenly_spaced_seeds(n: int, n_clusters: int) -> np.ndarray:
    return np.array([(i * n) // n_clusters for i in range(n_clusters)], dtype=int)


class KernelKMeans:
    """k-means on a precomputed kernel matrix with deterministic seeding."""

    def __init__(self, n_clusters: int, max_iter: int = config.MAX_ITERATIONS_KMEANS):
        if n_clusters < 1:
            raise ValueError("n_clusters must be at least 1")
        self.n_clusters = n_clusters
        self.max_iter = max_iter
        self.labels_: Optional[np.ndarray] = None
        self.representatives_: Optional[np.ndarray] = None
        self.n_iter_ = 0
        self.converged_ = False

    def _fill_empty(self, assignment: np.ndarray, D: np.ndarray) -> np.ndarray:
        # Refill each empty cluster with the point farthest from its own
        # centroid, taken from a cluster that keeps at least one member.
        assignment = assignment.copy()
        for c in range(self.n_clusters):
            if np.any(assignment == c):
                continue
            sizes = np.bincount(assignment, minlength=self.n_clusters)
            donors = np.flatnonzero(sizes[assignment] > 1)
            if len(donors) == 0:
                raise DiversitySelectionMismatch(f"Cannot populate cluster {c} of {self.n_clusters}")
            own = D[donors, assignment[donors]]
            pick = donors[int(np.argmax(own))]
            logger.debug(f"Cluster {c} empty, moving point {pick} out of cluster {assignment[pick]}")
            assignment[pick] = c
        return assignment

    def fit(self, K: np.ndarray) -> "KernelKMeans":
        K = np.asarray(K, dtype=float)
        n = K.shape[0]
        if K.ndim != 2 or K.shape[1] != n:
            raise ValueError(f"Kernel matrix must be square, got shape {K.shape}")
        if not np.all(np.isfinite(K)):
            raise ClassifierFailure("Kernel matrix contains non-finite values")
        if n < self.n_clusters:
            raise DiversitySelectionMismatch(f"{n} points cannot form {self.n_clusters} clusters")

        seeds = evenly_spaced_seeds(n, self.n_clusters)
        diag = np.diag(K)
        D0 = np.maximum(diag[:, None] - 2.0 * K[:, seeds] + diag[seeds][None, :], 0.0)
        assignment = self._fill_empty(np.argmin(D0, axis=1), D0)

        self.converged_ = False
        self.n_iter_ = 0
        for _ in range(self.max_iter):
            D = centroid_distances(K, assignment, self.n_clusters)
            updated = self._fill_empty(np.argmin(D, axis=1), D)
            self.n_iter_ += 1
            if np.array_equal(updated, assignment):
                self.converged_ = True
                break
            assignment = updated

        D = centroid_distances(K, assignment, self.n_clusters)
        representatives = []
        for c in range(self.n_clusters):
            members = np.flatnonzero(assignment == c)
            representatives.append(int(members[int(np.argmin(D[members, c]))]))

        self.labels_ = assignment
        self.representatives_ = np.array(representatives, dtype=int)
        logger.debug(
            f"Kernel k-means: {n} points, {self.n_clusters} clusters, "
            f"{self.n_iter_} iteration(s), converged={self.converged_}"
        )
        return self


def select_diverse(patches: Sequence[Patch], h: int, kernel: KernelFunction,
                   max_iter: int = config.MAX_ITERATIONS_KMEANS) -> List[Patch]:
    """One representative per kernel k-means cluster, ``min(h, len(patches))`` in total."""
    k = min(h, len(patches))
    if k <= 0:
        return []
    K = kernel(patches, patches)
    model = KernelKMeans(n_clusters=k, max_iter=max_iter).fit(K)
    chosen = [patches[i] for i in model.representatives_]

    ids = [p.patch_id for p in chosen]
    if len(chosen) != k or len(set(ids)) != k:
        raise DiversitySelectionMismatch(f"Expected {k} distinct representatives, got ids {ids}")
    return chosen


__all__ = ['KernelKMeans', 'select_diverse', 'centroid_distances', 'evenly_spaced_seeds']
