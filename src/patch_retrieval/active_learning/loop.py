"""Active learning loop for interactive patch retrieval.

Implements the query -> label -> retrain cycle of Demir & Bruzzone,
"An effective active learning method for interactive content-based retrieval
in remote sensing images" (IGARSS 2013):
 - seed the training set with query patches plus far-away background patches
 - uncertainty sampling: patches nearest the SVM hyperplane
 - diversity sampling: kernel k-means representatives among those
 - retrain on the user's labels
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Hashable, List, Optional, Sequence, Tuple

import numpy as np

from patch_retrieval import config
from patch_retrieval.active_learning.kernel_kmeans import select_diverse
from patch_retrieval.active_learning.uncertainty import select_uncertain
from patch_retrieval.data.patch import CandidatePool, Label, Patch, TrainingSet, check_layout
from patch_retrieval.errors import DiversitySelectionMismatch, InvalidInput, ModelNotTrained, UnlabeledPatch
from patch_retrieval.model.classifier import PatchClassifier
from patch_retrieval.utils.ranking import rank_by

logger = logging.getLogger(__name__)


class Phase(Enum):
    IDLE = 'idle'
    SEEDED = 'seeded'
    READY = 'ready'


@dataclass(frozen=True)
class SessionState:
    phase: Phase = Phase.IDLE
    iteration: int = 0
    h: int = 0  # diverse patches per batch
    q: int = 0  # uncertain candidates per batch
    uncertain_ids: Tuple[Hashable, ...] = ()
    diverse_ids: Tuple[Hashable, ...] = ()


class ActiveLearning:
    """Session controller. Calls on one instance must not overlap."""

    def __init__(self, classifier: Optional[PatchClassifier] = None,
                 num_initial_iterations: int = config.NUM_INITIAL_ITERATIONS,
                 max_iterations_kmeans: int = config.MAX_ITERATIONS_KMEANS,
                 num_bootstrap_irrelevant: int = config.NUM_BOOTSTRAP_IRRELEVANT,
                 uncertainty_multiplier: int = config.UNCERTAINTY_MULTIPLIER):
        self.classifier = classifier or PatchClassifier()
        self.num_initial_iterations = num_initial_iterations
        self.max_iterations_kmeans = max_iterations_kmeans
        self.num_bootstrap_irrelevant = num_bootstrap_irrelevant
        self.uncertainty_multiplier = uncertainty_multiplier

        self.state = SessionState()
        self.training_set = TrainingSet()
        self.pool = CandidatePool()
        self._layout: Optional[Tuple[str, ...]] = None

    @property
    def session(self) -> SessionState:
        return self.state

    @property
    def iteration(self) -> int:
        return self.state.iteration

    @property
    def candidate_pool(self) -> CandidatePool:
        return self.pool

    def get_training_data(self) -> List[Patch]:
        return list(self.training_set)

    # ------------------------------------------------------------------
    # Session setup
    # ------------------------------------------------------------------

    def set_query_patches(self, patches: Sequence[Patch]) -> SessionState:
        """Start a session from the user's example patches (one shared label)."""
        patches = list(patches)
        if not patches:
            raise InvalidInput("At least one query patch is required")
        labels = {p.label for p in patches}
        if len(labels) > 1:
            raise InvalidInput(f"Found different labels in query patches: {sorted(l.name for l in labels)}")
        if not patches[0].label.is_labeled:
            raise InvalidInput("Query patches must carry a relevance label")
        invalid = [p.patch_id for p in patches if p.has_nan()]
        if invalid:
            raise InvalidInput(f"Found invalid feature in query patches {invalid}")
        if len({p.patch_id for p in patches}) != len(patches):
            raise InvalidInput("Query patches must have unique ids")
        layout = check_layout(patches)

        self.training_set = TrainingSet(patches)
        self.pool = CandidatePool()
        self._layout = layout
        self.state = SessionState(phase=Phase.SEEDED)
        logger.info(f"Session seeded with {len(patches)} {patches[0].label.name.lower()} query patches")
        return self.state

    def set_random_patches(self, patches: Sequence[Patch]) -> SessionState:
        """Add background patches to the pool, bootstrap irrelevant examples and train.

        Candidates already in the pool are kept; the bootstrap picks from the
        combined pool.
        """
        if self.state.phase is Phase.IDLE:
            raise InvalidInput("Query patches must be set before the background pool")
        patches = list(patches)
        labeled = [p.patch_id for p in patches if p.label.is_labeled]
        if labeled:
            raise InvalidInput(f"Background patches must be unlabeled, got labels on {labeled}")

        valid = [p for p in patches if not p.has_nan()]
        dropped_nan = len(patches) - len(valid)
        if dropped_nan:
            logger.warning(f"Dropped {dropped_nan} background patch(es) with invalid features")
        check_layout(valid, self._layout)
        known = set(self.training_set.ids) | set(self.pool.ids)
        fresh: List[Patch] = []
        for p in valid:
            if p.patch_id in known:
                continue
            known.add(p.patch_id)
            fresh.append(p)
        if len(fresh) != len(valid):
            logger.warning(f"Ignored {len(valid) - len(fresh)} background patch(es) with duplicate ids")

        pool = CandidatePool(list(self.pool) + fresh)
        far_ids = self._farthest_from_training_centroid(pool)
        pool, negatives = pool.partition(far_ids)
        for p in negatives:
            p.label = Label.IRRELEVANT
        training_set = self.training_set.extended(negatives)
        try:
            self.classifier.train(training_set)
        except Exception:
            for p in negatives:
                p.label = Label.UNLABELED
            raise

        self.training_set = training_set
        self.pool = pool
        self.state = replace(self.state, phase=Phase.READY, uncertain_ids=(), diverse_ids=())
        logger.info(
            f"Background pool: {len(patches)} given, {len(negatives)} bootstrapped as irrelevant, "
            f"{len(self.pool)} candidates, training set {len(self.training_set)}"
        )
        return self.state

    def _farthest_from_training_centroid(self, pool: CandidatePool) -> List[Hashable]:
        if len(pool) == 0:
            return []
        center = self.training_set.matrix().mean(axis=0)
        distances = np.linalg.norm(pool.matrix() - center, axis=1)
        order = rank_by(range(len(pool)), key=lambda i: distances[i], descending=True,
                        limit=min(self.num_bootstrap_irrelevant, len(pool)))
        return [pool[i].patch_id for i in order]

    # ------------------------------------------------------------------
    # Active learning round
    # ------------------------------------------------------------------

    def get_most_ambiguous_patches(self, num_patches: int) -> List[Patch]:
        """Select patches for the user to label and remove them from the pool."""
        if isinstance(num_patches, bool) or not isinstance(num_patches, (int, np.integer)) or num_patches < 1:
            raise InvalidInput(f"Number of patches must be a positive integer, got {num_patches!r}")
        if self.state.phase is not Phase.READY:
            raise ModelNotTrained("Background patches must be set before selecting ambiguous patches")
        h = int(num_patches)
        q = self.uncertainty_multiplier * h
        logger.debug(f"Selecting {q} uncertain and {h} diverse patches from a pool of {len(self.pool)}")

        uncertain = select_uncertain(
            list(self.pool), self.classifier.decision_values, q, self.state.iteration,
            num_initial_iterations=self.num_initial_iterations,
        )
        diverse = select_diverse(uncertain, h, self.classifier.kernel, max_iter=self.max_iterations_kmeans)
        diverse_ids = [p.patch_id for p in diverse]

        pool, selected = self.pool.partition(diverse_ids)
        if len(selected) != len(diverse_ids):
            # representatives always come from the pool
            raise DiversitySelectionMismatch(
                f"Selected {len(diverse_ids)} representatives but found {len(selected)} in the pool"
            )
        self.pool = pool
        self.state = replace(
            self.state, h=h, q=q,
            uncertain_ids=tuple(p.patch_id for p in uncertain),
            diverse_ids=tuple(diverse_ids),
        )
        logger.info(f"Iteration {self.state.iteration}: {len(uncertain)} uncertain, {len(selected)} selected, pool {len(self.pool)}")
        return selected

    def train(self, labeled_patches: Sequence[Patch]) -> SessionState:
        """Add the user's labels and retrain; nothing is committed if training fails."""
        if self.state.phase is not Phase.READY:
            raise InvalidInput("Background patches must be set before training")
        patches = list(labeled_patches)
        unlabeled = [p.patch_id for p in patches if not p.label.is_labeled]
        if unlabeled:
            raise UnlabeledPatch(f"Found unlabeled patch(es): {unlabeled}")
        invalid = [p.patch_id for p in patches if p.has_nan()]
        if invalid:
            raise InvalidInput(f"Found invalid feature in labeled patches {invalid}")
        check_layout(patches, self._layout)
        known = set(self.training_set.ids)
        ids = [p.patch_id for p in patches]
        repeated = [i for i in ids if i in known]
        if repeated or len(set(ids)) != len(ids):
            raise InvalidInput(f"Patches already in the training set or repeated: {repeated or ids}")

        training_set = self.training_set.extended(patches)
        self.classifier.train(training_set)

        self.training_set = training_set
        self.pool, _ = self.pool.partition(ids)
        self.state = replace(self.state, iteration=self.state.iteration + 1)
        logger.info(f"Retrained on {len(self.training_set)} patches, iteration {self.state.iteration}")
        return self.state

    # ------------------------------------------------------------------
    # Scoring and model persistence
    # ------------------------------------------------------------------

    def classify(self, patches: Sequence[Patch]) -> List[Patch]:
        """Set label and decision value on each patch.

        Patches are updated in place, except those currently held by the
        training set or candidate pool: for these a scored copy is returned
        and the session's object is left as it was.
        """
        patches = list(patches)
        values = self.classifier.decision_values(patches)
        owned = {id(p) for p in self.training_set} | {id(p) for p in self.pool}
        scored = []
        copies = 0
        for patch, value in zip(patches, values):
            if id(patch) in owned:
                patch = replace(patch, features=list(patch.features), meta=dict(patch.meta))
                copies += 1
            patch.distance = float(value)
            patch.label = self.classifier.label_for(float(value))
            scored.append(patch)
        logger.debug(f"Classified {len(scored)} patches, {copies} of them copied from the session")
        return scored

    def save_model(self, filepath: str) -> None:
        self.classifier.save_model(filepath)

    def load_model(self, filepath: str) -> None:
        self.classifier.load_model(filepath)

    def get_model(self) -> Dict[str, Any]:
        return self.classifier.get_model()

    def set_model(self, bundle: Dict[str, Any]) -> None:
        self.classifier.set_model(bundle)


__all__ = ['ActiveLearning', 'SessionState', 'Phase']
