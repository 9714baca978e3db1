"""Patch data model shared by the classifier, selectors and controller.

A ``Patch`` is one image region described by an ordered feature vector. The
controller owns its ``label`` and ``distance`` fields for the lifetime of a
session; the id never changes.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Hashable, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from patch_retrieval.errors import InvalidInput, UnlabeledPatch


class Label(Enum):
    UNLABELED = -1
    IRRELEVANT = 0
    RELEVANT = 1

    @classmethod
    def parse(cls, value: Any) -> "Label":
        """Accept a Label, its integer code or its name (case-insensitive)."""
        if isinstance(value, Label):
            return value
        if value is None or (isinstance(value, (float, np.floating)) and np.isnan(value)):
            return cls.UNLABELED
        if isinstance(value, (float, np.floating)) and float(value).is_integer():
            value = int(value)
        if isinstance(value, (int, np.integer)) and not isinstance(value, bool):
            try:
                return cls(int(value))
            except ValueError as e:
                raise InvalidInput(f"Unknown label code: {value}") from e
        text = str(value).strip().lower()
        if text in ("", "none", "-1", "unlabeled", "unlabelled"):
            return cls.UNLABELED
        if text in ("relevant", "1", "true", "yes"):
            return cls.RELEVANT
        if text in ("irrelevant", "0", "false", "no"):
            return cls.IRRELEVANT
        raise InvalidInput(f"Unknown label: {value!r}")

    @property
    def is_labeled(self) -> bool:
        return self is not Label.UNLABELED


@dataclass(frozen=True)
class Feature:
    name: str
    value: float


@dataclass(eq=False)
class Patch:
    patch_id: Hashable
    features: List[Feature]
    label: Label = Label.UNLABELED
    distance: Optional[float] = None  # signed decision value, set by classification
    meta: Dict[str, Any] = field(default_factory=dict)

    def __setattr__(self, name, value):
        if name == 'patch_id' and 'patch_id' in self.__dict__:
            raise AttributeError("patch_id is immutable")
        super().__setattr__(name, value)

    @classmethod
    def from_values(cls, patch_id: Hashable, values: Sequence[float], names: Optional[Sequence[str]] = None,
                    label: Label = Label.UNLABELED, **meta) -> "Patch":
        names = list(names) if names is not None else [f"f{i}" for i in range(len(values))]
        if len(names) != len(values):
            raise InvalidInput(f"Patch {patch_id}: {len(names)} feature names for {len(values)} values")
        features = [Feature(n, float(v)) for n, v in zip(names, values)]
        return cls(patch_id, features, label=label, meta=dict(meta))

    @property
    def vector(self) -> np.ndarray:
        return np.array([f.value for f in self.features], dtype=float)

    @property
    def feature_names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.features)

    def has_nan(self) -> bool:
        return any(np.isnan(f.value) for f in self.features)

    def __repr__(self) -> str:
        return f"Patch(id={self.patch_id!r}, label={self.label.name}, distance={self.distance})"


def feature_matrix(patches: Sequence[Patch]) -> np.ndarray:
    """Stack feature vectors row-wise; shape (len(patches), n_features)."""
    if not patches:
        return np.empty((0, 0), dtype=float)
    return np.vstack([p.vector for p in patches])


def check_layout(patches: Iterable[Patch], reference: Optional[Tuple[str, ...]] = None) -> Optional[Tuple[str, ...]]:
    """Ensure every patch shares the same ordered feature names.

    Returns the layout in use (``reference`` or the first patch's names), or
    None when there is nothing to compare.
    """
    layout = reference
    for patch in patches:
        names = patch.feature_names
        if layout is None:
            layout = names
        elif names != layout:
            raise InvalidInput(
                f"Patch {patch.patch_id!r} has feature layout of length {len(names)} "
                f"that does not match the session layout of length {len(layout)}"
            )
    return layout


class TrainingSet:
    """Ordered labelled patches; never contains an unlabeled member.

    Each member's label is recorded when it joins the set, so later changes
    to ``Patch.label`` (e.g. by classification) do not alter the targets.
    """

    def __init__(self, patches: Iterable[Patch] = ()):
        members = list(patches)
        for patch in members:
            if not patch.label.is_labeled:
                raise UnlabeledPatch(f"Patch {patch.patch_id!r} is unlabeled")
        self._patches: Tuple[Patch, ...] = tuple(members)
        self._labels: Tuple[Label, ...] = tuple(p.label for p in members)

    def extended(self, patches: Iterable[Patch]) -> "TrainingSet":
        added = TrainingSet(patches)
        merged = TrainingSet()
        merged._patches = self._patches + added._patches
        merged._labels = self._labels + added._labels
        return merged

    @property
    def labels(self) -> List[Label]:
        return list(self._labels)

    @property
    def ids(self) -> List[Hashable]:
        return [p.patch_id for p in self._patches]

    def matrix(self) -> np.ndarray:
        return feature_matrix(self._patches)

    def targets(self) -> np.ndarray:
        """+1 for relevant, -1 for irrelevant."""
        return np.array([1 if label is Label.RELEVANT else -1 for label in self._labels], dtype=int)

    def label_counts(self) -> Dict[Label, int]:
        counts: Dict[Label, int] = {}
        for label in self._labels:
            counts[label] = counts.get(label, 0) + 1
        return counts

    def __len__(self) -> int:
        return len(self._patches)

    def __iter__(self) -> Iterator[Patch]:
        return iter(self._patches)

    def __getitem__(self, index: int) -> Patch:
        return self._patches[index]


class CandidatePool:
    """Ordered unlabeled background patches awaiting selection."""

    def __init__(self, patches: Iterable[Patch] = ()):
        self._patches: Tuple[Patch, ...] = tuple(patches)

    def partition(self, ids: Sequence[Hashable]) -> Tuple["CandidatePool", List[Patch]]:
        """Split off the patches with the given ids.

        Returns the remaining pool and the removed patches in the order of
        ``ids``; ids absent from the pool are ignored.
        """
        wanted = set(ids)
        found: Dict[Hashable, Patch] = {}
        remaining = []
        for patch in self._patches:
            if patch.patch_id in wanted and patch.patch_id not in found:
                found[patch.patch_id] = patch
            else:
                remaining.append(patch)
        removed = [found[i] for i in dict.fromkeys(ids) if i in found]
        return CandidatePool(remaining), removed

    @property
    def ids(self) -> List[Hashable]:
        return [p.patch_id for p in self._patches]

    def matrix(self) -> np.ndarray:
        return feature_matrix(self._patches)

    def __len__(self) -> int:
        return len(self._patches)

    def __iter__(self) -> Iterator[Patch]:
        return iter(self._patches)

    def __getitem__(self, index: int) -> Patch:
        return self._patches[index]

    def __contains__(self, patch_id: Hashable) -> bool:
        return any(p.patch_id == patch_id for p in self._patches)


__all__ = ['Label', 'Feature', 'Patch', 'TrainingSet', 'CandidatePool', 'feature_matrix', 'check_layout']
