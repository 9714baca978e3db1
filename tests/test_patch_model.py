import math

import numpy as np
import pytest

from patch_retrieval.data.patch import (
    CandidatePool,
    Feature,
    Label,
    Patch,
    TrainingSet,
    check_layout,
    feature_matrix,
)
from patch_retrieval.errors import InvalidInput, UnlabeledPatch


def test_patch_id_is_immutable(make_patch):
    p = make_patch(1, [0.1, 0.2])
    with pytest.raises(AttributeError):
        p.patch_id = 2
    p.label = Label.RELEVANT
    p.distance = -0.5
    assert p.patch_id == 1
    assert p.label is Label.RELEVANT


def test_vector_and_names(make_patch):
    p = make_patch("a", [1.0, 2.0, 3.0])
    assert np.array_equal(p.vector, np.array([1.0, 2.0, 3.0]))
    assert p.feature_names == ("band_0", "band_1", "band_2")
    assert p.distance is None
    assert not p.has_nan()
    assert make_patch("b", [1.0, math.nan]).has_nan()


def test_from_values_rejects_name_mismatch():
    with pytest.raises(InvalidInput):
        Patch.from_values(1, [1.0, 2.0], names=["only_one"])


@pytest.mark.parametrize("raw,expected", [
    (Label.RELEVANT, Label.RELEVANT),
    (1, Label.RELEVANT),
    (0, Label.IRRELEVANT),
    (-1, Label.UNLABELED),
    (1.0, Label.RELEVANT),
    ("Relevant", Label.RELEVANT),
    ("irrelevant", Label.IRRELEVANT),
    ("", Label.UNLABELED),
    ("-1", Label.UNLABELED),
    (" 0 ", Label.IRRELEVANT),
    (None, Label.UNLABELED),
    (float("nan"), Label.UNLABELED),
])
def test_label_parse(raw, expected):
    assert Label.parse(raw) is expected


def test_label_parse_unknown():
    with pytest.raises(InvalidInput):
        Label.parse("maybe")
    with pytest.raises(InvalidInput):
        Label.parse(7)


def test_training_set_rejects_unlabeled(make_patch):
    with pytest.raises(UnlabeledPatch):
        TrainingSet([make_patch(1, [0.0], Label.RELEVANT), make_patch(2, [1.0])])


def test_training_set_is_extended_not_mutated(make_patch):
    base = TrainingSet([make_patch(1, [0.0, 0.0], Label.RELEVANT)])
    bigger = base.extended([make_patch(2, [1.0, 1.0], Label.IRRELEVANT)])
    assert len(base) == 1
    assert len(bigger) == 2
    assert bigger.ids == [1, 2]
    assert list(bigger.targets()) == [1, -1]
    assert bigger.label_counts() == {Label.RELEVANT: 1, Label.IRRELEVANT: 1}
    assert bigger.matrix().shape == (2, 2)


def test_training_set_keeps_labels_from_when_patches_joined(make_patch):
    relevant = make_patch(1, [0.0, 0.0], Label.RELEVANT)
    irrelevant = make_patch(2, [1.0, 1.0], Label.IRRELEVANT)
    training = TrainingSet([relevant]).extended([irrelevant])
    relevant.label = Label.IRRELEVANT
    irrelevant.label = Label.UNLABELED
    assert list(training.targets()) == [1, -1]
    assert training.labels == [Label.RELEVANT, Label.IRRELEVANT]
    assert training.label_counts() == {Label.RELEVANT: 1, Label.IRRELEVANT: 1}


def test_pool_partition_returns_removed_in_requested_order(make_patch):
    pool = CandidatePool([make_patch(i, [float(i)]) for i in range(6)])
    remaining, removed = pool.partition([4, 1, 99])
    assert [p.patch_id for p in removed] == [4, 1]
    assert remaining.ids == [0, 2, 3, 5]
    # source pool untouched
    assert len(pool) == 6
    assert 4 in pool and 4 not in remaining


def test_check_layout(make_patch):
    a = make_patch(1, [0.0, 1.0])
    b = make_patch(2, [2.0, 3.0])
    assert check_layout([a, b]) == ("band_0", "band_1")
    assert check_layout([]) is None
    with pytest.raises(InvalidInput):
        check_layout([a, make_patch(3, [1.0, 2.0, 3.0])])
    renamed = Patch(4, [Feature("x", 0.0), Feature("y", 1.0)])
    with pytest.raises(InvalidInput):
        check_layout([renamed], reference=a.feature_names)


def test_feature_matrix_empty():
    assert feature_matrix([]).shape == (0, 0)
