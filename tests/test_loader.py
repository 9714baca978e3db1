import json
import math
import os
import runpy

import pandas as pd
import pytest

from patch_retrieval.data.loader import load_patches_csv, load_patches_json, write_scores
from patch_retrieval.data.patch import Label
from patch_retrieval.errors import InvalidInput
from patch_retrieval.utils import average_precision, precision_at_k, rank_archive, rank_by


@pytest.fixture
def feature_csv(tmp_path):
    path = tmp_path / "patches.csv"
    pd.DataFrame({
        "patch_id": [10, 11, 12],
        "product": ["S1A_001", "S1A_001", "S1A_002"],
        "mean_vv": [0.1, 0.4, None],
        "std_vv": [1.0, 2.0, 3.0],
        "truth": ["relevant", "irrelevant", ""],
    }).to_csv(path, index=False)
    return str(path)


def test_csv_numeric_columns_become_features(feature_csv):
    patches = load_patches_csv(feature_csv, label_column="truth", meta_columns=["product"])
    assert [p.patch_id for p in patches] == [10, 11, 12]
    assert patches[0].feature_names == ("mean_vv", "std_vv")
    assert [p.label for p in patches] == [Label.RELEVANT, Label.IRRELEVANT, Label.UNLABELED]
    assert patches[2].has_nan()
    assert patches[1].meta == {"product": "S1A_001"}


def test_csv_explicit_feature_columns(feature_csv):
    patches = load_patches_csv(feature_csv, feature_columns=["std_vv"])
    assert patches[1].vector.tolist() == [2.0]
    assert all(p.label is Label.UNLABELED for p in patches)


def test_csv_missing_columns(feature_csv):
    with pytest.raises(InvalidInput):
        load_patches_csv(feature_csv, id_column="tile")
    with pytest.raises(InvalidInput):
        load_patches_csv(feature_csv, feature_columns=["mean_hh"])
    with pytest.raises(FileNotFoundError):
        load_patches_csv(feature_csv + ".missing")


def test_json_records(tmp_path):
    path = tmp_path / "patches.json"
    path.write_text(json.dumps([
        {"patch_id": "a", "features": [{"name": "f0", "value": 1.5}], "label": "relevant"},
        {"patch_id": "b", "features": [{"name": "f0", "value": 2.5}], "meta": {"x": 64, "y": 128}},
        {"patch_id": "c", "features": [{"name": "f0", "value": 0.5}], "label": "-1"},
    ]))
    patches = load_patches_json(str(path))
    assert patches[0].label is Label.RELEVANT
    assert patches[1].label is Label.UNLABELED
    assert patches[1].meta == {"x": 64, "y": 128}
    assert patches[2].label is Label.UNLABELED


@pytest.mark.parametrize("record", [
    {"patch_id": "a", "features": []},
    {"patch_id": "a", "features": [{"name": "f0", "value": 1.0}, {"name": "f0", "value": 2.0}]},
    {"patch_id": "a", "features": [{"name": "f0", "value": 1.0}], "label": "perhaps"},
])
def test_json_invalid_records(tmp_path, record):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps([record]))
    with pytest.raises(InvalidInput):
        load_patches_json(str(path))


def test_write_scores_orders_by_decision_value(tmp_path, make_patch):
    patches = [make_patch(i, [float(i)]) for i in range(4)]
    for p, value in zip(patches, [0.5, 2.0, None, -1.0]):
        p.distance = value
    out = write_scores(patches, str(tmp_path / "out" / "scores.csv"))
    df = pd.read_csv(out)
    assert df["patch_id"].tolist() == [1, 0, 3, 2]
    assert math.isnan(df["decision_value"].iloc[-1])


def test_rank_by_is_stable():
    items = [("a", 1), ("b", 0), ("c", 1), ("d", 0)]
    assert rank_by(items, key=lambda t: t[1]) == [("b", 0), ("d", 0), ("a", 1), ("c", 1)]
    assert rank_by(items, key=lambda t: t[1], descending=True, limit=3) == [("a", 1), ("c", 1), ("b", 0)]


def test_retrieval_metrics(make_patch):
    patches = [make_patch(i, [0.0]) for i in range(5)]
    for p, value in zip(patches, [3.0, 2.0, 1.0, 0.0, -1.0]):
        p.distance = value
    assert [p.patch_id for p in rank_archive(patches)] == [0, 1, 2, 3, 4]
    assert precision_at_k(patches, [0, 2], 2) == 0.5
    assert average_precision(patches, [0, 1]) == pytest.approx(1.0)
    assert average_precision(patches, []) == 0.0


def test_session_script_keeps_truth_column_out_of_query_features(tmp_path):
    script = runpy.run_path(os.path.join(os.path.dirname(__file__), os.pardir, "scripts", "run_session.py"))
    query_csv = tmp_path / "query.csv"
    archive_csv = tmp_path / "archive.csv"
    pd.DataFrame({"patch_id": ["q0", "q1"], "mean_vv": [0.1, 0.2], "is_relevant": [1, 1]}).to_csv(query_csv, index=False)
    pd.DataFrame({"patch_id": [1, 2], "mean_vv": [0.3, 4.0], "is_relevant": [1, 0]}).to_csv(archive_csv, index=False)

    query, archive, truth = script["load_session_inputs"](str(query_csv), str(archive_csv), "is_relevant")
    assert query[0].feature_names == archive[0].feature_names == ("mean_vv",)
    assert all(p.label is Label.RELEVANT for p in query)
    assert truth == {1: Label.RELEVANT, 2: Label.IRRELEVANT}
