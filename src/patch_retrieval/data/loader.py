import os
import json
import logging
import pandas as pd
from typing import List, Optional, Sequence

from pydantic import ValidationError

from patch_retrieval.data.patch import Label, Patch
from patch_retrieval.errors import InvalidInput
from patch_retrieval.ingest.schemas import PatchRecord
from patch_retrieval.utils.ranking import rank_archive

logger = logging.getLogger(__name__)


def _plain(value):
    """numpy scalar -> python scalar"""
    return value.item() if hasattr(value, 'item') else value


def load_patches_csv(path: str, id_column: str = 'patch_id', label_column: Optional[str] = None,
                     feature_columns: Optional[Sequence[str]] = None,
                     meta_columns: Optional[Sequence[str]] = None) -> List[Patch]:
    """Read a feature table, one patch per row.

    Without ``feature_columns`` every numeric column other than the id, label
    and meta columns becomes a feature, in column order. Empty cells are read
    as NaN.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(path)
    df = pd.read_csv(path)
    if id_column not in df.columns:
        raise InvalidInput(f"Missing id column '{id_column}' in {path}")
    if label_column is not None and label_column not in df.columns:
        raise InvalidInput(f"Missing label column '{label_column}' in {path}")
    meta_columns = [c for c in (meta_columns or []) if c in df.columns]

    if feature_columns is None:
        reserved = {id_column, label_column, *meta_columns}
        feature_columns = [
            c for c in df.columns
            if c not in reserved and pd.api.types.is_numeric_dtype(df[c])
        ]
    else:
        missing = [c for c in feature_columns if c not in df.columns]
        if missing:
            raise InvalidInput(f"Missing feature columns {missing} in {path}")
    if not feature_columns:
        raise InvalidInput(f"No feature columns found in {path}")
    if df[id_column].duplicated().any():
        raise InvalidInput(f"Duplicate patch ids in {path}")

    values = df[list(feature_columns)].apply(pd.to_numeric, errors='coerce').to_numpy(dtype=float)
    patches = []
    for row_idx in range(len(df)):
        patch_id = _plain(df[id_column].iat[row_idx])
        label = Label.parse(df[label_column].iat[row_idx]) if label_column else Label.UNLABELED
        meta = {c: _plain(df[c].iat[row_idx]) for c in meta_columns}
        patches.append(Patch.from_values(patch_id, values[row_idx], names=feature_columns, label=label, **meta))
    logger.info("Loaded %d patches with %d features from %s", len(patches), len(feature_columns), path)
    return patches


def load_patches_json(path: str) -> List[Patch]:
    """Read a JSON list of patch records (see ``PatchRecord``)."""
    with open(path, 'r', encoding='utf-8') as f:
        raw = json.load(f)
    if isinstance(raw, dict):
        raw = raw.get('patches', [])
    if not isinstance(raw, list):
        raise InvalidInput(f"Expected a list of patch records in {path}")
    patches = []
    for i, item in enumerate(raw):
        try:
            patches.append(PatchRecord.model_validate(item).to_patch())
        except ValidationError as e:
            raise InvalidInput(f"Invalid patch record #{i} in {path}: {e}") from e
    logger.info("Loaded %d patches from %s", len(patches), path)
    return patches


def write_scores(patches: Sequence[Patch], path: str) -> str:
    """Write id, label and decision value, most relevant first."""
    rows = [
        {
            'patch_id': p.patch_id,
            'label': p.label.name.lower(),
            'decision_value': p.distance,
            **p.meta,
        }
        for p in rank_archive(patches)
    ]
    out_dir = os.path.dirname(path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    pd.DataFrame(rows).to_csv(path, index=False)
    logger.info("Wrote %d scored patches to %s", len(rows), path)
    return path


__all__ = ['load_patches_csv', 'load_patches_json', 'write_scores']
