"""
Score a patch archive CSV with a saved classifier and write the ranking.

The CSV must carry a patch id column and the same feature columns, in the same
order, as the patches the model was trained on.
"""
import os
import sys
import argparse
import logging

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(PROJECT_ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from patch_retrieval import config  # noqa: E402
from patch_retrieval.data.loader import load_patches_csv, write_scores  # noqa: E402
from patch_retrieval.data.patch import Label  # noqa: E402
from patch_retrieval.model.classifier import PatchClassifier  # noqa: E402

logger = logging.getLogger("score_archive")


def score(csv_path: str, model_path: str, out_path: str, id_column: str = 'patch_id') -> str:
    if not os.path.exists(model_path):
        raise FileNotFoundError(model_path)
    classifier = PatchClassifier()
    classifier.load_model(model_path)

    patches = load_patches_csv(csv_path, id_column=id_column)
    valid = [p for p in patches if not p.has_nan()]
    if len(valid) != len(patches):
        logger.warning("Skipping %d patches with invalid features", len(patches) - len(valid))
    values = classifier.decision_values(valid)
    for patch, value in zip(valid, values):
        patch.distance = float(value)
        patch.label = classifier.label_for(float(value))
    relevant = sum(1 for p in valid if p.label is Label.RELEVANT)
    logger.info("%d of %d patches classified relevant", relevant, len(valid))
    return write_scores(valid, out_path)


if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    ap = argparse.ArgumentParser()
    ap.add_argument("--archive", required=True)
    ap.add_argument("--model", default=config.MODEL_PATH)
    ap.add_argument("--out", default=os.path.join("data", "scores.csv"))
    ap.add_argument("--id_column", default="patch_id")
    args = ap.parse_args()
    print(score(args.archive, args.model, args.out, args.id_column))
