"""
Run a simulated active learning session where a ground-truth column stands in for the user.

Usage (from project root):
  python scripts/run_session.py --query data/query.csv --archive data/archive.csv --truth is_relevant --rounds 5
"""
import os
import sys
import json
import argparse
import logging

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(PROJECT_ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

try:
    from patch_retrieval import config
    from patch_retrieval.active_learning.loop import ActiveLearning
    from patch_retrieval.data.loader import load_patches_csv, write_scores
    from patch_retrieval.data.patch import Label
    from patch_retrieval.utils.evaluation import retrieval_report
except ModuleNotFoundError as e:
    raise ModuleNotFoundError(
        "Could not import patch_retrieval from src/. Please run from project root or ensure 'src' is on PYTHONPATH."
    ) from e

logger = logging.getLogger("run_session")


def load_session_inputs(query_path, archive_path, truth_column, id_column='patch_id'):
    """Read query and archive CSVs with the truth column kept out of the features.

    Returns (query patches labelled relevant, archive patches, truth by id).
    """
    query = load_patches_csv(query_path, id_column=id_column, meta_columns=[truth_column])
    for patch in query:
        patch.label = Label.RELEVANT
    archive = load_patches_csv(archive_path, id_column=id_column, meta_columns=[truth_column])
    truth = {p.patch_id: Label.parse(p.meta.get(truth_column)) for p in archive}
    return query, archive, truth


def main():
    logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    parser = argparse.ArgumentParser(description="Simulated active learning session over a patch archive")
    parser.add_argument('--query', required=True, help='CSV of query patches')
    parser.add_argument('--archive', required=True, help='CSV of background patches')
    parser.add_argument('--truth', required=True, help='Archive column holding the ground-truth relevance')
    parser.add_argument('--id_column', default='patch_id')
    parser.add_argument('--rounds', type=int, default=5)
    parser.add_argument('--batch', type=int, default=5, help='Patches labelled per round')
    parser.add_argument('--model_out', default=config.MODEL_PATH)
    parser.add_argument('--scores_out', default=None, help='Optional CSV for the final archive ranking')
    args = parser.parse_args()

    query, archive, truth = load_session_inputs(args.query, args.archive, args.truth, args.id_column)
    relevant_ids = [pid for pid, lbl in truth.items() if lbl is Label.RELEVANT]
    # scoring relabels patches in place, so rank copies of the archive
    scoring_set = load_patches_csv(args.archive, id_column=args.id_column, meta_columns=[args.truth])

    al = ActiveLearning()
    al.set_query_patches(query)
    al.set_random_patches(archive)

    history = []
    for round_idx in range(args.rounds):
        batch = al.get_most_ambiguous_patches(args.batch)
        if not batch:
            logger.info("Candidate pool exhausted after %d rounds", round_idx)
            break
        for patch in batch:
            patch.label = truth.get(patch.patch_id, Label.IRRELEVANT)
        state = al.train(batch)

        al.classify(scoring_set)
        report = retrieval_report(scoring_set, relevant_ids)
        report.update({
            'iteration': state.iteration,
            'training_size': len(al.training_set),
            'pool_size': len(al.candidate_pool),
        })
        history.append(report)
        logger.info(json.dumps(report))

    model_dir = os.path.dirname(args.model_out)
    if model_dir:
        os.makedirs(model_dir, exist_ok=True)
    al.save_model(args.model_out)
    if args.scores_out:
        write_scores(scoring_set, args.scores_out)
    print(json.dumps(history, indent=2))


if __name__ == "__main__":
    main()
