import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import joblib
import numpy as np
from sklearn.metrics.pairwise import rbf_kernel
from sklearn.model_selection import GridSearchCV, StratifiedKFold
from sklearn.preprocessing import MinMaxScaler
from sklearn.svm import SVC

from patch_retrieval import config
from patch_retrieval.data.patch import Label, Patch, TrainingSet, feature_matrix
from patch_retrieval.errors import ClassifierFailure, InvalidInput, InvalidTrainingData, ModelNotTrained

logger = logging.getLogger(__name__)

MODEL_FORMAT_VERSION = '1.0'


def _log2_grid(start: int, stop: int, step: int) -> List[float]:
    end = stop + (1 if step > 0 else -1)
    return [float(2.0 ** e) for e in range(start, end, step)]


class PatchClassifier:
    """Binary RBF-SVM over patch feature vectors.

    Features are min/max scaled to ``[lower, upper]`` using the training set,
    hyperparameters are picked by a stratified k-fold grid search, and the
    final model is refit on the whole training set. Positive decision values
    point towards ``Label.RELEVANT``.
    """

    def __init__(self, num_folds: int = config.NUM_FOLDS, lower: float = config.SCALE_LOWER,
                 upper: float = config.SCALE_UPPER, c_range: Optional[Sequence[float]] = None,
                 gamma_range: Optional[Sequence[float]] = None,
                 threshold: float = config.RELEVANCE_THRESHOLD, n_jobs: int = config.CV_N_JOBS,
                 random_state: int = config.CV_RANDOM_STATE):
        if lower >= upper:
            raise ValueError(f"Scaling range must be increasing, got [{lower}, {upper}]")
        self.num_folds = num_folds
        self.lower = lower
        self.upper = upper
        self.c_range = list(c_range) if c_range is not None else _log2_grid(*config.C_LOG2_RANGE)
        self.gamma_range = list(gamma_range) if gamma_range is not None else _log2_grid(*config.GAMMA_LOG2_RANGE)
        self.threshold = threshold
        self.n_jobs = n_jobs
        self.random_state = random_state

        self.scaler: Optional[MinMaxScaler] = None
        self.svm: Optional[SVC] = None
        self.params: Dict[str, float] = {}
        self.cv_score: Optional[float] = None

    @property
    def is_trained(self) -> bool:
        return self.svm is not None and self.scaler is not None

    @property
    def gamma(self) -> float:
        self._require_model()
        return float(self.params['gamma'])

    def _default_params(self, n_features: int) -> Dict[str, float]:
        # libsvm defaults: C = 1, gamma = 1 / num_features
        return {'C': 1.0, 'gamma': 1.0 / max(n_features, 1)}

    def _search_params(self, X: np.ndarray, y: np.ndarray) -> Tuple[Dict[str, float], Optional[float]]:
        _, counts = np.unique(y, return_counts=True)
        n_splits = min(self.num_folds, int(counts.min()))
        if n_splits < 2:
            logger.warning(
                f"Smallest class has {int(counts.min())} sample(s); skipping cross-validation and using default hyperparameters"
            )
            return self._default_params(X.shape[1]), None

        cv = StratifiedKFold(n_splits=n_splits, shuffle=True, random_state=self.random_state)
        search = GridSearchCV(
            SVC(kernel='rbf'),
            param_grid={'C': self.c_range, 'gamma': self.gamma_range},
            cv=cv,
            scoring='accuracy',
            n_jobs=self.n_jobs,
            refit=False,
            error_score='raise',
        )
        search.fit(X, y)
        params = {'C': float(search.best_params_['C']), 'gamma': float(search.best_params_['gamma'])}
        logger.info(f"{n_splits}-fold CV picked C={params['C']:g}, gamma={params['gamma']:g} (accuracy {search.best_score_:.3f})")
        return params, float(search.best_score_)

    def train(self, training_set: TrainingSet) -> None:
        """Scale, cross-validate and fit. The previous model survives any failure."""
        counts = training_set.label_counts()
        if len(counts) < 2:
            raise InvalidTrainingData(
                f"Training set needs relevant and irrelevant patches, got {[l.name for l in counts]}"
            )
        X = training_set.matrix()
        y = training_set.targets()
        if not np.all(np.isfinite(X)):
            raise InvalidTrainingData("Training set contains non-finite feature values")

        try:
            scaler = MinMaxScaler(feature_range=(self.lower, self.upper))
            X_scaled = scaler.fit_transform(X)
            params, cv_score = self._search_params(X_scaled, y)
            svm = SVC(kernel='rbf', C=params['C'], gamma=params['gamma'])
            svm.fit(X_scaled, y)
        except ValueError as e:
            logger.error(f"SVM training failed: {e}")
            raise ClassifierFailure(f"SVM training failed: {e}") from e

        self.scaler = scaler
        self.svm = svm
        self.params = params
        self.cv_score = cv_score
        logger.info(
            f"Trained SVM on {len(training_set)} patches "
            f"({counts.get(Label.RELEVANT, 0)} relevant, {counts.get(Label.IRRELEVANT, 0)} irrelevant), "
            f"{int(svm.n_support_.sum())} support vectors"
        )

    def _require_model(self):
        if not self.is_trained:
            raise ModelNotTrained("Classifier has not been trained or loaded")

    def _scale(self, X: np.ndarray) -> np.ndarray:
        try:
            return self.scaler.transform(X)
        except ValueError as e:
            raise ClassifierFailure(f"Cannot scale feature matrix: {e}") from e

    def decision_values(self, patches: Sequence[Patch]) -> np.ndarray:
        """Signed decision values for each patch, in input order."""
        self._require_model()
        if len(patches) == 0:
            return np.empty(0, dtype=float)
        raw = feature_matrix(patches)
        if not np.all(np.isfinite(raw)):
            raise InvalidInput("Cannot classify patches with non-finite features")
        X = self._scale(raw)
        try:
            values = np.asarray(self.svm.decision_function(X), dtype=float).reshape(-1)
        except ValueError as e:
            raise ClassifierFailure(f"SVM scoring failed: {e}") from e
        if not np.all(np.isfinite(values)):
            raise ClassifierFailure("SVM produced non-finite decision values")
        return values

    def label_for(self, decision_value: float) -> Label:
        return Label.RELEVANT if decision_value >= self.threshold else Label.IRRELEVANT

    def classify(self, patch: Patch) -> Tuple[Label, float]:
        value = float(self.decision_values([patch])[0])
        return self.label_for(value), value

    def kernel(self, a: Sequence[Patch], b: Sequence[Patch]) -> np.ndarray:
        """RBF kernel matrix between two patch lists in the scaled training space."""
        self._require_model()
        if len(a) == 0 or len(b) == 0:
            return np.empty((len(a), len(b)), dtype=float)
        K = rbf_kernel(self._scale(feature_matrix(a)), self._scale(feature_matrix(b)), gamma=self.gamma)
        if not np.all(np.isfinite(K)):
            raise ClassifierFailure("Kernel evaluation produced non-finite values")
        return K

    def get_model(self) -> Dict[str, Any]:
        self._require_model()
        return {
            'scaler': self.scaler,
            'svm': self.svm,
            'params': dict(self.params),
            'meta': {
                'version': MODEL_FORMAT_VERSION,
                'serialization': 'joblib',
                'threshold': self.threshold,
                'cv_score': self.cv_score,
                'saved_at': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            },
        }

    def set_model(self, bundle: Dict[str, Any]) -> None:
        try:
            scaler, svm, params = bundle['scaler'], bundle['svm'], dict(bundle['params'])
        except (KeyError, TypeError) as e:
            raise ClassifierFailure(f"Invalid model bundle: {e}") from e
        meta = bundle.get('meta') or {}
        self.scaler = scaler
        self.svm = svm
        self.params = params
        self.cv_score = meta.get('cv_score')
        if meta.get('threshold') is not None:
            self.threshold = float(meta['threshold'])

    def save_model(self, filepath: str) -> None:
        joblib.dump(self.get_model(), filepath)
        logger.info(f"Saved patch classifier to {filepath}")

    def load_model(self, filepath: str) -> None:
        self.set_model(joblib.load(filepath))
        logger.info(f"Loaded patch classifier from {filepath}")


__all__ = ['PatchClassifier']
