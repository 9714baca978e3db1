import os
import sys

import numpy as np
import pytest

# Ensure the `src/` directory is on sys.path so we can import `patch_retrieval` package
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(PROJECT_ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from patch_retrieval.active_learning.loop import ActiveLearning  # noqa: E402
from patch_retrieval.data.patch import Label, Patch  # noqa: E402
from patch_retrieval.model.classifier import PatchClassifier  # noqa: E402

N_FEATURES = 4
FEATURE_NAMES = [f"band_{i}" for i in range(N_FEATURES)]


@pytest.fixture
def rng():
    return np.random.default_rng(7)


@pytest.fixture
def make_patch():
    def _make(patch_id, values, label=Label.UNLABELED):
        return Patch.from_values(patch_id, values, names=FEATURE_NAMES[:len(values)], label=label)
    return _make


@pytest.fixture
def fast_classifier():
    # small grid keeps the suite quick; the default grid is exercised once in test_classifier
    return PatchClassifier(c_range=[1.0, 10.0, 100.0], gamma_range=[0.1, 1.0, 10.0])


@pytest.fixture
def query_patches(rng, make_patch):
    return [make_patch(f"q{i}", rng.normal(0.0, 0.3, N_FEATURES), Label.RELEVANT) for i in range(5)]


@pytest.fixture
def background_patches(rng, make_patch):
    near = [make_patch(i, rng.normal(0.0, 0.6, N_FEATURES)) for i in range(30)]
    spread = [make_patch(30 + i, rng.uniform(-6.0, 6.0, N_FEATURES)) for i in range(70)]
    return near + spread


@pytest.fixture
def controller(fast_classifier):
    return ActiveLearning(classifier=fast_classifier)


@pytest.fixture
def ready_session(controller, query_patches, background_patches):
    controller.set_query_patches(query_patches)
    controller.set_random_patches(background_patches)
    return controller
