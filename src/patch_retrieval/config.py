import os
from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
MODEL_PATH = os.getenv("MODEL_PATH", "models/patch_classifier.joblib")

# Active learning
NUM_INITIAL_ITERATIONS = int(os.getenv("NUM_INITIAL_ITERATIONS", "3"))
NUM_BOOTSTRAP_IRRELEVANT = int(os.getenv("NUM_BOOTSTRAP_IRRELEVANT", "10"))
UNCERTAINTY_MULTIPLIER = int(os.getenv("UNCERTAINTY_MULTIPLIER", "4"))  # q = multiplier * h
MARGIN_WIDTH = float(os.getenv("MARGIN_WIDTH", "1.0"))

# Kernel k-means
MAX_ITERATIONS_KMEANS = int(os.getenv("MAX_ITERATIONS_KMEANS", "10"))

# SVM
NUM_FOLDS = int(os.getenv("NUM_FOLDS", "5"))
SCALE_LOWER = float(os.getenv("SCALE_LOWER", "0.0"))
SCALE_UPPER = float(os.getenv("SCALE_UPPER", "1.0"))
RELEVANCE_THRESHOLD = float(os.getenv("RELEVANCE_THRESHOLD", "1.0"))
CV_N_JOBS = int(os.getenv("CV_N_JOBS", "1"))
CV_RANDOM_STATE = int(os.getenv("CV_RANDOM_STATE", "42"))

# libsvm grid.py defaults, as log2 exponents (start, stop inclusive, step)
C_LOG2_RANGE = (-5, 15, 2)
GAMMA_LOG2_RANGE = (3, -15, -2)
