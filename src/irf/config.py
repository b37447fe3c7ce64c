"""Defaults and parameter / data validation.

Every public entry point resolves its arguments through these helpers before
any work is dispatched to the worker pool, so configuration and data problems
surface as ``ConfigurationError`` / ``DataError`` up front.
"""

import math

import numpy as np
from sklearn.utils.multiclass import type_of_target

from irf.errors import ConfigurationError, DataError

# ── Forest ───────────────────────────────────────────────────────────────────
DEFAULT_N_ESTIMATORS = 500
# Bound on tree depth when max_depth is None; nodes reaching it become leaves.
HARD_MAX_DEPTH = 128
CLASSIFICATION_MIN_LEAF = 1
REGRESSION_MIN_LEAF = 5

# ── Random intersection trees ────────────────────────────────────────────────
DEFAULT_RIT_DEPTH = 5
DEFAULT_RIT_BRANCH = 2
DEFAULT_RIT_N_TREES = 500

# ── Stability selection ──────────────────────────────────────────────────────
DEFAULT_N_ITER = 1
DEFAULT_N_BOOTSTRAP = 30

TASKS = ("classification", "regression")


# ═════════════════════════════════════════════════════════════════════════════
# Parameter checks
# ═════════════════════════════════════════════════════════════════════════════


def check_positive_int(name: str, value) -> int:
    """Return ``value`` as int, raising ConfigurationError unless it is >= 1."""
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    if value < 1:
        raise ConfigurationError(f"{name} must be >= 1, got {value}")
    return int(value)


def resolve_mtry(mtry: int | None, n_features: int, task: str) -> int:
    """Number of candidate features per split (randomForest defaults)."""
    if mtry is None:
        if task == "classification":
            return max(int(math.floor(math.sqrt(n_features))), 1)
        return max(n_features // 3, 1)
    mtry = check_positive_int("mtry", mtry)
    if mtry > n_features:
        raise ConfigurationError(
            f"mtry={mtry} exceeds the number of features ({n_features})"
        )
    return mtry


def resolve_min_samples_leaf(min_samples_leaf: int | None, task: str) -> int:
    if min_samples_leaf is None:
        if task == "classification":
            return CLASSIFICATION_MIN_LEAF
        return REGRESSION_MIN_LEAF
    return check_positive_int("min_samples_leaf", min_samples_leaf)


def resolve_max_depth(max_depth: int | None) -> int:
    if max_depth is None:
        return HARD_MAX_DEPTH
    return min(check_positive_int("max_depth", max_depth), HARD_MAX_DEPTH)


def check_feature_weight(feature_weight, n_features: int) -> np.ndarray:
    """Validate a feature weight vector and normalize it to probabilities.

    ``None`` means uniform weights. Weights must be finite, non-negative and
    not all zero, otherwise weighted feature sampling is undefined.
    """
    if feature_weight is None:
        return np.full(n_features, 1.0 / n_features)
    w = np.asarray(feature_weight, dtype=np.float64)
    if w.ndim != 1 or w.shape[0] != n_features:
        raise ConfigurationError(
            f"feature_weight must have length {n_features}, got shape {w.shape}"
        )
    if not np.all(np.isfinite(w)):
        raise ConfigurationError("feature_weight contains non-finite values")
    if np.any(w < 0):
        raise ConfigurationError("feature_weight contains negative values")
    total = w.sum()
    if total <= 0:
        raise ConfigurationError("feature_weight is all zero")
    return w / total


def check_sample_weight(weights, n_rows: int, name: str = "weights") -> np.ndarray:
    w = np.asarray(weights, dtype=np.float64).ravel()
    if w.shape[0] != n_rows:
        raise ConfigurationError(f"{name} must have length {n_rows}, got {w.shape[0]}")
    if not np.all(np.isfinite(w)) or np.any(w < 0):
        raise ConfigurationError(f"{name} must be finite and non-negative")
    return w


def base_seed(random_state: int | None) -> int:
    """Seed from which per-unit seeds ``base + index`` are derived."""
    if random_state is None:
        return int(np.random.SeedSequence().generate_state(1)[0])
    if isinstance(random_state, (int, np.integer)) and random_state >= 0:
        return int(random_state)
    raise ConfigurationError(
        f"random_state must be None or a non-negative integer, got {random_state!r}"
    )


def derive_seed(base: int, *keys: int) -> int:
    """Seed for one (stage, index) unit of a run seeded with ``base``."""
    return int(np.random.SeedSequence([base, *keys]).generate_state(1)[0])


# ═════════════════════════════════════════════════════════════════════════════
# Data checks
# ═════════════════════════════════════════════════════════════════════════════


def infer_task(y: np.ndarray, task: str | None = None) -> str:
    if task is not None:
        if task not in TASKS:
            raise ConfigurationError(f"task must be one of {TASKS}, got {task!r}")
        return task
    kind = type_of_target(y)
    if kind in ("binary", "multiclass"):
        return "classification"
    if kind in ("continuous",):
        return "regression"
    raise DataError(f"Unsupported target type: {kind}")


def check_training_data(X, y, task: str | None = None) -> tuple[np.ndarray, np.ndarray, str]:
    """Validate training data; returns float X, 1-D y and the resolved task."""
    X = np.asarray(X, dtype=np.float64)
    y = np.asarray(y)
    if X.ndim != 2:
        raise DataError(f"X must be 2-dimensional, got shape {X.shape}")
    if X.shape[0] == 0 or X.shape[1] == 0:
        raise DataError(f"Empty training set: X has shape {X.shape}")
    if y.ndim != 1:
        y = y.ravel()
    if y.shape[0] != X.shape[0]:
        raise DataError(
            f"X has {X.shape[0]} rows but y has {y.shape[0]} labels"
        )
    if not np.all(np.isfinite(X)):
        raise DataError("X contains NaN or infinite values")

    task = infer_task(y, task)
    if task == "classification":
        if len(np.unique(y)) < 2:
            raise DataError("Classification requires at least two classes in y")
    else:
        y = y.astype(np.float64)
        if not np.all(np.isfinite(y)):
            raise DataError("y contains NaN or infinite values")
    return X, y, task
