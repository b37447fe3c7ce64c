"""Random forest with weighted candidate-feature sampling.

Each tree is grown on its own bootstrap sample with its own random stream
(seed ``base_seed + tree_index``), so a fitted forest does not depend on the
number of workers or on the order in which trees finish. Feature importance is
the mean total impurity decrease per feature across trees; the normalized
version (summing to 1) is what the next reweighting iteration consumes.
"""

import time

import numpy as np
from joblib import Parallel, delayed
from loguru import logger
from sklearn.metrics import accuracy_score, explained_variance_score, roc_auc_score

from irf.config import (
    DEFAULT_N_ESTIMATORS,
    base_seed,
    check_feature_weight,
    check_positive_int,
    check_training_data,
    resolve_max_depth,
    resolve_min_samples_leaf,
    resolve_mtry,
)
from irf.errors import DataError
from irf.tree import DecisionTree, build_tree


def _grow_one(
    X: np.ndarray,
    target: np.ndarray,
    feature_p: np.ndarray,
    mtry: int,
    n_classes: int,
    min_samples_leaf: int,
    max_depth: int,
    max_thresholds: int | None,
    bootstrap: bool,
    seed: int,
) -> tuple[DecisionTree, np.ndarray]:
    """Grow a single tree; returns the tree and its in-bag counts."""
    rng = np.random.default_rng(seed)
    n_samples = X.shape[0]
    if bootstrap:
        sample = rng.integers(0, n_samples, size=n_samples)
    else:
        sample = np.arange(n_samples)
    tree = build_tree(
        X, target, sample, feature_p, mtry, rng,
        n_classes=n_classes,
        min_samples_leaf=min_samples_leaf,
        max_depth=max_depth,
        max_thresholds=max_thresholds,
    )
    inbag = np.bincount(sample, minlength=n_samples).astype(np.int32)
    return tree, inbag


class WeightedRandomForest:
    """Forest of ``DecisionTree`` grown with feature-weighted split sampling.

    Parameters mirror randomForest: ``mtry`` candidate features per split
    (default sqrt(p) for classification, p/3 for regression),
    ``min_samples_leaf`` (default 1 / 5) and an optional ``max_depth``.
    ``max_thresholds`` caps the number of cut points scanned per feature.
    """

    def __init__(
        self,
        n_estimators: int = DEFAULT_N_ESTIMATORS,
        mtry: int | None = None,
        max_depth: int | None = None,
        min_samples_leaf: int | None = None,
        max_thresholds: int | None = None,
        task: str | None = None,
        bootstrap: bool = True,
        random_state: int | None = None,
        n_jobs: int = 1,
    ) -> None:
        self.n_estimators = n_estimators
        self.mtry = mtry
        self.max_depth = max_depth
        self.min_samples_leaf = min_samples_leaf
        self.max_thresholds = max_thresholds
        self.task = task
        self.bootstrap = bootstrap
        self.random_state = random_state
        self.n_jobs = n_jobs

    # ── fitting ──────────────────────────────────────────────────────────────

    def fit(
        self,
        X,
        y,
        feature_weight=None,
        X_test=None,
        y_test=None,
    ) -> "WeightedRandomForest":
        """Grow the forest.

        ``feature_weight`` gives the (unnormalized) probability of drawing each
        feature as a split candidate; ``None`` is uniform. When ``X_test`` and
        ``y_test`` are given, held-out predictions and scores are stored too.
        """
        n_estimators = check_positive_int("n_estimators", self.n_estimators)
        X, y, task = check_training_data(X, y, self.task)
        n_samples, n_features = X.shape
        mtry = resolve_mtry(self.mtry, n_features, task)
        min_leaf = resolve_min_samples_leaf(self.min_samples_leaf, task)
        max_depth = resolve_max_depth(self.max_depth)
        max_thresholds = self.max_thresholds
        if max_thresholds is not None:
            max_thresholds = check_positive_int("max_thresholds", max_thresholds)
        feature_p = check_feature_weight(feature_weight, n_features)
        X_test, y_test = self._check_test(X_test, y_test, n_features)

        self.task_ = task
        self.n_features_ = n_features
        self.mtry_ = mtry
        if task == "classification":
            self.classes_, target = np.unique(y, return_inverse=True)
            self.n_classes_ = len(self.classes_)
        else:
            self.classes_ = None
            self.n_classes_ = 0
            target = y
        self.feature_weight_ = feature_p

        seed = base_seed(self.random_state)
        t0 = time.time()
        results = Parallel(n_jobs=self.n_jobs, prefer="threads")(
            delayed(_grow_one)(
                X, target, feature_p, mtry, self.n_classes_, min_leaf,
                max_depth, max_thresholds, self.bootstrap, seed + t,
            )
            for t in range(n_estimators)
        )
        self.estimators_ = [tree for tree, _ in results]
        self.inbag_ = np.vstack([inbag for _, inbag in results])

        total = np.zeros(n_features)
        for tree in self.estimators_:
            total += tree.feature_importance()
        self.importance_ = total / n_estimators
        norm = self.importance_.sum()
        self.feature_importances_ = self.importance_ / norm if norm > 0 else np.zeros(n_features)

        self._compute_oob(X, target)
        if X_test is not None:
            self._compute_test(X_test, y_test)
        else:
            self.test_tree_predictions_ = None
            self.test_prediction_ = None
            self.test_score_ = None
            self.test_auc_ = None

        logger.debug(
            f"Grew {n_estimators} trees (mtry={mtry}, n={n_samples}, p={n_features}) "
            f"in {time.time() - t0:.1f}s, oob={self.oob_score_:.4f}"
        )
        return self

    @staticmethod
    def _check_test(X_test, y_test, n_features: int):
        if X_test is None and y_test is None:
            return None, None
        if X_test is None or y_test is None:
            raise DataError("X_test and y_test must be given together")
        X_test = np.asarray(X_test, dtype=np.float64)
        y_test = np.asarray(y_test).ravel()
        if X_test.ndim != 2 or X_test.shape[1] != n_features:
            raise DataError(
                f"X_test must have {n_features} columns, got shape {X_test.shape}"
            )
        if X_test.shape[0] != y_test.shape[0]:
            raise DataError(
                f"X_test has {X_test.shape[0]} rows but y_test has {y_test.shape[0]}"
            )
        if X_test.shape[0] == 0:
            raise DataError("Empty held-out set")
        return X_test, y_test

    def _score(self, y_true, y_pred) -> float:
        if self.task_ == "classification":
            return float(accuracy_score(y_true, y_pred))
        return float(explained_variance_score(y_true, y_pred))

    def _compute_oob(self, X: np.ndarray, target: np.ndarray) -> None:
        n_samples = X.shape[0]
        counts = np.zeros(n_samples)
        if self.task_ == "classification":
            acc = np.zeros((n_samples, self.n_classes_))
        else:
            acc = np.zeros(n_samples)
        for tree, inbag in zip(self.estimators_, self.inbag_):
            oob = np.flatnonzero(inbag == 0)
            if oob.shape[0] == 0:
                continue
            pred = tree.predict(X[oob])
            if self.task_ == "classification":
                acc[oob, pred] += 1.0
            else:
                acc[oob] += pred
            counts[oob] += 1.0

        has_oob = counts > 0
        self.oob_mask_ = has_oob
        if not np.any(has_oob):
            self.oob_prediction_ = None
            self.oob_score_ = float("nan")
            return
        if self.task_ == "classification":
            pred_idx = np.argmax(acc, axis=1)
            self.oob_prediction_ = self.classes_[pred_idx]
            self.oob_score_ = self._score(target[has_oob], pred_idx[has_oob])
        else:
            mean = np.divide(acc, counts, out=np.full(n_samples, np.nan), where=has_oob)
            self.oob_prediction_ = mean
            self.oob_score_ = self._score(target[has_oob], mean[has_oob])

    def _compute_test(self, X_test: np.ndarray, y_test: np.ndarray) -> None:
        per_tree = np.vstack([tree.predict(X_test) for tree in self.estimators_])
        if self.task_ == "classification":
            self.test_tree_predictions_ = self.classes_[per_tree]
            votes = self._votes(per_tree)
            self.test_prediction_ = self.classes_[np.argmax(votes, axis=1)]
            self.test_auc_ = None
            if self.n_classes_ == 2:
                positive = y_test == self.classes_[1]
                if 0 < positive.sum() < positive.shape[0]:
                    self.test_auc_ = float(roc_auc_score(positive, votes[:, 1] / len(self.estimators_)))
        else:
            self.test_tree_predictions_ = per_tree
            self.test_prediction_ = per_tree.mean(axis=0)
            self.test_auc_ = None
        self.test_score_ = self._score(y_test, self.test_prediction_)

    def _votes(self, per_tree: np.ndarray) -> np.ndarray:
        votes = np.zeros((per_tree.shape[1], self.n_classes_))
        rows = np.arange(per_tree.shape[1])
        for pred in per_tree:
            votes[rows, pred] += 1.0
        return votes

    # ── prediction ───────────────────────────────────────────────────────────

    def apply(self, X) -> np.ndarray:
        """Leaf ids, shape ``(n_samples, n_estimators)``."""
        X = np.asarray(X, dtype=np.float64)
        return np.column_stack([tree.apply(X) for tree in self.estimators_])

    def predict_proba(self, X) -> np.ndarray:
        """Fraction of tree votes per class (classification only)."""
        X = np.asarray(X, dtype=np.float64)
        per_tree = np.vstack([tree.predict(X) for tree in self.estimators_])
        return self._votes(per_tree) / len(self.estimators_)

    def predict(self, X) -> np.ndarray:
        X = np.asarray(X, dtype=np.float64)
        if self.task_ == "classification":
            return self.classes_[np.argmax(self.predict_proba(X), axis=1)]
        return np.mean([tree.predict(X) for tree in self.estimators_], axis=0)

    def score(self, X, y) -> float:
        """Accuracy (classification) or explained variance (regression)."""
        return self._score(np.asarray(y).ravel(), self.predict(X))

    @property
    def heldout_score_(self) -> float:
        """Test score when a held-out set was given, else the OOB score."""
        if self.test_score_ is not None:
            return self.test_score_
        return self.oob_score_


def grow_forest(
    X,
    y,
    X_test=None,
    y_test=None,
    n_estimators: int = DEFAULT_N_ESTIMATORS,
    mtry: int | None = None,
    feature_weight=None,
    max_depth: int | None = None,
    min_samples_leaf: int | None = None,
    max_thresholds: int | None = None,
    task: str | None = None,
    random_state: int | None = None,
    n_jobs: int = 1,
) -> WeightedRandomForest:
    """Grow a feature-weighted forest; see ``WeightedRandomForest.fit``."""
    forest = WeightedRandomForest(
        n_estimators=n_estimators,
        mtry=mtry,
        max_depth=max_depth,
        min_samples_leaf=min_samples_leaf,
        max_thresholds=max_thresholds,
        task=task,
        random_state=random_state,
        n_jobs=n_jobs,
    )
    return forest.fit(X, y, feature_weight=feature_weight, X_test=X_test, y_test=y_test)
