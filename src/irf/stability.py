"""Iterative reweighting and bootstrap stability selection of interactions.

The pipeline:

1. Iterations. Grow a forest with uniform feature weights, then regrow it
   ``n_iter - 1`` times, each time sampling split candidates in proportion to
   the normalized importance of the previous forest.
2. Selection. Keep the last iteration, or with ``select_iter`` the one with
   the best held-out score (test set when given, else out-of-bag).
3. Bootstrap. For each of ``n_bootstrap`` resamples, grow a forest with the
   selected iteration's weights, read it on the resample, mine the
   target-class leaf signatures with random intersection trees and score every
   candidate on that forest.
4. Aggregate the per-replicate scores into the stability table.

Replicates that fail (``PartialFailure`` or ``DataError``, e.g. a resample
holding one class) are logged and left out of every denominator.
"""

import time

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from loguru import logger
from scipy import sparse

from irf.config import (
    DEFAULT_N_BOOTSTRAP,
    DEFAULT_N_ESTIMATORS,
    DEFAULT_N_ITER,
    DEFAULT_RIT_BRANCH,
    DEFAULT_RIT_DEPTH,
    DEFAULT_RIT_N_TREES,
    base_seed,
    check_feature_weight,
    check_positive_int,
    check_sample_weight,
    check_training_data,
    derive_seed,
)
from irf.errors import ConfigurationError, DataError, PartialFailure
from irf.forest import WeightedRandomForest
from irf.interactions import TABLE_COLUMNS, aggregate_replicates, score_interactions
from irf.reader import read_forest
from irf.rit import random_intersection_trees

# Seed streams, combined with the unit index through derive_seed.
_ITERATION, _RESAMPLE, _REPLICATE_FOREST, _REPLICATE_RIT = range(4)

# Class label reported for "above class_cut" leaves of a regression forest.
ABOVE_CUT = 1


def _scalar(label):
    return label.item() if isinstance(label, np.generic) else label


class IterativeRandomForest:
    """Iteratively reweighted random forest with stable interaction search.

    Forest parameters (``n_estimators``, ``mtry``, ``max_depth``,
    ``min_samples_leaf``, ``max_thresholds``, ``task``) are passed to every
    ``WeightedRandomForest`` grown. ``class_id`` selects the class whose leaves
    are mined (default: the second class for binary targets, every class in
    turn otherwise); regression leaves are split at ``class_cut`` (default:
    median of ``y``). ``keep_impvar_quantile`` drops features whose importance
    falls below that quantile from the mined signatures. ``resample`` replaces
    the plain bootstrap: ``resample(y, rng, replicate) -> row indices``.
    """

    def __init__(
        self,
        n_estimators: int = DEFAULT_N_ESTIMATORS,
        mtry: int | None = None,
        max_depth: int | None = None,
        min_samples_leaf: int | None = None,
        max_thresholds: int | None = None,
        task: str | None = None,
        n_iter: int = DEFAULT_N_ITER,
        n_bootstrap: int = DEFAULT_N_BOOTSTRAP,
        select_iter: bool = False,
        rit_depth: int = DEFAULT_RIT_DEPTH,
        rit_branch: int = DEFAULT_RIT_BRANCH,
        rit_n_trees: int = DEFAULT_RIT_N_TREES,
        rit_noisy_split: bool = False,
        class_id=None,
        class_cut: float | None = None,
        keep_impvar_quantile: float | None = None,
        resample=None,
        random_state: int | None = None,
        n_jobs: int = 1,
        stop_event=None,
    ) -> None:
        self.n_estimators = n_estimators
        self.mtry = mtry
        self.max_depth = max_depth
        self.min_samples_leaf = min_samples_leaf
        self.max_thresholds = max_thresholds
        self.task = task
        self.n_iter = n_iter
        self.n_bootstrap = n_bootstrap
        self.select_iter = select_iter
        self.rit_depth = rit_depth
        self.rit_branch = rit_branch
        self.rit_n_trees = rit_n_trees
        self.rit_noisy_split = rit_noisy_split
        self.class_id = class_id
        self.class_cut = class_cut
        self.keep_impvar_quantile = keep_impvar_quantile
        self.resample = resample
        self.random_state = random_state
        self.n_jobs = n_jobs
        self.stop_event = stop_event

    # ── validation ───────────────────────────────────────────────────────────

    def _check_params(self, n_features: int, feature_names) -> None:
        check_positive_int("n_estimators", self.n_estimators)
        check_positive_int("n_iter", self.n_iter)
        check_positive_int("n_bootstrap", self.n_bootstrap)
        check_positive_int("rit_depth", self.rit_depth)
        check_positive_int("rit_branch", self.rit_branch)
        check_positive_int("rit_n_trees", self.rit_n_trees)
        q = self.keep_impvar_quantile
        if q is not None and not 0.0 <= q < 1.0:
            raise ConfigurationError(f"keep_impvar_quantile must be in [0, 1), got {q}")
        if self.resample is not None and not callable(self.resample):
            raise ConfigurationError("resample must be callable")
        if feature_names is not None and len(feature_names) != n_features:
            raise ConfigurationError(
                f"feature_names has {len(feature_names)} entries for {n_features} features"
            )

    def _targets(self, y: np.ndarray, task: str) -> tuple[list, float | None]:
        """Class labels to mine and the regression cut (None for classification)."""
        if task == "regression":
            if self.class_id is not None:
                raise ConfigurationError("class_id only applies to classification")
            cut = float(np.median(y)) if self.class_cut is None else float(self.class_cut)
            return [ABOVE_CUT], cut
        if self.class_cut is not None:
            raise ConfigurationError("class_cut only applies to regression")
        classes = np.unique(y)
        if self.class_id is not None:
            if self.class_id not in classes:
                raise ConfigurationError(f"class_id {self.class_id!r} not found in y")
            return [self.class_id], None
        if len(classes) == 2:
            return [classes[1]], None
        return list(classes), None

    def _stopped(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()

    def _forest(self, seed: int, n_jobs: int) -> WeightedRandomForest:
        return WeightedRandomForest(
            n_estimators=self.n_estimators,
            mtry=self.mtry,
            max_depth=self.max_depth,
            min_samples_leaf=self.min_samples_leaf,
            max_thresholds=self.max_thresholds,
            task=self.task_,
            random_state=seed,
            n_jobs=n_jobs,
        )

    # ── fitting ──────────────────────────────────────────────────────────────

    def fit(
        self,
        X,
        y,
        X_test=None,
        y_test=None,
        feature_names=None,
        sample_weight=None,
    ) -> "IterativeRandomForest":
        """Run iterations, selection and the bootstrap stage.

        ``sample_weight`` replaces leaf size as the signature weight: each
        leaf is weighted by the summed weights of the resampled rows in it.
        """
        X, y, task = check_training_data(X, y, self.task)
        n_features = X.shape[1]
        self._check_params(n_features, feature_names)
        if sample_weight is not None:
            sample_weight = check_sample_weight(sample_weight, X.shape[0], name="sample_weight")
            if sample_weight.sum() <= 0:
                raise ConfigurationError("sample_weight is all zero")
        self._sample_weight = sample_weight
        targets, cut = self._targets(y, task)
        # Held-out data is checked before the first forest is grown.
        WeightedRandomForest._check_test(X_test, y_test, n_features)
        self.task_ = task
        self.n_features_ = n_features
        self.feature_names_ = list(feature_names) if feature_names is not None else None
        self.class_cut_ = cut
        self.targets_ = [_scalar(t) for t in targets]
        self._seed = base_seed(self.random_state)

        self.forests_: list[WeightedRandomForest] = []
        self.history_: list[dict] = []
        self.stopped_early_ = False
        self.forest_ = None
        self.selected_iteration_ = None
        self.n_replicates_ok_ = 0
        self.n_replicates_failed_ = 0
        self.interactions_ = pd.DataFrame(columns=TABLE_COLUMNS)

        self._iterate(X, y, X_test, y_test)
        if self.stopped_early_:
            return self
        self._select()
        if self._stopped():
            logger.warning("Stop requested before the bootstrap stage")
            self.stopped_early_ = True
            return self
        self._bootstrap(X, y)
        return self

    def _iterate(self, X, y, X_test, y_test) -> None:
        weight = check_feature_weight(None, self.n_features_)
        for it in range(self.n_iter):
            if self._stopped():
                logger.warning(f"Stop requested after {it} iteration(s)")
                self.stopped_early_ = True
                return
            t0 = time.time()
            forest = self._forest(derive_seed(self._seed, _ITERATION, it), self.n_jobs)
            forest.fit(X, y, feature_weight=weight, X_test=X_test, y_test=y_test)
            weight.setflags(write=False)
            importance = forest.feature_importances_.copy()
            importance.setflags(write=False)
            self.forests_.append(forest)
            self.history_.append({
                "iteration": it + 1,
                "feature_weight": weight,
                "importance": importance,
                "score": forest.heldout_score_,
            })
            logger.info(
                f"Iteration {it + 1}/{self.n_iter}: score={forest.heldout_score_:.4f} "
                f"({time.time() - t0:.1f}s)"
            )
            if importance.sum() > 0:
                weight = importance.copy()
            else:
                logger.warning(
                    f"Iteration {it + 1} produced no impurity decrease; keeping its weights"
                )
                weight = weight.copy()

    def _select(self) -> None:
        if self.select_iter:
            scores = np.array([h["score"] for h in self.history_], dtype=np.float64)
            scores = np.where(np.isnan(scores), -np.inf, scores)
            self.selected_iteration_ = int(np.argmax(scores)) + 1
        else:
            self.selected_iteration_ = len(self.history_)
        self.forest_ = self.forests_[self.selected_iteration_ - 1]
        logger.info(f"Selected iteration {self.selected_iteration_}")

    # ── bootstrap replicates ─────────────────────────────────────────────────

    def _resample_rows(self, y: np.ndarray, r: int) -> np.ndarray:
        rng = np.random.default_rng(derive_seed(self._seed, _RESAMPLE, r))
        n = y.shape[0]
        if self.resample is None:
            return rng.integers(0, n, size=n)
        idx = np.asarray(self.resample(y, rng, r))
        if idx.ndim != 1 or idx.shape[0] == 0:
            raise DataError(f"Replicate {r}: resample returned no rows")
        if not np.issubdtype(idx.dtype, np.integer) or idx.min() < 0 or idx.max() >= n:
            raise DataError(f"Replicate {r}: resample returned invalid row indices")
        return idx

    def _replicate(self, X: np.ndarray, y: np.ndarray, weight: np.ndarray, r: int, n_jobs: int) -> dict:
        """Scores of every candidate mined on replicate ``r``."""
        idx = self._resample_rows(y, r)
        X_b, y_b = X[idx], y[idx]
        forest = self._forest(derive_seed(self._seed, _REPLICATE_FOREST, r), n_jobs)
        forest.fit(X_b, y_b, feature_weight=weight)
        row_weight = None if self._sample_weight is None else self._sample_weight[idx]
        reading = read_forest(forest, X_b, n_jobs=n_jobs, sample_weight=row_weight)

        signatures = reading.signatures
        if self.keep_impvar_quantile is not None:
            imp = forest.importance_
            keep = imp >= np.quantile(imp, self.keep_impvar_quantile)
            keep_cols = np.concatenate([keep, keep])
            signatures = sparse.csr_matrix(signatures.multiply(keep_cols[np.newaxis, :]), dtype=bool)
            signatures.eliminate_zeros()

        result: dict = {}
        n_target_leaves = 0
        n_weighted = 0
        for k, target in enumerate(self.targets_):
            in_class = reading.leaf_class(target, self.class_cut_)
            n_target_leaves += int(in_class.sum())
            if not np.any(in_class) or reading.weights[in_class].sum() <= 0:
                continue
            n_weighted += 1
            counts = random_intersection_trees(
                signatures[in_class],
                reading.weights[in_class],
                depth=self.rit_depth,
                branch=self.rit_branch,
                n_trees=self.rit_n_trees,
                noisy_split=self.rit_noisy_split,
                random_state=derive_seed(self._seed, _REPLICATE_RIT, r, k),
                n_jobs=n_jobs,
            )
            scores = score_interactions(counts.keys(), signatures, reading.weights, in_class)
            for cols, score in scores.items():
                result[(target, cols)] = score
        if n_target_leaves == 0:
            raise PartialFailure(f"Replicate {r}: no leaf predicts a target class")
        if n_weighted == 0:
            raise PartialFailure(f"Replicate {r}: target-class leaves carry zero weight")
        logger.debug(f"Replicate {r}: {len(reading)} leaves, {len(result)} candidates")
        return result

    def _run_replicate(self, X, y, weight, r: int, n_jobs: int) -> dict | None:
        try:
            return self._replicate(X, y, weight, r, n_jobs)
        except (PartialFailure, DataError) as exc:
            logger.warning(f"Skipping bootstrap replicate {r}: {exc}")
            return None

    def _bootstrap(self, X: np.ndarray, y: np.ndarray) -> None:
        weight = self.history_[self.selected_iteration_ - 1]["feature_weight"]
        # Replicates run in parallel; a lone replicate parallelizes inside.
        outer_jobs = self.n_jobs if self.n_bootstrap > 1 else 1
        inner_jobs = 1 if self.n_bootstrap > 1 else self.n_jobs
        t0 = time.time()
        logger.info(f"Running {self.n_bootstrap} bootstrap replicates")
        results = Parallel(n_jobs=outer_jobs, prefer="threads")(
            delayed(self._run_replicate)(X, y, weight, r, inner_jobs)
            for r in range(self.n_bootstrap)
        )
        ok = [res for res in results if res is not None]
        self.n_replicates_ok_ = len(ok)
        self.n_replicates_failed_ = len(results) - len(ok)
        if not ok:
            raise PartialFailure(f"All {self.n_bootstrap} bootstrap replicates failed")
        self.interactions_ = aggregate_replicates(ok, self.n_features_, self.feature_names_)
        logger.success(
            f"{len(self.interactions_)} interactions from {len(ok)}/{self.n_bootstrap} "
            f"replicates in {time.time() - t0:.1f}s"
        )


def iterative_rf(
    X,
    y,
    X_test=None,
    y_test=None,
    feature_names=None,
    sample_weight=None,
    **params,
) -> dict:
    """Run the full pipeline; ``params`` are ``IterativeRandomForest`` arguments.

    Returns ``{"forest", "interactions", "selected_iteration", "history"}``.
    """
    model = IterativeRandomForest(**params)
    model.fit(
        X, y, X_test=X_test, y_test=y_test,
        feature_names=feature_names, sample_weight=sample_weight,
    )
    return {
        "forest": model.forest_,
        "interactions": model.interactions_,
        "selected_iteration": model.selected_iteration_,
        "history": model.history_,
    }
