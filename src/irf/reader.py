"""Read a fitted forest into per-leaf decision paths and signatures.

Every (tree, leaf) reached by at least one row of the data becomes one row of
the reading. Its signature is a boolean row over ``2 * n_features`` columns:
column ``j`` flags "feature j went left" (``j-``) anywhere on the path and
column ``n_features + j`` flags "feature j went right" (``j+``).
"""

from typing import NamedTuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy import sparse

from irf.config import check_sample_weight
from irf.errors import DataError
from irf.forest import WeightedRandomForest
from irf.tree import LEFT, RIGHT, DecisionTree


def encode_path(path, n_features: int) -> np.ndarray:
    """Sorted signature columns of the (feature, direction) pairs on ``path``."""
    cols = {feat if sign == LEFT else n_features + feat for feat, sign in path}
    return np.array(sorted(cols), dtype=np.int64)


def _frozen(row: np.ndarray) -> np.ndarray:
    row = row.copy()
    row.setflags(write=False)
    return row


def decode_signature(cols, n_features: int) -> frozenset:
    """(feature, direction) pairs flagged by signature columns ``cols``."""
    return frozenset(
        (int(c), LEFT) if c < n_features else (int(c) - n_features, RIGHT)
        for c in cols
    )


class LeafRecord(NamedTuple):
    """One visited leaf: where it is, what it predicts and how we got there."""

    tree: int
    leaf: int
    prediction: object
    value: np.ndarray
    size: int
    weight: float
    depth: int
    path: tuple


class ForestReading:
    """Column-oriented collection of visited leaves and their signatures.

    Rows are ordered by tree id, then leaf id. ``values`` holds each leaf's
    fitted class distribution (in-bag class proportions) or mean response;
    ``weights`` is the signature weight, the leaf size unless per-sample
    weights were given to ``read_forest``.
    """

    def __init__(
        self,
        tree_ids: np.ndarray,
        leaf_ids: np.ndarray,
        sizes: np.ndarray,
        predictions: np.ndarray,
        values: np.ndarray,
        weights: np.ndarray,
        depths: np.ndarray,
        paths: list,
        signatures: sparse.csr_matrix,
        n_features: int,
    ) -> None:
        self.tree_ids = tree_ids
        self.leaf_ids = leaf_ids
        self.sizes = sizes
        self.predictions = predictions
        self.values = values
        self.weights = weights
        self.depths = depths
        self.paths = paths
        self.signatures = signatures
        self.n_features = n_features

    def __len__(self) -> int:
        return self.tree_ids.shape[0]

    def records(self):
        """Iterate over the rows as ``LeafRecord`` objects."""
        for i in range(len(self)):
            yield LeafRecord(
                tree=int(self.tree_ids[i]),
                leaf=int(self.leaf_ids[i]),
                prediction=self.predictions[i],
                value=_frozen(self.values[i]),
                size=int(self.sizes[i]),
                weight=float(self.weights[i]),
                depth=int(self.depths[i]),
                path=self.paths[i],
            )

    def subset(self, mask) -> "ForestReading":
        idx = np.flatnonzero(np.asarray(mask))
        return ForestReading(
            tree_ids=self.tree_ids[idx],
            leaf_ids=self.leaf_ids[idx],
            sizes=self.sizes[idx],
            predictions=self.predictions[idx],
            values=self.values[idx],
            weights=self.weights[idx],
            depths=self.depths[idx],
            paths=[self.paths[i] for i in idx],
            signatures=self.signatures[idx],
            n_features=self.n_features,
        )

    def leaf_class(self, target, class_cut: float | None = None) -> np.ndarray:
        """Boolean mask of leaves belonging to the class of interest.

        Without ``class_cut`` a leaf belongs to ``target`` when its predicted
        class equals it. With ``class_cut`` (regression readings) a leaf
        belongs when its predicted mean is above the cut.
        """
        if class_cut is not None:
            return self.predictions.astype(np.float64) > class_cut
        return self.predictions == target

    def split_by_class(self) -> dict:
        """Readings partitioned by predicted class label."""
        return {
            label: self.subset(self.predictions == label)
            for label in np.unique(self.predictions)
        }

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "tree": self.tree_ids,
            "leaf": self.leaf_ids,
            "prediction": self.predictions,
            "size": self.sizes,
            "weight": self.weights,
            "depth": self.depths,
            "path": [
                "_".join(f"{feat}{sign}" for feat, sign in path) for path in self.paths
            ],
        })


def _read_tree(tree: DecisionTree, tree_idx: int, X: np.ndarray, classes, sample_weight) -> dict:
    leaves = tree.apply(X)
    visited, inverse, sizes = np.unique(leaves, return_inverse=True, return_counts=True)
    if sample_weight is None:
        weights = sizes.astype(np.float64)
    else:
        weights = np.bincount(inverse.ravel(), weights=sample_weight, minlength=visited.shape[0])
    all_paths = tree.leaf_paths()
    paths = [all_paths[int(leaf)] for leaf in visited]

    indptr = [0]
    indices = []
    for path in paths:
        cols = encode_path(path, tree.n_features)
        indices.extend(cols.tolist())
        indptr.append(len(indices))
    sig = sparse.csr_matrix(
        (np.ones(len(indices), dtype=bool), np.array(indices, dtype=np.int64), np.array(indptr)),
        shape=(visited.shape[0], 2 * tree.n_features),
    )

    predictions = tree.leaf_prediction(visited)
    values = tree.value[visited]
    if classes is not None:
        predictions = classes[predictions]
        values = values / values.sum(axis=1, keepdims=True)
    return {
        "tree_ids": np.full(visited.shape[0], tree_idx, dtype=np.int64),
        "leaf_ids": visited.astype(np.int64),
        "sizes": sizes.astype(np.int64),
        "predictions": predictions,
        "values": values,
        "weights": weights,
        "depths": tree.depth[visited].astype(np.int64),
        "paths": paths,
        "signatures": sig,
    }


def read_forest(
    forest: WeightedRandomForest,
    X,
    n_jobs: int = 1,
    sample_weight=None,
) -> ForestReading:
    """Replay ``X`` through every tree of ``forest`` and collect visited leaves.

    ``sizes`` counts the rows of ``X`` reaching each leaf. ``weights``, the
    weight of each leaf's signature in interaction mining, equals ``sizes``
    unless ``sample_weight`` is given, in which case it sums the weights of
    the rows reaching the leaf.
    """
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2 or X.shape[1] != forest.n_features_:
        raise DataError(
            f"X must have {forest.n_features_} columns, got shape {X.shape}"
        )
    n_features = forest.n_features_
    if sample_weight is not None:
        sample_weight = check_sample_weight(sample_weight, X.shape[0], name="sample_weight")
    if X.shape[0] == 0:
        return ForestReading(
            tree_ids=np.zeros(0, dtype=np.int64),
            leaf_ids=np.zeros(0, dtype=np.int64),
            sizes=np.zeros(0, dtype=np.int64),
            predictions=np.zeros(0),
            values=np.zeros((0, max(forest.n_classes_, 1))),
            weights=np.zeros(0),
            depths=np.zeros(0, dtype=np.int64),
            paths=[],
            signatures=sparse.csr_matrix((0, 2 * n_features), dtype=bool),
            n_features=n_features,
        )

    parts = Parallel(n_jobs=n_jobs, prefer="threads")(
        delayed(_read_tree)(tree, t, X, forest.classes_, sample_weight)
        for t, tree in enumerate(forest.estimators_)
    )
    paths = []
    for part in parts:
        paths.extend(part["paths"])
    return ForestReading(
        tree_ids=np.concatenate([part["tree_ids"] for part in parts]),
        leaf_ids=np.concatenate([part["leaf_ids"] for part in parts]),
        sizes=np.concatenate([part["sizes"] for part in parts]),
        predictions=np.concatenate([part["predictions"] for part in parts]),
        values=np.vstack([part["values"] for part in parts]),
        weights=np.concatenate([part["weights"] for part in parts]),
        depths=np.concatenate([part["depths"] for part in parts]),
        paths=paths,
        signatures=sparse.vstack([part["signatures"] for part in parts], format="csr"),
        n_features=n_features,
    )
