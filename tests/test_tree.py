"""Tests for tree growth and traversal."""

import numpy as np
import pytest

from irf.config import HARD_MAX_DEPTH, resolve_max_depth
from irf.tree import LEFT, RIGHT, TREE_LEAF, build_tree


def _grow(X, y, seed=0, feature_p=None, sample=None, **kwargs):
    rng = np.random.default_rng(seed)
    if feature_p is None:
        feature_p = np.full(X.shape[1], 1.0 / X.shape[1])
    if sample is None:
        sample = rng.integers(0, X.shape[0], size=X.shape[0])
    tree = build_tree(X, y, sample, feature_p, mtry=2, rng=rng, n_classes=2, **kwargs)
    return tree, sample


class TestBuildTree:
    """Tests for `build_tree`: stack-based growth on a bootstrap sample."""

    def test_respects_max_depth(self, and_data) -> None:
        """No decision path is longer than `max_depth`."""
        X, y = and_data
        tree, _ = _grow(X, y, max_depth=3)
        assert tree.get_depth() <= 3
        for leaf in tree.leaf_ids():
            assert len(tree.decision_path(leaf)) <= 3

    def test_leaf_samples_partition_bootstrap(self, and_data) -> None:
        """Leaf sample lists are disjoint and together equal the bootstrap sample."""
        X, y = and_data
        tree, sample = _grow(X, y)
        collected = np.concatenate([tree.leaf_samples_[leaf] for leaf in tree.leaf_ids()])
        np.testing.assert_array_equal(np.sort(collected), np.sort(sample))

    def test_fits_training_rows_without_bootstrap(self, and_data) -> None:
        """Unbounded trees on distinct rows grow to purity."""
        X, y = and_data
        tree, _ = _grow(X, y, sample=np.arange(X.shape[0]))
        np.testing.assert_array_equal(tree.predict(X), y)
        assert tree.n_depth_limited_ == 0

    def test_depth_limited_nodes_are_counted(self, and_data) -> None:
        X, y = and_data
        tree, _ = _grow(X, y, max_depth=1)
        assert tree.get_depth() == 1
        assert tree.n_depth_limited_ >= 1

    def test_zero_weight_features_never_split(self, and_data) -> None:
        X, y = and_data
        feature_p = np.array([0.0, 0.5, 0.5, 0.0, 0.0, 0.0])
        tree, _ = _grow(X, y, feature_p=feature_p)
        internal = tree.children_left != TREE_LEAF
        assert set(tree.feature[internal].tolist()) <= {1, 2}

    def test_same_seed_same_tree(self, and_data) -> None:
        X, y = and_data
        first, _ = _grow(X, y, seed=11)
        second, _ = _grow(X, y, seed=11)
        np.testing.assert_array_equal(first.feature, second.feature)
        np.testing.assert_array_equal(first.threshold, second.threshold)


class TestDecisionTree:
    """Tests for `DecisionTree` traversal helpers."""

    def test_leaf_paths_match_decision_path(self, and_data) -> None:
        X, y = and_data
        tree, _ = _grow(X, y)
        paths = tree.leaf_paths()
        assert set(paths) == set(tree.leaf_ids().tolist())
        for leaf, path in paths.items():
            assert path == tree.decision_path(leaf)

    def test_paths_agree_with_thresholds(self, and_data) -> None:
        """Every row satisfies each (feature, direction) on the path of its leaf."""
        X, y = and_data
        tree, _ = _grow(X, y)
        leaves = tree.apply(X)
        for row, leaf in zip(X[:50], leaves[:50]):
            node = 0
            for feat, sign in tree.decision_path(leaf):
                went_left = row[feat] <= tree.threshold[node]
                assert went_left == (sign == LEFT)
                assert sign in (LEFT, RIGHT)
                node = tree.children_left[node] if went_left else tree.children_right[node]
            assert node == leaf

    def test_importance_sums_decreases(self, and_data) -> None:
        X, y = and_data
        tree, _ = _grow(X, y)
        assert tree.feature_importance().sum() == pytest.approx(np.sum(tree.impurity_decrease))

    def test_predict_proba_rows_sum_to_one(self, and_data) -> None:
        X, y = and_data
        tree, _ = _grow(X, y, max_depth=2)
        proba = tree.predict_proba(X)
        np.testing.assert_allclose(proba.sum(axis=1), 1.0)


class TestDepthCap:
    """Unbounded or oversized `max_depth` is capped at `HARD_MAX_DEPTH`."""

    def test_resolve_max_depth(self) -> None:
        assert resolve_max_depth(None) == resolve_max_depth(1000) == HARD_MAX_DEPTH
        assert resolve_max_depth(7) == 7

    def test_staircase_response_stops_at_cap(self) -> None:
        """Each split peels off the largest response, so growth would need 199 levels."""
        n = 200
        X = np.arange(n, dtype=np.float64).reshape(-1, 1)
        y = 3.0 ** np.arange(n)
        tree = build_tree(
            X, y, np.arange(n), np.array([1.0]), mtry=1,
            rng=np.random.default_rng(0), n_classes=0,
            max_depth=resolve_max_depth(None),
        )
        assert tree.get_depth() == HARD_MAX_DEPTH
        assert tree.n_depth_limited_ == 1
        assert len(tree.leaf_ids()) == HARD_MAX_DEPTH + 1
