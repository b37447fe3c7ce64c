"""Single decision tree grown with weighted feature sampling.

Nodes live in flat arrays indexed by node id (root = 0); children are stored
as ids, ``-1`` marking a leaf. Trees are never modified after ``build_tree``
returns, so fitted trees can be traversed concurrently.
"""

import numpy as np
from loguru import logger

from irf.splitter import best_split, node_impurity, sample_features

LEFT = "-"
RIGHT = "+"
TREE_LEAF = -1


class DecisionTree:
    """Array-backed binary decision tree.

    Classification trees store per-node class counts in ``value``
    (``n_nodes x n_classes``); regression trees store the node mean
    (``n_nodes x 1``). ``leaf_samples_`` maps every leaf id to the training row
    indices (including bootstrap repeats) that reached it.
    """

    def __init__(self, n_features: int, n_classes: int) -> None:
        self.n_features = n_features
        self.n_classes = n_classes
        self.children_left: list | np.ndarray = []
        self.children_right: list | np.ndarray = []
        self.parent: list | np.ndarray = []
        self.feature: list | np.ndarray = []
        self.threshold: list | np.ndarray = []
        self.impurity: list | np.ndarray = []
        self.impurity_decrease: list | np.ndarray = []
        self.n_node_samples: list | np.ndarray = []
        self.depth: list | np.ndarray = []
        self.value: list | np.ndarray = []
        self.leaf_samples_: dict[int, np.ndarray] = {}
        self.n_depth_limited_ = 0

    # ── construction ─────────────────────────────────────────────────────────

    def _add_node(self, parent: int, depth: int) -> int:
        self.children_left.append(TREE_LEAF)
        self.children_right.append(TREE_LEAF)
        self.parent.append(parent)
        self.feature.append(TREE_LEAF)
        self.threshold.append(np.nan)
        self.impurity.append(0.0)
        self.impurity_decrease.append(0.0)
        self.n_node_samples.append(0)
        self.depth.append(depth)
        self.value.append(None)
        return len(self.parent) - 1

    def _set_stats(self, node: int, y_node: np.ndarray) -> None:
        self.n_node_samples[node] = int(y_node.shape[0])
        self.impurity[node] = node_impurity(y_node, self.n_classes)
        if self.n_classes > 0:
            self.value[node] = np.bincount(y_node, minlength=self.n_classes).astype(np.float64)
        else:
            self.value[node] = np.array([y_node.mean()])

    def _finalize(self) -> None:
        self.children_left = np.asarray(self.children_left, dtype=np.intp)
        self.children_right = np.asarray(self.children_right, dtype=np.intp)
        self.parent = np.asarray(self.parent, dtype=np.intp)
        self.feature = np.asarray(self.feature, dtype=np.intp)
        self.threshold = np.asarray(self.threshold, dtype=np.float64)
        self.impurity = np.asarray(self.impurity, dtype=np.float64)
        self.impurity_decrease = np.asarray(self.impurity_decrease, dtype=np.float64)
        self.n_node_samples = np.asarray(self.n_node_samples, dtype=np.int64)
        self.depth = np.asarray(self.depth, dtype=np.int64)
        self.value = np.vstack(self.value)

    # ── structure ────────────────────────────────────────────────────────────

    @property
    def node_count(self) -> int:
        return len(self.parent)

    def is_leaf(self, node: int) -> bool:
        return self.children_left[node] == TREE_LEAF

    def leaf_ids(self) -> np.ndarray:
        return np.flatnonzero(self.children_left == TREE_LEAF)

    def get_depth(self) -> int:
        return int(self.depth.max())

    def decision_path(self, leaf: int) -> tuple[tuple[int, str], ...]:
        """Ordered (feature, direction) decisions from the root to ``leaf``."""
        path = []
        node = leaf
        while self.parent[node] != TREE_LEAF:
            par = self.parent[node]
            sign = LEFT if self.children_left[par] == node else RIGHT
            path.append((int(self.feature[par]), sign))
            node = par
        return tuple(reversed(path))

    def leaf_paths(self) -> dict[int, tuple[tuple[int, str], ...]]:
        """Decision paths of every leaf, built in one top-down pass."""
        paths: dict[int, tuple[tuple[int, str], ...]] = {}
        stack: list[tuple[int, tuple]] = [(0, ())]
        while stack:
            node, path = stack.pop()
            if self.children_left[node] == TREE_LEAF:
                paths[node] = path
                continue
            feat = int(self.feature[node])
            stack.append((int(self.children_right[node]), path + ((feat, RIGHT),)))
            stack.append((int(self.children_left[node]), path + ((feat, LEFT),)))
        return paths

    def feature_importance(self) -> np.ndarray:
        """Total impurity decrease contributed by each feature."""
        internal = self.children_left != TREE_LEAF
        return np.bincount(
            self.feature[internal],
            weights=self.impurity_decrease[internal],
            minlength=self.n_features,
        )

    # ── prediction ───────────────────────────────────────────────────────────

    def apply(self, X: np.ndarray) -> np.ndarray:
        """Leaf id reached by every row of ``X``."""
        n = X.shape[0]
        node = np.zeros(n, dtype=np.intp)
        active = np.arange(n)
        if self.children_left[0] == TREE_LEAF:
            return node
        while active.shape[0]:
            cur = node[active]
            go_left = X[active, self.feature[cur]] <= self.threshold[cur]
            node[active] = np.where(go_left, self.children_left[cur], self.children_right[cur])
            active = active[self.children_left[node[active]] != TREE_LEAF]
        return node

    def leaf_prediction(self, leaves: np.ndarray) -> np.ndarray:
        """Encoded class (argmax of counts) or mean response of ``leaves``."""
        if self.n_classes > 0:
            return np.argmax(self.value[leaves], axis=1)
        return self.value[leaves, 0]

    def predict(self, X: np.ndarray) -> np.ndarray:
        return self.leaf_prediction(self.apply(X))

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        counts = self.value[self.apply(X)]
        return counts / counts.sum(axis=1, keepdims=True)


def build_tree(
    X: np.ndarray,
    target: np.ndarray,
    sample_indices: np.ndarray,
    feature_p: np.ndarray,
    mtry: int,
    rng: np.random.Generator,
    n_classes: int,
    min_samples_leaf: int = 1,
    max_depth: int = 128,
    max_thresholds: int | None = None,
) -> DecisionTree:
    """Grow one tree on the rows ``sample_indices`` (a bootstrap sample).

    Nodes are expanded depth-first from an explicit stack. A node becomes a
    leaf when the splitter finds no valid split or the node sits at
    ``max_depth``; the latter is counted in ``n_depth_limited_`` when the node
    was still impure.
    """
    tree = DecisionTree(n_features=X.shape[1], n_classes=n_classes)
    root = tree._add_node(parent=TREE_LEAF, depth=0)
    stack: list[tuple[int, np.ndarray, int]] = [(root, np.asarray(sample_indices), 0)]

    while stack:
        node, idxs, depth = stack.pop()
        tree._set_stats(node, target[idxs])

        split = None
        if depth < max_depth:
            features = sample_features(feature_p, mtry, rng)
            split = best_split(
                X, target, idxs, features,
                n_classes=n_classes,
                min_samples_leaf=min_samples_leaf,
                max_thresholds=max_thresholds,
            )
        elif tree.impurity[node] > 0:
            tree.n_depth_limited_ += 1

        if split is None:
            tree.leaf_samples_[node] = idxs
            continue

        tree.feature[node] = split["feature"]
        tree.threshold[node] = split["threshold"]
        tree.impurity_decrease[node] = split["impurity_decrease"]
        left = tree._add_node(parent=node, depth=depth + 1)
        right = tree._add_node(parent=node, depth=depth + 1)
        tree.children_left[node] = left
        tree.children_right[node] = right
        stack.append((right, split["right"], depth + 1))
        stack.append((left, split["left"], depth + 1))

    tree._finalize()
    if tree.n_depth_limited_:
        logger.debug(f"Tree stopped {tree.n_depth_limited_} impure nodes at depth {max_depth}")
    return tree
