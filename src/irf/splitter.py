"""Weighted feature sampling and axis-aligned split search.

A node draws ``mtry`` candidate features without replacement with probability
proportional to the current feature weights, then scans every cut point of
each candidate. Scores are total impurity decreases

    n * I(parent) - n_left * I(left) - n_right * I(right)

with Gini impurity for classification and mean squared error for regression,
so the scores add up directly into feature importances.
"""

import numpy as np

# Decreases below this are treated as "no improvement".
MIN_DECREASE = 1e-12


def sample_features(p: np.ndarray, m: int, rng: np.random.Generator) -> np.ndarray:
    """Draw ``m`` distinct feature indices with probability proportional to ``p``.

    Zero-probability features are never drawn; ``m`` is capped by the number
    of features with positive probability.
    """
    n_positive = int(np.count_nonzero(p > 0))
    m = min(m, n_positive)
    if m == len(p):
        return rng.permutation(len(p))
    return rng.choice(len(p), size=m, replace=False, p=p)


def node_impurity(target: np.ndarray, n_classes: int) -> float:
    """Gini impurity (``n_classes > 0``) or variance of ``target``."""
    n = target.shape[0]
    if n == 0:
        return 0.0
    if n_classes > 0:
        counts = np.bincount(target, minlength=n_classes)
        prop = counts / n
        return float(1.0 - np.sum(prop * prop))
    return float(np.var(target))


def _candidate_positions(xs: np.ndarray, min_samples_leaf: int, max_thresholds: int | None) -> np.ndarray:
    """Positions ``i`` such that a cut between xs[i] and xs[i+1] is admissible."""
    n = xs.shape[0]
    n_left = np.arange(1, n)
    valid = (xs[1:] > xs[:-1]) & (n_left >= min_samples_leaf) & (n - n_left >= min_samples_leaf)
    positions = np.flatnonzero(valid)
    if max_thresholds is not None and positions.shape[0] > max_thresholds:
        pick = np.linspace(0, positions.shape[0] - 1, max_thresholds).round().astype(int)
        positions = positions[np.unique(pick)]
    return positions


def _classification_scores(ys: np.ndarray, n_classes: int, positions: np.ndarray) -> np.ndarray:
    n = ys.shape[0]
    onehot = np.zeros((n, n_classes))
    onehot[np.arange(n), ys] = 1.0
    cum = np.cumsum(onehot, axis=0)
    total = cum[-1]
    left = cum[positions]
    right = total - left
    n_left = (positions + 1).astype(np.float64)
    n_right = n - n_left
    # n * gini = n - sum(counts^2) / n
    weighted_left = n_left - np.sum(left * left, axis=1) / n_left
    weighted_right = n_right - np.sum(right * right, axis=1) / n_right
    parent = n - np.sum(total * total) / n
    return parent - weighted_left - weighted_right


def _regression_scores(ys: np.ndarray, positions: np.ndarray) -> np.ndarray:
    n = ys.shape[0]
    cum = np.cumsum(ys)
    cum_sq = np.cumsum(ys * ys)
    n_left = (positions + 1).astype(np.float64)
    n_right = n - n_left
    sum_left = cum[positions]
    sum_right = cum[-1] - sum_left
    sse_left = cum_sq[positions] - sum_left * sum_left / n_left
    sse_right = (cum_sq[-1] - cum_sq[positions]) - sum_right * sum_right / n_right
    parent = cum_sq[-1] - cum[-1] * cum[-1] / n
    return parent - sse_left - sse_right


def best_split(
    X: np.ndarray,
    target: np.ndarray,
    idxs: np.ndarray,
    features: np.ndarray,
    n_classes: int,
    min_samples_leaf: int = 1,
    max_thresholds: int | None = None,
) -> dict | None:
    """Find the best (feature, threshold) among ``features`` for rows ``idxs``.

    ``target`` holds encoded class ids when ``n_classes > 0`` and float
    responses otherwise. Returns ``None`` when the node is pure, too small to
    produce two leaves of ``min_samples_leaf`` rows, or no cut point decreases
    impurity. That outcome terminates the node as a leaf.
    """
    n = idxs.shape[0]
    if n < 2 * min_samples_leaf or n < 2:
        return None
    y_node = target[idxs]
    if n_classes > 0:
        if np.all(y_node == y_node[0]):
            return None
    elif np.ptp(y_node) == 0:
        return None

    best: dict | None = None
    best_score = MIN_DECREASE
    for feat in features:
        x_node = X[idxs, feat]
        order = np.argsort(x_node, kind="mergesort")
        xs = x_node[order]
        positions = _candidate_positions(xs, min_samples_leaf, max_thresholds)
        if positions.shape[0] == 0:
            continue
        ys = y_node[order]
        if n_classes > 0:
            scores = _classification_scores(ys, n_classes, positions)
        else:
            scores = _regression_scores(ys, positions)
        k = int(np.argmax(scores))
        if scores[k] > best_score:
            pos = positions[k]
            threshold = (xs[pos] + xs[pos + 1]) / 2.0
            if threshold >= xs[pos + 1]:
                threshold = xs[pos]
            best_score = float(scores[k])
            best = {
                "feature": int(feat),
                "threshold": float(threshold),
                "impurity_decrease": best_score,
            }

    if best is None:
        return None
    go_left = X[idxs, best["feature"]] <= best["threshold"]
    best["left"] = idxs[go_left]
    best["right"] = idxs[~go_left]
    return best
