"""Weighted random intersection trees (Shah & Meinshausen, 2014).

A search tree starts from one signature drawn with probability proportional
to its weight. Every node above ``depth`` draws ``branch`` more weighted
signatures (``branch + 1`` with probability 1/2 under ``noisy_split``) and
intersects each with its own set; non-empty intersections become children.
Every non-empty set in the tree is a candidate interaction. A candidate is
counted at most once per search tree, so ``counts[S] / n_trees`` is the
fraction of search trees that recovered ``S``.
"""

from collections import Counter

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from loguru import logger
from scipy import sparse

from irf.config import (
    DEFAULT_RIT_BRANCH,
    DEFAULT_RIT_DEPTH,
    DEFAULT_RIT_N_TREES,
    base_seed,
    check_positive_int,
    check_sample_weight,
)
from irf.errors import ConfigurationError
from irf.interactions import interaction_name


def _as_sets(signatures) -> list[frozenset]:
    """Signature rows as frozensets of column ids."""
    if sparse.issparse(signatures):
        csr = sparse.csr_matrix(signatures, copy=True)
        csr.eliminate_zeros()
        return [
            frozenset(csr.indices[csr.indptr[i]:csr.indptr[i + 1]].tolist())
            for i in range(csr.shape[0])
        ]
    if isinstance(signatures, np.ndarray) and signatures.ndim == 2:
        return [frozenset(np.flatnonzero(row).tolist()) for row in signatures]
    return [frozenset(int(c) for c in row) for row in signatures]


def _draw(cdf: np.ndarray, rng: np.random.Generator, k: int) -> np.ndarray:
    return np.searchsorted(cdf, rng.random(k), side="right")


def _search_tree(
    sets: list[frozenset],
    cdf: np.ndarray,
    depth: int,
    branch: int,
    noisy_split: bool,
    seed: int,
) -> set[frozenset]:
    """All non-empty intersections found by one search tree."""
    rng = np.random.default_rng(seed)
    root = sets[_draw(cdf, rng, 1)[0]]
    found: set[frozenset] = set()
    if not root:
        return found
    stack: list[tuple[frozenset, int]] = [(root, 1)]
    while stack:
        current, level = stack.pop()
        found.add(current)
        if level >= depth:
            continue
        k = branch + int(rng.integers(0, 2)) if noisy_split else branch
        for j in _draw(cdf, rng, k):
            child = current & sets[j]
            if child:
                stack.append((child, level + 1))
    return found


def random_intersection_trees(
    signatures,
    weights=None,
    depth: int = DEFAULT_RIT_DEPTH,
    branch: int = DEFAULT_RIT_BRANCH,
    n_trees: int = DEFAULT_RIT_N_TREES,
    noisy_split: bool = False,
    random_state: int | None = None,
    n_jobs: int = 1,
) -> Counter:
    """Count the candidate interactions recovered across ``n_trees`` search trees.

    ``signatures`` is a sparse/dense boolean matrix or a sequence of column
    collections; ``weights`` (default uniform) gives each row's sampling
    weight. Returns a ``Counter`` mapping ``frozenset`` of columns to the
    number of search trees in which the set appeared.
    """
    depth = check_positive_int("depth", depth)
    branch = check_positive_int("branch", branch)
    n_trees = check_positive_int("n_trees", n_trees)
    sets = _as_sets(signatures)
    if not sets:
        return Counter()
    if weights is None:
        w = np.ones(len(sets))
    else:
        w = check_sample_weight(weights, len(sets), name="weights")
    total = w.sum()
    if total <= 0:
        raise ConfigurationError("weights are all zero")
    cdf = np.cumsum(w)
    cdf /= cdf[-1]

    seed = base_seed(random_state)
    found = Parallel(n_jobs=n_jobs, prefer="threads")(
        delayed(_search_tree)(sets, cdf, depth, branch, noisy_split, seed + t)
        for t in range(n_trees)
    )
    counts: Counter = Counter()
    for tree_sets in found:
        counts.update(tree_sets)
    logger.debug(
        f"RIT: {n_trees} trees over {len(sets)} signatures -> {len(counts)} candidates"
    )
    return counts


def mine_interactions(
    signatures,
    weights=None,
    depth: int = DEFAULT_RIT_DEPTH,
    branch: int = DEFAULT_RIT_BRANCH,
    n_trees: int = DEFAULT_RIT_N_TREES,
    noisy_split: bool = False,
    n_features: int | None = None,
    feature_names: list[str] | None = None,
    random_state: int | None = None,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """Frequency table of RIT candidates, most frequent first.

    ``n_features`` defaults to half the column count of a matrix input.
    """
    if n_features is None:
        if not hasattr(signatures, "shape"):
            raise ConfigurationError("n_features is required for non-matrix signatures")
        n_features = signatures.shape[1] // 2
    counts = random_intersection_trees(
        signatures, weights,
        depth=depth, branch=branch, n_trees=n_trees, noisy_split=noisy_split,
        random_state=random_state, n_jobs=n_jobs,
    )
    rows = [
        {
            "interaction": interaction_name(cols, n_features, feature_names),
            "size": len(cols),
            "count": count,
            "frequency": count / n_trees,
        }
        for cols, count in counts.items()
    ]
    rows.sort(key=lambda r: (-r["count"], r["interaction"]))
    return pd.DataFrame(rows, columns=["interaction", "size", "count", "frequency"])
