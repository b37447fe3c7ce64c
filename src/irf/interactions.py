"""Interaction naming, per-replicate scoring and cross-replicate aggregation.

An interaction is a set of signature columns (see ``irf.reader``). Its
canonical name lists features in ascending id order, each suffixed with ``-``
(left / low values) or ``+`` (right / high values), joined by ``_``; a feature
used in both directions lists ``-`` first, e.g. ``1+_2-_2+``.

Scores for one replicate, all weighted by leaf size:

* ``prevalence``        share of target-class leaves whose signature contains S
* ``prevalence_other``  the same share among the remaining leaves
* ``baseline``          product over s in S of the share of all leaves containing s
* ``prevalence_diff``   prevalence - prevalence_other
* ``precision``         share of leaves containing S that are target-class leaves
"""

import math
import re

import numpy as np
import pandas as pd
from scipy import sparse

from irf.errors import ConfigurationError

_TOKEN = re.compile(r"^(.+)([+-])$")

TABLE_COLUMNS = [
    "interaction",
    "class",
    "size",
    "stability",
    "recovery",
    "prevalence",
    "prevalence_other",
    "baseline",
    "prevalence_diff",
    "sta_diff",
    "precision",
    "sta_precision",
    "n_replicates",
]


# ═════════════════════════════════════════════════════════════════════════════
# Naming
# ═════════════════════════════════════════════════════════════════════════════


def _sort_key(col: int, n_features: int) -> tuple[int, int]:
    if col < n_features:
        return col, 0
    return col - n_features, 1


def interaction_name(
    columns,
    n_features: int,
    feature_names: list[str] | None = None,
) -> str:
    """Canonical string for a set of signature columns."""
    tokens = []
    for col in sorted(columns, key=lambda c: _sort_key(int(c), n_features)):
        feat, direction = _sort_key(int(col), n_features)
        label = feature_names[feat] if feature_names is not None else str(feat)
        tokens.append(f"{label}{'+' if direction else '-'}")
    return "_".join(tokens)


def parse_interaction(
    name: str,
    n_features: int,
    feature_names: list[str] | None = None,
) -> frozenset:
    """Signature columns of a canonical interaction name."""
    lookup = None
    if feature_names is not None:
        lookup = {label: i for i, label in enumerate(feature_names)}
    cols = set()
    for token in name.split("_") if lookup is None else _split_named(name, lookup):
        match = _TOKEN.match(token)
        if match is None:
            raise ConfigurationError(f"Malformed interaction token {token!r} in {name!r}")
        label, sign = match.groups()
        feat = lookup[label] if lookup is not None else int(label)
        if not 0 <= feat < n_features:
            raise ConfigurationError(f"Feature {feat} out of range in {name!r}")
        cols.add(feat if sign == "-" else n_features + feat)
    return frozenset(cols)


def _split_named(name: str, lookup: dict[str, int]) -> list[str]:
    # Feature names may contain underscores; match greedily on known names.
    tokens = []
    rest = name
    while rest:
        for label in sorted(lookup, key=len, reverse=True):
            for sign in "-+":
                token = f"{label}{sign}"
                if rest == token or rest.startswith(token + "_"):
                    tokens.append(token)
                    rest = rest[len(token) + 1:]
                    break
            else:
                continue
            break
        else:
            raise ConfigurationError(f"Cannot parse interaction {name!r}")
    return tokens


# ═════════════════════════════════════════════════════════════════════════════
# Per-replicate scoring
# ═════════════════════════════════════════════════════════════════════════════


def _share(weights: np.ndarray, mask: np.ndarray) -> float:
    total = weights.sum()
    if total <= 0:
        return 0.0
    return float(weights[mask].sum() / total)


def score_interactions(
    candidates,
    signatures: sparse.spmatrix,
    weights: np.ndarray,
    in_class: np.ndarray,
) -> dict[frozenset, dict]:
    """Score candidate interactions against one forest reading.

    ``signatures`` is the leaf x column signature matrix, ``weights`` the leaf
    sizes and ``in_class`` flags leaves of the class of interest.
    """
    sig = sparse.csc_matrix(signatures)
    weights = np.asarray(weights, dtype=np.float64)
    in_class = np.asarray(in_class, dtype=bool)
    w_in = np.where(in_class, weights, 0.0)
    w_out = np.where(in_class, 0.0, weights)
    total_all = weights.sum()
    marginal = np.asarray(sig.T @ weights).ravel()
    marginal = marginal / total_all if total_all > 0 else np.zeros_like(marginal)
    precision_baseline = _share(weights, in_class)

    scores: dict[frozenset, dict] = {}
    for cand in candidates:
        cols = sorted(cand)
        hits = np.asarray(sig[:, cols].sum(axis=1)).ravel()
        contains = hits == len(cols)
        prevalence = _share(w_in, contains) if w_in.sum() > 0 else 0.0
        prevalence_other = _share(w_out, contains) if w_out.sum() > 0 else 0.0
        baseline = float(np.prod(marginal[cols]))
        covered = weights[contains].sum()
        precision = float(w_in[contains].sum() / covered) if covered > 0 else 0.0
        scores[cand] = {
            "prevalence": prevalence,
            "prevalence_other": prevalence_other,
            "baseline": baseline,
            "prevalence_diff": prevalence - prevalence_other,
            "precision": precision,
            "precision_baseline": precision_baseline,
        }
    return scores


# ═════════════════════════════════════════════════════════════════════════════
# Aggregation
# ═════════════════════════════════════════════════════════════════════════════


def _mean(values: list[float]) -> float:
    return math.fsum(values) / len(values) if values else float("nan")


def aggregate_replicates(
    replicates: list[dict],
    n_features: int,
    feature_names: list[str] | None = None,
) -> pd.DataFrame:
    """Merge per-replicate scores into the stability table.

    ``replicates`` holds one entry per *successful* replicate, mapping
    ``(class_label, interaction_columns)`` to that replicate's scores; the
    number of entries is the denominator of every stability fraction.
    Means are taken over the replicates that recovered the interaction.
    The result does not depend on the order of ``replicates``.
    """
    n_ok = len(replicates)
    if n_ok == 0:
        return pd.DataFrame(columns=TABLE_COLUMNS)

    collected: dict[tuple, list[dict]] = {}
    for rep in replicates:
        for key, score in rep.items():
            collected.setdefault(key, []).append(score)

    rows = []
    for (label, cols), scores in collected.items():
        rows.append({
            "interaction": interaction_name(cols, n_features, feature_names),
            "class": label,
            "size": len(cols),
            "stability": sum(s["prevalence"] > s["baseline"] for s in scores) / n_ok,
            "recovery": len(scores) / n_ok,
            "prevalence": _mean([s["prevalence"] for s in scores]),
            "prevalence_other": _mean([s["prevalence_other"] for s in scores]),
            "baseline": _mean([s["baseline"] for s in scores]),
            "prevalence_diff": _mean([s["prevalence_diff"] for s in scores]),
            "sta_diff": sum(s["prevalence_diff"] > 0 for s in scores) / n_ok,
            "precision": _mean([s["precision"] for s in scores]),
            "sta_precision": sum(
                s["precision"] > s["precision_baseline"] for s in scores
            ) / n_ok,
            "n_replicates": n_ok,
        })

    rows.sort(key=lambda r: (-r["stability"], -r["prevalence_diff"], str(r["class"]), r["interaction"]))
    return pd.DataFrame(rows, columns=TABLE_COLUMNS)
