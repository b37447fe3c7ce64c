#!/usr/bin/env python3
"""iRF on a synthetic Boolean AND response.

y = 1 iff x1 > 0 and x2 > 0 and x3 > 0 over 250 uniform(-1, 1) features.
Runs the iterative forest with reweighting and bootstrap stability selection
and writes the stable interactions to method_out.json.
"""

import json
import resource
import time
from pathlib import Path

import numpy as np
from loguru import logger

from irf import IterativeRandomForest, interaction_graph, setup_logging, summarize_graph

# ============================================================
# SETUP
# ============================================================

# Resource limits: 14GB RAM, 3500s CPU
resource.setrlimit(resource.RLIMIT_AS, (14 * 1024**3, 14 * 1024**3))
resource.setrlimit(resource.RLIMIT_CPU, (3500, 3500))

WORKSPACE = Path(__file__).resolve().parent
LOG_DIR = WORKSPACE / "logs"

# Global config
N_SAMPLES = 500
N_FEATURES = 250
N_TEST = 500
SEED = 42
PARAMS = {
    "n_estimators": 100,
    "n_iter": 4,
    "n_bootstrap": 10,
    "select_iter": True,
    "rit_n_trees": 100,
    "rit_depth": 5,
    "rit_branch": 2,
    "class_id": 1,
    "random_state": SEED,
    "n_jobs": -1,
}
TOP_K = 10


# ============================================================
# DATA
# ============================================================


def make_boolean_and(n_samples: int, n_features: int, rng: np.random.Generator) -> tuple[np.ndarray, np.ndarray]:
    X = rng.uniform(-1.0, 1.0, size=(n_samples, n_features))
    y = ((X[:, 1] > 0) & (X[:, 2] > 0) & (X[:, 3] > 0)).astype(int)
    return X, y


# ============================================================
# MAIN
# ============================================================


@logger.catch
def main():
    setup_logging("INFO", LOG_DIR)
    t_start = time.time()
    rng = np.random.default_rng(SEED)
    X, y = make_boolean_and(N_SAMPLES, N_FEATURES, rng)
    X_test, y_test = make_boolean_and(N_TEST, N_FEATURES, rng)
    logger.info(f"Data: n={N_SAMPLES}, p={N_FEATURES}, positive rate={y.mean():.3f}")

    model = IterativeRandomForest(**PARAMS)
    model.fit(X, y, X_test=X_test, y_test=y_test)

    for h in model.history_:
        top = np.argsort(h["importance"])[::-1][:5]
        logger.info(f"Iteration {h['iteration']}: score={h['score']:.4f} top features={top.tolist()}")

    table = model.interactions_
    logger.info(f"Top {TOP_K} interactions:")
    for row in table.head(TOP_K).itertuples(index=False):
        logger.info(
            f"  {row.interaction:<20} stability={row.stability:.2f} "
            f"prevalence_diff={row.prevalence_diff:.3f} precision={row.precision:.3f}"
        )

    graph_stats = summarize_graph(interaction_graph(table, N_FEATURES, min_stability=0.5))
    logger.info(f"Interaction graph: {graph_stats}")

    output = {
        "params": dict(PARAMS),
        "selected_iteration": model.selected_iteration_,
        "history": [
            {
                "iteration": h["iteration"],
                "score": h["score"],
                "top_features": np.argsort(h["importance"])[::-1][:10].tolist(),
            }
            for h in model.history_
        ],
        "n_replicates_ok": model.n_replicates_ok_,
        "interactions": table.head(50).to_dict(orient="records"),
        "graph_stats": graph_stats,
        "runtime_s": round(time.time() - t_start, 1),
    }
    out_path = WORKSPACE / "method_out.json"
    out_path.write_text(json.dumps(output, indent=2, default=str))
    logger.success(f"Saved results to {out_path} ({out_path.stat().st_size / 1024:.1f} KB)")


if __name__ == "__main__":
    main()
