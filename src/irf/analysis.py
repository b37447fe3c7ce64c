"""Feature graph of stable interactions."""

from itertools import combinations

import networkx as nx
import pandas as pd

from irf.interactions import parse_interaction


def interaction_graph(
    table: pd.DataFrame,
    n_features: int,
    feature_names: list[str] | None = None,
    min_stability: float = 0.5,
) -> nx.Graph:
    """Link every pair of features that co-occur in an interaction with
    ``stability >= min_stability``; edges carry the best such stability."""
    labels = feature_names if feature_names is not None else list(range(n_features))
    G = nx.Graph()
    G.add_nodes_from(labels)
    stable = table[table["stability"] >= min_stability]
    for name, stability in zip(stable["interaction"], stable["stability"]):
        cols = parse_interaction(name, n_features, feature_names)
        feats = sorted({c % n_features for c in cols})
        for i, j in combinations(feats, 2):
            u, v = labels[i], labels[j]
            if not G.has_edge(u, v) or G[u][v]["weight"] < stability:
                G.add_edge(u, v, weight=float(stability))
    return G


def summarize_graph(G: nx.Graph) -> dict:
    """Linked features, their groups and the largest stable clique.

    A clique's stability is its weakest edge: every pair in it co-occurred in
    an interaction at least that stable. Ties on clique size go to the more
    stable clique.
    """
    linked = G.subgraph(n for n in G.nodes if G.degree(n) > 0)
    groups = sorted(
        (sorted(c, key=str) for c in nx.connected_components(linked)),
        key=lambda c: (-len(c), [str(n) for n in c]),
    )
    best_clique: list = []
    best_stability = 0.0
    for clique in nx.find_cliques(linked):
        clique = sorted(clique, key=str)
        stability = min(G[u][v]["weight"] for u, v in combinations(clique, 2))
        if (len(clique), stability) > (len(best_clique), best_stability):
            best_clique, best_stability = clique, stability

    return {
        "n_edges": G.number_of_edges(),
        "n_linked_features": linked.number_of_nodes(),
        "groups": groups,
        "largest_clique": best_clique,
        "largest_clique_stability": float(best_stability),
    }
