"""Iterative random forests with random intersection tree interaction search."""

from irf.analysis import interaction_graph, summarize_graph
from irf.errors import ConfigurationError, DataError, IRFError, PartialFailure
from irf.forest import WeightedRandomForest, grow_forest
from irf.interactions import aggregate_replicates, interaction_name, parse_interaction
from irf.log import setup_logging
from irf.reader import ForestReading, LeafRecord, read_forest
from irf.rit import mine_interactions, random_intersection_trees
from irf.stability import IterativeRandomForest, iterative_rf
from irf.tree import DecisionTree, build_tree

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "DataError",
    "DecisionTree",
    "ForestReading",
    "IRFError",
    "IterativeRandomForest",
    "LeafRecord",
    "PartialFailure",
    "WeightedRandomForest",
    "aggregate_replicates",
    "build_tree",
    "grow_forest",
    "interaction_graph",
    "interaction_name",
    "iterative_rf",
    "mine_interactions",
    "parse_interaction",
    "random_intersection_trees",
    "read_forest",
    "setup_logging",
    "summarize_graph",
]
