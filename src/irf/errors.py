"""Exceptions raised by the forest / interaction pipeline."""


class IRFError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(IRFError, ValueError):
    """Invalid parameter combination (tree counts, mtry, feature weights, ...)."""


class DataError(IRFError, ValueError):
    """Training data that cannot be grown into a forest."""


class PartialFailure(IRFError, RuntimeError):
    """A bootstrap replicate could not be completed.

    Raised inside a replicate and recovered by the stability selector; it only
    escapes ``IterativeRandomForest.fit`` when every replicate failed.
    """
