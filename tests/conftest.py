"""Shared synthetic data for the test suite."""

import numpy as np
import pytest


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(0)


@pytest.fixture
def threshold_data() -> tuple[np.ndarray, np.ndarray]:
    """Binary target decided by the sign of feature 0; five features."""
    gen = np.random.default_rng(1)
    X = gen.uniform(-1.0, 1.0, size=(200, 5))
    y = (X[:, 0] > 0).astype(int)
    return X, y


@pytest.fixture
def and_data() -> tuple[np.ndarray, np.ndarray]:
    """Binary target y = (x1 > 0) & (x2 > 0) & (x3 > 0) over six features."""
    gen = np.random.default_rng(2)
    X = gen.uniform(-1.0, 1.0, size=(300, 6))
    y = ((X[:, 1] > 0) & (X[:, 2] > 0) & (X[:, 3] > 0)).astype(int)
    return X, y


@pytest.fixture
def regression_data() -> tuple[np.ndarray, np.ndarray]:
    """Linear response in feature 0 plus a small amount of noise."""
    gen = np.random.default_rng(3)
    X = gen.uniform(-1.0, 1.0, size=(200, 6))
    y = 3.0 * X[:, 0] + 0.1 * gen.normal(size=200)
    return X, y
