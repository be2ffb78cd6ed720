"""Shared fixtures for gampoi tests."""

import numpy as np
import pytest


def simulate_nb(rng, mu, theta):
    """Negative binomial draws with mean mu and overdispersion theta."""
    if theta == 0:
        return rng.poisson(mu)
    return rng.negative_binomial(1.0 / theta, 1.0 / (1.0 + mu * theta))


@pytest.fixture
def rng():
    """Seeded random number generator for reproducibility."""
    return np.random.RandomState(42)


@pytest.fixture
def design8():
    """Design matrix for 8 samples: intercept + group + continuous covariate."""
    group = np.array([0, 0, 0, 0, 1, 1, 1, 1])
    x = np.linspace(-1, 1, 8)
    return np.column_stack([np.ones(8), group, x])


@pytest.fixture
def size_factors():
    return np.array([0.8, 1.0, 1.2, 0.9, 1.1, 1.0, 0.7, 1.3])


@pytest.fixture
def nb_counts(rng, design8, size_factors):
    """60 genes x 8 samples of NB counts (theta = 0.1), integer valued."""
    beta = np.column_stack([rng.uniform(1, 5, 60),
                            rng.normal(0, 1, 60),
                            rng.normal(0, 0.5, 60)])
    mu = size_factors * np.exp(beta @ design8.T)
    counts = simulate_nb(rng, mu, 0.1)
    # a few empty rows
    counts[:3] = 0
    return counts.astype(np.int64)
