"""
conftest.py - Pytest Configuration and Shared Fixtures

This file contains fixtures used across all test modules. Fixtures are
organized by category:
- Random number generators (for reproducibility)
- Return data (Gaussian-dependent historical returns)
- Vine models (fitted and hand-built)
- Tolerances
"""

import pytest
import numpy as np

from vine_lab import (
    ReturnMatrix,
    VineEdge,
    VineModel,
    FitControls,
    VineStructureFitter,
    to_pseudo_obs,
    make_copula,
)


# =============================================================================
# RANDOM NUMBER GENERATORS
# =============================================================================

@pytest.fixture
def rng():
    """
    Provide a seeded random number generator for reproducible tests.

    All tests should use this fixture (or derive from it) to ensure
    reproducibility across runs.
    """
    return np.random.default_rng(seed=42)


# =============================================================================
# RETURN DATA
# =============================================================================

TARGET_CORRELATION = np.array([
    [1.0, 0.6, 0.3],
    [0.6, 1.0, 0.4],
    [0.3, 0.4, 1.0],
])


@pytest.fixture(scope="session")
def historical_returns():
    """
    500 days of returns for 3 assets with Gaussian dependence.

    Correlations: A-B 0.6, B-C 0.4, A-C 0.3. Daily vols of 1-2%.
    """
    rng = np.random.default_rng(seed=42)
    vols = np.array([0.01, 0.015, 0.02])
    cov = TARGET_CORRELATION * np.outer(vols, vols)
    values = rng.multivariate_normal(mean=[0.0005, 0.0003, 0.0004], cov=cov, size=500)
    return ReturnMatrix(values=values, columns=("A", "B", "C"))


@pytest.fixture(scope="session")
def pseudo_obs(historical_returns):
    """Pseudo-observations of ``historical_returns``."""
    return to_pseudo_obs(historical_returns)


# =============================================================================
# VINE MODELS
# =============================================================================

@pytest.fixture(scope="session")
def fitted_vine(pseudo_obs, historical_returns):
    """Vine fitted to the historical returns with Gaussian and Student-t candidates."""
    controls = FitControls(family_set=("gaussian", "t"))
    return VineStructureFitter(controls).fit(pseudo_obs, columns=historical_returns.columns)


@pytest.fixture
def gaussian_vine():
    """
    Hand-built 3-variable Gaussian D-vine 0 - 1 - 2.

    Tree 1: (0,1) rho=0.6, (1,2) rho=0.4
    Tree 2: (0,2 | 1) rho=0.1
    """
    return VineModel(
        d=3,
        trees=(
            (
                VineEdge(tree=0, conditioned=(0, 1), conditioning=(), copula=make_copula("gaussian", [0.6])),
                VineEdge(tree=0, conditioned=(1, 2), conditioning=(), copula=make_copula("gaussian", [0.4])),
            ),
            (
                VineEdge(tree=1, conditioned=(0, 2), conditioning=(1,), copula=make_copula("gaussian", [0.1])),
            ),
        ),
        columns=("A", "B", "C"),
    )


@pytest.fixture
def mixed_vine():
    """
    Hand-built 4-variable D-vine with one edge of each Archimedean family
    (several rotated) plus a Student-t edge.
    """
    return VineModel(
        d=4,
        trees=(
            (
                VineEdge(tree=0, conditioned=(0, 1), conditioning=(), copula=make_copula("clayton", [2.0])),
                VineEdge(tree=0, conditioned=(1, 2), conditioning=(), copula=make_copula("gumbel", [1.8], rotation=180)),
                VineEdge(tree=0, conditioned=(2, 3), conditioning=(), copula=make_copula("frank", [-4.0])),
            ),
            (
                VineEdge(tree=1, conditioned=(0, 2), conditioning=(1,), copula=make_copula("joe", [1.5], rotation=90)),
                VineEdge(tree=1, conditioned=(1, 3), conditioning=(2,), copula=make_copula("t", [0.3, 5.0])),
            ),
            (
                VineEdge(tree=2, conditioned=(0, 3), conditioning=(1, 2), copula=make_copula("clayton", [0.8], rotation=270)),
            ),
        ),
    )


# =============================================================================
# TOLERANCES
# =============================================================================

@pytest.fixture
def tolerance():
    """Standard numerical tolerance for float comparisons."""
    return {"rtol": 1e-5, "atol": 1e-8}


@pytest.fixture
def large_sample_tolerance():
    """Looser tolerance for statistical convergence tests."""
    return {"rtol": 0.05, "atol": 0.05}
