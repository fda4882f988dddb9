"""
optimization.py - Mean-Variance Portfolio Weights

This module supplies portfolio weight vectors for historical or simulated
return matrices:
- ScenarioBuilder: Fluent API for constructing linear constraint sets
- MeanVarianceOptimizer: cvxpy QP over a sample covariance matrix
- PortfolioWeightProvider: The interface consumers depend on
- CvxpyWeightProvider: Frontier, minimum variance and tangency portfolios
- equal_weights / risk_free_rate: Small helpers for benchmarks

Mathematical Background:
-----------------------
With sample mean μ and covariance Σ = L @ L.T, the minimum variance problem

    minimize    0.5 * w.T @ Σ @ w = 0.5 * ||L.T @ w||²
    subject to  A_eq @ w = b_eq
                A_ineq @ w <= b_ineq

is solved with cvxpy. Frontier points add the equality μ.T @ w = target.
The tangency (maximum Sharpe) portfolio uses the convex reformulation

    minimize    y.T @ Σ @ y
    subject to  (μ - rf).T @ y = 1,  y >= 0 (long only)

and rescales w = y / sum(y).

Example Usage:
-------------
    >>> from vine_lab.optimization import CvxpyWeightProvider
    >>>
    >>> provider = CvxpyWeightProvider()
    >>> frontier = provider.compute_frontier(returns, constraints="long_only")
    >>> tangency = provider.compute_tangency(returns, risk_free_rate=0.0004)
    >>> print(tangency.as_dict())
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence, Tuple, Union

import cvxpy as cp
import numpy as np
from loguru import logger

from .errors import InvalidInputError
from .types import FrontierPoint, OptimizationResult, PortfolioWeights, ReturnMatrix, Scenario

CONSTRAINT_SETS = ("long_only", "short")


# =============================================================================
# SCENARIO BUILDER
# =============================================================================

class ScenarioBuilder:
    """
    Fluent builder for constructing optimization scenarios (constraint sets).

    Parameters
    ----------
    p : int
        Number of assets in the portfolio.

    Examples
    --------
    >>> scenario = (ScenarioBuilder(p=5)
    ...     .create("Long Only")
    ...     .add_fully_invested()
    ...     .add_long_only()
    ...     .build())

    Notes
    -----
    Call ``create()`` to start a new scenario, chain constraint methods, then
    call ``build()``. All constraint methods return ``self``.
    """

    def __init__(self, p: int):
        if p <= 0:
            raise InvalidInputError(f"Number of assets must be positive, got {p}")
        self.p = p
        self._scenario: Optional[Scenario] = None

    def create(self, name: str, description: str = "") -> "ScenarioBuilder":
        """Start building a new scenario."""
        self._scenario = Scenario(name=name, description=description)
        return self

    def add_fully_invested(self) -> "ScenarioBuilder":
        """
        Add constraint: sum of weights equals 1.

        Mathematical form: 1.T @ w = 1
        """
        self._ensure_scenario()
        self._scenario.equality_constraints.append((np.ones((1, self.p)), np.array([1.0])))
        return self

    def add_long_only(self) -> "ScenarioBuilder":
        """
        Add constraint: all weights must be non-negative.

        Mathematical form: -I @ w <= 0
        """
        self._ensure_scenario()
        self._scenario.inequality_constraints.append((-np.eye(self.p), np.zeros(self.p)))
        return self

    def add_box_constraints(self, low: float, high: float) -> "ScenarioBuilder":
        """
        Add box constraints: low <= w_i <= high for all assets.

        Parameters
        ----------
        low : float
            Minimum weight per asset. Use negative for short positions.
        high : float
            Maximum weight per asset.
        """
        self._ensure_scenario()
        if low > high:
            raise InvalidInputError(f"low ({low}) must be <= high ({high})")
        self._scenario.inequality_constraints.append((np.eye(self.p), np.full(self.p, high)))
        self._scenario.inequality_constraints.append((-np.eye(self.p), np.full(self.p, -low)))
        return self

    def add_target_return(self, mu: np.ndarray, target: float) -> "ScenarioBuilder":
        """
        Add constraint: expected portfolio return equals ``target``.

        Mathematical form: mu.T @ w = target
        """
        mu = np.asarray(mu, dtype=float).reshape(1, -1)
        return self.add_custom_equality(mu, np.array([float(target)]))

    def add_custom_equality(self, A: np.ndarray, b: np.ndarray) -> "ScenarioBuilder":
        """Add a custom equality constraint: A @ w = b."""
        self._ensure_scenario()
        self._validate_constraint(A, b, "equality")
        self._scenario.equality_constraints.append((A, b))
        return self

    def add_custom_inequality(self, A: np.ndarray, b: np.ndarray) -> "ScenarioBuilder":
        """Add a custom inequality constraint: A @ w <= b."""
        self._ensure_scenario()
        self._validate_constraint(A, b, "inequality")
        self._scenario.inequality_constraints.append((A, b))
        return self

    def build(self) -> Scenario:
        """
        Finalize and return the constructed scenario.

        Raises
        ------
        RuntimeError
            If ``create()`` was not called first.
        """
        self._ensure_scenario()
        result = self._scenario
        self._scenario = None
        return result

    def _ensure_scenario(self) -> None:
        if self._scenario is None:
            raise RuntimeError("No scenario in progress. Call create() first.")

    def _validate_constraint(self, A: np.ndarray, b: np.ndarray, constraint_type: str) -> None:
        if A.ndim != 2:
            raise InvalidInputError(f"{constraint_type} constraint A must be 2D, got shape {A.shape}")
        if A.shape[1] != self.p:
            raise InvalidInputError(
                f"{constraint_type} constraint A has {A.shape[1]} columns, "
                f"expected {self.p} (number of assets)"
            )
        if b.ndim != 1 or b.shape[0] != A.shape[0]:
            raise InvalidInputError(
                f"{constraint_type} constraint dimension mismatch: "
                f"A has {A.shape[0]} rows, b has shape {b.shape}"
            )


# =============================================================================
# MEAN-VARIANCE OPTIMIZER
# =============================================================================

def _covariance_root(covariance: np.ndarray) -> np.ndarray:
    """L with covariance = L @ L.T, via a clipped eigen-decomposition."""
    eigval, eigvec = np.linalg.eigh(covariance)
    return eigvec * np.sqrt(np.clip(eigval, 0.0, None))


class MeanVarianceOptimizer:
    """
    Minimum variance QP over a dense covariance matrix.

    Parameters
    ----------
    covariance : np.ndarray
        Asset covariance with shape (p, p).
    solver : str, optional
        CVXPY solver name. If None, CVXPY auto-selects.
    verbose : bool, default=False
        Print solver output during optimization.

    Examples
    --------
    >>> optimizer = MeanVarianceOptimizer(np.cov(R, rowvar=False))
    >>> optimizer.apply_scenario(scenario)
    >>> result = optimizer.solve()
    """

    def __init__(
        self,
        covariance: np.ndarray,
        solver: Optional[str] = None,
        verbose: bool = False
    ):
        covariance = np.atleast_2d(np.asarray(covariance, dtype=float))
        if covariance.ndim != 2 or covariance.shape[0] != covariance.shape[1]:
            raise InvalidInputError(f"Covariance must be square, got shape {covariance.shape}")
        self.covariance = covariance
        self.p = covariance.shape[0]
        self.solver = solver
        self.verbose = verbose

        self._w = cp.Variable(self.p, name="weights")
        self._constraints: List[cp.Constraint] = []
        self._problem: Optional[cp.Problem] = None
        self._root = _covariance_root(covariance)

    @property
    def w(self) -> cp.Variable:
        return self._w

    @property
    def problem(self) -> Optional[cp.Problem]:
        """The CVXPY problem (available after solve())."""
        return self._problem

    def reset_constraints(self) -> None:
        self._constraints = []
        self._problem = None

    def add_equality(self, A: np.ndarray, b: np.ndarray) -> None:
        """Add an equality constraint: A @ w = b."""
        self._constraints.append(A @ self._w == b)

    def add_inequality(self, A: np.ndarray, b: np.ndarray) -> None:
        """Add an inequality constraint: A @ w <= b."""
        self._constraints.append(A @ self._w <= b)

    def apply_scenario(self, scenario: Scenario) -> None:
        """Apply all constraints from a Scenario object."""
        for A, b in scenario.equality_constraints:
            self.add_equality(A, b)
        for A, b in scenario.inequality_constraints:
            self.add_inequality(A, b)

    def solve(self) -> OptimizationResult:
        """
        Solve the minimum variance problem.

        Returns
        -------
        OptimizationResult
            Contains optimal weights, risk, and solver status. Solver crashes
            are reported as ``solved=False`` rather than raised.

        Notes
        -----
        The objective is 0.5 * w.T @ Σ @ w, so risk (std dev) is
        sqrt(2 * objective).
        """
        objective = cp.Minimize(0.5 * cp.sum_squares(self._root.T @ self._w))
        self._problem = cp.Problem(objective, self._constraints)

        try:
            if self.solver:
                self._problem.solve(solver=self.solver, verbose=self.verbose)
            else:
                self._problem.solve(verbose=self.verbose)
        except cp.SolverError as e:
            logger.exception("Mean-variance solve failed")
            return OptimizationResult(
                weights=None,
                risk=0.0,
                objective=0.0,
                solved=False,
                metadata={"status": "solver_error", "error": str(e)}
            )

        is_optimal = self._problem.status == cp.OPTIMAL
        obj_value = self._problem.value if self._problem.value is not None else 0.0
        if is_optimal:
            weights = np.asarray(self._w.value, dtype=float)
            risk = float(np.sqrt(max(2.0 * obj_value, 0.0)))
        else:
            weights, risk = None, 0.0

        stats = self._problem.solver_stats
        return OptimizationResult(
            weights=weights,
            risk=risk,
            objective=float(obj_value) if np.isfinite(obj_value) else 0.0,
            solved=is_optimal,
            metadata={
                "status": self._problem.status,
                "solver": stats.solver_name if stats else None,
                "solve_time": stats.solve_time if stats else None,
            }
        )


# =============================================================================
# WEIGHT PROVIDERS
# =============================================================================

class PortfolioWeightProvider(Protocol):
    """Source of portfolio weight vectors for a return matrix."""

    def compute_frontier(
        self,
        returns: ReturnMatrix,
        constraints: str = "long_only",
        n_points: int = 25
    ) -> List[FrontierPoint]:
        ...

    def compute_min_variance(self, returns: ReturnMatrix) -> PortfolioWeights:
        ...

    def compute_tangency(self, returns: ReturnMatrix, risk_free_rate: float = 0.0) -> PortfolioWeights:
        ...


def _moments(returns: Union[ReturnMatrix, np.ndarray]) -> Tuple[Tuple[str, ...], np.ndarray, np.ndarray]:
    if not isinstance(returns, ReturnMatrix):
        returns = ReturnMatrix.from_array(returns)
    if returns.n_obs < 2:
        raise InvalidInputError(f"Need at least 2 observations for a covariance, got {returns.n_obs}")
    mu = returns.values.mean(axis=0)
    sigma = np.atleast_2d(np.cov(returns.values, rowvar=False))
    return returns.columns, mu, sigma


class CvxpyWeightProvider:
    """
    ``PortfolioWeightProvider`` backed by ``MeanVarianceOptimizer``.

    Parameters
    ----------
    constraints : {"long_only", "short"}, default="long_only"
        Default constraint set. "long_only" is fully invested with w >= 0;
        "short" is fully invested only.
    solver : str, optional
        CVXPY solver name.

    Raises
    ------
    InvalidInputError
        From the ``compute_*`` methods when a problem is infeasible or the
        solver does not reach an optimal solution.
    """

    def __init__(self, constraints: str = "long_only", solver: Optional[str] = None):
        self.constraints = self._check_constraints(constraints)
        self.solver = solver

    @staticmethod
    def _check_constraints(constraints: str) -> str:
        if constraints not in CONSTRAINT_SETS:
            raise InvalidInputError(
                f"constraints must be one of {CONSTRAINT_SETS}, got {constraints!r}"
            )
        return constraints

    def _solve(
        self,
        sigma: np.ndarray,
        constraints: str,
        mu: Optional[np.ndarray] = None,
        target: Optional[float] = None
    ) -> OptimizationResult:
        builder = ScenarioBuilder(sigma.shape[0]).create(constraints).add_fully_invested()
        if constraints == "long_only":
            builder.add_long_only()
        if target is not None:
            builder.add_target_return(mu, target)
        optimizer = MeanVarianceOptimizer(sigma, solver=self.solver)
        optimizer.apply_scenario(builder.build())
        return optimizer.solve()

    def compute_min_variance(
        self,
        returns: Union[ReturnMatrix, np.ndarray],
        constraints: Optional[str] = None
    ) -> PortfolioWeights:
        """Global minimum variance portfolio."""
        constraints = self._check_constraints(constraints or self.constraints)
        assets, _, sigma = _moments(returns)
        result = self._solve(sigma, constraints)
        if not result.solved:
            raise InvalidInputError(
                f"Minimum variance problem not solved: {result.metadata.get('status')}"
            )
        return PortfolioWeights(assets=assets, weights=result.weights, label="min_variance")

    def compute_frontier(
        self,
        returns: Union[ReturnMatrix, np.ndarray],
        constraints: Optional[str] = None,
        n_points: int = 25
    ) -> List[FrontierPoint]:
        """
        Efficient frontier from the minimum variance portfolio up to the
        highest asset mean.

        Target returns are evenly spaced; targets the solver cannot reach are
        skipped with a warning. Points are ordered by increasing return.
        """
        constraints = self._check_constraints(constraints or self.constraints)
        if n_points < 2:
            raise InvalidInputError(f"n_points must be >= 2, got {n_points}")
        assets, mu, sigma = _moments(returns)

        mvp = self.compute_min_variance(returns, constraints)
        low, high = float(mu @ mvp.weights), float(mu.max())
        targets = np.linspace(low, max(low, high), n_points)

        logger.info(f"Computing {n_points}-point {constraints} frontier over {len(assets)} assets")
        points: List[FrontierPoint] = []
        for target in targets:
            result = self._solve(sigma, constraints, mu=mu, target=target)
            if not result.solved:
                logger.warning(
                    f"Frontier target {target:.6f} skipped: {result.metadata.get('status')}"
                )
                continue
            w = result.weights
            points.append(FrontierPoint(
                risk=float(np.sqrt(max(w @ sigma @ w, 0.0))),
                expected_return=float(mu @ w),
                weights=PortfolioWeights(assets=assets, weights=w, label=constraints),
            ))
        logger.success(f"Frontier computed: {len(points)} point(s)")
        return points

    def compute_tangency(
        self,
        returns: Union[ReturnMatrix, np.ndarray],
        risk_free_rate: float = 0.0,
        constraints: Optional[str] = None
    ) -> PortfolioWeights:
        """
        Maximum Sharpe ratio portfolio.

        Raises
        ------
        InvalidInputError
            If no asset earns more than ``risk_free_rate`` (long only), if
            ``risk_free_rate`` is not below the minimum variance return (short),
            or the problem is otherwise infeasible.
        """
        constraints = self._check_constraints(constraints or self.constraints)
        assets, mu, sigma = _moments(returns)
        excess = mu - float(risk_free_rate)

        optimizer = MeanVarianceOptimizer(sigma, solver=self.solver)
        optimizer.add_equality(excess.reshape(1, -1), np.array([1.0]))
        if constraints == "long_only":
            optimizer.add_inequality(-np.eye(len(assets)), np.zeros(len(assets)))
        result = optimizer.solve()

        if not result.solved:
            raise InvalidInputError(
                f"Tangency problem not solved at rf={risk_free_rate}: "
                f"{result.metadata.get('status')}"
            )
        # sum(y) <= 0 means rf is at or above the minimum variance return
        if np.sum(result.weights) <= 1e-12:
            raise InvalidInputError(
                f"Tangency portfolio does not exist at rf={risk_free_rate}: "
                f"risk-free rate is not below the minimum variance return"
            )
        y = result.weights
        return PortfolioWeights(assets=assets, weights=y / np.sum(y), label="tangency")


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def equal_weights(columns: Sequence[str]) -> PortfolioWeights:
    """Equally weighted portfolio over ``columns``."""
    columns = tuple(columns)
    if not columns:
        raise InvalidInputError("equal_weights needs at least one asset")
    return PortfolioWeights(
        assets=columns, weights=np.full(len(columns), 1.0 / len(columns)), label="equal"
    )


def risk_free_rate(series: np.ndarray) -> float:
    """Per-period risk-free rate as the mean of a T-bill return series."""
    series = np.asarray(series, dtype=float).ravel()
    series = series[np.isfinite(series)]
    if series.size == 0:
        raise InvalidInputError("Risk-free series is empty")
    return float(series.mean())


def portfolio_stats(weights: PortfolioWeights, returns: ReturnMatrix) -> Tuple[float, float]:
    """(expected return, risk) of ``weights`` under the sample moments of ``returns``."""
    _, mu, sigma = _moments(returns)
    w = weights.weights
    return float(mu @ w), float(np.sqrt(max(w @ sigma @ w, 0.0)))
