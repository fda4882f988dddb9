"""
test_optimization.py - Tests for Portfolio Weights

Tests cover:
- ScenarioBuilder fluent API
- Constraint construction (fully invested, long only, box, target return)
- MeanVarianceOptimizer solving
- CvxpyWeightProvider: minimum variance, frontier, tangency
- Convenience functions
"""

import pytest
import numpy as np

from vine_lab import (
    ReturnMatrix,
    ScenarioBuilder,
    MeanVarianceOptimizer,
    CvxpyWeightProvider,
    equal_weights,
    risk_free_rate,
    InvalidInputError,
)
from vine_lab.optimization import portfolio_stats


@pytest.fixture
def percent_returns():
    """
    400 periods of returns (in percent) for 4 assets with distinct
    volatilities and positive means.
    """
    rng = np.random.default_rng(seed=7)
    vols = np.array([1.0, 1.5, 2.0, 2.5])
    corr = np.full((4, 4), 0.2) + 0.8 * np.eye(4)
    cov = corr * np.outer(vols, vols)
    values = rng.multivariate_normal(mean=[0.5, 0.8, 1.0, 1.4], cov=cov, size=400)
    return ReturnMatrix(values=values, columns=("A", "B", "C", "D"))


class TestScenarioBuilder:
    """Tests for ScenarioBuilder fluent API."""

    def test_create(self):
        """Test scenario creation."""
        scenario = ScenarioBuilder(p=5).create("Test Scenario", "A test description").build()
        assert scenario.name == "Test Scenario"
        assert scenario.description == "A test description"

    def test_fluent_chaining(self):
        """Test that methods can be chained."""
        scenario = (ScenarioBuilder(p=5)
            .create("Chained")
            .add_fully_invested()
            .add_long_only()
            .build())

        assert scenario.n_equality() == 1
        assert scenario.n_inequality() == 5

    def test_build_without_create_raises(self):
        """Test that build without create raises error."""
        with pytest.raises(RuntimeError, match="create()"):
            ScenarioBuilder(p=3).build()

    def test_invalid_p(self):
        """Test that p <= 0 raises error."""
        with pytest.raises(ValueError, match="positive"):
            ScenarioBuilder(p=0)

    def test_box_constraints(self):
        scenario = ScenarioBuilder(p=3).create("Box").add_box_constraints(-0.1, 0.5).build()
        assert scenario.n_inequality() == 6
        A_hi, b_hi = scenario.inequality_constraints[0]
        np.testing.assert_allclose(b_hi, 0.5)

    def test_box_inverted_bounds(self):
        with pytest.raises(InvalidInputError, match="must be <="):
            ScenarioBuilder(p=3).create("Box").add_box_constraints(0.5, 0.1)

    def test_target_return(self):
        """Test the expected-return equality row."""
        mu = np.array([0.1, 0.2, 0.3])
        scenario = ScenarioBuilder(p=3).create("Target").add_target_return(mu, 0.15).build()
        A, b = scenario.equality_constraints[0]
        np.testing.assert_allclose(A, mu.reshape(1, -1))
        np.testing.assert_allclose(b, [0.15])

    def test_custom_constraint_shape_checked(self):
        with pytest.raises(InvalidInputError, match="columns"):
            ScenarioBuilder(p=3).create("Bad").add_custom_equality(np.ones((1, 2)), np.ones(1))


class TestMeanVarianceOptimizer:
    """Tests for MeanVarianceOptimizer."""

    def test_two_asset_closed_form(self):
        """Uncorrelated assets: w_1 = s2^2 / (s1^2 + s2^2)."""
        cov = np.diag([1.0, 4.0])
        optimizer = MeanVarianceOptimizer(cov)
        optimizer.apply_scenario(ScenarioBuilder(2).create("fi").add_fully_invested().build())
        result = optimizer.solve()

        assert result.solved
        np.testing.assert_allclose(result.weights, [0.8, 0.2], atol=1e-4)
        assert result.risk == pytest.approx(np.sqrt(0.8 ** 2 + 4 * 0.2 ** 2), abs=1e-4)

    def test_infeasible_is_not_solved(self):
        """Sum-to-one together with all weights <= -1 is infeasible."""
        optimizer = MeanVarianceOptimizer(np.eye(2))
        optimizer.add_equality(np.ones((1, 2)), np.array([1.0]))
        optimizer.add_inequality(np.eye(2), np.array([-1.0, -1.0]))
        result = optimizer.solve()
        assert not result.solved
        assert result.weights is None

    def test_non_square_covariance(self):
        with pytest.raises(InvalidInputError, match="square"):
            MeanVarianceOptimizer(np.ones((2, 3)))


class TestCvxpyWeightProvider:
    """Tests for the cvxpy-backed PortfolioWeightProvider."""

    def test_min_variance_matches_closed_form(self, percent_returns):
        """Without the long-only constraint the MVP is Σ⁻¹1 / 1ᵀΣ⁻¹1."""
        sigma = np.cov(percent_returns.values, rowvar=False)
        inv = np.linalg.solve(sigma, np.ones(4))
        expected = inv / inv.sum()

        weights = CvxpyWeightProvider(constraints="short").compute_min_variance(percent_returns)
        assert weights.assets == ("A", "B", "C", "D")
        np.testing.assert_allclose(weights.weights, expected, atol=1e-3)

    def test_long_only_weights(self, percent_returns):
        weights = CvxpyWeightProvider().compute_min_variance(percent_returns)
        assert weights.total == pytest.approx(1.0, abs=1e-6)
        assert np.all(weights.weights >= -1e-6)
        assert weights.label == "min_variance"

    def test_frontier_shape(self, percent_returns):
        """Frontier returns increase and weights stay feasible."""
        points = CvxpyWeightProvider().compute_frontier(percent_returns, n_points=10)
        assert 2 <= len(points) <= 10

        returns = [p.expected_return for p in points]
        risks = [p.risk for p in points]
        assert np.all(np.diff(returns) > -1e-6)
        assert np.all(np.diff(risks) > -1e-4)
        for p in points:
            assert p.weights.total == pytest.approx(1.0, abs=1e-5)
            assert np.all(p.weights.weights >= -1e-5)

    def test_frontier_starts_at_min_variance(self, percent_returns):
        provider = CvxpyWeightProvider()
        mvp = provider.compute_min_variance(percent_returns)
        _, mvp_risk = portfolio_stats(mvp, percent_returns)
        points = provider.compute_frontier(percent_returns, n_points=5)
        assert points[0].risk == pytest.approx(mvp_risk, rel=1e-3)

    def test_frontier_stays_below_best_asset(self, percent_returns):
        """No long-only point can beat the highest asset mean."""
        points = CvxpyWeightProvider().compute_frontier(percent_returns, n_points=5)
        mu = percent_returns.values.mean(axis=0)
        assert all(p.expected_return <= mu.max() + 1e-4 for p in points)

    def test_frontier_needs_two_points(self, percent_returns):
        with pytest.raises(InvalidInputError, match="n_points"):
            CvxpyWeightProvider().compute_frontier(percent_returns, n_points=1)

    def test_tangency_matches_closed_form(self, percent_returns):
        """Unconstrained tangency portfolio is proportional to Σ⁻¹(μ - rf)."""
        mu = percent_returns.values.mean(axis=0)
        sigma = np.cov(percent_returns.values, rowvar=False)
        rf = 0.01
        raw = np.linalg.solve(sigma, mu - rf)
        expected = raw / raw.sum()

        weights = CvxpyWeightProvider(constraints="short").compute_tangency(percent_returns, risk_free_rate=rf)
        np.testing.assert_allclose(weights.weights, expected, atol=1e-3)
        assert weights.label == "tangency"

    def test_tangency_long_only(self, percent_returns):
        weights = CvxpyWeightProvider().compute_tangency(percent_returns, risk_free_rate=0.0)
        assert weights.total == pytest.approx(1.0)
        assert np.all(weights.weights >= -1e-6)

    def test_tangency_without_excess_return(self, percent_returns):
        """No asset beats the risk-free rate, so the long-only problem is infeasible."""
        with pytest.raises(InvalidInputError, match="Tangency"):
            CvxpyWeightProvider().compute_tangency(percent_returns, risk_free_rate=10.0)

    def test_tangency_short_rf_above_min_variance_return(self, percent_returns):
        """With short sales, rf above the MVP return leaves no positive-Sharpe tangency."""
        provider = CvxpyWeightProvider(constraints="short")
        mvp = provider.compute_min_variance(percent_returns)
        mvp_return, _ = portfolio_stats(mvp, percent_returns)
        with pytest.raises(InvalidInputError, match="does not exist"):
            provider.compute_tangency(percent_returns, risk_free_rate=mvp_return + 0.05)

    def test_tangency_short_has_positive_excess_return(self, percent_returns):
        provider = CvxpyWeightProvider(constraints="short")
        mvp = provider.compute_min_variance(percent_returns)
        mvp_return, _ = portfolio_stats(mvp, percent_returns)
        rf = mvp_return - 0.05
        weights = provider.compute_tangency(percent_returns, risk_free_rate=rf)
        mean, _ = portfolio_stats(weights, percent_returns)
        assert mean > rf

    def test_accepts_simulated_array(self, percent_returns):
        weights = CvxpyWeightProvider().compute_min_variance(np.array(percent_returns.values))
        assert weights.assets == ("asset_0", "asset_1", "asset_2", "asset_3")

    def test_unknown_constraint_set(self):
        with pytest.raises(InvalidInputError, match="constraints"):
            CvxpyWeightProvider(constraints="leveraged")

    def test_too_few_observations(self):
        with pytest.raises(InvalidInputError, match="at least 2 observations"):
            CvxpyWeightProvider().compute_min_variance(ReturnMatrix(values=np.ones((1, 2))))


class TestConvenienceFunctions:
    """Tests for small helpers."""

    def test_equal_weights(self):
        w = equal_weights(["A", "B", "C", "D"])
        np.testing.assert_allclose(w.weights, 0.25)
        assert w.label == "equal"

    def test_equal_weights_empty(self):
        with pytest.raises(InvalidInputError):
            equal_weights([])

    def test_risk_free_rate_ignores_nan(self):
        assert risk_free_rate(np.array([0.001, np.nan, 0.003])) == pytest.approx(0.002)

    def test_portfolio_stats(self, percent_returns):
        w = equal_weights(percent_returns.columns)
        mean, risk = portfolio_stats(w, percent_returns)
        assert mean == pytest.approx(percent_returns.values.mean())
        assert risk > 0
