"""
test_types.py - Tests for Core Data Structures

Tests cover:
- ReturnMatrix construction and validation
- VineEdge derived fields
- VineModel regular-vine validation (edge counts, proximity, connectivity)
- VineModel serialization and summary
- PortfolioWeights and OptimizationResult
- Configuration objects (FitControls, SimulationConfig)
"""

import math

import pytest
import numpy as np

from vine_lab import (
    ReturnMatrix,
    VineEdge,
    VineModel,
    PortfolioWeights,
    OptimizationResult,
    CorrelationDiagnostics,
    FitControls,
    SimulationConfig,
    InvalidInputError,
    make_copula,
)


def _gauss(rho):
    return make_copula("gaussian", [rho])


class TestReturnMatrix:
    """Tests for ReturnMatrix."""

    def test_default_columns(self, rng):
        R = ReturnMatrix(values=rng.normal(size=(10, 3)))
        assert R.columns == ("asset_0", "asset_1", "asset_2")
        assert R.n_obs == 10
        assert R.n_assets == 3
        assert R.shape == (10, 3)

    def test_values_are_read_only(self, rng):
        R = ReturnMatrix(values=rng.normal(size=(5, 2)))
        with pytest.raises(ValueError):
            R.values[0, 0] = 1.0

    def test_input_is_copied(self):
        raw = np.ones((4, 2))
        R = ReturnMatrix(values=raw)
        raw[0, 0] = 99.0
        assert R.values[0, 0] == 1.0

    def test_rejects_1d(self):
        with pytest.raises(InvalidInputError, match="2D"):
            ReturnMatrix(values=np.ones(5))

    def test_rejects_nan(self):
        values = np.ones((3, 2))
        values[1, 1] = np.nan
        with pytest.raises(InvalidInputError, match="NaN"):
            ReturnMatrix(values=values)

    def test_column_count_mismatch(self):
        with pytest.raises(InvalidInputError, match="Column names mismatch"):
            ReturnMatrix(values=np.ones((3, 2)), columns=("A",))

    def test_duplicate_columns(self):
        with pytest.raises(InvalidInputError, match="unique"):
            ReturnMatrix(values=np.ones((3, 2)), columns=("A", "A"))

    def test_column_and_drop(self, rng):
        R = ReturnMatrix(values=rng.normal(size=(6, 3)), columns=("A", "B", "RF"))
        np.testing.assert_array_equal(R.column("B"), R.values[:, 1])
        risky = R.drop(["RF"])
        assert risky.columns == ("A", "B")
        np.testing.assert_array_equal(risky.values, R.values[:, :2])

    def test_drop_unknown(self):
        R = ReturnMatrix(values=np.ones((3, 2)), columns=("A", "B"))
        with pytest.raises(InvalidInputError, match="unknown columns"):
            R.drop(["Z"])

    def test_drop_everything(self):
        R = ReturnMatrix(values=np.ones((3, 1)), columns=("A",))
        with pytest.raises(InvalidInputError, match="every column"):
            R.drop(["A"])


class TestVineEdge:
    """Tests for VineEdge."""

    def test_default_nodes(self):
        edge = VineEdge(tree=1, conditioned=(0, 2), conditioning=(1,), copula=_gauss(0.1))
        assert edge.nodes == ((0, 1), (1, 2))
        assert edge.all_set == (0, 1, 2)
        assert edge.label == "0,2;1"

    def test_conditioning_is_sorted(self):
        edge = VineEdge(tree=2, conditioned=(0, 3), conditioning=(2, 1), copula=_gauss(0.1))
        assert edge.conditioning == (1, 2)

    def test_conditioning_size_must_match_tree(self):
        with pytest.raises(InvalidInputError, match="conditioning variables"):
            VineEdge(tree=1, conditioned=(0, 2), conditioning=(), copula=_gauss(0.1))

    def test_overlap_rejected(self):
        with pytest.raises(InvalidInputError, match="overlaps"):
            VineEdge(tree=1, conditioned=(0, 1), conditioning=(1,), copula=_gauss(0.1))

    def test_round_trip(self):
        edge = VineEdge(tree=0, conditioned=(2, 0), conditioning=(),
                        copula=make_copula("gumbel", [1.5], 180), crit=0.3, loglik=12.5)
        assert VineEdge.from_dict(edge.to_dict()) == edge


class TestVineModel:
    """Tests for VineModel validation and derived quantities."""

    def test_valid_model(self, gaussian_vine):
        assert gaussian_vine.n_trees == 2
        assert gaussian_vine.npars == 3
        assert gaussian_vine.families == [["gaussian", "gaussian"], ["gaussian"]]
        assert len(list(gaussian_vine.edges())) == 3

    def test_wrong_edge_count(self):
        with pytest.raises(InvalidInputError, match="must have 2 edges"):
            VineModel(d=3, trees=(
                (VineEdge(tree=0, conditioned=(0, 1), conditioning=(), copula=_gauss(0.5)),),
                (VineEdge(tree=1, conditioned=(0, 2), conditioning=(1,), copula=_gauss(0.1)),),
            ))

    def test_wrong_number_of_trees(self):
        with pytest.raises(InvalidInputError, match="Expected 2 trees"):
            VineModel(d=3, trees=(
                (
                    VineEdge(tree=0, conditioned=(0, 1), conditioning=(), copula=_gauss(0.5)),
                    VineEdge(tree=0, conditioned=(1, 2), conditioning=(), copula=_gauss(0.5)),
                ),
            ))

    def test_truncated_model(self):
        model = VineModel(d=3, trunc_lvl=1, trees=(
            (
                VineEdge(tree=0, conditioned=(0, 1), conditioning=(), copula=_gauss(0.5)),
                VineEdge(tree=0, conditioned=(1, 2), conditioning=(), copula=_gauss(0.5)),
            ),
        ))
        assert model.n_trees == 1

    def test_first_tree_with_cycle_is_disconnected(self):
        # d=4: edges 0-1, 1-2, 0-2 leave variable 3 isolated
        with pytest.raises(InvalidInputError, match="not connected"):
            VineModel(d=4, trunc_lvl=1, trees=(
                (
                    VineEdge(tree=0, conditioned=(0, 1), conditioning=(), copula=_gauss(0.5)),
                    VineEdge(tree=0, conditioned=(1, 2), conditioning=(), copula=_gauss(0.5)),
                    VineEdge(tree=0, conditioned=(0, 2), conditioning=(), copula=_gauss(0.5)),
                ),
            ))

    def test_proximity_violation(self):
        # tree 0 is the path 0-1-2-3; (0,1) and (2,3) share no node
        first = (
            VineEdge(tree=0, conditioned=(0, 1), conditioning=(), copula=_gauss(0.5)),
            VineEdge(tree=0, conditioned=(1, 2), conditioning=(), copula=_gauss(0.5)),
            VineEdge(tree=0, conditioned=(2, 3), conditioning=(), copula=_gauss(0.5)),
        )
        bad = VineEdge(tree=1, conditioned=(0, 3), conditioning=(1,), copula=_gauss(0.1),
                       nodes=((0, 1), (2, 3)))
        with pytest.raises(InvalidInputError, match="proximity"):
            VineModel(d=4, trunc_lvl=2, trees=(
                first,
                (bad, VineEdge(tree=1, conditioned=(1, 3), conditioning=(2,), copula=_gauss(0.1))),
            ))

    def test_second_tree_must_join_adjacent_edges(self):
        first = (
            VineEdge(tree=0, conditioned=(0, 1), conditioning=(), copula=_gauss(0.5)),
            VineEdge(tree=0, conditioned=(1, 2), conditioning=(), copula=_gauss(0.5)),
            VineEdge(tree=0, conditioned=(1, 3), conditioning=(), copula=_gauss(0.5)),
        )
        # (0,1) and (1,2) share 1; (1,2) and (1,3) share 1; valid star
        model = VineModel(d=4, trunc_lvl=2, trees=(
            first,
            (
                VineEdge(tree=1, conditioned=(0, 2), conditioning=(1,), copula=_gauss(0.1)),
                VineEdge(tree=1, conditioned=(2, 3), conditioning=(1,), copula=_gauss(0.1)),
            ),
        ))
        assert model.n_trees == 2

    def test_aic_bic(self, gaussian_vine):
        model = VineModel(d=3, trees=gaussian_vine.trees, nobs=100, loglik=50.0)
        assert model.aic == pytest.approx(-100.0 + 6.0)
        assert model.bic == pytest.approx(-100.0 + 3 * math.log(100))

    def test_round_trip(self, mixed_vine):
        restored = VineModel.from_dict(mixed_vine.to_dict())
        assert restored == mixed_vine

    def test_summary_names_columns(self, gaussian_vine):
        text = gaussian_vine.summary()
        assert "A,C|B" in text
        assert "gaussian" in text


class TestCorrelationDiagnostics:
    """Tests for CorrelationDiagnostics."""

    def test_identical_data(self, rng):
        x = rng.normal(size=(50, 3))
        diag = CorrelationDiagnostics.from_data(x, x)
        np.testing.assert_allclose(diag.cor_diff, 0.0, atol=1e-12)
        assert diag.max_abs_diff == pytest.approx(0.0, abs=1e-12)


class TestPortfolioWeights:
    """Tests for PortfolioWeights."""

    def test_lookup(self):
        w = PortfolioWeights(assets=("A", "B"), weights=[0.4, 0.6], label="mvp")
        assert w["B"] == pytest.approx(0.6)
        assert len(w) == 2
        assert w.total == pytest.approx(1.0)
        assert w.as_dict() == {"A": 0.4, "B": 0.6}

    def test_unknown_asset(self):
        w = PortfolioWeights(assets=("A",), weights=[1.0])
        with pytest.raises(KeyError):
            w["Z"]

    def test_length_mismatch(self):
        with pytest.raises(InvalidInputError, match="does not match"):
            PortfolioWeights(assets=("A", "B"), weights=[1.0])


class TestOptimizationResult:
    """Tests for OptimizationResult."""

    def test_solved_requires_weights(self):
        with pytest.raises(InvalidInputError, match="weights is None"):
            OptimizationResult(weights=None, risk=0.0, objective=0.0, solved=True)

    def test_failed_result(self):
        result = OptimizationResult(weights=None, risk=np.inf, objective=np.inf, solved=False)
        assert not result.solved


class TestFitControls:
    """Tests for FitControls validation."""

    def test_defaults(self):
        controls = FitControls()
        assert controls.family_set == ("gaussian", "t", "clayton", "gumbel", "frank", "joe")
        assert controls.trunc_lvl is None

    def test_family_aliases_are_normalized(self):
        controls = FitControls(family_set=("Gaussian", "student", "t"))
        assert controls.family_set == ("gaussian", "t")

    def test_infinite_truncation(self):
        assert FitControls(trunc_lvl=math.inf).trunc_lvl is None

    @pytest.mark.parametrize("kwargs,match", [
        ({"family_set": ()}, "at least one"),
        ({"family_set": "gaussian"}, "not a string"),
        ({"tree_criterion": "hoeffd"}, "tree_criterion"),
        ({"selection_criterion": "mbic"}, "selection_criterion"),
        ({"parametric_method": "bayes"}, "parametric_method"),
        ({"trunc_lvl": -1}, "trunc_lvl"),
        ({"num_threads": 0}, "num_threads"),
    ])
    def test_invalid(self, kwargs, match):
        with pytest.raises(InvalidInputError, match=match):
            FitControls(**kwargs)


class TestSimulationConfig:
    """Tests for SimulationConfig."""

    def test_resolve_n(self):
        assert SimulationConfig().resolve_n(250) == 250
        assert SimulationConfig(n_multiplier=2.5).resolve_n(100) == 250
        assert SimulationConfig(n=42, n_multiplier=3.0).resolve_n(100) == 42

    def test_pearson_weight(self):
        assert SimulationConfig(kendall_weight=0.7).pearson_weight == pytest.approx(0.3)

    @pytest.mark.parametrize("kwargs", [
        {"n_multiplier": 0.0},
        {"quantile_method": "nearest"},
        {"kendall_weight": 1.5},
        {"max_workers": 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(InvalidInputError):
            SimulationConfig(**kwargs)
