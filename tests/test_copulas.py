"""
test_copulas.py - Tests for Bivariate Copula Families

Tests cover:
- Family tag parsing
- Parameter validation
- h-function / inverse h-function consistency (all families, rotations)
- h-functions vs numerical derivatives of the cdf
- Densities vs numerical derivatives of the h-functions
- Kendall's tau formulas
- Estimation and family selection
"""

import math

import pytest
import numpy as np

from vine_lab import (
    CopulaFamily,
    BivariateCopula,
    ClaytonCopula,
    GaussianCopula,
    make_copula,
    fit_pair_copula,
    select_pair_copula,
    InvalidInputError,
)
from vine_lab.copulas import COPULA_REGISTRY, candidate_rotations


# Representative (family, parameters, rotation) cases
CASES = [
    ("gaussian", [0.5], 0),
    ("gaussian", [-0.7], 0),
    ("t", [0.4, 4.0], 0),
    ("clayton", [2.0], 0),
    ("clayton", [1.5], 90),
    ("clayton", [3.0], 180),
    ("gumbel", [1.7], 0),
    ("gumbel", [2.5], 270),
    ("frank", [5.0], 0),
    ("frank", [-3.0], 0),
    ("joe", [2.0], 0),
    ("joe", [1.6], 180),
]

ARCHIMEDEAN_CASES = [c for c in CASES if c[0] not in ("gaussian", "t")]


def _grid():
    g = np.linspace(0.05, 0.95, 9)
    u1, u2 = np.meshgrid(g, g)
    return np.column_stack([u1.ravel(), u2.ravel()])


class TestCopulaFamily:
    """Tests for family tag parsing."""

    def test_parse_values(self):
        assert CopulaFamily.parse("gaussian") is CopulaFamily.GAUSSIAN
        assert CopulaFamily.parse("Clayton") is CopulaFamily.CLAYTON
        assert CopulaFamily.parse(CopulaFamily.JOE) is CopulaFamily.JOE

    def test_parse_student_aliases(self):
        for name in ("t", "student", "student_t"):
            assert CopulaFamily.parse(name) is CopulaFamily.STUDENT_T

    def test_parse_unknown(self):
        with pytest.raises(InvalidInputError, match="Unknown copula family"):
            CopulaFamily.parse("bb1")


class TestValidation:
    """Tests for parameter and rotation validation."""

    def test_gaussian_out_of_range(self):
        with pytest.raises(InvalidInputError, match="rho"):
            GaussianCopula(parameters=(1.5,))

    def test_wrong_parameter_count(self):
        with pytest.raises(InvalidInputError, match="expects 2"):
            make_copula("t", [0.5])

    def test_elliptical_cannot_rotate(self):
        with pytest.raises(InvalidInputError, match="cannot be rotated"):
            make_copula("gaussian", [0.5], rotation=90)

    def test_invalid_rotation(self):
        with pytest.raises(InvalidInputError, match="rotation"):
            make_copula("clayton", [1.0], rotation=45)

    def test_frank_zero(self):
        with pytest.raises(InvalidInputError, match="non-zero"):
            make_copula("frank", [0.0])

    def test_non_finite(self):
        with pytest.raises(InvalidInputError, match="finite"):
            ClaytonCopula(parameters=(float("nan"),))

    def test_bad_data_shape(self):
        cop = make_copula("clayton", [1.0])
        with pytest.raises(InvalidInputError, match="shape"):
            cop.hfunc1(np.ones((5, 3)) * 0.5)


class TestHFunctions:
    """Consistency between cdf, h-functions, their inverses and densities."""

    @pytest.mark.parametrize("family,params,rotation", CASES)
    def test_hinv1_inverts_hfunc1(self, family, params, rotation):
        cop = make_copula(family, params, rotation)
        u = _grid()
        w = cop.hfunc1(u)
        back = cop.hinv1(np.column_stack([u[:, 0], w]))
        np.testing.assert_allclose(back, u[:, 1], atol=1e-6)

    @pytest.mark.parametrize("family,params,rotation", CASES)
    def test_hinv2_inverts_hfunc2(self, family, params, rotation):
        cop = make_copula(family, params, rotation)
        u = _grid()
        w = cop.hfunc2(u)
        back = cop.hinv2(np.column_stack([w, u[:, 1]]))
        np.testing.assert_allclose(back, u[:, 0], atol=1e-6)

    @pytest.mark.parametrize("family,params,rotation", ARCHIMEDEAN_CASES)
    def test_hfunc_matches_cdf_derivative(self, family, params, rotation):
        cop = make_copula(family, params, rotation)
        u = _grid()
        step = 1e-5
        up = u + [step, 0.0]
        dn = u - [step, 0.0]
        numeric1 = (cop.cdf(up) - cop.cdf(dn)) / (2 * step)
        np.testing.assert_allclose(cop.hfunc1(u), numeric1, atol=1e-4)

        up = u + [0.0, step]
        dn = u - [0.0, step]
        numeric2 = (cop.cdf(up) - cop.cdf(dn)) / (2 * step)
        np.testing.assert_allclose(cop.hfunc2(u), numeric2, atol=1e-4)

    @pytest.mark.parametrize("family,params,rotation", CASES)
    def test_pdf_matches_hfunc_derivative(self, family, params, rotation):
        cop = make_copula(family, params, rotation)
        u = _grid()
        step = 1e-6
        numeric = (cop.hfunc1(u + [0.0, step]) - cop.hfunc1(u - [0.0, step])) / (2 * step)
        np.testing.assert_allclose(cop.pdf(u), numeric, rtol=1e-3, atol=1e-4)

    @pytest.mark.parametrize("family,params,rotation", ARCHIMEDEAN_CASES)
    def test_cdf_margins_are_uniform(self, family, params, rotation):
        cop = make_copula(family, params, rotation)
        g = np.linspace(0.1, 0.9, 5)
        ones = np.full_like(g, 1.0)
        np.testing.assert_allclose(cop.cdf(np.column_stack([g, ones])), g, atol=1e-6)
        np.testing.assert_allclose(cop.cdf(np.column_stack([ones, g])), g, atol=1e-6)

    def test_outputs_inside_unit_interval(self):
        cop = make_copula("clayton", [5.0])
        u = np.array([[1e-12, 0.5], [0.5, 1.0], [0.999999, 0.000001]])
        for h in (cop.hfunc1(u), cop.hfunc2(u), cop.hinv1(u), cop.hinv2(u)):
            assert np.all((h > 0) & (h < 1))


class TestKendallTau:
    """Tests for the parameter-to-tau mapping."""

    def test_known_values(self):
        assert math.isclose(make_copula("clayton", [2.0]).tau, 0.5)
        assert math.isclose(make_copula("gumbel", [2.0]).tau, 0.5)
        assert math.isclose(make_copula("gaussian", [math.sin(math.pi / 4)]).tau, 0.5)
        assert math.isclose(make_copula("joe", [1.0]).tau, 0.0, abs_tol=1e-12)

    def test_rotation_changes_sign(self):
        assert make_copula("clayton", [2.0], rotation=90).tau == pytest.approx(-0.5)
        assert make_copula("clayton", [2.0], rotation=180).tau == pytest.approx(0.5)
        assert make_copula("clayton", [2.0], rotation=270).tau == pytest.approx(-0.5)

    def test_frank_is_odd(self):
        assert make_copula("frank", [-5.0]).tau == pytest.approx(-make_copula("frank", [5.0]).tau)

    @pytest.mark.parametrize("family", ["gaussian", "clayton", "gumbel", "frank", "joe"])
    def test_tau_inversion(self, family):
        cls = COPULA_REGISTRY[CopulaFamily.parse(family)]
        params = cls.tau_to_parameters(0.4)
        assert cls(parameters=params).tau == pytest.approx(0.4, abs=1e-4)

    @pytest.mark.parametrize("family,params,rotation", CASES)
    def test_sample_tau_matches_theory(self, family, params, rotation):
        from scipy import stats
        cop = make_copula(family, params, rotation)
        u = cop.simulate(3000, rng=np.random.default_rng(0))
        tau, _ = stats.kendalltau(u[:, 0], u[:, 1])
        assert tau == pytest.approx(cop.tau, abs=0.05)


class TestEstimation:
    """Tests for maximum likelihood fitting and family selection."""

    def test_fit_recovers_clayton(self, rng):
        u = make_copula("clayton", [3.0]).simulate(2000, rng=rng)
        fitted = fit_pair_copula(u, "clayton")
        assert fitted.parameters[0] == pytest.approx(3.0, abs=0.4)

    def test_fit_recovers_student_t(self, rng):
        u = make_copula("t", [0.6, 4.0]).simulate(3000, rng=rng)
        fitted = fit_pair_copula(u, "t")
        assert fitted.parameters[0] == pytest.approx(0.6, abs=0.05)
        assert 2.0 < fitted.parameters[1] < 10.0

    def test_itau_uses_tau_inversion(self, rng):
        u = make_copula("gumbel", [2.0]).simulate(2000, rng=rng)
        fitted = fit_pair_copula(u, "gumbel", method="itau")
        from scipy import stats
        tau, _ = stats.kendalltau(u[:, 0], u[:, 1])
        assert fitted.tau == pytest.approx(tau, abs=1e-6)

    def test_fit_rotated(self, rng):
        u = make_copula("gumbel", [2.0], rotation=90).simulate(2000, rng=rng)
        fitted = fit_pair_copula(u, "gumbel", rotation=90)
        assert fitted.rotation == 90
        assert fitted.parameters[0] == pytest.approx(2.0, abs=0.3)

    def test_select_picks_clayton(self, rng):
        u = make_copula("clayton", [4.0]).simulate(2000, rng=rng)
        best = select_pair_copula(u)
        assert best.family is CopulaFamily.CLAYTON
        assert best.rotation == 0

    def test_select_negative_dependence_uses_rotation(self, rng):
        u = make_copula("clayton", [3.0], rotation=90).simulate(2000, rng=rng)
        best = select_pair_copula(u, family_set=["clayton", "gumbel"])
        assert best.rotation in (90, 270)
        assert best.tau < 0

    def test_select_without_rotations(self, rng):
        u = make_copula("clayton", [3.0], rotation=90).simulate(1000, rng=rng)
        best = select_pair_copula(u, family_set=["clayton", "frank"], allow_rotations=False)
        assert best.rotation == 0
        assert best.family is CopulaFamily.FRANK

    def test_select_invalid_criterion(self, rng):
        u = rng.uniform(size=(100, 2))
        with pytest.raises(InvalidInputError, match="selection_criterion"):
            select_pair_copula(u, selection_criterion="hqc")

    def test_candidate_rotations(self):
        assert candidate_rotations(CopulaFamily.CLAYTON, 0.3) == (0, 180)
        assert candidate_rotations(CopulaFamily.CLAYTON, -0.3) == (90, 270)
        assert candidate_rotations(CopulaFamily.GAUSSIAN, -0.3) == (0,)
        assert candidate_rotations(CopulaFamily.JOE, -0.3, allow_rotations=False) == (0,)

    def test_information_criteria(self, rng):
        cop = make_copula("frank", [4.0])
        u = cop.simulate(500, rng=rng)
        ll = cop.loglik(u)
        assert cop.aic(u) == pytest.approx(-2 * ll + 2)
        assert cop.bic(u) == pytest.approx(-2 * ll + math.log(500))


class TestSerialization:
    """Tests for dict round-trips."""

    @pytest.mark.parametrize("family,params,rotation", CASES)
    def test_round_trip(self, family, params, rotation):
        cop = make_copula(family, params, rotation)
        restored = BivariateCopula.from_dict(cop.to_dict())
        assert restored == cop
        assert type(restored) is type(cop)
