"""
copulas.py - Bivariate Copula Families

This module defines the pair-copula building blocks of a vine:
- CopulaFamily: Closed set of family tags
- BivariateCopula: Common capability set (cdf, log-density, h-functions
  and their inverses, Kendall's tau, sampling) with rotation handling
- GaussianCopula, StudentTCopula, ClaytonCopula, GumbelCopula,
  FrankCopula, JoeCopula: One subclass per family
- fit_pair_copula / select_pair_copula: Maximum likelihood estimation and
  information-criterion based family selection for a single edge

Conventions:
-----------
Data are passed as an (n, 2) array ``u`` with columns (u1, u2).

    hfunc1(u) = dC/du1 = P(U2 <= u2 | U1 = u1)
    hfunc2(u) = dC/du2 = P(U1 <= u1 | U2 = u2)
    hinv1([u1, w]) solves hfunc1(u1, u2) = w for u2
    hinv2([w, u2]) solves hfunc2(u1, u2) = w for u1

Rotations (Clayton, Gumbel, Joe only) follow the usual counter-clockwise
convention: 90 and 270 degrees produce negative dependence, 180 degrees
swaps the tail.

Example Usage:
-------------
    >>> import numpy as np
    >>> from vine_lab.copulas import ClaytonCopula, select_pair_copula
    >>>
    >>> cop = ClaytonCopula(parameters=(2.0,))
    >>> u = cop.simulate(1000, rng=np.random.default_rng(0))
    >>> best = select_pair_copula(u)
    >>> print(best.family, round(best.tau, 2))
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Sequence, Tuple, Type

import numpy as np
from loguru import logger
from scipy import integrate, optimize, special, stats

from .errors import FittingError, InvalidInputError

# Probabilities are kept inside [EPS, 1 - EPS] before any quantile transform.
EPS = 1e-10

ROTATIONS = (0, 90, 180, 270)


# =============================================================================
# FAMILY TAGS
# =============================================================================

class CopulaFamily(str, Enum):
    """Supported bivariate copula families."""
    GAUSSIAN = "gaussian"
    STUDENT_T = "t"
    CLAYTON = "clayton"
    GUMBEL = "gumbel"
    FRANK = "frank"
    JOE = "joe"

    @classmethod
    def parse(cls, value: Any) -> "CopulaFamily":
        """
        Convert a tag (enum member or case-insensitive string) to a family.

        ``"student"`` and ``"student_t"`` are accepted as aliases of ``"t"``.

        Raises
        ------
        InvalidInputError
            If the name is not a known family.
        """
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        if name in ("student", "student_t", "studentt"):
            name = "t"
        try:
            return cls(name)
        except ValueError:
            valid = ", ".join(f.value for f in cls)
            raise InvalidInputError(
                f"Unknown copula family {value!r}; expected one of: {valid}"
            ) from None


def _clip_unit(x: np.ndarray) -> np.ndarray:
    return np.clip(x, EPS, 1.0 - EPS)


def _as_pairs(u: np.ndarray) -> np.ndarray:
    u = np.asarray(u, dtype=float)
    if u.ndim != 2 or u.shape[1] != 2:
        raise InvalidInputError(f"Copula data must have shape (n, 2), got {u.shape}")
    return _clip_unit(u)


def _bisect_unit(f, target: np.ndarray, n_iter: int = 60) -> np.ndarray:
    """Invert an increasing function on (0, 1) element-wise by bisection."""
    target = _clip_unit(target)
    lo = np.full_like(target, EPS)
    hi = np.full_like(target, 1.0 - EPS)
    for _ in range(n_iter):
        mid = 0.5 * (lo + hi)
        below = f(mid) < target
        lo = np.where(below, mid, lo)
        hi = np.where(below, hi, mid)
    return 0.5 * (lo + hi)


def _invert_tau(tau_of, tau: float, lo: float, hi: float) -> float:
    """Solve tau_of(theta) = tau on [lo, hi], clamping to the attainable range."""
    t_lo, t_hi = tau_of(lo), tau_of(hi)
    if tau <= t_lo:
        return lo
    if tau >= t_hi:
        return hi
    return optimize.brentq(lambda th: tau_of(th) - tau, lo, hi, xtol=1e-10)


# =============================================================================
# BASE CLASS
# =============================================================================

@dataclass(frozen=True)
class BivariateCopula:
    """
    A parametric bivariate copula with an optional rotation.

    Subclasses implement the unrotated ("base") quantities ``_cdf0``,
    ``_h1_0``, ``_logpdf0`` and ``_tau0``; the rotated versions exposed to
    callers are derived here. All six supported families are exchangeable,
    so ``hfunc2`` is ``hfunc1`` with the arguments swapped.

    Parameters
    ----------
    parameters : tuple of float
        Family parameters (see each subclass for the layout and domain).
    rotation : {0, 90, 180, 270}, default=0
        Counter-clockwise rotation; non-zero only for rotatable families.

    Raises
    ------
    InvalidInputError
        If the parameter count, domain or rotation is invalid.
    """
    parameters: Tuple[float, ...]
    rotation: int = 0

    family: ClassVar[CopulaFamily]
    n_params: ClassVar[int] = 1
    rotatable: ClassVar[bool] = False
    lower_bounds: ClassVar[Tuple[float, ...]] = ()
    upper_bounds: ClassVar[Tuple[float, ...]] = ()

    def __post_init__(self):
        params = tuple(float(p) for p in np.atleast_1d(self.parameters))
        object.__setattr__(self, "parameters", params)
        object.__setattr__(self, "rotation", int(self.rotation))
        self.validate()

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate(self) -> None:
        """Check parameter count, parameter domain and rotation."""
        name = self.family.value
        if len(self.parameters) != self.n_params:
            raise InvalidInputError(
                f"{name} copula expects {self.n_params} parameter(s), "
                f"got {len(self.parameters)}"
            )
        if not all(math.isfinite(p) for p in self.parameters):
            raise InvalidInputError(f"{name} copula parameters must be finite: {self.parameters}")
        if self.rotation not in ROTATIONS:
            raise InvalidInputError(f"rotation must be one of {ROTATIONS}, got {self.rotation}")
        if self.rotation != 0 and not self.rotatable:
            raise InvalidInputError(f"{name} copula cannot be rotated (rotation={self.rotation})")
        for value, lo, hi, label in zip(
            self.parameters, self.lower_bounds, self.upper_bounds, self.parameter_names()
        ):
            if not (lo <= value <= hi):
                raise InvalidInputError(
                    f"{name} copula parameter {label}={value} outside [{lo}, {hi}]"
                )
        self._validate_domain()

    def _validate_domain(self) -> None:
        """Hook for open-interval constraints the box bounds cannot express."""

    @classmethod
    def parameter_names(cls) -> Tuple[str, ...]:
        return ("theta",)

    # -------------------------------------------------------------------------
    # Rotation plumbing
    # -------------------------------------------------------------------------

    def _rotate(self, u: np.ndarray) -> np.ndarray:
        if self.rotation == 90:
            return np.column_stack([1.0 - u[:, 0], u[:, 1]])
        if self.rotation == 180:
            return 1.0 - u
        if self.rotation == 270:
            return np.column_stack([u[:, 0], 1.0 - u[:, 1]])
        return u

    def logpdf(self, u: np.ndarray) -> np.ndarray:
        """Log copula density at each row of ``u``."""
        r = self._rotate(_as_pairs(u))
        return self._logpdf0(r[:, 0], r[:, 1])

    def pdf(self, u: np.ndarray) -> np.ndarray:
        """Copula density at each row of ``u``."""
        return np.exp(self.logpdf(u))

    def cdf(self, u: np.ndarray) -> np.ndarray:
        """Copula distribution function C(u1, u2) at each row of ``u``."""
        u = _as_pairs(u)
        u1, u2 = u[:, 0], u[:, 1]
        if self.rotation == 90:
            return u2 - self._cdf0(1.0 - u1, u2)
        if self.rotation == 180:
            return u1 + u2 - 1.0 + self._cdf0(1.0 - u1, 1.0 - u2)
        if self.rotation == 270:
            return u1 - self._cdf0(u1, 1.0 - u2)
        return self._cdf0(u1, u2)

    def hfunc1(self, u: np.ndarray) -> np.ndarray:
        """Conditional distribution of U2 given U1 = u1."""
        r = self._rotate(_as_pairs(u))
        h = self._h1_0(r[:, 0], r[:, 1])
        if self.rotation in (180, 270):
            h = 1.0 - h
        return _clip_unit(h)

    def hfunc2(self, u: np.ndarray) -> np.ndarray:
        """Conditional distribution of U1 given U2 = u2."""
        r = self._rotate(_as_pairs(u))
        h = self._h1_0(r[:, 1], r[:, 0])
        if self.rotation in (90, 180):
            h = 1.0 - h
        return _clip_unit(h)

    def hinv1(self, u: np.ndarray) -> np.ndarray:
        """Inverse of ``hfunc1`` in its second argument; ``u`` holds (u1, w)."""
        u = _as_pairs(u)
        cond, w = u[:, 0], u[:, 1]
        if self.rotation in (90, 180):
            cond = 1.0 - cond
        if self.rotation in (180, 270):
            w = 1.0 - w
        out = self._hinv1_0(cond, w)
        if self.rotation in (180, 270):
            out = 1.0 - out
        return _clip_unit(out)

    def hinv2(self, u: np.ndarray) -> np.ndarray:
        """Inverse of ``hfunc2`` in its first argument; ``u`` holds (w, u2)."""
        u = _as_pairs(u)
        w, cond = u[:, 0], u[:, 1]
        if self.rotation in (180, 270):
            cond = 1.0 - cond
        if self.rotation in (90, 180):
            w = 1.0 - w
        out = self._hinv1_0(cond, w)
        if self.rotation in (90, 180):
            out = 1.0 - out
        return _clip_unit(out)

    # -------------------------------------------------------------------------
    # Summary statistics
    # -------------------------------------------------------------------------

    @property
    def tau(self) -> float:
        """Kendall's tau implied by the parameters (sign follows the rotation)."""
        t = self._tau0()
        return -t if self.rotation in (90, 270) else t

    @property
    def npars(self) -> int:
        return self.n_params

    def loglik(self, u: np.ndarray) -> float:
        """Log-likelihood of the sample ``u``."""
        return float(np.sum(self.logpdf(u)))

    def aic(self, u: np.ndarray) -> float:
        return -2.0 * self.loglik(u) + 2.0 * self.npars

    def bic(self, u: np.ndarray) -> float:
        n = np.asarray(u).shape[0]
        return -2.0 * self.loglik(u) + math.log(n) * self.npars

    def simulate(self, n: int, rng: Optional[np.random.Generator] = None) -> np.ndarray:
        """Draw ``n`` pairs by conditional inversion of ``hfunc1``."""
        rng = rng if rng is not None else np.random.default_rng()
        w = rng.uniform(size=(int(n), 2))
        u2 = self.hinv1(w)
        return np.column_stack([w[:, 0], u2])

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family": self.family.value,
            "rotation": self.rotation,
            "parameters": list(self.parameters),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "BivariateCopula":
        family = CopulaFamily.parse(data["family"])
        return COPULA_REGISTRY[family](
            parameters=tuple(data["parameters"]),
            rotation=int(data.get("rotation", 0)),
        )

    def __str__(self) -> str:
        pars = ", ".join(f"{p:.4g}" for p in self.parameters)
        rot = f", {self.rotation}°" if self.rotation else ""
        return f"{self.family.value}({pars}{rot})"

    # -------------------------------------------------------------------------
    # Estimation hooks
    # -------------------------------------------------------------------------

    @classmethod
    def tau_to_parameters(cls, tau: float) -> Tuple[float, ...]:
        """Invert Kendall's tau (of the unrotated copula) to parameters."""
        raise NotImplementedError

    @classmethod
    def fit_bounds(cls, tau: float) -> List[Tuple[float, float]]:
        """Optimisation box for maximum likelihood, given the empirical tau."""
        return list(zip(cls.lower_bounds, cls.upper_bounds))

    # -------------------------------------------------------------------------
    # Family-specific kernels (unrotated)
    # -------------------------------------------------------------------------

    def _cdf0(self, u1: np.ndarray, u2: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def _h1_0(self, u1: np.ndarray, u2: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def _hinv1_0(self, u1: np.ndarray, w: np.ndarray) -> np.ndarray:
        return _bisect_unit(lambda v: self._h1_0(u1, v), w)

    def _logpdf0(self, u1: np.ndarray, u2: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def _tau0(self) -> float:
        raise NotImplementedError


# =============================================================================
# ELLIPTICAL FAMILIES
# =============================================================================

@dataclass(frozen=True)
class GaussianCopula(BivariateCopula):
    """Gaussian copula; ``parameters = (rho,)`` with rho in (-1, 1)."""
    family: ClassVar[CopulaFamily] = CopulaFamily.GAUSSIAN
    lower_bounds: ClassVar[Tuple[float, ...]] = (-0.9999,)
    upper_bounds: ClassVar[Tuple[float, ...]] = (0.9999,)

    @classmethod
    def parameter_names(cls) -> Tuple[str, ...]:
        return ("rho",)

    @property
    def rho(self) -> float:
        return self.parameters[0]

    def _cdf0(self, u1, u2):
        rho = self.rho
        x = np.column_stack([special.ndtri(u1), special.ndtri(u2)])
        mvn = stats.multivariate_normal(mean=[0.0, 0.0], cov=[[1.0, rho], [rho, 1.0]])
        return np.atleast_1d(mvn.cdf(x))

    def _h1_0(self, u1, u2):
        rho = self.rho
        x1, x2 = special.ndtri(u1), special.ndtri(u2)
        return special.ndtr((x2 - rho * x1) / math.sqrt(1.0 - rho * rho))

    def _hinv1_0(self, u1, w):
        rho = self.rho
        x1 = special.ndtri(u1)
        return special.ndtr(special.ndtri(w) * math.sqrt(1.0 - rho * rho) + rho * x1)

    def _logpdf0(self, u1, u2):
        rho = self.rho
        x1, x2 = special.ndtri(u1), special.ndtri(u2)
        one_m = 1.0 - rho * rho
        return (
            -0.5 * math.log(one_m)
            - (rho * rho * (x1 * x1 + x2 * x2) - 2.0 * rho * x1 * x2) / (2.0 * one_m)
        )

    def _tau0(self) -> float:
        return 2.0 / math.pi * math.asin(self.rho)

    @classmethod
    def tau_to_parameters(cls, tau: float) -> Tuple[float, ...]:
        rho = math.sin(math.pi * tau / 2.0)
        return (float(np.clip(rho, cls.lower_bounds[0], cls.upper_bounds[0])),)


@dataclass(frozen=True)
class StudentTCopula(BivariateCopula):
    """Student-t copula; ``parameters = (rho, nu)`` with rho in (-1, 1), nu > 2."""
    family: ClassVar[CopulaFamily] = CopulaFamily.STUDENT_T
    n_params: ClassVar[int] = 2
    lower_bounds: ClassVar[Tuple[float, ...]] = (-0.9999, 2.01)
    upper_bounds: ClassVar[Tuple[float, ...]] = (0.9999, 50.0)

    # Starting degrees of freedom for maximum likelihood.
    DEFAULT_NU: ClassVar[float] = 6.0

    @classmethod
    def parameter_names(cls) -> Tuple[str, ...]:
        return ("rho", "nu")

    @property
    def rho(self) -> float:
        return self.parameters[0]

    @property
    def nu(self) -> float:
        return self.parameters[1]

    def _cdf0(self, u1, u2):
        rho, nu = self.rho, self.nu
        x = np.column_stack([special.stdtrit(nu, u1), special.stdtrit(nu, u2)])
        mvt = stats.multivariate_t(loc=[0.0, 0.0], shape=[[1.0, rho], [rho, 1.0]], df=nu)
        return np.atleast_1d(mvt.cdf(x, random_state=0))

    def _h1_0(self, u1, u2):
        rho, nu = self.rho, self.nu
        x1, x2 = special.stdtrit(nu, u1), special.stdtrit(nu, u2)
        scale = np.sqrt((nu + x1 * x1) * (1.0 - rho * rho) / (nu + 1.0))
        return special.stdtr(nu + 1.0, (x2 - rho * x1) / scale)

    def _hinv1_0(self, u1, w):
        rho, nu = self.rho, self.nu
        x1 = special.stdtrit(nu, u1)
        scale = np.sqrt((nu + x1 * x1) * (1.0 - rho * rho) / (nu + 1.0))
        x2 = special.stdtrit(nu + 1.0, w) * scale + rho * x1
        return special.stdtr(nu, x2)

    def _logpdf0(self, u1, u2):
        rho, nu = self.rho, self.nu
        x1, x2 = special.stdtrit(nu, u1), special.stdtrit(nu, u2)
        one_m = 1.0 - rho * rho
        quad = (x1 * x1 - 2.0 * rho * x1 * x2 + x2 * x2) / (nu * one_m)
        const = (
            special.gammaln((nu + 2.0) / 2.0)
            + special.gammaln(nu / 2.0)
            - 2.0 * special.gammaln((nu + 1.0) / 2.0)
            - 0.5 * math.log(one_m)
        )
        return (
            const
            - (nu + 2.0) / 2.0 * np.log1p(quad)
            + (nu + 1.0) / 2.0 * (np.log1p(x1 * x1 / nu) + np.log1p(x2 * x2 / nu))
        )

    def _tau0(self) -> float:
        return 2.0 / math.pi * math.asin(self.rho)

    @classmethod
    def tau_to_parameters(cls, tau: float) -> Tuple[float, ...]:
        rho = math.sin(math.pi * tau / 2.0)
        return (float(np.clip(rho, cls.lower_bounds[0], cls.upper_bounds[0])), cls.DEFAULT_NU)


# =============================================================================
# ARCHIMEDEAN FAMILIES
# =============================================================================

@dataclass(frozen=True)
class ClaytonCopula(BivariateCopula):
    """Clayton copula; ``parameters = (theta,)`` with theta > 0 (lower tail)."""
    family: ClassVar[CopulaFamily] = CopulaFamily.CLAYTON
    rotatable: ClassVar[bool] = True
    lower_bounds: ClassVar[Tuple[float, ...]] = (1e-4,)
    upper_bounds: ClassVar[Tuple[float, ...]] = (28.0,)

    def _log_a(self, u1, u2):
        # log(u1^-theta + u2^-theta - 1) without overflow
        th = self.parameters[0]
        a, b = -th * np.log(u1), -th * np.log(u2)
        m = np.maximum(a, b)
        return m + np.log(np.exp(a - m) + np.exp(b - m) - np.exp(-m))

    def _cdf0(self, u1, u2):
        th = self.parameters[0]
        return np.exp(-self._log_a(u1, u2) / th)

    def _h1_0(self, u1, u2):
        th = self.parameters[0]
        return np.exp(-(th + 1.0) * np.log(u1) - (1.0 + 1.0 / th) * self._log_a(u1, u2))

    def _hinv1_0(self, u1, w):
        th = self.parameters[0]
        s = -th / (1.0 + th) * np.log(w) - th * np.log(u1)
        t = -th * np.log(u1)
        log_inner = s + np.log1p(-np.exp(t - s) + np.exp(-s))
        return np.exp(-log_inner / th)

    def _logpdf0(self, u1, u2):
        th = self.parameters[0]
        return (
            math.log1p(th)
            - (1.0 + th) * (np.log(u1) + np.log(u2))
            - (2.0 + 1.0 / th) * self._log_a(u1, u2)
        )

    def _tau0(self) -> float:
        th = self.parameters[0]
        return th / (th + 2.0)

    @classmethod
    def tau_to_parameters(cls, tau: float) -> Tuple[float, ...]:
        theta = 2.0 * tau / (1.0 - tau)
        return (float(np.clip(theta, cls.lower_bounds[0], cls.upper_bounds[0])),)


@dataclass(frozen=True)
class GumbelCopula(BivariateCopula):
    """Gumbel copula; ``parameters = (theta,)`` with theta >= 1 (upper tail)."""
    family: ClassVar[CopulaFamily] = CopulaFamily.GUMBEL
    rotatable: ClassVar[bool] = True
    lower_bounds: ClassVar[Tuple[float, ...]] = (1.0,)
    upper_bounds: ClassVar[Tuple[float, ...]] = (50.0,)

    def _parts(self, u1, u2):
        th = self.parameters[0]
        l1, l2 = -np.log(u1), -np.log(u2)
        s = np.power(l1, th) + np.power(l2, th)
        return th, l1, l2, s, np.power(s, 1.0 / th)

    def _cdf0(self, u1, u2):
        _, _, _, _, a = self._parts(u1, u2)
        return np.exp(-a)

    def _h1_0(self, u1, u2):
        th, l1, _, s, a = self._parts(u1, u2)
        return np.exp(-a + (1.0 / th - 1.0) * np.log(s) + (th - 1.0) * np.log(l1) + l1)

    def _logpdf0(self, u1, u2):
        th, l1, l2, s, a = self._parts(u1, u2)
        return (
            -a
            + l1 + l2
            + (th - 1.0) * (np.log(l1) + np.log(l2))
            + (1.0 / th - 2.0) * np.log(s)
            + np.log(a + th - 1.0)
        )

    def _tau0(self) -> float:
        return 1.0 - 1.0 / self.parameters[0]

    @classmethod
    def tau_to_parameters(cls, tau: float) -> Tuple[float, ...]:
        theta = 1.0 / (1.0 - max(tau, 0.0))
        return (float(np.clip(theta, cls.lower_bounds[0], cls.upper_bounds[0])),)


def _frank_tau(theta: float) -> float:
    if abs(theta) < 1e-8:
        return 0.0
    a = abs(theta)
    debye, _ = integrate.quad(lambda t: t / math.expm1(t) if t > 0 else 1.0, 0.0, a)
    tau = 1.0 - 4.0 / a * (1.0 - debye / a)
    return math.copysign(tau, theta)


@dataclass(frozen=True)
class FrankCopula(BivariateCopula):
    """Frank copula; ``parameters = (theta,)`` with theta != 0 (either sign)."""
    family: ClassVar[CopulaFamily] = CopulaFamily.FRANK
    lower_bounds: ClassVar[Tuple[float, ...]] = (-35.0,)
    upper_bounds: ClassVar[Tuple[float, ...]] = (35.0,)

    # Smallest |theta| used when fitting; theta = 0 is the independence limit.
    MIN_ABS_THETA: ClassVar[float] = 1e-4

    def _validate_domain(self) -> None:
        if self.parameters[0] == 0.0:
            raise InvalidInputError("frank copula parameter theta must be non-zero")

    def _terms(self, u1, u2):
        th = self.parameters[0]
        return th, np.expm1(-th * u1), np.expm1(-th * u2), math.expm1(-th)

    def _cdf0(self, u1, u2):
        th, a, b, k = self._terms(u1, u2)
        return -np.log1p(a * b / k) / th

    def _h1_0(self, u1, u2):
        th, a, b, k = self._terms(u1, u2)
        return np.exp(-th * u1) * b / (k + a * b)

    def _hinv1_0(self, u1, w):
        th = self.parameters[0]
        a, k = np.expm1(-th * u1), math.expm1(-th)
        b = w * k / (np.exp(-th * u1) - w * a)
        return -np.log1p(b) / th

    def _logpdf0(self, u1, u2):
        th, a, b, k = self._terms(u1, u2)
        return math.log(-th * k) - th * (u1 + u2) - 2.0 * np.log(np.abs(k + a * b))

    def _tau0(self) -> float:
        return _frank_tau(self.parameters[0])

    @classmethod
    def tau_to_parameters(cls, tau: float) -> Tuple[float, ...]:
        if abs(tau) < 1e-6:
            return (math.copysign(cls.MIN_ABS_THETA, tau if tau != 0 else 1.0),)
        theta = _invert_tau(_frank_tau, abs(tau), cls.MIN_ABS_THETA, cls.upper_bounds[0])
        return (math.copysign(theta, tau),)

    @classmethod
    def fit_bounds(cls, tau: float) -> List[Tuple[float, float]]:
        if tau >= 0:
            return [(cls.MIN_ABS_THETA, cls.upper_bounds[0])]
        return [(cls.lower_bounds[0], -cls.MIN_ABS_THETA)]


def _joe_tau(theta: float) -> float:
    if abs(theta - 2.0) < 1e-6:
        return 1.0 - float(special.polygamma(1, 2.0))
    return 1.0 + 2.0 / (2.0 - theta) * (special.digamma(2.0) - special.digamma(2.0 / theta + 1.0))


@dataclass(frozen=True)
class JoeCopula(BivariateCopula):
    """Joe copula; ``parameters = (theta,)`` with theta >= 1 (upper tail)."""
    family: ClassVar[CopulaFamily] = CopulaFamily.JOE
    rotatable: ClassVar[bool] = True
    lower_bounds: ClassVar[Tuple[float, ...]] = (1.0,)
    upper_bounds: ClassVar[Tuple[float, ...]] = (30.0,)

    def _parts(self, u1, u2):
        th = self.parameters[0]
        p1, p2 = np.power(1.0 - u1, th), np.power(1.0 - u2, th)
        return th, p1, p2, p1 + p2 - p1 * p2

    def _cdf0(self, u1, u2):
        th, _, _, s = self._parts(u1, u2)
        return 1.0 - np.power(s, 1.0 / th)

    def _h1_0(self, u1, u2):
        th, _, p2, s = self._parts(u1, u2)
        return np.power(s, 1.0 / th - 1.0) * np.power(1.0 - u1, th - 1.0) * (1.0 - p2)

    def _logpdf0(self, u1, u2):
        th, _, _, s = self._parts(u1, u2)
        return (
            (1.0 / th - 2.0) * np.log(s)
            + (th - 1.0) * (np.log1p(-u1) + np.log1p(-u2))
            + np.log(th - 1.0 + s)
        )

    def _tau0(self) -> float:
        return float(_joe_tau(self.parameters[0]))

    @classmethod
    def tau_to_parameters(cls, tau: float) -> Tuple[float, ...]:
        theta = _invert_tau(lambda th: float(_joe_tau(th)), max(tau, 0.0), 1.0, cls.upper_bounds[0])
        return (theta,)


# =============================================================================
# REGISTRY
# =============================================================================

COPULA_REGISTRY: Dict[CopulaFamily, Type[BivariateCopula]] = {
    CopulaFamily.GAUSSIAN: GaussianCopula,
    CopulaFamily.STUDENT_T: StudentTCopula,
    CopulaFamily.CLAYTON: ClaytonCopula,
    CopulaFamily.GUMBEL: GumbelCopula,
    CopulaFamily.FRANK: FrankCopula,
    CopulaFamily.JOE: JoeCopula,
}


def make_copula(
    family: Any,
    parameters: Sequence[float],
    rotation: int = 0
) -> BivariateCopula:
    """
    Construct a copula from a family tag.

    Examples
    --------
    >>> cop = make_copula("gumbel", [2.0], rotation=180)
    >>> round(cop.tau, 2)
    0.5
    """
    return COPULA_REGISTRY[CopulaFamily.parse(family)](
        parameters=tuple(parameters), rotation=rotation
    )


# =============================================================================
# ESTIMATION
# =============================================================================

def empirical_tau(u: np.ndarray) -> float:
    """Kendall's tau-b of the two columns of ``u`` (0.0 if undefined)."""
    tau, _ = stats.kendalltau(u[:, 0], u[:, 1])
    return 0.0 if not np.isfinite(tau) else float(tau)


def candidate_rotations(
    family: CopulaFamily,
    tau: float,
    allow_rotations: bool = True
) -> Tuple[int, ...]:
    """
    Rotations worth trying for ``family`` given the empirical tau.

    Rotatable families only model positive dependence in their base form,
    so negative tau maps to the 90/270 degree versions.
    """
    cls = COPULA_REGISTRY[family]
    if not cls.rotatable or not allow_rotations:
        return (0,)
    return (0, 180) if tau >= 0 else (90, 270)


def _negloglik(cls: Type[BivariateCopula], rotation: int, u: np.ndarray):
    def objective(params) -> float:
        try:
            cop = cls(parameters=tuple(np.atleast_1d(params)), rotation=rotation)
        except InvalidInputError:
            return 1e10
        with np.errstate(all="ignore"):
            ll = cop.loglik(u)
        return -ll if np.isfinite(ll) else 1e10
    return objective


def fit_pair_copula(
    u: np.ndarray,
    family: Any,
    rotation: int = 0,
    method: str = "mle",
    tau: Optional[float] = None
) -> BivariateCopula:
    """
    Estimate the parameters of one family/rotation on pair data.

    Parameters
    ----------
    u : np.ndarray
        Pseudo-observations with shape (n, 2).
    family : CopulaFamily or str
        Family to fit.
    rotation : int, default=0
        Rotation of the fitted copula.
    method : {"mle", "itau"}, default="mle"
        ``"itau"`` inverts Kendall's tau; ``"mle"`` maximises the likelihood
        starting from the tau inversion. The Student-t degrees of freedom are
        always estimated by maximum likelihood.
    tau : float, optional
        Pre-computed empirical Kendall's tau of ``u``.

    Returns
    -------
    BivariateCopula
        The fitted copula.

    Raises
    ------
    FittingError
        If the optimiser does not converge to a finite likelihood.
    """
    u = _as_pairs(u)
    family = CopulaFamily.parse(family)
    cls = COPULA_REGISTRY[family]
    if method not in ("mle", "itau"):
        raise InvalidInputError(f"method must be 'mle' or 'itau', got {method!r}")

    tau = empirical_tau(u) if tau is None else float(tau)
    base_tau = -tau if rotation in (90, 270) else tau
    start = np.array(cls.tau_to_parameters(base_tau), dtype=float)
    bounds = cls.fit_bounds(base_tau)
    start = np.clip(start, [b[0] for b in bounds], [b[1] for b in bounds])

    if method == "itau" and cls.n_params == 1:
        return cls(parameters=tuple(start), rotation=rotation)

    objective = _negloglik(cls, rotation, u)

    if method == "itau":
        # Student-t: rho from tau, nu by profile likelihood.
        rho = start[0]
        lo, hi = bounds[1]
        res = optimize.minimize_scalar(
            lambda nu: objective([rho, nu]), bounds=(lo, hi), method="bounded"
        )
        params = [rho, res.x]
        success, fun = res.success, res.fun
    elif cls.n_params == 1:
        lo, hi = bounds[0]
        res = optimize.minimize_scalar(objective, bounds=(lo, hi), method="bounded",
                                       options={"xatol": 1e-6})
        params = [res.x]
        success, fun = res.success, res.fun
    else:
        res = optimize.minimize(objective, x0=start, method="L-BFGS-B", bounds=bounds)
        params = list(res.x)
        # line-search warnings still count if the start value was improved on
        success, fun = res.success or res.fun <= objective(start), res.fun

    if not success or not np.isfinite(fun) or fun >= 1e10:
        raise FittingError(
            f"{family.value} copula (rotation={rotation}) did not converge "
            f"on {u.shape[0]} observations"
        )

    return cls(parameters=tuple(float(p) for p in params), rotation=rotation)


SELECTION_CRITERIA = ("loglik", "aic", "bic")


def _criterion_value(cop: BivariateCopula, u: np.ndarray, criterion: str) -> float:
    if criterion == "loglik":
        return -cop.loglik(u)
    if criterion == "aic":
        return cop.aic(u)
    return cop.bic(u)


def select_pair_copula(
    u: np.ndarray,
    family_set: Optional[Iterable[Any]] = None,
    selection_criterion: str = "bic",
    method: str = "mle",
    allow_rotations: bool = True
) -> BivariateCopula:
    """
    Fit every candidate family/rotation and keep the best by criterion.

    Parameters
    ----------
    u : np.ndarray
        Pseudo-observations with shape (n, 2).
    family_set : iterable of CopulaFamily or str, optional
        Candidate families. Defaults to all six.
    selection_criterion : {"bic", "aic", "loglik"}, default="bic"
        Lower is better for all three (``"loglik"`` uses the negative).
    method : {"mle", "itau"}, default="mle"
        Parameter estimation method, see ``fit_pair_copula``.
    allow_rotations : bool, default=True
        Whether rotated Archimedean copulas are candidates.

    Returns
    -------
    BivariateCopula
        The winning copula. Ties keep the earlier candidate.

    Raises
    ------
    FittingError
        If no candidate converged.
    """
    if selection_criterion not in SELECTION_CRITERIA:
        raise InvalidInputError(
            f"selection_criterion must be one of {SELECTION_CRITERIA}, got {selection_criterion!r}"
        )
    u = _as_pairs(u)
    families = [CopulaFamily.parse(f) for f in (family_set or list(CopulaFamily))]
    if not families:
        raise InvalidInputError("family_set must contain at least one family")

    tau = empirical_tau(u)
    best: Optional[BivariateCopula] = None
    best_value = math.inf

    for family in families:
        for rotation in candidate_rotations(family, tau, allow_rotations):
            try:
                cop = fit_pair_copula(u, family, rotation=rotation, method=method, tau=tau)
            except FittingError as e:
                logger.debug(f"Skipping candidate: {e}")
                continue
            with np.errstate(all="ignore"):
                value = _criterion_value(cop, u, selection_criterion)
            if np.isfinite(value) and value < best_value:
                best, best_value = cop, value

    if best is None:
        names = ", ".join(f.value for f in families)
        raise FittingError(f"No copula family in [{names}] converged (n={u.shape[0]}, tau={tau:.3f})")

    return best
