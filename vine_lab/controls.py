"""
controls.py - Fitting and Simulation Configuration

This module provides the two configuration objects of vine_lab:
- FitControls: How the vine structure and pair copulas are selected
- SimulationConfig: How many paths/trials to draw and how to score them

Both are frozen dataclasses validated at construction time, so an invalid
setting fails where it is written rather than deep inside a fit.

Example Usage:
-------------
    >>> from vine_lab.controls import FitControls, SimulationConfig
    >>>
    >>> controls = FitControls(family_set=("gaussian", "t"), trunc_lvl=2)
    >>> config = SimulationConfig(fit=controls, n_trials=10, seed=123,
    ...                           n_multiplier=2.0)
    >>> config.resolve_n(500)
    1000
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .copulas import SELECTION_CRITERIA, CopulaFamily
from .errors import InvalidInputError

TREE_CRITERIA = ("tau", "rho")
PARAMETRIC_METHODS = ("mle", "itau")
QUANTILE_METHODS = ("median_unbiased", "linear")

ALL_FAMILIES: Tuple[str, ...] = tuple(f.value for f in CopulaFamily)


# =============================================================================
# FIT CONTROLS
# =============================================================================

@dataclass(frozen=True)
class FitControls:
    """
    Controls for R-vine structure and pair-copula selection.

    Parameters
    ----------
    family_set : tuple of str, default=all six families
        Candidate families for every edge.
    tree_criterion : {"tau", "rho"}, default="tau"
        Dependence measure maximised by each spanning tree.
    trunc_lvl : int, optional
        Number of trees to fit; None (or ``math.inf``) fits all ``d-1``.
    selection_criterion : {"bic", "aic", "loglik"}, default="bic"
        Criterion used to choose among candidate families.
    parametric_method : {"mle", "itau"}, default="mle"
        Parameter estimation method.
    allow_rotations : bool, default=True
        Whether rotated Clayton/Gumbel/Joe are candidates.
    num_threads : int, default=1
        Threads used to fit the edges of one tree concurrently.

    Raises
    ------
    InvalidInputError
        If any setting is outside its allowed values.
    """
    family_set: Tuple[str, ...] = ALL_FAMILIES
    tree_criterion: str = "tau"
    trunc_lvl: Optional[int] = None
    selection_criterion: str = "bic"
    parametric_method: str = "mle"
    allow_rotations: bool = True
    num_threads: int = 1

    def __post_init__(self):
        if isinstance(self.family_set, str):
            raise InvalidInputError("family_set must be a sequence of family names, not a string")
        families = tuple(dict.fromkeys(CopulaFamily.parse(f).value for f in self.family_set))
        if not families:
            raise InvalidInputError("family_set must contain at least one family")
        object.__setattr__(self, "family_set", families)

        if self.tree_criterion not in TREE_CRITERIA:
            raise InvalidInputError(
                f"tree_criterion must be one of {TREE_CRITERIA}, got {self.tree_criterion!r}"
            )
        if self.selection_criterion not in SELECTION_CRITERIA:
            raise InvalidInputError(
                f"selection_criterion must be one of {SELECTION_CRITERIA}, "
                f"got {self.selection_criterion!r}"
            )
        if self.parametric_method not in PARAMETRIC_METHODS:
            raise InvalidInputError(
                f"parametric_method must be one of {PARAMETRIC_METHODS}, "
                f"got {self.parametric_method!r}"
            )

        trunc = self.trunc_lvl
        if trunc is not None:
            if isinstance(trunc, float) and math.isinf(trunc) and trunc > 0:
                trunc = None
            elif int(trunc) != trunc or trunc < 0:
                raise InvalidInputError(f"trunc_lvl must be a non-negative integer, got {trunc}")
            else:
                trunc = int(trunc)
        object.__setattr__(self, "trunc_lvl", trunc)

        if self.num_threads < 1:
            raise InvalidInputError(f"num_threads must be >= 1, got {self.num_threads}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family_set": list(self.family_set),
            "tree_criterion": self.tree_criterion,
            "trunc_lvl": self.trunc_lvl,
            "selection_criterion": self.selection_criterion,
            "parametric_method": self.parametric_method,
            "allow_rotations": self.allow_rotations,
        }


# =============================================================================
# SIMULATION CONFIG
# =============================================================================

@dataclass(frozen=True)
class SimulationConfig:
    """
    End-to-end simulation settings.

    Parameters
    ----------
    fit : FitControls
        Vine fitting controls.
    n : int, optional
        Number of simulated rows; None means ``n_multiplier`` times the
        historical row count.
    n_multiplier : float, default=1.0
        Scale applied to the historical row count when ``n`` is None.
    n_trials : int, default=5
        Independent sampling trials; the best-scoring one is kept.
    seed : int, optional
        Root seed. None draws fresh OS entropy (non-reproducible).
    quantile_method : {"median_unbiased", "linear"}
        Sample quantile definition used to map uniforms back to returns.
    kendall_weight : float, default=0.5
        Weight of the Kendall discrepancy in the score; Pearson gets the rest.
    max_workers : int, default=1
        Threads used to run trials concurrently.

    Notes
    -----
    ``n`` and ``n_trials`` are checked by the runner (``SamplingError``), not
    here, so the same error surfaces regardless of the entry point.
    """
    fit: FitControls = field(default_factory=FitControls)
    n: Optional[int] = None
    n_multiplier: float = 1.0
    n_trials: int = 5
    seed: Optional[int] = None
    quantile_method: str = "median_unbiased"
    kendall_weight: float = 0.5
    max_workers: int = 1

    def __post_init__(self):
        if self.n_multiplier <= 0:
            raise InvalidInputError(f"n_multiplier must be positive, got {self.n_multiplier}")
        if self.quantile_method not in QUANTILE_METHODS:
            raise InvalidInputError(
                f"quantile_method must be one of {QUANTILE_METHODS}, got {self.quantile_method!r}"
            )
        if not 0.0 <= self.kendall_weight <= 1.0:
            raise InvalidInputError(f"kendall_weight must be in [0, 1], got {self.kendall_weight}")
        if self.max_workers < 1:
            raise InvalidInputError(f"max_workers must be >= 1, got {self.max_workers}")

    @property
    def pearson_weight(self) -> float:
        return 1.0 - self.kendall_weight

    def resolve_n(self, n_obs: int) -> int:
        """Number of rows to simulate for a history of ``n_obs`` rows."""
        if self.n is not None:
            return int(self.n)
        return int(round(n_obs * self.n_multiplier))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fit": self.fit.to_dict(),
            "n": self.n,
            "n_multiplier": self.n_multiplier,
            "n_trials": self.n_trials,
            "seed": self.seed,
            "quantile_method": self.quantile_method,
            "kendall_weight": self.kendall_weight,
        }
