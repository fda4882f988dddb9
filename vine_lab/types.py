"""
types.py - Core Data Structures and Type Definitions for Vine Lab

This module defines the fundamental data structures used throughout vine_lab:
- ReturnMatrix: Historical (or simulated) asset returns with column names
- VineEdge: One fitted pair copula of a regular vine
- VineModel: A fitted R-vine copula (tree sequence + pair copulas)
- SimulationTrial / SimulationResult: Outputs of the multi-trial runner
- CorrelationDiagnostics: Pearson correlation comparison of the kept trial
- PortfolioWeights / FrontierPoint: Outputs of the weight provider
- OptimizationResult / Scenario: Mean-variance optimisation plumbing

Design Principles:
-----------------
1. Immutability where practical (frozen dataclasses, read-only arrays)
2. Validation at construction time (fail-fast)
3. Numpy-style docstrings throughout

Example Usage:
-------------
    >>> import numpy as np
    >>> from vine_lab.types import ReturnMatrix
    >>>
    >>> R = ReturnMatrix(values=np.random.randn(250, 3) * 0.01,
    ...                  columns=("SPY", "TLT", "GLD"))
    >>> print(f"{R.n_obs} observations of {R.n_assets} assets")
    250 observations of 3 assets
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import connected_components

from .copulas import BivariateCopula
from .errors import InvalidInputError


def _readonly(x: np.ndarray) -> np.ndarray:
    x = np.array(x, dtype=float, copy=True)
    x.setflags(write=False)
    return x


# =============================================================================
# RETURN MATRIX
# =============================================================================

@dataclass(frozen=True, eq=False)
class ReturnMatrix:
    """
    A T x d matrix of per-period asset returns.

    Parameters
    ----------
    values : np.ndarray
        Returns with shape (T, d). Copied and stored read-only.
    columns : tuple of str, optional
        Asset names. Defaults to ``asset_0 .. asset_{d-1}``.
    index : np.ndarray, optional
        Row labels (usually dates) with length T.

    Raises
    ------
    InvalidInputError
        If ``values`` is not a finite 2-D array with at least one row, or if
        ``columns`` / ``index`` do not match its shape.

    Examples
    --------
    >>> R = ReturnMatrix.from_array(np.zeros((10, 2)) + [[0.01, 0.02]])
    >>> R.columns
    ('asset_0', 'asset_1')
    """
    values: np.ndarray
    columns: Tuple[str, ...] = ()
    index: Optional[np.ndarray] = None

    def __post_init__(self):
        values = np.asarray(self.values, dtype=float)
        if values.ndim != 2:
            raise InvalidInputError(f"Return matrix must be 2D, got shape {values.shape}")
        if values.shape[0] < 1 or values.shape[1] < 1:
            raise InvalidInputError(f"Return matrix must be non-empty, got shape {values.shape}")
        if not np.all(np.isfinite(values)):
            raise InvalidInputError("Return matrix contains NaN or infinite values")

        columns = tuple(str(c) for c in self.columns) or tuple(
            f"asset_{i}" for i in range(values.shape[1])
        )
        if len(columns) != values.shape[1]:
            raise InvalidInputError(
                f"Column names mismatch: {len(columns)} names for {values.shape[1]} columns"
            )
        if len(set(columns)) != len(columns):
            raise InvalidInputError(f"Column names must be unique: {columns}")

        index = self.index
        if index is not None:
            index = np.asarray(index)
            if index.shape[0] != values.shape[0]:
                raise InvalidInputError(
                    f"Index length mismatch: {index.shape[0]} labels for {values.shape[0]} rows"
                )

        object.__setattr__(self, "values", _readonly(values))
        object.__setattr__(self, "columns", columns)
        object.__setattr__(self, "index", index)

    @classmethod
    def from_array(
        cls,
        values: np.ndarray,
        columns: Optional[Sequence[str]] = None
    ) -> "ReturnMatrix":
        """Wrap a bare array, generating default column names if needed."""
        return cls(values=values, columns=tuple(columns or ()))

    @property
    def n_obs(self) -> int:
        """Number of rows (periods)."""
        return self.values.shape[0]

    @property
    def n_assets(self) -> int:
        """Number of columns (assets)."""
        return self.values.shape[1]

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    def column(self, name: str) -> np.ndarray:
        """Return one column by asset name."""
        try:
            return self.values[:, self.columns.index(name)]
        except ValueError:
            raise InvalidInputError(f"Unknown column {name!r}; have {list(self.columns)}") from None

    def drop(self, columns: Sequence[str]) -> "ReturnMatrix":
        """
        Return a new matrix without the named columns.

        Used to separate a risk-free series (e.g. T-bill returns) from the
        risky assets before fitting.
        """
        missing = [c for c in columns if c not in self.columns]
        if missing:
            raise InvalidInputError(f"Cannot drop unknown columns: {missing}")
        keep = [i for i, c in enumerate(self.columns) if c not in set(columns)]
        if not keep:
            raise InvalidInputError("Cannot drop every column of a return matrix")
        return ReturnMatrix(
            values=self.values[:, keep],
            columns=tuple(self.columns[i] for i in keep),
            index=self.index,
        )

    def __repr__(self) -> str:
        return f"ReturnMatrix(n_obs={self.n_obs}, columns={list(self.columns)})"


# =============================================================================
# VINE COPULA MODEL
# =============================================================================

@dataclass(frozen=True)
class VineEdge:
    """
    One pair copula of a regular vine.

    The edge joins two nodes of the previous tree and models the dependence
    of its conditioned pair given its conditioning set:

        c_{a,b | D}  with  (a, b) = conditioned, D = conditioning

    Parameters
    ----------
    tree : int
        Tree level (0-based; tree 0 joins the original variables).
    conditioned : tuple of int
        The two conditioned variable indices ``(a, b)``. The copula's first
        argument corresponds to ``a``.
    conditioning : tuple of int
        Sorted conditioning variable indices; empty in tree 0.
    copula : BivariateCopula
        The fitted pair copula.
    nodes : tuple of tuple of int
        All-sets of the two lower-tree nodes this edge joins.
    crit : float
        Tree criterion value (Kendall tau or Spearman rho) of the edge data.
    loglik : float
        Log-likelihood contribution of the edge.
    """
    tree: int
    conditioned: Tuple[int, int]
    conditioning: Tuple[int, ...]
    copula: BivariateCopula
    nodes: Tuple[Tuple[int, ...], Tuple[int, ...]] = ((), ())
    crit: float = 0.0
    loglik: float = 0.0

    def __post_init__(self):
        a, b = (int(v) for v in self.conditioned)
        if a == b:
            raise InvalidInputError(f"Edge conditioned pair must be distinct, got ({a}, {b})")
        cond = tuple(sorted(int(v) for v in self.conditioning))
        if a in cond or b in cond:
            raise InvalidInputError(
                f"Conditioned pair ({a}, {b}) overlaps conditioning set {cond}"
            )
        if len(cond) != self.tree:
            raise InvalidInputError(
                f"Edge in tree {self.tree} needs {self.tree} conditioning variables, got {cond}"
            )
        nodes = self.nodes
        if nodes == ((), ()):
            nodes = (tuple(sorted((a,) + cond)), tuple(sorted((b,) + cond)))
        nodes = tuple(tuple(sorted(int(v) for v in n)) for n in nodes)
        object.__setattr__(self, "conditioned", (a, b))
        object.__setattr__(self, "conditioning", cond)
        object.__setattr__(self, "nodes", nodes)

    @property
    def all_set(self) -> Tuple[int, ...]:
        """Union of conditioned and conditioning variables (sorted)."""
        return tuple(sorted(self.conditioned + self.conditioning))

    @property
    def label(self) -> str:
        a, b = self.conditioned
        if not self.conditioning:
            return f"{a},{b}"
        return f"{a},{b};{','.join(str(v) for v in self.conditioning)}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tree": self.tree,
            "conditioned": list(self.conditioned),
            "conditioning": list(self.conditioning),
            "nodes": [list(n) for n in self.nodes],
            "copula": self.copula.to_dict(),
            "crit": self.crit,
            "loglik": self.loglik,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VineEdge":
        return cls(
            tree=int(data["tree"]),
            conditioned=tuple(data["conditioned"]),
            conditioning=tuple(data["conditioning"]),
            copula=BivariateCopula.from_dict(data["copula"]),
            nodes=tuple(tuple(n) for n in data.get("nodes", ((), ()))),
            crit=float(data.get("crit", 0.0)),
            loglik=float(data.get("loglik", 0.0)),
        )


@dataclass(frozen=True)
class VineModel:
    """
    A fitted regular-vine copula over ``d`` variables.

    The model is a nested sequence of trees. Tree 0 is a spanning tree on the
    variables; tree ``t`` is a spanning tree whose nodes are the edges of
    tree ``t-1``, and two of those nodes may only be joined if they share a
    node (proximity condition). Tree ``t`` therefore has ``d-1-t`` edges.
    Trees beyond ``trunc_lvl`` are independence copulas and are not stored.

    Parameters
    ----------
    d : int
        Number of variables.
    trees : tuple of tuple of VineEdge
        Fitted edges per tree level.
    columns : tuple of str
        Variable names, aligned with indices ``0..d-1``.
    trunc_lvl : int, optional
        Truncation level; None means no truncation.
    family_set : tuple of str
        Families that were candidates during selection.
    tree_criterion : str
        Dependence measure that drove the spanning trees ("tau" or "rho").
    selection_criterion : str
        Criterion used to pick each pair copula.
    nobs : int
        Number of observations the model was fitted on.
    loglik : float
        Total log-likelihood of the fitted model.

    Raises
    ------
    InvalidInputError
        If the tree sequence does not form a regular vine.

    Notes
    -----
    Instances are immutable and safe to share between threads. The sampling
    order is derived once on first access to ``sampling_plan``.
    """
    d: int
    trees: Tuple[Tuple[VineEdge, ...], ...]
    columns: Tuple[str, ...] = ()
    trunc_lvl: Optional[int] = None
    family_set: Tuple[str, ...] = ()
    tree_criterion: str = "tau"
    selection_criterion: str = "bic"
    nobs: int = 0
    loglik: float = 0.0

    def __post_init__(self):
        trees = tuple(tuple(t) for t in self.trees)
        object.__setattr__(self, "trees", trees)
        columns = tuple(str(c) for c in self.columns) or tuple(
            f"asset_{i}" for i in range(self.d)
        )
        object.__setattr__(self, "columns", columns)
        object.__setattr__(self, "family_set", tuple(str(f) for f in self.family_set))
        self.validate()

    def validate(self) -> None:
        """
        Check the regular-vine property of the tree sequence.

        Raises
        ------
        InvalidInputError
            On any inconsistency (edge counts, node sets, proximity,
            connectivity, truncation).
        """
        d = self.d
        if d < 2:
            raise InvalidInputError(f"A vine needs at least 2 variables, got d={d}")
        if len(self.columns) != d:
            raise InvalidInputError(f"Column names mismatch: {len(self.columns)} names for d={d}")

        expected_levels = d - 1 if self.trunc_lvl is None else min(self.trunc_lvl, d - 1)
        if self.trunc_lvl is not None and self.trunc_lvl < 0:
            raise InvalidInputError(f"trunc_lvl must be >= 0, got {self.trunc_lvl}")
        if len(self.trees) != expected_levels:
            raise InvalidInputError(
                f"Expected {expected_levels} trees (d={d}, trunc_lvl={self.trunc_lvl}), "
                f"got {len(self.trees)}"
            )

        # all-set of each lower-tree node -> the nodes it joins one level down
        prev_nodes: Dict[Tuple[int, ...], Tuple[Tuple[int, ...], ...]] = {(i,): () for i in range(d)}
        for t, edges in enumerate(self.trees):
            if len(edges) != d - 1 - t:
                raise InvalidInputError(
                    f"Tree {t} must have {d - 1 - t} edges, got {len(edges)}"
                )
            position = {node: i for i, node in enumerate(prev_nodes)}
            rows, cols = [], []
            for edge in edges:
                if edge.tree != t:
                    raise InvalidInputError(f"Edge {edge.label} is labelled tree {edge.tree}, found in tree {t}")
                n1, n2 = edge.nodes
                if n1 not in position or n2 not in position:
                    raise InvalidInputError(f"Edge {edge.label} in tree {t} joins unknown nodes {edge.nodes}")
                shared = set(n1) & set(n2)
                if len(shared) != t or (t > 0 and not set(prev_nodes[n1]) & set(prev_nodes[n2])):
                    raise InvalidInputError(
                        f"Edge {edge.label} in tree {t} violates the proximity condition"
                    )
                x, y = set(n1) - shared, set(n2) - shared
                if (x, y) != ({edge.conditioned[0]}, {edge.conditioned[1]}) or \
                        tuple(sorted(shared)) != edge.conditioning:
                    raise InvalidInputError(
                        f"Edge {edge.label} in tree {t} is inconsistent with its nodes {edge.nodes}"
                    )
                rows.append(position[n1])
                cols.append(position[n2])
            adjacency = csr_matrix(
                (np.ones(len(rows)), (rows, cols)), shape=(len(prev_nodes), len(prev_nodes))
            )
            n_components, _ = connected_components(adjacency, directed=False)
            if n_components != 1:
                raise InvalidInputError(f"Tree {t} is not connected ({n_components} components)")
            prev_nodes = {e.all_set: e.nodes for e in edges}
            if len(prev_nodes) != len(edges):
                raise InvalidInputError(f"Tree {t} contains duplicate edges")

    # -------------------------------------------------------------------------
    # Derived quantities
    # -------------------------------------------------------------------------

    def edges(self) -> Iterator[VineEdge]:
        """Iterate over all edges, tree by tree."""
        for tree in self.trees:
            yield from tree

    @property
    def n_trees(self) -> int:
        return len(self.trees)

    @property
    def npars(self) -> int:
        """Total number of copula parameters."""
        return sum(e.copula.npars for e in self.edges())

    @property
    def aic(self) -> float:
        return -2.0 * self.loglik + 2.0 * self.npars

    @property
    def bic(self) -> float:
        return -2.0 * self.loglik + math.log(max(self.nobs, 1)) * self.npars

    @property
    def families(self) -> List[List[str]]:
        return [[e.copula.family.value for e in tree] for tree in self.trees]

    @property
    def parameters(self) -> List[List[Tuple[float, ...]]]:
        return [[e.copula.parameters for e in tree] for tree in self.trees]

    @property
    def taus(self) -> List[List[float]]:
        return [[e.copula.tau for e in tree] for tree in self.trees]

    @cached_property
    def sampling_plan(self):
        """Peel order and per-variable edge columns used by the sampler."""
        from .sampling import build_sampling_plan
        return build_sampling_plan(self)

    def summary(self) -> str:
        """Human-readable table of the fitted pair copulas."""
        lines = [
            f"R-vine copula: d={self.d}, trees={self.n_trees}, "
            f"trunc_lvl={self.trunc_lvl if self.trunc_lvl is not None else 'none'}",
            f"loglik={self.loglik:.3f}  npars={self.npars}  "
            f"AIC={self.aic:.3f}  BIC={self.bic:.3f}",
            f"{'tree':>4}  {'edge':<16} {'family':<10} {'rot':>4}  {'tau':>7}  parameters",
        ]
        for e in self.edges():
            a, b = e.conditioned
            name = f"{self.columns[a]},{self.columns[b]}"
            if e.conditioning:
                name += "|" + ",".join(self.columns[v] for v in e.conditioning)
            pars = ", ".join(f"{p:.4g}" for p in e.copula.parameters)
            lines.append(
                f"{e.tree + 1:>4}  {name:<16} {e.copula.family.value:<10} "
                f"{e.copula.rotation:>4}  {e.copula.tau:>7.3f}  {pars}"
            )
        return "\n".join(lines)

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "d": self.d,
            "columns": list(self.columns),
            "trunc_lvl": self.trunc_lvl,
            "family_set": list(self.family_set),
            "tree_criterion": self.tree_criterion,
            "selection_criterion": self.selection_criterion,
            "nobs": self.nobs,
            "loglik": self.loglik,
            "trees": [[e.to_dict() for e in tree] for tree in self.trees],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VineModel":
        return cls(
            d=int(data["d"]),
            trees=tuple(
                tuple(VineEdge.from_dict(e) for e in tree) for tree in data["trees"]
            ),
            columns=tuple(data.get("columns", ())),
            trunc_lvl=data.get("trunc_lvl"),
            family_set=tuple(data.get("family_set", ())),
            tree_criterion=data.get("tree_criterion", "tau"),
            selection_criterion=data.get("selection_criterion", "bic"),
            nobs=int(data.get("nobs", 0)),
            loglik=float(data.get("loglik", 0.0)),
        )


# =============================================================================
# SIMULATION TYPES
# =============================================================================

@dataclass(frozen=True, eq=False)
class SimulationTrial:
    """
    One sampling trial of the multi-trial runner.

    Parameters
    ----------
    index : int
        Trial number (0-based); the tie-breaker between equal scores.
    seed : int
        Seed derived for this trial from the run seed.
    uniforms : np.ndarray
        Vine sample on the copula scale, shape (n, d).
    simulated : np.ndarray
        Sample mapped to return scale, shape (n, d).
    score : float
        Quality score (lower is better).
    kendall_diff : float
        Mean absolute Kendall correlation discrepancy.
    pearson_diff : float
        Mean absolute Pearson correlation discrepancy.
    """
    index: int
    seed: int
    uniforms: np.ndarray
    simulated: np.ndarray
    score: float
    kendall_diff: float = float("nan")
    pearson_diff: float = float("nan")


@dataclass(frozen=True, eq=False)
class CorrelationDiagnostics:
    """
    Pearson correlation comparison of simulated vs historical returns.

    ``cor_diff = cor_simulated - cor_original`` element-wise.
    """
    cor_original: np.ndarray
    cor_simulated: np.ndarray
    cor_diff: np.ndarray

    @classmethod
    def from_data(cls, original: np.ndarray, simulated: np.ndarray) -> "CorrelationDiagnostics":
        cor_original = np.corrcoef(original, rowvar=False)
        cor_simulated = np.corrcoef(simulated, rowvar=False)
        return cls(
            cor_original=_readonly(cor_original),
            cor_simulated=_readonly(cor_simulated),
            cor_diff=_readonly(cor_simulated - cor_original),
        )

    @property
    def max_abs_diff(self) -> float:
        return float(np.max(np.abs(self.cor_diff)))


@dataclass(frozen=True, eq=False)
class SimulationResult:
    """
    Outcome of a multi-trial vine simulation.

    Parameters
    ----------
    original_data : ReturnMatrix
        The historical input (shared, not copied).
    simulated_data : ReturnMatrix
        Returns of the best trial, with the historical column names.
    vine_model : VineModel
        The model used for sampling (shared, not copied).
    quality_score : float
        Score of the best trial; the minimum of ``trial_scores``.
    diagnostics : CorrelationDiagnostics
        Pearson correlations of the best trial vs history.
    trial_scores : tuple of float
        Score of every trial, in trial order.
    best_trial : int
        Index of the retained trial.
    """
    original_data: ReturnMatrix
    simulated_data: ReturnMatrix
    vine_model: VineModel
    quality_score: float
    diagnostics: CorrelationDiagnostics
    trial_scores: Tuple[float, ...] = ()
    best_trial: int = 0

    @property
    def n_trials(self) -> int:
        return len(self.trial_scores)


# =============================================================================
# PORTFOLIO TYPES
# =============================================================================

@dataclass(frozen=True, eq=False)
class PortfolioWeights:
    """
    A labelled vector of portfolio weights.

    Examples
    --------
    >>> w = PortfolioWeights(assets=("A", "B"), weights=np.array([0.4, 0.6]))
    >>> w["B"]
    0.6
    """
    assets: Tuple[str, ...]
    weights: np.ndarray
    label: str = ""

    def __post_init__(self):
        weights = np.asarray(self.weights, dtype=float).ravel()
        assets = tuple(str(a) for a in self.assets)
        if weights.shape[0] != len(assets):
            raise InvalidInputError(
                f"Weights length {weights.shape[0]} does not match {len(assets)} assets"
            )
        object.__setattr__(self, "assets", assets)
        object.__setattr__(self, "weights", _readonly(weights))

    def __getitem__(self, asset: str) -> float:
        try:
            return float(self.weights[self.assets.index(asset)])
        except ValueError:
            raise KeyError(asset) from None

    def __len__(self) -> int:
        return len(self.assets)

    @property
    def total(self) -> float:
        return float(np.sum(self.weights))

    def as_dict(self) -> Dict[str, float]:
        return {a: float(w) for a, w in zip(self.assets, self.weights)}


@dataclass(frozen=True, eq=False)
class FrontierPoint:
    """A point on the efficient frontier: risk (std. dev.), mean return, weights."""
    risk: float
    expected_return: float
    weights: PortfolioWeights


@dataclass(frozen=True)
class OptimizationResult:
    """
    Result container for portfolio optimization.

    Parameters
    ----------
    weights : Optional[np.ndarray]
        Optimal portfolio weights with shape (p,). None if optimization failed.
    risk : float
        Portfolio risk (standard deviation) at the optimal point.
    objective : float
        Raw objective value from the solver.
    solved : bool
        True if the optimizer found an optimal solution.
    metadata : Dict[str, Any]
        Additional solver information (status, etc.).
    """
    weights: Optional[np.ndarray]
    risk: float
    objective: float
    solved: bool
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.solved and self.weights is None:
            raise InvalidInputError("solved=True but weights is None")


@dataclass
class Scenario:
    """
    A named collection of linear portfolio constraints.

    Constraints are stored in "A @ w <op> b" form where A has shape (m, p)
    and b has shape (m,); <op> is == for equality and <= for inequality.
    Use ScenarioBuilder for a fluent API.
    """
    name: str
    description: str = ""
    equality_constraints: List[Tuple[np.ndarray, np.ndarray]] = field(
        default_factory=list
    )
    inequality_constraints: List[Tuple[np.ndarray, np.ndarray]] = field(
        default_factory=list
    )

    def n_equality(self) -> int:
        """Count of equality constraints."""
        return sum(A.shape[0] for A, _ in self.equality_constraints)

    def n_inequality(self) -> int:
        """Count of inequality constraints."""
        return sum(A.shape[0] for A, _ in self.inequality_constraints)

    def __repr__(self) -> str:
        return (
            f"Scenario(name='{self.name}', "
            f"eq={self.n_equality()}, ineq={self.n_inequality()})"
        )
