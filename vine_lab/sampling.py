"""
sampling.py - R-Vine Sampling via the Inverse Rosenblatt Transform

A fitted R-vine factorises the joint distribution into pair copulas. To draw
from it we:

1. Derive a sampling order by peeling leaves off the tree sequence, from the
   highest tree down (``build_sampling_plan``). Each peeled variable gets a
   "column": the chain of edges, one per tree level, whose conditioned set
   contains it.
2. Draw independent uniforms W (n x d).
3. Visit the variables in reverse peel order. The first one is W itself; for
   every later variable the column is inverted from its top edge down to
   tree 0 with the inverse h-functions. The conditional CDF values of the
   already-sampled partners are produced by a memoised h-function
   recursion.

Truncated trees are independence copulas and simply contribute nothing.

Example Usage:
-------------
    >>> from vine_lab.sampling import VineSampler
    >>>
    >>> sampler = VineSampler(model)
    >>> u = sampler.sample(1000, seed=42)     # (1000, d) in (0, 1)
    >>> w = sampler.rosenblatt(u)             # back to independent uniforms
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple

import numpy as np
from loguru import logger

from .copulas import EPS
from .errors import DimensionError, InvalidInputError, SamplingError
from .types import VineEdge, VineModel

_MemoKey = Tuple[int, FrozenSet[int]]


# =============================================================================
# SAMPLING PLAN
# =============================================================================

@dataclass(frozen=True)
class SamplingPlan:
    """
    Visiting order and per-variable edge columns.

    Parameters
    ----------
    order : tuple of int
        Variables in the order they are sampled.
    columns : dict
        ``columns[v]`` lists the edges whose conditioned set contains ``v``
        and that must be inverted to sample it, from tree 0 upward. The first
        sampled variable has no column.
    """
    order: Tuple[int, ...]
    columns: Dict[int, Tuple[VineEdge, ...]]


def _partner(edge: VineEdge, var: int) -> int:
    a, b = edge.conditioned
    return b if var == a else a


def build_sampling_plan(model: VineModel) -> SamplingPlan:
    """
    Peel the vine into a sampling order.

    At every step the highest available tree is searched for an edge with a
    leaf node; the conditioned variable on the leaf side is removed together
    with the edges of its column in the lower trees (matched by all-set).

    Raises
    ------
    SamplingError
        If the tree sequence cannot be peeled (not a regular vine).
    """
    d = model.d
    n_trees = model.n_trees
    if n_trees == 0:
        return SamplingPlan(order=tuple(range(d)), columns={})

    remaining: List[List[VineEdge]] = [list(tree) for tree in model.trees]
    peeled: List[int] = []
    columns: Dict[int, Tuple[VineEdge, ...]] = {}
    last_partner = -1

    for col in range(d - 1):
        top = max(min(n_trees, d - 1 - col), 1) - 1

        degree: Dict[Tuple[int, ...], int] = {}
        for e in remaining[top]:
            for node in e.nodes:
                degree[node] = degree.get(node, 0) + 1

        chosen, pos = None, 0
        for e in remaining[top]:
            d0, d1 = degree[e.nodes[0]], degree[e.nodes[1]]
            if min(d0, d1) > 1:
                continue
            chosen, pos = e, (1 if d1 == 1 else 0)
            break
        if chosen is None:
            raise SamplingError(f"No leaf edge in tree {top + 1} while building the sampling plan")

        var = chosen.conditioned[pos]
        column = [chosen]
        remaining[top].remove(chosen)
        conditioning = chosen.conditioning

        for level in range(top - 1, -1, -1):
            target = frozenset((var,) + conditioning)
            found = next(
                (e for e in remaining[level] if frozenset(e.all_set) == target), None
            )
            if found is None or var not in found.conditioned:
                raise SamplingError(
                    f"Variable {var} has no edge with all-set {sorted(target)} in tree {level + 1}"
                )
            column.append(found)
            remaining[level].remove(found)
            conditioning = found.conditioning

        peeled.append(var)
        columns[var] = tuple(reversed(column))
        last_partner = _partner(chosen, var)

    peeled.append(last_partner)
    return SamplingPlan(order=tuple(reversed(peeled)), columns=columns)


# =============================================================================
# CONDITIONAL DISTRIBUTIONS
# =============================================================================

class _ConditionalCdf:
    """
    Memoised conditional distribution functions F(v | S) of one sample.

    ``F(v | S)`` is obtained from the edge with all-set ``{v} | S``:
    if that edge is ``c_{v,q|D}`` then ``F(v | S) = h(F(v | D), F(q | D))``.
    """

    def __init__(self, model: VineModel, memo: Optional[Dict[_MemoKey, np.ndarray]] = None):
        self.memo: Dict[_MemoKey, np.ndarray] = memo if memo is not None else {}
        self.by_all_set = {frozenset(e.all_set): e for e in model.edges()}

    def pair_data(self, edge: VineEdge) -> np.ndarray:
        """Copula-scale data of ``edge``: (F(a | D), F(b | D))."""
        a, b = edge.conditioned
        cond = frozenset(edge.conditioning)
        return np.column_stack([self(a, cond), self(b, cond)])

    def __call__(self, var: int, given: FrozenSet[int]) -> np.ndarray:
        key = (var, given)
        if key in self.memo:
            return self.memo[key]
        if not given:
            raise SamplingError(f"Variable {var} requested before it was sampled")

        edge = self.by_all_set.get(given | {var})
        if edge is None or var not in edge.conditioned:
            raise SamplingError(
                f"No edge yields F({var} | {sorted(given)}); the vine is not regular"
            )
        data = self.pair_data(edge)
        value = edge.copula.hfunc2(data) if var == edge.conditioned[0] else edge.copula.hfunc1(data)
        self.memo[key] = value
        return value


# =============================================================================
# SAMPLER
# =============================================================================

class VineSampler:
    """
    Draws samples from (and evaluates) a fitted R-vine copula.

    Parameters
    ----------
    model : VineModel
        The vine to sample. Shared read-only, so one model can back many
        samplers in different threads.

    Examples
    --------
    >>> sampler = VineSampler(model)
    >>> u = sampler.sample(500, seed=1)
    >>> u.shape
    (500, 3)
    """

    def __init__(self, model: VineModel):
        self.model = model

    @property
    def d(self) -> int:
        return self.model.d

    def _check(self, x: np.ndarray, name: str) -> np.ndarray:
        x = np.asarray(x, dtype=float)
        if x.ndim != 2:
            raise InvalidInputError(f"{name} must be 2D, got shape {x.shape}")
        if x.shape[1] != self.d:
            raise DimensionError(f"{name} has {x.shape[1]} columns, model has d={self.d}")
        return np.clip(x, EPS, 1.0 - EPS)

    def sample(self, n: int, seed: Optional[int] = None) -> np.ndarray:
        """
        Draw ``n`` observations on the copula scale.

        Parameters
        ----------
        n : int
            Number of rows; must be at least 1.
        seed : int or np.random.SeedSequence, optional
            Seed for ``numpy.random.default_rng``. Identical model and seed
            give identical output.

        Returns
        -------
        np.ndarray
            Sample with shape (n, d), entries strictly inside (0, 1).

        Raises
        ------
        SamplingError
            If ``n < 1``.
        """
        if n < 1:
            raise SamplingError(f"Number of samples must be >= 1, got {n}")
        rng = np.random.default_rng(seed)
        w = rng.uniform(size=(int(n), self.d))
        return self.inverse_rosenblatt(w)

    def inverse_rosenblatt(self, w: np.ndarray) -> np.ndarray:
        """
        Map independent uniforms to a sample of the vine.

        Column ``v`` of ``w`` drives variable ``v``.
        """
        w = self._check(w, "w")
        plan = self.model.sampling_plan
        cdf = _ConditionalCdf(self.model)
        u = np.empty_like(w)

        for var in plan.order:
            column = plan.columns.get(var, ())
            current = w[:, var]
            if column:
                top = column[-1]
                cdf.memo[(var, frozenset(top.conditioning) | {_partner(top, var)})] = current
            for edge in reversed(column):
                given = frozenset(edge.conditioning)
                other = cdf(_partner(edge, var), given)
                if var == edge.conditioned[0]:
                    current = edge.copula.hinv2(np.column_stack([current, other]))
                else:
                    current = edge.copula.hinv1(np.column_stack([other, current]))
                cdf.memo[(var, given)] = current
            cdf.memo[(var, frozenset())] = current
            u[:, var] = current

        return np.clip(u, EPS, 1.0 - EPS)

    def rosenblatt(self, u: np.ndarray) -> np.ndarray:
        """
        Map a sample of the vine to independent uniforms.

        Inverse of ``inverse_rosenblatt`` (up to numerical error).
        """
        u = self._check(u, "u")
        plan = self.model.sampling_plan
        cdf = _ConditionalCdf(self.model, {(v, frozenset()): u[:, v] for v in range(self.d)})
        w = np.empty_like(u)
        for var in plan.order:
            column = plan.columns.get(var, ())
            if not column:
                w[:, var] = u[:, var]
                continue
            top = column[-1]
            w[:, var] = cdf(var, frozenset(top.conditioning) | {_partner(top, var)})
        return w

    def logpdf(self, u: np.ndarray) -> np.ndarray:
        """Log-density of the vine copula at each row of ``u``."""
        u = self._check(u, "u")
        cdf = _ConditionalCdf(self.model, {(v, frozenset()): u[:, v] for v in range(self.d)})
        out = np.zeros(u.shape[0])
        for edge in self.model.edges():
            out += edge.copula.logpdf(cdf.pair_data(edge))
        return out

    def loglik(self, u: np.ndarray) -> float:
        """Total log-likelihood of ``u`` under the vine."""
        return float(np.sum(self.logpdf(u)))


def sample_vine(model: VineModel, n: int, seed: Optional[int] = None) -> np.ndarray:
    """Shorthand for ``VineSampler(model).sample(n, seed)``."""
    logger.debug(f"Sampling {n} rows from a d={model.d} vine")
    return VineSampler(model).sample(n, seed=seed)


def vine_loglik(model: VineModel, u: np.ndarray) -> float:
    """Shorthand for ``VineSampler(model).loglik(u)``."""
    return VineSampler(model).loglik(u)
