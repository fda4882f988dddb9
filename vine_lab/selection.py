"""
selection.py - R-Vine Structure Selection

Fits a regular-vine copula to pseudo-observations with the greedy
sequential method of Dissmann et al. (2013):

1. Tree 0 is the maximum spanning tree over the variables with edge
   weight |Kendall tau| (or |Spearman rho|).
2. Every edge gets the best pair copula among the candidate families.
3. The edges of tree t become the nodes of tree t+1. Two nodes may only be
   joined if they share a node in tree t (proximity condition); the data of
   the new edge are conditional pseudo-observations produced by the
   h-functions of the tree-t copulas.
4. Repeat until d-1 trees are fitted or the truncation level is reached.

Example Usage:
-------------
    >>> from vine_lab.margins import to_pseudo_obs
    >>> from vine_lab.selection import VineStructureFitter
    >>> from vine_lab.controls import FitControls
    >>>
    >>> u = to_pseudo_obs(returns)
    >>> model = VineStructureFitter(FitControls(family_set=("gaussian", "t"))).fit(u)
    >>> print(model.summary())
"""

from __future__ import annotations

import concurrent.futures
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from loguru import logger
from scipy import stats
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import minimum_spanning_tree

from .controls import FitControls
from .copulas import select_pair_copula
from .errors import DimensionError, FittingError, InvalidInputError
from .types import VineEdge, VineModel

# Minimum spanning tree weights must stay strictly positive (zero means "no edge").
_MIN_WEIGHT = 1e-10


@dataclass
class _Node:
    """
    A node of the tree under construction.

    ``values[v]`` holds the conditional pseudo-observations
    F(v | members without v) for every variable that can still appear in a
    conditioned pair of the next tree.
    """
    members: Tuple[int, ...]
    values: Dict[int, np.ndarray]
    parents: Tuple[Tuple[int, ...], ...] = ()


def _pair_criterion(data: np.ndarray, method: str) -> float:
    if method == "rho":
        value = stats.spearmanr(data[:, 0], data[:, 1])[0]
    else:
        value = stats.kendalltau(data[:, 0], data[:, 1])[0]
    return 0.0 if not np.isfinite(value) else float(value)


def _pair_data(n1: _Node, n2: _Node) -> Tuple[int, int, Tuple[int, ...], np.ndarray]:
    shared = set(n1.members) & set(n2.members)
    (x,) = set(n1.members) - shared
    (y,) = set(n2.members) - shared
    data = np.column_stack([n1.values[x], n2.values[y]])
    return x, y, tuple(sorted(shared)), data


class VineStructureFitter:
    """
    Greedy R-vine structure and pair-copula selection.

    Parameters
    ----------
    controls : FitControls, optional
        Family set, tree criterion, truncation and estimation settings.
        Defaults to ``FitControls()``.

    Examples
    --------
    >>> fitter = VineStructureFitter(FitControls(trunc_lvl=1))
    >>> model = fitter.fit(u, columns=("SPY", "TLT", "GLD"))
    >>> model.n_trees
    1
    """

    def __init__(self, controls: Optional[FitControls] = None):
        self.controls = controls if controls is not None else FitControls()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def fit(self, u: np.ndarray, columns: Optional[Sequence[str]] = None) -> VineModel:
        """
        Select and fit an R-vine copula.

        Parameters
        ----------
        u : np.ndarray
            Pseudo-observations with shape (n, d), entries in (0, 1).
        columns : sequence of str, optional
            Variable names stored on the model.

        Returns
        -------
        VineModel
            The fitted model.

        Raises
        ------
        DimensionError
            If d < 2.
        InvalidInputError
            If fewer than 2 rows or any value outside (0, 1).
        FittingError
            If no candidate family converges on some edge.
        """
        u = self._check_data(u)
        n, d = u.shape
        ctl = self.controls
        n_trees = d - 1 if ctl.trunc_lvl is None else min(ctl.trunc_lvl, d - 1)

        logger.info(
            f"Fitting R-vine: d={d}, n={n}, trees={n_trees}, "
            f"families={list(ctl.family_set)}, criterion={ctl.tree_criterion}"
        )

        nodes = [_Node(members=(i,), values={i: u[:, i]}) for i in range(d)]
        trees: List[Tuple[VineEdge, ...]] = []

        for t in range(n_trees):
            pairs = self._spanning_tree(nodes, t)
            edges, next_nodes = self._fit_tree(nodes, pairs, t, need_next=t + 1 < n_trees)
            trees.append(tuple(edges))
            logger.info(
                f"Tree {t + 1}/{n_trees}: {len(edges)} edges, "
                f"loglik={sum(e.loglik for e in edges):.3f}"
            )
            nodes = next_nodes

        model = VineModel(
            d=d,
            trees=tuple(trees),
            columns=tuple(columns) if columns is not None else (),
            trunc_lvl=ctl.trunc_lvl,
            family_set=ctl.family_set,
            tree_criterion=ctl.tree_criterion,
            selection_criterion=ctl.selection_criterion,
            nobs=n,
            loglik=float(sum(e.loglik for tree in trees for e in tree)),
        )
        logger.success(
            f"R-vine fitted: loglik={model.loglik:.3f}, npars={model.npars}, BIC={model.bic:.3f}"
        )
        return model

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @staticmethod
    def _check_data(u: np.ndarray) -> np.ndarray:
        u = np.asarray(u, dtype=float)
        if u.ndim != 2:
            raise InvalidInputError(f"Pseudo-observations must be 2D, got shape {u.shape}")
        n, d = u.shape
        if d < 2:
            raise DimensionError(f"A vine needs at least 2 variables, got d={d}")
        if n < 2:
            raise InvalidInputError(f"Need at least 2 observations, got {n}")
        if not np.all(np.isfinite(u)) or np.any(u <= 0.0) or np.any(u >= 1.0):
            raise InvalidInputError("Pseudo-observations must lie strictly inside (0, 1)")
        return u

    @staticmethod
    def _allowed(n1: _Node, n2: _Node, t: int) -> bool:
        if t == 0:
            return True
        return bool(set(n1.parents) & set(n2.parents))

    def _spanning_tree(self, nodes: List[_Node], t: int) -> List[Tuple[int, int, float]]:
        """Maximum spanning tree on |criterion| among allowed node pairs."""
        m = len(nodes)
        rows, cols, weights, crits = [], [], [], {}
        for i in range(m):
            for j in range(i + 1, m):
                if not self._allowed(nodes[i], nodes[j], t):
                    continue
                _, _, _, data = _pair_data(nodes[i], nodes[j])
                crit = _pair_criterion(data, self.controls.tree_criterion)
                crits[(i, j)] = crit
                rows.append(i)
                cols.append(j)
                weights.append(max(1.0 - abs(crit), _MIN_WEIGHT))

        graph = csr_matrix((weights, (rows, cols)), shape=(m, m))
        mst = minimum_spanning_tree(graph).tocoo()
        pairs = sorted((min(i, j), max(i, j)) for i, j in zip(mst.row, mst.col))
        if len(pairs) != m - 1:
            raise FittingError(
                f"Tree {t + 1}: allowed edges do not connect all {m} nodes"
            )
        return [(i, j, crits[(i, j)]) for i, j in pairs]

    def _fit_tree(
        self,
        nodes: List[_Node],
        pairs: List[Tuple[int, int, float]],
        t: int,
        need_next: bool
    ) -> Tuple[List[VineEdge], List[_Node]]:
        ctl = self.controls

        def fit_one(pair: Tuple[int, int, float]) -> Tuple[VineEdge, _Node]:
            i, j, crit = pair
            n1, n2 = nodes[i], nodes[j]
            x, y, cond, data = _pair_data(n1, n2)
            copula = select_pair_copula(
                data,
                family_set=ctl.family_set,
                selection_criterion=ctl.selection_criterion,
                method=ctl.parametric_method,
                allow_rotations=ctl.allow_rotations,
            )
            edge = VineEdge(
                tree=t,
                conditioned=(x, y),
                conditioning=cond,
                copula=copula,
                nodes=(n1.members, n2.members),
                crit=crit,
                loglik=copula.loglik(data),
            )
            logger.debug(f"Tree {t + 1} edge {edge.label}: {copula} (tau={copula.tau:.3f})")

            values = {}
            if need_next:
                values = {x: copula.hfunc2(data), y: copula.hfunc1(data)}
            node = _Node(
                members=edge.all_set,
                values=values,
                parents=(n1.members, n2.members),
            )
            return edge, node

        if ctl.num_threads > 1 and len(pairs) > 1:
            with concurrent.futures.ThreadPoolExecutor(max_workers=ctl.num_threads) as executor:
                results = list(executor.map(fit_one, pairs))
        else:
            results = [fit_one(p) for p in pairs]

        return [r[0] for r in results], [r[1] for r in results]


def fit_vine(
    u: np.ndarray,
    family_set: Optional[Sequence[str]] = None,
    tree_criterion: str = "tau",
    trunc_lvl: Optional[int] = None,
    selection_criterion: str = "bic",
    parametric_method: str = "mle",
    allow_rotations: bool = True,
    num_threads: int = 1,
    columns: Optional[Sequence[str]] = None
) -> VineModel:
    """
    Convenience wrapper around ``VineStructureFitter``.

    Examples
    --------
    >>> model = fit_vine(u, family_set=["gaussian", "clayton"], trunc_lvl=2)
    """
    controls = FitControls(
        family_set=tuple(family_set) if family_set is not None else FitControls().family_set,
        tree_criterion=tree_criterion,
        trunc_lvl=trunc_lvl,
        selection_criterion=selection_criterion,
        parametric_method=parametric_method,
        allow_rotations=allow_rotations,
        num_threads=num_threads,
    )
    return VineStructureFitter(controls).fit(u, columns=columns)
