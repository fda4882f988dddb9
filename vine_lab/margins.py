"""
margins.py - Marginal Transforms

Moves data between the return scale and the copula (uniform) scale:
- to_pseudo_obs: Rank-based probability integral transform, rank / (n + 1)
- empirical_quantile: Sample quantile of one historical column
- map_to_returns: Column-wise quantile mapping of a uniform sample

The margins are never modelled parametrically: simulated uniforms are pushed
back through the empirical quantile function of the history, so simulated
returns always stay within the historical range.

Example Usage:
-------------
    >>> from vine_lab.margins import to_pseudo_obs, map_to_returns
    >>>
    >>> u = to_pseudo_obs(returns)          # (T, d) in (0, 1)
    >>> sim = map_to_returns(u_sim, returns)
"""

from __future__ import annotations

from typing import Union

import numpy as np
from scipy import stats

from .errors import DimensionError, InvalidInputError
from .types import ReturnMatrix

ArrayLike = Union[np.ndarray, ReturnMatrix]


def _values(x: ArrayLike) -> np.ndarray:
    if isinstance(x, ReturnMatrix):
        return x.values
    return np.asarray(x, dtype=float)


# =============================================================================
# UNIFORM MARGIN TRANSFORM
# =============================================================================

def to_pseudo_obs(returns: ArrayLike) -> np.ndarray:
    """
    Convert returns to pseudo-observations on the unit interval.

    Each column is replaced by its ranks divided by ``n + 1`` (1-based,
    ascending, ties receive their average rank), so every entry lies strictly
    inside (0, 1) and the row order is preserved.

    Parameters
    ----------
    returns : ReturnMatrix or np.ndarray
        Data with shape (n, d).

    Returns
    -------
    np.ndarray
        Pseudo-observations with the same shape.

    Raises
    ------
    InvalidInputError
        If there are fewer than 2 rows, non-finite values, or a constant
        column (no rank information).

    Examples
    --------
    >>> to_pseudo_obs(np.array([[0.3], [0.1], [0.2]])).ravel()
    array([0.75, 0.25, 0.5 ])
    """
    x = _values(returns)
    if x.ndim == 1:
        x = x[:, None]
    if x.ndim != 2:
        raise InvalidInputError(f"Expected a 2D matrix, got shape {x.shape}")
    n, d = x.shape
    if n < 2:
        raise InvalidInputError(f"Need at least 2 rows to rank, got {n}")
    if not np.all(np.isfinite(x)):
        raise InvalidInputError("Cannot rank data containing NaN or infinite values")

    constant = np.flatnonzero(np.ptp(x, axis=0) == 0)
    if constant.size:
        raise InvalidInputError(f"Constant column(s) at index {constant.tolist()}; ranks are undefined")

    return stats.rankdata(x, method="average", axis=0) / (n + 1.0)


# =============================================================================
# QUANTILE MAPPER
# =============================================================================

def empirical_quantile(
    probabilities: np.ndarray,
    historical: np.ndarray,
    method: str = "median_unbiased"
) -> np.ndarray:
    """
    Sample quantiles of one historical column.

    Parameters
    ----------
    probabilities : np.ndarray
        Probabilities in [0, 1].
    historical : np.ndarray
        One column of historical returns.
    method : str, default="median_unbiased"
        ``numpy.quantile`` interpolation. ``"median_unbiased"`` is
        Hyndman-Fan type 8; ``"linear"`` is type 7.

    Returns
    -------
    np.ndarray
        Quantiles with the same length as ``probabilities``; monotone in the
        probabilities and bounded by the historical min and max.

    Raises
    ------
    InvalidInputError
        If the history is empty or a probability is outside [0, 1].
    """
    p = np.asarray(probabilities, dtype=float).ravel()
    h = np.asarray(historical, dtype=float).ravel()
    if h.size == 0:
        raise InvalidInputError("Historical column is empty")
    if p.size and (np.any(~np.isfinite(p)) or p.min() < 0.0 or p.max() > 1.0):
        raise InvalidInputError("Probabilities must lie in [0, 1]")
    return np.quantile(h, p, method=method)


def map_to_returns(
    uniforms: np.ndarray,
    historical: ArrayLike,
    method: str = "median_unbiased"
) -> np.ndarray:
    """
    Map a copula sample to the return scale column by column.

    Parameters
    ----------
    uniforms : np.ndarray
        Simulated uniforms with shape (n, d).
    historical : ReturnMatrix or np.ndarray
        Historical returns with shape (T, d).
    method : str, default="median_unbiased"
        Quantile interpolation, see ``empirical_quantile``.

    Returns
    -------
    np.ndarray
        Simulated returns with shape (n, d).

    Raises
    ------
    DimensionError
        If the column counts differ.
    """
    u = np.asarray(uniforms, dtype=float)
    h = _values(historical)
    if u.ndim != 2 or h.ndim != 2:
        raise InvalidInputError(f"Expected 2D inputs, got {u.shape} and {h.shape}")
    if u.shape[1] != h.shape[1]:
        raise DimensionError(
            f"Column mismatch: sample has {u.shape[1]} columns, history has {h.shape[1]}"
        )
    out = np.empty_like(u)
    for j in range(u.shape[1]):
        out[:, j] = empirical_quantile(u[:, j], h[:, j], method=method)
    return out
