"""
errors.py - Exception Taxonomy for Vine Lab

Every failure raised by the library derives from ``VineLabError`` so callers
can catch the whole family at once, while the concrete subclasses keep the
builtin base they are most often confused with (``ValueError`` for bad
input, ``RuntimeError`` for numerical failures). Messages always name the
offending dimension or parameter.

    VineLabError
    ├── InvalidInputError   malformed or degenerate input (ValueError)
    ├── DimensionError      column-count mismatch (ValueError)
    ├── SamplingError       invalid sample-size request (ValueError)
    └── FittingError        estimation did not converge (RuntimeError)
"""

from __future__ import annotations


class VineLabError(Exception):
    """Base class for all vine_lab errors."""


class InvalidInputError(VineLabError, ValueError):
    """Input matrix is malformed or degenerate (constant column, too few rows, NaNs)."""


class DimensionError(VineLabError, ValueError):
    """Two matrices (or a matrix and a model) disagree on their column count."""


class SamplingError(VineLabError, ValueError):
    """A simulation was requested with a non-positive size or trial count."""


class FittingError(VineLabError, RuntimeError):
    """Copula or tree parameter estimation failed to converge."""
