"""
io.py - Persistence for Returns, Vine Models and Simulation Results

This module handles moving vine_lab objects to and from disk:
- load_returns / save_returns: CSV with a date index (pandas)
- save_vine_model / load_vine_model: JSON (human-readable) or NPZ
- save_result / load_result: NPZ archive with the vine embedded as JSON
- ResultStore: The memoisation boundary used by ``cached_simulation``,
  with in-memory and directory-backed implementations

Example Usage:
-------------
    >>> from vine_lab.io import load_returns, save_vine_model, FileResultStore
    >>>
    >>> returns = load_returns("returns.csv", drop=["tBillReturn"])
    >>> save_vine_model(model, "model.json")
    >>> store = FileResultStore(".vine_cache")
"""

from __future__ import annotations

import json
import threading
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Protocol, Sequence, Union

import numpy as np
import pandas as pd
from loguru import logger

from .errors import InvalidInputError
from .types import CorrelationDiagnostics, ReturnMatrix, SimulationResult, VineModel


class ModelFormat(str, Enum):
    """Supported vine model file formats."""
    NPZ = "npz"
    JSON = "json"


# =============================================================================
# RETURNS
# =============================================================================

def load_returns(
    path: Union[str, Path],
    drop: Optional[Sequence[str]] = None
) -> ReturnMatrix:
    """
    Load a return matrix from CSV.

    The first column is the row index (parsed as dates where possible);
    every other column is one asset. Rows with missing values are removed.

    Parameters
    ----------
    path : str or Path
        CSV file.
    drop : sequence of str, optional
        Columns to remove (e.g. a T-bill series used as the risk-free rate).

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    InvalidInputError
        If a column is non-numeric or a ``drop`` column is missing.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Returns file not found: {path}")

    frame = pd.read_csv(path, index_col=0, parse_dates=True)
    if drop:
        missing = [c for c in drop if c not in frame.columns]
        if missing:
            raise InvalidInputError(f"Cannot drop unknown columns: {missing}")
        frame = frame.drop(columns=list(drop))

    non_numeric = [c for c in frame.columns if not pd.api.types.is_numeric_dtype(frame[c])]
    if non_numeric:
        raise InvalidInputError(f"Non-numeric return columns: {non_numeric}")

    n_before = len(frame)
    frame = frame.dropna()
    if len(frame) < n_before:
        logger.warning(f"Dropped {n_before - len(frame)} row(s) with missing values from {path.name}")

    logger.info(f"Loaded {len(frame)} rows x {frame.shape[1]} assets from {path}")
    return ReturnMatrix(
        values=frame.to_numpy(dtype=float),
        columns=tuple(str(c) for c in frame.columns),
        index=frame.index.to_numpy(),
    )


def load_series(path: Union[str, Path], column: str) -> np.ndarray:
    """Load a single numeric column (e.g. ``tBillReturn``) from a returns CSV."""
    frame = pd.read_csv(Path(path), index_col=0, parse_dates=True)
    if column not in frame.columns:
        raise InvalidInputError(f"Column {column!r} not found in {path}")
    return frame[column].dropna().to_numpy(dtype=float)


def save_returns(returns: ReturnMatrix, path: Union[str, Path]) -> None:
    """Write a return matrix to CSV (index column first)."""
    index = returns.index if returns.index is not None else np.arange(returns.n_obs)
    frame = pd.DataFrame(returns.values, columns=list(returns.columns), index=index)
    frame.index.name = "date" if returns.index is not None else "row"
    frame.to_csv(Path(path))


# =============================================================================
# VINE MODELS
# =============================================================================

def save_vine_model(
    model: VineModel,
    path: Union[str, Path],
    format: ModelFormat = ModelFormat.JSON
) -> None:
    """
    Save a fitted vine to disk.

    Parameters
    ----------
    model : VineModel
        The model to save.
    path : str or Path
        Destination file path.
    format : ModelFormat, default=ModelFormat.JSON
        JSON is human-readable; NPZ stores the same document in an archive.
    """
    path = Path(path)
    payload = json.dumps(model.to_dict(), indent=2)

    if format == ModelFormat.JSON:
        path.write_text(payload, encoding="utf-8")
    elif format == ModelFormat.NPZ:
        np.savez(path, vine_model=np.array(payload))
    else:
        raise InvalidInputError(f"Unsupported format: {format}")


def load_vine_model(path: Union[str, Path]) -> VineModel:
    """
    Load a vine from disk; the format is inferred from the extension.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    InvalidInputError
        If the extension is not recognised or the document is not a valid
        regular vine.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Model file not found: {path}")

    if path.suffix == ".json":
        data = json.loads(path.read_text(encoding="utf-8"))
    elif path.suffix == ".npz":
        with np.load(path) as archive:
            data = json.loads(str(archive["vine_model"]))
    else:
        raise InvalidInputError(f"Unknown model format: {path.suffix}")
    return VineModel.from_dict(data)


# =============================================================================
# SIMULATION RESULTS
# =============================================================================

def _index_array(index: Optional[np.ndarray]) -> np.ndarray:
    if index is None:
        return np.array([], dtype=str)
    if np.issubdtype(index.dtype, np.datetime64):
        return index.astype("datetime64[ns]")
    return index.astype(str)


def save_result(result: SimulationResult, path: Union[str, Path]) -> None:
    """
    Save a simulation result as an NPZ archive.

    The arrays are stored natively; the vine model is embedded as JSON so the
    archive loads without pickling.
    """
    np.savez(
        Path(path),
        original_values=result.original_data.values,
        original_columns=np.array(result.original_data.columns, dtype=str),
        original_index=_index_array(result.original_data.index),
        simulated_values=result.simulated_data.values,
        quality_score=np.array(result.quality_score),
        trial_scores=np.array(result.trial_scores, dtype=float),
        best_trial=np.array(result.best_trial),
        vine_model=np.array(json.dumps(result.vine_model.to_dict())),
    )


def load_result(path: Union[str, Path]) -> SimulationResult:
    """Load a result written by ``save_result``."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Result file not found: {path}")

    with np.load(path) as data:
        columns = tuple(str(c) for c in data["original_columns"])
        index = data["original_index"]
        original = ReturnMatrix(
            values=data["original_values"],
            columns=columns,
            index=index if index.size else None,
        )
        simulated = ReturnMatrix(values=data["simulated_values"], columns=columns)
        model = VineModel.from_dict(json.loads(str(data["vine_model"])))
        return SimulationResult(
            original_data=original,
            simulated_data=simulated,
            vine_model=model,
            quality_score=float(data["quality_score"]),
            diagnostics=CorrelationDiagnostics.from_data(original.values, simulated.values),
            trial_scores=tuple(float(s) for s in data["trial_scores"]),
            best_trial=int(data["best_trial"]),
        )


# =============================================================================
# RESULT STORES
# =============================================================================

class ResultStore(Protocol):
    """Key-value store for simulation results."""

    def load(self, key: str) -> Optional[SimulationResult]:
        ...

    def store(self, key: str, result: SimulationResult) -> None:
        ...


class InMemoryResultStore:
    """Process-local result store backed by a dict."""

    def __init__(self):
        self._results: Dict[str, SimulationResult] = {}
        self._lock = threading.Lock()

    def load(self, key: str) -> Optional[SimulationResult]:
        with self._lock:
            return self._results.get(key)

    def store(self, key: str, result: SimulationResult) -> None:
        with self._lock:
            self._results[key] = result

    def __len__(self) -> int:
        return len(self._results)


class FileResultStore:
    """
    Result store writing one NPZ archive per key into a directory.

    Parameters
    ----------
    directory : str or Path
        Created on first use if missing.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}.npz"

    def load(self, key: str) -> Optional[SimulationResult]:
        path = self.path_for(key)
        if not path.exists():
            return None
        logger.debug(f"Loading cached result {path}")
        return load_result(path)

    def store(self, key: str, result: SimulationResult) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        save_result(result, self.path_for(key))
        logger.debug(f"Stored result {self.path_for(key)}")
