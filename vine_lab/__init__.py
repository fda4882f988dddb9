"""
vine_lab - R-Vine Copula Fitting, Simulation and Portfolio Weights
"""

__version__ = "1.0.0"

# =============================================================================
# CORE TYPES
# =============================================================================
from .types import (
    ReturnMatrix,
    VineEdge,
    VineModel,
    SimulationTrial,
    SimulationResult,
    CorrelationDiagnostics,
    PortfolioWeights,
    FrontierPoint,
    OptimizationResult,
    Scenario,
)

# =============================================================================
# ERRORS & CONFIGURATION
# =============================================================================
from .errors import (
    VineLabError,
    InvalidInputError,
    DimensionError,
    SamplingError,
    FittingError,
)
from .controls import FitControls, SimulationConfig

# =============================================================================
# COPULAS
# =============================================================================
from .copulas import (
    CopulaFamily,
    BivariateCopula,
    GaussianCopula,
    StudentTCopula,
    ClaytonCopula,
    GumbelCopula,
    FrankCopula,
    JoeCopula,
    make_copula,
    fit_pair_copula,
    select_pair_copula,
)

# =============================================================================
# MARGINS, SELECTION & SAMPLING
# =============================================================================
from .margins import to_pseudo_obs, empirical_quantile, map_to_returns
from .selection import VineStructureFitter, fit_vine
from .sampling import VineSampler, sample_vine, vine_loglik

# =============================================================================
# SCORING & SIMULATION
# =============================================================================
from .scoring import SimulationQualityScorer, correlation_matrix
from .simulation import (
    MultiTrialSimulationRunner,
    simulate_rvine,
    result_key,
    cached_simulation,
)

# =============================================================================
# OPTIMIZATION
# =============================================================================
from .optimization import (
    PortfolioWeightProvider,
    CvxpyWeightProvider,
    MeanVarianceOptimizer,
    ScenarioBuilder,
    equal_weights,
    risk_free_rate,
)

# =============================================================================
# I/O
# =============================================================================
from .io import (
    load_returns,
    save_returns,
    save_vine_model,
    load_vine_model,
    save_result,
    load_result,
    ResultStore,
    InMemoryResultStore,
    FileResultStore,
    ModelFormat,
)

# PUBLIC API
# =============================================================================
__all__ = [
    "__version__",
    "ReturnMatrix",
    "VineEdge",
    "VineModel",
    "SimulationTrial",
    "SimulationResult",
    "CorrelationDiagnostics",
    "PortfolioWeights",
    "FrontierPoint",
    "OptimizationResult",
    "Scenario",
    "VineLabError",
    "InvalidInputError",
    "DimensionError",
    "SamplingError",
    "FittingError",
    "FitControls",
    "SimulationConfig",
    "CopulaFamily",
    "BivariateCopula",
    "GaussianCopula",
    "StudentTCopula",
    "ClaytonCopula",
    "GumbelCopula",
    "FrankCopula",
    "JoeCopula",
    "make_copula",
    "fit_pair_copula",
    "select_pair_copula",
    "to_pseudo_obs",
    "empirical_quantile",
    "map_to_returns",
    "VineStructureFitter",
    "fit_vine",
    "VineSampler",
    "sample_vine",
    "vine_loglik",
    "SimulationQualityScorer",
    "correlation_matrix",
    "MultiTrialSimulationRunner",
    "simulate_rvine",
    "result_key",
    "cached_simulation",
    "PortfolioWeightProvider",
    "CvxpyWeightProvider",
    "MeanVarianceOptimizer",
    "ScenarioBuilder",
    "equal_weights",
    "risk_free_rate",
    "load_returns",
    "save_returns",
    "save_vine_model",
    "load_vine_model",
    "save_result",
    "load_result",
    "ResultStore",
    "InMemoryResultStore",
    "FileResultStore",
    "ModelFormat",
]
