"""Selection, permutation and fit-orchestration modules."""

from .config import KinFitConfig
from .detector import DetectorBase
from .exceptions import (
    BranchMissingError,
    ConfigurationError,
    CutDefinitionError,
    DataLoadError,
    FittingError,
    KinFitError,
    PermutationError,
)
from .fit_status import ConvergenceFlags, ConvergenceMask, MinuitStatus, ModeResult, PermutationResult
from .fitter import Fitter, MinimizationMethod
from .likelihood import (
    BTaggingMethod,
    FitContext,
    IntegrationMethod,
    LikelihoodBase,
    MissingEnergy,
    Parameter,
)
from .optimizers import (
    MarkovChainConfig,
    MarkovChainStrategy,
    MinuitStrategy,
    OptimizationStrategy,
    SimulatedAnnealingStrategy,
)
from .particles import Particle, Particles, ParticleType
from .permutations import PermutationTable
from .pipeline import EventPipeline, EventResult
from .selection_tool import Cut, SelectionCounters, SelectionTool

__all__ = [
    "BTaggingMethod",
    "BranchMissingError",
    "ConfigurationError",
    "ConvergenceFlags",
    "ConvergenceMask",
    "Cut",
    "CutDefinitionError",
    "DataLoadError",
    "DetectorBase",
    "EventPipeline",
    "EventResult",
    "FitContext",
    "Fitter",
    "FittingError",
    "IntegrationMethod",
    "KinFitConfig",
    "KinFitError",
    "LikelihoodBase",
    "MarkovChainConfig",
    "MarkovChainStrategy",
    "MinimizationMethod",
    "MinuitStatus",
    "MinuitStrategy",
    "MissingEnergy",
    "ModeResult",
    "OptimizationStrategy",
    "Parameter",
    "Particle",
    "ParticleType",
    "Particles",
    "PermutationError",
    "PermutationResult",
    "PermutationTable",
    "SelectionCounters",
    "SelectionTool",
    "SimulatedAnnealingStrategy",
]
