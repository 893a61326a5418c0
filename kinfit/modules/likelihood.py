"""
Abstract likelihood model

Concrete models implement `define_parameters`, `initial_parameters` and
`log_likelihood`. Everything the fitter needs around them (parameter
bounds, NaN bookkeeping, flavour-tag weights, normalization) lives here.

The fitter never hands out references to its own state: before every fit
it passes a fresh FitContext describing the detector, the permutation
table, the permuted particles and the missing energy.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Sequence

import numpy as np
from scipy import integrate

from .exceptions import FittingError
from .fit_status import ModeResult
from .particles import Particles, ParticleType

if TYPE_CHECKING:
    from .detector import DetectorBase
    from .optimizers import OptimizationStrategy
    from .permutations import PermutationTable

# returned to optimizers instead of a non-finite -log L
NAN_PENALTY = 1e99


@dataclass(frozen=True)
class MissingEnergy:
    """Missing transverse energy components and scalar sum of transverse energy."""

    etx: float = 0.0
    ety: float = 0.0
    sum_et: float = 0.0

    @property
    def met(self) -> float:
        return math.hypot(self.etx, self.ety)


@dataclass(frozen=True)
class FitContext:
    """Everything a likelihood may read while evaluating one permutation."""

    detector: DetectorBase | None
    permutations: PermutationTable | None
    particles: Particles | None
    missing_energy: MissingEnergy


@dataclass
class Parameter:
    """Fit parameter with a closed range; lower == upper fixes it."""

    name: str
    lower: float
    upper: float

    def is_fixed(self) -> bool:
        return self.lower == self.upper

    def is_at_limit(self, value: float, rel_tol: float = 1e-5) -> bool:
        """True if value sits on either bound (never for fixed parameters)."""
        if self.upper - self.lower <= 0:
            return False
        tol = rel_tol * max(self.upper - self.lower, 1e-12)
        return abs(value - self.lower) <= tol or abs(value - self.upper) <= tol


class BTaggingMethod(Enum):
    """How b-tagging information enters the likelihood."""

    NOTAG = "notag"
    VETO = "veto"
    WORKING_POINT = "working_point"


class IntegrationMethod(Enum):
    MONTE_CARLO = "monte_carlo"
    QUADRATURE = "quadrature"


class LikelihoodBase(ABC):
    """
    Base class of all likelihood models.

    Attributes:
        parameters: Ordered fit parameters
        btagging: Flavour-tagging method
        flag_integrate: Whether the fitter should compute the normalization
        flag_is_nan: Set when the likelihood evaluated to a non-finite value
        best_fit_parameters: Result of the last mode-finding pass
        flavor_log_weight: log of the flavour-tag probability of the permutation
    """

    # flavour expected at each jet role position, e.g. ("b", "b", "light", "light")
    jet_roles: tuple[str, ...] = ()

    def __init__(
        self,
        btagging: BTaggingMethod = BTaggingMethod.NOTAG,
        flag_integrate: bool = False,
        n_integration_samples: int = 20000,
    ) -> None:
        self.logger: logging.Logger = logging.getLogger(f"KinFit.Likelihood.{type(self).__name__}")
        self.btagging = btagging
        self.flag_integrate = flag_integrate
        self.n_integration_samples = n_integration_samples

        self.parameters: list[Parameter] = []
        self.context: FitContext | None = None
        self.missing_energy = MissingEnergy()
        self.flag_is_nan = False
        self.flavor_log_weight = 0.0
        self.best_fit_parameters: np.ndarray = np.array([])
        self.best_log_likelihood: float = -np.inf
        self.marginals: dict | None = None
        self.log_integral: float | None = None
        self.integration_method: IntegrationMethod | None = None

    # ------------------------------------------------------------------
    # Model definition (subclasses)
    # ------------------------------------------------------------------

    @property
    def n_jet_roles(self) -> int | None:
        return len(self.jet_roles) if self.jet_roles else None

    @abstractmethod
    def define_parameters(self) -> list[Parameter]:
        """Return the fit parameters in their default ranges."""

    @abstractmethod
    def initial_parameters(self) -> np.ndarray:
        """Starting point of the mode search for the current permutation."""

    @abstractmethod
    def log_likelihood(self, params: Sequence[float]) -> float:
        """log L of the current permutation at params."""

    def adjust_parameter_ranges(self) -> None:
        """Hook to narrow parameter ranges from the event (may read the missing energy)."""

    def transfer_functions_valid(self, params: Sequence[float]) -> bool:
        """False if params lie outside the valid domain of the transfer functions."""
        return True

    def remove_invariant_particle_permutations(self, permutations: PermutationTable) -> int:
        """Remove permutations the model cannot distinguish; returns the number removed."""
        return 0

    # ------------------------------------------------------------------
    # Fitter interface
    # ------------------------------------------------------------------

    def set_missing_energy(self, missing_energy: MissingEnergy) -> None:
        self.missing_energy = missing_energy

    def initialize(self, context: FitContext) -> None:
        """
        Prepare the model for a new permutation.

        Must be called after set_missing_energy: parameter ranges may depend on it.
        """
        self.context = context
        self.missing_energy = context.missing_energy
        self.parameters = list(self.define_parameters())
        if not self.parameters:
            raise FittingError(f"{type(self).__name__} defines no parameters")
        self.adjust_parameter_ranges()
        self.flavor_log_weight = 0.0
        self.best_fit_parameters = np.asarray(self.initial_parameters(), dtype=float)
        self.best_log_likelihood = -np.inf
        self.marginals = None
        self.log_integral = None

    @property
    def particles(self) -> Particles | None:
        return self.context.particles if self.context else None

    def clear_nan_flag(self) -> None:
        self.flag_is_nan = False

    def is_nan(self) -> bool:
        return self.flag_is_nan

    def parameter_bounds(self) -> tuple[np.ndarray, np.ndarray]:
        lower = np.array([p.lower for p in self.parameters], dtype=float)
        upper = np.array([p.upper for p in self.parameters], dtype=float)
        return lower, upper

    def parameter_names(self) -> list[str]:
        return [p.name for p in self.parameters]

    def free_parameter_names(self) -> list[str]:
        return [p.name for p in self.parameters if not p.is_fixed()]

    def negative_log_likelihood(self, params: Sequence[float]) -> float:
        """-log L, with non-finite values flagged and replaced by a large penalty."""
        value = self.log_likelihood(params) + self.flavor_log_weight
        if not np.isfinite(value):
            if np.isnan(value):
                self.flag_is_nan = True
            return NAN_PENALTY
        return -float(value)

    def find_mode(self, strategy: OptimizationStrategy, initial_guess: Sequence[float]) -> ModeResult:
        """Run one mode-finding pass and store its best parameters."""
        result = strategy.run_mode_finding(self, np.asarray(initial_guess, dtype=float))
        self.best_fit_parameters = np.asarray(result.parameters, dtype=float)
        self.best_log_likelihood = float(result.log_likelihood)
        if "marginals" in result.details:
            self.marginals = result.details["marginals"]
        return result

    def parameter_is_at_limit(self, index: int, value: float) -> bool:
        return self.parameters[index].is_at_limit(value)

    def any_parameter_at_limit(self, params: Sequence[float] | None = None) -> bool:
        if params is None:
            params = self.best_fit_parameters
        return any(self.parameter_is_at_limit(i, v) for i, v in enumerate(params))

    # ------------------------------------------------------------------
    # Flavour tagging
    # ------------------------------------------------------------------

    def calculate_flavor_tags(self) -> float:
        """
        Compute the flavour-tag weight of the active permutation.

        VETO: a tagged jet in a light-quark role vetoes the permutation.
        WORKING_POINT: product of tagging efficiencies (b roles) and mistag
        probabilities (light roles) of the assigned jets.

        Returns:
            log of the flavour weight, also stored in flavor_log_weight
        """
        self.flavor_log_weight = 0.0
        particles = self.particles
        if self.btagging is BTaggingMethod.NOTAG or particles is None:
            return self.flavor_log_weight

        jets = particles.particles(ParticleType.JET)
        log_weight = 0.0
        for role, jet in zip(self.jet_roles, jets):
            if self.btagging is BTaggingMethod.VETO:
                if role != "b" and jet.is_tagged:
                    log_weight = -np.inf
                    break
                continue

            if role == "b":
                probability = jet.btag_efficiency if jet.is_tagged else 1.0 - jet.btag_efficiency
            else:
                mistag = 1.0 / jet.btag_rejection if jet.btag_rejection > 0 else 1.0
                probability = mistag if jet.is_tagged else 1.0 - mistag
            if probability <= 0.0:
                log_weight = -np.inf
                break
            log_weight += math.log(probability)

        self.flavor_log_weight = log_weight
        return log_weight

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def normalize(self, method: IntegrationMethod = IntegrationMethod.MONTE_CARLO, seed: int | None = None) -> float:
        """
        Integrate L over the free parameters within their ranges.

        Args:
            method: Monte Carlo sampling or adaptive quadrature (scipy.integrate.nquad)
            seed: Random seed for the Monte Carlo method

        Returns:
            log of the integral (also stored in log_integral)
        """
        self.integration_method = method
        lower, upper = self.parameter_bounds()
        free = lower < upper
        template = np.asarray(self.best_fit_parameters, dtype=float).copy()

        def full(x: np.ndarray) -> np.ndarray:
            params = template.copy()
            params[free] = x
            return params

        # NaN regions away from the mode must not change the fit status
        flag_is_nan = self.flag_is_nan
        try:
            if not free.any():
                self.log_integral = -self.negative_log_likelihood(template)
            elif method is IntegrationMethod.QUADRATURE:
                ranges = list(zip(lower[free], upper[free]))
                reference = self.best_log_likelihood if np.isfinite(self.best_log_likelihood) else 0.0

                def integrand(*x: float) -> float:
                    return math.exp(-self.negative_log_likelihood(full(np.array(x))) - reference)

                value, _ = integrate.nquad(integrand, ranges)
                self.log_integral = math.log(value) + reference if value > 0 else -np.inf
            else:
                rng = np.random.default_rng(seed)
                samples = rng.uniform(lower[free], upper[free], size=(self.n_integration_samples, int(free.sum())))
                log_values = np.array([-self.negative_log_likelihood(full(x)) for x in samples])
                peak = np.max(log_values)
                volume = float(np.prod(upper[free] - lower[free]))
                self.log_integral = float(peak + math.log(np.mean(np.exp(log_values - peak)) * volume))
        finally:
            self.flag_is_nan = flag_is_nan

        self.logger.debug(f"log integral ({method.value}): {self.log_integral}")
        return self.log_integral
