"""
Fit orchestration over object permutations

The Fitter owns the permutation table, the missing energy and the choice
of minimization method. For each permutation it re-initializes the
likelihood, runs the optimization strategies (with an annealing rescue
when MINUIT fails) and classifies the result.

Fit quality is reported as data through `minuit_status` and
`convergence_status`; fit_one() returning True only means the permutation was
processed.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

import numpy as np
import pandas as pd
from tqdm import tqdm

from ..utils.logging_config import get_tqdm_kwargs
from .detector import DetectorBase
from .exceptions import ConfigurationError, PermutationError
from .fit_status import ConvergenceFlags, MinuitStatus, PermutationResult
from .likelihood import (
    BTaggingMethod,
    FitContext,
    IntegrationMethod,
    LikelihoodBase,
    MissingEnergy,
)
from .optimizers import (
    MarkovChainConfig,
    MarkovChainStrategy,
    MinuitStrategy,
    OptimizationStrategy,
    SimulatedAnnealingStrategy,
)
from .particles import Particles
from .permutations import PermutationTable


class MinimizationMethod(Enum):
    MINUIT = "minuit"
    SIMULATED_ANNEALING = "simulated_annealing"
    MARKOV_CHAIN = "markov_chain"

    @classmethod
    def parse(cls, method: MinimizationMethod | str) -> MinimizationMethod:
        if isinstance(method, cls):
            return method
        try:
            return cls(str(method).lower())
        except ValueError:
            known = ", ".join(m.value for m in cls)
            raise ConfigurationError(
                f"Unknown minimization method '{method}'. Known methods: {known}"
            ) from None


# quadrature is only affordable in very few dimensions
_MAX_QUADRATURE_DIMENSION = 2


class Fitter:
    """
    Drive the likelihood fit of one event over its permutations.

    Attributes:
        minimization_method: Strategy used by fit_one()
        turn_off_sa: Skip the simulated-annealing rescue after a failed MINUIT pass
        markov_chain_config: Chain settings used in MARKOV_CHAIN mode and by fit_all()
        minuit_status: Status code of the last fit
        convergence_flags: Named diagnostics of the last fit_one()
        results: PermutationResult per processed permutation index
    """

    def __init__(
        self,
        minimization_method: MinimizationMethod | str = MinimizationMethod.MINUIT,
        turn_off_sa: bool = False,
        minuit: OptimizationStrategy | None = None,
        annealing: OptimizationStrategy | None = None,
        markov_chain: OptimizationStrategy | None = None,
        markov_chain_config: MarkovChainConfig | None = None,
    ) -> None:
        self.logger: logging.Logger = logging.getLogger("KinFit.Fitter")

        self.minimization_method = MinimizationMethod.parse(minimization_method)
        self.turn_off_sa = turn_off_sa
        self.markov_chain_config = markov_chain_config or MarkovChainConfig()

        self.minuit: OptimizationStrategy = minuit or MinuitStrategy()
        self.annealing: OptimizationStrategy = annealing or SimulatedAnnealingStrategy()
        self.markov_chain: OptimizationStrategy = markov_chain or MarkovChainStrategy(
            self.markov_chain_config
        )

        self.detector: DetectorBase | None = None
        self.likelihood: LikelihoodBase | None = None
        self.particles: Particles | None = None
        self.permutations = PermutationTable()
        self.missing_energy = MissingEnergy()

        self.minuit_status: int = 0
        self.convergence_flags = ConvergenceFlags()
        self.results: dict[int, PermutationResult] = {}

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    @property
    def convergence_status(self) -> int:
        """Convergence diagnostics of the last fit_one() as a bitmask."""
        return self.convergence_flags.to_bitmask()

    @property
    def particles_permuted(self) -> Particles | None:
        return self.permutations.active_permuted_view()

    def set_particles(self, particles: Particles) -> bool:
        """
        Set the measured particles and build their permutation table.

        Returns:
            False if no permutation can be activated
        """
        self.particles = particles
        self.results = {}
        return self._rebuild_permutations()

    def set_missing_energy_and_sum_et(self, etx: float, ety: float, sum_et: float) -> None:
        self.missing_energy = MissingEnergy(etx, ety, sum_et)

    def set_detector(self, detector: DetectorBase) -> None:
        self.detector = detector

    def set_likelihood(self, likelihood: LikelihoodBase) -> bool:
        self.likelihood = likelihood
        if self.particles is not None:
            return self._rebuild_permutations()
        return True

    def _rebuild_permutations(self) -> bool:
        n_jet_roles = self.likelihood.n_jet_roles if self.likelihood else None
        try:
            self.permutations.rebuild(self.particles, n_jet_roles)
        except PermutationError as e:
            self.logger.error(f"Cannot build permutations: {e}")
            return False

        if self.likelihood is not None:
            self.likelihood.remove_invariant_particle_permutations(self.permutations)

        return self.permutations.activate(0)

    def status(self) -> bool:
        """Check that particles, likelihood and a ready detector are defined."""
        if self.particles is None:
            self.logger.error("Set of measured particles not defined.")
            return False
        if self.likelihood is None:
            self.logger.error("No likelihood defined.")
            return False
        if self.detector is None:
            self.logger.error("No detector defined.")
            return False
        if not self.detector.status():
            return False
        return True

    def _configure_likelihood(self) -> None:
        self.likelihood.set_missing_energy(self.missing_energy)
        self.likelihood.initialize(
            FitContext(
                detector=self.detector,
                permutations=self.permutations,
                particles=self.permutations.active_permuted_view(),
                missing_energy=self.missing_energy,
            )
        )

    # ------------------------------------------------------------------
    # Fitting
    # ------------------------------------------------------------------

    def fit_one(self, index: int) -> bool:
        """
        Fit a single permutation.

        Args:
            index: Permutation index

        Returns:
            True if the permutation was processed; inspect minuit_status and
            convergence_status for the fit quality
        """
        if not self.status():
            return False
        if not self.permutations.activate(index):
            return False

        likelihood = self.likelihood
        self._configure_likelihood()
        likelihood.clear_nan_flag()
        self.convergence_flags.reset()

        if likelihood.btagging is not BTaggingMethod.NOTAG:
            likelihood.calculate_flavor_tags()

        initial = likelihood.initial_parameters()

        if self.minimization_method is MinimizationMethod.MARKOV_CHAIN:
            if isinstance(self.markov_chain, MarkovChainStrategy):
                self.markov_chain.config = self.markov_chain_config
            likelihood.find_mode(self.markov_chain, initial)
            self.minuit_status = int(MinuitStatus.OK)

        elif self.minimization_method is MinimizationMethod.SIMULATED_ANNEALING:
            likelihood.find_mode(self.annealing, initial)
            self.minuit_status = int(MinuitStatus.OK)

        else:
            self.minuit_status = likelihood.find_mode(self.minuit, initial).status

            if self.minuit_status == MinuitStatus.OK and likelihood.any_parameter_at_limit():
                self.minuit_status = int(MinuitStatus.AT_LIMIT_BEFORE_RETRY)
            if likelihood.is_nan():
                self.minuit_status = int(MinuitStatus.NAN_BEFORE_RETRY)

            if self.minuit_status != MinuitStatus.OK:
                self.logger.debug(
                    f"Permutation {index}: MINUIT status {self.minuit_status}, "
                    f"rerun{' after simulated annealing' if not self.turn_off_sa else ''}"
                )
                seed = initial
                if not self.turn_off_sa:
                    likelihood.clear_nan_flag()
                    seed = likelihood.find_mode(self.annealing, initial).parameters
                self.minuit_status = likelihood.find_mode(self.minuit, seed).status

            if self.minuit_status == MinuitStatus.DID_NOT_CONVERGE:
                self.convergence_flags.did_not_converge = True

        self._classify()

        if likelihood.flag_integrate:
            n_free = len(likelihood.free_parameter_names())
            method = (
                IntegrationMethod.QUADRATURE
                if n_free <= _MAX_QUADRATURE_DIMENSION
                else IntegrationMethod.MONTE_CARLO
            )
            likelihood.normalize(method)

        self._record(index, self.minimization_method.value, self.convergence_status)
        return True

    def _classify(self) -> None:
        """Post-fit checks; NaN overrides parameter-at-limit."""
        likelihood = self.likelihood
        if self.minuit_status == MinuitStatus.OK and likelihood.any_parameter_at_limit():
            self.minuit_status = int(MinuitStatus.AT_LIMIT)
            self.convergence_flags.parameter_at_limit = True

        if likelihood.is_nan():
            self.minuit_status = int(MinuitStatus.NAN)
            self.convergence_flags.aborted_due_to_nan = True
        elif not likelihood.transfer_functions_valid(likelihood.best_fit_parameters):
            self.minuit_status = int(MinuitStatus.INVALID_TRANSFER_FUNCTION)
            self.convergence_flags.invalid_transfer_function = True

    def fit_all(self) -> bool:
        """
        Fit every permutation: Markov-chain marginalization followed by a
        MINUIT refinement from the best point found.

        No convergence classification is made here; results carry
        convergence_status=None.

        Returns:
            False if the preconditions fail or a permutation cannot be activated
        """
        if not self.status():
            return False

        likelihood = self.likelihood
        if isinstance(self.markov_chain, MarkovChainStrategy):
            self.markov_chain.config = self.markov_chain_config

        n_permutations = self.permutations.count()
        for index in tqdm(range(n_permutations), **get_tqdm_kwargs("Permutations", unit="perm")):
            if not self.permutations.activate(index):
                return False

            self._configure_likelihood()

            likelihood.find_mode(self.markov_chain, likelihood.initial_parameters())
            self.minuit_status = likelihood.find_mode(self.minuit, likelihood.best_fit_parameters).status
            self._record(index, "markov_chain+minuit", None)

        return True

    def _record(self, index: int, method: str, convergence_status: int | None) -> None:
        self.results[index] = PermutationResult(
            index=index,
            method=method,
            log_likelihood=float(self.likelihood.best_log_likelihood),
            parameters=np.array(self.likelihood.best_fit_parameters, dtype=float),
            minuit_status=int(self.minuit_status),
            convergence_status=convergence_status,
        )

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def best_result(self) -> PermutationResult | None:
        """Recorded permutation with the largest log-likelihood."""
        if not self.results:
            return None
        return max(self.results.values(), key=lambda r: r.log_likelihood)

    def results_frame(self) -> pd.DataFrame:
        """All recorded permutation results, one row each."""
        names = self.likelihood.parameter_names() if self.likelihood else None
        rows: list[dict[str, Any]] = [
            self.results[i].as_row(names) for i in sorted(self.results)
        ]
        return pd.DataFrame(rows)
