"""
Mode-finding strategies

Every strategy exposes the same contract,

    run_mode_finding(likelihood, initial_guess) -> ModeResult

so the fitter can hold a reference to "the current strategy" and swap
implementations (or test doubles) freely. Parameters whose lower and upper
bounds coincide are held fixed and hidden from the underlying optimizer.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

import emcee
import numpy as np
from iminuit import Minuit
from scipy.optimize import dual_annealing

from .exceptions import FittingError
from .fit_status import MinuitStatus, ModeResult

if TYPE_CHECKING:
    from .likelihood import LikelihoodBase


class _FreeParameterView:
    """Map between the full parameter vector and the free (non-fixed) subset."""

    def __init__(self, likelihood: LikelihoodBase, initial_guess: np.ndarray) -> None:
        lower, upper = likelihood.parameter_bounds()
        full = np.asarray(initial_guess, dtype=float)
        if full.shape != lower.shape:
            raise FittingError(
                f"Initial guess has {full.size} entries, likelihood has {lower.size} parameters"
            )
        if np.any(lower > upper):
            raise FittingError("Inconsistent parameter bounds: lower limit above upper limit")

        self.likelihood = likelihood
        self.free = lower < upper
        self.template = np.clip(full, lower, upper)
        self.lower = lower[self.free]
        self.upper = upper[self.free]

    @property
    def ndim(self) -> int:
        return int(self.free.sum())

    def start(self) -> np.ndarray:
        return self.template[self.free].copy()

    def expand(self, x: np.ndarray) -> np.ndarray:
        full = self.template.copy()
        full[self.free] = x
        return full

    def nll(self) -> Callable[[np.ndarray], float]:
        def objective(x: np.ndarray) -> float:
            return self.likelihood.negative_log_likelihood(self.expand(x))

        return objective


class OptimizationStrategy(ABC):
    """Base class of all mode-finding strategies."""

    name: str = "base"

    def __init__(self) -> None:
        self.logger: logging.Logger = logging.getLogger(f"KinFit.Optimizer.{self.name}")

    @abstractmethod
    def run_mode_finding(self, likelihood: LikelihoodBase, initial_guess: np.ndarray) -> ModeResult:
        """Search for the maximum of the likelihood starting from initial_guess."""


class MinuitStrategy(OptimizationStrategy):
    """
    Deterministic minimization of -log L with MIGRAD (iminuit).

    Status 0 means a valid minimum; any invalid minimum (EDM above
    tolerance, call limit reached, failed Hesse) is reported as 4.
    """

    name = "minuit"

    def __init__(self, ncall: int | None = None, tolerance: float = 0.1, strategy: int = 1) -> None:
        super().__init__()
        self.ncall = ncall
        self.tolerance = tolerance
        self.strategy = strategy

    def run_mode_finding(self, likelihood: LikelihoodBase, initial_guess: np.ndarray) -> ModeResult:
        view = _FreeParameterView(likelihood, initial_guess)
        if view.ndim == 0:
            params = view.expand(view.start())
            return ModeResult(params, MinuitStatus.OK, likelihood.log_likelihood(params))

        m = Minuit(view.nll(), view.start(), name=likelihood.free_parameter_names())
        m.errordef = Minuit.LIKELIHOOD
        m.limits = list(zip(view.lower, view.upper))
        m.tol = self.tolerance
        m.strategy = self.strategy
        m.print_level = 0
        m.migrad(ncall=self.ncall)

        params = view.expand(np.array(m.values, dtype=float))
        status = MinuitStatus.OK if m.fmin.is_valid else MinuitStatus.DID_NOT_CONVERGE
        self.logger.debug(
            f"MIGRAD finished: valid={m.fmin.is_valid}, edm={m.fmin.edm:.3g}, nfcn={m.fmin.nfcn}"
        )
        return ModeResult(
            params,
            int(status),
            -float(m.fval),
            details={"edm": float(m.fmin.edm), "nfcn": int(m.fmin.nfcn), "errors": np.array(m.errors)},
        )


class SimulatedAnnealingStrategy(OptimizationStrategy):
    """
    Stochastic global search (scipy dual annealing).

    The start temperature t0 and the final temperature t_min map onto
    `initial_temp` and `restart_temp_ratio = t_min / t0`.
    """

    name = "simulated_annealing"

    def __init__(
        self,
        t0: float = 10.0,
        t_min: float = 0.001,
        maxiter: int = 1000,
        seed: int | None = None,
    ) -> None:
        super().__init__()
        if not 0.0 < t_min < t0:
            raise FittingError(f"Annealing temperatures must satisfy 0 < t_min < t0, got {t_min}, {t0}")
        self.t0 = t0
        self.t_min = t_min
        self.maxiter = maxiter
        self.seed = seed

    def run_mode_finding(self, likelihood: LikelihoodBase, initial_guess: np.ndarray) -> ModeResult:
        view = _FreeParameterView(likelihood, initial_guess)
        if view.ndim == 0:
            params = view.expand(view.start())
            return ModeResult(params, 0, likelihood.log_likelihood(params))

        kwargs = {"seed": self.seed} if self.seed is not None else {}
        result = dual_annealing(
            view.nll(),
            bounds=list(zip(view.lower, view.upper)),
            x0=view.start(),
            maxiter=self.maxiter,
            initial_temp=self.t0,
            restart_temp_ratio=self.t_min / self.t0,
            **kwargs,
        )
        params = view.expand(np.asarray(result.x, dtype=float))
        self.logger.debug(f"Annealing finished: {result.message} (nfev={result.nfev})")
        return ModeResult(
            params,
            0 if result.success else int(MinuitStatus.DID_NOT_CONVERGE),
            -float(result.fun),
            details={"nfev": int(result.nfev)},
        )


@dataclass
class MarkovChainConfig:
    """Chain count and iteration budget of the Markov-chain marginalization."""

    n_chains: int = 5
    n_iterations_run: int = 2000
    n_iterations_max: int = 1000
    n_iterations_update: int = 100
    seed: int | None = None

    def __post_init__(self) -> None:
        if self.n_chains < 1:
            raise FittingError(f"Markov chain needs at least one chain, got n_chains={self.n_chains}")
        if self.n_iterations_run < 1:
            raise FittingError(f"n_iterations_run must be positive, got {self.n_iterations_run}")
        if self.n_iterations_max < 0:
            raise FittingError(f"n_iterations_max must not be negative, got {self.n_iterations_max}")
        if self.n_iterations_update < 1:
            raise FittingError(f"n_iterations_update must be positive, got {self.n_iterations_update}")


class MarkovChainStrategy(OptimizationStrategy):
    """
    Markov-chain marginalization with an ensemble sampler (emcee).

    The burn-in runs `n_iterations_max` steps, the main run
    `n_iterations_run` steps. The sample with the largest log-likelihood is
    returned as the mode; marginal summaries go into `details["marginals"]`.
    """

    name = "markov_chain"

    def __init__(self, config: MarkovChainConfig | None = None) -> None:
        super().__init__()
        self.config = config or MarkovChainConfig()

    def n_walkers(self, ndim: int) -> int:
        # the stretch move needs at least 2 * ndim walkers
        n = max(self.config.n_chains, 2 * ndim + 2)
        return n + (n % 2)

    def run_mode_finding(self, likelihood: LikelihoodBase, initial_guess: np.ndarray) -> ModeResult:
        view = _FreeParameterView(likelihood, initial_guess)
        if view.ndim == 0:
            params = view.expand(view.start())
            return ModeResult(params, 0, likelihood.log_likelihood(params))

        rng = np.random.default_rng(self.config.seed)
        nwalkers = self.n_walkers(view.ndim)
        nll = view.nll()

        def log_prob(x: np.ndarray) -> float:
            if np.any(x < view.lower) or np.any(x > view.upper):
                return -np.inf
            value = -nll(x)
            return value if np.isfinite(value) else -np.inf

        # small jitter around the start point, clipped inside the bounds
        width = view.upper - view.lower
        pos = view.start() + 1e-3 * width * rng.standard_normal((nwalkers, view.ndim))
        pos = np.clip(pos, view.lower + 1e-12 * width, view.upper - 1e-12 * width)

        sampler = emcee.EnsembleSampler(nwalkers, view.ndim, log_prob)
        if self.config.seed is not None:
            sampler.random_state = np.random.RandomState(self.config.seed).get_state()

        state = pos
        if self.config.n_iterations_max > 0:
            for step, state in enumerate(
                sampler.sample(pos, iterations=self.config.n_iterations_max), start=1
            ):
                if step % self.config.n_iterations_update == 0:
                    self.logger.debug(
                        f"Burn-in step {step}: mean acceptance "
                        f"{np.mean(sampler.acceptance_fraction):.3f}"
                    )
            sampler.reset()

        sampler.run_mcmc(state, self.config.n_iterations_run, progress=False)
        chain = sampler.get_chain(flat=True)
        log_probs = sampler.get_log_prob(flat=True)

        best = int(np.argmax(log_probs))
        params = view.expand(chain[best])
        std = np.zeros_like(params)
        std[view.free] = chain.std(axis=0)
        marginals = {
            "mean": view.expand(chain.mean(axis=0)),
            "std": std,
            "quantiles": {q: view.expand(np.percentile(chain, q, axis=0)) for q in (16, 50, 84)},
        }

        return ModeResult(
            params,
            0,
            float(log_probs[best]),
            details={
                "marginals": marginals,
                "acceptance": float(np.mean(sampler.acceptance_fraction)),
                "n_walkers": nwalkers,
            },
        )
