"""
Unit tests for LikelihoodBase bookkeeping.

Covers parameter limits, NaN flagging, flavour-tag weights and the
normalization integral.
"""

from __future__ import annotations

import math

import numpy as np
import pytest

from kinfit.modules.exceptions import FittingError
from kinfit.modules.likelihood import (
    NAN_PENALTY,
    BTaggingMethod,
    FitContext,
    IntegrationMethod,
    MissingEnergy,
    Parameter,
)
from kinfit.modules.particles import Particles
from kinfit.tests.utils import GaussianLikelihood, ScriptedStrategy, make_particles


def _initialize(likelihood: GaussianLikelihood, particles: Particles | None = None) -> None:
    likelihood.initialize(
        FitContext(detector=None, permutations=None, particles=particles, missing_energy=MissingEnergy())
    )


@pytest.mark.unit
class TestParameter:
    """Test limit detection."""

    def test_at_bounds(self) -> None:
        """Test that values on either bound count as at the limit."""
        parameter = Parameter("mtop", 0.0, 10.0)
        assert parameter.is_at_limit(0.0)
        assert parameter.is_at_limit(10.0)
        assert not parameter.is_at_limit(9.99)
        assert not parameter.is_at_limit(5.0)

    def test_fixed_never_at_limit(self) -> None:
        """Test that a fixed parameter is never at its limit."""
        parameter = Parameter("mw", 80.4, 80.4)
        assert parameter.is_fixed()
        assert not parameter.is_at_limit(80.4)


@pytest.mark.unit
class TestMissingEnergy:
    """Test the missing transverse momentum."""

    def test_met(self) -> None:
        """Verify MET is the magnitude of the transverse components."""
        assert MissingEnergy(3.0, 4.0, 100.0).met == pytest.approx(5.0)


@pytest.mark.unit
class TestInitialize:
    """Test per-permutation initialization."""

    def test_resets_fit_state(self, gaussian_likelihood: GaussianLikelihood) -> None:
        """Test that initialize resets weights, best values and parameters."""
        gaussian_likelihood.flavor_log_weight = -3.0
        gaussian_likelihood.best_log_likelihood = 12.0
        _initialize(gaussian_likelihood)

        assert gaussian_likelihood.parameter_names() == ["p0", "p1"]
        assert gaussian_likelihood.flavor_log_weight == 0.0
        assert gaussian_likelihood.best_log_likelihood == -np.inf
        np.testing.assert_allclose(gaussian_likelihood.best_fit_parameters, [0.0, 0.0])

    def test_no_parameters_raises(self) -> None:
        """Test that a likelihood without parameters raises FittingError."""
        likelihood = GaussianLikelihood(bounds=())
        with pytest.raises(FittingError, match="no parameters"):
            _initialize(likelihood)

    def test_context_particles(self, ljets_particles: Particles) -> None:
        """Verify the context particles are exposed on the likelihood."""
        likelihood = GaussianLikelihood()
        _initialize(likelihood, ljets_particles)
        assert likelihood.particles is ljets_particles

    def test_free_parameter_names(self) -> None:
        """Test that fixed parameters are not listed as free."""
        likelihood = GaussianLikelihood(bounds=((1.0, 1.0), (-10.0, 10.0)))
        _initialize(likelihood)
        assert likelihood.free_parameter_names() == ["p1"]


@pytest.mark.unit
class TestNegativeLogLikelihood:
    """Test NaN handling of the objective."""

    def test_finite_value(self, gaussian_likelihood: GaussianLikelihood) -> None:
        """Test that a finite value does not set the NaN flag."""
        _initialize(gaussian_likelihood)
        assert gaussian_likelihood.negative_log_likelihood([1.0, -2.0]) == pytest.approx(0.0)
        assert not gaussian_likelihood.is_nan()

    def test_nan_sets_flag_and_penalty(self, gaussian_likelihood: GaussianLikelihood) -> None:
        """Test that NaN sets the flag and returns the penalty."""
        _initialize(gaussian_likelihood)
        assert gaussian_likelihood.negative_log_likelihood([np.nan, 0.0]) == NAN_PENALTY
        assert gaussian_likelihood.is_nan()
        gaussian_likelihood.clear_nan_flag()
        assert not gaussian_likelihood.is_nan()

    def test_infinite_value_is_penalized_without_nan_flag(
        self, gaussian_likelihood: GaussianLikelihood
    ) -> None:
        """Test that an infinite value is penalized without flagging NaN."""
        _initialize(gaussian_likelihood)
        gaussian_likelihood.flavor_log_weight = -np.inf
        assert gaussian_likelihood.negative_log_likelihood([1.0, -2.0]) == NAN_PENALTY
        assert not gaussian_likelihood.is_nan()


@pytest.mark.unit
class TestFindMode:
    """Test storage of mode-finding results."""

    def test_stores_best_parameters(self, gaussian_likelihood: GaussianLikelihood) -> None:
        """Test that find_mode stores the result of the strategy."""
        _initialize(gaussian_likelihood)
        strategy = ScriptedStrategy("minuit", [([1.0, -2.0], 0)])
        result = gaussian_likelihood.find_mode(strategy, [0.0, 0.0])

        assert result.status == 0
        np.testing.assert_allclose(gaussian_likelihood.best_fit_parameters, [1.0, -2.0])
        assert gaussian_likelihood.best_log_likelihood == pytest.approx(0.0)
        np.testing.assert_allclose(strategy.calls[0], [0.0, 0.0])

    def test_at_limit_detection(self, gaussian_likelihood: GaussianLikelihood) -> None:
        """Test detection of parameters at their limits."""
        _initialize(gaussian_likelihood)
        assert not gaussian_likelihood.any_parameter_at_limit([1.0, -2.0])
        assert gaussian_likelihood.any_parameter_at_limit([10.0, -2.0])
        assert gaussian_likelihood.parameter_is_at_limit(1, -10.0)


@pytest.mark.unit
class TestFlavorTags:
    """Test b-tagging weights of a permutation."""

    ROLES = ("b", "b", "light", "light")

    def _likelihood(self, method: BTaggingMethod, tagged: list[int]) -> GaussianLikelihood:
        likelihood = GaussianLikelihood(jet_roles=self.ROLES, btagging=method)
        particles = make_particles(
            jets=[(80.0, 0.0), (60.0, 0.0), (45.0, 0.0), (30.0, 0.0)],
            tagged_jets=tagged,
            btag_efficiency=0.7,
            btag_rejection=100.0,
        )
        _initialize(likelihood, particles)
        return likelihood

    def test_notag_weight_is_zero(self) -> None:
        """Test that b-tagging off adds no weight."""
        likelihood = self._likelihood(BTaggingMethod.NOTAG, [2])
        assert likelihood.calculate_flavor_tags() == 0.0

    def test_veto_accepts_tag_in_b_role(self) -> None:
        """Test that tagged jets in b roles pass the veto."""
        likelihood = self._likelihood(BTaggingMethod.VETO, [0, 1])
        assert likelihood.calculate_flavor_tags() == 0.0

    def test_veto_rejects_tag_in_light_role(self) -> None:
        """Test that a tagged jet in a light role is vetoed."""
        likelihood = self._likelihood(BTaggingMethod.VETO, [2])
        assert likelihood.calculate_flavor_tags() == -np.inf
        assert likelihood.negative_log_likelihood([1.0, -2.0]) == NAN_PENALTY

    def test_working_point_weight(self) -> None:
        """Verify the working-point weight from efficiency and rejection."""
        likelihood = self._likelihood(BTaggingMethod.WORKING_POINT, [0, 3])
        expected = math.log(0.7) + math.log(0.3) + math.log(0.99) + math.log(0.01)
        assert likelihood.calculate_flavor_tags() == pytest.approx(expected)
        assert likelihood.flavor_log_weight == pytest.approx(expected)


@pytest.mark.unit
class TestNormalize:
    """Test the integral of L over the parameter ranges."""

    def test_quadrature(self, gaussian_likelihood: GaussianLikelihood) -> None:
        """Test the quadrature integral of a unit Gaussian."""
        _initialize(gaussian_likelihood)
        log_integral = gaussian_likelihood.normalize(IntegrationMethod.QUADRATURE)
        assert log_integral == pytest.approx(math.log(2 * math.pi), abs=1e-4)
        assert gaussian_likelihood.log_integral == log_integral
        assert gaussian_likelihood.integration_method is IntegrationMethod.QUADRATURE

    def test_monte_carlo(self) -> None:
        """Test the Monte Carlo integral of a unit Gaussian."""
        likelihood = GaussianLikelihood(mean=(0.0, 0.0), bounds=((-4.0, 4.0), (-4.0, 4.0)))
        _initialize(likelihood)
        log_integral = likelihood.normalize(IntegrationMethod.MONTE_CARLO, seed=11)
        assert log_integral == pytest.approx(math.log(2 * math.pi), abs=0.06)

    def test_fixed_parameter_not_integrated(self) -> None:
        """Test that fixed parameters are left out of the integral."""
        likelihood = GaussianLikelihood(bounds=((1.0, 1.0), (-10.0, 10.0)), start=(1.0, 0.0))
        _initialize(likelihood)
        log_integral = likelihood.normalize(IntegrationMethod.QUADRATURE)
        assert log_integral == pytest.approx(0.5 * math.log(2 * math.pi), abs=1e-4)

    def test_all_parameters_fixed(self) -> None:
        """Test that a fully fixed model integrates to its value at the fixed point."""
        likelihood = GaussianLikelihood(bounds=((1.0, 1.0), (-2.0, -2.0)), start=(1.0, -2.0))
        _initialize(likelihood)
        assert likelihood.normalize() == pytest.approx(0.0)

    @pytest.mark.parametrize("method", [IntegrationMethod.QUADRATURE, IntegrationMethod.MONTE_CARLO])
    def test_nan_flag_unchanged(self, method: IntegrationMethod) -> None:
        """Test that NaN regions inside the integration range keep the NaN flag as it was."""

        class NaNTail(GaussianLikelihood):
            def log_likelihood(self, params):
                return float("nan") if params[0] > 5.0 else super().log_likelihood(params)

        likelihood = NaNTail()
        _initialize(likelihood)
        likelihood.best_fit_parameters = np.array([1.0, -2.0])

        assert np.isfinite(likelihood.normalize(method, seed=3))
        assert not likelihood.is_nan()

        likelihood.flag_is_nan = True
        likelihood.normalize(method, seed=3)
        assert likelihood.is_nan()
