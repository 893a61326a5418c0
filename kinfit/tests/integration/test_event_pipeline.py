"""
Integration tests for the event loop: selection, permutations and fits.
"""

from __future__ import annotations

import warnings
from pathlib import Path

import pytest

from kinfit.modules.event_interface import load_events, missing_energy_from_event, particles_from_event
from kinfit.modules.fitter import Fitter
from kinfit.modules.likelihood import MissingEnergy
from kinfit.modules.particles import Particles, ParticleType
from kinfit.modules.pipeline import EventPipeline
from kinfit.modules.selection_tool import SelectionTool
from kinfit.tests.utils import (
    GaussianLikelihood,
    ScriptedStrategy,
    ToyDetector,
    create_mock_ntuple,
    generate_mock_events,
    make_particles,
)


def scripted_fitter(likelihood: GaussianLikelihood) -> Fitter:
    fitter = Fitter(
        minuit=ScriptedStrategy("minuit", [([1.0, -2.0], 0)]),
        annealing=ScriptedStrategy("simulated_annealing", [([1.0, -2.0], 0)]),
        markov_chain=ScriptedStrategy("markov_chain", [([1.1, -2.1], 0)]),
    )
    fitter.set_detector(ToyDetector())
    fitter.set_likelihood(likelihood)
    return fitter


@pytest.fixture
def ttbar_likelihood() -> GaussianLikelihood:
    """Four jet roles with an interchangeable light-quark pair: 12 permutations of 4 jets."""
    return GaussianLikelihood(jet_roles=("b", "b", "light", "light"), invariant_jet_positions=(2, 3))


@pytest.mark.integration
class TestEventPipeline:
    """Selection and fit of a handful of hand-made events."""

    def _events(self, ljets_particles: Particles) -> list[tuple[Particles, MissingEnergy]]:
        three_jets = ljets_particles.copy()
        three_jets.remove_particle(0, ParticleType.JET)
        return [
            (ljets_particles, MissingEnergy(30.0, 0.0, 250.0)),
            (three_jets, MissingEnergy(30.0, 0.0, 250.0)),
            (ljets_particles, MissingEnergy(5.0, 0.0, 250.0)),
        ]

    def test_run(
        self,
        ljets_particles: Particles,
        ljets_selection: SelectionTool,
        ttbar_likelihood: GaussianLikelihood,
    ) -> None:
        """Test that only the event passing the selection is fitted, over all 12 permutations."""
        pipeline = EventPipeline(ljets_selection, scripted_fitter(ttbar_likelihood))
        results = pipeline.run(self._events(ljets_particles))

        assert pipeline.n_processed == 3
        assert pipeline.n_failed == 0
        assert ljets_selection.counters.events == 1
        assert len(results) == 1

        result = results[0]
        assert result.event_number == 0
        assert len(result.permutations) == 12
        assert result.maps[ParticleType.JET] == [0, 1, 2, 3]
        assert result.maps[ParticleType.ELECTRON] == [0]
        assert all(p.convergence_status == 0 for p in result.permutations)
        assert result.best is not None

    def test_missing_energy_reaches_likelihood(
        self,
        ljets_particles: Particles,
        ljets_selection: SelectionTool,
        ttbar_likelihood: GaussianLikelihood,
    ) -> None:
        """Verify the event MET is passed on to the likelihood."""
        pipeline = EventPipeline(ljets_selection, scripted_fitter(ttbar_likelihood))
        pipeline.process_event(0, ljets_particles, MissingEnergy(30.0, 40.0, 300.0))
        assert ttbar_likelihood.missing_energy.met == pytest.approx(50.0)
        assert ttbar_likelihood.missing_energy.sum_et == pytest.approx(300.0)

    def test_fit_all_mode(
        self,
        ljets_particles: Particles,
        ljets_selection: SelectionTool,
        ttbar_likelihood: GaussianLikelihood,
    ) -> None:
        """Test that fit_all mode records unclassified Markov chain plus MINUIT results."""
        pipeline = EventPipeline(ljets_selection, scripted_fitter(ttbar_likelihood), fit_all=True)
        result = pipeline.process_event(4, ljets_particles, MissingEnergy(30.0, 0.0, 250.0))

        assert result.event_number == 4
        assert len(result.permutations) == 12
        assert all(p.convergence_status is None for p in result.permutations)
        assert all(p.method == "markov_chain+minuit" for p in result.permutations)

    def test_unfittable_event_counts_as_failed(self, ljets_particles: Particles) -> None:
        """Test that an event with too few jets for the hypothesis counts as failed."""
        selection = SelectionTool()
        selection.require_n_jets_pt(20.0, 4)
        likelihood = GaussianLikelihood(jet_roles=("b",) * 5)
        pipeline = EventPipeline(selection, scripted_fitter(likelihood))

        assert pipeline.process_event(0, ljets_particles, MissingEnergy()) is None
        assert pipeline.n_failed == 1

    def test_summary(
        self,
        ljets_particles: Particles,
        ljets_selection: SelectionTool,
        ttbar_likelihood: GaussianLikelihood,
    ) -> None:
        """Test that the summary table holds the best permutation per event."""
        pipeline = EventPipeline(ljets_selection, scripted_fitter(ttbar_likelihood))
        results = pipeline.run(self._events(ljets_particles))

        table = EventPipeline.summary(results, ["p0", "p1"])
        assert list(table["event"]) == [0]
        assert table.loc[0, "p0"] == pytest.approx(1.0)
        assert table.loc[0, "minuit_status"] == 0

    def test_generated_events(self, ttbar_likelihood: GaussianLikelihood) -> None:
        """Test the loop over generated events with a jet limit."""
        selection = SelectionTool()
        selection.require_n_jets_pt(20.0, 4)
        selection.require_n_electrons_pt(20.0, 1, 0)
        selection.set_max_jets_for_fit(5)
        pipeline = EventPipeline(selection, scripted_fitter(ttbar_likelihood))

        events = generate_mock_events(n_events=30, seed=1)
        results = pipeline.run(events, total=len(events))

        assert len(results) == selection.counters.events
        for result in results:
            assert 4 <= len(result.maps[ParticleType.JET]) <= 5
            assert len(result.permutations) in (12, 60)

    @pytest.mark.parametrize("level", ["off", "all"])
    def test_run_applies_warning_level(
        self,
        ljets_particles: Particles,
        ljets_selection: SelectionTool,
        monkeypatch: pytest.MonkeyPatch,
        level: str,
    ) -> None:
        """Test that run() filters warnings raised while fitting and restores the filters afterwards."""
        monkeypatch.delenv("KINFIT_WARNINGS", raising=False)

        class WarningLikelihood(GaussianLikelihood):
            def log_likelihood(self, params):
                warnings.warn("flat likelihood region", RuntimeWarning)
                return super().log_likelihood(params)

        likelihood = WarningLikelihood(jet_roles=("b", "b", "light", "light"), invariant_jet_positions=(2, 3))
        pipeline = EventPipeline(ljets_selection, scripted_fitter(likelihood), warning_level=level)
        assert pipeline.warning_level == level

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            filters = list(warnings.filters)
            results = pipeline.run([(ljets_particles, MissingEnergy(30.0, 0.0, 250.0))])
            assert warnings.filters == filters

        assert len(results) == 1
        shown = [w for w in caught if "flat likelihood region" in str(w.message)]
        assert bool(shown) == (level == "all")


@pytest.mark.integration
class TestNtupleToFit:
    """Events read from a ROOT file and pushed through the pipeline."""

    def test_ntuple_events(self, tmp_test_dir: Path) -> None:
        """Test events read from a ROOT file through selection and fit."""
        path = create_mock_ntuple(tmp_test_dir / "events.root", n_events=6)
        events = load_events(path)

        selection = SelectionTool()
        selection.require_n_jets_pt(20.0, 3)
        selection.require_n_electrons_pt(20.0, 1, 0)
        pipeline = EventPipeline(selection, scripted_fitter(GaussianLikelihood(jet_roles=("b", "b", "light"))))

        results = pipeline.run(
            ((particles_from_event(e), missing_energy_from_event(e)) for e in events),
            total=len(events),
        )
        assert len(results) == 6
        for result in results:
            n_jets = len(result.maps[ParticleType.JET])
            assert len(result.permutations) == n_jets * (n_jets - 1) * (n_jets - 2)

    def test_btag_information_survives_selection(self) -> None:
        """Verify b-tag flags are kept on selected jets."""
        particles = make_particles(jets=[(60.0, 0.0), (50.0, 0.0), (40.0, 0.0), (35.0, 0.0)], tagged_jets=[1])
        selection = SelectionTool()
        selection.require_n_jets_pt(30.0, 4)
        assert selection.select_event(particles)
        assert [j.is_tagged for j in selection.particles_selected.particles("jet")] == [
            False,
            True,
            False,
            False,
        ]
