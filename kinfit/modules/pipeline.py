"""
Event loop: selection, permutations and fits

For every event the selection reduces the objects, the fitter builds the
permutation table over the selected objects and each permutation is
fitted. Results keep the selection index maps so fitted objects can be
traced back to the input collections.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

import pandas as pd
from tqdm import tqdm

from ..utils.logging_config import WarningLevel, get_tqdm_kwargs, warning_scope
from .fit_status import PermutationResult
from .fitter import Fitter
from .likelihood import MissingEnergy
from .particles import Particles, ParticleType
from .selection_tool import SelectionTool


@dataclass
class EventResult:
    """Fit output of one selected event."""

    event_number: int
    permutations: list[PermutationResult]
    maps: dict[ParticleType, list[int]] = field(default_factory=dict)

    @property
    def best(self) -> PermutationResult | None:
        if not self.permutations:
            return None
        return max(self.permutations, key=lambda r: r.log_likelihood)


class EventPipeline:
    """
    Run selection and fitting over a sequence of events.

    Attributes:
        selection: Configured SelectionTool
        fitter: Fitter with likelihood and detector set
        fit_all: Use Fitter.fit_all instead of fit_one per permutation
        warning_level: Warning filters applied while run() loops over events
    """

    def __init__(
        self,
        selection: SelectionTool,
        fitter: Fitter,
        fit_all: bool = False,
        warning_level: WarningLevel = "off",
    ) -> None:
        self.logger: logging.Logger = logging.getLogger("KinFit.EventPipeline")
        self.selection = selection
        self.fitter = fitter
        self.fit_all = fit_all
        self.warning_level = warning_level
        self.n_processed = 0
        self.n_failed = 0

    def process_event(
        self, event_number: int, particles: Particles, missing_energy: MissingEnergy
    ) -> EventResult | None:
        """
        Select and fit one event.

        Returns:
            EventResult, or None if the event fails the selection or cannot be fitted
        """
        self.n_processed += 1
        if not self.selection.select_event(particles, missing_energy.met):
            return None

        maps = {ptype: self.selection.map(ptype) for ptype in ParticleType}
        fitter = self.fitter
        if not fitter.set_particles(self.selection.particles_selected):
            self.n_failed += 1
            return None
        fitter.set_missing_energy_and_sum_et(
            missing_energy.etx, missing_energy.ety, missing_energy.sum_et
        )

        if self.fit_all:
            ok = fitter.fit_all()
        else:
            ok = all(fitter.fit_one(i) for i in range(fitter.permutations.count()))
        if not ok:
            self.logger.warning(f"Event {event_number}: fit aborted")
            self.n_failed += 1
            return None

        return EventResult(
            event_number=event_number,
            permutations=[fitter.results[i] for i in sorted(fitter.results)],
            maps=maps,
        )

    def run(self, events: Iterable[tuple[Particles, MissingEnergy]], total: int | None = None) -> list[EventResult]:
        """Process (particles, missing_energy) pairs; returns results of selected events."""
        results = []
        with warning_scope(self.warning_level):
            for event_number, (particles, missing_energy) in enumerate(
                tqdm(events, total=total, **get_tqdm_kwargs("Events", unit="evt"))
            ):
                result = self.process_event(event_number, particles, missing_energy)
                if result is not None:
                    results.append(result)

        self.logger.info(
            f"Processed {self.n_processed} events: {self.selection.counters.events} selected, "
            f"{len(results)} fitted, {self.n_failed} failed"
        )
        return results

    @staticmethod
    def summary(results: list[EventResult], parameter_names: list[str] | None = None) -> pd.DataFrame:
        """Best permutation of every event as one table row."""
        rows = []
        for result in results:
            best = result.best
            if best is None:
                continue
            row = {"event": result.event_number}
            row.update(best.as_row(parameter_names))
            rows.append(row)
        return pd.DataFrame(rows)
