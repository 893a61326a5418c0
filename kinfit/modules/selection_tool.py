"""
Object and event selection ahead of the kinematic fit

Reads a set of particles and returns the subset needed for fitting,
together with index maps back to the original objects and running
counters of how many events passed each class of cut.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, fields

import pandas as pd

from .exceptions import CutDefinitionError
from .particles import Particles, ParticleType


@dataclass(frozen=True)
class Cut:
    """
    Multiplicity requirement on one object category.

    At least `n` objects with pt >= `value` are required when `tolerance`
    is negative; otherwise the count must lie in [n - tolerance, n + tolerance].
    """

    value: float
    n: int
    tolerance: int = -1

    def accepts(self, count: int) -> bool:
        if self.tolerance < 0:
            return count >= self.n
        return self.n - self.tolerance <= count <= self.n + self.tolerance


@dataclass
class SelectionCounters:
    """Number of selected events, and of events passing each category of cut."""

    events: int = 0
    jets: int = 0
    electrons: int = 0
    muons: int = 0
    photons: int = 0
    met: int = 0

    def reset(self) -> None:
        for f in fields(self):
            setattr(self, f.name, 0)


_COUNTER_NAMES: dict[ParticleType, str] = {
    ParticleType.JET: "jets",
    ParticleType.ELECTRON: "electrons",
    ParticleType.MUON: "muons",
    ParticleType.PHOTON: "photons",
}


class SelectionTool:
    """
    Apply per-category pt/eta acceptance and multiplicity cuts.

    Attributes:
        particles_selected: Objects surviving the last successful selection
        counters: Running SelectionCounters
        max_jets_for_fit: Jets beyond this number are dropped (0 = no limit)
    """

    def __init__(self) -> None:
        self.logger: logging.Logger = logging.getLogger("KinFit.SelectionTool")

        self.particles_selected: Particles | None = None
        self.counters = SelectionCounters()
        self.max_jets_for_fit: int = 0
        self.met_cut: float | None = None

        self._cuts: dict[ParticleType, list[Cut]] = {ptype: [] for ptype in ParticleType}
        self._eta_max: dict[ParticleType, float] = {ptype: math.inf for ptype in ParticleType}
        self._maps: dict[ParticleType, list[int]] = {ptype: [] for ptype in ParticleType}

    # ------------------------------------------------------------------
    # Cut definition
    # ------------------------------------------------------------------

    def require_count(
        self, category: ParticleType | str, pt: float, n: int, tolerance: int = -1
    ) -> Cut:
        """
        Add a multiplicity cut on one category.

        Args:
            category: Object category
            pt: Minimum transverse momentum of the counted objects
            n: Required number of objects
            tolerance: Allowed deviation from n; negative means "at least n"

        Returns:
            The appended Cut

        Raises:
            CutDefinitionError: If n is negative or the category is unknown
        """
        ptype = ParticleType.parse(category)
        if n < 0:
            raise CutDefinitionError(f"Number of {ptype.value}s must be non-negative, got n={n}")

        cut = Cut(value=float(pt), n=int(n), tolerance=int(tolerance))
        self._cuts[ptype].append(cut)
        self.logger.debug(f"Added {ptype.value} cut: {cut}")
        return cut

    def require_n_jets_pt(self, pt: float, n: int, dn: int = -1) -> Cut:
        return self.require_count(ParticleType.JET, pt, n, dn)

    def require_n_electrons_pt(self, pt: float, n: int, dn: int = -1) -> Cut:
        return self.require_count(ParticleType.ELECTRON, pt, n, dn)

    def require_n_muons_pt(self, pt: float, n: int, dn: int = -1) -> Cut:
        return self.require_count(ParticleType.MUON, pt, n, dn)

    def require_n_photons_pt(self, pt: float, n: int, dn: int = -1) -> Cut:
        return self.require_count(ParticleType.PHOTON, pt, n, dn)

    def require_met(self, met: float) -> None:
        """
        Require a minimum missing transverse energy.

        Raises:
            CutDefinitionError: If met is negative
        """
        if met < 0:
            raise CutDefinitionError(f"Missing ET cut must be non-negative, got {met}")
        self.met_cut = float(met)

    def cuts(self, category: ParticleType | str) -> list[Cut]:
        """Registered cuts of one category, in insertion order."""
        return list(self._cuts[ParticleType.parse(category)])

    def set_category_eta_window(self, category: ParticleType | str, eta_max: float) -> None:
        """Accept objects with |eta| < eta_max in this category."""
        self._eta_max[ParticleType.parse(category)] = float(eta_max)

    def select_jet_eta(self, eta: float) -> None:
        self.set_category_eta_window(ParticleType.JET, eta)

    def select_electron_eta(self, eta: float) -> None:
        self.set_category_eta_window(ParticleType.ELECTRON, eta)

    def select_muon_eta(self, eta: float) -> None:
        self.set_category_eta_window(ParticleType.MUON, eta)

    def select_photon_eta(self, eta: float) -> None:
        self.set_category_eta_window(ParticleType.PHOTON, eta)

    def set_max_jets_for_fit(self, n: int) -> None:
        """Number of jets to consider in the fit (0 disables the limit)."""
        if n < 0:
            raise CutDefinitionError(f"Maximum number of jets must be non-negative, got {n}")
        self.max_jets_for_fit = int(n)

    # ------------------------------------------------------------------
    # Maps and counters
    # ------------------------------------------------------------------

    def map(self, category: ParticleType | str) -> list[int]:
        """Original indices of the selected objects of one category."""
        return list(self._maps[ParticleType.parse(category)])

    def map_jets(self) -> list[int]:
        return self.map(ParticleType.JET)

    def map_electrons(self) -> list[int]:
        return self.map(ParticleType.ELECTRON)

    def map_muons(self) -> list[int]:
        return self.map(ParticleType.MUON)

    def map_photons(self) -> list[int]:
        return self.map(ParticleType.PHOTON)

    def reset_maps(self) -> None:
        for ptype in ParticleType:
            self._maps[ptype] = []

    def reset_counter(self) -> None:
        self.counters.reset()

    def cutflow(self) -> pd.DataFrame:
        """
        Counters as a cut-flow table.

        Returns:
            DataFrame with one row per counter and its fraction of selected events
        """
        rows = []
        for f in fields(self.counters):
            count = getattr(self.counters, f.name)
            fraction = count / self.counters.events if self.counters.events > 0 else 0.0
            rows.append({"counter": f.name, "count": count, "fraction": fraction})
        return pd.DataFrame(rows)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def object_pt_cut(self, category: ParticleType | str) -> float:
        """
        Admission threshold of a category: the loosest of its cuts.

        Tighter cuts are enforced at the multiplicity level, not at admission.
        """
        cuts = self._cuts[ParticleType.parse(category)]
        if not cuts:
            return 0.0
        return min(cut.value for cut in cuts)

    def select_objects(self, particles: Particles) -> bool:
        """
        Read in a set of particles and keep only the selected objects.

        Args:
            particles: Event objects

        Returns:
            True if every multiplicity cut is satisfied, False otherwise.
            On False the maps are cleared and particles_selected is None.
        """
        self.reset_maps()
        self.particles_selected = None

        selected = Particles()
        maps: dict[ParticleType, list[int]] = {}

        for ptype in ParticleType:
            pt_min = self.object_pt_cut(ptype)
            eta_max = self._eta_max[ptype]

            kept: list[int] = []
            for index, particle in enumerate(particles.particles(ptype)):
                if particle.pt >= pt_min and abs(particle.eta) < eta_max:
                    kept.append(index)

            for cut in self._cuts[ptype]:
                n_pass = sum(1 for i in kept if particles.particle(i, ptype).pt >= cut.value)
                if not cut.accepts(n_pass):
                    self.logger.debug(
                        f"Event rejected: {n_pass} {ptype.value}s with pt >= {cut.value} "
                        f"(n={cut.n}, tolerance={cut.tolerance})"
                    )
                    return False

            maps[ptype] = kept

        if self.max_jets_for_fit > 0 and len(maps[ParticleType.JET]) > self.max_jets_for_fit:
            maps[ParticleType.JET] = self._leading_jets(particles, maps[ParticleType.JET])

        for ptype, kept in maps.items():
            for index in kept:
                original = particles.particle(index, ptype)
                selected.add_particle(
                    original.p4,
                    ptype,
                    name=original.name,
                    identifier=original.identifier,
                    btag_weight=original.btag_weight,
                    is_tagged=original.is_tagged,
                    btag_efficiency=original.btag_efficiency,
                    btag_rejection=original.btag_rejection,
                    true_flavor=original.true_flavor,
                    charge=original.charge,
                )

        self._maps = maps
        self.particles_selected = selected
        return True

    def _leading_jets(self, particles: Particles, kept: list[int]) -> list[int]:
        """Keep the max_jets_for_fit highest-pt jets in their original order."""
        # stable sort: equal pt keeps the earlier original index
        by_pt = sorted(kept, key=lambda i: -particles.particle(i, ParticleType.JET).pt)
        leading = sorted(by_pt[: self.max_jets_for_fit])
        self.logger.debug(f"Dropped {len(kept) - len(leading)} jets beyond max_jets_for_fit")
        return leading

    def select_event(self, particles: Particles, met: float = 0.0) -> int:
        """
        Select the event.

        Args:
            particles: Event objects
            met: Missing transverse energy

        Returns:
            1 if the event passed the selection, 0 otherwise
        """
        if self.met_cut is not None and met < self.met_cut:
            self.logger.debug(f"Event rejected: MET {met} < {self.met_cut}")
            self.reset_maps()
            self.particles_selected = None
            return 0

        if not self.select_objects(particles):
            return 0

        self.counters.events += 1
        for ptype, counter in _COUNTER_NAMES.items():
            if self._cuts[ptype]:
                setattr(self.counters, counter, getattr(self.counters, counter) + 1)
        if self.met_cut is not None:
            self.counters.met += 1

        return 1
