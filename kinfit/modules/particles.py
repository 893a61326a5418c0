"""
Particle collections for kinematic fitting

A Particles object holds the reconstructed objects of one event, grouped
by category (jets, electrons, muons, photons). Four-momenta are
scikit-hep `vector` objects so that pt, eta, phi and mass are available
regardless of how the object was constructed.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

import vector

from .exceptions import CutDefinitionError


class ParticleType(Enum):
    """Object categories known to the selection and the permutation table."""

    JET = "jet"
    ELECTRON = "electron"
    MUON = "muon"
    PHOTON = "photon"

    @classmethod
    def parse(cls, category: ParticleType | str) -> ParticleType:
        """
        Convert a category name into a ParticleType.

        Args:
            category: ParticleType or its name ("jet", "jets", "Electron", ...)

        Returns:
            Matching ParticleType

        Raises:
            CutDefinitionError: If the name is not a known category
        """
        if isinstance(category, cls):
            return category
        name = str(category).strip().lower()
        if name.endswith("s"):
            name = name[:-1]
        try:
            return cls(name)
        except ValueError:
            known = ", ".join(t.value for t in cls)
            raise CutDefinitionError(
                f"Unknown particle category '{category}'. Known categories: {known}"
            ) from None


@dataclass
class Particle:
    """
    One reconstructed object.

    Attributes:
        p4: Four-momentum (vector.MomentumObject4D)
        name: Free-form label, e.g. "jet_0"
        identifier: Index of the object in the original (unselected) event
        btag_weight: Continuous b-tagging discriminant
        is_tagged: Whether the jet passes the b-tagging working point
        btag_efficiency: Tagging efficiency for true b-jets at the working point
        btag_rejection: Rejection (1 / mistag rate) for light jets
        true_flavor: Truth flavour label (MC only), e.g. "b" or "light"
        charge: Electric charge for leptons, 0 for jets and photons
    """

    p4: Any
    name: str = ""
    identifier: int = -1
    btag_weight: float = 0.0
    is_tagged: bool = False
    btag_efficiency: float = 0.0
    btag_rejection: float = 1.0
    true_flavor: str = ""
    charge: int = 0

    @property
    def pt(self) -> float:
        return float(self.p4.pt)

    @property
    def eta(self) -> float:
        return float(self.p4.eta)

    @property
    def phi(self) -> float:
        return float(self.p4.phi)

    @property
    def energy(self) -> float:
        return float(self.p4.E)


@dataclass
class Particles:
    """
    Categorised set of reconstructed objects for one event.

    Objects keep their insertion order inside each category; that order is
    what index maps and permutations refer to.
    """

    _objects: dict[ParticleType, list[Particle]] = field(
        default_factory=lambda: {ptype: [] for ptype in ParticleType}
    )

    def add_particle(
        self,
        p4: Any,
        ptype: ParticleType | str,
        name: str = "",
        identifier: int | None = None,
        **attributes: Any,
    ) -> Particle:
        """
        Append an object to a category.

        Args:
            p4: Four-momentum; any vector object
            ptype: Category of the object
            name: Optional label
            identifier: Original index; defaults to the position in the category
            **attributes: Further Particle fields (btag_weight, is_tagged, ...)

        Returns:
            The created Particle
        """
        ptype = ParticleType.parse(ptype)
        if identifier is None:
            identifier = len(self._objects[ptype])
        particle = Particle(p4=p4, name=name, identifier=identifier, **attributes)
        self._objects[ptype].append(particle)
        return particle

    def add_from_pt_eta_phi(
        self,
        ptype: ParticleType | str,
        pt: float,
        eta: float,
        phi: float = 0.0,
        mass: float = 0.0,
        **kwargs: Any,
    ) -> Particle:
        """Append an object built from (pt, eta, phi, mass)."""
        p4 = vector.obj(pt=pt, eta=eta, phi=phi, mass=mass)
        return self.add_particle(p4, ptype, **kwargs)

    def particles(self, ptype: ParticleType | str) -> list[Particle]:
        """Ordered objects of one category."""
        return self._objects[ParticleType.parse(ptype)]

    def particle(self, index: int, ptype: ParticleType | str) -> Particle:
        return self.particles(ptype)[index]

    def count(self, ptype: ParticleType | str) -> int:
        return len(self.particles(ptype))

    def remove_particle(self, index: int, ptype: ParticleType | str) -> Particle:
        """Remove and return the object at `index` in its category."""
        return self.particles(ptype).pop(index)

    @property
    def n_jets(self) -> int:
        return self.count(ParticleType.JET)

    @property
    def n_electrons(self) -> int:
        return self.count(ParticleType.ELECTRON)

    @property
    def n_muons(self) -> int:
        return self.count(ParticleType.MUON)

    @property
    def n_photons(self) -> int:
        return self.count(ParticleType.PHOTON)

    def copy(self) -> Particles:
        """Deep copy; four-momenta are immutable and shared."""
        return Particles({ptype: [copy.copy(p) for p in objs] for ptype, objs in self._objects.items()})

    def __len__(self) -> int:
        return sum(len(objs) for objs in self._objects.values())

    def __iter__(self) -> Iterator[tuple[ParticleType, Particle]]:
        for ptype in ParticleType:
            for particle in self._objects[ptype]:
                yield ptype, particle

    def summary(self) -> dict[str, list[tuple[float, float]]]:
        """(pt, eta) of every object by category name."""
        return {
            ptype.value: [(p.pt, p.eta) for p in self._objects[ptype]] for ptype in ParticleType
        }
