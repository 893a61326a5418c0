"""
Read reconstructed events into Particles

Events are flat ntuples with one jagged branch per object attribute,
e.g. jet_pt, jet_eta, jet_phi, jet_e for the jet collection. Trees are
read with uproot into awkward arrays, and collections stored as record
branches are renamed to the same flat layout. Each event record is then
turned into a Particles object and a MissingEnergy.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path

import awkward as ak
import uproot
import vector

from .exceptions import BranchMissingError, DataLoadError
from .likelihood import MissingEnergy
from .particles import Particles, ParticleType

logger = logging.getLogger("KinFit.EventInterface")


@dataclass(frozen=True)
class CollectionBranches:
    """Branch names of one object collection."""

    pt: str
    eta: str
    phi: str
    energy: str
    btag_weight: str | None = None
    is_tagged: str | None = None
    charge: str | None = None

    @classmethod
    def with_prefix(cls, prefix: str, btag: bool = False, charge: bool = False) -> CollectionBranches:
        return cls(
            pt=f"{prefix}_pt",
            eta=f"{prefix}_eta",
            phi=f"{prefix}_phi",
            energy=f"{prefix}_e",
            btag_weight=f"{prefix}_btag_weight" if btag else None,
            is_tagged=f"{prefix}_has_btag" if btag else None,
            charge=f"{prefix}_charge" if charge else None,
        )

    def names(self) -> list[str]:
        return [
            b
            for b in (self.pt, self.eta, self.phi, self.energy, self.btag_weight, self.is_tagged, self.charge)
            if b is not None
        ]


DEFAULT_COLLECTIONS: dict[ParticleType, CollectionBranches] = {
    ParticleType.JET: CollectionBranches.with_prefix("jet", btag=True),
    ParticleType.ELECTRON: CollectionBranches.with_prefix("el", charge=True),
    ParticleType.MUON: CollectionBranches.with_prefix("mu", charge=True),
    ParticleType.PHOTON: CollectionBranches.with_prefix("ph"),
}

DEFAULT_MET_BRANCHES: tuple[str, str, str] = ("met_met", "met_phi", "met_sumet")


def load_events(
    file_path: str | Path,
    tree_name: str = "nominal",
    branches: list[str] | None = None,
) -> ak.Array:
    """
    Load an event tree into an awkward array.

    Args:
        file_path: ROOT file
        tree_name: Tree inside the file
        branches: Branches to read; all if None

    Returns:
        Awkward array with one record per event

    Raises:
        DataLoadError: If the file or tree cannot be opened
        BranchMissingError: If a requested branch does not exist
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise DataLoadError(f"Event file not found: {file_path}")

    try:
        with uproot.open(file_path) as file:
            if tree_name not in file:
                available = list(file.keys())
                raise DataLoadError(
                    f"Tree '{tree_name}' not found in {file_path}\n" f"Available objects: {available}"
                )
            tree = file[tree_name]
            if branches is not None:
                available_branches = set(tree.keys())
                for branch in branches:
                    if branch not in available_branches:
                        raise BranchMissingError(branch, str(file_path))
            events = tree.arrays(branches, library="ak")
    except (OSError, ValueError) as e:
        raise DataLoadError(f"Cannot read {file_path}: {e}") from e

    events = _flatten_collections(events)

    logger.info(f"Loaded {len(events)} events from {file_path}:{tree_name}")
    return events


def _flatten_collections(events: ak.Array) -> ak.Array:
    """
    Expand record branches into flat "<collection>_<field>" columns.

    Trees written from awkward records store a collection as one branch
    with sub-branches (jet, jet.pt, ...); they are read back as nested
    records and renamed here to the flat layout (jet_pt, ...).
    """
    columns = {}
    nested = False
    for name in events.fields:
        column = events[name]
        fields = ak.fields(column)
        if fields:
            nested = True
            for field in fields:
                # sub-branch names may carry the parent prefix (jet.pt)
                attribute = field.removeprefix(f"{name}.")
                columns[f"{name}_{attribute}"] = column[field]
        else:
            columns[name.replace(".", "_")] = column
            nested = nested or "." in name
    if not nested:
        return events
    logger.debug(f"Flattened record branches into {sorted(columns)}")
    return ak.zip(columns, depth_limit=1)


def _field(event: ak.Record, branch: str) -> ak.Array:
    if branch not in event.fields:
        raise BranchMissingError(branch)
    return event[branch]


def particles_from_event(
    event: ak.Record,
    collections: dict[ParticleType, CollectionBranches] | None = None,
    btag_efficiency: float = 0.0,
    btag_rejection: float = 1.0,
) -> Particles:
    """
    Build Particles from one event record.

    Args:
        event: One record of an array returned by load_events
        collections: Branch names per category; categories absent from the
            mapping are left empty
        btag_efficiency: Working-point efficiency assigned to every jet
        btag_rejection: Working-point light-jet rejection assigned to every jet

    Returns:
        Particles with objects in branch order

    Raises:
        BranchMissingError: If a configured branch is missing from the record
    """
    if collections is None:
        collections = {
            ptype: branches
            for ptype, branches in DEFAULT_COLLECTIONS.items()
            if branches.pt in event.fields
        }
        if not collections:
            logger.warning(
                f"No known object collection in event with fields {event.fields}; "
                f"expected one of {[b.pt for b in DEFAULT_COLLECTIONS.values()]}"
            )

    particles = Particles()
    for ptype, branches in collections.items():
        pts = ak.to_list(_field(event, branches.pt))
        etas = ak.to_list(_field(event, branches.eta))
        phis = ak.to_list(_field(event, branches.phi))
        energies = ak.to_list(_field(event, branches.energy))
        weights = ak.to_list(_field(event, branches.btag_weight)) if branches.btag_weight else None
        tagged = ak.to_list(_field(event, branches.is_tagged)) if branches.is_tagged else None
        charges = ak.to_list(_field(event, branches.charge)) if branches.charge else None

        for i, (pt, eta, phi, energy) in enumerate(zip(pts, etas, phis, energies)):
            attributes = {}
            if ptype is ParticleType.JET:
                attributes["btag_efficiency"] = btag_efficiency
                attributes["btag_rejection"] = btag_rejection
            if weights is not None:
                attributes["btag_weight"] = float(weights[i])
            if tagged is not None:
                attributes["is_tagged"] = bool(tagged[i])
            if charges is not None:
                attributes["charge"] = int(charges[i])
            particles.add_particle(
                vector.obj(pt=pt, eta=eta, phi=phi, E=energy),
                ptype,
                name=f"{ptype.value}_{i}",
                identifier=i,
                **attributes,
            )

    return particles


def missing_energy_from_event(
    event: ak.Record, branches: tuple[str, str, str] = DEFAULT_MET_BRANCHES
) -> MissingEnergy:
    """MissingEnergy from the (met, phi, sumet) branches of one record."""
    met_branch, phi_branch, sumet_branch = branches
    met = float(_field(event, met_branch))
    phi = float(_field(event, phi_branch))
    sum_et = float(_field(event, sumet_branch))
    return MissingEnergy(met * math.cos(phi), met * math.sin(phi), sum_et)
