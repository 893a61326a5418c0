"""
Table of object-to-role assignments

Each permutation assigns the selected objects of an event to the role
positions of a fit hypothesis. Jets fill `n_jet_roles` positions (ordered
selections out of all jets); leptons and photons are fully permuted. The
table is the product of the per-category orderings.
"""

from __future__ import annotations

import itertools
import logging
from typing import Iterable, Iterator

from .exceptions import PermutationError
from .particles import Particles, ParticleType

Permutation = dict[ParticleType, tuple[int, ...]]


class PermutationTable:
    """
    Enumerate, filter and activate permutations of a particle set.

    Attributes:
        particles: Source particles the table was built from
        active_index: Index of the active permutation (-1 if none)
    """

    def __init__(self) -> None:
        self.logger: logging.Logger = logging.getLogger("KinFit.PermutationTable")
        self.particles: Particles | None = None
        self.active_index: int = -1
        self._table: list[Permutation] = []
        self._permuted: Particles | None = None

    def reset(self) -> None:
        self.particles = None
        self.active_index = -1
        self._table = []
        self._permuted = None

    def rebuild(self, particles: Particles, n_jet_roles: int | None = None) -> int:
        """
        Create the table of permutations for a particle set.

        Args:
            particles: Objects to permute
            n_jet_roles: Number of jet positions of the hypothesis; all jets if None

        Returns:
            Number of permutations

        Raises:
            PermutationError: If more jet roles are requested than jets exist
        """
        self.reset()
        n_jets = particles.n_jets
        if n_jet_roles is None:
            n_jet_roles = n_jets
        if n_jet_roles > n_jets:
            raise PermutationError(
                f"Hypothesis needs {n_jet_roles} jets but only {n_jets} are available"
            )

        per_type: list[list[tuple[int, ...]]] = []
        for ptype in ParticleType:
            n = particles.count(ptype)
            size = n_jet_roles if ptype is ParticleType.JET else n
            per_type.append(list(itertools.permutations(range(n), size)))

        self._table = [dict(zip(ParticleType, combo)) for combo in itertools.product(*per_type)]
        self.particles = particles
        self.logger.debug(f"Created {len(self._table)} permutations")
        return len(self._table)

    def count(self) -> int:
        return len(self._table)

    def permutation(self, index: int) -> Permutation:
        return self._table[index]

    def __iter__(self) -> Iterator[Permutation]:
        return iter(self._table)

    def remove_invariant(self, ptype: ParticleType | str, positions: Iterable[int]) -> int:
        """
        Remove permutations that differ only by reordering objects among
        `positions` of one category (e.g. the two light quarks of a W decay).

        The first permutation of each equivalence class is kept.

        Args:
            ptype: Category of the invariant positions
            positions: Role positions whose mutual order is irrelevant

        Returns:
            Number of removed permutations

        Raises:
            PermutationError: If a position is outside the table
        """
        ptype = ParticleType.parse(ptype)
        positions = sorted(set(positions))
        if not self._table:
            return 0
        width = len(self._table[0][ptype])
        if any(p < 0 or p >= width for p in positions):
            raise PermutationError(
                f"Invariant positions {positions} outside {ptype.value} permutations of width {width}"
            )

        seen: set[tuple] = set()
        kept: list[Permutation] = []
        for perm in self._table:
            assigned = list(perm[ptype])
            canonical = sorted(assigned[p] for p in positions)
            for p, value in zip(positions, canonical):
                assigned[p] = value
            key = tuple((t, tuple(assigned) if t is ptype else perm[t]) for t in ParticleType)
            if key in seen:
                continue
            seen.add(key)
            kept.append(perm)

        active = self._table[self.active_index] if 0 <= self.active_index < len(self._table) else None
        removed = len(self._table) - len(kept)
        self._table = kept

        # the active permutation follows its entry; if it was removed nothing is active
        self.active_index = -1
        self._permuted = None
        for index, perm in enumerate(kept):
            if perm is active:
                self.activate(index)
                break
        self.logger.debug(f"Removed {removed} invariant permutations ({ptype.value} {positions})")
        return removed

    def activate(self, index: int) -> bool:
        """
        Make permutation `index` the active one.

        Returns:
            False if the index is out of range or the table is empty
        """
        if self.particles is None or not 0 <= index < len(self._table):
            self.logger.error(
                f"Permutation index {index} out of range (table has {len(self._table)} entries)"
            )
            return False

        perm = self._table[index]
        permuted = Particles()
        for ptype in ParticleType:
            for source in perm[ptype]:
                original = self.particles.particle(source, ptype)
                permuted.particles(ptype).append(original)

        self.active_index = index
        self._permuted = permuted
        return True

    def active_permuted_view(self) -> Particles | None:
        """Particles reordered according to the active permutation."""
        return self._permuted
