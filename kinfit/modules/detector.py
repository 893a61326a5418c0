"""
Detector description used by the likelihood

The detector owns the resolution (transfer) functions of the measured
objects. Their functional form belongs to the concrete detector; this
module only keeps the registry and the readiness check the fitter relies on.
"""

from __future__ import annotations

import logging
from typing import Callable

ResolutionFunction = Callable[..., float]


class DetectorBase:
    """
    Registry of resolution functions.

    Subclasses list the resolutions they need in `required_resolutions` and
    register them (usually in __init__). `status()` is False until all are present.
    """

    required_resolutions: tuple[str, ...] = (
        "energy_light_jet",
        "energy_b_jet",
        "energy_electron",
        "energy_muon",
        "missing_et",
    )

    def __init__(self) -> None:
        self.logger: logging.Logger = logging.getLogger("KinFit.Detector")
        self.resolutions: dict[str, ResolutionFunction] = {}

    def register_resolution(self, name: str, function: ResolutionFunction) -> None:
        self.resolutions[name] = function

    def resolution(self, name: str) -> ResolutionFunction:
        return self.resolutions[name]

    def status(self) -> bool:
        """True if every required resolution function is defined."""
        missing = [name for name in self.required_resolutions if name not in self.resolutions]
        if missing:
            self.logger.error(f"Resolution functions not defined: {', '.join(missing)}")
            return False
        return True
