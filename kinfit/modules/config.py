"""
TOML configuration of selection and fitter

Two files are read from the configuration directory:
- selection.toml: object cuts, eta windows, MET cut, jet limit
- fitting.toml: minimization method, optimizer settings and logging
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import tomli

from ..utils.logging_config import WARNING_LEVELS, setup_logging
from .exceptions import ConfigurationError, FittingError
from .fitter import Fitter, MinimizationMethod
from .optimizers import MarkovChainConfig, MinuitStrategy, SimulatedAnnealingStrategy
from .particles import ParticleType
from .pipeline import EventPipeline
from .selection_tool import SelectionTool

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"


class KinFitConfig:
    """
    Load and manage the TOML configuration files

    Attributes:
        config_dir: Directory holding the TOML files
        selection: Parsed selection.toml
        fitting: Parsed fitting.toml
    """

    def __init__(self, config_dir: str | Path | None = None) -> None:
        self.config_dir = Path(config_dir) if config_dir is not None else DEFAULT_CONFIG_DIR

        self.selection: dict[str, Any] = self._load_toml("selection.toml")
        self.fitting: dict[str, Any] = self._load_toml("fitting.toml")

    def _load_toml(self, filename: str) -> dict:
        """
        Load TOML configuration file with proper error handling

        Args:
            filename: Name of the TOML file to load

        Returns:
            dict: Parsed TOML configuration

        Raises:
            ConfigurationError: If file not found or parsing fails
        """
        config_path = self.config_dir / filename
        try:
            with open(config_path, "rb") as f:
                return tomli.load(f)
        except FileNotFoundError:
            raise ConfigurationError(
                f"Configuration file not found: {config_path}\n"
                f"Please ensure all config files are present in {self.config_dir}"
            )
        except tomli.TOMLDecodeError as e:
            raise ConfigurationError(f"Error parsing TOML file {config_path}: {e}")

    def get_object_cuts(self, category: ParticleType | str) -> list[dict[str, Any]]:
        """Cuts of one category: [{pt, n, tolerance}, ...]"""
        ptype = ParticleType.parse(category)
        section = self.selection.get("objects", {}).get(ptype.value, {})
        return section.get("cuts", [])

    def get_eta_max(self, category: ParticleType | str) -> float | None:
        ptype = ParticleType.parse(category)
        return self.selection.get("objects", {}).get(ptype.value, {}).get("eta_max")

    def get_minimization_method(self) -> MinimizationMethod:
        return MinimizationMethod.parse(self.fitting.get("fitter", {}).get("method", "minuit"))

    def build_selection_tool(self) -> SelectionTool:
        """
        Create a SelectionTool from selection.toml

        Raises:
            ConfigurationError: If a cut lacks the pt or n field
        """
        tool = SelectionTool()
        for ptype in ParticleType:
            for cut in self.get_object_cuts(ptype):
                try:
                    tool.require_count(ptype, cut["pt"], cut["n"], cut.get("tolerance", -1))
                except KeyError as e:
                    raise ConfigurationError(
                        f"Cut on {ptype.value}s is missing field {e} in {self.config_dir / 'selection.toml'}"
                    ) from e
            eta_max = self.get_eta_max(ptype)
            if eta_max is not None:
                tool.set_category_eta_window(ptype, eta_max)

        event = self.selection.get("event", {})
        if "met_min" in event:
            tool.require_met(event["met_min"])
        if "max_jets_for_fit" in event:
            tool.set_max_jets_for_fit(event["max_jets_for_fit"])
        return tool

    def build_fitter(self) -> Fitter:
        """Create a Fitter (without likelihood and detector) from fitting.toml"""
        fitter_cfg = self.fitting.get("fitter", {})
        minuit_cfg = self.fitting.get("minuit", {})
        annealing_cfg = self.fitting.get("simulated_annealing", {})
        chain_cfg = self.fitting.get("markov_chain", {})

        try:
            markov_chain_config = MarkovChainConfig(**chain_cfg)
            minuit = MinuitStrategy(**minuit_cfg)
            annealing = SimulatedAnnealingStrategy(**annealing_cfg)
        except (TypeError, FittingError) as e:
            raise ConfigurationError(f"Invalid optimizer setting in fitting.toml: {e}") from e

        return Fitter(
            minimization_method=self.get_minimization_method(),
            turn_off_sa=fitter_cfg.get("turn_off_sa", False),
            minuit=minuit,
            annealing=annealing,
            markov_chain_config=markov_chain_config,
        )

    def configure_logging(self) -> logging.Logger:
        """Set up logging from the [logging] section of fitting.toml"""
        logging_cfg = self.fitting.get("logging", {})
        return setup_logging(verbose=logging_cfg.get("verbose", False), level=logging_cfg.get("level"))

    def get_warning_level(self) -> str:
        level = self.fitting.get("logging", {}).get("warnings", "off")
        if level not in WARNING_LEVELS:
            raise ConfigurationError(
                f"Unknown warning level '{level}' in fitting.toml, expected one of {WARNING_LEVELS}"
            )
        return level

    def build_pipeline(self, likelihood, detector, fit_all: bool = False) -> EventPipeline:
        """
        Create an EventPipeline from both files

        Args:
            likelihood: LikelihoodBase of the event hypothesis
            detector: DetectorBase with the resolution functions
            fit_all: Use Fitter.fit_all per event

        Returns:
            EventPipeline with the configured selection, fitter and warning level
        """
        fitter = self.build_fitter()
        fitter.set_likelihood(likelihood)
        fitter.set_detector(detector)
        return EventPipeline(
            self.build_selection_tool(),
            fitter,
            fit_all=fit_all,
            warning_level=self.get_warning_level(),
        )
