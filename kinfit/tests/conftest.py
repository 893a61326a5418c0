"""
Global pytest fixtures and configuration for the test suite.

Provides reusable fixtures for testing selection and fitting components
without duplicating setup code across test modules.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator

import pytest

from kinfit.modules.particles import Particles
from kinfit.modules.selection_tool import SelectionTool
from kinfit.tests.utils import GaussianLikelihood, ToyDetector, make_particles


@pytest.fixture
def tmp_test_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test operations.

    Automatically cleaned up after test completion.

    Yields:
        Path to temporary directory
    """
    tmp_dir = Path(tempfile.mkdtemp(prefix="kinfit_test_"))
    try:
        yield tmp_dir
    finally:
        if tmp_dir.exists():
            shutil.rmtree(tmp_dir)


@pytest.fixture(autouse=True)
def _no_progress_bars(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("KINFIT_PROGRESS", "off")


@pytest.fixture
def ljets_particles() -> Particles:
    """
    Lepton+jets event: 4 jets and 1 electron, all central.

    Returns:
        Particles with jets at pt 80, 60, 45, 30 GeV
    """
    return make_particles(
        jets=[(80.0, 0.5), (60.0, -1.0), (45.0, 1.8), (30.0, 0.1)],
        electrons=[(40.0, 0.3)],
    )


@pytest.fixture
def two_jet_particles() -> Particles:
    """Two jets (50 and 30 GeV) and one electron: two jet permutations."""
    return make_particles(jets=[(50.0, 0.2), (30.0, -0.4)], electrons=[(35.0, 0.0)])


@pytest.fixture
def ljets_selection() -> SelectionTool:
    """Selection with exactly 4 jets and 1 electron above 20 GeV and MET >= 20."""
    tool = SelectionTool()
    tool.require_n_jets_pt(20.0, 4, 0)
    tool.require_n_electrons_pt(20.0, 1, 0)
    tool.require_met(20.0)
    return tool


@pytest.fixture
def toy_detector() -> ToyDetector:
    """Detector with every required resolution registered."""
    return ToyDetector()


@pytest.fixture
def gaussian_likelihood() -> GaussianLikelihood:
    """Unit Gaussian centred at (1, -2) inside [-10, 10]^2."""
    return GaussianLikelihood()


@pytest.fixture
def selection_config_dict() -> Dict[str, Any]:
    """
    Provide a valid selection configuration.

    Returns:
        Dictionary in the layout of selection.toml
    """
    return {
        "objects": {
            "jet": {"eta_max": 2.5, "cuts": [{"pt": 25.0, "n": 4, "tolerance": -1}]},
            "electron": {"eta_max": 2.47, "cuts": [{"pt": 25.0, "n": 1, "tolerance": 0}]},
            "muon": {"eta_max": 2.5},
        },
        "event": {"met_min": 20.0, "max_jets_for_fit": 5},
    }


@pytest.fixture
def fitting_config_dict() -> Dict[str, Any]:
    """
    Provide a valid fitting configuration.

    Returns:
        Dictionary in the layout of fitting.toml
    """
    return {
        "fitter": {"method": "minuit", "turn_off_sa": True},
        "minuit": {"tolerance": 0.05, "strategy": 2},
        "simulated_annealing": {"t0": 5.0, "t_min": 0.01, "maxiter": 200, "seed": 3},
        "markov_chain": {
            "n_chains": 8,
            "n_iterations_run": 500,
            "n_iterations_max": 200,
            "n_iterations_update": 50,
        },
        "logging": {"level": "DEBUG", "warnings": "default"},
    }


@pytest.fixture
def config_dir_fixture(
    tmp_test_dir: Path,
    selection_config_dict: Dict[str, Any],
    fitting_config_dict: Dict[str, Any],
) -> Path:
    """
    Create a temporary config directory with selection.toml and fitting.toml.

    Returns:
        Path to config directory
    """
    import tomli_w

    config_dir = tmp_test_dir / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    for filename, content in (
        ("selection.toml", selection_config_dict),
        ("fitting.toml", fitting_config_dict),
    ):
        with open(config_dir / filename, "wb") as f:
            tomli_w.dump(content, f)
    return config_dir


def pytest_configure(config: pytest.Config) -> None:
    """
    Configure pytest with custom markers.

    Args:
        config: pytest configuration object
    """
    config.addinivalue_line("markers", "unit: Fast tests of a single component")
    config.addinivalue_line("markers", "integration: Tests of several components together")
    config.addinivalue_line("markers", "validation: Error handling and input validation tests")
    config.addinivalue_line("markers", "slow: Tests running the stochastic optimizers")
