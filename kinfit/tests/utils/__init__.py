"""
Test utilities.

Provides mock events and test doubles shared across the test suite.
"""

from .fakes import GaussianLikelihood, ScriptedStrategy, ToyDetector, set_nan_on_call
from .mock_events import create_mock_ntuple, generate_mock_events, make_particles

__all__ = [
    "GaussianLikelihood",
    "ScriptedStrategy",
    "ToyDetector",
    "create_mock_ntuple",
    "generate_mock_events",
    "make_particles",
    "set_nan_on_call",
]
