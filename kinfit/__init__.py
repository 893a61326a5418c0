"""kinfit: permutation-based kinematic likelihood fitting of collision events."""

__version__ = "0.1.0"
