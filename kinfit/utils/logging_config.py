"""
Logging and Warning Configuration Utilities

Central control over logging, warning messages and progress bars of the
fitting package.

Usage:
    from kinfit.utils.logging_config import setup_logging, warning_scope
    logger = setup_logging(verbose=True)
    with warning_scope("off"):
        ...  # event loop

    # Via environment variables:
    export KINFIT_WARNINGS=on    # Show warnings
    export KINFIT_WARNINGS=off   # Suppress warnings
    export KINFIT_PROGRESS=off   # Hide progress bars
"""

from __future__ import annotations

import logging
import os
import warnings
from contextlib import contextmanager
from typing import Iterator, Literal, get_args

import numpy as np

WarningLevel = Literal["off", "error", "default", "all"]
WARNING_LEVELS: tuple[str, ...] = get_args(WarningLevel)

_ENVIRONMENT_LEVELS: dict[str, WarningLevel] = {
    "on": "all",
    "yes": "all",
    "true": "all",
    "1": "all",
    "off": "off",
    "no": "off",
    "false": "off",
    "0": "off",
    "error": "error",
    "default": "default",
}

# optimizers and integrators warn on flat or NaN likelihood regions during scans
_SCAN_WARNING_MODULES = ("iminuit", "emcee", "scipy.optimize", "scipy.integrate", "awkward")


def setup_logging(verbose: bool = False, level: str | None = None) -> logging.Logger:
    """
    Configure the root logging format and return the package logger.

    Args:
        verbose: Use DEBUG instead of INFO
        level: Explicit level name ("WARNING", ...); overrides verbose

    Returns:
        The "KinFit" logger
    """
    if level is not None:
        log_level = getattr(logging, level.upper(), logging.INFO)
    else:
        log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger = logging.getLogger("KinFit")
    logger.setLevel(log_level)
    return logger


def warning_level(level: WarningLevel = "off") -> WarningLevel:
    """The requested level, unless KINFIT_WARNINGS names another one."""
    return _ENVIRONMENT_LEVELS.get(os.environ.get("KINFIT_WARNINGS", "").lower(), level)


def suppress_warnings(level: WarningLevel = "off") -> None:
    """
    Install warning filters for fitting many permutations.

    Args:
        level:
            - 'off': ignore all warnings and numpy floating-point errors
            - 'error': turn warnings into errors, except deprecations
            - 'default': show warnings once, without deprecations
            - 'all': show everything, numpy floating-point errors included

    Warnings from the optimizer and integration libraries stay hidden
    unless the level is 'all'.
    """
    level = warning_level(level)
    if level == "all":
        warnings.simplefilter("default")
        np.seterr(all="warn")
        return

    if level == "off":
        warnings.simplefilter("ignore")
        # overflow in exp() of large -log L values is expected during scans
        np.seterr(all="ignore")
    elif level == "error":
        warnings.simplefilter("error")
        warnings.filterwarnings("ignore", category=DeprecationWarning)
        warnings.filterwarnings("ignore", category=FutureWarning)
    else:
        warnings.simplefilter("default")
        warnings.filterwarnings("ignore", category=DeprecationWarning)

    for module in _SCAN_WARNING_MODULES:
        warnings.filterwarnings("ignore", module=rf"{module}(\..*)?$")


@contextmanager
def warning_scope(level: WarningLevel = "off") -> Iterator[None]:
    """Apply suppress_warnings(level) inside a block and restore the previous filters afterwards."""
    numpy_errors = np.geterr()
    with warnings.catch_warnings():
        suppress_warnings(level)
        try:
            yield
        finally:
            np.seterr(**numpy_errors)


def enable_progress_bars() -> bool:
    """Progress bars are shown unless KINFIT_PROGRESS is off."""
    return os.environ.get("KINFIT_PROGRESS", "on").lower() in ("on", "yes", "true", "1")


def get_tqdm_kwargs(desc: str = "", **kwargs) -> dict:
    """tqdm arguments shared by the event and permutation loops; kwargs override them."""
    return {
        "desc": desc,
        "ncols": 80,
        "bar_format": "{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}]",
        "disable": not enable_progress_bars(),
        **kwargs,
    }
