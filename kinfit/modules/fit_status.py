"""
Fit quality bookkeeping

Status codes follow the MINUIT convention (0 = success, 4 = no
convergence) extended by the fitter's own post-fit checks. Convergence
diagnostics are kept as named flags and only packed into a bitmask when
they leave the fitter (tables, ntuples).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import IntEnum
from typing import Any

import numpy as np


class MinuitStatus(IntEnum):
    """Status codes reported by the fitter, in ascending override precedence."""

    OK = 0
    DID_NOT_CONVERGE = 4
    AT_LIMIT_BEFORE_RETRY = 500
    AT_LIMIT = 501
    NAN_BEFORE_RETRY = 508
    NAN = 509
    INVALID_TRANSFER_FUNCTION = 510


class ConvergenceMask(IntEnum):
    """Bit values of the convergence status word."""

    MINUIT_DID_NOT_CONVERGE = 0x1
    FIT_ABORTED_DUE_TO_NAN = 0x2
    AT_LEAST_ONE_FIT_PARAMETER_AT_ITS_LIMIT = 0x4
    INVALID_TRANSFER_FUNCTION_AT_CONVERGENCE = 0x8


@dataclass
class ConvergenceFlags:
    """Named diagnostics accumulated during one fit."""

    did_not_converge: bool = False
    aborted_due_to_nan: bool = False
    parameter_at_limit: bool = False
    invalid_transfer_function: bool = False

    def reset(self) -> None:
        self.did_not_converge = False
        self.aborted_due_to_nan = False
        self.parameter_at_limit = False
        self.invalid_transfer_function = False

    def to_bitmask(self) -> int:
        mask = 0
        if self.did_not_converge:
            mask |= ConvergenceMask.MINUIT_DID_NOT_CONVERGE
        if self.aborted_due_to_nan:
            mask |= ConvergenceMask.FIT_ABORTED_DUE_TO_NAN
        if self.parameter_at_limit:
            mask |= ConvergenceMask.AT_LEAST_ONE_FIT_PARAMETER_AT_ITS_LIMIT
        if self.invalid_transfer_function:
            mask |= ConvergenceMask.INVALID_TRANSFER_FUNCTION_AT_CONVERGENCE
        return int(mask)

    @classmethod
    def from_bitmask(cls, mask: int) -> ConvergenceFlags:
        return cls(
            did_not_converge=bool(mask & ConvergenceMask.MINUIT_DID_NOT_CONVERGE),
            aborted_due_to_nan=bool(mask & ConvergenceMask.FIT_ABORTED_DUE_TO_NAN),
            parameter_at_limit=bool(mask & ConvergenceMask.AT_LEAST_ONE_FIT_PARAMETER_AT_ITS_LIMIT),
            invalid_transfer_function=bool(
                mask & ConvergenceMask.INVALID_TRANSFER_FUNCTION_AT_CONVERGENCE
            ),
        )


@dataclass
class ModeResult:
    """Outcome of one mode-finding pass of an optimization strategy."""

    parameters: np.ndarray
    status: int = 0
    log_likelihood: float = -np.inf
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class PermutationResult:
    """Best fit recorded for one permutation."""

    index: int
    method: str
    log_likelihood: float
    parameters: np.ndarray
    minuit_status: int
    convergence_status: int | None = None

    def as_row(self, parameter_names: list[str] | None = None) -> dict[str, Any]:
        """Flatten into a table row; parameters become one column each."""
        row = asdict(self)
        params = row.pop("parameters")
        names = parameter_names or [f"par_{i}" for i in range(len(params))]
        for name, value in zip(names, params):
            row[name] = float(value)
        return row
