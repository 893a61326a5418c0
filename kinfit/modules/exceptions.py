"""
Custom exceptions for the kinfit kinematic fitting package

Provides a hierarchy of exceptions for better error handling and diagnostics.
All custom exceptions inherit from KinFitError for easy catching.

Numerical fit degradations (non-convergence, parameters at limit, NaN
results) are NOT exceptions: they are reported through the fitter status.
"""

from __future__ import annotations


class KinFitError(Exception):
    """
    Base exception for all kinfit errors

    All custom exceptions inherit from this class, allowing users to catch
    all package-specific errors with a single except clause.
    """

    pass


class ConfigurationError(KinFitError):
    """
    Raised when configuration is invalid or missing required fields

    Examples:
    - Missing selection.toml or fitting.toml
    - Unknown minimization method name
    - Invalid parameter values
    """

    pass


class DataLoadError(KinFitError):
    """
    Raised when event files cannot be loaded

    Examples:
    - File not found
    - Missing tree in ROOT file
    """

    pass


class BranchMissingError(KinFitError):
    """
    Raised when a required branch is not found in the event data

    Examples:
    - Missing jet_pt branch
    - Branch prefix typo in configuration
    """

    def __init__(self, branch_name: str, file_path: str | None = None) -> None:
        """
        Initialize BranchMissingError

        Args:
            branch_name: Name of the missing branch
            file_path: Optional path to the file being read
        """
        self.branch_name = branch_name
        self.file_path = file_path

        message = f"Required branch '{branch_name}' not found"
        if file_path:
            message += f" in file: {file_path}"

        super().__init__(message)


class CutDefinitionError(KinFitError):
    """
    Raised when a selection cut is defined with invalid parameters

    Examples:
    - Negative object multiplicity
    - Negative missing ET threshold
    - Unknown particle category
    """

    pass


class PermutationError(KinFitError):
    """
    Raised when a permutation table cannot be built or modified

    Examples:
    - Invariance rule refers to positions outside the table
    - Table requested before any particles were set
    """

    pass


class FittingError(KinFitError):
    """
    Raised when a fit cannot be set up

    Examples:
    - Likelihood defines no parameters
    - Inconsistent parameter bounds
    - Initial guess with the wrong dimension
    """

    pass
