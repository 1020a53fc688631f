"""
Custom exceptions for the vertex-smearing tools.

All of them inherit from AnalysisError so a runner can catch everything
specific to this package with a single except clause.
"""


class AnalysisError(Exception):
    """Base exception for all errors raised by this package."""
    pass


class ConfigurationError(AnalysisError):
    """
    Raised when the configuration is invalid, before any event is processed.

    Examples:
    - Non-numeric or non-positive coefficients / reference masses
    - Malformed filter range
    - Empirical angle pool empty after filtering
    - Unknown smearing strategy or weight source
    """
    pass


class DataLoadError(AnalysisError):
    """
    Raised when an input or auxiliary ntuple cannot be read.

    Examples:
    - File not found
    - Requested tree missing from the file
    """
    pass


class BranchMissingError(DataLoadError):
    """Raised when a required branch is not found in a tree."""

    def __init__(self, branch_name, tree_name=None):
        self.branch_name = branch_name
        self.tree_name = tree_name

        message = f"Required branch '{branch_name}' not found"
        if tree_name:
            message += f" in tree: {tree_name}"

        super().__init__(message)


class DecayModeError(AnalysisError):
    """
    Raised when a tree carries neither of the known companion-particle
    branches, so neither the B0 -> D* nor the B- -> D0 hypothesis applies.
    """

    def __init__(self, tree_name, probed):
        self.tree_name = tree_name
        self.probed = tuple(probed)
        super().__init__(
            f"No known branch found for D0 nor D* in tree '{tree_name}' "
            f"(probed: {', '.join(self.probed)})"
        )


class DegenerateKinematicsError(AnalysisError):
    """
    Raised by the kinematic engine when handed events it cannot evaluate:
    a flight direction (nearly) transverse to the beam, a (nearly) massless
    reconstructed candidate, or a zero angular delta fed to the log weights.

    n_bad is the number of offending events in the input.
    """

    def __init__(self, message, n_bad=1):
        self.n_bad = n_bad
        super().__init__(message)
