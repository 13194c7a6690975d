"""
Exception types raised while fitting A-Ci curves.

Structural problems with a request (missing columns, bad grouping) derive
from ValueError and abort the call. Per-curve numerical failures derive from
CurveFitError and are returned inside a FitFailure instead of being raised
out of the fitting functions.
"""


class AciFitError(Exception):
    """Base class for all acifit errors."""


class FieldNotFound(AciFitError, ValueError):
    """A named column is absent from the dataset."""

    def __init__(self, field: str, available=None):
        self.field = field
        msg = f"Column '{field}' not found in data"
        if available is not None:
            msg += f". Available columns: {', '.join(map(str, available))}"
        super().__init__(msg)


class InvalidGroupKey(FieldNotFound):
    """The grouping variable is not a column of the dataset."""


class EmptyGroup(AciFitError, ValueError):
    """One or more groups of the partition hold zero observations."""

    def __init__(self, groups):
        self.groups = list(groups)
        super().__init__(
            "Some levels of the group variable have zero observations: "
            f"{', '.join(map(str, self.groups))}. Drop unused levels first."
        )


class CurveFitError(AciFitError):
    """A single curve could not be fit; recoverable at the batch level."""


class NonConvergence(CurveFitError):
    """The solver stopped without meeting its convergence tolerances."""


class SingularSystem(CurveFitError):
    """The Jacobian at the solution is rank-deficient."""


class InsufficientData(CurveFitError):
    """Too few observations for the number of free parameters."""
