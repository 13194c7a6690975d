"""
Core modules for acifit.

This package contains the data structures, constants, errors and the FvCB
model equations.
"""

from acifit.core.data_structures import ExtendedDataFrame, as_extended
from acifit.core.models import (
    FitParameters,
    PhotosynthesisConstants,
    DEFAULT_CONSTANTS,
    PARAMETER_NAMES,
    PARAMETER_UNITS,
)
from acifit.core.temperature import (
    arrhenius_response,
    johnson_eyring_williams_response,
    normalized_arrhenius,
    normalized_peaked_arrhenius,
)
from acifit.core.photosynthesis import (
    AssimilationResult,
    calculate_assimilation,
    kinetic_constants,
    electron_transport_rate,
    inverse_electron_transport_rate,
    identify_limiting_process,
    find_ci_transition,
)
from acifit.core.exceptions import (
    AciFitError,
    FieldNotFound,
    InvalidGroupKey,
    EmptyGroup,
    CurveFitError,
    NonConvergence,
    SingularSystem,
    InsufficientData,
)

__all__ = [
    # Data structures
    "ExtendedDataFrame",
    "as_extended",
    # Parameters and constants
    "FitParameters",
    "PhotosynthesisConstants",
    "DEFAULT_CONSTANTS",
    "PARAMETER_NAMES",
    "PARAMETER_UNITS",
    # Temperature response
    "arrhenius_response",
    "johnson_eyring_williams_response",
    "normalized_arrhenius",
    "normalized_peaked_arrhenius",
    # FvCB model
    "AssimilationResult",
    "calculate_assimilation",
    "kinetic_constants",
    "electron_transport_rate",
    "inverse_electron_transport_rate",
    "identify_limiting_process",
    "find_ci_transition",
    # Errors
    "AciFitError",
    "FieldNotFound",
    "InvalidGroupKey",
    "EmptyGroup",
    "CurveFitError",
    "NonConvergence",
    "SingularSystem",
    "InsufficientData",
]
