"""
acifit: fitting A-Ci curves of C3 leaves with the Farquhar-von Caemmerer-Berry model.

Single curves are fit with `fit_aci`, either by nonlinear least squares or by
a bilinear (segmented) regression; `fit_acis` fits one curve per group of a
multi-curve dataset and refits the curves the nonlinear method cannot handle
with the bilinear method.
"""

__version__ = "0.3.0"

# Import main components for easier access
from acifit.core.data_structures import ExtendedDataFrame
from acifit.core.models import FitParameters, PhotosynthesisConstants, DEFAULT_CONSTANTS
from acifit.core.photosynthesis import calculate_assimilation, identify_limiting_process
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
from acifit.analysis.aci_fitting import fit_aci, FitSuccess, FitFailure, summarize_fit
from acifit.analysis.batch import fit_acis, AciFits

__all__ = [
    # Core classes
    "ExtendedDataFrame",
    "FitParameters",
    "PhotosynthesisConstants",
    "DEFAULT_CONSTANTS",
    # Model
    "calculate_assimilation",
    "identify_limiting_process",
    # Fitting
    "fit_aci",
    "fit_acis",
    "FitSuccess",
    "FitFailure",
    "AciFits",
    "summarize_fit",
    # Errors
    "AciFitError",
    "FieldNotFound",
    "InvalidGroupKey",
    "EmptyGroup",
    "CurveFitError",
    "NonConvergence",
    "SingularSystem",
    "InsufficientData",
    # Version
    "__version__",
]
