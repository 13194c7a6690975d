from .aci_fitting import (
    fit_aci,
    FitSuccess,
    FitFailure,
    FIT_METHODS,
    summarize_fit
)
from .initial_guess import (
    estimate_initial_parameters,
    refine_on_grid
)
from .optimization import (
    fit_nonlinear,
    NonlinearFit,
    rmse,
    r_squared
)
from .bilinear import (
    fit_bilinear,
    BilinearFit
)
from .batch import (
    AciFits,
    TqdmProgress,
    fit_acis,
    process_single_curve,
    analyze_parameter_variability
)

__all__ = [
    'fit_aci',
    'FitSuccess',
    'FitFailure',
    'FIT_METHODS',
    'summarize_fit',
    'estimate_initial_parameters',
    'refine_on_grid',
    'fit_nonlinear',
    'NonlinearFit',
    'rmse',
    'r_squared',
    'fit_bilinear',
    'BilinearFit',
    # Batch processing
    'AciFits',
    'TqdmProgress',
    'fit_acis',
    'process_single_curve',
    'analyze_parameter_variability'
]
