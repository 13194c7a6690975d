

import numpy as np
from typing import Dict, Optional, List, Any
from dataclasses import dataclass, field
from lmfit import Parameters, minimize

from ..core.models import FitParameters, PhotosynthesisConstants, DEFAULT_CONSTANTS
from ..core.photosynthesis import calculate_assimilation
from ..core.exceptions import NonConvergence, SingularSystem, InsufficientData


# MINPACK return codes that mean the tolerances were met
CONVERGED_IER = (1, 2, 3, 4)


@dataclass
class NonlinearFit:
    """Container for a converged nonlinear fit."""
    parameters: FitParameters
    sum_of_squares: float
    nfev: int
    message: str
    std_errors: Dict[str, float] = field(default_factory=dict)
    covariance: Optional[np.ndarray] = None
    free_parameters: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def rmse(observed: np.ndarray, predicted: np.ndarray) -> float:
    """
    Calculate root mean squared error.

    Args:
        observed: Observed values
        predicted: Model predictions

    Returns:
        RMSE value
    """
    return float(np.sqrt(np.mean((observed - predicted)**2)))


def r_squared(observed: np.ndarray, predicted: np.ndarray) -> float:
    """Coefficient of determination; NaN when the observations have no variance."""
    ss_res = np.sum((observed - predicted)**2)
    ss_tot = np.sum((observed - np.mean(observed))**2)
    return float(1 - ss_res / ss_tot) if ss_tot > 0 else np.nan


def build_parameters(
    initial: FitParameters,
    fixed_parameters: Optional[Dict[str, float]] = None,
    fit_tpu: bool = False
) -> Parameters:
    """
    Create the lmfit Parameters for an A-Ci fit.

    All capacities are bounded below by zero. Entries of `fixed_parameters`
    are held at the given value.
    """
    fixed_parameters = fixed_parameters or {}
    unknown = set(fixed_parameters) - {'Vcmax', 'Jmax', 'Rd', 'TPU'}
    if unknown:
        raise ValueError(f"Unknown fixed parameters: {sorted(unknown)}")

    starts = initial.as_dict()
    names = ['Vcmax', 'Jmax', 'Rd']
    if fit_tpu or 'TPU' in fixed_parameters:
        names.append('TPU')
        starts.setdefault('TPU', 10.0)

    params = Parameters()
    for name in names:
        if name in fixed_parameters:
            params.add(name, value=float(fixed_parameters[name]), vary=False)
        else:
            params.add(name, value=max(float(starts[name]), 1e-6), min=0.0)
    return params


def create_residual_function(
    ci: np.ndarray,
    a: np.ndarray,
    tleaf: np.ndarray,
    ppfd: np.ndarray,
    constants: PhotosynthesisConstants
):
    """Residual function (model - observed) for lmfit."""

    def residual(params: Parameters) -> np.ndarray:
        values = params.valuesdict()
        predicted = calculate_assimilation(
            ci, tleaf, ppfd,
            FitParameters(
                Vcmax=values['Vcmax'],
                Jmax=values['Jmax'],
                Rd=values['Rd'],
                TPU=values.get('TPU')
            ),
            constants
        ).An
        return predicted - a

    return residual


def fit_nonlinear(
    ci: np.ndarray,
    a: np.ndarray,
    tleaf: np.ndarray,
    ppfd: np.ndarray,
    initial: FitParameters,
    constants: Optional[PhotosynthesisConstants] = None,
    fixed_parameters: Optional[Dict[str, float]] = None,
    fit_tpu: bool = False,
    max_nfev: int = 2000
) -> NonlinearFit:
    """
    Least-squares fit of the FvCB model with Levenberg-Marquardt.

    Args:
        ci: Intercellular CO2 concentrations
        a: Observed net assimilation
        tleaf: Leaf temperatures (°C), same length as ci
        ppfd: PPFD values, same length as ci
        initial: Starting values
        constants: Model constants
        fixed_parameters: Parameters held constant, e.g. {'Rd': 1.2}
        fit_tpu: Fit TPU as a fourth parameter
        max_nfev: Maximum number of function evaluations

    Returns:
        NonlinearFit with the best-fit parameters

    Raises:
        InsufficientData: If there are no residual degrees of freedom
        NonConvergence: If the solver stops before meeting its tolerances
        SingularSystem: If the Jacobian at the solution is rank-deficient with
            every parameter off its bound
    """
    constants = constants or DEFAULT_CONSTANTS
    params = build_parameters(initial, fixed_parameters, fit_tpu)
    free = [name for name, p in params.items() if p.vary]

    n_obs = len(a)
    if n_obs <= len(free):
        raise InsufficientData(
            f"{n_obs} observations for {len(free)} free parameters ({', '.join(free)})"
        )

    residual = create_residual_function(ci, a, tleaf, ppfd, constants)

    if not free:
        # Everything fixed: nothing to optimize
        values = params.valuesdict()
        fixed = FitParameters.from_dict(values)
        return NonlinearFit(
            parameters=fixed,
            sum_of_squares=float(np.sum(residual(params)**2)),
            nfev=1,
            message='All parameters fixed',
            warnings=['All parameters were fixed - no optimization performed']
        )

    try:
        result = minimize(residual, params, method='leastsq', max_nfev=max_nfev)
    except ValueError as e:
        # lmfit refuses NaN residuals
        raise NonConvergence(f"Model evaluation failed: {e}") from e

    ier = getattr(result, 'ier', None)
    if not result.success or (ier is not None and ier not in CONVERGED_IER):
        raise NonConvergence(
            f"No convergence after {result.nfev} evaluations: {result.message}"
        )

    if not np.isfinite(result.chisqr):
        raise NonConvergence("Sum of squares is not finite at the solution")

    nfev = int(result.nfev)
    if getattr(result, 'covar', None) is None or not getattr(result, 'errorbars', False):
        bounded = [name for name in free if at_lower_bound(result.params[name])]
        if not bounded:
            raise SingularSystem(
                "Singular gradient at the solution; the covariance matrix could not be estimated"
            )
        # A parameter on its bound has a zero Jacobian column: pin it there
        # and estimate the others
        result = _refit_with_pinned(residual, result, bounded, max_nfev)
        nfev += int(result.nfev)

    values = result.params.valuesdict()
    fitted = FitParameters(
        Vcmax=values['Vcmax'],
        Jmax=values['Jmax'],
        Rd=values['Rd'],
        TPU=values.get('TPU')
    )

    return NonlinearFit(
        parameters=fitted,
        sum_of_squares=float(result.chisqr),
        nfev=nfev,
        message=str(result.message),
        std_errors={
            name: float(result.params[name].stderr)
            for name in free
            if result.params[name].vary and result.params[name].stderr is not None
        },
        covariance=getattr(result, 'covar', None),
        free_parameters=free,
        warnings=check_bounds(result.params, free)
    )


def _refit_with_pinned(residual, result, bounded: List[str], max_nfev: int):
    """
    Refit with the `bounded` parameters held at their lower bound.

    Returns the new lmfit result, or `result` itself when no parameter is
    left free.

    Raises:
        SingularSystem: If the remaining parameters are still not identifiable
    """
    pinned = result.params.copy()
    for name in bounded:
        pinned[name].set(value=pinned[name].min, vary=False)

    if not any(p.vary for p in pinned.values()):
        return result

    try:
        refit = minimize(residual, pinned, method='leastsq', max_nfev=max_nfev)
    except ValueError as e:
        raise NonConvergence(f"Model evaluation failed: {e}") from e

    if not refit.success:
        raise NonConvergence(f"No convergence with {', '.join(bounded)} pinned: {refit.message}")

    if getattr(refit, 'covar', None) is None or not getattr(refit, 'errorbars', False):
        raise SingularSystem(
            f"Singular gradient at the solution with {', '.join(bounded)} at the lower bound"
        )
    return refit


def at_lower_bound(param, atol: float = 1e-4) -> bool:
    """True if a bounded lmfit Parameter ended on its lower bound."""
    return bool(np.isfinite(param.min) and abs(param.value - param.min) <= atol)


def check_bounds(params: Parameters, names: List[str]) -> List[str]:
    """Warnings for parameters that ended on their lower bound."""
    return [
        f"{name} at lower bound: {params[name].value:.3g}"
        for name in names if at_lower_bound(params[name])
    ]


def describe_fit(fit: NonlinearFit) -> Dict[str, Any]:
    """Convergence diagnostics stored on the fit result."""
    return {
        'nfev': fit.nfev,
        'message': fit.message,
        'sum_of_squares': fit.sum_of_squares,
        'free_parameters': list(fit.free_parameters),
    }
