
import numpy as np
import pandas as pd
from typing import Dict, Optional, List, Union, Any, ClassVar
from dataclasses import dataclass, field

from ..core.data_structures import ExtendedDataFrame, as_extended, ACI_COLUMN_UNITS
from ..core.models import (
    FitParameters,
    PhotosynthesisConstants,
    DEFAULT_CONSTANTS,
    PARAMETER_UNITS
)
from ..core.photosynthesis import (
    AssimilationResult,
    calculate_assimilation,
    find_ci_transition
)
from ..core.temperature import normalized_peaked_arrhenius
from ..core.exceptions import CurveFitError, InsufficientData
from .initial_guess import estimate_initial_parameters, initial_guess_summary
from .optimization import fit_nonlinear, describe_fit, rmse, r_squared
from .bilinear import fit_bilinear


FIT_METHODS = ('nonlinear', 'bilinear')

# Accepted for compatibility with plantecophys fitacis()
_METHOD_ALIASES = {'default': 'nonlinear'}


@dataclass(frozen=True)
class FitSuccess:
    """A fitted A-Ci curve."""
    # Fitted parameters, at the measured leaf temperature
    parameters: FitParameters
    fitmethod: str

    # Model predictions at the observed Ci
    fitted: np.ndarray
    residuals: np.ndarray  # observed - fitted

    # Statistics
    rmse: float
    r_squared: float
    n_points: int

    # Per-point table: Ci, Tleaf, PPFD, Ameas, Amodel, Ac, Aj, Ap, residual
    data: pd.DataFrame

    # Mean conditions of the curve
    tleaf: float
    ppfd: float

    # Ci where Rubisco and RuBP limitation meet (NaN if they do not)
    ci_transition: float

    constants: PhotosynthesisConstants = DEFAULT_CONSTANTS
    std_errors: Dict[str, float] = field(default_factory=dict)
    convergence_info: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    id_values: Dict[str, Any] = field(default_factory=dict)

    success: ClassVar[bool] = True

    def photosynthesis(
        self,
        ci: Union[float, np.ndarray],
        tleaf: Optional[Union[float, np.ndarray]] = None,
        ppfd: Optional[Union[float, np.ndarray]] = None
    ) -> AssimilationResult:
        """Evaluate the fitted model; Tleaf and PPFD default to the curve means."""
        return calculate_assimilation(
            ci,
            self.tleaf if tleaf is None else tleaf,
            self.ppfd if ppfd is None else ppfd,
            self.parameters,
            self.constants
        )

    def parameters_at_25(self) -> FitParameters:
        """Vcmax and Jmax normalized to 25°C with peaked Arrhenius responses."""
        c = self.constants
        f_vcmax = normalized_peaked_arrhenius(c.ea_vcmax, c.ed_vcmax, c.dels_vcmax, self.tleaf)
        f_jmax = normalized_peaked_arrhenius(c.ea_jmax, c.ed_jmax, c.dels_jmax, self.tleaf)
        return FitParameters(
            Vcmax=float(self.parameters.Vcmax / f_vcmax),
            Jmax=float(self.parameters.Jmax / f_jmax),
            Rd=self.parameters.Rd,
            TPU=self.parameters.TPU
        )

    def coefficients(self, tcorrect: bool = False) -> Dict[str, Any]:
        """One row of the coefficients table."""
        params = self.parameters_at_25() if tcorrect else self.parameters
        row = dict(params.as_dict())
        row['RMSE'] = self.rmse
        row['fitmethod'] = self.fitmethod
        return row


@dataclass(frozen=True)
class FitFailure:
    """A curve that could not be fit."""
    error: CurveFitError
    fitmethod: str
    n_points: int
    id_values: Dict[str, Any] = field(default_factory=dict)

    success: ClassVar[bool] = False

    @property
    def error_type(self) -> str:
        return type(self.error).__name__

    @property
    def message(self) -> str:
        return str(self.error)

    def coefficients(self, tcorrect: bool = False) -> Dict[str, Any]:
        return {
            'Vcmax': np.nan,
            'Jmax': np.nan,
            'Rd': np.nan,
            'RMSE': np.nan,
            'fitmethod': self.fitmethod,
        }


FitResult = Union[FitSuccess, FitFailure]


def normalize_fitmethod(fitmethod: str) -> str:
    """Validate a fit method name, resolving aliases."""
    method = _METHOD_ALIASES.get(fitmethod, fitmethod)
    if method not in FIT_METHODS:
        raise ValueError(
            f"Unknown fitmethod: '{fitmethod}'. Use one of: {', '.join(FIT_METHODS)}"
        )
    return method


def _environment_column(
    curve: ExtendedDataFrame,
    column: Optional[str],
    default: float,
    label: str,
    warnings_list: List[str]
) -> np.ndarray:
    """
    Values of an optional Tleaf/PPFD column, filling gaps with the default.

    Filled values are written back to `curve` under the 'assumed' category.
    """
    if not curve.has_column(column):
        warnings_list.append(f"{label} not in dataset; assumed {label} = {default:g}")
        curve.set_variable(
            column or label, default,
            units=ACI_COLUMN_UNITS.get(label, "dimensionless"),
            category="assumed"
        )
        return curve.column(column or label).to_numpy(dtype=float)

    values = curve.column(column).to_numpy(dtype=float)
    missing = ~np.isfinite(values)
    if np.any(missing):
        warnings_list.append(
            f"{int(np.sum(missing))} missing {label} values replaced by {default:g}"
        )
        values = np.where(missing, default, values)
        curve.set_variable(column, values, units=curve.units[column], category="assumed")
    return values


def fit_aci(
    data: Union[pd.DataFrame, ExtendedDataFrame],
    fitmethod: str = 'nonlinear',
    # Column names
    a_column: str = 'Assimilation',
    ci_column: str = 'Ci',
    tleaf_column: Optional[str] = 'Tleaf',
    ppfd_column: Optional[str] = 'PPFD',
    # Model options
    constants: Optional[PhotosynthesisConstants] = None,
    fixed_parameters: Optional[Dict[str, float]] = None,
    fit_tpu: bool = False,
    ci_transition: Optional[float] = None,
    # Optimization options
    max_nfev: int = 2000,
    verbose: bool = False
) -> FitResult:
    """
    Fit the FvCB model to one A-Ci curve.

    Numerical failures of the nonlinear fit (non-convergence, singular
    gradient, too few points) are returned as a FitFailure rather than
    raised, so the caller can decide whether to retry with 'bilinear'.
    The bilinear method succeeds for any curve with at least one complete
    observation.

    Args:
        data: Curve data (DataFrame or ExtendedDataFrame)
        fitmethod: 'nonlinear' (alias 'default') or 'bilinear'
        a_column: Column name for net assimilation
        ci_column: Column name for intercellular CO2
        tleaf_column: Column name for leaf temperature (optional in the data)
        ppfd_column: Column name for PPFD (optional in the data)
        constants: Model constants (default: DEFAULT_CONSTANTS)
        fixed_parameters: Parameters held constant in the nonlinear fit,
            e.g. {'Rd': 1.2}
        fit_tpu: Also fit TPU (nonlinear method only)
        ci_transition: Breakpoint Ci for the bilinear method; searched if None
        max_nfev: Maximum function evaluations for the nonlinear fit
        verbose: Print progress information

    Returns:
        FitSuccess or FitFailure

    Raises:
        FieldNotFound: If the Ci or assimilation column is missing
        ValueError: If fitmethod is unknown
    """
    method = normalize_fitmethod(fitmethod)
    constants = constants or DEFAULT_CONSTANTS

    exdf = as_extended(data)
    exdf.check_required_variables([ci_column, a_column])

    warnings_list = []
    curve = exdf.drop_missing([ci_column, a_column])
    n_dropped = len(exdf) - len(curve)
    if n_dropped:
        warnings_list.append(f"Dropped {n_dropped} rows with missing {ci_column} or {a_column}")

    n_points = len(curve)
    if n_points == 0:
        return FitFailure(
            error=InsufficientData("No complete observations in curve"),
            fitmethod=method,
            n_points=0
        )

    ci = curve.column(ci_column).to_numpy(dtype=float)
    a = curve.column(a_column).to_numpy(dtype=float)
    tleaf = _environment_column(curve, tleaf_column, constants.default_tleaf, 'Tleaf', warnings_list)
    ppfd = _environment_column(curve, ppfd_column, constants.default_ppfd, 'PPFD', warnings_list)

    std_errors = {}
    try:
        if method == 'nonlinear':
            if verbose:
                print("Estimating initial parameters...")
            initial = estimate_initial_parameters(
                ci, a, tleaf, ppfd, constants, fit_tpu=fit_tpu
            )
            if verbose:
                print(f"Initial parameters: {initial.as_dict()}")

            fit = fit_nonlinear(
                ci, a, tleaf, ppfd, initial,
                constants=constants,
                fixed_parameters=fixed_parameters,
                fit_tpu=fit_tpu,
                max_nfev=max_nfev
            )
            params = fit.parameters
            std_errors = fit.std_errors
            convergence_info = describe_fit(fit)
            convergence_info.update(initial_guess_summary(initial))
            warnings_list.extend(fit.warnings)
        else:
            fit = fit_bilinear(
                ci, a, tleaf, ppfd, constants, ci_transition=ci_transition
            )
            params = fit.parameters
            convergence_info = {
                'breakpoint': fit.breakpoint,
                'sum_of_squares': fit.sum_of_squares,
                'n_low': fit.n_low,
                'n_high': fit.n_high,
            }
            warnings_list.extend(fit.warnings)
    except CurveFitError as e:
        if verbose:
            print(f"Fit failed ({type(e).__name__}): {e}")
        return FitFailure(error=e, fitmethod=method, n_points=n_points)

    result = build_fit_success(
        params, method, ci, a, tleaf, ppfd, constants,
        std_errors=std_errors,
        convergence_info=convergence_info,
        warnings_list=warnings_list
    )

    if verbose:
        print(f"Fit complete ({method}). Parameters: {params.as_dict()}")
        print(f"RMSE: {result.rmse:.3f}, R²: {result.r_squared:.3f}")

    return result


def build_fit_success(
    params: FitParameters,
    method: str,
    ci: np.ndarray,
    a: np.ndarray,
    tleaf: np.ndarray,
    ppfd: np.ndarray,
    constants: PhotosynthesisConstants,
    std_errors: Optional[Dict[str, float]] = None,
    convergence_info: Optional[Dict[str, Any]] = None,
    warnings_list: Optional[List[str]] = None
) -> FitSuccess:
    """Evaluate the fitted model at the data and assemble a FitSuccess."""
    warnings_list = list(warnings_list or [])

    model = calculate_assimilation(ci, tleaf, ppfd, params, constants)
    fitted = model.An
    residuals = a - fitted

    mean_tleaf = float(np.mean(tleaf))
    mean_ppfd = float(np.mean(ppfd))

    valid, message = params.is_valid()
    if not valid:
        warnings_list.append(message)

    table = pd.DataFrame({
        'Ci': ci,
        'Tleaf': tleaf,
        'PPFD': ppfd,
        'Ameas': a,
        'Amodel': fitted,
        'Ac': model.Ac,
        'Aj': model.Aj,
        'Ap': model.Ap,
        'residual': residuals,
    })

    return FitSuccess(
        parameters=params,
        fitmethod=method,
        fitted=fitted,
        residuals=residuals,
        rmse=rmse(a, fitted),
        r_squared=r_squared(a, fitted),
        n_points=len(a),
        data=table,
        tleaf=mean_tleaf,
        ppfd=mean_ppfd,
        ci_transition=find_ci_transition(params, mean_tleaf, mean_ppfd, constants),
        constants=constants,
        std_errors=dict(std_errors or {}),
        convergence_info=dict(convergence_info or {}),
        warnings=warnings_list
    )


def summarize_fit(result: FitResult) -> pd.DataFrame:
    """
    Create a summary DataFrame of a fitting result.

    Args:
        result: FitSuccess or FitFailure

    Returns:
        DataFrame with parameter estimates, standard errors and statistics
    """
    summary_data = {
        'Parameter': [],
        'Value': [],
        'Std_error': [],
        'Unit': []
    }

    if not result.success:
        summary_data['Parameter'].append('error')
        summary_data['Value'].append(f"{result.error_type}: {result.message}")
        summary_data['Std_error'].append(np.nan)
        summary_data['Unit'].append('')
        return pd.DataFrame(summary_data)

    for param, value in result.parameters.as_dict().items():
        summary_data['Parameter'].append(param)
        summary_data['Value'].append(value)
        summary_data['Std_error'].append(result.std_errors.get(param, np.nan))
        summary_data['Unit'].append(PARAMETER_UNITS.get(param, ''))

    stats = {
        'RMSE': (result.rmse, 'µmol m⁻² s⁻¹'),
        'R²': (result.r_squared, ''),
        'Ci_transition': (result.ci_transition, 'µmol mol⁻¹'),
    }

    for stat, (value, unit) in stats.items():
        summary_data['Parameter'].append(stat)
        summary_data['Value'].append(value)
        summary_data['Std_error'].append(np.nan)
        summary_data['Unit'].append(unit)

    return pd.DataFrame(summary_data)
