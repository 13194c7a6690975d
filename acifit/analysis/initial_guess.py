
import numpy as np
from typing import Dict, Optional, Tuple
from scipy import stats

from ..core.models import FitParameters, PhotosynthesisConstants, DEFAULT_CONSTANTS
from ..core.photosynthesis import (
    calculate_assimilation,
    kinetic_constants,
    inverse_electron_transport_rate
)

# Generic values used when a regime has too few points
DEFAULT_VCMAX = 50.0
DEFAULT_RD = 1.0
DEFAULT_JMAX_RATIO = 1.8

# Upper Ci of the region assumed to be Rubisco-limited
RUBISCO_CI_THRESHOLD = 300.0

# Multipliers scanned around the heuristic Vcmax and Jmax
START_GRID_FACTORS = np.array([0.4, 0.6, 0.8, 1.0, 1.25, 1.6, 2.0])


def estimate_initial_parameters(
    ci: np.ndarray,
    a: np.ndarray,
    tleaf: np.ndarray,
    ppfd: np.ndarray,
    constants: Optional[PhotosynthesisConstants] = None,
    fit_tpu: bool = False,
    refine: bool = True
) -> FitParameters:
    """
    Estimate starting values for the nonlinear A-Ci fit.

    Rd and Vcmax come from a regression of A on the Rubisco-limited
    carboxylation term over the low-Ci points, Jmax from the highest
    assimilation above that region. When `refine` is True the Vcmax/Jmax
    pair is then improved by scanning a small multiplicative grid and keeping
    the combination with the lowest sum of squares.

    Never raises: any estimate that cannot be formed falls back to a generic
    default.

    Args:
        ci: Intercellular CO2 concentrations
        a: Net assimilation rates
        tleaf: Leaf temperatures (°C), same length as ci
        ppfd: PPFD values, same length as ci
        constants: Model constants
        fit_tpu: Also return a starting TPU
        refine: Scan the start-value grid

    Returns:
        FitParameters with the initial guesses
    """
    constants = constants or DEFAULT_CONSTANTS

    order = np.argsort(ci)
    ci_sorted = np.asarray(ci, dtype=float)[order]
    a_sorted = np.asarray(a, dtype=float)[order]
    tleaf_sorted = np.asarray(tleaf, dtype=float)[order]
    ppfd_sorted = np.asarray(ppfd, dtype=float)[order]

    gamma_star, km = kinetic_constants(tleaf_sorted, constants)

    vcmax_guess, rd_guess = estimate_vcmax_rd(ci_sorted, a_sorted, gamma_star, km)
    jmax_guess = estimate_jmax_from_plateau(
        ci_sorted, a_sorted, gamma_star, ppfd_sorted, rd_guess, vcmax_guess, constants
    )

    tpu_guess = None
    if fit_tpu:
        tpu_guess = estimate_tpu(a_sorted, rd_guess)

    initial = FitParameters(Vcmax=vcmax_guess, Jmax=jmax_guess, Rd=rd_guess, TPU=tpu_guess)

    if refine:
        initial = refine_on_grid(
            initial, ci_sorted, a_sorted, tleaf_sorted, ppfd_sorted, constants
        )

    return initial


def estimate_vcmax_rd(
    ci: np.ndarray,
    a: np.ndarray,
    gamma_star: np.ndarray,
    km: np.ndarray,
    ci_threshold: float = RUBISCO_CI_THRESHOLD
) -> Tuple[float, float]:
    """
    Estimate Vcmax and Rd from the low-Ci part of the curve.

    In the Rubisco-limited region A = Vcmax * x - Rd with
    x = (Ci - Gamma_star) / (Ci + Km), so the regression slope is Vcmax and
    the intercept is -Rd.

    Returns:
        Tuple of (Vcmax, Rd)
    """
    mask = ci < ci_threshold
    vcmax_guess = np.nan
    rd_guess = np.nan

    if np.unique(ci[mask]).size >= 2:
        x = (ci[mask] - gamma_star[mask]) / (ci[mask] + km[mask])
        slope, intercept, _, _, _ = stats.linregress(x, a[mask])
        vcmax_guess = slope
        rd_guess = -intercept

    if not np.isfinite(vcmax_guess) or vcmax_guess <= 0:
        vcmax_guess = DEFAULT_VCMAX

    if not np.isfinite(rd_guess) or rd_guess <= 0:
        rd_guess = estimate_rd(a)

    return float(vcmax_guess), float(rd_guess)


def estimate_rd(a: np.ndarray) -> float:
    """
    Rd from the assimilation at the lowest Ci (a sorted by Ci).

    Uses minus that value when it is negative, otherwise DEFAULT_RD.
    """
    if len(a) and np.isfinite(a[0]) and a[0] < 0:
        return float(-a[0])
    return DEFAULT_RD


def estimate_jmax_from_plateau(
    ci: np.ndarray,
    a: np.ndarray,
    gamma_star: np.ndarray,
    ppfd: np.ndarray,
    rd: float,
    vcmax_est: float,
    constants: PhotosynthesisConstants = DEFAULT_CONSTANTS,
    ci_threshold: float = RUBISCO_CI_THRESHOLD
) -> float:
    """
    Estimate Jmax from the highest assimilation in the RuBP-limited region.

    There A + Rd = J/4 * (Ci - Gamma_star) / (Ci + 2 Gamma_star); J is solved
    at the point with the highest A above `ci_threshold` and inverted through
    the light response.
    """
    fallback = DEFAULT_JMAX_RATIO * vcmax_est

    mask = ci >= ci_threshold
    if not np.any(mask):
        return fallback

    idx = np.flatnonzero(mask)[np.argmax(a[mask])]
    x = (ci[idx] - gamma_star[idx]) / (ci[idx] + 2.0 * gamma_star[idx])
    if x <= 0:
        return fallback

    j = 4.0 * (a[idx] + rd) / x
    jmax = inverse_electron_transport_rate(j, ppfd[idx], constants)

    if not np.isfinite(jmax) or jmax <= 0:
        # Light response cannot be inverted; J itself is the best lower bound
        jmax = j if np.isfinite(j) and j > 0 else fallback

    return float(jmax)


def estimate_tpu(a: np.ndarray, rd: float) -> float:
    """TPU at which the highest observed gross rate is TPU-limited."""
    finite = a[np.isfinite(a)]
    if finite.size == 0:
        return 10.0
    return float(max((np.max(finite) + rd) / 3.0, 1.0))


def _sum_of_squares(
    params: FitParameters,
    ci: np.ndarray,
    a: np.ndarray,
    tleaf: np.ndarray,
    ppfd: np.ndarray,
    constants: PhotosynthesisConstants
) -> float:
    predicted = calculate_assimilation(ci, tleaf, ppfd, params, constants).An
    ss = np.sum((a - predicted)**2)
    return float(ss) if np.isfinite(ss) else np.inf


def refine_on_grid(
    initial: FitParameters,
    ci: np.ndarray,
    a: np.ndarray,
    tleaf: np.ndarray,
    ppfd: np.ndarray,
    constants: PhotosynthesisConstants = DEFAULT_CONSTANTS,
    factors: np.ndarray = START_GRID_FACTORS
) -> FitParameters:
    """
    Scan Vcmax and Jmax over `factors` times their current values.

    Rd and TPU are kept. Returns the lowest sum-of-squares combination, which
    is `initial` itself if nothing improves on it.
    """
    best = initial
    best_ss = _sum_of_squares(initial, ci, a, tleaf, ppfd, constants)

    for fv in factors:
        for fj in factors:
            candidate = FitParameters(
                Vcmax=initial.Vcmax * fv,
                Jmax=initial.Jmax * fj,
                Rd=initial.Rd,
                TPU=initial.TPU
            )
            ss = _sum_of_squares(candidate, ci, a, tleaf, ppfd, constants)
            if ss < best_ss:
                best, best_ss = candidate, ss

    return best


def initial_guess_summary(initial: FitParameters) -> Dict[str, float]:
    """Flat dict of the starting values, for verbose output and diagnostics."""
    return {f'{name}_start': value for name, value in initial.as_dict().items()}
