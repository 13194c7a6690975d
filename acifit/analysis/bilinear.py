"""
Bilinear (segmented regression) fitting of A-Ci curves.

Below the transition the curve is Rubisco-limited and linear in
x_c = (Ci - Gamma_star) / (Ci + Km); above it, RuBP-limited and linear in
x_j = (Ci - Gamma_star) / (Ci + 2 Gamma_star). Every interior breakpoint is
tried and the one with the smallest total sum of squares is kept. The method
involves no iteration and returns estimates for any non-empty curve, which
makes it the fallback when the nonlinear fit fails.
"""

import numpy as np
from typing import List, Optional, Tuple
from dataclasses import dataclass, field

from ..core.models import FitParameters, PhotosynthesisConstants, DEFAULT_CONSTANTS
from ..core.photosynthesis import kinetic_constants, inverse_electron_transport_rate
from ..core.exceptions import InsufficientData

# Minimum number of points in each segment of a searched breakpoint
MIN_SEGMENT_POINTS = 2


@dataclass
class BilinearFit:
    """Container for bilinear fitting results."""
    parameters: FitParameters
    sum_of_squares: float
    breakpoint: float   # lowest Ci of the RuBP-limited segment (NaN if none)
    n_low: int
    n_high: int
    warnings: List[str] = field(default_factory=list)


def linear_fit(x: np.ndarray, y: np.ndarray) -> Tuple[float, float, float]:
    """
    Ordinary least squares of y on x with intercept.

    Rank-deficient designs (a single point, identical x) give the
    minimum-norm solution instead of failing.

    Returns:
        Tuple of (intercept, slope, residual sum of squares)
    """
    design = np.column_stack([np.ones_like(x), x])
    coef, _, _, _ = np.linalg.lstsq(design, y, rcond=None)
    resid = y - design @ coef
    return float(coef[0]), float(coef[1]), float(resid @ resid)


def fit_bilinear(
    ci: np.ndarray,
    a: np.ndarray,
    tleaf: np.ndarray,
    ppfd: np.ndarray,
    constants: Optional[PhotosynthesisConstants] = None,
    ci_transition: Optional[float] = None
) -> BilinearFit:
    """
    Fit an A-Ci curve as two linear segments.

    Args:
        ci: Intercellular CO2 concentrations
        a: Observed net assimilation
        tleaf: Leaf temperatures (°C), same length as ci
        ppfd: PPFD values, same length as ci
        constants: Model constants
        ci_transition: Force the split: points with Ci below this value form
            the Rubisco-limited segment. If None, the breakpoint is searched.

    Returns:
        BilinearFit; Vcmax and Rd from the low segment, Jmax from the plateau
        of the high segment converted through the light response at mean PPFD

    Raises:
        InsufficientData: If no finite observation is left
    """
    constants = constants or DEFAULT_CONSTANTS
    warnings_list = []

    order = np.argsort(np.asarray(ci, dtype=float), kind='mergesort')
    ci_s = np.asarray(ci, dtype=float)[order]
    a_s = np.asarray(a, dtype=float)[order]
    tleaf_s = np.asarray(tleaf, dtype=float)[order]
    ppfd_s = np.asarray(ppfd, dtype=float)[order]

    gamma_star, km = kinetic_constants(tleaf_s, constants)
    with np.errstate(divide='ignore', invalid='ignore'):
        x_c = (ci_s - gamma_star) / (ci_s + km)
        x_j = (ci_s - gamma_star) / (ci_s + 2.0 * gamma_star)

    finite = np.isfinite(x_c) & np.isfinite(x_j) & np.isfinite(a_s)
    if not np.all(finite):
        warnings_list.append(f"Ignored {int(np.sum(~finite))} points with non-finite values")
        ci_s, a_s, ppfd_s = ci_s[finite], a_s[finite], ppfd_s[finite]
        x_c, x_j = x_c[finite], x_j[finite]

    n = len(a_s)
    if n == 0:
        raise InsufficientData("No finite observations to fit")

    if ci_transition is not None:
        candidates = [int(np.searchsorted(ci_s, ci_transition, side='left'))]
        candidates = [k for k in candidates if 0 < k < n]
    else:
        candidates = range(MIN_SEGMENT_POINTS, n - MIN_SEGMENT_POINTS + 1)

    best = None
    for k in candidates:
        b0, b1, ss_low = linear_fit(x_c[:k], a_s[:k])
        c0, c1, ss_high = linear_fit(x_j[k:], a_s[k:])
        ss = ss_low + ss_high
        if best is None or ss < best[0]:
            best = (ss, k, b0, b1, c0 + c1)

    if best is not None:
        ss, k, b0, b1, plateau = best
        breakpoint = float(ci_s[k])
    else:
        # Too few points for two segments: treat the whole curve as Rubisco-limited
        b0, b1, ss = linear_fit(x_c, a_s)
        k = n
        breakpoint = np.nan
        plateau = None
        warnings_list.append(
            "Too few points for a breakpoint search; fitted a single Rubisco-limited segment"
        )

    vcmax = b1
    rd = -b0
    if vcmax < 0:
        warnings_list.append(f"Negative Vcmax estimate ({vcmax:.3g}) set to 0")
        vcmax = 0.0
    if rd < 0:
        warnings_list.append(f"Negative Rd estimate ({rd:.3g}) set to 0")
        rd = 0.0

    if plateau is None:
        # J that makes the highest observed point RuBP-limited
        top = int(np.argmax(a_s))
        scale = x_j[top] if x_j[top] > 0 else 1.0
        plateau = (a_s[top] + rd) / scale - rd

    j = max(4.0 * (plateau + rd), 0.0)
    mean_ppfd = float(np.mean(ppfd_s))
    jmax = inverse_electron_transport_rate(j, mean_ppfd, constants)
    if not np.isfinite(jmax):
        warnings_list.append(
            f"J ({j:.3g}) exceeds the light-limited rate at PPFD {mean_ppfd:.0f}; "
            "Jmax set to J"
        )
        jmax = j

    return BilinearFit(
        parameters=FitParameters(Vcmax=float(vcmax), Jmax=float(max(jmax, 0.0)), Rd=float(rd)),
        sum_of_squares=float(ss),
        breakpoint=breakpoint,
        n_low=int(k),
        n_high=int(n - k),
        warnings=warnings_list
    )
