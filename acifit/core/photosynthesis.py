"""
C3 photosynthesis calculations using the Farquhar-von Caemmerer-Berry model.

Net assimilation is the minimum of three gross rates minus day respiration:
- Rubisco-limited (Ac)
- RuBP-regeneration-limited (Aj), driven by electron transport J
- TPU-limited (Ap), only when TPU is modeled

The kinetic constants are temperature corrected with Arrhenius functions of
leaf temperature; J follows a non-rectangular hyperbola of PPFD.
"""

import numpy as np
from typing import Dict, Optional, Tuple, Union
from dataclasses import dataclass

from .models import FitParameters, PhotosynthesisConstants, DEFAULT_CONSTANTS
from .temperature import normalized_arrhenius


ArrayLike = Union[float, np.ndarray]


@dataclass
class AssimilationResult:
    """Container for A-Ci model evaluations (µmol m⁻² s⁻¹ unless noted)."""
    An: np.ndarray          # Net CO2 assimilation rate
    Ac: np.ndarray          # Rubisco-limited net assimilation
    Aj: np.ndarray          # RuBP-limited net assimilation
    Ap: np.ndarray          # TPU-limited net assimilation (inf when not modeled)
    J: np.ndarray           # Electron transport rate
    Gamma_star: np.ndarray  # CO2 compensation point (µmol mol⁻¹)
    Km: np.ndarray          # Effective Michaelis-Menten constant (µmol mol⁻¹)


def kinetic_constants(
    tleaf: ArrayLike,
    constants: PhotosynthesisConstants = DEFAULT_CONSTANTS
) -> Tuple[ArrayLike, ArrayLike]:
    """
    Gamma_star and Km at leaf temperature.

    Returns:
        Tuple of (Gamma_star, Km) in µmol mol⁻¹
    """
    gamma_star = constants.gamma_star_25 * normalized_arrhenius(constants.ea_gamma_star, tleaf)
    kc = constants.kc_25 * normalized_arrhenius(constants.ea_kc, tleaf)
    ko = constants.ko_25 * normalized_arrhenius(constants.ea_ko, tleaf)
    km = kc * (1.0 + constants.oi / ko)
    return gamma_star, km


def electron_transport_rate(
    jmax: ArrayLike,
    ppfd: ArrayLike,
    constants: PhotosynthesisConstants = DEFAULT_CONSTANTS
) -> ArrayLike:
    """
    Electron transport rate from Jmax and PPFD (non-rectangular hyperbola).

    J = (aQ + Jmax - sqrt((aQ + Jmax)^2 - 4 theta aQ Jmax)) / (2 theta)
    """
    aq = constants.alpha * np.asarray(ppfd, dtype=float)
    term = aq + jmax
    discriminant = np.maximum(term**2 - 4.0 * constants.theta * aq * jmax, 0.0)
    return (term - np.sqrt(discriminant)) / (2.0 * constants.theta)


def inverse_electron_transport_rate(
    j: ArrayLike,
    ppfd: ArrayLike,
    constants: PhotosynthesisConstants = DEFAULT_CONSTANTS
) -> ArrayLike:
    """
    Jmax that gives electron transport rate `j` at `ppfd`.

    Undefined (NaN) where j is at or above the light-limited asymptote aQ.
    """
    j = np.asarray(j, dtype=float)
    aq = constants.alpha * np.asarray(ppfd, dtype=float)
    with np.errstate(divide='ignore', invalid='ignore'):
        jmax = j * (aq - constants.theta * j) / (aq - j)
    jmax = np.where(j < aq, jmax, np.nan)
    return jmax if jmax.ndim else float(jmax)


def _as_parameters(parameters: Union[FitParameters, Dict[str, float]]) -> FitParameters:
    if isinstance(parameters, FitParameters):
        return parameters
    return FitParameters.from_dict(parameters)


def calculate_assimilation(
    ci: ArrayLike,
    tleaf: Optional[ArrayLike],
    ppfd: Optional[ArrayLike],
    parameters: Union[FitParameters, Dict[str, float]],
    constants: Optional[PhotosynthesisConstants] = None
) -> AssimilationResult:
    """
    Evaluate the FvCB model.

    Args:
        ci: Intercellular CO2 concentration (µmol mol⁻¹)
        tleaf: Leaf temperature (°C); None uses constants.default_tleaf
        ppfd: Photosynthetic photon flux density (µmol m⁻² s⁻¹);
            None uses constants.default_ppfd
        parameters: FitParameters or dict with Vcmax, Jmax, Rd and optional TPU
        constants: Model constants (default: DEFAULT_CONSTANTS)

    Returns:
        AssimilationResult; all arrays share the broadcast shape of the inputs
    """
    constants = constants or DEFAULT_CONSTANTS
    params = _as_parameters(parameters)

    if tleaf is None:
        tleaf = constants.default_tleaf
    if ppfd is None:
        ppfd = constants.default_ppfd

    ci, tleaf, ppfd = np.broadcast_arrays(
        np.atleast_1d(np.asarray(ci, dtype=float)),
        np.asarray(tleaf, dtype=float),
        np.asarray(ppfd, dtype=float)
    )

    gamma_star, km = kinetic_constants(tleaf, constants)
    j = electron_transport_rate(params.Jmax, ppfd, constants)

    # Gross rates
    wc = params.Vcmax * (ci - gamma_star) / (ci + km)
    wj = (j / 4.0) * (ci - gamma_star) / (ci + 2.0 * gamma_star)
    if params.TPU is None:
        wp = np.full_like(ci, np.inf)
    else:
        wp = np.full_like(ci, 3.0 * params.TPU)

    gross = np.minimum(np.minimum(wc, wj), wp)

    return AssimilationResult(
        An=gross - params.Rd,
        Ac=wc - params.Rd,
        Aj=wj - params.Rd,
        Ap=wp - params.Rd,
        J=j,
        Gamma_star=gamma_star,
        Km=km
    )


def identify_limiting_process(result: AssimilationResult) -> np.ndarray:
    """
    Identify which process limits photosynthesis at each point.

    Returns:
        Array of 'Rubisco', 'RuBP' or 'TPU' for each point
    """
    rates = np.vstack([result.Ac, result.Aj, result.Ap])
    labels = np.array(['Rubisco', 'RuBP', 'TPU'], dtype=object)
    return labels[np.argmin(rates, axis=0)]


def find_ci_transition(
    parameters: Union[FitParameters, Dict[str, float]],
    tleaf: float,
    ppfd: float,
    constants: Optional[PhotosynthesisConstants] = None
) -> float:
    """
    Ci at which the Rubisco- and RuBP-limited rates are equal.

    Returns NaN when the two curves do not cross above Gamma_star.
    """
    constants = constants or DEFAULT_CONSTANTS
    params = _as_parameters(parameters)

    gamma_star, km = kinetic_constants(tleaf, constants)
    j4 = float(electron_transport_rate(params.Jmax, ppfd, constants)) / 4.0

    if params.Vcmax <= j4:
        return np.nan

    ci = (j4 * km - 2.0 * gamma_star * params.Vcmax) / (params.Vcmax - j4)
    return float(ci) if ci > gamma_star else np.nan
