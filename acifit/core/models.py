"""
Parameter and constant definitions for the FvCB A-Ci model.

PhotosynthesisConstants holds every fixed physical constant and default the
model uses; pass a modified copy (dataclasses.replace) to change them.
FitParameters holds the capacities estimated from a curve.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple
import numpy as np


PARAMETER_NAMES = ('Vcmax', 'Jmax', 'Rd', 'TPU')

PARAMETER_UNITS = {
    'Vcmax': 'µmol m⁻² s⁻¹',
    'Jmax': 'µmol m⁻² s⁻¹',
    'Rd': 'µmol m⁻² s⁻¹',
    'TPU': 'µmol m⁻² s⁻¹',
}


@dataclass(frozen=True)
class PhotosynthesisConstants:
    """
    Fixed constants of the C3 A-Ci model.

    Kinetic constants follow Bernacchi et al. (2001); the light response and
    the Vcmax/Jmax temperature responses follow Duursma (2015).
    """
    # Light response of electron transport
    alpha: float = 0.24    # quantum yield of electron transport (mol mol⁻¹)
    theta: float = 0.85    # curvature of the light response

    # Rubisco kinetics at 25°C
    oi: float = 210.0              # O2 concentration (mmol mol⁻¹)
    gamma_star_25: float = 42.75   # CO2 compensation point (µmol mol⁻¹)
    kc_25: float = 404.9           # Michaelis constant for CO2 (µmol mol⁻¹)
    ko_25: float = 278.4           # Michaelis constant for O2 (mmol mol⁻¹)
    ea_gamma_star: float = 37.83   # kJ mol⁻¹
    ea_kc: float = 79.43           # kJ mol⁻¹
    ea_ko: float = 36.38           # kJ mol⁻¹

    # Used when the data carry no Tleaf / PPFD column
    default_tleaf: float = 25.0
    default_ppfd: float = 1800.0

    # Peaked Arrhenius responses used to report Vcmax and Jmax at 25°C
    ea_vcmax: float = 82.62087     # kJ mol⁻¹
    ed_vcmax: float = 0.0          # kJ mol⁻¹
    dels_vcmax: float = 0.6451013  # kJ K⁻¹ mol⁻¹
    ea_jmax: float = 39.67689      # kJ mol⁻¹
    ed_jmax: float = 200.0         # kJ mol⁻¹
    dels_jmax: float = 0.6413615   # kJ K⁻¹ mol⁻¹


DEFAULT_CONSTANTS = PhotosynthesisConstants()


@dataclass(frozen=True)
class FitParameters:
    """Biochemical capacities of one leaf (all in µmol m⁻² s⁻¹)."""
    Vcmax: float
    Jmax: float
    Rd: float
    TPU: Optional[float] = None

    @property
    def has_tpu(self) -> bool:
        return self.TPU is not None

    def as_dict(self) -> Dict[str, float]:
        """Parameters keyed by name; TPU only when it is modeled."""
        values = {'Vcmax': self.Vcmax, 'Jmax': self.Jmax, 'Rd': self.Rd}
        if self.TPU is not None:
            values['TPU'] = self.TPU
        return values

    @classmethod
    def from_dict(cls, values: Dict[str, float]) -> 'FitParameters':
        return cls(
            Vcmax=float(values['Vcmax']),
            Jmax=float(values['Jmax']),
            Rd=float(values['Rd']),
            TPU=None if values.get('TPU') is None else float(values['TPU'])
        )

    def is_valid(self) -> Tuple[bool, str]:
        """Check that every present parameter is finite and non-negative."""
        for name, value in self.as_dict().items():
            if not np.isfinite(value):
                return False, f"{name} is not finite: {value}"
            if value < 0:
                return False, f"{name} must be >= 0, got {value}"
        return True, ""
