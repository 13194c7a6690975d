"""
Temperature response functions for photosynthesis parameters.

Arrhenius and peaked (Johnson-Eyring-Williams) responses, both available
in absolute form and normalized to 1 at the 25 degrees C reference.
Energies are in kJ/mol and entropies in kJ/K/mol.
"""

import numpy as np
from typing import Union

# Constants for temperature calculations
IDEAL_GAS_CONSTANT = 8.3145e-3  # kJ / mol / K
ABSOLUTE_ZERO = -273.15  # degrees C
T_REF_C = 25.0
T_REF_K = T_REF_C - ABSOLUTE_ZERO  # Reference temperature (25°C) in Kelvin
F_CONST = IDEAL_GAS_CONSTANT * T_REF_K  # R * T_ref


def arrhenius_response(
    scaling: float,
    activation_energy: float,
    temperature_c: Union[float, np.ndarray]
) -> Union[float, np.ndarray]:
    """
    Calculate Arrhenius temperature response.

    response = exp(scaling - Ea / (R * T))

    Args:
        scaling: Dimensionless scaling factor
        activation_energy: Activation energy (kJ/mol)
        temperature_c: Temperature in degrees Celsius

    Returns:
        Temperature response factor
    """
    temperature_k = np.asarray(temperature_c, dtype=float) - ABSOLUTE_ZERO
    return np.exp(scaling - activation_energy / (IDEAL_GAS_CONSTANT * temperature_k))


def johnson_eyring_williams_response(
    scaling: float,
    activation_enthalpy: float,
    deactivation_enthalpy: float,
    entropy: float,
    temperature_c: Union[float, np.ndarray]
) -> Union[float, np.ndarray]:
    """
    Calculate Johnson-Eyring-Williams temperature response.

    Activation with deactivation at high temperatures:

    response = arrhenius(c, Ha, T) / (1 + arrhenius(S/R, Hd, T))

    Args:
        scaling: Dimensionless scaling factor
        activation_enthalpy: Activation enthalpy (kJ/mol)
        deactivation_enthalpy: Deactivation enthalpy (kJ/mol)
        entropy: Entropy term (kJ/K/mol)
        temperature_c: Temperature in degrees Celsius

    Returns:
        Temperature response factor
    """
    top = arrhenius_response(scaling, activation_enthalpy, temperature_c)
    bot = 1.0 + arrhenius_response(
        entropy / IDEAL_GAS_CONSTANT,
        deactivation_enthalpy,
        temperature_c
    )
    return top / bot


def normalized_arrhenius(
    activation_energy: float,
    temperature_c: Union[float, np.ndarray]
) -> Union[float, np.ndarray]:
    """Arrhenius response scaled to equal 1 at 25 degrees C."""
    return arrhenius_response(activation_energy / F_CONST, activation_energy, temperature_c)


def normalized_peaked_arrhenius(
    activation_energy: float,
    deactivation_energy: float,
    entropy: float,
    temperature_c: Union[float, np.ndarray]
) -> Union[float, np.ndarray]:
    """
    Peaked Arrhenius response scaled to equal 1 at 25 degrees C.

    With a deactivation energy of zero the deactivation term is constant
    and this reduces to `normalized_arrhenius`.
    """
    at_t = johnson_eyring_williams_response(
        0.0, activation_energy, deactivation_energy, entropy, temperature_c
    )
    at_ref = johnson_eyring_williams_response(
        0.0, activation_energy, deactivation_energy, entropy, T_REF_C
    )
    return at_t / at_ref
