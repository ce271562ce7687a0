"""
Pharmacodynamic transform from antibody concentration to clinical efficacy.

Concentration is first converted to a neutralizing-titer proxy through the
in-vitro IC50, then to protective efficacy with a sigmoid on log10 titer.
"""

import numpy as np
from typing import Optional, Union
import logging

from ..config import PharmacodynamicConfig
from ..exceptions import DomainError, InvalidArgument
from .compartment_models import PopulationTrace
from .population_models import PopulationSample

ArrayLike = Union[float, np.ndarray]


def titer_from_concentration(concentration: ArrayLike,
                             ic50: ArrayLike,
                             config: Optional[PharmacodynamicConfig] = None) -> np.ndarray:
    """Scaled neutralizing titer: (concentration / ic50) / scaling constant.

    Zero concentrations are raised to ``config.concentration_floor`` so the
    titer stays positive.
    """
    config = config or PharmacodynamicConfig()
    concentration = np.asarray(concentration, dtype=float)
    ic50 = np.asarray(ic50, dtype=float)

    if np.any(~np.isfinite(concentration)) or np.any(concentration < 0):
        raise DomainError("Concentration must be finite and non-negative")
    if np.any(~np.isfinite(ic50)) or np.any(ic50 <= 0):
        raise DomainError("IC50 must be strictly positive")
    if config.concentration_floor <= 0 or config.titer_scaling_constant <= 0:
        raise InvalidArgument("Concentration floor and titer scaling constant must be positive")

    floored = np.maximum(concentration, config.concentration_floor)
    return floored / ic50 / config.titer_scaling_constant


def efficacy_from_concentration(concentration: ArrayLike,
                                ic50: ArrayLike,
                                max_effect: ArrayLike,
                                slope: ArrayLike,
                                half_max_titer: ArrayLike,
                                config: Optional[PharmacodynamicConfig] = None) -> np.ndarray:
    """Protective efficacy in percent.

    effect = Emax / (1 + (2*Emax - 1) * exp(-slope * (log10(titer) - log10(half_max_titer)))) * 100

    At ``titer == half_max_titer`` the efficacy is exactly 50%.
    """
    max_effect = np.asarray(max_effect, dtype=float)
    slope = np.asarray(slope, dtype=float)
    half_max_titer = np.asarray(half_max_titer, dtype=float)

    if np.any(max_effect <= 0.5) or np.any(max_effect > 1.0):
        raise InvalidArgument("max_effect must lie in (0.5, 1]")
    if np.any(~np.isfinite(half_max_titer)) or np.any(half_max_titer <= 0):
        raise DomainError("half_max_titer must be strictly positive")

    titer = titer_from_concentration(concentration, ic50, config)
    exponent = -slope * (np.log10(titer) - np.log10(half_max_titer))
    # exp overflow at vanishing titer drives efficacy to 0, which is the right limit
    with np.errstate(over='ignore'):
        denominator = 1.0 + (2.0 * max_effect - 1.0) * np.exp(exponent)
    return max_effect / denominator * 100.0


class NeutralizationEfficacyModel:
    """Applies the efficacy transform to population traces."""

    def __init__(self, config: Optional[PharmacodynamicConfig] = None):
        self.config = config or PharmacodynamicConfig()
        self.logger = logging.getLogger(__name__)

    def predict_response(self,
                         concentrations: np.ndarray,
                         population: PopulationSample) -> np.ndarray:
        """Efficacy for a (n_individuals, n_times) concentration array."""
        arrays = population.to_arrays()
        concentrations = np.asarray(concentrations, dtype=float)
        if concentrations.shape[0] != len(population):
            raise InvalidArgument(
                f"Concentration rows ({concentrations.shape[0]}) do not match "
                f"population size ({len(population)})"
            )
        return efficacy_from_concentration(
            concentrations,
            arrays['ic50'][:, None],
            arrays['max_effect'][:, None],
            arrays['slope'][:, None],
            arrays['half_max_titer'][:, None],
            self.config
        )

    def predict_trace(self, trace: PopulationTrace, population: PopulationSample) -> np.ndarray:
        return self.predict_response(trace.concentration, population)

    def concentration_for_efficacy(self,
                                   efficacy_percent: float,
                                   ic50: float,
                                   max_effect: float,
                                   slope: float,
                                   half_max_titer: float) -> float:
        """Invert the transform for a single individual."""
        fraction = efficacy_percent / 100.0
        if not 0.0 < fraction < max_effect:
            raise DomainError(f"Efficacy {efficacy_percent}% is not reachable with max_effect={max_effect}")
        ratio = (max_effect / fraction - 1.0) / (2.0 * max_effect - 1.0)
        log_titer = np.log10(half_max_titer) - np.log(ratio) / slope
        return float(10 ** log_titer * self.config.titer_scaling_constant * ic50)
