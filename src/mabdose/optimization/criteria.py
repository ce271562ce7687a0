"""
Population percentile criterion shared by the dose optimizers.
"""

import math
import numpy as np
from typing import Callable, Optional
from dataclasses import dataclass, field
from enum import Enum
import logging

from ..config import PharmacodynamicConfig
from ..exceptions import InvalidArgument
from ..pkpd.compartment_models import TwoCompartmentModel, PopulationTrace
from ..pkpd.dosing_regimens import DosingSchedule
from ..pkpd.efficacy_models import NeutralizationEfficacyModel
from ..pkpd.population_models import PopulationSample

logger = logging.getLogger(__name__)


class ResponseSelector(Enum):
    """Which simulated quantity feeds the criterion."""
    CONCENTRATION = 'PK'
    EFFICACY = 'PD'

    @classmethod
    def parse(cls, value) -> 'ResponseSelector':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise InvalidArgument(f"Unknown criterion {value!r}; expected 'PK' or 'PD'") from None

    def resolve(self, pd_config: Optional[PharmacodynamicConfig] = None) -> Callable[[PopulationTrace, PopulationSample], np.ndarray]:
        """Strategy mapping a trace to the selected response, shape (n, n_times)."""
        if self is ResponseSelector.CONCENTRATION:
            return _concentration_response
        return NeutralizationEfficacyModel(pd_config).predict_trace


def _concentration_response(trace: PopulationTrace, population: PopulationSample) -> np.ndarray:
    return trace.concentration


class PercentileCriterion:
    """Lower-tail population quantile, minimised over trough times, minus target."""

    @staticmethod
    def quantiles(values: np.ndarray, fraction: float) -> np.ndarray:
        """Per-column quantile with linear interpolation (Hyndman-Fan type 7)."""
        return np.quantile(np.asarray(values, dtype=float), fraction, axis=0, method='linear')

    @classmethod
    def evaluate(cls,
                 values_at_troughs: np.ndarray,
                 lower_tail_fraction: float,
                 target: float) -> float:
        """Criterion from a (n_individuals, n_troughs) response array.

        Returns ``min_t quantile_q(values[:, t]) - target``.
        """
        if not 0.0 <= lower_tail_fraction <= 1.0:
            raise InvalidArgument(f"Quantile fraction must be in [0, 1], got {lower_tail_fraction}")
        values = np.atleast_2d(np.asarray(values_at_troughs, dtype=float))
        if values.size == 0:
            raise InvalidArgument("No trough values to evaluate")
        return float(np.min(cls.quantiles(values, lower_tail_fraction)) - target)

    @classmethod
    def from_trace(cls,
                   trace: PopulationTrace,
                   selector: ResponseSelector,
                   population: PopulationSample,
                   lower_tail_fraction: float,
                   target: float,
                   pd_config: Optional[PharmacodynamicConfig] = None) -> float:
        """Criterion from a trace whose output times are the trough times."""
        response = selector.resolve(pd_config)(trace, population)
        return cls.evaluate(response, lower_tail_fraction, target)


@dataclass(frozen=True)
class DosingProblem:
    """Everything needed to evaluate a candidate regimen.

    Passed explicitly to the objectives instead of being captured by closures.
    """
    population: PopulationSample
    dosing_interval: float
    coverage_duration: float
    target: float
    selector: ResponseSelector = ResponseSelector.CONCENTRATION
    lower_tail_fraction: float = 0.10
    pd_config: PharmacodynamicConfig = field(default_factory=PharmacodynamicConfig)
    model: TwoCompartmentModel = field(default_factory=TwoCompartmentModel)

    def __post_init__(self):
        if len(self.population) < 1:
            raise InvalidArgument("Dosing problem needs at least one individual")
        if self.dosing_interval <= 0:
            raise InvalidArgument(f"Dosing interval must be positive, got {self.dosing_interval}")
        if self.coverage_duration <= 0:
            raise InvalidArgument(f"Coverage duration must be positive, got {self.coverage_duration}")
        if not 0.0 < self.lower_tail_fraction < 1.0:
            raise InvalidArgument(f"Lower tail fraction must be in (0, 1), got {self.lower_tail_fraction}")

    @property
    def number_of_doses(self) -> int:
        """Doses needed so that every interval of the coverage period starts with one."""
        return max(1, math.ceil(self.coverage_duration / self.dosing_interval - 1e-9))

    @property
    def additional_doses(self) -> int:
        return self.number_of_doses - 1

    def schedule(self, repeated_dose: float, loading_dose: float = 0.0) -> DosingSchedule:
        return DosingSchedule.repeated(repeated_dose, self.dosing_interval,
                                       self.additional_doses, loading_dose)

    def trough_times(self) -> np.ndarray:
        return self.schedule(0.0).trough_times(self.coverage_duration)

    def response(self, schedule: DosingSchedule, output_times, pre_dose: bool = False) -> np.ndarray:
        """Selected response (concentration or efficacy), shape (n, n_times)."""
        trace = self.model.simulate_population(schedule, self.population, output_times, pre_dose=pre_dose)
        return self.selector.resolve(self.pd_config)(trace, self.population)

    def criterion(self, repeated_dose: float, loading_dose: float = 0.0) -> float:
        """Lower-tail trough quantile minus target for a candidate regimen."""
        schedule = self.schedule(repeated_dose, loading_dose)
        values = self.response(schedule, self.trough_times(), pre_dose=True)
        value = PercentileCriterion.evaluate(values, self.lower_tail_fraction, self.target)
        logger.debug(f"criterion(repeated={repeated_dose:.4f}, loading={loading_dose:.4f}) = {value:.6g}")
        return value

    def single_dose_objective(self, dose: float) -> float:
        return self.criterion(dose, 0.0)

    def total_mass(self, repeated_dose: float, loading_dose: float, repeated_weight: float = 1.0) -> float:
        """Weighted administered mass k*repeated*n_doses + loading."""
        return repeated_weight * repeated_dose * self.number_of_doses + loading_dose
