"""
Virtual population generation with log-normal inter-individual variability.
"""

import numpy as np
import pandas as pd
from typing import Dict, Optional, Any, Union
import logging
from dataclasses import dataclass, field, fields, replace
from functools import cached_property

from ..exceptions import InvalidArgument

# Canonical draw order; changing it changes every seeded population
PARAMETER_NAMES = ('cl', 'v1', 'q', 'v2', 'ic50', 'max_effect', 'slope', 'half_max_titer')


@dataclass(frozen=True)
class PopulationParameterSet:
    """PK/PD parameters of one virtual individual."""
    individual_id: int
    cl: float              # Clearance (L/day)
    v1: float              # Central volume (L)
    q: float               # Inter-compartmental clearance (L/day)
    v2: float              # Peripheral volume (L)
    ic50: float            # In-vitro inhibitory concentration proxy
    max_effect: float      # Maximum efficacy (fraction)
    slope: float           # Sigmoid slope on log10 titer
    half_max_titer: float  # Titer giving half-maximal efficacy


class PopulationSample(tuple):
    """Immutable collection of PopulationParameterSet records."""

    @cached_property
    def _columns(self) -> Dict[str, np.ndarray]:
        columns = {name: np.array([getattr(p, name) for p in self], dtype=float)
                   for name in PARAMETER_NAMES}
        columns['individual_id'] = np.array([p.individual_id for p in self], dtype=int)
        for values in columns.values():
            values.setflags(write=False)
        return columns

    def to_arrays(self) -> Dict[str, np.ndarray]:
        """Column view as read-only numpy arrays, one entry per parameter."""
        return dict(self._columns)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([p.__dict__ for p in self]).set_index('individual_id')

    def summarize(self) -> Dict[str, Dict[str, float]]:
        """Summarize individual parameter distributions."""
        summary = {}
        arrays = self.to_arrays()
        for param in PARAMETER_NAMES:
            values = arrays[param]
            summary[param] = {
                'mean': float(np.mean(values)),
                'median': float(np.median(values)),
                'cv_percent': float(np.std(values) / np.mean(values) * 100),
                'min': float(np.min(values)),
                'max': float(np.max(values))
            }
        return summary


@dataclass
class PopulationSpec:
    """Population typical values and log-scale variability terms.

    ``variability`` maps a parameter name to the standard deviation of its
    log-normal random effect (omega). Parameters not listed do not vary.
    """
    typical_values: Dict[str, float]
    variability: Dict[str, float] = field(default_factory=dict)
    n_individuals: int = 50
    seed: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PopulationSpec':
        allowed = {f.name for f in fields(cls)}
        unknown = set(data) - allowed
        if unknown:
            raise InvalidArgument(f"Unknown population spec key(s): {sorted(unknown)}")
        if 'typical_values' not in data:
            raise InvalidArgument("Population spec requires 'typical_values'")
        return cls(
            typical_values={k: float(v) for k, v in data['typical_values'].items()},
            variability={k: float(v) for k, v in (data.get('variability') or {}).items()},
            n_individuals=int(data.get('n_individuals', 50)),
            seed=data.get('seed')
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'typical_values': dict(self.typical_values),
            'variability': dict(self.variability),
            'n_individuals': self.n_individuals,
            'seed': self.seed
        }

    def with_overrides(self, **typical_values: float) -> 'PopulationSpec':
        """Copy with some typical values replaced."""
        updated = dict(self.typical_values)
        updated.update({k: float(v) for k, v in typical_values.items() if v is not None})
        return replace(self, typical_values=updated)

    def sample(self, rng: Optional[Union[int, np.random.Generator]] = None) -> PopulationSample:
        """Draw the population; ``rng`` falls back to the spec's own seed."""
        return PopulationSampler().generate(
            self.n_individuals,
            self.typical_values,
            self.variability,
            self.seed if rng is None else rng
        )


class PopulationSampler:
    """Draws individual parameter sets around population typical values."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def generate(self,
                 n: int,
                 typical: Dict[str, float],
                 variability: Dict[str, float],
                 seed: Optional[Union[int, np.random.Generator]] = None) -> PopulationSample:
        """Generate ``n`` individuals.

        Each variable parameter is ``typical * exp(N(0, omega))``, drawn
        independently per parameter.

        Args:
            n: Number of individuals
            typical: Typical value for every name in PARAMETER_NAMES
            variability: Omega (SD of log random effect) per varying parameter
            seed: Integer seed or an existing Generator owned by the caller

        Returns:
            PopulationSample of n immutable records
        """
        self._validate(n, typical, variability)

        if isinstance(seed, np.random.Generator):
            rng = seed
        else:
            rng = np.random.default_rng(seed)

        columns = {}
        for param in PARAMETER_NAMES:
            tv = float(typical[param])
            omega = float(variability.get(param, 0.0))
            if omega > 0.0:
                eta = rng.normal(loc=0.0, scale=omega, size=n)
                columns[param] = tv * np.exp(eta)
            else:
                columns[param] = np.full(n, tv)

        population = PopulationSample(
            PopulationParameterSet(
                individual_id=i + 1,
                **{param: float(columns[param][i]) for param in PARAMETER_NAMES}
            )
            for i in range(n)
        )

        self.logger.debug(f"Generated population of {n} individuals "
                          f"(varying: {sorted(k for k, v in variability.items() if v > 0)})")
        return population

    def _validate(self, n: int, typical: Dict[str, float], variability: Dict[str, float]):
        if int(n) != n or n < 1:
            raise InvalidArgument(f"Population size must be a positive integer, got {n}")

        missing = [p for p in PARAMETER_NAMES if p not in typical]
        if missing:
            raise InvalidArgument(f"Missing typical values: {missing}")

        unknown = (set(typical) | set(variability)) - set(PARAMETER_NAMES)
        if unknown:
            raise InvalidArgument(f"Unknown population parameter(s): {sorted(unknown)}")

        for param in PARAMETER_NAMES:
            value = typical[param]
            if not np.isfinite(value) or value <= 0:
                raise InvalidArgument(f"Typical value for {param} must be positive, got {value}")

        for param, omega in variability.items():
            if not np.isfinite(omega) or omega < 0:
                raise InvalidArgument(f"Variability term for {param} must be non-negative, got {omega}")
