"""
Configuration management for the dosing engine.

Groups the numerical knobs of the engine (PD constants, solver tolerances,
optimizer budget, criterion defaults) into dataclasses that can be saved to
and loaded from JSON or YAML files.
"""

from dataclasses import dataclass, field, asdict, fields
from typing import Dict, Any, Optional, Tuple
import logging
import json
from pathlib import Path

import numpy as np
import yaml

from .exceptions import InvalidArgument

logger = logging.getLogger(__name__)

# Empirical normalisation from the reference neutralizing-titer dataset
TITER_SCALING_CONSTANT = 347.6

# Smallest positive normal double; zero concentrations are raised to this before log10
CONCENTRATION_FLOOR = float(np.finfo(float).tiny)


@dataclass
class PharmacodynamicConfig:
    """Constants of the concentration -> titer -> efficacy transform"""
    titer_scaling_constant: float = TITER_SCALING_CONSTANT
    concentration_floor: float = CONCENTRATION_FLOOR


@dataclass
class SolverConfig:
    """Single-dose root finding"""
    max_dose_mg: float = 10000.0               # Upper end of the dose bracket
    min_dose_mg: float = 0.0                   # Lower end of the dose bracket
    relative_tolerance: float = 1e-4           # brentq rtol on the dose
    absolute_tolerance: float = 1e-6           # brentq xtol on the dose (mg)
    max_iterations: int = 200


@dataclass
class OptimizerConfig:
    """Loading-dose optimization"""
    method: str = 'Nelder-Mead'
    penalty_weight: float = 1e4                # Weight on squared criterion deviation
    repeated_dose_weight: float = 1.0          # k in k*repeated*n_doses + loading
    repeated_dose_bounds: Tuple[float, float] = (0.0, 10000.0)
    loading_dose_bounds: Tuple[float, float] = (0.0, 10000.0)
    initial_step: float = 0.25                 # Initial simplex edge in logit space
    max_iterations: int = 4000
    max_wall_seconds: Optional[float] = 120.0
    x_tolerance: float = 1e-5
    f_tolerance: float = 1e-5
    constraint_tolerance: float = 1e-2         # Allowed shortfall of the criterion
    strict: bool = False                       # Raise OptimizationFailed instead of returning


@dataclass
class CriterionConfig:
    """Population percentile criterion"""
    lower_tail_fraction: float = 0.10
    curve_percentiles: Tuple[float, float, float] = (0.10, 0.50, 0.90)
    curve_step_days: float = 1.0


@dataclass
class EngineConfig:
    """Master configuration for the dosing engine"""
    pharmacodynamics: PharmacodynamicConfig = field(default_factory=PharmacodynamicConfig)
    solver: SolverConfig = field(default_factory=SolverConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    criterion: CriterionConfig = field(default_factory=CriterionConfig)

    _sections = {
        'pharmacodynamics': PharmacodynamicConfig,
        'solver': SolverConfig,
        'optimizer': OptimizerConfig,
        'criterion': CriterionConfig,
    }

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        return {name: asdict(getattr(self, name)) for name in self._sections}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EngineConfig':
        """Create configuration from dictionary, rejecting unknown keys"""
        unknown = set(data) - set(cls._sections)
        if unknown:
            raise InvalidArgument(f"Unknown configuration section(s): {sorted(unknown)}")

        sections = {}
        for name, section_cls in cls._sections.items():
            values = dict(data.get(name) or {})
            allowed = {f.name for f in fields(section_cls)}
            bad = set(values) - allowed
            if bad:
                raise InvalidArgument(f"Unknown configuration parameter(s) in {name}: {sorted(bad)}")
            # JSON/YAML give lists where the dataclass expects tuples
            for key, value in values.items():
                if isinstance(value, list):
                    values[key] = tuple(value)
            sections[name] = section_cls(**values)
        return cls(**sections)

    def save(self, filepath: str) -> None:
        """Save configuration to a JSON or YAML file (by suffix)"""
        path = Path(filepath)
        with open(path, 'w') as f:
            if path.suffix in ('.yaml', '.yml'):
                yaml.safe_dump(_listify(self.to_dict()), f, sort_keys=False)
            else:
                json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Configuration saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'EngineConfig':
        """Load configuration from a JSON or YAML file (by suffix)"""
        data = read_mapping(filepath)
        logger.info(f"Configuration loaded from {filepath}")
        return cls.from_dict(data)


def read_mapping(filepath: str) -> Dict[str, Any]:
    """Read a JSON or YAML mapping from disk."""
    path = Path(filepath)
    with open(path, 'r') as f:
        if path.suffix in ('.yaml', '.yml'):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidArgument(f"Expected a mapping at top level of {filepath}")
    return data


def load_population_spec(filepath: str):
    """Load a PopulationSpec from a JSON or YAML file."""
    from .pkpd.population_models import PopulationSpec

    spec = PopulationSpec.from_dict(read_mapping(filepath))
    logger.info(f"Population spec loaded from {filepath} "
                f"({spec.n_individuals} individuals, seed={spec.seed})")
    return spec


def _listify(obj):
    if isinstance(obj, dict):
        return {k: _listify(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_listify(v) for v in obj]
    return obj
