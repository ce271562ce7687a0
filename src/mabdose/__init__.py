"""
mabdose - Population Dose Selection for Long-Acting Antibodies
Simulation and optimization engine for antibody dosing regimens.
"""

__version__ = "1.0.0"

from . import pkpd
from . import optimization
from . import utils
from .config import EngineConfig, load_population_spec
from .exceptions import (
    MabDoseError, InvalidArgument, NumericalInstability,
    DomainError, NoRootFound, OptimizationFailed
)
from .regimen_service import DosingRequest, DosingResponse, recommend_regimen

__all__ = [
    "pkpd",
    "optimization",
    "utils",
    "EngineConfig", "load_population_spec",
    "MabDoseError", "InvalidArgument", "NumericalInstability",
    "DomainError", "NoRootFound", "OptimizationFailed",
    "DosingRequest", "DosingResponse", "recommend_regimen"
]
