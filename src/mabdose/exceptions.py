"""
Typed errors raised by the dosing engine.

Every error carries enough context (brackets, endpoint values, iteration
counts, last objective value) for a caller to explain the failure.
"""

from typing import Any, Optional, Tuple


class MabDoseError(Exception):
    """Base class for all engine errors."""


class InvalidArgument(MabDoseError, ValueError):
    """Malformed input: population size, bounds, variability, request fields."""


class NumericalInstability(MabDoseError):
    """Simulated concentration was negative or non-finite."""

    def __init__(self, message: str, individual_ids: Tuple[int, ...] = ()):
        super().__init__(message)
        self.individual_ids = tuple(individual_ids)


class DomainError(MabDoseError, ArithmeticError):
    """Logarithm of a non-positive quantity in the pharmacodynamic transform."""


class NoRootFound(MabDoseError):
    """The dose bracket does not contain a sign change of the objective."""

    def __init__(self, bracket: Tuple[float, float], values: Tuple[float, float]):
        self.bracket = (float(bracket[0]), float(bracket[1]))
        self.values = (float(values[0]), float(values[1]))
        super().__init__(
            f"Objective does not change sign on dose bracket "
            f"[{self.bracket[0]:g}, {self.bracket[1]:g}]: "
            f"f(lower)={self.values[0]:.6g}, f(upper)={self.values[1]:.6g}"
        )


class OptimizationFailed(MabDoseError):
    """Iteration or wall-clock budget exhausted without convergence.

    ``result`` is the best iterate found, so callers can still inspect it.
    """

    def __init__(self, message: str, result: Optional[Any] = None):
        super().__init__(message)
        self.result = result
        diagnostics = getattr(result, 'diagnostics', None) or {}
        self.iterations = diagnostics.get('iterations')
        self.last_objective = diagnostics.get('objective_value')
        self.bounds = diagnostics.get('bounds')
        self.criterion_value = getattr(result, 'criterion_value', None)
