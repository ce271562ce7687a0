"""Dose selection: percentile criterion, root finding, loading-dose optimization."""

from .criteria import PercentileCriterion, ResponseSelector, DosingProblem
from .dosing_optimizer import (
    DoseRootFinder, LoadingDoseOptimizer, RootFinderResult, LoadingDoseResult,
    logistic, inverse_logistic
)
from .response_surface import evaluate_response_surface

__all__ = [
    'PercentileCriterion', 'ResponseSelector', 'DosingProblem',
    'DoseRootFinder', 'LoadingDoseOptimizer', 'RootFinderResult', 'LoadingDoseResult',
    'logistic', 'inverse_logistic',
    'evaluate_response_surface'
]
