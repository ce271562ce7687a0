"""
Dosing optimization algorithms: single-dose root finding and joint
repeated/loading dose selection.
"""

import time
import numpy as np
from scipy.optimize import brentq, minimize, approx_fprime
from typing import Dict, Tuple, Callable, Optional, Any
import logging
from dataclasses import dataclass, field

from ..config import SolverConfig, OptimizerConfig
from ..exceptions import InvalidArgument, NoRootFound, OptimizationFailed
from .criteria import DosingProblem


def logistic(u, lower: float, upper: float):
    """Map an unconstrained value onto (lower, upper)."""
    return lower + (upper - lower) / (1.0 + np.exp(-np.asarray(u, dtype=float)))


def inverse_logistic(x, lower: float, upper: float):
    """Inverse of :func:`logistic`; x must lie strictly inside (lower, upper)."""
    x = np.asarray(x, dtype=float)
    if np.any(x <= lower) or np.any(x >= upper):
        raise InvalidArgument(f"Value {x} is not strictly inside ({lower}, {upper})")
    fraction = (x - lower) / (upper - lower)
    return np.log(fraction) - np.log1p(-fraction)


@dataclass
class RootFinderResult:
    """Single-dose root finding result."""
    dose: float
    objective_value: float
    iterations: int
    function_calls: int
    converged: bool
    bracket: Tuple[float, float]


@dataclass
class LoadingDoseResult:
    """Joint repeated/loading dose optimization result."""
    repeated_dose: float
    loading_dose: float
    converged: bool
    total_mass: float
    criterion_value: float
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    def raise_for_status(self) -> 'LoadingDoseResult':
        if not self.converged:
            raise OptimizationFailed(
                f"Loading-dose optimization did not converge after "
                f"{self.diagnostics.get('iterations')} iterations: {self.diagnostics.get('message')}",
                result=self
            )
        return self


class DoseRootFinder:
    """Finds the dose at which a monotone objective crosses zero."""

    def __init__(self, config: SolverConfig = None):
        """Initialize root finder.

        Args:
            config: Bracket and tolerance configuration
        """
        self.config = config or SolverConfig()
        self.logger = logging.getLogger(__name__)

    def solve(self,
              objective: Callable[[float], float],
              search_interval: Optional[Tuple[float, float]] = None,
              rtol: Optional[float] = None) -> RootFinderResult:
        """Bracketed root search with Brent's method.

        The objective must increase with dose, so a reachable target gives a
        negative value at the lower end and a positive value at the upper end.

        Args:
            objective: Signed criterion as a function of dose
            search_interval: (lower, upper) dose bracket in mg
            rtol: Relative tolerance on the returned dose

        Returns:
            RootFinderResult

        Raises:
            NoRootFound: the objective has the same sign at both ends
        """
        lower, upper = search_interval or (self.config.min_dose_mg, self.config.max_dose_mg)
        rtol = self.config.relative_tolerance if rtol is None else rtol
        if lower < 0 or upper <= lower:
            raise InvalidArgument(f"Invalid dose bracket [{lower}, {upper}]")

        f_lower = float(objective(lower))
        f_upper = float(objective(upper))
        self.logger.info(f"Dose bracket [{lower:g}, {upper:g}] mg: "
                         f"f(lower)={f_lower:.6g}, f(upper)={f_upper:.6g}")

        if f_lower == 0.0:
            return RootFinderResult(lower, 0.0, 0, 2, True, (lower, upper))
        if f_upper == 0.0:
            return RootFinderResult(upper, 0.0, 0, 2, True, (lower, upper))
        if np.sign(f_lower) == np.sign(f_upper):
            self.logger.warning(f"No sign change on [{lower:g}, {upper:g}]; target unreachable")
            raise NoRootFound((lower, upper), (f_lower, f_upper))

        dose, info = brentq(
            objective, lower, upper,
            xtol=self.config.absolute_tolerance,
            rtol=rtol,
            maxiter=self.config.max_iterations,
            full_output=True,
            disp=False
        )
        value = float(objective(dose))

        if not info.converged:
            self.logger.warning(f"brentq stopped without converging: {info.flag}")

        self.logger.info(f"Root found at dose {dose:.4f} mg after {info.iterations} iterations "
                         f"(objective {value:.3g})")
        return RootFinderResult(
            dose=float(dose),
            objective_value=value,
            iterations=int(info.iterations),
            function_calls=int(info.function_calls) + 3,
            converged=bool(info.converged),
            bracket=(lower, upper)
        )


class _BudgetExhausted(Exception):
    pass


class LoadingDoseOptimizer:
    """Minimises administered mass subject to a soft percentile constraint.

    Both doses are optimised in logit space so any unconstrained scipy method
    returns doses inside their bounds.
    """

    def __init__(self, config: OptimizerConfig = None, clock: Callable[[], float] = time.monotonic):
        """Initialize loading-dose optimizer.

        Args:
            config: Method, bounds, penalty and budget configuration
            clock: Monotonic clock used for the wall-clock budget
        """
        self.config = config or OptimizerConfig()
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def penalized_objective(self,
                            doses: Tuple[float, float],
                            problem: DosingProblem,
                            penalty_weight: float) -> float:
        """k*repeated*n_doses + loading + penalty_weight * criterion**2"""
        repeated, loading = doses
        criterion = problem.criterion(repeated, loading)
        mass = problem.total_mass(repeated, loading, self.config.repeated_dose_weight)
        return mass + penalty_weight * criterion ** 2

    def optimize(self,
                 problem: DosingProblem,
                 initial_guess: Tuple[float, float],
                 bounds: Optional[Tuple[Tuple[float, float], Tuple[float, float]]] = None,
                 penalty_weight: Optional[float] = None,
                 max_iterations: Optional[int] = None,
                 max_wall_seconds: Optional[float] = None,
                 callback: Optional[Callable[[int, float, Tuple[float, float]], None]] = None) -> LoadingDoseResult:
        """Optimize (repeated_dose, loading_dose).

        Args:
            problem: Population, schedule and criterion definition
            initial_guess: (repeated_dose, loading_dose) starting point in mg
            bounds: ((repeated_lo, repeated_hi), (loading_lo, loading_hi))
            penalty_weight: Weight on the squared criterion deviation
            max_iterations: Iteration budget; None uses config.max_iterations
            max_wall_seconds: Wall-clock budget; None uses config.max_wall_seconds,
                and a config value of None disables the budget
            callback: Called as callback(iteration, objective, (repeated, loading))

        Returns:
            LoadingDoseResult; converged is False when the budget ran out or
            the best iterate misses the percentile constraint

        Raises:
            OptimizationFailed: only when config.strict is set and the run did not converge
        """
        bounds = bounds or (self.config.repeated_dose_bounds, self.config.loading_dose_bounds)
        penalty_weight = self.config.penalty_weight if penalty_weight is None else penalty_weight
        max_iterations = self.config.max_iterations if max_iterations is None else max_iterations
        max_wall_seconds = self.config.max_wall_seconds if max_wall_seconds is None else max_wall_seconds
        self._validate(bounds, penalty_weight, max_iterations)

        u0 = np.array([
            inverse_logistic(self._nudge_inside(x, lo, hi, name), lo, hi)
            for x, (lo, hi), name in zip(initial_guess, bounds, ('repeated', 'loading'))
        ])

        def to_doses(u):
            return tuple(float(logistic(ui, lo, hi)) for ui, (lo, hi) in zip(u, bounds))

        state = {'best_u': u0.copy(), 'best_f': np.inf, 'nfev': 0, 'nit': 0}
        deadline = None if max_wall_seconds is None else self.clock() + max_wall_seconds

        def objective(u):
            if deadline is not None and self.clock() > deadline:
                raise _BudgetExhausted()
            value = self.penalized_objective(to_doses(u), problem, penalty_weight)
            state['nfev'] += 1
            if value < state['best_f']:
                state['best_f'] = value
                state['best_u'] = np.array(u, dtype=float)
            return value

        def on_iteration(*args):
            state['nit'] += 1
            if callback is not None:
                callback(state['nit'], state['best_f'], to_doses(state['best_u']))

        self.logger.info(f"Loading-dose optimization ({self.config.method}) from "
                         f"repeated={initial_guess[0]:g} mg, loading={initial_guess[1]:g} mg, "
                         f"penalty weight {penalty_weight:g}")

        start = self.clock()
        message = None
        success = False
        try:
            result = minimize(objective, u0, method=self.config.method,
                              callback=on_iteration,
                              options=self._method_options(u0, max_iterations))
            success = bool(result.success)
            message = str(result.message)
            if hasattr(result, 'nit'):
                state['nit'] = int(result.nit)
        except _BudgetExhausted:
            message = f"Wall-clock budget of {max_wall_seconds:g} s exhausted"

        elapsed = self.clock() - start
        best_u = state['best_u']
        repeated, loading = to_doses(best_u)
        criterion = problem.criterion(repeated, loading)
        mass = problem.total_mass(repeated, loading, self.config.repeated_dose_weight)

        constraint_satisfied = bool(criterion >= -self.config.constraint_tolerance)
        if not constraint_satisfied:
            # A minimum of the penalised objective that misses the target is not a regimen
            success = False
            message = (f"Percentile constraint not met within bounds {bounds}: "
                       f"criterion {criterion:.6g} below tolerance -{self.config.constraint_tolerance:g} "
                       f"({message})")

        diagnostics = {
            'method': self.config.method,
            'iterations': state['nit'],
            'function_evaluations': state['nfev'],
            'objective_value': float(state['best_f']),
            'gradient_norm': self._gradient_norm(best_u, to_doses, problem, penalty_weight),
            'penalty_weight': float(penalty_weight),
            'constraint_satisfied': constraint_satisfied,
            'bounds': [list(b) for b in bounds],
            'elapsed_seconds': elapsed,
            'message': message
        }

        outcome = LoadingDoseResult(
            repeated_dose=repeated,
            loading_dose=loading,
            converged=success,
            total_mass=float(mass),
            criterion_value=float(criterion),
            diagnostics=diagnostics
        )

        if success:
            self.logger.info(f"Converged after {state['nit']} iterations: repeated={repeated:.2f} mg, "
                             f"loading={loading:.2f} mg, criterion={criterion:.4g}")
        else:
            self.logger.warning(f"Optimization did not converge ({message}); returning best iterate "
                                f"repeated={repeated:.2f} mg, loading={loading:.2f} mg")
            if self.config.strict:
                outcome.raise_for_status()

        return outcome

    def _method_options(self, u0: np.ndarray, max_iterations: int) -> Dict[str, Any]:
        method = self.config.method.lower()
        if method == 'nelder-mead':
            simplex = np.vstack([u0, u0 + np.diag(np.full(len(u0), self.config.initial_step))])
            return {
                'maxiter': max_iterations,
                'maxfev': 4 * max_iterations,
                'xatol': self.config.x_tolerance,
                'fatol': self.config.f_tolerance,
                'initial_simplex': simplex
            }
        if method == 'powell':
            return {'maxiter': max_iterations, 'xtol': self.config.x_tolerance,
                    'ftol': self.config.f_tolerance}
        return {'maxiter': max_iterations}

    def _gradient_norm(self, u, to_doses, problem, penalty_weight) -> float:
        """Finite-difference gradient norm in logit space at the returned point."""
        def f(v):
            return self.penalized_objective(to_doses(v), problem, penalty_weight)
        gradient = approx_fprime(np.asarray(u, dtype=float), f, 1e-7)
        return float(np.linalg.norm(gradient))

    def _nudge_inside(self, x: float, lower: float, upper: float, name: str) -> float:
        margin = 1e-6 * (upper - lower)
        if x <= lower or x >= upper:
            nudged = float(np.clip(x, lower + margin, upper - margin))
            self.logger.warning(f"Initial {name} dose {x:g} mg is not inside ({lower:g}, {upper:g}); "
                                f"starting from {nudged:g} mg")
            return nudged
        return float(x)

    def _validate(self, bounds, penalty_weight, max_iterations):
        if len(bounds) != 2:
            raise InvalidArgument("Bounds must be given for repeated and loading dose")
        for lo, hi in bounds:
            if lo < 0 or hi <= lo or not np.isfinite(hi):
                raise InvalidArgument(f"Invalid dose bounds ({lo}, {hi})")
        if penalty_weight < 0 or not np.isfinite(penalty_weight):
            raise InvalidArgument(f"Penalty weight must be non-negative, got {penalty_weight}")
        if max_iterations < 1:
            raise InvalidArgument(f"Iteration budget must be positive, got {max_iterations}")
