"""
Synchronous request/response API for dose recommendations.

An interactive front end builds a DosingRequest on user action, calls
recommend_regimen and renders the DosingResponse. No event handling lives
here.
"""

import datetime
import math
import uuid
import numpy as np
import pandas as pd
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, asdict
import logging

from .config import EngineConfig
from .exceptions import InvalidArgument, MabDoseError, OptimizationFailed
from .optimization.criteria import DosingProblem, ResponseSelector
from .optimization.dosing_optimizer import DoseRootFinder, LoadingDoseOptimizer
from .pkpd.compartment_models import TwoCompartmentModel
from .pkpd.population_models import PopulationSpec
from .utils.logging_system import DosingRunLogger, RunMetadata

logger = logging.getLogger(__name__)

# Wire (camelCase) key -> DosingRequest field
_REQUEST_KEYS = {
    'criterion': 'criterion',
    'ic90': 'ic90',
    'ic50': 'ic50',
    'targetEfficacy': 'target_efficacy',
    'loadingDoseEnabled': 'loading_dose_enabled',
    'coverageDurationDays': 'coverage_duration_days',
    'dosingIntervalDays': 'dosing_interval_days',
    'doseIncrementMg': 'dose_increment_mg',
    'initialDoseMg': 'initial_dose_mg',
    'initialLoadingDoseMg': 'initial_loading_dose_mg',
    'penaltyWeight': 'penalty_weight',
    'seed': 'seed',
}


@dataclass
class DosingRequest:
    """A dose recommendation request."""
    criterion: str
    coverage_duration_days: float
    dosing_interval_days: float
    dose_increment_mg: float
    ic90: Optional[float] = None
    ic50: Optional[float] = None
    target_efficacy: Optional[float] = None
    loading_dose_enabled: bool = False
    initial_dose_mg: float = 1000.0
    initial_loading_dose_mg: float = 200.0
    penalty_weight: Optional[float] = None
    seed: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DosingRequest':
        unknown = set(data) - set(_REQUEST_KEYS)
        if unknown:
            raise InvalidArgument(f"Unknown request field(s): {sorted(unknown)}")
        kwargs = {_REQUEST_KEYS[k]: v for k, v in data.items()}
        missing = [k for k in ('criterion', 'coverageDurationDays', 'dosingIntervalDays', 'doseIncrementMg')
                   if k not in data]
        if missing:
            raise InvalidArgument(f"Missing request field(s): {missing}")
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        values = asdict(self)
        return {wire: values[name] for wire, name in _REQUEST_KEYS.items()}

    @property
    def selector(self) -> ResponseSelector:
        return ResponseSelector.parse(self.criterion)

    @property
    def target(self) -> float:
        """Criterion target: IC90 concentration for PK, efficacy percent for PD."""
        if self.selector is ResponseSelector.CONCENTRATION:
            if self.ic90 is None:
                raise InvalidArgument("PK criterion requires ic90")
            if self.ic90 <= 0:
                raise InvalidArgument(f"ic90 must be positive, got {self.ic90}")
            return float(self.ic90)
        if self.target_efficacy is None:
            raise InvalidArgument("PD criterion requires targetEfficacy")
        if not 0 < self.target_efficacy < 100:
            raise InvalidArgument(f"targetEfficacy must be in (0, 100), got {self.target_efficacy}")
        return float(self.target_efficacy)

    def validate(self) -> float:
        """Check the request and return its criterion target."""
        if self.coverage_duration_days <= 0:
            raise InvalidArgument("coverageDurationDays must be positive")
        if self.dosing_interval_days <= 0:
            raise InvalidArgument("dosingIntervalDays must be positive")
        if self.dose_increment_mg <= 0:
            raise InvalidArgument("doseIncrementMg must be positive")
        if self.ic50 is not None and self.ic50 <= 0:
            raise InvalidArgument("ic50 must be positive")
        if self.loading_dose_enabled and (self.initial_dose_mg < 0 or self.initial_loading_dose_mg < 0):
            raise InvalidArgument("Initial doses must be non-negative")
        return self.target


@dataclass
class DosingResponse:
    """A dose recommendation."""
    recommended_dose: float
    recommended_loading_dose: float
    projected_curve: pd.DataFrame
    raw_dose: float
    raw_loading_dose: float
    converged: bool
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'recommendedDose': self.recommended_dose,
            'recommendedLoadingDose': self.recommended_loading_dose,
            'projectedCurve': self.projected_curve[['time_days', 'p10', 'p50', 'p90']].values.tolist(),
            'rawDose': self.raw_dose,
            'rawLoadingDose': self.raw_loading_dose,
            'converged': self.converged,
            'diagnostics': self.diagnostics,
        }


def round_up_to_increment(raw_dose: float, increment: float) -> float:
    """ceil(raw / increment) * increment, without bumping exact multiples.

    Only division round-off (a few ulps above an integer step count) is
    absorbed; any real excess over a multiple moves up to the next one.
    """
    if increment <= 0:
        raise InvalidArgument(f"Dose increment must be positive, got {increment}")
    steps = raw_dose / increment
    return float(math.ceil(steps - 1e-12 * max(1.0, abs(steps))) * increment)


def build_problem(request: DosingRequest,
                  population_spec: PopulationSpec,
                  config: EngineConfig) -> DosingProblem:
    """Sample the population with a per-request generator and assemble the problem."""
    spec = population_spec.with_overrides(ic50=request.ic50)
    seed = request.seed if request.seed is not None else spec.seed
    population = spec.sample(np.random.default_rng(seed))
    if logger.isEnabledFor(logging.DEBUG):
        for param, stats in population.summarize().items():
            logger.debug(f"{param}: mean={stats['mean']:.4g}, CV={stats['cv_percent']:.1f}%")

    return DosingProblem(
        population=population,
        dosing_interval=float(request.dosing_interval_days),
        coverage_duration=float(request.coverage_duration_days),
        target=request.target,
        selector=request.selector,
        lower_tail_fraction=config.criterion.lower_tail_fraction,
        pd_config=config.pharmacodynamics,
        model=TwoCompartmentModel()
    )


def projected_curve(problem: DosingProblem,
                    repeated_dose: float,
                    loading_dose: float,
                    config: EngineConfig) -> pd.DataFrame:
    """Population percentiles of the selected response on a regular time grid."""
    step = config.criterion.curve_step_days
    times = np.arange(0.0, problem.coverage_duration + step / 2, step)
    values = problem.response(problem.schedule(repeated_dose, loading_dose), times)
    low, mid, high = (np.quantile(values, p, axis=0, method='linear')
                      for p in config.criterion.curve_percentiles)
    return pd.DataFrame({'time_days': times, 'p10': low, 'p50': mid, 'p90': high})


def recommend_regimen(request: DosingRequest,
                      population_spec: PopulationSpec,
                      config: Optional[EngineConfig] = None,
                      run_logger: Optional[DosingRunLogger] = None) -> DosingResponse:
    """Recommend a repeated dose (and loading dose when enabled).

    Raises the engine's typed errors after logging them.
    """
    config = config or EngineConfig()
    stage = 'validation'

    try:
        request.validate()
        if run_logger is not None:
            run_logger.log_run_start(RunMetadata(
                run_id=uuid.uuid4().hex[:12],
                criterion=request.selector.value,
                timestamp=datetime.datetime.now().isoformat(),
                request=request.to_dict(),
                population=population_spec.to_dict(),
                config=config.to_dict()
            ))

        stage = 'population'
        problem = build_problem(request, population_spec, config)

        if request.loading_dose_enabled:
            stage = 'loading_dose_optimization'
            optimizer = LoadingDoseOptimizer(config.optimizer)
            callback = None
            if run_logger is not None:
                def callback(iteration, objective, doses):
                    run_logger.log_iteration('loading_dose', iteration, objective, doses)
            result = optimizer.optimize(
                problem,
                (request.initial_dose_mg, request.initial_loading_dose_mg),
                penalty_weight=request.penalty_weight,
                callback=callback
            )
            if not result.diagnostics['constraint_satisfied']:
                raise OptimizationFailed(
                    f"No regimen within dose bounds {result.diagnostics['bounds']} reaches the "
                    f"target: criterion {result.criterion_value:.6g} at repeated="
                    f"{result.repeated_dose:.2f} mg, loading={result.loading_dose:.2f} mg",
                    result=result
                )
            raw_dose, raw_loading = result.repeated_dose, result.loading_dose
            converged = result.converged
            diagnostics = dict(result.diagnostics, criterion_value=result.criterion_value,
                               total_mass=result.total_mass)
        else:
            stage = 'root_finding'
            finder = DoseRootFinder(config.solver)
            root = finder.solve(problem.single_dose_objective)
            raw_dose, raw_loading = root.dose, 0.0
            converged = root.converged
            diagnostics = {
                'iterations': root.iterations,
                'function_calls': root.function_calls,
                'objective_value': root.objective_value,
                'bracket': list(root.bracket)
            }

        if run_logger is not None:
            run_logger.log_convergence(stage, converged, diagnostics)

        stage = 'projection'
        dose = round_up_to_increment(raw_dose, request.dose_increment_mg)
        loading = round_up_to_increment(raw_loading, request.dose_increment_mg)
        curve = projected_curve(problem, dose, loading, config)

    except MabDoseError as e:
        if run_logger is not None:
            run_logger.log_error(stage, e, {'request': request.to_dict()})
        logger.error(f"Dose recommendation failed during {stage}: {e}")
        raise

    response = DosingResponse(
        recommended_dose=dose,
        recommended_loading_dose=loading,
        projected_curve=curve,
        raw_dose=float(raw_dose),
        raw_loading_dose=float(raw_loading),
        converged=bool(converged),
        diagnostics=diagnostics
    )

    logger.info(f"Recommended {dose:g} mg every {request.dosing_interval_days:g} days"
                + (f" with a {loading:g} mg loading dose" if request.loading_dose_enabled else ""))
    if run_logger is not None:
        run_logger.log_dosing_results(response.to_dict())
        run_logger.export_results(curve)

    return response
