"""
Grid evaluation of the percentile criterion over (repeated dose, loading dose).
"""

import numpy as np
import pandas as pd
from concurrent.futures import ProcessPoolExecutor, as_completed
from itertools import product
from typing import Dict, Sequence, Optional, Any
import logging

from ..exceptions import InvalidArgument
from .criteria import DosingProblem

logger = logging.getLogger(__name__)


def _evaluate_grid_point(problem: DosingProblem,
                         repeated_dose: float,
                         loading_dose: float,
                         repeated_weight: float) -> Dict[str, Any]:
    """Worker: criterion and mass for one dose pair."""
    criterion = problem.criterion(repeated_dose, loading_dose)
    return {
        'repeated_dose': float(repeated_dose),
        'loading_dose': float(loading_dose),
        'criterion': criterion,
        'total_mass': problem.total_mass(repeated_dose, loading_dose, repeated_weight),
        'feasible': criterion >= 0.0
    }


def evaluate_response_surface(problem: DosingProblem,
                              repeated_doses: Sequence[float],
                              loading_doses: Sequence[float],
                              max_workers: Optional[int] = None,
                              repeated_weight: float = 1.0) -> pd.DataFrame:
    """Evaluate the criterion on every (repeated, loading) grid point.

    Grid points are independent tasks; all are joined before the frame is
    built, so the row order is the grid order regardless of completion order.

    Args:
        problem: Dosing problem shared read-only by all tasks
        repeated_doses: Repeated-dose grid (mg)
        loading_doses: Loading-dose grid (mg)
        max_workers: Process count; 1 evaluates serially in-process
        repeated_weight: k in the administered-mass formula

    Returns:
        DataFrame with repeated_dose, loading_dose, criterion, total_mass, feasible
    """
    grid = list(product(np.asarray(repeated_doses, dtype=float),
                        np.asarray(loading_doses, dtype=float)))
    if not grid:
        raise InvalidArgument("Response surface grid is empty")
    if any(r < 0 or l < 0 for r, l in grid):
        raise InvalidArgument("Grid doses must be non-negative")

    logger.info(f"Evaluating response surface on {len(grid)} grid points "
                f"(max_workers={max_workers})")

    if max_workers == 1:
        rows = [_evaluate_grid_point(problem, r, l, repeated_weight) for r, l in grid]
    else:
        rows = [None] * len(grid)
        with ProcessPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(_evaluate_grid_point, problem, r, l, repeated_weight): index
                for index, (r, l) in enumerate(grid)
            }
            for future in as_completed(futures):
                rows[futures[future]] = future.result()

    return pd.DataFrame(rows, columns=['repeated_dose', 'loading_dose', 'criterion',
                                       'total_mass', 'feasible'])
