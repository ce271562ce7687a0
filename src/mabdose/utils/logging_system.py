"""
Logging System for Dosing Regimen Runs

Provides structured logging, optimizer progress tracking and results export
for dose recommendation runs.
"""

import logging
import json
import datetime
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, asdict
import numpy as np
import pandas as pd
from pathlib import Path


@dataclass
class RunMetadata:
    """Metadata for a dose recommendation run"""
    run_id: str
    criterion: str
    timestamp: str
    request: Dict[str, Any]
    population: Dict[str, Any]
    config: Dict[str, Any]


class DosingRunLogger:
    """
    Logging system for dose recommendation runs

    Features:
    - Console and detailed file logging
    - JSON Lines event stream
    - Optimizer progress tracking
    - Results export (JSON summary, CSV projected curve)
    """

    def __init__(self, log_dir: str = "logs", run_name: str = None):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        if run_name is None:
            timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
            run_name = f"mabdose_{timestamp}"

        self.run_name = run_name
        self.run_dir = self.log_dir / run_name
        self.run_dir.mkdir(exist_ok=True)

        self.setup_logger()

        self.run_data = {}
        self.iteration_history: Dict[str, Dict[str, List]] = {}

    def setup_logger(self):
        """Setup structured logging with console and file handlers"""
        self.logger = logging.getLogger(f"mabdose.run.{self.run_name}")
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False

        self.close()

        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        self.logger.addHandler(console_handler)

        file_handler = logging.FileHandler(self.run_dir / f"{self.run_name}.log")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
        ))
        self.logger.addHandler(file_handler)

        self.json_log_path = self.run_dir / f"{self.run_name}_structured.jsonl"

    def close(self):
        """Detach and close all handlers"""
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)

    def log_run_start(self, metadata: RunMetadata):
        """Log run initialization"""
        self.logger.info(f"Starting run: {metadata.run_id}")
        self.logger.info(f"Criterion: {metadata.criterion}")

        self.run_data['metadata'] = asdict(metadata)

        self._log_structured_data({
            'event': 'run_start',
            'timestamp': metadata.timestamp,
            'metadata': asdict(metadata)
        })

    def log_iteration(self, solver: str, iteration: int,
                      objective: float, doses: tuple):
        """Log an optimizer iteration"""
        history = self.iteration_history.setdefault(solver, {
            'iterations': [], 'objectives': [], 'doses': []
        })
        history['iterations'].append(iteration)
        history['objectives'].append(objective)
        history['doses'].append(list(doses))

        if iteration % 50 == 0:
            self.logger.info(f"{solver} - Iteration {iteration}: objective = {objective:.6f}")

        self._log_structured_data({
            'event': 'iteration',
            'solver': solver,
            'iteration': iteration,
            'objective': objective,
            'doses': list(doses)
        })

    def log_convergence(self, solver: str, converged: bool,
                        diagnostics: Dict[str, Any]):
        """Log solver convergence information"""
        if converged:
            self.logger.info(f"{solver} - Converged after {diagnostics.get('iterations')} iterations")
        else:
            self.logger.warning(f"{solver} - Did not converge: {diagnostics.get('message')}")

        self._log_structured_data({
            'event': 'convergence',
            'solver': solver,
            'converged': converged,
            'diagnostics': diagnostics,
            'timestamp': datetime.datetime.now().isoformat()
        })

    def log_dosing_results(self, results: Dict[str, Any]):
        """Log the dose recommendation"""
        self.logger.info("Dosing Results:")
        self.logger.info(f"  Recommended dose: {results['recommendedDose']:.1f} mg")
        self.logger.info(f"  Recommended loading dose: {results['recommendedLoadingDose']:.1f} mg")
        self.logger.info(f"  Raw doses: {results['rawDose']:.3f} / {results['rawLoadingDose']:.3f} mg")

        self.run_data['results'] = {k: v for k, v in results.items() if k != 'projectedCurve'}

        self._log_structured_data({
            'event': 'dosing_results',
            'results': self.run_data['results'],
            'timestamp': datetime.datetime.now().isoformat()
        })

    def log_error(self, stage: str, error: Exception,
                  context: Dict[str, Any] = None):
        """Log errors with context"""
        self.logger.error(f"{stage} - Error: {str(error)}")
        self.logger.error(f"Error type: {type(error).__name__}")

        if context:
            self.logger.error(f"Context: {context}")

        self._log_structured_data({
            'event': 'error',
            'stage': stage,
            'error_type': type(error).__name__,
            'error_message': str(error),
            'context': context or {},
            'timestamp': datetime.datetime.now().isoformat()
        })

    def _log_structured_data(self, data: Dict[str, Any]):
        """Log structured data to JSON Lines file"""
        with open(self.json_log_path, 'a') as f:
            f.write(json.dumps(data, default=_json_default) + '\n')

    def export_results(self, projected_curve: Optional[pd.DataFrame] = None) -> str:
        """Export run data to JSON and the projected curve to CSV"""
        export_data = {
            'run_data': self.run_data,
            'iteration_history': self.iteration_history
        }

        export_file = self.run_dir / f"{self.run_name}_results.json"
        with open(export_file, 'w') as f:
            json.dump(export_data, f, indent=2, default=_json_default)

        if projected_curve is not None:
            projected_curve.to_csv(self.run_dir / f"{self.run_name}_projected_curve.csv", index=False)

        self.logger.info(f"Results exported to {export_file}")
        return str(export_file)


def _json_default(obj):
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    return str(obj)
