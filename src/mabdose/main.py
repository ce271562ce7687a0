#!/usr/bin/env python3
"""
Command-line entry point: read a dosing request and a population spec,
print the recommendation as JSON.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .config import EngineConfig, read_mapping, load_population_spec
from .exceptions import MabDoseError
from .regimen_service import DosingRequest, recommend_regimen
from .utils.logging_system import DosingRunLogger


def _setup_logging(verbose: bool, debug: bool):
    """Set up root logging to the console"""
    log_level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stderr)]
    )


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser"""
    parser = argparse.ArgumentParser(
        description="mabdose - population dose selection for long-acting antibodies",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mabdose --request request.json --population configs/population.yaml
  mabdose --request request.yaml --population pop.json --config engine.yaml --log-dir logs -v
        """
    )
    parser.add_argument("--request", required=True, help="Dosing request (JSON or YAML, camelCase keys)")
    parser.add_argument("--population", required=True, help="Population spec (JSON or YAML)")
    parser.add_argument("--config", help="Engine configuration (JSON or YAML)")
    parser.add_argument("--log-dir", help="Write run logs and exported results here")
    parser.add_argument("--output", help="Write the response JSON to this file instead of stdout")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--debug", "-d", action="store_true", help="Debug logging")
    return parser


def main(argv=None) -> int:
    """Main entry point"""
    args = create_argument_parser().parse_args(argv)
    _setup_logging(args.verbose, args.debug)
    logger = logging.getLogger("mabdose.main")

    try:
        request = DosingRequest.from_dict(read_mapping(args.request))
        population = load_population_spec(args.population)
        config = EngineConfig.load(args.config) if args.config else EngineConfig()
        run_logger = DosingRunLogger(log_dir=args.log_dir) if args.log_dir else None

        try:
            response = recommend_regimen(request, population, config, run_logger)
        finally:
            if run_logger is not None:
                run_logger.close()
    except MabDoseError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 2

    payload = json.dumps(response.to_dict(), indent=2, default=str)
    if args.output:
        Path(args.output).write_text(payload + "\n")
    else:
        print(payload)
    return 0


if __name__ == "__main__":
    sys.exit(main())
