"""
esmarket/__main__.py

Command line entry point: run a sweep from a YAML config.

    python -m esmarket --config sweep.yaml --data data/example --output results
"""

import argparse
import sys
from pathlib import Path

from .constants import DEFAULT_STEP_HOURS
from .errors import MarketSimulationError
from .interfaces import SystemData, records_to_frame
from .logs import get_logger
from .sweep import SweepConfig, generation_frame, period_frame, run_sweep


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Energy storage market participation simulator"
    )
    parser.add_argument("--config", type=str, required=True, help="Path to the sweep YAML config.")
    parser.add_argument("--data", type=str, required=True, help="Directory with generators.csv and profiles.csv.")
    parser.add_argument("--output", type=str, default="results", help="Directory for result CSV files.")
    parser.add_argument("--step-hours", type=float, default=DEFAULT_STEP_HOURS, help="Period length in hours.")
    parser.add_argument("--loglevel", type=str, default="INFO", help="Set logging level.")
    parser.add_argument("--log-dir", type=str, default=None, help="Directory for the run log.")
    args = parser.parse_args(argv)

    logger = get_logger(
        run_name="esmarket", scenario=Path(args.config).stem,
        log_dir=args.log_dir, level=args.loglevel,
    )

    try:
        config = SweepConfig.from_yaml(args.config)
        data = SystemData.from_directory(args.data, step_hours=args.step_hours)
        failures = []
        records = run_sweep(data, config, failures=failures)
    except (MarketSimulationError, FileNotFoundError) as e:
        logger.error(f"Sweep failed: {e}")
        return 1

    output = Path(args.output)
    output.mkdir(parents=True, exist_ok=True)
    records_to_frame(list(records.values()), config.degradation_cost).to_csv(
        output / "sweep_summary.csv", index=False
    )
    period_frame(list(records.values())).to_csv(output / "sweep_periods.csv", index=False)
    generation_frame(list(records.values())).to_csv(output / "sweep_dispatch.csv", index=False)
    logger.info(f"Wrote {len(records)} records to {output}")
    if failures:
        logger.error(f"{len(failures)} sweep points failed")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
