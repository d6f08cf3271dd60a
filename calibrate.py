"""Offline weight calibration against a directory of labeled reference cases.

Usage:
    python calibrate.py --reference-dir ./tests/reference
    python calibrate.py --reference-dir DIR --weights-file config/calibrated-weights.json --steepness 8
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from committee.calibration import calibrate, commit_calibration, format_report, load_reference_cases
from committee.config import CALIBRATION_STEEPNESS, CommitteeConfig, DEFAULT_WEIGHTS_FILE
from committee.engine import CommitteeEngine
from committee.registry import EvaluatorPool, default_evaluator_specs
from committee.weights import WeightStore

logger = logging.getLogger("calibrate")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Calibrate committee trust weights")
    parser.add_argument("--reference-dir", type=Path, required=True)
    parser.add_argument("--weights-file", type=Path, default=None)
    parser.add_argument("--report", type=Path, default=None, help="defaults to <weights-file>.report.txt")
    parser.add_argument("--steepness", type=float, default=CALIBRATION_STEEPNESS)
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    args = parse_args(argv)

    cases = load_reference_cases(args.reference_dir)
    if not cases:
        logger.error("No reference cases found. Cannot calibrate.")
        return 1

    config = CommitteeConfig.from_env()
    pool = EvaluatorPool.from_specs(default_evaluator_specs())
    if not len(pool):
        logger.error("No enabled evaluators found. Check your environment variables.")
        return 1

    weights_file = args.weights_file or config.weights_file or DEFAULT_WEIGHTS_FILE
    store = WeightStore(weights_file)
    engine = CommitteeEngine(pool, config, weight_store=store)

    results = await calibrate(engine, cases, steepness=args.steepness)
    data = commit_calibration(store, results, str(args.reference_dir))

    report = format_report(data, results)
    report_path = args.report or weights_file.with_suffix(".report.txt")
    report_path.write_text(report, encoding="utf-8")
    print(report)
    print(f"Report written to {report_path}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
