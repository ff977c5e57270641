#!/usr/bin/env python3
"""
Run a legend-based quantity takeoff on a scanned plan
"""

import os
import sys
import argparse
import logging
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from core.environment import load_environment
from infrastructure.utils.raster_io import load_plan
from app.config import setup_logging
from services.error_types import CriticalError, log_error_with_context
from services.pipeline_contracts import ElementCategory, TakeoffReport
from services.report_generator import ReportGenerator
from services.takeoff_config import TakeoffConfig, LEGEND_CORNERS
from services.takeoff_pipeline import TakeoffPipeline

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Legend-based quantity takeoff for architectural plans")
    parser.add_argument("plan", help="Plan image (PNG, JPEG, TIFF)")
    parser.add_argument("--output-dir", help="Directory for the JSON report and annotated PNG")
    parser.add_argument("--legend-location", choices=LEGEND_CORNERS, help="Corner holding the legend")
    parser.add_argument("--min-similarity", type=float, help="Minimum similarity for a match (0-1)")
    parser.add_argument("--workers", type=int, help="Tile scanning worker threads")
    parser.add_argument("--no-vlm", action="store_true",
                        help="Classify swatches from legend label text instead of the vision-language model")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    return parser


def config_from_args(args: argparse.Namespace) -> TakeoffConfig:
    config = TakeoffConfig()
    if args.output_dir:
        config.output.output_dir = args.output_dir
    if args.legend_location:
        config.legend.location = args.legend_location
    if args.min_similarity is not None:
        config.scanning.min_similarity = args.min_similarity
    if args.workers:
        config.scanning.max_workers = args.workers
    if args.no_vlm:
        config.vlm.enabled = False
    return config


def print_summary(report: TakeoffReport):
    print("\n=== TAKEOFF RESULTS ===")
    scale_note = " (default, no scale found)" if report.scale.is_fallback else f" (from {report.scale.source})"
    print(f"Scale: {report.scale.notation}{scale_note}")

    walls = [r for r in report.results if r.category == ElementCategory.WALL]
    openings = [r for r in report.results if r.category == ElementCategory.OPENING]

    print("\n--- Walls ---")
    for result in walls:
        print(f"  {result.element}: {result.measurement:.2f} {result.unit} "
              f"({result.match_count} matches, confidence {result.average_confidence:.2f})")
    if not walls:
        print("  none")

    print("\n--- Openings ---")
    for result in openings:
        print(f"  {result.element}: {result.measurement:.0f} {result.unit} "
              f"(confidence {result.average_confidence:.2f})")
    if not openings:
        print("  none")

    summary = report.summary
    print("\n--- Summary ---")
    print(f"Total wall area: {summary.total_wall_area:.2f} m²")
    print(f"Total openings: {summary.total_openings:.0f}")
    print(f"Elements: {summary.total_elements} ({summary.wall_types} wall types, "
          f"{summary.opening_types} opening types)")
    print(f"Matches: {summary.total_matches}")
    print(f"Average confidence: {summary.average_confidence:.2f}")
    print(f"Annotations: {len(report.annotations)}")
    print(f"Processing Time: {report.processing_time_seconds:.2f} seconds")
    for stage, seconds in report.stage_timings.items():
        print(f"  {stage}: {seconds:.2f}s")

    if report.warnings:
        print(f"\n--- Warnings ({len(report.warnings)}) ---")
        for warning in report.warnings:
            print(f"  - {warning}")


def main(argv=None) -> int:
    """Main entry point"""
    load_environment()
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug)

    plan_path = Path(args.plan)
    try:
        config = config_from_args(args)
        pipeline = TakeoffPipeline(config, use_vlm=not args.no_vlm)
        plan = load_plan(plan_path)
        report = pipeline.run(plan, source_file=str(plan_path))
    except CriticalError as e:
        log_error_with_context(e, {'plan': str(plan_path)})
        print(f"\n❌ Takeoff failed: {e.message}")
        return 1

    json_path, png_path = ReportGenerator(config.output).save(report, plan, plan_path.stem)
    logger.info(f"Takeoff outputs written to {json_path.parent}")
    print_summary(report)
    print(f"\nReport: {json_path}")
    print(f"Annotated plan: {png_path}")
    print("\n✅ Takeoff completed successfully!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
