#!/usr/bin/env python3
"""Research evidence pipeline runner."""

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

# Ensure project root is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from research.agents.strategy import format_search_strategy_summary
from research.core.project_spec import ConfigError, load_project_spec
from research.pipeline import ResearchResults, conduct_research

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("pipeline")


# ── Pipeline ─────────────────────────────────────────────────────────


def run_pipeline(spec_path: str, output: str, top_n: int | None = None) -> ResearchResults:
    """Load the project spec, run the research pipeline, write results JSON."""
    t_start = time.time()

    logger.info("Loading project spec: %s", spec_path)
    spec = load_project_spec(spec_path)
    if top_n is not None:
        spec.pipeline.top_n = top_n
    logger.info("Project: %s (v%s, spec %s)", spec.project.title, spec.version, spec.spec_hash()[:12])

    results = asyncio.run(conduct_research(spec))

    for line in format_search_strategy_summary(results.search_strategy, results.date_range).splitlines():
        logger.info(line)

    for report in results.source_outcomes:
        if report.error:
            logger.warning("  %s: no records (%s)", report.source, report.error)
        else:
            logger.info("  %s: %d records in %.1fs", report.source, report.records, report.elapsed)

    out_path = Path(output)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(results.model_dump_json(indent=2))

    logger.info("=" * 60)
    logger.info("Merged: %d unique papers, %d ranked", results.merged_total, results.ranked_total)
    logger.info(
        "Evidence: %d primary, %d secondary",
        len(results.primary_literature),
        len(results.secondary_literature),
    )
    logger.info("Results written to %s (%.1fs)", out_path, time.time() - t_start)
    return results


# ── CLI ──────────────────────────────────────────────────────────────


def main():
    parser = argparse.ArgumentParser(description="Run the research evidence pipeline")
    parser.add_argument("--spec", required=True, help="Path to Project Spec YAML file")
    parser.add_argument(
        "--output",
        default="results.json",
        help="Where to write the ResearchResults JSON (default: results.json)",
    )
    parser.add_argument(
        "--top-n",
        type=int,
        default=None,
        help="Number of top-ranked papers to extract (overrides the spec)",
    )
    args = parser.parse_args()

    if args.top_n is not None and args.top_n < 1:
        parser.error("--top-n must be >= 1")

    try:
        run_pipeline(args.spec, args.output, top_n=args.top_n)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        sys.exit(2)


if __name__ == "__main__":
    main()
