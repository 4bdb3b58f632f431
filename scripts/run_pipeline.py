#!/usr/bin/env python
"""
Simulate the abundance datasets.

This script runs every data step ahead of modeling:
1. Build the cell grid and simulate covariates and abundance
2. Partition the grid into irregular reporting units
3. Reindex cells into contiguous unit blocks and aggregate per unit

Usage:
    python scripts/run_pipeline.py
    python scripts/run_pipeline.py --config config/abundance.yaml --seed 7
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def main() -> None:
    import argparse
    import dataclasses

    from ipp_abundance.cli import setup_logging
    from ipp_abundance.config.simulation_config import load_config
    from ipp_abundance.pipeline.processing import run_full_pipeline

    setup_logging()

    # Resolve paths relative to repo root
    repo_root = Path(__file__).resolve().parent.parent

    parser = argparse.ArgumentParser(description="Simulate the abundance datasets.")
    parser.add_argument(
        "--config",
        type=Path,
        default=repo_root / "config" / "abundance.yaml",
        help="Path to YAML config",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=repo_root / "data" / "processed",
        help="Output directory for simulated datasets",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Override the configured random seed",
    )

    args = parser.parse_args()

    if not args.config.exists():
        logger.error(f"Config not found: {args.config}")
        return

    config = load_config(args.config)
    simulation = config.simulation
    if args.seed is not None:
        simulation = dataclasses.replace(simulation, seed=args.seed)

    logger.info("=" * 60)
    logger.info("ABUNDANCE SIMULATION")
    logger.info("=" * 60)
    logger.info(f"Config: {args.config}")
    logger.info(f"Output: {args.output_dir}")
    logger.info(f"Seed:   {simulation.seed}")
    logger.info("=" * 60)

    results = run_full_pipeline(simulation, args.output_dir)

    # Summary
    logger.info("")
    logger.info("=" * 60)
    logger.info("SIMULATION COMPLETE - Output files:")
    logger.info("=" * 60)
    for name, df in results.items():
        logger.info(f"  {name}: {len(df)} rows")

    logger.info("")
    logger.info("Next steps:")
    logger.info("  - Fit one model: ipp-abundance fit --model aggregated")
    logger.info("  - Compare all models: python scripts/run_abundance_models.py")


if __name__ == "__main__":
    main()
