import argparse
import logging
from pathlib import Path
from typing import Dict

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import pandas as pd  # noqa: E402

from .config.simulation_config import AbundanceConfig, load_config  # noqa: E402
from .modeling.bayesian import AbundanceModel  # noqa: E402
from .modeling.diagnostics import (  # noqa: E402
    coefficient_recovery,
    convergence_problems,
    plot_posterior_traces,
    true_parameters,
)
from .pipeline.grid import covariate_columns  # noqa: E402
from .pipeline.processing import run_full_pipeline  # noqa: E402

logger = logging.getLogger(__name__)

MODEL_CHOICES = ["site", "aggregated", "unit-mean", "spatial"]

VAR_LABELS = {
    "alpha": "α (Intercept)",
    "betas": "β (Covariate Effects)",
    "sigma_phi": "σ_φ (Spatial Effect Scale)",
}


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: int = logging.INFO) -> None:
    """Configure root logging for the command-line entry points."""
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


def build_model(kind: str, data: Dict[str, pd.DataFrame], cell_area: float = 1.0) -> AbundanceModel:
    """Construct (but do not sample) one of the abundance models."""
    predictors = covariate_columns(data["cells"])
    model = AbundanceModel(target_col="count")

    if kind == "site":
        model.build_site_model(data["sites"], predictors)
    elif kind == "aggregated":
        model.build_aggregated_model(data["cells_reindexed"], data["units"], predictors)
    elif kind == "unit-mean":
        model.build_unit_mean_model(data["units"], predictors, cell_area=cell_area)
    elif kind == "spatial":
        model.build_spatial_model(data["cells_reindexed"], data["units"], data["edges"], predictors)
    else:
        raise ValueError(f"Unknown model '{kind}', expected one of {MODEL_CHOICES}")
    return model


def fit_model(kind: str, config: AbundanceConfig, data: Dict[str, pd.DataFrame], out_dir: Path) -> pd.DataFrame:
    """Sample a model, save its summary and trace figure, and check convergence."""
    sim = config.simulation
    sampler = config.sampler

    model = build_model(kind, data, cell_area=sim.cell_size**2)
    model.sample(
        draws=sampler.draws,
        tune=sampler.tune,
        chains=sampler.chains,
        cores=sampler.cores,
        target_accept=sampler.target_accept,
        random_seed=sim.seed,
    )

    summary = model.summary()
    stem = kind.replace("-", "_")
    summary.to_csv(out_dir / f"{stem}_summary.csv")
    logger.info(f"Model summary saved to {out_dir / f'{stem}_summary.csv'}")
    for line in str(summary).split("\n"):
        logger.info(line)

    convergence_problems(summary)
    recovery = coefficient_recovery(
        summary, true_parameters(sim.intercept, sim.coefficients, model.predictors)
    )
    logger.info("Coefficient recovery:")
    for line in str(recovery).split("\n"):
        logger.info(line)

    fig = plot_posterior_traces(
        model.trace,
        model.monitors,
        labels=VAR_LABELS,
        title=f"{kind.title()} Poisson Model",
    )
    fig.savefig(out_dir / f"{stem}_trace.png", dpi=150, bbox_inches="tight")
    plt.close(fig)
    logger.info(f"Trace plot saved to {out_dir / f'{stem}_trace.png'}")
    return summary


def main() -> None:
    setup_logging()
    parser = argparse.ArgumentParser(description="Simulated IPPP abundance models")
    parser.add_argument(
        "--config", type=str, default=None, help="Path to YAML config (default: config/abundance.yaml)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Simulate command
    simulate_parser = subparsers.add_parser(
        "simulate", help="Simulate the grid, partition and datasets"
    )
    simulate_parser.add_argument(
        "--out-dir", type=str, default="data/processed", help="Output directory for data"
    )

    # Fit command
    fit_parser = subparsers.add_parser("fit", help="Simulate data and fit a model")
    fit_parser.add_argument(
        "--model", choices=MODEL_CHOICES, default="aggregated", help="Model to fit"
    )
    fit_parser.add_argument(
        "--out-dir", type=str, default="data/outputs", help="Output directory for results"
    )
    fit_parser.add_argument(
        "--draws", type=int, default=None, help="Override number of posterior draws"
    )

    args = parser.parse_args()

    config = load_config(Path(args.config) if args.config else None)
    logging.info(f"Config: {config.summary()}")

    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    if args.command == "simulate":
        run_full_pipeline(config.simulation, out_dir)
        logging.info("Done!")

    elif args.command == "fit":
        if args.draws is not None:
            config.sampler.draws = args.draws
        data = run_full_pipeline(config.simulation)
        fit_model(args.model, config, data, out_dir)
        logging.info("Done!")


if __name__ == "__main__":
    main()
