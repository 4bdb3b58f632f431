import logging
from pathlib import Path

import matplotlib.pyplot as plt
import seaborn as sns

from ipp_abundance.cli import VAR_LABELS, build_model, setup_logging
from ipp_abundance.config.simulation_config import load_config
from ipp_abundance.modeling.diagnostics import (
    coefficient_recovery,
    convergence_problems,
    plot_posterior_traces,
    plot_unit_map,
    true_parameters,
)
from ipp_abundance.pipeline.processing import run_full_pipeline

# Configure logging
setup_logging()
logger = logging.getLogger(__name__)

# Output directory
REPO_ROOT = Path(__file__).resolve().parent.parent
OUTPUT_DIR = REPO_ROOT / "data/outputs"
OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

MODELS = ["site", "aggregated", "unit-mean", "spatial"]


def main() -> None:
    """Simulate an abundance field and fit every model to it."""
    logger.info("Starting abundance model comparison")

    # Set plot style
    sns.set_theme(style="whitegrid")

    config = load_config()
    logger.info(f"Config: {config.summary()}")
    sim = config.simulation

    logger.info("Step 1: Simulate grid, abundance and reporting units")
    data = run_full_pipeline(sim, REPO_ROOT / "data/processed")

    for value_col, title in [("log_rate", "True log intensity"), ("abundance", "Simulated abundance")]:
        fig = plot_unit_map(data["cells"], value_col, title=f"{title} with reporting units")
        fig.savefig(OUTPUT_DIR / f"map_{value_col}.png", dpi=150, bbox_inches="tight")
        plt.close(fig)
        logger.info(f"Map saved to {OUTPUT_DIR / f'map_{value_col}.png'}")

    logger.info("Step 2: Fit models")
    recoveries = {}
    for kind in MODELS:
        logger.info("=" * 60)
        logger.info(f"Running {kind} model")
        logger.info("=" * 60)
        try:
            model = build_model(kind, data, cell_area=sim.cell_size**2)
            model.sample(
                draws=config.sampler.draws,
                tune=config.sampler.tune,
                chains=config.sampler.chains,
                cores=config.sampler.cores,
                target_accept=config.sampler.target_accept,
                random_seed=sim.seed,
            )
        except Exception as e:
            logger.error(f"{kind} model failed: {e}", exc_info=True)
            continue

        stem = kind.replace("-", "_")
        summary = model.summary()
        summary.to_csv(OUTPUT_DIR / f"{stem}_summary.csv")
        convergence_problems(summary)

        recoveries[kind] = coefficient_recovery(
            summary, true_parameters(sim.intercept, sim.coefficients, model.predictors)
        )

        fig = plot_posterior_traces(
            model.trace, model.monitors, labels=VAR_LABELS, title=f"{kind.title()} Poisson Model"
        )
        fig.savefig(OUTPUT_DIR / f"{stem}_trace.png", dpi=150, bbox_inches="tight")
        plt.close(fig)
        logger.info(f"Trace plot saved to {OUTPUT_DIR / f'{stem}_trace.png'}")

    logger.info("Step 3: Compare coefficient recovery")
    for kind, recovery in recoveries.items():
        logger.info(f"{kind}:")
        for line in str(recovery).split("\n"):
            logger.info(f"  {line}")

    logger.info("Model comparison complete")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        logger.info("Analysis interrupted by user")
    except Exception as e:
        logger.critical(f"Unexpected error: {e}", exc_info=True)
        raise
