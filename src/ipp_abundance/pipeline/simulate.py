"""
Simulation of an inhomogeneous Poisson abundance field on the cell grid.
"""
from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from ipp_abundance.pipeline.grid import covariate_columns

logger = logging.getLogger(__name__)


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    return np.random.default_rng(seed)


def simulate_abundance(
    cells: pd.DataFrame,
    intercept: float,
    coefficients: Sequence[float],
    rng: np.random.Generator,
    covariate_cols: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Draw cell abundances from a log-linear Poisson intensity.

    log(rate) = intercept + X @ coefficients + log(area)
    abundance ~ Poisson(rate)

    Args:
        cells: Cell table with covariates and an 'area' column.
        intercept: Log intensity per unit area at zero covariates.
        coefficients: One coefficient per covariate column.
        rng: Random generator.
        covariate_cols: Covariates to use; defaults to all 'cov_*' columns.

    Returns:
        Copy of ``cells`` with 'log_rate', 'rate' and 'abundance' columns.
    """
    cols = list(covariate_cols) if covariate_cols is not None else covariate_columns(cells)
    if len(cols) != len(coefficients):
        raise ValueError(
            f"Got {len(coefficients)} coefficients for {len(cols)} covariates ({cols})"
        )

    cells = cells.copy()
    area = cells["area"].to_numpy(dtype=float) if "area" in cells.columns else 1.0
    linear = intercept + cells[cols].to_numpy(dtype=float) @ np.asarray(coefficients, dtype=float)
    cells["log_rate"] = linear + np.log(area)
    cells["rate"] = np.exp(cells["log_rate"])
    cells["abundance"] = rng.poisson(cells["rate"].to_numpy())

    logger.info(
        f"Simulated abundance: total={int(cells['abundance'].sum())}, "
        f"expected={cells['rate'].sum():.1f}, "
        f"occupied cells={int((cells['abundance'] > 0).sum())}/{len(cells)}"
    )
    return cells


def sample_sites(
    cells: pd.DataFrame,
    n_sites: int,
    rng: np.random.Generator,
    abundance_col: str = "abundance",
) -> pd.DataFrame:
    """
    Pick survey sites at random (without replacement) and record their counts.

    Returns:
        Rows of ``cells`` for the chosen sites, ordered by cell_id, with the
        observed count in a 'count' column.
    """
    if not 0 < n_sites <= len(cells):
        raise ValueError(f"n_sites must be in 1..{len(cells)}, got {n_sites}")

    chosen = rng.choice(len(cells), size=n_sites, replace=False)
    sites = cells.iloc[np.sort(chosen)].copy()
    sites["count"] = sites[abundance_col].astype(int)
    logger.info(f"Sampled {n_sites} sites, {int(sites['count'].sum())} animals counted")
    return sites.reset_index(drop=True)
