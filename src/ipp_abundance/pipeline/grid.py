"""
Regular cell grid and simulated spatial covariates.
"""
from __future__ import annotations

import logging
from typing import List

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

COVARIATE_PREFIX = "cov_"


def build_cell_grid(n_rows: int, n_cols: int, cell_size: float = 1.0) -> pd.DataFrame:
    """
    Create a regular grid of square cells numbered row-major from 1.

    Args:
        n_rows: Number of grid rows.
        n_cols: Number of grid columns.
        cell_size: Side length of each cell.

    Returns:
        DataFrame with 'cell_id', 'row', 'col', 'x', 'y' (cell centroid)
        and 'area' columns.
    """
    if n_rows < 1 or n_cols < 1:
        raise ValueError(f"Grid must have at least one row and column, got {n_rows}x{n_cols}")
    if cell_size <= 0:
        raise ValueError(f"cell_size must be positive, got {cell_size}")

    rows, cols = np.divmod(np.arange(n_rows * n_cols), n_cols)
    return pd.DataFrame(
        {
            "cell_id": np.arange(1, n_rows * n_cols + 1),
            "row": rows,
            "col": cols,
            "x": (cols + 0.5) * cell_size,
            "y": (rows + 0.5) * cell_size,
            "area": np.full(n_rows * n_cols, cell_size**2),
        }
    )


def _gaussian_kernel(length_scale: float) -> np.ndarray:
    half_width = max(1, int(np.ceil(3 * length_scale)))
    offsets = np.arange(-half_width, half_width + 1)
    kernel = np.exp(-0.5 * (offsets / length_scale) ** 2)
    return kernel / kernel.sum()


def _convolve_same(values: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    # centered slice of the full convolution; length always matches ``values``
    half = len(kernel) // 2
    return np.convolve(values, kernel, mode="full")[half : half + len(values)]


def smooth_field(noise: np.ndarray, length_scale: float) -> np.ndarray:
    """Separable Gaussian smoothing of a 2D array, in cell units."""
    if length_scale <= 0:
        return noise.copy()
    kernel = _gaussian_kernel(length_scale)
    field = np.apply_along_axis(_convolve_same, 1, noise, kernel)
    return np.apply_along_axis(_convolve_same, 0, field, kernel)


def simulate_covariates(
    cells: pd.DataFrame,
    n_covariates: int,
    rng: np.random.Generator,
    length_scale: float = 3.0,
) -> pd.DataFrame:
    """
    Add standardized, spatially autocorrelated covariates to a grid.

    Each covariate is white noise smoothed with a Gaussian kernel and then
    rescaled to mean 0 and standard deviation 1.

    Args:
        cells: Grid from ``build_cell_grid``.
        n_covariates: Number of covariate columns to add.
        rng: Random generator.
        length_scale: Kernel standard deviation in cells; 0 disables smoothing.

    Returns:
        Copy of ``cells`` with 'cov_1' .. 'cov_<n>' columns.
    """
    cells = cells.copy()
    n_rows = int(cells["row"].max()) + 1
    n_cols = int(cells["col"].max()) + 1
    rows = cells["row"].to_numpy()
    cols = cells["col"].to_numpy()

    for k in range(1, n_covariates + 1):
        field = smooth_field(rng.standard_normal((n_rows, n_cols)), length_scale)
        values = field[rows, cols]
        sd = values.std()
        values = values - values.mean()
        if sd > 0:
            values = values / sd
        cells[f"{COVARIATE_PREFIX}{k}"] = values

    logger.debug(f"Simulated {n_covariates} covariates on {len(cells)} cells")
    return cells


def covariate_columns(df: pd.DataFrame) -> List[str]:
    """Covariate column names ('cov_1', 'cov_2', ...) in numeric order."""
    cols = [c for c in df.columns if c.startswith(COVARIATE_PREFIX) and c[len(COVARIATE_PREFIX):].isdigit()]
    return sorted(cols, key=lambda c: int(c[len(COVARIATE_PREFIX):]))
