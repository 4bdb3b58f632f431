"""Unit tests for the cell grid, covariate simulation and abundance draws."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from ipp_abundance.pipeline.grid import (
    build_cell_grid,
    covariate_columns,
    simulate_covariates,
    smooth_field,
)
from ipp_abundance.pipeline.simulate import make_rng, sample_sites, simulate_abundance


@pytest.fixture
def grid() -> pd.DataFrame:
    return build_cell_grid(6, 8, cell_size=2.0)


class TestBuildCellGrid:
    """Tests for build_cell_grid."""

    def test_shape_and_ids(self, grid: pd.DataFrame) -> None:
        """Cells are numbered 1..N row-major."""
        assert len(grid) == 48
        assert list(grid["cell_id"]) == list(range(1, 49))
        assert grid.loc[8, "row"] == 1
        assert grid.loc[8, "col"] == 0

    def test_centroids_and_area(self, grid: pd.DataFrame) -> None:
        first = grid.iloc[0]
        assert first["x"] == pytest.approx(1.0)
        assert first["y"] == pytest.approx(1.0)
        assert grid["x"].max() == pytest.approx(15.0)
        assert (grid["area"] == 4.0).all()

    def test_invalid_size(self) -> None:
        with pytest.raises(ValueError):
            build_cell_grid(0, 5)
        with pytest.raises(ValueError):
            build_cell_grid(3, 3, cell_size=0)


class TestSimulateCovariates:
    """Tests for simulate_covariates and smoothing."""

    def test_standardized_columns(self, grid: pd.DataFrame) -> None:
        cells = simulate_covariates(grid, 3, make_rng(1))

        assert covariate_columns(cells) == ["cov_1", "cov_2", "cov_3"]
        for col in covariate_columns(cells):
            assert cells[col].mean() == pytest.approx(0.0, abs=1e-12)
            assert cells[col].std(ddof=0) == pytest.approx(1.0)

    def test_reproducible_with_seed(self, grid: pd.DataFrame) -> None:
        a = simulate_covariates(grid, 2, make_rng(5))
        b = simulate_covariates(grid, 2, make_rng(5))

        pd.testing.assert_frame_equal(a, b)

    def test_does_not_modify_input(self, grid: pd.DataFrame) -> None:
        simulate_covariates(grid, 2, make_rng(0))

        assert covariate_columns(grid) == []

    def test_smoothing_reduces_variance(self) -> None:
        noise = make_rng(3).standard_normal((40, 40))

        smoothed = smooth_field(noise, 2.0)

        assert smoothed.shape == noise.shape
        assert smoothed.var() < noise.var()

    def test_kernel_wider_than_grid(self) -> None:
        """Shape is preserved even when the kernel exceeds the grid."""
        noise = make_rng(3).standard_normal((2, 3))

        assert smooth_field(noise, 5.0).shape == (2, 3)

    def test_covariate_columns_numeric_order(self) -> None:
        df = pd.DataFrame(columns=["cov_10", "cov_2", "x", "cov_1", "cov_a"])

        assert covariate_columns(df) == ["cov_1", "cov_2", "cov_10"]


class TestSimulateAbundance:
    """Tests for simulate_abundance and sample_sites."""

    def test_log_rate(self, grid: pd.DataFrame) -> None:
        cells = simulate_covariates(grid, 2, make_rng(2))

        out = simulate_abundance(cells, 0.3, [1.0, -2.0], make_rng(2))

        expected = 0.3 + cells["cov_1"] - 2.0 * cells["cov_2"] + np.log(4.0)
        np.testing.assert_allclose(out["log_rate"], expected)
        np.testing.assert_allclose(out["rate"], np.exp(expected))
        assert (out["abundance"] >= 0).all()
        assert np.issubdtype(out["abundance"].dtype, np.integer)

    def test_coefficient_count_mismatch(self, grid: pd.DataFrame) -> None:
        cells = simulate_covariates(grid, 2, make_rng(2))

        with pytest.raises(ValueError):
            simulate_abundance(cells, 0.0, [1.0], make_rng(2))

    def test_sample_sites(self, grid: pd.DataFrame) -> None:
        cells = simulate_abundance(simulate_covariates(grid, 1, make_rng(4)), 1.0, [0.5], make_rng(4))

        sites = sample_sites(cells, 10, make_rng(9))

        assert len(sites) == 10
        assert sites["cell_id"].is_unique
        assert sites["cell_id"].is_monotonic_increasing
        assert (sites["count"].to_numpy() == sites["abundance"].to_numpy()).all()

    def test_sample_sites_bounds(self, grid: pd.DataFrame) -> None:
        cells = grid.assign(abundance=0)

        with pytest.raises(ValueError):
            sample_sites(cells, 0, make_rng(0))
        with pytest.raises(ValueError):
            sample_sites(cells, len(cells) + 1, make_rng(0))
