"""Integration tests for the simulation pipeline and CLI wiring."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from ipp_abundance.cli import LOG_FORMAT, MODEL_CHOICES, build_model, setup_logging
from ipp_abundance.config.simulation_config import SimulationConfig
from ipp_abundance.pipeline.processing import run_full_pipeline
from ipp_abundance.pipeline.reindex import validate_intervals


@pytest.fixture(scope="module")
def config() -> SimulationConfig:
    return SimulationConfig(n_rows=9, n_cols=11, n_units=7, n_sites=12, seed=5)


@pytest.fixture(scope="module")
def results(config: SimulationConfig) -> dict[str, pd.DataFrame]:
    return run_full_pipeline(config)


class TestPipeline:
    """Tests for run_full_pipeline."""

    def test_outputs(self, results: dict[str, pd.DataFrame]) -> None:
        assert set(results) == {"cells", "cells_reindexed", "units", "sites", "edges"}

    def test_units_tile_reindexed_cells(self, results: dict[str, pd.DataFrame], config: SimulationConfig) -> None:
        units = results["units"]

        assert len(units) == config.n_units
        validate_intervals(units.set_index("unit_id"), config.n_cells)
        assert list(results["cells_reindexed"]["new_cell_id"]) == list(range(1, config.n_cells + 1))

    def test_unit_counts_add_up(self, results: dict[str, pd.DataFrame]) -> None:
        """Reindexing does not change totals per unit or overall."""
        cells = results["cells"]
        units = results["units"].set_index("unit_id")

        expected = cells.groupby("unit_id")["abundance"].sum()
        assert (units.loc[expected.index, "count"] == expected).all()
        assert units["count"].sum() == cells["abundance"].sum()

    def test_true_unit_rates(self, results: dict[str, pd.DataFrame]) -> None:
        units = results["units"]
        cells = results["cells"]

        np.testing.assert_allclose(units["rate"].sum(), cells["rate"].sum())
        np.testing.assert_allclose(units["log_rate"], np.log(units["rate"]))

    def test_reproducible(self, config: SimulationConfig, results: dict[str, pd.DataFrame]) -> None:
        again = run_full_pipeline(config)

        for name in results:
            pd.testing.assert_frame_equal(results[name], again[name])

    def test_every_unit_has_a_neighbour(self, results: dict[str, pd.DataFrame]) -> None:
        edges = results["edges"]
        connected = set(edges["node1"]) | set(edges["node2"])

        assert connected == set(range(len(results["units"])))

    def test_exports(self, config: SimulationConfig, tmp_path: Path) -> None:
        run_full_pipeline(config, tmp_path)

        for filename in ["cells.csv", "cells_reindexed.csv", "units.csv", "sites.csv", "unit_edges.csv"]:
            assert (tmp_path / filename).exists()
        units = pd.read_csv(tmp_path / "units.csv")
        assert "count" in units.columns


class TestBuildModel:
    """The CLI's model factory."""

    @pytest.mark.parametrize("kind", MODEL_CHOICES)
    def test_builds_every_model(self, kind: str, results: dict[str, pd.DataFrame]) -> None:
        model = build_model(kind, results)

        assert model.model is not None
        assert model.predictors == ["cov_1", "cov_2"]

    def test_unknown_model(self, results: dict[str, pd.DataFrame]) -> None:
        with pytest.raises(ValueError):
            build_model("zero-inflated", results)


class TestSetupLogging:
    """Entry points share one log format."""

    def test_format(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

        setup_logging()

        assert calls == [
            {
                "level": logging.INFO,
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            }
        ]
        assert calls[0]["format"] == LOG_FORMAT
