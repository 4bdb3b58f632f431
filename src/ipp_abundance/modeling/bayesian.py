"""
Bayesian abundance models.
Uses PyMC to fit Poisson regressions at site level and, through the
interval table, at the level of aggregated reporting units.
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

import arviz as az
import numpy as np
import pandas as pd
import pymc as pm

from ipp_abundance.modeling.diagnostics import summarize_posterior
from ipp_abundance.pipeline.aggregate import interval_membership_matrix
from ipp_abundance.pipeline.partition import isolated_units

logger = logging.getLogger(__name__)

DEFAULT_MONITORS = ["alpha", "betas"]


def _log_area(df: pd.DataFrame, default: float = 1.0) -> np.ndarray:
    area = df["area"].to_numpy(dtype=float) if "area" in df.columns else np.full(len(df), default)
    return np.log(area)


def _check_reindexed(cells: pd.DataFrame) -> None:
    if "new_cell_id" not in cells.columns:
        raise ValueError("Cells must be reindexed first (missing 'new_cell_id' column)")
    if not np.array_equal(cells["new_cell_id"].to_numpy(), np.arange(1, len(cells) + 1)):
        raise ValueError("Cells must be sorted by new_cell_id and numbered 1..N")


class AbundanceModel:
    def __init__(self, target_col: str = "count"):
        """
        Initialize the abundance model.

        Args:
            target_col: Name of the observed count column (per site, or per
                unit for the aggregated models).
        """
        self.target_col = target_col
        self.kind: Optional[str] = None
        self.predictors: List[str] = []
        self.monitors: List[str] = []
        self.model: Optional[pm.Model] = None
        self.trace: Optional[az.InferenceData] = None

    def _start(self, kind: str, predictors: Sequence[str]) -> None:
        if not predictors:
            raise ValueError("At least one predictor is required")
        self.kind = kind
        self.predictors = list(predictors)
        self.monitors = list(DEFAULT_MONITORS)
        self.trace = None

    def build_site_model(self, sites: pd.DataFrame, predictors: List[str]) -> None:
        """
        Build a site-level Poisson regression.

        count ~ Poisson(exp(alpha + X @ betas + log(area)))
        """
        self._start("site", predictors)
        coords = {"site": sites["cell_id"].tolist(), "predictor": self.predictors}

        with pm.Model(coords=coords) as self.model:
            X = pm.Data("X", sites[self.predictors].to_numpy(dtype=float), dims=("site", "predictor"))
            log_area = pm.Data("log_area", _log_area(sites), dims="site")
            y = pm.Data("y", sites[self.target_col].to_numpy(dtype=int), dims="site")

            # Priors
            alpha = pm.Normal("alpha", mu=0, sigma=2)
            betas = pm.Normal("betas", mu=0, sigma=1, dims="predictor")

            mu = pm.math.exp(alpha + pm.math.dot(X, betas) + log_area)

            # Likelihood
            pm.Poisson("obs", mu=mu, observed=y, dims="site")

        logger.info(f"Built site model on {len(sites)} sites with predictors {self.predictors}")

    def build_aggregated_model(
        self,
        cells: pd.DataFrame,
        units: pd.DataFrame,
        predictors: List[str],
    ) -> None:
        """
        Build a change-of-support Poisson model.

        Cell intensities are log-linear in the cell covariates; each unit's
        expected count is the sum of its cells' intensities over its
        [min_new_id, max_new_id] range.

            lambda_c = exp(alpha + X_c @ betas + log(area_c))
            count_u ~ Poisson(sum_{c in u} lambda_c)

        Args:
            cells: Reindexed cells (sorted by new_cell_id) with predictors.
            units: Unit table with 'unit_id', 'min_new_id', 'max_new_id'
                and the target column.
            predictors: Cell-level covariate columns.
        """
        self._start("aggregated", predictors)
        with self._unit_scaffold(cells, units) as self.model:
            unit_mu = self.model["unit_mu"]
            pm.Poisson(
                "obs",
                mu=unit_mu,
                observed=units[self.target_col].to_numpy(dtype=int),
                dims="unit",
            )

        logger.info(
            f"Built aggregated model: {len(cells)} cells in {len(units)} units, "
            f"predictors {self.predictors}"
        )

    def build_spatial_model(
        self,
        cells: pd.DataFrame,
        units: pd.DataFrame,
        edges: pd.DataFrame,
        predictors: List[str],
    ) -> None:
        """
        Build the aggregated model with an intrinsic CAR unit effect.

            log mu_u = log(sum_{c in u} lambda_c) + sigma_phi * phi_u
            p(phi) ~ exp(-0.5 * sum_{u~v} (phi_u - phi_v)^2), soft sum-to-zero

        Args:
            edges: Adjacent unit pairs with 0-based 'node1' / 'node2'
                positions in the row order of ``units``.
        """
        n_units = len(units)
        islands = isolated_units(edges, n_units)
        if islands:
            raise ValueError(
                f"Spatial model needs every unit to have a neighbour; isolated: "
                f"{units['unit_id'].iloc[islands].tolist()}"
            )

        self._start("spatial", predictors)
        self.monitors.append("sigma_phi")
        node1 = edges["node1"].to_numpy(dtype=int)
        node2 = edges["node2"].to_numpy(dtype=int)

        with self._unit_scaffold(cells, units) as self.model:
            unit_mu = self.model["unit_mu"]

            phi = pm.Flat("phi", dims="unit")
            pm.Potential("icar_pairwise", -0.5 * pm.math.sum((phi[node1] - phi[node2]) ** 2))
            pm.Potential(
                "phi_sum_to_zero",
                pm.logp(pm.Normal.dist(mu=0.0, sigma=0.001 * n_units), pm.math.sum(phi)),
            )
            sigma_phi = pm.HalfNormal("sigma_phi", sigma=1)

            log_mu = pm.math.log(unit_mu) + sigma_phi * phi
            pm.Poisson(
                "obs",
                mu=pm.math.exp(log_mu),
                observed=units[self.target_col].to_numpy(dtype=int),
                dims="unit",
            )

        logger.info(f"Built spatial model with {len(edges)} unit adjacencies")

    def _unit_scaffold(self, cells: pd.DataFrame, units: pd.DataFrame) -> pm.Model:
        """Priors and per-unit expected counts shared by the aggregated models."""
        _check_reindexed(cells)
        intervals = units.set_index("unit_id")[["min_new_id", "max_new_id"]]
        membership = interval_membership_matrix(intervals, len(cells))

        coords = {
            "unit": units["unit_id"].tolist(),
            "cell": cells["new_cell_id"].tolist(),
            "predictor": self.predictors,
        }
        model = pm.Model(coords=coords)
        with model:
            X = pm.Data("X", cells[self.predictors].to_numpy(dtype=float), dims=("cell", "predictor"))
            log_area = pm.Data("log_area", _log_area(cells), dims="cell")
            M = pm.Data("membership", membership, dims=("unit", "cell"))

            alpha = pm.Normal("alpha", mu=0, sigma=2)
            betas = pm.Normal("betas", mu=0, sigma=1, dims="predictor")

            lam = pm.math.exp(alpha + pm.math.dot(X, betas) + log_area)
            pm.Deterministic("unit_mu", pm.math.dot(M, lam), dims="unit")
        return model

    def build_unit_mean_model(
        self,
        units: pd.DataFrame,
        predictors: List[str],
        cell_area: float = 1.0,
    ) -> None:
        """
        Build a naive unit-level regression on unit mean covariates.

        count_u ~ Poisson(exp(alpha + mean(X)_u @ betas + log(n_cells_u * cell_area)))

        Ignores within-unit covariate variation; useful as a contrast to the
        change-of-support model.
        """
        self._start("unit_mean", predictors)
        mean_cols = [f"mean_{p}" for p in self.predictors]
        coords = {"unit": units["unit_id"].tolist(), "predictor": self.predictors}

        with pm.Model(coords=coords) as self.model:
            X = pm.Data("X", units[mean_cols].to_numpy(dtype=float), dims=("unit", "predictor"))
            offset = pm.Data(
                "log_area",
                np.log(units["n_cells"].to_numpy(dtype=float) * cell_area),
                dims="unit",
            )
            y = pm.Data("y", units[self.target_col].to_numpy(dtype=int), dims="unit")

            alpha = pm.Normal("alpha", mu=0, sigma=2)
            betas = pm.Normal("betas", mu=0, sigma=1, dims="predictor")

            mu = pm.math.exp(alpha + pm.math.dot(X, betas) + offset)
            pm.Poisson("obs", mu=mu, observed=y, dims="unit")

        logger.info(f"Built unit-mean model on {len(units)} units")

    def sample(
        self,
        draws: int = 1000,
        tune: int = 1000,
        chains: int = 2,
        cores: int = 1,
        target_accept: float = 0.9,
        random_seed: Optional[int] = None,
    ) -> az.InferenceData:
        """
        Sample from the posterior.
        """
        if self.model is None:
            raise ValueError("Model not built yet. Call a build_*_model method first.")

        logger.info(f"Sampling {self.kind} model: draws={draws}, tune={tune}, chains={chains}")
        with self.model:
            self.trace = pm.sample(
                draws=draws,
                tune=tune,
                chains=chains,
                cores=cores,
                target_accept=target_accept,
                random_seed=random_seed,
            )
        return self.trace

    def summary(self, var_names: Optional[List[str]] = None) -> pd.DataFrame:
        """
        Posterior summary of the monitored parameters.
        """
        if self.trace is None:
            raise ValueError("Model not sampled yet.")
        return summarize_posterior(self.trace, var_names or self.monitors)

    def plot_trace(self) -> None:
        """
        Plot the trace.
        """
        if self.trace is None:
            raise ValueError("Model not sampled yet.")
        az.plot_trace(self.trace, var_names=self.monitors)

    def predict(self, new_sites: pd.DataFrame) -> Any:
        """
        Generate posterior predictive counts at new sites (site model only).
        """
        if self.model is None or self.trace is None:
            raise ValueError("Model must be built and sampled.")
        if self.kind != "site":
            raise ValueError(f"predict is only available for the site model, not '{self.kind}'")

        with self.model:
            pm.set_data(
                {
                    "X": new_sites[self.predictors].to_numpy(dtype=float),
                    "log_area": _log_area(new_sites),
                    "y": np.zeros(len(new_sites), dtype=int),
                },
                coords={"site": new_sites["cell_id"].tolist()},
            )
            ppc = pm.sample_posterior_predictive(self.trace, var_names=["obs"])

        return ppc
