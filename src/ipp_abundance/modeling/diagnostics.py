"""
Convergence diagnostics and posterior figures for fitted abundance models.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence

import arviz as az
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

logger = logging.getLogger(__name__)


def summarize_posterior(
    trace: az.InferenceData,
    var_names: Sequence[str],
    round_to: Optional[int] = 3,
) -> pd.DataFrame:
    """Numeric posterior summary (mean, sd, HDI, ESS, R-hat) of the named variables."""
    kwargs = {"round_to": round_to} if round_to is not None else {}
    return az.summary(trace, var_names=list(var_names), **kwargs)


def convergence_problems(
    summary: pd.DataFrame,
    r_hat_max: float = 1.01,
    ess_min: float = 400,
) -> pd.DataFrame:
    """
    Rows of an ``az.summary`` table that fail the R-hat or ESS thresholds.

    Args:
        summary: Output of ``summarize_posterior``.
        r_hat_max: Largest acceptable R-hat.
        ess_min: Smallest acceptable bulk and tail effective sample size.

    Returns:
        The failing rows; empty when every parameter passes.
    """
    failing = pd.Series(False, index=summary.index)
    if "r_hat" in summary.columns:
        failing |= summary["r_hat"] > r_hat_max
    for col in ("ess_bulk", "ess_tail"):
        if col in summary.columns:
            failing |= summary[col] < ess_min

    problems = summary[failing]
    if problems.empty:
        logger.info(f"All {len(summary)} parameters pass r_hat <= {r_hat_max}, ess >= {ess_min}")
    else:
        logger.warning(f"{len(problems)} parameter(s) fail convergence checks: {list(problems.index)}")
    return problems


def true_parameters(
    intercept: float,
    coefficients: Sequence[float],
    predictors: Sequence[str],
) -> Dict[str, float]:
    """Simulated truth keyed the way ``az.summary`` labels the model's parameters."""
    truth = {"alpha": float(intercept)}
    for name, value in zip(predictors, coefficients):
        truth[f"betas[{name}]"] = float(value)
    return truth


def coefficient_recovery(summary: pd.DataFrame, truth: Mapping[str, float]) -> pd.DataFrame:
    """
    Compare posterior estimates with simulated truth.

    Returns:
        DataFrame indexed by parameter with 'truth', 'mean', the HDI bounds,
        'error' (mean - truth) and 'covered' (truth inside the HDI).
    """
    hdi_cols = [c for c in summary.columns if c.startswith("hdi_")]
    if len(hdi_cols) != 2:
        raise ValueError(f"Summary must have exactly two HDI columns, found {hdi_cols}")
    lower, upper = hdi_cols

    params = [p for p in truth if p in summary.index]
    missing = [p for p in truth if p not in summary.index]
    if missing:
        logger.warning(f"Parameters not in summary: {missing}")

    out = summary.loc[params, ["mean", lower, upper]].copy()
    out.insert(0, "truth", [truth[p] for p in params])
    out["error"] = out["mean"] - out["truth"]
    out["covered"] = (out[lower] <= out["truth"]) & (out["truth"] <= out[upper])
    return out


def plot_posterior_traces(
    trace: az.InferenceData,
    var_names: Sequence[str],
    labels: Optional[Mapping[str, str]] = None,
    title: str = "",
) -> plt.Figure:
    """
    Posterior density (left) and per-chain MCMC trace (right) per variable.

    Vector-valued variables get one KDE per component, labelled by the
    variable's coordinate values.
    """
    labels = dict(labels or {})
    fig, axes = plt.subplots(len(var_names), 2, figsize=(12, 3.3 * len(var_names)), squeeze=False)

    for i, var in enumerate(var_names):
        posterior = trace.posterior[var]
        values = posterior.values
        label = labels.get(var, var)

        # Posterior Plot (Left)
        ax_post = axes[i, 0]
        if values.ndim == 3:
            component_names = _component_names(posterior)
            flat = values.reshape(-1, values.shape[-1])
            for idx in range(flat.shape[1]):
                sns.kdeplot(flat[:, idx], ax=ax_post, label=component_names[idx])
            ax_post.legend(fontsize="x-small")
        else:
            az.plot_posterior(trace, var_names=[var], ax=ax_post, hdi_prob=0.94, point_estimate="mean")
        ax_post.set_title(f"{label} - Posterior", fontsize=11)
        ax_post.set_xlabel("Parameter Value")
        ax_post.set_ylabel("Density")

        # Manual trace plot to avoid ArviZ shape errors
        ax_trace = axes[i, 1]
        if values.ndim == 2:
            for chain_idx in range(values.shape[0]):
                ax_trace.plot(values[chain_idx], alpha=0.5)
        elif values.ndim == 3:
            for dim_idx in range(values.shape[2]):
                for chain_idx in range(values.shape[0]):
                    ax_trace.plot(values[chain_idx, :, dim_idx], alpha=0.3)
        ax_trace.set_title(f"{label} - MCMC Trace", fontsize=11)
        ax_trace.set_xlabel("Sample")
        ax_trace.set_ylabel("Parameter Value")

    if title:
        fig.suptitle(title, fontsize=13, fontweight="bold", y=1.02)
    fig.tight_layout()
    return fig


def _component_names(posterior) -> List[str]:
    dims = [d for d in posterior.dims if d not in ("chain", "draw")]
    if dims and dims[0] in posterior.coords:
        return [str(v) for v in posterior.coords[dims[0]].values]
    return [f"{posterior.name}_{k}" for k in range(posterior.shape[-1])]


def plot_unit_map(
    cells: pd.DataFrame,
    value_col: str,
    unit_col: str = "unit_id",
    title: str = "",
) -> plt.Figure:
    """Grid heat map of a per-cell value with unit boundaries drawn on top."""
    value = cells.pivot(index="row", columns="col", values=value_col).to_numpy(dtype=float)
    units = cells.pivot(index="row", columns="col", values=unit_col).to_numpy()

    fig, ax = plt.subplots(figsize=(7, 6))
    mesh = ax.imshow(value, origin="lower", cmap="viridis")
    fig.colorbar(mesh, ax=ax, label=value_col)

    n_rows, n_cols = units.shape
    for r in range(n_rows):
        for c in range(n_cols):
            if c + 1 < n_cols and units[r, c] != units[r, c + 1]:
                ax.plot([c + 0.5, c + 0.5], [r - 0.5, r + 0.5], color="white", lw=1)
            if r + 1 < n_rows and units[r, c] != units[r + 1, c]:
                ax.plot([c - 0.5, c + 0.5], [r + 0.5, r + 0.5], color="white", lw=1)

    ax.set_xlabel("Column")
    ax.set_ylabel("Row")
    if title:
        ax.set_title(title)
    fig.tight_layout()
    return fig
