"""
Aggregation of reindexed cell data over contiguous unit ranges.

All functions take arrays in new-id order (position k holds new id k + 1)
together with the interval table produced by ``reindex_cells``.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from ipp_abundance.errors import (
    MissingCellError,
    NonPositiveRateError,
    PartitionError,
    UnassignedCellError,
)
from ipp_abundance.pipeline.reindex import Reindexing, natural_order, validate_intervals

logger = logging.getLogger(__name__)


def _ranges(intervals: pd.DataFrame, n_cells: int) -> List[tuple[int, int]]:
    validate_intervals(intervals, n_cells)
    return [
        (int(lo) - 1, int(hi))
        for lo, hi in zip(intervals["min_new_id"], intervals["max_new_id"])
    ]


def reorder_cells(cells: pd.DataFrame, reindexing: Reindexing) -> pd.DataFrame:
    """
    Return the cell table in new-id order with a ``new_cell_id`` column.

    Args:
        cells: Cell table with a ``cell_id`` column.
        reindexing: Result of ``reindex_cells`` over the same cells.

    Returns:
        Copy of ``cells`` sorted by new id, with ``unit_id`` and
        ``new_cell_id`` columns.

    Raises:
        PartitionError: ``cells`` has duplicate cell ids.
        UnassignedCellError: A cell in ``cells`` has no unit in the reindexing.
        MissingCellError: The reindexing refers to cells absent from ``cells``.
    """
    by_id = cells.set_index("cell_id", drop=False)
    if not by_id.index.is_unique:
        duplicated = by_id.index[by_id.index.duplicated()].unique().tolist()
        raise PartitionError(f"Duplicate cell ids in cell table: {duplicated}")

    table_ids = set(by_id.index)
    assigned_ids = set(reindexing.order)
    unassigned = table_ids - assigned_ids
    if unassigned:
        raise UnassignedCellError(natural_order(unassigned))
    missing = assigned_ids - table_ids
    if missing:
        raise MissingCellError(natural_order(missing))

    out = by_id.loc[reindexing.order].reset_index(drop=True)
    out["unit_id"] = reindexing.assignment.loc[reindexing.order].to_numpy()
    out["new_cell_id"] = np.arange(1, len(out) + 1)
    return out


def aggregate_response(values: Sequence[int], intervals: pd.DataFrame) -> pd.Series:
    """
    Exact integer sum of a per-cell response over each unit's range.

    Args:
        values: Per-cell counts in new-id order.
        intervals: Unit interval table.

    Returns:
        Series of integer totals indexed like ``intervals``.
    """
    arr = np.asarray(values)
    if not np.issubdtype(arr.dtype, np.integer):
        if not np.all(np.isfinite(arr)) or np.any(arr != np.round(arr)):
            raise ValueError("Response values must be whole numbers")
        arr = arr.astype(np.int64)
    totals = [int(arr[lo:hi].sum()) for lo, hi in _ranges(intervals, len(arr))]
    return pd.Series(totals, index=intervals.index, name="response", dtype=np.int64)


def aggregate_covariates(covariates: pd.DataFrame, intervals: pd.DataFrame) -> pd.DataFrame:
    """
    Arithmetic mean of each covariate over each unit's range.

    Args:
        covariates: Per-cell covariates in new-id order (one column each).
        intervals: Unit interval table.

    Returns:
        DataFrame indexed like ``intervals`` with ``mean_<name>`` columns.
    """
    values = covariates.to_numpy(dtype=float)
    means = np.vstack([values[lo:hi].mean(axis=0) for lo, hi in _ranges(intervals, len(values))])
    return pd.DataFrame(
        means,
        index=intervals.index,
        columns=[f"mean_{c}" for c in covariates.columns],
    )


def aggregate_rates(rates: Sequence[float], intervals: pd.DataFrame) -> pd.Series:
    """
    Sum a per-cell Poisson rate over each unit's range.

    Raises:
        NonPositiveRateError: A unit's summed rate is zero, negative or not
            finite, so its logarithm would be undefined.
    """
    arr = np.asarray(rates, dtype=float)
    totals = pd.Series(
        [arr[lo:hi].sum() for lo, hi in _ranges(intervals, len(arr))],
        index=intervals.index,
        name="rate",
    )
    for unit_id, total in totals.items():
        if not np.isfinite(total) or total <= 0:
            raise NonPositiveRateError(unit_id, float(total))
    return totals


def log_unit_rates(rates: Sequence[float], intervals: pd.DataFrame) -> pd.Series:
    """Log of ``aggregate_rates``; never returns -inf."""
    return np.log(aggregate_rates(rates, intervals)).rename("log_rate")


def interval_membership_matrix(intervals: pd.DataFrame, n_cells: int) -> np.ndarray:
    """
    Dense units x cells 0/1 matrix built from interval bounds alone.

    Row u has ones at columns min_new_id(u) - 1 .. max_new_id(u) - 1, so
    ``matrix @ per_cell`` gives per-unit range sums.
    """
    matrix = np.zeros((len(intervals), n_cells), dtype=float)
    for row, (lo, hi) in enumerate(_ranges(intervals, n_cells)):
        matrix[row, lo:hi] = 1.0
    return matrix


def aggregate_units(
    cells: pd.DataFrame,
    reindexing: Reindexing,
    covariate_cols: Sequence[str],
    response_col: Optional[str] = None,
    rate_col: Optional[str] = None,
) -> pd.DataFrame:
    """
    Build the unit table consumed by the aggregated models.

    Args:
        cells: Cell table (any order) with ``cell_id`` and the named columns.
        reindexing: Result of ``reindex_cells`` over the same cells.
        covariate_cols: Covariates to average per unit.
        response_col: Optional per-cell count column to sum per unit.
        rate_col: Optional per-cell rate column; adds ``rate`` and ``log_rate``.

    Returns:
        DataFrame with one row per unit (in interval order) holding
        ``unit_id``, the interval bounds, ``n_cells``, the summed response
        under ``response_col``, and ``mean_<cov>`` columns.
    """
    ordered = reorder_cells(cells, reindexing)
    intervals = reindexing.intervals

    units = intervals.copy()
    if response_col is not None:
        units[response_col] = aggregate_response(ordered[response_col].to_numpy(), intervals)
    if rate_col is not None:
        unit_rates = aggregate_rates(ordered[rate_col].to_numpy(), intervals)
        units["rate"] = unit_rates
        units["log_rate"] = np.log(unit_rates)
    units = units.join(aggregate_covariates(ordered[list(covariate_cols)], intervals))

    logger.info(f"Aggregated {len(ordered)} cells to {len(units)} units")
    return units.reset_index()
