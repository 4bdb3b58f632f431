"""
Contiguous reindexing of grid cells grouped by reporting unit.

The models consume only the (min, max) bounds of each unit's block of cells,
so the cells of one unit must occupy one unbroken run of new identifiers.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Hashable, Iterable, Mapping, Optional, Union

import numpy as np
import pandas as pd

from ipp_abundance.errors import (
    EmptyUnitError,
    IntervalError,
    PartitionError,
    UnassignedCellError,
    UnknownUnitError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Reindexing:
    """Result of grouping cells by unit and renumbering them 1..N.

    Attributes:
        assignment: Unit of each cell, indexed by original cell_id.
        new_cell_id: New identifier of each cell, indexed by original cell_id.
        order: Original cell ids listed in new-id order (order[k] has new id k + 1).
        intervals: One row per unit (index ``unit_id``) with columns
            ``min_new_id``, ``max_new_id`` and ``n_cells``.

    The frozen dataclass only fixes the attribute bindings. The tables and the
    ``order`` array are shared with every consumer and must be treated as
    read-only; ``order`` is flagged non-writeable and ``members`` returns a copy.
    """

    assignment: pd.Series
    new_cell_id: pd.Series
    order: np.ndarray
    intervals: pd.DataFrame

    @property
    def n_cells(self) -> int:
        return len(self.order)

    @property
    def n_units(self) -> int:
        return len(self.intervals)

    def members(self, unit_id: Hashable) -> np.ndarray:
        """Original cell ids of a unit, in new-id order."""
        row = self.intervals.loc[unit_id]
        return self.order[int(row["min_new_id"]) - 1 : int(row["max_new_id"])].copy()


def _as_assignment(assignment: Union[pd.Series, Mapping[Any, Any]]) -> pd.Series:
    if isinstance(assignment, pd.Series):
        series = assignment
    else:
        series = pd.Series(dict(assignment), dtype=object)

    if not series.index.is_unique:
        duplicated = series.index[series.index.duplicated()].unique().tolist()
        raise PartitionError(f"Duplicate cell ids in assignment: {duplicated}")

    return series.rename_axis("cell_id").rename("unit_id").sort_index()


def natural_order(keys: Iterable[Any]) -> list[Any]:
    """Natural order when keys are comparable, otherwise first-encountered order."""
    keys = list(keys)
    try:
        return sorted(keys)
    except TypeError:
        return keys


def reindex_cells(
    assignment: Union[pd.Series, Mapping[Any, Any]],
    units: Optional[Iterable[Hashable]] = None,
) -> Reindexing:
    """
    Renumber cells so that every unit owns a contiguous block of new ids.

    Cells are sorted by unit (tie-break: original cell_id) and numbered 1..N
    in that order. Unit order is the natural sort order of the unit keys, or
    first-encountered order (by cell_id) when the keys are not comparable.

    Args:
        assignment: Unit of each cell, keyed by original cell_id.
        units: Declared unit set. When given, every declared unit must own
            at least one cell and no cell may reference an undeclared unit.

    Returns:
        Reindexing with the new ids and the per-unit interval table.

    Raises:
        UnassignedCellError: A cell has no unit (missing value).
        UnknownUnitError: A cell references a unit outside ``units``.
        EmptyUnitError: A declared unit owns no cells.
    """
    series = _as_assignment(assignment)

    missing = series.isna()
    if missing.any():
        raise UnassignedCellError(series.index[missing].tolist())

    present = list(pd.unique(series.to_numpy()))

    if units is not None:
        declared = list(dict.fromkeys(units))
        declared_set = set(declared)
        unknown = [u for u in present if u not in declared_set]
        if unknown:
            raise UnknownUnitError(unknown)
        present_set = set(present)
        empty = [u for u in declared if u not in present_set]
        if empty:
            raise EmptyUnitError(empty)
        unit_order = natural_order(declared)
    else:
        unit_order = natural_order(present)

    rank = {unit: position for position, unit in enumerate(unit_order)}
    frame = pd.DataFrame(
        {
            "cell_id": series.index.to_numpy(),
            "unit_rank": [rank[u] for u in series.to_numpy()],
        }
    )
    frame = frame.sort_values(["unit_rank", "cell_id"]).reset_index(drop=True)
    frame["new_cell_id"] = np.arange(1, len(frame) + 1)

    counts = frame.groupby("unit_rank", sort=True).size().to_numpy()
    max_ids = np.cumsum(counts)
    intervals = pd.DataFrame(
        {
            "min_new_id": max_ids - counts + 1,
            "max_new_id": max_ids,
            "n_cells": counts,
        },
        index=pd.Index(unit_order, name="unit_id"),
    )
    validate_intervals(intervals, len(frame))

    new_cell_id = (
        pd.Series(frame["new_cell_id"].to_numpy(), index=frame["cell_id"].to_numpy())
        .reindex(series.index)
        .rename("new_cell_id")
    )

    order = frame["cell_id"].to_numpy()
    order.flags.writeable = False

    logger.info(f"Reindexed {len(frame)} cells into {len(intervals)} contiguous unit blocks")
    return Reindexing(
        assignment=series,
        new_cell_id=new_cell_id,
        order=order,
        intervals=intervals,
    )


def validate_intervals(intervals: pd.DataFrame, n_cells: int) -> None:
    """
    Check that unit intervals are well formed and tile 1..n_cells exactly.

    Args:
        intervals: Table with ``min_new_id`` and ``max_new_id`` columns
            (and optionally ``n_cells``), one row per unit.
        n_cells: Total number of cells.

    Raises:
        IntervalError: A range is inverted, out of bounds, overlaps another
            range, leaves a gap, or disagrees with its ``n_cells``.
    """
    missing_cols = [c for c in ("min_new_id", "max_new_id") if c not in intervals.columns]
    if missing_cols:
        raise IntervalError(f"Interval table is missing columns: {missing_cols}")
    if intervals.empty:
        raise IntervalError("Interval table has no units")

    lo = intervals["min_new_id"].to_numpy(dtype=np.int64)
    hi = intervals["max_new_id"].to_numpy(dtype=np.int64)

    inverted = lo > hi
    if inverted.any():
        raise IntervalError(
            f"Inverted interval(s) (min > max) for unit(s): {intervals.index[inverted].tolist()}"
        )

    outside = (lo < 1) | (hi > n_cells)
    if outside.any():
        raise IntervalError(
            f"Interval(s) outside 1..{n_cells} for unit(s): {intervals.index[outside].tolist()}"
        )

    if "n_cells" in intervals.columns:
        sizes = intervals["n_cells"].to_numpy(dtype=np.int64)
        mismatch = (hi - lo + 1) != sizes
        if mismatch.any():
            raise IntervalError(
                f"Interval length differs from n_cells for unit(s): {intervals.index[mismatch].tolist()}"
            )

    by_start = np.argsort(lo, kind="stable")
    lo, hi = lo[by_start], hi[by_start]
    if lo[0] != 1 or hi[-1] != n_cells or np.any(lo[1:] != hi[:-1] + 1):
        raise IntervalError(f"Intervals do not tile 1..{n_cells} without gaps or overlaps")
