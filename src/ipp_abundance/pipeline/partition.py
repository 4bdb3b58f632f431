"""
Irregular reporting units over the cell grid.

Units are Voronoi polygons clipped to the study rectangle. Cells are
assigned to units with a spatial join of their centroids against the
polygons.
"""
from __future__ import annotations

import logging
from typing import Dict, Hashable, Mapping, Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
import shapely
from shapely.geometry import MultiPoint, Point, Polygon, box
from shapely.geometry.base import BaseGeometry

from ipp_abundance.errors import UnassignedCellError
from ipp_abundance.pipeline.reindex import natural_order

logger = logging.getLogger(__name__)

Bounds = Tuple[float, float, float, float]


def grid_bounds(cells: pd.DataFrame, cell_size: float = 1.0) -> Bounds:
    """(xmin, ymin, xmax, ymax) of a grid built by ``build_cell_grid``."""
    half = cell_size / 2.0
    return (
        float(cells["x"].min() - half),
        float(cells["y"].min() - half),
        float(cells["x"].max() + half),
        float(cells["y"].max() + half),
    )


def voronoi_polygons(seeds: np.ndarray, bounds: Bounds) -> Dict[int, Polygon]:
    """
    Voronoi cells of ``seeds`` clipped to a rectangle.

    Args:
        seeds: Array of shape (n_units, 2) of distinct points inside ``bounds``.
        bounds: (xmin, ymin, xmax, ymax).

    Returns:
        Mapping unit_id (1..n_units, in seed order) -> shapely polygon.
    """
    seeds = np.asarray(seeds, dtype=float).reshape(-1, 2)
    if len(np.unique(seeds, axis=0)) < len(seeds):
        raise ValueError("Voronoi seeds must be distinct")

    frame = box(*bounds)
    if len(seeds) == 1:
        return {1: frame}

    regions = list(shapely.voronoi_polygons(MultiPoint(seeds), extend_to=frame).geoms)

    polygons: Dict[int, Polygon] = {}
    for i, (x, y) in enumerate(seeds):
        # regions come back in no particular order
        seed = Point(x, y)
        region = next(r for r in regions if r.covers(seed))
        polygons[i + 1] = region.intersection(frame)
    return polygons


def random_unit_polygons(
    cells: pd.DataFrame,
    n_units: int,
    rng: np.random.Generator,
    cell_size: float = 1.0,
) -> Dict[int, Polygon]:
    """
    Irregular polygons tiling the grid, one per unit.

    Seeds are the centroids of ``n_units`` distinct random cells, jittered by
    at most a quarter cell, so every polygon contains its seed cell's centroid
    and no centroid falls on a polygon edge.
    """
    if not 0 < n_units <= len(cells):
        raise ValueError(f"n_units must be in 1..{len(cells)}, got {n_units}")

    chosen = rng.choice(len(cells), size=n_units, replace=False)
    seeds = cells[["x", "y"]].to_numpy(dtype=float)[chosen]
    seeds = seeds + rng.uniform(-0.25, 0.25, size=seeds.shape) * cell_size
    polygons = voronoi_polygons(seeds, grid_bounds(cells, cell_size))
    logger.info(f"Built {len(polygons)} reporting-unit polygons")
    return polygons


def assign_cells_to_polygons(
    cells: pd.DataFrame,
    polygons: Mapping[Hashable, BaseGeometry],
) -> pd.Series:
    """
    Assign each cell to the polygon containing its centroid.

    A centroid on a shared edge goes to the first of its polygons in key order.

    Args:
        cells: Cell table with 'cell_id', 'x' and 'y'.
        polygons: unit_id -> shapely polygon.

    Returns:
        Series of unit ids indexed by cell_id.

    Raises:
        UnassignedCellError: Some centroid lies in no polygon.
    """
    order = natural_order(polygons)
    units = gpd.GeoDataFrame(
        {"unit_rank": np.arange(len(order))},
        geometry=[polygons[unit_id] for unit_id in order],
    )
    units = units[~units.geometry.is_empty]
    points = gpd.GeoDataFrame(
        {"cell_id": cells["cell_id"].to_numpy()},
        geometry=gpd.points_from_xy(cells["x"], cells["y"]),
    )

    joined = gpd.sjoin(points, units, how="left", predicate="intersects")
    joined = joined.sort_values("unit_rank", kind="stable")
    joined = joined[~joined.index.duplicated(keep="first")].sort_index()

    ranks = joined["unit_rank"].to_numpy(dtype=float)
    pending = np.isnan(ranks)
    if pending.any():
        raise UnassignedCellError(cells["cell_id"].to_numpy()[pending].tolist())

    assignment = pd.Series(
        [order[int(rank)] for rank in ranks],
        index=pd.Index(cells["cell_id"].to_numpy(), name="cell_id"),
        name="unit_id",
    )
    counts = assignment.value_counts()
    logger.info(
        f"Assigned {len(assignment)} cells to {len(counts)} units "
        f"(cells per unit: min={counts.min()}, max={counts.max()})"
    )
    return assignment


def unit_adjacency(
    cells: pd.DataFrame,
    unit_order: Optional[Sequence[Hashable]] = None,
) -> pd.DataFrame:
    """
    Pairs of units that share at least one grid edge.

    Args:
        cells: Complete grid with 'row', 'col' and 'unit_id'.
        unit_order: Order defining the 0-based node positions; defaults to
            the sorted unit ids.

    Returns:
        DataFrame with 'node1' < 'node2' (positions) and 'unit1', 'unit2'
        (unit ids), one row per adjacent pair, sorted.
    """
    grid = cells.pivot(index="row", columns="col", values="unit_id").to_numpy()
    if pd.isna(grid).any():
        raise ValueError("unit_adjacency needs a complete grid with every cell assigned")

    order = list(unit_order) if unit_order is not None else natural_order(pd.unique(cells["unit_id"]))
    position = {unit: i for i, unit in enumerate(order)}

    edges = set()
    for a, b in ((grid[:, :-1], grid[:, 1:]), (grid[:-1, :], grid[1:, :])):
        differs = a != b
        for u, v in zip(a[differs], b[differs]):
            i, j = position[u], position[v]
            edges.add((min(i, j), max(i, j)))

    rows = sorted(edges)
    out = pd.DataFrame(rows, columns=["node1", "node2"], dtype=int)
    out["unit1"] = [order[i] for i in out["node1"]]
    out["unit2"] = [order[j] for j in out["node2"]]
    return out


def isolated_units(edges: pd.DataFrame, n_units: int) -> list[int]:
    """Node positions with no neighbour in ``edges``."""
    connected = set(edges["node1"]) | set(edges["node2"])
    return [i for i in range(n_units) if i not in connected]
