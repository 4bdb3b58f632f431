"""Unit tests for reporting-unit polygons, cell assignment and adjacency."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
import shapely
from shapely.geometry import Point, box

from ipp_abundance.errors import UnassignedCellError
from ipp_abundance.pipeline.grid import build_cell_grid
from ipp_abundance.pipeline.partition import (
    assign_cells_to_polygons,
    grid_bounds,
    isolated_units,
    random_unit_polygons,
    unit_adjacency,
    voronoi_polygons,
)
from ipp_abundance.pipeline.reindex import reindex_cells
from ipp_abundance.pipeline.simulate import make_rng


class TestVoronoiPolygons:
    """Clipped Voronoi tessellation."""

    def test_two_seeds_split_box(self) -> None:
        polygons = voronoi_polygons(np.array([[1.0, 1.0], [3.0, 1.0]]), (0.0, 0.0, 4.0, 2.0))

        assert sorted(polygons) == [1, 2]
        assert polygons[1].area == pytest.approx(4.0)
        assert polygons[2].area == pytest.approx(4.0)
        assert polygons[1].bounds[2] == pytest.approx(2.0)

    def test_polygons_tile_rectangle(self) -> None:
        seeds = make_rng(0).uniform(0, 10, size=(12, 2))

        polygons = voronoi_polygons(seeds, (0.0, 0.0, 10.0, 10.0))

        total = sum(p.area for p in polygons.values())
        assert total == pytest.approx(100.0)
        assert shapely.union_all(list(polygons.values())).area == pytest.approx(100.0)

    def test_polygons_follow_seed_order(self) -> None:
        seeds = make_rng(4).uniform(0, 10, size=(8, 2))

        polygons = voronoi_polygons(seeds, (0.0, 0.0, 10.0, 10.0))

        for unit_id, (x, y) in enumerate(seeds, start=1):
            assert polygons[unit_id].contains(Point(x, y))

    def test_single_seed_is_whole_box(self) -> None:
        polygons = voronoi_polygons(np.array([[1.0, 1.0]]), (0.0, 0.0, 4.0, 2.0))

        assert polygons[1].equals(box(0.0, 0.0, 4.0, 2.0))

    def test_duplicate_seeds(self) -> None:
        with pytest.raises(ValueError, match="distinct"):
            voronoi_polygons(np.array([[1.0, 1.0], [1.0, 1.0]]), (0.0, 0.0, 4.0, 2.0))


class TestAssignCells:
    """Point-in-polygon assignment of cell centroids."""

    def test_halves(self) -> None:
        cells = build_cell_grid(2, 4)
        polygons = voronoi_polygons(np.array([[1.0, 1.0], [3.0, 1.0]]), grid_bounds(cells))

        assignment = assign_cells_to_polygons(cells, polygons)

        assert assignment.index.name == "cell_id"
        assert list(assignment) == [1, 1, 2, 2, 1, 1, 2, 2]

    def test_uncovered_cell(self) -> None:
        cells = build_cell_grid(2, 4)
        polygons = {"west": box(0.0, 0.0, 2.0, 2.0)}

        with pytest.raises(UnassignedCellError) as excinfo:
            assign_cells_to_polygons(cells, polygons)

        assert excinfo.value.cell_ids == [3, 4, 7, 8]

    def test_boundary_goes_to_first_key(self) -> None:
        """Centroid (1.5, 0.5) lies on the edge shared by both units."""
        cells = build_cell_grid(1, 2)
        polygons = {"b": box(0.0, 0.0, 1.5, 1.0), "a": box(1.5, 0.0, 2.0, 1.0)}

        assignment = assign_cells_to_polygons(cells, polygons)

        assert list(assignment) == ["b", "a"]

    def test_random_partition_is_complete(self) -> None:
        """Every cell lands in exactly one unit and no unit is empty."""
        cells = build_cell_grid(15, 12)
        polygons = random_unit_polygons(cells, 10, make_rng(21))

        assignment = assign_cells_to_polygons(cells, polygons)
        result = reindex_cells(assignment, units=polygons.keys())

        assert len(assignment) == len(cells)
        assert result.n_units == 10
        assert result.intervals["n_cells"].sum() == len(cells)

    def test_too_many_units(self) -> None:
        cells = build_cell_grid(2, 2)

        with pytest.raises(ValueError):
            random_unit_polygons(cells, 5, make_rng(0))


class TestUnitAdjacency:
    """Edges between units sharing a grid edge."""

    def test_strip(self) -> None:
        cells = build_cell_grid(1, 3).assign(unit_id=[10, 20, 30])

        edges = unit_adjacency(cells)

        assert list(zip(edges["node1"], edges["node2"])) == [(0, 1), (1, 2)]
        assert list(edges["unit2"]) == [20, 30]

    def test_vertical_neighbours(self) -> None:
        cells = build_cell_grid(2, 2).assign(unit_id=[1, 1, 2, 2])

        edges = unit_adjacency(cells)

        assert len(edges) == 1
        assert (edges.loc[0, "unit1"], edges.loc[0, "unit2"]) == (1, 2)

    def test_custom_order(self) -> None:
        cells = build_cell_grid(1, 2).assign(unit_id=["b", "a"])

        edges = unit_adjacency(cells, unit_order=["b", "a"])

        assert (edges.loc[0, "unit1"], edges.loc[0, "unit2"]) == ("b", "a")

    def test_isolated_units(self) -> None:
        edges = pd.DataFrame({"node1": [0], "node2": [2]})

        assert isolated_units(edges, 4) == [1, 3]

    def test_incomplete_grid(self) -> None:
        cells = build_cell_grid(2, 2).assign(unit_id=[1, 1, 2, None])

        with pytest.raises(ValueError):
            unit_adjacency(cells)
