"""
Unit tests for the planning-unit graph and boundary penalty terms.

Run with: python -m pytest tests/test_boundary.py -v
"""

import itertools

import numpy as np
import pytest

from prioritization.boundary import (
    boundary_length,
    boundary_terms,
    build_boundary_graph,
    count_patches,
)
from prioritization.grid import PlanningUnits, format_grid_id, parse_grid_id


@pytest.fixture
def square_units(make_raster):
    return PlanningUnits.from_raster(make_raster(np.ones((2, 2))))


class TestPlanningUnits:
    def test_units_skip_undefined_cost(self, make_raster):
        cost = np.ones((3, 3))
        cost[1, 1] = np.nan
        units = PlanningUnits.from_raster(make_raster(cost))
        assert len(units) == 8
        assert "cell_1_1" not in units.grid_ids
        with pytest.raises(KeyError):
            units.index_of("cell_1_1")
        assert units.index_of("cell_2_2") == 7

    def test_to_grid_restores_layout(self, make_raster):
        cost = np.ones((2, 3))
        cost[0, 2] = np.nan
        units = PlanningUnits.from_raster(make_raster(cost))
        grid = units.to_grid(np.arange(len(units)))
        assert np.isnan(grid[0, 2])
        assert grid[1, 2] == 4.0

    def test_grid_id_helpers(self):
        assert parse_grid_id(format_grid_id(3, 7)) == (3, 7)

    def test_geodataframe_polygons(self, square_units):
        gdf = square_units.geodataframe(value=np.arange(4))
        assert list(gdf["grid_id"]) == square_units.grid_ids
        assert gdf.geometry.area.tolist() == pytest.approx([1.0] * 4)
        assert gdf.crs.to_epsg() == 32631


class TestBoundaryGraph:
    """Graph nodes carry exposed perimeter, edges carry shared length."""

    def test_two_by_two(self, square_units):
        G = build_boundary_graph(square_units)
        assert G.number_of_nodes() == 4
        assert G.number_of_edges() == 4
        assert all(G.nodes[n]["exposed"] == pytest.approx(2.0) for n in G.nodes)
        assert all(length == pytest.approx(1.0) for *_, length in G.edges(data="length"))

    def test_hole_counts_as_exposed(self, make_raster):
        cost = np.ones((3, 3))
        cost[1, 1] = np.nan
        units = PlanningUnits.from_raster(make_raster(cost))
        G = build_boundary_graph(units)
        top_middle = units.index_of("cell_0_1")
        assert G.nodes[top_middle]["exposed"] == pytest.approx(2.0)
        assert G.number_of_edges() == 8

    def test_rectangular_cells(self, make_raster):
        r = make_raster(np.ones((1, 2)))
        r.transform = r.transform * r.transform.scale(2.0, 1.0)
        units = PlanningUnits.from_raster(r)
        G = build_boundary_graph(units)
        (_, _, length), = G.edges(data="length")
        assert length == pytest.approx(1.0)
        assert G.nodes[0]["exposed"] == pytest.approx(2 * 2.0 + 1.0)


class TestBoundaryLength:
    def test_single_cell(self, square_units):
        G = build_boundary_graph(square_units)
        selection = np.array([1, 0, 0, 0])
        assert boundary_length(G, selection, edge_factor=1.0) == pytest.approx(4.0)
        assert boundary_length(G, selection, edge_factor=0.5) == pytest.approx(3.0)

    def test_whole_block(self, square_units):
        G = build_boundary_graph(square_units)
        assert boundary_length(G, np.ones(4), edge_factor=1.0) == pytest.approx(8.0)
        assert boundary_length(G, np.zeros(4)) == 0.0

    def test_linear_terms_match_perimeter(self, make_raster):
        """penalty * boundary_length equals the linearized objective for every selection."""
        cost = np.ones((2, 3))
        cost[0, 2] = np.nan
        units = PlanningUnits.from_raster(make_raster(cost))
        G = build_boundary_graph(units)
        penalty, edge_factor = 0.5, 0.3
        terms = boundary_terms(G, penalty, edge_factor)
        assert terms.n_pairs == G.number_of_edges()

        for bits in itertools.product([0, 1], repeat=len(units)):
            x = np.array(bits)
            linear = terms.unit_coefficients @ x + np.sum(
                terms.pair_coefficients * x[terms.pair_first] * x[terms.pair_second]
            )
            expected = penalty * boundary_length(G, x, edge_factor)
            assert linear == pytest.approx(expected), f"selection {bits}"


class TestPatches:
    def test_diagonal_cells_are_separate_patches(self, square_units):
        G = build_boundary_graph(square_units)
        assert count_patches(G, np.array([1, 0, 0, 1])) == 2
        assert count_patches(G, np.array([1, 1, 0, 1])) == 1
        assert count_patches(G, np.zeros(4)) == 0
