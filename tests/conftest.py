"""
Shared fixtures: small synthetic rasters and a practical-style data directory.

Run with: python -m pytest tests -v
"""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest
from rasterio.crs import CRS
from rasterio.transform import from_origin

from prioritization.constants import (
    COST_FILE,
    LOCKED_IN_FILE,
    LOCKED_OUT_FILE,
    SPECIES_FILE,
)
from prioritization.problem import ConservationProblem
from prioritization.raster import Raster, write_raster

UTM = CRS.from_epsg(32631)


def raster(values, res=1.0, crs=UTM, names=None, origin=(0.0, 100.0)):
    values = np.asarray(values, dtype=float)
    return Raster(
        values=values,
        transform=from_origin(origin[0], origin[1], res, res),
        crs=crs,
        names=names or [],
    )


@pytest.fixture
def make_raster():
    return raster


@pytest.fixture
def make_problem():
    """Problem factory from a cost grid and a list of feature grids."""

    def _make(cost, features, names=None):
        cost_raster = raster(cost)
        feature_raster = raster(np.stack([np.asarray(f, dtype=float) for f in features]))
        return ConservationProblem.from_rasters(cost_raster, feature_raster, names)

    return _make


@pytest.fixture
def strip_problem(make_problem):
    """
    Four units in a row with costs 1-4.
    f0 lives in units 0 and 1, f1 in units 2 and 3.
    """
    cost = [[1.0, 2.0, 3.0, 4.0]]
    features = [
        [[1.0, 1.0, 0.0, 0.0]],
        [[0.0, 0.0, 1.0, 1.0]],
    ]
    return make_problem(cost, features, ["f0", "f1"])


@pytest.fixture
def hundred_unit_problem(make_problem):
    """
    10 x 10 grid with unit cost and five features with nested ranges:
    f0 row 0, f1 row 1, f2 rows 2-4, f3 rows 5-9, f4 everywhere.
    """
    rows = np.arange(10)[:, None] * np.ones((1, 10))
    features = [
        (rows == 0).astype(float),
        (rows == 1).astype(float),
        ((rows >= 2) & (rows <= 4)).astype(float),
        (rows >= 5).astype(float),
        np.ones((10, 10)),
    ]
    return make_problem(np.ones((10, 10)), features, [f"f{i}" for i in range(5)])


@pytest.fixture
def varied_cost_problem(make_problem):
    """6 x 6 grid with uneven costs and three overlapping features."""
    r, c = np.mgrid[0:6, 0:6]
    cost = 1.0 + ((r * 7 + c * 3) % 5) * 0.25
    features = [
        (c < 3).astype(float),
        (r < 2).astype(float) * 2.0,
        ((r + c) % 3 == 0).astype(float) * 0.5,
    ]
    return make_problem(cost, features, ["left", "top", "diagonal"])


@pytest.fixture
def practical_data_dir(tmp_path):
    """
    GeoTIFFs laid out like the practical: species on a 6 x 6 grid (10 m),
    cost and protected areas on a 12 x 12 grid (5 m), cities on the species grid.
    The bottom-right coarse cell is outside the study area.
    """
    coarse = from_origin(0.0, 60.0, 10.0, 10.0)
    fine = from_origin(0.0, 60.0, 5.0, 5.0)

    r, c = np.mgrid[0:6, 0:6]
    species = np.stack(
        [
            (c < 3).astype(float),
            (r < 3).astype(float),
            (r == c).astype(float),
        ]
    )
    species[:, 5, 5] = np.nan
    write_raster(
        Raster(values=species, transform=coarse, crs=UTM, names=["sp_a", "sp_b", "sp_c"]),
        tmp_path / SPECIES_FILE,
    )

    fr, fc = np.mgrid[0:12, 0:12]
    cost = 1.0 + ((fr + fc) % 4).astype(float)
    cost[10:, 10:] = np.nan
    write_raster(Raster(values=cost, transform=fine, crs=UTM, names=["cost"]), tmp_path / COST_FILE)

    pas = np.full((12, 12), np.nan)
    pas[:4, :4] = 1.0
    write_raster(Raster(values=pas, transform=fine, crs=UTM, names=["pas"]), tmp_path / LOCKED_IN_FILE)

    cities = np.zeros((6, 6))
    cities[0, 0] = 1.0  # overlaps the protected areas
    cities[5, 0] = 1.0
    write_raster(
        Raster(values=cities, transform=coarse, crs=UTM, names=["cities"]),
        tmp_path / LOCKED_OUT_FILE,
    )
    return tmp_path
