from __future__ import annotations

from dataclasses import dataclass

import geopandas as gpd
import numpy as np
from rasterio.crs import CRS
from rasterio.transform import Affine
from shapely.geometry import box

from .raster import Raster


def parse_grid_id(grid_id: str) -> tuple[int, int]:
    """Extract row and column from grid_id format 'cell_row_col'."""
    parts = grid_id.split("_")
    return int(parts[1]), int(parts[2])


def format_grid_id(row: int, col: int) -> str:
    return f"cell_{row}_{col}"


@dataclass(eq=False)
class PlanningUnits:
    """
    Raster cells eligible for selection, i.e. every cell with a defined cost.
    Units are ordered row-major, which is also the order of decision variables.
    """

    rows: np.ndarray
    cols: np.ndarray
    grid_shape: tuple[int, int]
    transform: Affine
    crs: CRS | None = None

    @classmethod
    def from_raster(cls, cost: Raster) -> "PlanningUnits":
        rows, cols = np.nonzero(np.isfinite(cost.values[0]))
        return cls(
            rows=rows,
            cols=cols,
            grid_shape=cost.shape,
            transform=cost.transform,
            crs=cost.crs,
        )

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def cell_width(self) -> float:
        return abs(self.transform.a)

    @property
    def cell_height(self) -> float:
        return abs(self.transform.e)

    @property
    def grid_ids(self) -> list[str]:
        return [format_grid_id(r, c) for r, c in zip(self.rows, self.cols)]

    def index_grid(self) -> np.ndarray:
        """Grid of unit indices, -1 outside the study area."""
        index = np.full(self.grid_shape, -1, dtype=np.int64)
        index[self.rows, self.cols] = np.arange(len(self))
        return index

    def index_of(self, grid_id: str) -> int:
        row, col = parse_grid_id(grid_id)
        idx = int(self.index_grid()[row, col]) if self._inside(row, col) else -1
        if idx < 0:
            raise KeyError(f"{grid_id} is not a planning unit.")
        return idx

    def _inside(self, row: int, col: int) -> bool:
        return 0 <= row < self.grid_shape[0] and 0 <= col < self.grid_shape[1]

    def values_from(self, raster: Raster, fill: float | None = 0.0) -> np.ndarray:
        """Per-unit values of every band, shape (bands, units)."""
        if raster.shape != self.grid_shape:
            raise ValueError(
                f"Raster shape {raster.shape} does not match planning grid {self.grid_shape}."
            )
        values = raster.values[:, self.rows, self.cols]
        if fill is not None:
            values = np.where(np.isnan(values), fill, values)
        return values

    def to_grid(self, values: np.ndarray, fill: float = np.nan) -> np.ndarray:
        """Scatter a per-unit vector back onto the raster grid."""
        values = np.asarray(values, dtype=np.float64)
        if values.shape != (len(self),):
            raise ValueError(
                f"Expected {len(self)} values (one per planning unit), got {values.shape}."
            )
        grid = np.full(self.grid_shape, fill, dtype=np.float64)
        grid[self.rows, self.cols] = values
        return grid

    def to_raster(self, values: np.ndarray, name: str = "solution") -> Raster:
        return Raster(
            values=self.to_grid(values),
            transform=self.transform,
            crs=self.crs,
            names=[name],
        )

    def adjacent_pairs(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Rook neighbours as (unit_i, unit_j, shared_edge_length) with i < j.
        Horizontal neighbours share a vertical edge (cell height) and vice versa.
        """
        index = self.index_grid()
        first: list[np.ndarray] = []
        second: list[np.ndarray] = []
        lengths: list[np.ndarray] = []

        # east neighbour
        left, right = index[:, :-1], index[:, 1:]
        both = (left >= 0) & (right >= 0)
        first.append(left[both])
        second.append(right[both])
        lengths.append(np.full(int(both.sum()), self.cell_height))

        # south neighbour
        top, bottom = index[:-1, :], index[1:, :]
        both = (top >= 0) & (bottom >= 0)
        first.append(top[both])
        second.append(bottom[both])
        lengths.append(np.full(int(both.sum()), self.cell_width))

        i = np.concatenate(first)
        j = np.concatenate(second)
        length = np.concatenate(lengths)
        lo, hi = np.minimum(i, j), np.maximum(i, j)
        return lo, hi, length

    def geodataframe(self, **columns: np.ndarray) -> gpd.GeoDataFrame:
        """One square polygon per planning unit plus optional per-unit columns."""
        geometries = []
        for row, col in zip(self.rows, self.cols):
            x0, y0 = self.transform * (int(col), int(row))
            x1, y1 = self.transform * (int(col) + 1, int(row) + 1)
            geometries.append(box(min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1)))
        data = {"grid_id": self.grid_ids}
        for name, values in columns.items():
            data[name] = np.asarray(values)
        return gpd.GeoDataFrame(data, geometry=geometries, crs=self.crs)
