"""
Raster layers used as planning inputs: reading, writing and resolution alignment.

Every layer is held as a float array of shape (bands, rows, cols) where
undefined cells (outside the study area, nodata) are NaN.
"""

from __future__ import annotations

import math
import warnings
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Sequence

import numpy as np
import rasterio
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.transform import Affine, array_bounds
from rasterio.warp import reproject, transform_bounds

AGGREGATION_FUNCTIONS = ("median", "mean", "sum", "min", "max", "modal")

_RESAMPLING_BY_FUN = {
    "median": Resampling.med,
    "mean": Resampling.average,
    "sum": Resampling.sum,
    "min": Resampling.min,
    "max": Resampling.max,
    "modal": Resampling.mode,
    "nearest": Resampling.nearest,
}


class SpatialMismatchError(ValueError):
    """Raised when layers do not share a grid, or cannot be brought onto one."""


@dataclass(eq=False)
class Raster:
    values: np.ndarray
    transform: Affine
    crs: CRS | None = None
    names: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        values = np.asarray(self.values, dtype=np.float64)
        if values.ndim == 2:
            values = values[np.newaxis, :, :]
        if values.ndim != 3:
            raise ValueError(
                f"Raster values must be 2-D or 3-D, got {values.ndim} dimensions."
            )
        self.values = values
        if not self.names:
            self.names = [f"band_{i + 1}" for i in range(values.shape[0])]
        if len(self.names) != values.shape[0]:
            raise ValueError(
                f"Got {len(self.names)} band names for {values.shape[0]} bands."
            )

    @property
    def count(self) -> int:
        return self.values.shape[0]

    @property
    def shape(self) -> tuple[int, int]:
        return self.values.shape[1], self.values.shape[2]

    @property
    def res(self) -> tuple[float, float]:
        return abs(self.transform.a), abs(self.transform.e)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """(left, bottom, right, top) of the grid."""
        west, south, east, north = array_bounds(*self.shape, self.transform)
        return west, south, east, north

    def band(self, index: int = 0) -> np.ndarray:
        return self.values[index]


def read_raster(path: str | Path) -> Raster:
    """Read every band of a raster file; nodata cells become NaN."""
    path = Path(path)
    with rasterio.open(path) as ds:
        data = ds.read(masked=True).astype(np.float64).filled(np.nan)
        names = [
            desc if desc else f"{path.stem}_{i + 1}"
            for i, desc in enumerate(ds.descriptions)
        ]
        return Raster(values=data, transform=ds.transform, crs=ds.crs, names=names)


def write_raster(raster: Raster, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    rows, cols = raster.shape
    profile = {
        "driver": "GTiff",
        "height": rows,
        "width": cols,
        "count": raster.count,
        "dtype": "float64",
        "transform": raster.transform,
        "nodata": np.nan,
    }
    if raster.crs is not None:
        profile["crs"] = raster.crs
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(raster.values)
        for i, name in enumerate(raster.names, start=1):
            dst.set_band_description(i, name)
    return path


def _nan_modal(blocks: np.ndarray) -> np.ndarray:
    """Most frequent finite value along the last axis; ties go to the smallest."""
    out = np.full(blocks.shape[:-1], np.nan)
    best_count = np.zeros(blocks.shape[:-1], dtype=np.int64)
    finite = blocks[np.isfinite(blocks)]
    for value in np.unique(finite):
        count = np.sum(blocks == value, axis=-1)
        better = count > best_count
        out[better] = value
        best_count[better] = count[better]
    return out


def aggregate(raster: Raster, fact: int, fun: str = "median") -> Raster:
    """
    Aggregate blocks of `fact` x `fact` cells into one cell, ignoring NaN.
    Partial blocks on the right/bottom edges are kept.
    """
    if fun not in AGGREGATION_FUNCTIONS:
        raise ValueError(
            f"Unknown aggregation function '{fun}'. Use one of {AGGREGATION_FUNCTIONS}."
        )
    fact = int(fact)
    if fact < 1:
        raise ValueError(f"Aggregation factor must be >= 1, got {fact}.")
    if fact == 1:
        return replace(raster, values=raster.values.copy(), names=list(raster.names))

    bands, rows, cols = raster.values.shape
    out_rows = math.ceil(rows / fact)
    out_cols = math.ceil(cols / fact)
    padded = np.full((bands, out_rows * fact, out_cols * fact), np.nan)
    padded[:, :rows, :cols] = raster.values
    blocks = (
        padded.reshape(bands, out_rows, fact, out_cols, fact)
        .transpose(0, 1, 3, 2, 4)
        .reshape(bands, out_rows, out_cols, fact * fact)
    )

    with warnings.catch_warnings():
        # All-NaN blocks legitimately aggregate to NaN
        warnings.simplefilter("ignore", RuntimeWarning)
        if fun == "median":
            values = np.nanmedian(blocks, axis=-1)
        elif fun == "mean":
            values = np.nanmean(blocks, axis=-1)
        elif fun == "min":
            values = np.nanmin(blocks, axis=-1)
        elif fun == "max":
            values = np.nanmax(blocks, axis=-1)
        elif fun == "sum":
            values = np.nansum(blocks, axis=-1)
            values[np.all(np.isnan(blocks), axis=-1)] = np.nan
        else:
            values = _nan_modal(blocks)

    return Raster(
        values=values,
        transform=raster.transform * Affine.scale(fact, fact),
        crs=raster.crs,
        names=list(raster.names),
    )


def _bounds_in_crs(raster: Raster, crs: CRS | None) -> tuple[float, float, float, float]:
    if raster.crs is None or crs is None or raster.crs == crs:
        return raster.bounds
    return transform_bounds(raster.crs, crs, *raster.bounds)


def _overlaps(a: Sequence[float], b: Sequence[float]) -> bool:
    return a[0] < b[2] and b[0] < a[2] and a[1] < b[3] and b[1] < a[3]


def align_to(source: Raster, target: Raster, fun: str = "median") -> Raster:
    """Resample `source` onto the grid (resolution, extent, CRS) of `target`."""
    if fun not in _RESAMPLING_BY_FUN:
        raise ValueError(
            f"Unknown resampling function '{fun}'. Use one of {sorted(_RESAMPLING_BY_FUN)}."
        )
    if (source.crs is None) != (target.crs is None):
        raise SpatialMismatchError(
            "Cannot align a raster without a CRS to a raster with a CRS "
            f"(source: {source.crs}, target: {target.crs})."
        )
    if not _overlaps(_bounds_in_crs(source, target.crs), target.bounds):
        raise SpatialMismatchError(
            f"Source extent {source.bounds} does not overlap target extent {target.bounds}."
        )

    rows, cols = target.shape
    destination = np.full((source.count, rows, cols), np.nan)
    # Without any CRS both grids are assumed to share the same coordinate space
    crs = target.crs if target.crs is not None else CRS.from_epsg(3857)
    for i in range(source.count):
        reproject(
            source=source.values[i],
            destination=destination[i],
            src_transform=source.transform,
            src_crs=source.crs if source.crs is not None else crs,
            dst_transform=target.transform,
            dst_crs=crs,
            src_nodata=np.nan,
            dst_nodata=np.nan,
            resampling=_RESAMPLING_BY_FUN[fun],
        )
    return Raster(
        values=destination,
        transform=target.transform,
        crs=target.crs,
        names=list(source.names),
    )


def _same_crs(a: CRS | None, b: CRS | None) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return a == b


def check_alignment(a: Raster, b: Raster, *, tolerance: float = 1e-6) -> list[str]:
    """Return a description of every grid difference between two rasters."""
    problems: list[str] = []
    if not _same_crs(a.crs, b.crs):
        problems.append(f"CRS differs: {a.crs} vs {b.crs}")
    if not np.allclose(a.res, b.res, rtol=tolerance, atol=0.0):
        problems.append(f"resolution differs: {a.res} vs {b.res}")
    scale = max(a.res + b.res)
    if not np.allclose(a.bounds, b.bounds, rtol=0.0, atol=tolerance * scale):
        problems.append(f"extent differs: {a.bounds} vs {b.bounds}")
    if a.shape != b.shape:
        problems.append(f"shape differs: {a.shape} vs {b.shape}")
    return problems


def assert_aligned(reference: Raster, *others: Raster, names: Sequence[str] | None = None) -> None:
    """Hard precondition: every layer must share the reference grid."""
    labels = list(names) if names is not None else [f"layer {i + 1}" for i in range(len(others))]
    messages = []
    for label, other in zip(labels, others):
        problems = check_alignment(reference, other)
        if problems:
            messages.append(f"{label}: " + "; ".join(problems))
    if messages:
        raise SpatialMismatchError(
            "Layers are not aligned with the reference grid:\n  " + "\n  ".join(messages)
        )


def describe(raster: Raster) -> str:
    left, bottom, right, top = raster.bounds
    crs = raster.crs.to_string() if raster.crs is not None else "undefined"
    return (
        f"CRS: {crs}\n"
        f"Extent: {left}, {right}, {bottom}, {top} (xmin, xmax, ymin, ymax)\n"
        f"Resolution: {raster.res[0]}, {raster.res[1]}\n"
        f"Dimensions: {raster.shape[0]} rows, {raster.shape[1]} cols, {raster.count} bands"
    )


def global_sum(raster: Raster, band: int = 0) -> float:
    """NaN-ignoring total of one band."""
    return float(np.nansum(raster.values[band]))


def band_sum(raster: Raster, name: str = "richness") -> Raster:
    """Per-cell sum across bands (e.g. species richness); NaN where every band is NaN."""
    values = np.nansum(raster.values, axis=0)
    values[np.all(np.isnan(raster.values), axis=0)] = np.nan
    return Raster(values=values, transform=raster.transform, crs=raster.crs, names=[name])


def fill_missing(raster: Raster, mask: Raster, value: float = 0.0) -> Raster:
    """Set `value` where `raster` is undefined but `mask` is defined."""
    assert_aligned(mask, raster, names=["filled layer"])
    defined = np.isfinite(mask.values[0])
    values = raster.values.copy()
    for i in range(values.shape[0]):
        values[i][defined & np.isnan(values[i])] = value
    return replace(raster, values=values, names=list(raster.names))


def uniform_like(raster: Raster, value: float = 1.0, name: str | None = None) -> Raster:
    """Constant `value` where the first band is defined, NaN elsewhere."""
    values = np.where(np.isfinite(raster.values[0]), value, np.nan)
    return Raster(
        values=values,
        transform=raster.transform,
        crs=raster.crs,
        names=[name or f"{raster.names[0]}_uniform"],
    )


def select_bands(raster: Raster, indices: Sequence[int]) -> Raster:
    indices = list(indices)
    return Raster(
        values=raster.values[indices],
        transform=raster.transform,
        crs=raster.crs,
        names=[raster.names[i] for i in indices],
    )
