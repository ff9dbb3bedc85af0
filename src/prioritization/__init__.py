from .problem import MIN_SET, MIN_SHORTFALL, ConservationProblem, SolverSettings
from .raster import (
    Raster,
    SpatialMismatchError,
    aggregate,
    align_to,
    assert_aligned,
    read_raster,
    write_raster,
)
from .solution import Solution, SolverStatus, SolverStatusError

__all__ = [
    "ConservationProblem",
    "SolverSettings",
    "MIN_SET",
    "MIN_SHORTFALL",
    "Raster",
    "SpatialMismatchError",
    "aggregate",
    "align_to",
    "assert_aligned",
    "read_raster",
    "write_raster",
    "Solution",
    "SolverStatus",
    "SolverStatusError",
]
