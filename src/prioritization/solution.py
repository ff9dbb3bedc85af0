from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from .constants import OPTIMALITY_TOLERANCE, SELECTION_THRESHOLD


class SolverStatus(str, Enum):
    OPTIMAL = "optimal"
    # feasible, stopped inside the requested optimality gap
    SUBOPTIMAL = "suboptimal"
    # time, memory, node or work limit hit (a selection may still exist)
    LIMIT_REACHED = "limit_reached"
    INFEASIBLE = "infeasible"
    ERROR = "error"


class SolverStatusError(RuntimeError):
    """Raised when a selection is required but the solver did not produce one."""


@dataclass
class Solution:
    selection: np.ndarray | None
    status: SolverStatus
    solver: str
    objective: float | None = None
    gap: float | None = None
    runtime: float = 0.0
    values: np.ndarray | None = field(default=None, repr=False)

    @property
    def has_selection(self) -> bool:
        return self.selection is not None

    @property
    def is_optimal(self) -> bool:
        return self.status is SolverStatus.OPTIMAL

    def require_selection(self) -> np.ndarray:
        if self.selection is None:
            raise SolverStatusError(
                f"{self.solver} returned no solution (status: {self.status.value})."
            )
        return self.selection


def relative_gap(objective: float | None, bound: float | None) -> float | None:
    """Relative distance between the incumbent and the best bound."""
    if objective is None or bound is None:
        return None
    if not (np.isfinite(objective) and np.isfinite(bound)):
        return None
    difference = abs(objective - bound)
    if difference <= OPTIMALITY_TOLERANCE:
        return 0.0
    return difference / max(abs(objective), 1e-10)


def classify_feasible(
    gap: float | None, *, limit_reached: bool, proven_optimal: bool
) -> SolverStatus:
    """Status for a run that produced a selection."""
    if limit_reached and not proven_optimal:
        return SolverStatus.LIMIT_REACHED
    if gap is not None and gap > OPTIMALITY_TOLERANCE:
        return SolverStatus.SUBOPTIMAL
    if proven_optimal:
        return SolverStatus.OPTIMAL
    return SolverStatus.SUBOPTIMAL


def selection_from_values(values: np.ndarray, n_units: int) -> np.ndarray:
    return (np.asarray(values[:n_units]) > SELECTION_THRESHOLD).astype(np.int8)
