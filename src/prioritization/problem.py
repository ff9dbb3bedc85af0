"""
Conservation planning problem definition.

A problem is built step by step; every `add_*` call returns a new problem so
scenario variants can branch from a shared base:

    base = (
        ConservationProblem.from_rasters(cost, species)
        .add_min_shortfall_objective(budget)
        .add_relative_targets(0.3)
        .add_default_solver(gap=0.1)
    )
    with_pas = base.add_locked_in_constraints(protected_areas)
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from functools import cached_property
from typing import TYPE_CHECKING, Sequence

import numpy as np

from .constants import GAP, NUM_THREADS, SOLVER, SOLVERS, TIME_LIMIT_MS
from .grid import PlanningUnits
from .raster import Raster, assert_aligned

if TYPE_CHECKING:
    import networkx as nx

    from .solution import Solution

MIN_SET = "min_set"
MIN_SHORTFALL = "min_shortfall"


@dataclass(frozen=True)
class SolverSettings:
    name: str = SOLVER
    gap: float = GAP
    time_limit_ms: int | None = TIME_LIMIT_MS
    num_threads: int = NUM_THREADS
    verbose: bool = False


@dataclass(frozen=True)
class BoundaryPenalty:
    penalty: float
    edge_factor: float


@dataclass(frozen=True, eq=False)
class ConservationProblem:
    planning_units: PlanningUnits
    cost: np.ndarray
    features: np.ndarray
    feature_names: tuple[str, ...]
    objective: str | None = None
    budget: float | None = None
    target_kind: str | None = None
    target_values: np.ndarray | None = None
    feature_weights: np.ndarray | None = None
    locked_in: np.ndarray | None = None
    locked_out: np.ndarray | None = None
    boundary: BoundaryPenalty | None = None
    solver: SolverSettings = field(default_factory=SolverSettings)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_rasters(
        cls,
        cost: Raster,
        features: Raster,
        feature_names: Sequence[str] | None = None,
    ) -> "ConservationProblem":
        """Planning units are the cells with a defined cost; features are read on them."""
        assert_aligned(cost, features, names=["features"])
        planning_units = PlanningUnits.from_raster(cost)
        if len(planning_units) == 0:
            raise ValueError("The cost layer has no defined cells (no planning units).")

        unit_cost = planning_units.values_from(cost, fill=None)[0]
        amounts = planning_units.values_from(features, fill=0.0)
        if np.any(amounts < 0):
            raise ValueError("Feature amounts must be non-negative.")

        names = tuple(feature_names) if feature_names is not None else tuple(features.names)
        if len(names) != amounts.shape[0]:
            raise ValueError(
                f"Got {len(names)} feature names for {amounts.shape[0]} feature layers."
            )
        return cls(
            planning_units=planning_units,
            cost=unit_cost,
            features=amounts,
            feature_names=names,
        )

    # ------------------------------------------------------------------
    # Derived data
    # ------------------------------------------------------------------

    @property
    def n_units(self) -> int:
        return len(self.planning_units)

    @property
    def n_features(self) -> int:
        return self.features.shape[0]

    @property
    def feature_totals(self) -> np.ndarray:
        """Total amount of each feature over the planning units."""
        return self.features.sum(axis=1)

    @property
    def absolute_targets(self) -> np.ndarray:
        if self.target_values is None:
            raise ValueError("No targets set; use add_relative_targets() or add_absolute_targets().")
        if self.target_kind == "relative":
            return self.target_values * self.feature_totals
        return self.target_values.copy()

    @property
    def relative_targets(self) -> np.ndarray:
        totals = self.feature_totals
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.where(totals > 0, self.absolute_targets / totals, 0.0)

    @property
    def weights(self) -> np.ndarray:
        if self.feature_weights is None:
            return np.ones(self.n_features)
        return self.feature_weights

    @property
    def locked_in_mask(self) -> np.ndarray:
        if self.locked_in is None:
            return np.zeros(self.n_units, dtype=bool)
        return self.locked_in

    @property
    def locked_out_mask(self) -> np.ndarray:
        if self.locked_out is None:
            return np.zeros(self.n_units, dtype=bool)
        return self.locked_out

    @property
    def edge_factor(self) -> float:
        return self.boundary.edge_factor if self.boundary is not None else 1.0

    @cached_property
    def boundary_graph(self) -> "nx.Graph":
        from .boundary import build_boundary_graph

        return build_boundary_graph(self.planning_units)

    # ------------------------------------------------------------------
    # Objectives
    # ------------------------------------------------------------------

    def add_min_set_objective(self) -> "ConservationProblem":
        """Minimize total cost while meeting every target."""
        return replace(self, objective=MIN_SET, budget=None)

    def add_min_shortfall_objective(self, budget: float) -> "ConservationProblem":
        """Minimize the weighted relative target shortfall without exceeding `budget`."""
        budget = float(budget)
        if not np.isfinite(budget) or budget < 0:
            raise ValueError(f"Budget must be a finite non-negative number, got {budget}.")
        return replace(self, objective=MIN_SHORTFALL, budget=budget)

    # ------------------------------------------------------------------
    # Targets and weights
    # ------------------------------------------------------------------

    def _per_feature(self, values: float | Sequence[float], label: str) -> np.ndarray:
        array = np.asarray(values, dtype=np.float64)
        if array.ndim == 0:
            array = np.full(self.n_features, float(array))
        if array.shape != (self.n_features,):
            raise ValueError(
                f"Expected one {label} per feature ({self.n_features}), got {array.shape[0]}."
            )
        if np.any(~np.isfinite(array)) or np.any(array < 0):
            raise ValueError(f"Every {label} must be a finite non-negative number.")
        return array

    def add_relative_targets(self, targets: float | Sequence[float]) -> "ConservationProblem":
        """Targets as the fraction (0-1) of each feature's total amount."""
        values = self._per_feature(targets, "relative target")
        if np.any(values > 1):
            raise ValueError("Relative targets must lie between 0 and 1.")
        return replace(self, target_kind="relative", target_values=values)

    def add_absolute_targets(self, targets: float | Sequence[float]) -> "ConservationProblem":
        """Targets expressed in the feature's own units (e.g. number of cells)."""
        values = self._per_feature(targets, "absolute target")
        return replace(self, target_kind="absolute", target_values=values)

    def add_feature_weights(self, weights: float | Sequence[float]) -> "ConservationProblem":
        """Weights for the shortfall objective; heavier features are prioritized."""
        return replace(self, feature_weights=self._per_feature(weights, "feature weight"))

    # ------------------------------------------------------------------
    # Constraints
    # ------------------------------------------------------------------

    def _unit_mask(self, locked: Raster | np.ndarray) -> np.ndarray:
        """Convert a lock layer (raster, 2-D grid or per-unit vector) into a unit mask."""
        if isinstance(locked, Raster):
            if locked.shape != self.planning_units.grid_shape:
                raise ValueError(
                    f"Lock layer shape {locked.shape} does not match the planning grid "
                    f"{self.planning_units.grid_shape}."
                )
            values = self.planning_units.values_from(locked, fill=0.0)[0]
            return values >= 0.5
        array = np.asarray(locked)
        if array.shape == self.planning_units.grid_shape:
            array = array[self.planning_units.rows, self.planning_units.cols]
        if array.shape != (self.n_units,):
            raise ValueError(
                f"Lock mask must have one value per planning unit ({self.n_units}) "
                f"or match the grid {self.planning_units.grid_shape}."
            )
        return np.nan_to_num(array.astype(np.float64)) >= 0.5

    def add_locked_in_constraints(self, locked: Raster | np.ndarray) -> "ConservationProblem":
        """Force selection of units (e.g. existing protected areas)."""
        mask = self._unit_mask(locked) | self.locked_in_mask
        return replace(self, locked_in=mask)

    def add_locked_out_constraints(self, locked: Raster | np.ndarray) -> "ConservationProblem":
        """Forbid selection of units (e.g. cities)."""
        mask = self._unit_mask(locked) | self.locked_out_mask
        return replace(self, locked_out=mask)

    # ------------------------------------------------------------------
    # Penalties
    # ------------------------------------------------------------------

    def add_boundary_penalties(
        self, penalty: float, edge_factor: float = 0.5
    ) -> "ConservationProblem":
        """Penalize fragmented solutions by their boundary length times `penalty`."""
        if penalty < 0:
            raise ValueError(f"Boundary penalty must be non-negative, got {penalty}.")
        if not 0.0 <= edge_factor <= 1.0:
            raise ValueError(f"Edge factor must lie between 0 and 1, got {edge_factor}.")
        return replace(
            self, boundary=BoundaryPenalty(penalty=float(penalty), edge_factor=float(edge_factor))
        )

    # ------------------------------------------------------------------
    # Solver
    # ------------------------------------------------------------------

    def add_solver(
        self,
        name: str = SOLVER,
        *,
        gap: float = GAP,
        time_limit_ms: int | None = TIME_LIMIT_MS,
        num_threads: int = NUM_THREADS,
        verbose: bool = False,
    ) -> "ConservationProblem":
        name = name.upper()
        if name not in SOLVERS:
            raise ValueError(f"Unknown solver '{name}'. Use one of {SOLVERS}.")
        if gap < 0:
            raise ValueError(f"Optimality gap must be non-negative, got {gap}.")
        settings = SolverSettings(
            name=name,
            gap=float(gap),
            time_limit_ms=time_limit_ms,
            num_threads=max(1, int(num_threads)),
            verbose=verbose,
        )
        return replace(self, solver=settings)

    def add_default_solver(self, **kwargs) -> "ConservationProblem":
        return self.add_solver(SOLVER, **kwargs)

    def validate(self) -> None:
        """Check that the problem is complete enough to be solved."""
        if self.objective is None:
            raise ValueError(
                "No objective set; use add_min_set_objective() or add_min_shortfall_objective()."
            )
        if self.target_values is None:
            raise ValueError("No targets set; use add_relative_targets() or add_absolute_targets().")
        if np.any(~np.isfinite(self.cost)) or np.any(self.cost < 0):
            raise ValueError("Planning unit costs must be finite and non-negative.")

    def solve(self) -> "Solution":
        from .formulation import compile_problem
        from .solvers import create_solver

        return create_solver(self.solver).solve(compile_problem(self))

    def __str__(self) -> str:
        from .solvers.reporting import format_problem

        return format_problem(self)
