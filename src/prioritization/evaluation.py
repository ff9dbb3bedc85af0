"""
Deterministic summaries of a selection: size, cost, boundary, target coverage.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from . import boundary
from .problem import MIN_SET, MIN_SHORTFALL, ConservationProblem
from .solution import Solution

TARGET_TOLERANCE = 1e-9


def _as_selection(problem: ConservationProblem, selection: np.ndarray | Solution) -> np.ndarray:
    if isinstance(selection, Solution):
        selection = selection.require_selection()
    selection = np.asarray(selection)
    if selection.shape != (problem.n_units,):
        raise ValueError(
            f"Selection must have one value per planning unit ({problem.n_units}), "
            f"got shape {selection.shape}."
        )
    return (selection > 0.5).astype(np.int8)


def count_selected(problem: ConservationProblem, selection) -> int:
    return int(_as_selection(problem, selection).sum())


def selection_cost(problem: ConservationProblem, selection) -> float:
    return float(problem.cost @ _as_selection(problem, selection))


def selection_boundary(
    problem: ConservationProblem, selection, edge_factor: float | None = None
) -> float:
    """Perimeter of the selection, using the problem's edge factor unless given."""
    if edge_factor is None:
        edge_factor = problem.edge_factor
    return boundary.boundary_length(
        problem.boundary_graph, _as_selection(problem, selection), edge_factor
    )


def count_patches(problem: ConservationProblem, selection) -> int:
    return boundary.count_patches(problem.boundary_graph, _as_selection(problem, selection))


def target_coverage_summary(problem: ConservationProblem, selection) -> pd.DataFrame:
    """One row per feature with the amounts held by the selection against its target."""
    x = _as_selection(problem, selection)
    totals = problem.feature_totals
    absolute_targets = problem.absolute_targets
    held = problem.features @ x
    with np.errstate(divide="ignore", invalid="ignore"):
        relative_held = np.where(totals > 0, held / totals, 0.0)
        relative_target = np.where(totals > 0, absolute_targets / totals, 0.0)
    shortfall = np.maximum(absolute_targets - held, 0.0)
    with np.errstate(divide="ignore", invalid="ignore"):
        relative_shortfall = np.where(absolute_targets > 0, shortfall / absolute_targets, 0.0)

    return pd.DataFrame(
        {
            "feature": list(problem.feature_names),
            "total_amount": totals,
            "relative_target": relative_target,
            "absolute_target": absolute_targets,
            "absolute_held": held,
            "relative_held": relative_held,
            "absolute_shortfall": shortfall,
            "relative_shortfall": relative_shortfall,
            "met": held >= absolute_targets - TARGET_TOLERANCE * np.maximum(1.0, absolute_targets),
        }
    )


def objective_value(problem: ConservationProblem, selection) -> float:
    """Objective of the problem's formulation evaluated at `selection`."""
    x = _as_selection(problem, selection)
    if problem.objective == MIN_SET:
        value = selection_cost(problem, x)
    elif problem.objective == MIN_SHORTFALL:
        targets = problem.absolute_targets
        held = problem.features @ x
        active = targets > 0
        shortfall = np.maximum(targets[active] - held[active], 0.0)
        value = float(np.sum(problem.weights[active] * shortfall / targets[active]))
    else:
        raise ValueError("The problem has no objective.")
    if problem.boundary is not None and problem.boundary.penalty > 0:
        value += problem.boundary.penalty * selection_boundary(problem, x)
    return value


def constraint_violations(problem: ConservationProblem, selection) -> list[str]:
    """Locked-in units left out, locked-out units selected and budget overruns."""
    x = _as_selection(problem, selection).astype(bool)
    ids = problem.planning_units.grid_ids
    violations = []
    for i in np.flatnonzero(problem.locked_in_mask & ~x):
        violations.append(f"locked-in unit {ids[i]} not selected")
    for i in np.flatnonzero(problem.locked_out_mask & x):
        violations.append(f"locked-out unit {ids[i]} selected")
    if problem.budget is not None:
        cost = selection_cost(problem, x)
        if cost > problem.budget * (1 + 1e-9) + 1e-9:
            violations.append(f"cost {cost:.4f} exceeds budget {problem.budget:.4f}")
    return violations


def evaluate_solution(problem: ConservationProblem, selection) -> dict:
    coverage = target_coverage_summary(problem, selection)
    n_met = int(coverage["met"].sum())
    return {
        "n_selected": count_selected(problem, selection),
        "cost": selection_cost(problem, selection),
        "boundary": selection_boundary(problem, selection),
        "patches": count_patches(problem, selection),
        "targets_met": n_met,
        "targets_met_pct": 100.0 * n_met / max(problem.n_features, 1),
        "objective": objective_value(problem, selection),
        "violations": len(constraint_violations(problem, selection)),
    }
