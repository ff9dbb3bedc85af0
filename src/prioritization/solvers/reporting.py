from __future__ import annotations

from typing import TYPE_CHECKING

import pandas as pd

from ..solution import Solution, SolverStatus

if TYPE_CHECKING:
    from ..formulation import LinearProgram
    from ..problem import ConservationProblem

_STATUS_MESSAGES = {
    SolverStatus.OPTIMAL: "✓ OPTIMAL solution found!",
    SolverStatus.SUBOPTIMAL: "✓ FEASIBLE solution found (within the requested gap, not proven optimal)",
    SolverStatus.LIMIT_REACHED: "✗ Solver stopped at a time, memory or node limit",
    SolverStatus.INFEASIBLE: "✗ Problem is INFEASIBLE",
    SolverStatus.ERROR: "✗ Solver did not return a solution",
}


def print_results(
    solution: Solution,
    lp: "LinearProgram | None" = None,
    phase: str | None = None,
    cost: float | None = None,
    *,
    verbose: bool = True,
) -> None:
    if not verbose:
        return
    title = phase or solution.solver
    print(f"\n{'=' * 60}")
    print(f"SOLUTION RESULTS - {title}")
    print(f"{'=' * 60}")
    print(_STATUS_MESSAGES[solution.status])

    if solution.has_selection:
        if solution.status is SolverStatus.LIMIT_REACHED:
            print("  (best solution found before the limit is reported)")
        print(f"\nObjective value: {solution.objective:.4f}")
        if solution.gap is not None:
            print(f"Relative gap: {solution.gap:.4%}")
        if cost is not None:
            print(f"Total cost: {cost:.2f}")
        print(f"Selected planning units: {int(solution.selection.sum())}")
    if lp is not None:
        print(f"Number of variables: {lp.n_vars}")
        print(f"Number of constraints: {lp.n_rows}")
    print(f"Actual elapsed time: {solution.runtime:.2f} seconds")


def format_problem(problem: "ConservationProblem") -> str:
    n_locked_in = int(problem.locked_in_mask.sum())
    n_locked_out = int(problem.locked_out_mask.sum())
    lines = [
        "Conservation Problem",
        f"  planning units: {problem.n_units} cells on a "
        f"{problem.planning_units.grid_shape[0]} x {problem.planning_units.grid_shape[1]} grid",
        f"  cost:           min {problem.cost.min():.4g}, max {problem.cost.max():.4g}, "
        f"total {problem.cost.sum():.4g}",
        f"  features:       {problem.n_features} "
        f"({', '.join(problem.feature_names[:4])}{', ...' if problem.n_features > 4 else ''})",
    ]
    if problem.objective is None:
        lines.append("  objective:      none")
    elif problem.budget is not None:
        lines.append(f"  objective:      {problem.objective} (budget {problem.budget:.4g})")
    else:
        lines.append(f"  objective:      {problem.objective}")
    if problem.target_values is None:
        lines.append("  targets:        none")
    else:
        relative = problem.relative_targets
        lines.append(
            f"  targets:        {problem.target_kind} "
            f"[min {relative.min():.3g}, max {relative.max():.3g} of totals]"
        )
    lines.append(f"  locked in:      {n_locked_in} planning units")
    lines.append(f"  locked out:     {n_locked_out} planning units")
    if problem.boundary is not None:
        lines.append(
            f"  penalties:      boundary (penalty {problem.boundary.penalty}, "
            f"edge factor {problem.boundary.edge_factor})"
        )
    settings = problem.solver
    lines.append(
        f"  solver:         {settings.name} (gap {settings.gap}, "
        f"threads {settings.num_threads}, time limit "
        f"{settings.time_limit_ms if settings.time_limit_ms else 'none'})"
    )
    return "\n".join(lines)


def print_problem(problem: "ConservationProblem") -> None:
    print(f"\n{'=' * 60}")
    print(format_problem(problem))
    print(f"{'=' * 60}")


def print_coverage_summary(coverage: pd.DataFrame, title: str = "TARGET COVERAGE") -> None:
    n_met = int(coverage["met"].sum())
    print(f"\n{'=' * 60}")
    print(title)
    print(f"{'=' * 60}")
    print(f"Features meeting targets: {n_met} / {len(coverage)}")
    print(f"Percentage: {100.0 * n_met / max(len(coverage), 1):.1f}%")
    missed = coverage.loc[~coverage["met"]]
    if len(missed):
        print("\nFeatures below target:")
        for row in missed.itertuples(index=False):
            print(
                f"  ✗ {row.feature}: {row.relative_held:.3f} held "
                f"(target {row.relative_target:.3f})"
            )
