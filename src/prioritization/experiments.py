"""Run the practical's scenarios with multiple solvers (SCIP, CBC, CP-SAT, Gurobi) N times.

Results:
- CSV (default outputs/solver_experiment.csv) with columns
  ID, SOLVER, SCENARIO, RUN, TIME, OBJECTIVE, STATUS, GAP, COST, N_SELECTED,
  TARGETS_MET, NOTES.
- JSON summaries per solver and run under <output dir>/summaries/.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any

import pandas as pd

from .constants import AGGREGATION_FACTOR, GAP, NUM_THREADS, SOLVERS
from .evaluation import count_selected, selection_cost, target_coverage_summary
from .scenarios import (
    build_scenario_problem,
    load_practical_inputs,
    load_scenarios,
    select_scenarios,
)
from .visualization import build_solution_summary, save_solution_summary

COLUMNS = [
    "ID",
    "SOLVER",
    "SCENARIO",
    "RUN",
    "TIME",
    "OBJECTIVE",
    "STATUS",
    "GAP",
    "COST",
    "N_SELECTED",
    "TARGETS_MET",
    "NOTES",
]


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the scenarios with SCIP, CBC, CP-SAT and Gurobi N times."
    )
    parser.add_argument(
        "--runs",
        "-n",
        type=int,
        default=1,
        help="Number of repetitions per scenario and solver.",
    )
    parser.add_argument(
        "--solvers",
        nargs="*",
        type=str.upper,
        choices=SOLVERS,
        default=["SCIP", "CBC", "CPSAT"],
    )
    parser.add_argument("--scenarios", nargs="*", help="Scenario names (default: all).")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to JSON with list of scenarios. Accepts list or {'runs': [...]}.",
    )
    parser.add_argument("--data-dir", type=Path, default=Path("data"))
    parser.add_argument(
        "--output", type=Path, default=Path("outputs") / "solver_experiment.csv"
    )
    parser.add_argument("--gap", type=float, default=GAP)
    parser.add_argument("--time-limit-ms", type=int)
    parser.add_argument("--threads", type=int, default=NUM_THREADS)
    parser.add_argument("--aggregation-factor", type=int, default=AGGREGATION_FACTOR)
    return parser.parse_args(argv)


def build_id(solver: str, scenario: str, run_idx: int) -> str:
    return f"{scenario}_{solver}_run{run_idx}"


def add_record(
    records: list[dict[str, Any]],
    *,
    solver: str,
    scenario: str,
    run_idx: int,
    runtime: float | None,
    objective: float | None,
    status: str,
    gap: float | None = None,
    cost: float | None = None,
    n_selected: int | None = None,
    targets_met: int | None = None,
    notes: str | None = None,
) -> None:
    records.append(
        {
            "ID": build_id(solver, scenario, run_idx),
            "SOLVER": solver,
            "SCENARIO": scenario,
            "RUN": run_idx,
            "TIME": runtime,
            "OBJECTIVE": objective,
            "STATUS": status,
            "GAP": gap,
            "COST": cost,
            "N_SELECTED": n_selected,
            "TARGETS_MET": targets_met,
            "NOTES": notes or "",
        }
    )


def run_experiments(args: argparse.Namespace) -> pd.DataFrame:
    scenarios = load_scenarios(args.config) if args.config else None
    scenarios = select_scenarios(args.scenarios, scenarios)
    inputs = load_practical_inputs(args.data_dir, args.aggregation_factor)
    summary_dir = args.output.parent / "summaries"

    records: list[dict[str, Any]] = []
    for scenario in scenarios:
        for solver in args.solvers:
            for run_idx in range(1, args.runs + 1):
                print(f"\n=== {scenario.name} | {solver} | run {run_idx} ===")
                try:
                    problem = build_scenario_problem(
                        inputs,
                        scenario,
                        solver=solver,
                        gap=args.gap,
                        time_limit_ms=args.time_limit_ms,
                        num_threads=args.threads,
                    )
                    solution = problem.solve()
                except (ValueError, RuntimeError) as exc:
                    add_record(
                        records,
                        solver=solver,
                        scenario=scenario.name,
                        run_idx=run_idx,
                        runtime=None,
                        objective=None,
                        status="error",
                        notes=f"Error: {exc}",
                    )
                    print(f"Error: {exc}")
                    continue

                if not solution.has_selection:
                    add_record(
                        records,
                        solver=solver,
                        scenario=scenario.name,
                        run_idx=run_idx,
                        runtime=solution.runtime,
                        objective=None,
                        status=solution.status.value,
                    )
                    print(f"✗ No solution ({solution.status.value})")
                    continue

                coverage = target_coverage_summary(problem, solution.selection)
                summary_path = summary_dir / f"{build_id(solver, scenario.name, run_idx)}.json"
                save_solution_summary(
                    build_solution_summary(problem, solution, scenario.name),
                    summary_path,
                    echo=False,
                )
                add_record(
                    records,
                    solver=solver,
                    scenario=scenario.name,
                    run_idx=run_idx,
                    runtime=solution.runtime,
                    objective=solution.objective,
                    status=solution.status.value,
                    gap=solution.gap,
                    cost=selection_cost(problem, solution.selection),
                    n_selected=count_selected(problem, solution.selection),
                    targets_met=int(coverage["met"].sum()),
                    notes=str(summary_path),
                )
                print(
                    f"✓ {solution.status.value}: objective {solution.objective:.4f} "
                    f"in {solution.runtime:.2f} seconds"
                )

    return pd.DataFrame(records, columns=COLUMNS)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    df = run_experiments(args)
    args.output.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(args.output, index=False, float_format="%.10f")
    print(f"\nCSV saved to {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
