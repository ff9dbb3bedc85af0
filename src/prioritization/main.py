"""Run the practical's scenarios one after another and write their outputs.

Outputs per scenario (under --output-dir/<scenario>/):
- solution.tif: 1 selected, 0 not selected, NaN outside the study area.
- coverage.csv: target coverage summary.
- summary.json: selected / locked grid ids and headline numbers.
- solution.png, and importance.csv / importance.png when requested.
- selected_units.gpkg (or .parquet) and, with --map, map.html.

Input overviews (species.png, richness.png, cost.png) are written first, and a
combined solutions.png and scenario_results.csv at the end.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any

import matplotlib.pyplot as plt
import pandas as pd

from .constants import AGGREGATION_FACTOR, GAP, NUM_THREADS, SOLVER, SOLVERS
from .evaluation import evaluate_solution, target_coverage_summary
from .importance import ferrier_importance, rarity_weighted_richness
from .raster import SpatialMismatchError, band_sum, write_raster
from .scenarios import (
    Scenario,
    build_scenario_problem,
    load_practical_inputs,
    load_scenarios,
    select_scenarios,
)
from .solvers import print_coverage_summary, print_problem, print_results
from .visualization import (
    build_solution_summary,
    create_solution_map,
    export_solution_vector,
    plot_importance,
    plot_layers,
    plot_solutions,
    save_solution_summary,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Solve the conservation planning scenarios of the practical."
    )
    parser.add_argument("--data-dir", type=Path, default=Path("data"), help="Input rasters.")
    parser.add_argument(
        "--output-dir", type=Path, default=Path("outputs"), help="Where results are written."
    )
    parser.add_argument(
        "--scenarios", nargs="*", help="Scenario names to run (default: all)."
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to JSON with list of scenarios. Accepts list or {'runs': [...]}.",
    )
    parser.add_argument("--solver", type=str.upper, default=SOLVER, choices=SOLVERS)
    parser.add_argument("--gap", type=float, default=GAP, help="Relative MIP gap.")
    parser.add_argument("--time-limit-ms", type=int, help="Solver time limit (ms).")
    parser.add_argument("--threads", type=int, default=NUM_THREADS, help="Solver threads.")
    parser.add_argument(
        "--aggregation-factor",
        type=int,
        default=AGGREGATION_FACTOR,
        help="Cost aggregation factor onto the species grid.",
    )
    parser.add_argument("--map", action="store_true", help="Also write folium HTML maps.")
    parser.add_argument(
        "--vector-format", choices=["gpkg", "parquet"], default="gpkg"
    )
    parser.add_argument("--verbose", action="store_true", help="Show solver logs.")
    return parser


def run_scenario(
    inputs,
    scenario: Scenario,
    args: argparse.Namespace,
) -> dict[str, Any] | None:
    print(f"\n=== Running scenario: {scenario.name} ({scenario.title}) ===")
    problem = build_scenario_problem(
        inputs,
        scenario,
        solver=args.solver,
        gap=args.gap,
        time_limit_ms=args.time_limit_ms,
        num_threads=args.threads,
        verbose=args.verbose,
    )
    print_problem(problem)

    solution = problem.solve()
    if not args.verbose:
        # verbose backends already printed their own results block
        print_results(solution, phase=scenario.title)
    if not solution.has_selection:
        print(f"Error: {scenario.name} found no solution ({solution.status.value}). Skipping.")
        return None

    out_dir = args.output_dir / scenario.name
    out_dir.mkdir(parents=True, exist_ok=True)
    selection = solution.selection

    write_raster(problem.planning_units.to_raster(selection, name=scenario.name), out_dir / "solution.tif")
    coverage = target_coverage_summary(problem, selection)
    coverage.to_csv(out_dir / "coverage.csv", index=False)
    print_coverage_summary(coverage, title=f"TARGET COVERAGE - {scenario.title}")

    summary = build_solution_summary(problem, solution, scenario.name)
    save_solution_summary(summary, out_dir / "summary.json")
    fig = plot_solutions(problem, {scenario.title: selection}, output_path=out_dir / "solution.png")
    plt.close(fig)

    if scenario.importance:
        scores = ferrier_importance(problem, selection).join(
            rarity_weighted_richness(problem, selection)
        )
        scores.to_csv(out_dir / "importance.csv")
        fig = plot_importance(problem, scores["total"], output_path=out_dir / "importance.png")
        plt.close(fig)
        print(f"✓ Importance scores saved to {out_dir / 'importance.csv'}")

    export_solution_vector(problem, selection, out_dir / f"selected_units.{args.vector_format}")
    if args.map:
        gdf = problem.planning_units.geodataframe()
        folium_map = create_solution_map(gdf, summary, title=scenario.title)
        folium_map.save(out_dir / "map.html")
        print(f"✓ Map saved to: {out_dir / 'map.html'}")

    metrics = evaluate_solution(problem, selection)
    return {
        "scenario": scenario.name,
        "title": scenario.title,
        "solver": solution.solver,
        "status": solution.status.value,
        "runtime": solution.runtime,
        "gap": solution.gap,
        "problem": problem,
        "selection": selection,
        **metrics,
    }


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    scenarios = load_scenarios(args.config) if args.config else None
    scenarios = select_scenarios(args.scenarios, scenarios)

    try:
        inputs = load_practical_inputs(
            args.data_dir, args.aggregation_factor, verbose=args.verbose
        )
    except (SpatialMismatchError, FileNotFoundError) as exc:
        print(f"Error: could not prepare inputs: {exc}. Aborting.")
        return 1

    args.output_dir.mkdir(parents=True, exist_ok=True)
    for layer, filename in (
        (inputs.species, "species.png"),
        (band_sum(inputs.species), "richness.png"),
        (inputs.cost, "cost.png"),
    ):
        fig = plot_layers(layer, output_path=args.output_dir / filename)
        plt.close(fig)

    results = []
    for scenario in scenarios:
        try:
            result = run_scenario(inputs, scenario, args)
        except (ValueError, RuntimeError) as exc:
            print(f"Error: {scenario.name} failed: {exc}. Skipping.")
            continue
        if result is not None:
            results.append(result)

    if not results:
        print("Error: no scenario produced a solution.")
        return 1

    first = results[0]["problem"]
    same_grid = [r for r in results if r["problem"].n_units == first.n_units]
    fig = plot_solutions(
        first,
        {r["title"]: r["selection"] for r in same_grid},
        show_locks=False,
        output_path=args.output_dir / "solutions.png",
    )
    plt.close(fig)

    table = pd.DataFrame(
        [{k: v for k, v in r.items() if k not in ("problem", "selection")} for r in results]
    )
    table.to_csv(args.output_dir / "scenario_results.csv", index=False, float_format="%.10f")
    print(f"\nCSV saved to {args.output_dir / 'scenario_results.csv'}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
