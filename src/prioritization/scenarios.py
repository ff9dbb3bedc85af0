"""
Reference workflow of the practical: inputs, scenario definitions and the
problem each scenario solves.

Scenarios can also be read from JSON, either a list of runs or
{"runs": [...]}, e.g.

    {"runs": [{"name": "baseline"}, {"name": "strict", "relative_target": 0.5}]}
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

import numpy as np

from .constants import (
    AGGREGATION_FACTOR,
    BOUNDARY_PENALTY,
    BUDGET_FRACTION,
    COST_FILE,
    COST_REDUCER,
    EDGE_FACTOR,
    GAP,
    HIGH_RELATIVE_TARGET,
    LOCK_REDUCER,
    LOCKED_IN_FILE,
    LOCKED_OUT_FILE,
    NUM_THREADS,
    RELATIVE_TARGET,
    SOLVER,
    SPECIES_FILE,
    TIME_LIMIT_MS,
)
from .problem import MIN_SET, MIN_SHORTFALL, ConservationProblem
from .raster import (
    Raster,
    aggregate,
    align_to,
    assert_aligned,
    check_alignment,
    describe,
    fill_missing,
    global_sum,
    read_raster,
    uniform_like,
)


@dataclass
class PracticalInputs:
    species: Raster
    cost: Raster
    locked_in: Raster | None = None
    locked_out: Raster | None = None


@dataclass
class Scenario:
    name: str
    title: str = ""
    objective: str = MIN_SHORTFALL
    relative_target: float = RELATIVE_TARGET
    budget_fraction: float = BUDGET_FRACTION
    locked_in: bool = False
    locked_out: bool = False
    boundary_penalty: float | None = None
    edge_factor: float = EDGE_FACTOR
    null_cost: bool = False
    importance: bool = False

    def __post_init__(self) -> None:
        if self.objective not in (MIN_SET, MIN_SHORTFALL):
            raise ValueError(
                f"Scenario '{self.name}': unknown objective '{self.objective}'."
            )
        if not self.title:
            self.title = self.name.replace("_", " ").capitalize()


DEFAULT_SCENARIOS = [
    Scenario("baseline", "Baseline"),
    Scenario("high_target", "70% targets", relative_target=HIGH_RELATIVE_TARGET),
    Scenario("locked_in", "With PAs", locked_in=True),
    Scenario(
        "boundary",
        "With PAs + Boundary layer",
        locked_in=True,
        boundary_penalty=BOUNDARY_PENALTY,
        importance=True,
    ),
    Scenario("locked_out", "With PAs + Avoid cities", locked_in=True, locked_out=True),
    Scenario("min_set", "Minimise cost", objective=MIN_SET, locked_in=True),
    Scenario("null_cost", "Null cost", null_cost=True),
]


def scenario_from_dict(raw: dict[str, Any]) -> Scenario:
    known = {f.name for f in fields(Scenario)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(f"Unknown scenario keys: {sorted(unknown)}.")
    if "name" not in raw:
        raise ValueError("Every scenario needs a 'name'.")
    return Scenario(**raw)


def scenario_to_dict(scenario: Scenario) -> dict[str, Any]:
    return asdict(scenario)


def load_scenarios(path: str | Path) -> list[Scenario]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict) and "runs" in data:
        runs = data["runs"]
    elif isinstance(data, list):
        runs = data
    else:
        raise ValueError("JSON must be a list of scenarios or contain a 'runs' key.")
    return [scenario_from_dict(run) for run in runs]


def select_scenarios(
    names: list[str] | None, scenarios: list[Scenario] | None = None
) -> list[Scenario]:
    scenarios = scenarios if scenarios is not None else DEFAULT_SCENARIOS
    if not names:
        return list(scenarios)
    by_name = {s.name: s for s in scenarios}
    missing = [n for n in names if n not in by_name]
    if missing:
        raise ValueError(f"Unknown scenarios {missing}. Available: {sorted(by_name)}.")
    return [by_name[n] for n in names]


def load_practical_inputs(
    data_dir: str | Path,
    aggregation_factor: int = AGGREGATION_FACTOR,
    *,
    verbose: bool = False,
) -> PracticalInputs:
    """
    Read the practical's layers and bring them onto the species grid.

    The cost layer is finer than the species layers and is aggregated by
    `aggregation_factor` (median). Protected areas are filled with 0 on land
    before a modal aggregation. Cities (locked out) are resampled if needed
    and never overlap protected areas.
    """
    data_dir = Path(data_dir)
    species = read_raster(data_dir / SPECIES_FILE)
    cost_fine = read_raster(data_dir / COST_FILE)
    cost = aggregate(cost_fine, aggregation_factor, COST_REDUCER)
    if verbose:
        print(f"Species layers: {species.count}\n{describe(species)}")
        print(f"Cost (aggregated x{aggregation_factor}):\n{describe(cost)}")
    assert_aligned(species, cost, names=["cost"])

    locked_in = None
    locked_in_path = data_dir / LOCKED_IN_FILE
    if locked_in_path.exists():
        pas = read_raster(locked_in_path)
        if check_alignment(cost_fine, pas):
            pas = align_to(pas, cost_fine, "nearest")
        pas = fill_missing(pas, cost_fine, 0.0)
        locked_in = aggregate(pas, aggregation_factor, LOCK_REDUCER)

    locked_out = None
    locked_out_path = data_dir / LOCKED_OUT_FILE
    if locked_out_path.exists():
        cities = read_raster(locked_out_path)
        if check_alignment(species, cities):
            cities = align_to(cities, species, LOCK_REDUCER)
        if locked_in is not None:
            values = cities.values.copy()
            overlap = (np.nan_to_num(values[0]) >= 0.5) & (
                np.nan_to_num(locked_in.values[0]) >= 0.5
            )
            values[0][overlap] = 0.0
            cities = Raster(
                values=values, transform=cities.transform, crs=cities.crs, names=cities.names
            )
        locked_out = cities

    locks = {"locked in": locked_in, "locked out": locked_out}
    locks = {name: layer for name, layer in locks.items() if layer is not None}
    assert_aligned(species, *locks.values(), names=list(locks))
    return PracticalInputs(species=species, cost=cost, locked_in=locked_in, locked_out=locked_out)


def build_scenario_problem(
    inputs: PracticalInputs,
    scenario: Scenario,
    *,
    solver: str = SOLVER,
    gap: float = GAP,
    time_limit_ms: int | None = TIME_LIMIT_MS,
    num_threads: int = NUM_THREADS,
    verbose: bool = False,
) -> ConservationProblem:
    cost = uniform_like(inputs.cost, 1.0, name="cost_null") if scenario.null_cost else inputs.cost
    problem = ConservationProblem.from_rasters(cost, inputs.species)

    if scenario.objective == MIN_SET:
        problem = problem.add_min_set_objective()
    else:
        problem = problem.add_min_shortfall_objective(
            global_sum(cost) * scenario.budget_fraction
        )
    problem = problem.add_relative_targets(scenario.relative_target).add_solver(
        solver,
        gap=gap,
        time_limit_ms=time_limit_ms,
        num_threads=num_threads,
        verbose=verbose,
    )

    if scenario.locked_in:
        if inputs.locked_in is None:
            raise ValueError(f"Scenario '{scenario.name}' needs a {LOCKED_IN_FILE} layer.")
        problem = problem.add_locked_in_constraints(inputs.locked_in)
    if scenario.locked_out:
        if inputs.locked_out is None:
            raise ValueError(f"Scenario '{scenario.name}' needs a {LOCKED_OUT_FILE} layer.")
        problem = problem.add_locked_out_constraints(inputs.locked_out)
    if scenario.boundary_penalty:
        problem = problem.add_boundary_penalties(scenario.boundary_penalty, scenario.edge_factor)
    return problem
