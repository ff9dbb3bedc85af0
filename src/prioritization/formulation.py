"""
Translate a ConservationProblem into a solver-independent mixed integer program.

Variable layout (columns):
    x_i   one binary per planning unit (always first)
    s_f   shortfall per feature with a positive target (min shortfall only)
    z_ij  one binary per adjacent pair (boundary penalties only)
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from scipy import sparse

from .boundary import boundary_terms
from .problem import MIN_SET, MIN_SHORTFALL, ConservationProblem


@dataclass
class LinearProgram:
    objective: np.ndarray
    matrix: sparse.csr_matrix
    row_lower: np.ndarray
    row_upper: np.ndarray
    row_names: list[str]
    var_lower: np.ndarray
    var_upper: np.ndarray
    var_integer: np.ndarray
    var_names: list[str]
    n_units: int
    unreachable_features: list[str] = field(default_factory=list)

    @property
    def n_vars(self) -> int:
        return len(self.objective)

    @property
    def n_rows(self) -> int:
        return self.matrix.shape[0]

    def objective_value(self, values: np.ndarray) -> float:
        return float(self.objective @ np.asarray(values, dtype=np.float64))


class _RowBuilder:
    """Accumulates sparse rows in coordinate form."""

    def __init__(self) -> None:
        self.rows: list[int] = []
        self.cols: list[int] = []
        self.data: list[float] = []
        self.lower: list[float] = []
        self.upper: list[float] = []
        self.names: list[str] = []

    def add(self, cols, coefs, lower: float, upper: float, name: str) -> None:
        row = len(self.names)
        cols = np.asarray(cols, dtype=np.int64)
        coefs = np.asarray(coefs, dtype=np.float64)
        keep = coefs != 0
        self.rows.extend([row] * int(keep.sum()))
        self.cols.extend(cols[keep].tolist())
        self.data.extend(coefs[keep].tolist())
        self.lower.append(lower)
        self.upper.append(upper)
        self.names.append(name)

    def to_csr(self, n_vars: int) -> sparse.csr_matrix:
        return sparse.csr_matrix(
            (self.data, (self.rows, self.cols)), shape=(len(self.names), n_vars)
        )


def compile_problem(problem: ConservationProblem, *, verbose: bool = False) -> LinearProgram:
    problem.validate()
    n_units = problem.n_units
    targets = problem.absolute_targets
    amounts = problem.features
    active = np.flatnonzero(targets > 0)
    pu_index = np.arange(n_units)

    var_names = [f"x_{gid}" for gid in problem.planning_units.grid_ids]
    var_lower = [0.0] * n_units
    var_upper = [1.0] * n_units
    var_integer = [True] * n_units
    objective = [0.0] * n_units
    rows = _RowBuilder()

    # Features whose target cannot be met once locked-out units are removed
    reachable = amounts[:, ~problem.locked_out_mask].sum(axis=1)
    unreachable = [
        problem.feature_names[f] for f in active if reachable[f] < targets[f] - 1e-9
    ]

    if problem.objective == MIN_SET:
        objective = problem.cost.astype(float).tolist()
        for f in active:
            support = np.flatnonzero(amounts[f] > 0)
            rows.add(
                support,
                amounts[f, support],
                float(targets[f]),
                np.inf,
                f"target_{problem.feature_names[f]}",
            )
    elif problem.objective == MIN_SHORTFALL:
        weights = problem.weights
        for f in active:
            s_col = len(var_names)
            var_names.append(f"s_{problem.feature_names[f]}")
            var_lower.append(0.0)
            var_upper.append(float(targets[f]))
            var_integer.append(False)
            objective.append(float(weights[f] / targets[f]))

            support = np.flatnonzero(amounts[f] > 0)
            rows.add(
                np.append(support, s_col),
                np.append(amounts[f, support], 1.0),
                float(targets[f]),
                np.inf,
                f"shortfall_{problem.feature_names[f]}",
            )
        rows.add(pu_index, problem.cost, -np.inf, float(problem.budget), "budget")
    else:
        raise ValueError(f"Unknown objective '{problem.objective}'.")

    for i in np.flatnonzero(problem.locked_in_mask):
        rows.add([i], [1.0], 1.0, np.inf, f"locked_in_{var_names[i][2:]}")
    for i in np.flatnonzero(problem.locked_out_mask):
        rows.add([i], [1.0], -np.inf, 0.0, f"locked_out_{var_names[i][2:]}")

    if problem.boundary is not None and problem.boundary.penalty > 0:
        terms = boundary_terms(
            problem.boundary_graph,
            problem.boundary.penalty,
            problem.boundary.edge_factor,
        )
        for i in range(n_units):
            objective[i] += float(terms.unit_coefficients[i])
        for i, j, coef in zip(terms.pair_first, terms.pair_second, terms.pair_coefficients):
            z_col = len(var_names)
            var_names.append(f"z_{i}_{j}")
            var_lower.append(0.0)
            var_upper.append(1.0)
            var_integer.append(True)
            objective.append(float(coef))
            # z_ij can only be 1 when both units are selected
            rows.add([z_col, i], [1.0, -1.0], -np.inf, 0.0, f"boundary_{i}_{j}_a")
            rows.add([z_col, j], [1.0, -1.0], -np.inf, 0.0, f"boundary_{i}_{j}_b")

    n_vars = len(var_names)
    lp = LinearProgram(
        objective=np.asarray(objective, dtype=np.float64),
        matrix=rows.to_csr(n_vars),
        row_lower=np.asarray(rows.lower, dtype=np.float64),
        row_upper=np.asarray(rows.upper, dtype=np.float64),
        row_names=rows.names,
        var_lower=np.asarray(var_lower, dtype=np.float64),
        var_upper=np.asarray(var_upper, dtype=np.float64),
        var_integer=np.asarray(var_integer, dtype=bool),
        var_names=var_names,
        n_units=n_units,
        unreachable_features=unreachable,
    )

    if verbose:
        print(
            f"Formulation: {lp.n_vars} variables ({n_units} planning units), "
            f"{lp.n_rows} constraints"
        )
    if unreachable:
        print(
            f"Warning: targets cannot be reached for {len(unreachable)} feature(s): "
            f"{', '.join(unreachable[:5])}{' ...' if len(unreachable) > 5 else ''}"
        )
    return lp
