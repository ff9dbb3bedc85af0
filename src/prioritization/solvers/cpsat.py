from __future__ import annotations

import math
import time
from decimal import Decimal

import numpy as np
import ortools.sat.python.cp_model as cp_model

from ..constants import (
    GAP,
    MAX_SCALING_FACTOR,
    NUM_THREADS,
    OBJECTIVE_RESOLUTION,
    TIME_LIMIT_MS,
)
from ..formulation import LinearProgram
from ..solution import (
    Solution,
    SolverStatus,
    classify_feasible,
    relative_gap,
    selection_from_values,
)
from .reporting import print_results

# CP-SAT works with 64-bit integers; keep a safety margin
_INT_LIMIT = 2**62
_ROUNDING_TOLERANCE = 1e-6


def _round_down(value: float) -> int:
    nearest = round(value)
    if abs(value - nearest) < _ROUNDING_TOLERANCE:
        return int(nearest)
    return math.floor(value)


def _round_up(value: float) -> int:
    nearest = round(value)
    if abs(value - nearest) < _ROUNDING_TOLERANCE:
        return int(nearest)
    return math.ceil(value)


class CPSATModel:
    """
    Implementation using the CP-SAT solver.

    CP-SAT only accepts integer coefficients, so every row is multiplied by a
    power of ten covering the decimals present in the data (capped at
    MAX_SCALING_FACTOR). Continuous variables are represented as integers in
    those scaled units, and the objective is scaled separately so that its
    smallest coefficient keeps OBJECTIVE_RESOLUTION significant steps.
    """

    name = "CPSAT"

    def __init__(
        self,
        gap: float = GAP,
        time_limit_ms: int | None = TIME_LIMIT_MS,
        num_threads: int = NUM_THREADS,
        verbose: bool = False,
    ):
        self.gap = gap
        self.time_limit_ms = time_limit_ms
        self.num_threads = num_threads
        self.verbose = verbose

    @staticmethod
    def _determine_scaling_factor(values) -> int:
        """Determine the minimal power-of-ten scaling factor for all values."""
        max_decimal_places = 0
        for value in values:
            if value is None or not np.isfinite(value):
                continue
            dec_value = Decimal(str(float(value))).normalize()
            if dec_value == 0:
                continue
            exponent = dec_value.as_tuple().exponent
            if exponent < 0:
                max_decimal_places = max(max_decimal_places, -exponent)

        return max(1, min(10**max_decimal_places, MAX_SCALING_FACTOR))

    @staticmethod
    def _objective_scaling_factor(coefficients: np.ndarray) -> int:
        nonzero = np.abs(coefficients[coefficients != 0])
        if len(nonzero) == 0:
            return 1
        exponent = math.ceil(math.log10(OBJECTIVE_RESOLUTION / nonzero.min()))
        return 10 ** max(0, exponent)

    def _create_solver(self) -> cp_model.CpSolver:
        return cp_model.CpSolver()

    def set_solver_parameters(
        self,
        solver: cp_model.CpSolver,
        num_threads: int,
        time_limit_ms: int | None,
        gap: float = GAP,
        log_search_progress: bool = False,
    ) -> None:
        params = solver.parameters

        if num_threads and num_threads > 0:
            params.num_workers = max(1, num_threads)

        if time_limit_ms and time_limit_ms > 0:
            params.max_time_in_seconds = time_limit_ms / 1000.0

        if gap is not None and gap >= 0:
            params.relative_gap_limit = gap

        params.log_search_progress = log_search_progress

    # MODEL BUILDING

    def _create_vars(
        self, model: cp_model.CpModel, lp: LinearProgram, scale: int
    ) -> list:
        variables = []
        self.magnitudes = np.zeros(lp.n_vars)
        for j, name in enumerate(lp.var_names):
            if lp.var_integer[j]:
                lower = _round_up(lp.var_lower[j])
                upper = _round_down(lp.var_upper[j])
            else:
                # stored as scale * value
                lower = _round_up(lp.var_lower[j] * scale)
                upper = _round_down(lp.var_upper[j] * scale)
            self.magnitudes[j] = max(abs(lower), abs(upper))
            if lower == 0 and upper == 1:
                variables.append(model.NewBoolVar(name))
            else:
                variables.append(model.NewIntVar(lower, upper, name))
        return variables

    def _add_constraints(
        self, model: cp_model.CpModel, lp: LinearProgram, variables: list, scale: int
    ) -> None:
        # Integer columns are non-negative, so flooring their coefficients
        # under-counts a >= row and ceiling them over-counts a <= row. Any
        # scaled solution then satisfies the unscaled row.
        matrix = lp.matrix
        for r in range(lp.n_rows):
            start, end = matrix.indptr[r], matrix.indptr[r + 1]
            terms, floors, ceils = [], [], []
            for col, coef in zip(matrix.indices[start:end], matrix.data[start:end]):
                if lp.var_integer[col]:
                    floors.append(_round_down(coef * scale))
                    ceils.append(_round_up(coef * scale))
                else:
                    if abs(coef - round(coef)) > _ROUNDING_TOLERANCE:
                        raise ValueError(
                            f"CP-SAT needs integer coefficients on continuous variables "
                            f"(row '{lp.row_names[r]}', coefficient {coef})."
                        )
                    floors.append(int(round(coef)))
                    ceils.append(int(round(coef)))
                terms.append(variables[col])

            lower, upper = lp.row_lower[r], lp.row_upper[r]
            if np.isfinite(lower):
                expr = cp_model.LinearExpr.WeightedSum(terms, floors)
                model.Add(expr >= _round_up(lower * scale)).WithName(
                    f"{lp.row_names[r]}_lb"
                )
            if np.isfinite(upper):
                expr = cp_model.LinearExpr.WeightedSum(terms, ceils)
                model.Add(expr <= _round_down(upper * scale)).WithName(
                    f"{lp.row_names[r]}_ub"
                )

    def _set_objective(
        self, model: cp_model.CpModel, lp: LinearProgram, variables: list, scale: int
    ) -> int:
        coefficients = np.where(lp.var_integer, lp.objective, lp.objective / scale)
        objective_scale = self._objective_scaling_factor(coefficients)
        scaled = np.rint(coefficients * objective_scale).astype(np.int64)

        spans = np.abs(scaled).astype(float) * self.magnitudes
        if spans.sum() >= _INT_LIMIT:
            raise ValueError(
                "Objective coefficients span too many orders of magnitude for CP-SAT."
            )

        nonzero = np.flatnonzero(scaled)
        model.Minimize(
            cp_model.LinearExpr.WeightedSum(
                [variables[j] for j in nonzero], [int(scaled[j]) for j in nonzero]
            )
        )
        return objective_scale

    # STATUS

    def _limit_hit(self, elapsed_time: float) -> bool:
        if not self.time_limit_ms:
            return False
        return elapsed_time * 1000.0 >= 0.99 * self.time_limit_ms

    def _classify(
        self, status: int, gap: float | None, elapsed_time: float
    ) -> SolverStatus:
        if status == cp_model.OPTIMAL:
            return classify_feasible(gap, limit_reached=False, proven_optimal=True)
        if status == cp_model.FEASIBLE:
            return classify_feasible(
                gap, limit_reached=self._limit_hit(elapsed_time), proven_optimal=False
            )
        if status == cp_model.INFEASIBLE:
            return SolverStatus.INFEASIBLE
        if status == cp_model.UNKNOWN and self._limit_hit(elapsed_time):
            return SolverStatus.LIMIT_REACHED
        return SolverStatus.ERROR

    # MAIN METHOD

    def solve(self, lp: LinearProgram) -> Solution:
        continuous = ~lp.var_integer
        scale = self._determine_scaling_factor(
            np.concatenate(
                [
                    lp.matrix.data,
                    lp.row_lower,
                    lp.row_upper,
                    lp.var_lower[continuous],
                    lp.var_upper[continuous],
                ]
            )
        )

        model = cp_model.CpModel()
        variables = self._create_vars(model, lp, scale)
        self._add_constraints(model, lp, variables, scale)
        objective_scale = self._set_objective(model, lp, variables, scale)

        solver = self._create_solver()
        self.set_solver_parameters(
            solver,
            self.num_threads,
            self.time_limit_ms,
            gap=self.gap,
            log_search_progress=self.verbose,
        )
        start_time = time.time()
        status = solver.Solve(model)
        elapsed_time = time.time() - start_time

        if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
            solution = Solution(
                selection=None,
                status=self._classify(status, None, elapsed_time),
                solver=self.name,
                runtime=elapsed_time,
            )
            print_results(solution, lp, verbose=self.verbose)
            return solution

        raw = np.array([solver.Value(v) for v in variables], dtype=np.float64)
        values = np.where(lp.var_integer, raw, raw / scale)
        objective = lp.objective_value(values)
        gap = relative_gap(
            solver.ObjectiveValue() / objective_scale,
            solver.BestObjectiveBound() / objective_scale,
        )
        solution = Solution(
            selection=selection_from_values(values, lp.n_units),
            status=self._classify(status, gap, elapsed_time),
            solver=self.name,
            objective=objective,
            gap=gap,
            runtime=elapsed_time,
            values=values,
        )
        print_results(solution, lp, verbose=self.verbose)
        return solution
