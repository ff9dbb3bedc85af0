from __future__ import annotations

import time

import numpy as np
import ortools.linear_solver.pywraplp as pywraplp

from ..constants import GAP, NUM_THREADS, TIME_LIMIT_MS
from ..formulation import LinearProgram
from ..solution import (
    Solution,
    SolverStatus,
    classify_feasible,
    relative_gap,
    selection_from_values,
)
from .reporting import print_results


class ORToolsModelBase:
    """
    Base implementation using the OR-Tools linear solver interface.
    Subclasses only implement `_create_solver` and solver-specific parameter setting.
    """

    name = "ORTOOLS"

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

    # ABSTRACT METHODS (TO BE IMPLEMENTED BY SUBCLASSES)

    def _create_solver(self) -> pywraplp.Solver:
        """Return an OR-Tools solver instance."""
        raise NotImplementedError("Subclass must implement _create_solver()")

    def set_solver_parameters(
        self,
        solver: pywraplp.Solver,
        num_threads: int,
        time_limit_ms: int | None,
        gap: float = GAP,
    ) -> pywraplp.MPSolverParameters:
        """Configure the solver and return the parameters passed to Solve()."""
        raise NotImplementedError("Subclass must implement set_solver_parameters()")

    # MODEL BUILDING

    def _create_vars(self, model: pywraplp.Solver, lp: LinearProgram) -> list:
        variables = []
        for j, name in enumerate(lp.var_names):
            if lp.var_integer[j]:
                var = model.IntVar(float(lp.var_lower[j]), float(lp.var_upper[j]), name)
            else:
                var = model.NumVar(float(lp.var_lower[j]), float(lp.var_upper[j]), name)
            variables.append(var)
        return variables

    def _add_constraints(
        self, model: pywraplp.Solver, lp: LinearProgram, variables: list
    ) -> None:
        infinity = model.infinity()
        matrix = lp.matrix
        for r in range(lp.n_rows):
            lower = lp.row_lower[r] if np.isfinite(lp.row_lower[r]) else -infinity
            upper = lp.row_upper[r] if np.isfinite(lp.row_upper[r]) else infinity
            row = model.RowConstraint(float(lower), float(upper), lp.row_names[r])
            start, end = matrix.indptr[r], matrix.indptr[r + 1]
            for col, coef in zip(matrix.indices[start:end], matrix.data[start:end]):
                row.SetCoefficient(variables[col], float(coef))

    def _set_objective(
        self, model: pywraplp.Solver, lp: LinearProgram, variables: list
    ) -> None:
        objective = model.Objective()
        for j in np.flatnonzero(lp.objective):
            objective.SetCoefficient(variables[j], float(lp.objective[j]))
        objective.SetMinimization()

    def build_model(self, lp: LinearProgram) -> tuple[pywraplp.Solver, list]:
        model = self._create_solver()
        if model is None:
            raise RuntimeError(f"OR-Tools was built without the {self.name} backend.")
        variables = self._create_vars(model, lp)
        self._add_constraints(model, lp, variables)
        self._set_objective(model, lp, variables)
        return model, variables

    # STATUS

    def _limit_hit(self, elapsed_time: float) -> bool:
        if not self.time_limit_ms:
            return False
        return elapsed_time * 1000.0 >= 0.99 * self.time_limit_ms

    def _classify(
        self, status: int, gap: float | None, elapsed_time: float
    ) -> SolverStatus:
        if status == pywraplp.Solver.OPTIMAL:
            return classify_feasible(gap, limit_reached=False, proven_optimal=True)
        if status == pywraplp.Solver.FEASIBLE:
            return classify_feasible(
                gap, limit_reached=self._limit_hit(elapsed_time), proven_optimal=False
            )
        if status == pywraplp.Solver.NOT_SOLVED and self._limit_hit(elapsed_time):
            return SolverStatus.LIMIT_REACHED
        if status == pywraplp.Solver.INFEASIBLE:
            return SolverStatus.INFEASIBLE
        return SolverStatus.ERROR

    # MAIN METHOD

    def solve(self, lp: LinearProgram) -> Solution:
        model, variables = self.build_model(lp)
        params = self.set_solver_parameters(
            model, self.num_threads, self.time_limit_ms, gap=self.gap
        )

        start_time = time.time()
        status = model.Solve(params)
        elapsed_time = time.time() - start_time

        if status not in [pywraplp.Solver.OPTIMAL, pywraplp.Solver.FEASIBLE]:
            solution = Solution(
                selection=None,
                status=self._classify(status, None, elapsed_time),
                solver=self.name,
                runtime=elapsed_time,
            )
            print_results(solution, lp, verbose=self.verbose)
            return solution

        values = np.array([v.SolutionValue() for v in variables])
        objective = model.Objective().Value()
        gap = relative_gap(objective, model.Objective().BestBound())
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
