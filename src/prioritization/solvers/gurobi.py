"""
Gurobi backend (optional, needs the `gurobi` extra and a licence).
"""

from __future__ import annotations

import time
from typing import Optional

import gurobipy as gp
import numpy as np
from gurobipy import GRB

from ..constants import GAP, NUM_THREADS, TIME_LIMIT_MS
from ..formulation import LinearProgram
from ..solution import (
    Solution,
    SolverStatus,
    classify_feasible,
    selection_from_values,
)
from .reporting import print_results

_LIMIT_STATUSES = {
    GRB.TIME_LIMIT,
    GRB.MEM_LIMIT,
    GRB.NODE_LIMIT,
    GRB.ITERATION_LIMIT,
    GRB.SOLUTION_LIMIT,
    GRB.WORK_LIMIT,
    GRB.INTERRUPTED,
}


def create_model(
    name: str,
    *,
    output: bool = True,
    time_limit_seconds: Optional[float],
    gap: float | None = None,
    threads: int | None = None,
) -> gp.Model:
    model = gp.Model(name)
    if output:
        model.setParam("OutputFlag", 1)
    else:
        model.setParam("OutputFlag", 0)
    if time_limit_seconds is not None:
        model.setParam("TimeLimit", time_limit_seconds)
    if gap is not None:
        model.setParam("MIPGap", gap)
    if threads is not None:
        model.setParam("Threads", threads)
    return model


class GurobiModel:
    """Implementation using gurobipy's matrix API."""

    name = "GUROBI"

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

    def build_model(self, lp: LinearProgram) -> tuple[gp.Model, gp.MVar]:
        model = create_model(
            "prioritization",
            output=self.verbose,
            time_limit_seconds=(
                self.time_limit_ms / 1000.0 if self.time_limit_ms else None
            ),
            gap=self.gap,
            threads=self.num_threads,
        )
        vtype = np.where(lp.var_integer, GRB.INTEGER, GRB.CONTINUOUS)
        x = model.addMVar(
            lp.n_vars, lb=lp.var_lower, ub=lp.var_upper, vtype=vtype, name="v"
        )

        has_lower = np.flatnonzero(np.isfinite(lp.row_lower))
        has_upper = np.flatnonzero(np.isfinite(lp.row_upper))
        if len(has_lower):
            model.addConstr(
                lp.matrix[has_lower] @ x >= lp.row_lower[has_lower], name="lower"
            )
        if len(has_upper):
            model.addConstr(
                lp.matrix[has_upper] @ x <= lp.row_upper[has_upper], name="upper"
            )

        model.setObjective(lp.objective @ x, GRB.MINIMIZE)
        return model, x

    def _classify(self, model: gp.Model) -> SolverStatus:
        status = model.Status
        if status in (GRB.INFEASIBLE, GRB.INF_OR_UNBD):
            return SolverStatus.INFEASIBLE
        if status in _LIMIT_STATUSES:
            return SolverStatus.LIMIT_REACHED
        if model.SolCount == 0:
            return SolverStatus.ERROR
        if status == GRB.OPTIMAL:
            return classify_feasible(
                model.MIPGap, limit_reached=False, proven_optimal=True
            )
        if status == GRB.SUBOPTIMAL:
            return SolverStatus.SUBOPTIMAL
        return SolverStatus.ERROR

    def solve(self, lp: LinearProgram) -> Solution:
        model, x = self.build_model(lp)

        start_time = time.time()
        model.optimize()
        elapsed_time = time.time() - start_time

        status = self._classify(model)
        if model.SolCount == 0:
            solution = Solution(
                selection=None, status=status, solver=self.name, runtime=elapsed_time
            )
            print_results(solution, lp, verbose=self.verbose)
            return solution

        values = np.asarray(x.X, dtype=np.float64)
        solution = Solution(
            selection=selection_from_values(values, lp.n_units),
            status=status,
            solver=self.name,
            objective=float(model.ObjVal),
            gap=float(model.MIPGap),
            runtime=elapsed_time,
            values=values,
        )
        print_results(solution, lp, verbose=self.verbose)
        return solution
