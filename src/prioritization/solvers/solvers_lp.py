from __future__ import annotations

import ortools.linear_solver.pywraplp as pywraplp

from ..constants import GAP
from .base_lp import ORToolsModelBase


def _mip_parameters(gap: float) -> pywraplp.MPSolverParameters:
    params = pywraplp.MPSolverParameters()
    params.SetDoubleParam(pywraplp.MPSolverParameters.RELATIVE_MIP_GAP, gap)
    return params


class SCIPModel(ORToolsModelBase):
    """Implementation using the SCIP solver."""

    name = "SCIP"

    def _create_solver(self):
        return pywraplp.Solver.CreateSolver("SCIP")

    def set_solver_parameters(
        self,
        solver: pywraplp.Solver,
        num_threads: int,
        time_limit_ms: int | None,
        gap: float = GAP,
    ):
        solver.SetNumThreads(num_threads)
        if time_limit_ms:
            solver.SetTimeLimit(int(time_limit_ms))

        if self.verbose:
            solver.EnableOutput()
        else:
            solver.SuppressOutput()
        return _mip_parameters(gap)


class CBCModel(ORToolsModelBase):
    """Implementation using the CBC solver."""

    name = "CBC"

    def _create_solver(self):
        return pywraplp.Solver.CreateSolver("CBC")

    def set_solver_parameters(
        self,
        solver: pywraplp.Solver,
        num_threads: int,
        time_limit_ms: int | None,
        gap: float = GAP,
    ):
        solver.SetNumThreads(num_threads)
        if time_limit_ms:
            solver.SetTimeLimit(int(time_limit_ms))

        if self.verbose:
            solver.EnableOutput()
        else:
            solver.SuppressOutput()
        return _mip_parameters(gap)
