from __future__ import annotations

from ..problem import SolverSettings
from .base_lp import ORToolsModelBase
from .cpsat import CPSATModel
from .reporting import format_problem, print_coverage_summary, print_problem, print_results
from .solvers_lp import CBCModel, SCIPModel

_BACKENDS = {
    "SCIP": SCIPModel,
    "CBC": CBCModel,
    "CPSAT": CPSATModel,
}


def create_solver(settings: SolverSettings):
    """Instantiate the backend named in `settings`."""
    name = settings.name.upper()
    if name == "GUROBI":
        try:
            from .gurobi import GurobiModel
        except ImportError as exc:
            raise RuntimeError(
                "The GUROBI solver needs gurobipy: pip install 'prioritization[gurobi]'."
            ) from exc
        backend = GurobiModel
    elif name in _BACKENDS:
        backend = _BACKENDS[name]
    else:
        raise ValueError(
            f"Unknown solver '{settings.name}'. Use one of {sorted([*_BACKENDS, 'GUROBI'])}."
        )
    return backend(
        gap=settings.gap,
        time_limit_ms=settings.time_limit_ms,
        num_threads=settings.num_threads,
        verbose=settings.verbose,
    )


__all__ = [
    "create_solver",
    "ORToolsModelBase",
    "SCIPModel",
    "CBCModel",
    "CPSATModel",
    "format_problem",
    "print_problem",
    "print_results",
    "print_coverage_summary",
]
