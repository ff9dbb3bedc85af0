"""
Tests for the solver backends on small problems with known optima.

Run with: python -m pytest tests/test_solvers.py -v
"""

import numpy as np
import pytest

from prioritization.evaluation import (
    constraint_violations,
    objective_value,
    selection_cost,
    target_coverage_summary,
)
from prioritization.formulation import compile_problem
from prioritization.problem import SolverSettings
from prioritization.solution import (
    Solution,
    SolverStatus,
    SolverStatusError,
    classify_feasible,
    relative_gap,
)
from prioritization.solvers import CPSATModel, create_solver, print_results

EXACT_SOLVERS = ["SCIP", "CBC", "CPSAT"]
SOLVED = {SolverStatus.OPTIMAL, SolverStatus.SUBOPTIMAL}


def exact(problem, solver):
    return problem.add_solver(solver, gap=0.0)


@pytest.mark.parametrize("solver", EXACT_SOLVERS)
class TestMinSet:
    """Cheapest selection meeting every target."""

    def test_strip_optimum(self, strip_problem, solver):
        """f0 needs units 0 and 1, f1 needs the cheaper of units 2 and 3."""
        problem = exact(
            strip_problem.add_min_set_objective().add_relative_targets([1.0, 0.5]), solver
        )
        solution = problem.solve()
        assert solution.status in SOLVED
        np.testing.assert_array_equal(solution.selection, [1, 1, 1, 0])
        assert solution.objective == pytest.approx(6.0)
        assert solution.gap == pytest.approx(0.0, abs=1e-6)

    def test_locks_respected(self, varied_cost_problem, solver):
        locked_in = np.zeros(varied_cost_problem.n_units)
        locked_in[[5, 17]] = 1
        locked_out = np.zeros(varied_cost_problem.n_units)
        locked_out[[0, 1, 2]] = 1
        problem = exact(
            varied_cost_problem.add_min_set_objective()
            .add_relative_targets(0.4)
            .add_locked_in_constraints(locked_in)
            .add_locked_out_constraints(locked_out),
            solver,
        )
        selection = problem.solve().require_selection()
        assert selection[[5, 17]].tolist() == [1, 1]
        assert selection[[0, 1, 2]].tolist() == [0, 0, 0]
        assert target_coverage_summary(problem, selection)["met"].all()
        assert constraint_violations(problem, selection) == []

    def test_contradictory_locks_infeasible(self, strip_problem, solver):
        both = np.array([1, 0, 0, 0])
        problem = exact(
            strip_problem.add_min_set_objective()
            .add_relative_targets(0.5)
            .add_locked_in_constraints(both)
            .add_locked_out_constraints(both),
            solver,
        )
        solution = problem.solve()
        assert solution.status is SolverStatus.INFEASIBLE
        assert not solution.has_selection
        with pytest.raises(SolverStatusError, match="infeasible"):
            solution.require_selection()

    def test_unreachable_target_infeasible(self, strip_problem, solver, capsys):
        problem = exact(
            strip_problem.add_min_set_objective()
            .add_relative_targets(1.0)
            .add_locked_out_constraints(np.array([0, 1, 0, 0])),
            solver,
        )
        solution = problem.solve()
        assert solution.status is SolverStatus.INFEASIBLE
        assert "targets cannot be reached" in capsys.readouterr().out

    def test_higher_targets_never_cheaper(self, varied_cost_problem, solver):
        costs = []
        for target in (0.0, 0.1, 0.3, 0.5, 0.8):
            problem = exact(
                varied_cost_problem.add_min_set_objective().add_relative_targets(target), solver
            )
            selection = problem.solve().require_selection()
            costs.append(selection_cost(problem, selection))
        assert costs[0] == 0.0
        assert costs == sorted(costs)

    def test_boundary_objective_matches_evaluation(self, varied_cost_problem, solver):
        problem = exact(
            varied_cost_problem.add_min_set_objective()
            .add_relative_targets(0.3)
            .add_boundary_penalties(0.2, edge_factor=0.5),
            solver,
        )
        solution = problem.solve()
        assert solution.status in SOLVED
        assert solution.objective == pytest.approx(
            objective_value(problem, solution.selection), rel=1e-4
        )


@pytest.mark.parametrize("solver", EXACT_SOLVERS)
class TestMinShortfall:
    """Smallest weighted shortfall within a budget."""

    def test_hundred_unit_example(self, hundred_unit_problem, solver):
        """Thirty units are enough to meet every 30% target."""
        problem = exact(
            hundred_unit_problem.add_min_shortfall_objective(30).add_relative_targets(0.3),
            solver,
        )
        solution = problem.solve()
        assert solution.status in SOLVED
        assert selection_cost(problem, solution.selection) <= 30 + 1e-9
        assert target_coverage_summary(problem, solution.selection)["met"].all()
        assert solution.objective == pytest.approx(0.0, abs=1e-6)

    def test_hundred_unit_full_targets(self, hundred_unit_problem, solver):
        """With full targets the budget goes first to the two rarest features."""
        problem = exact(
            hundred_unit_problem.add_min_shortfall_objective(30).add_relative_targets(1.0),
            solver,
        )
        selection = problem.solve().require_selection()
        coverage = target_coverage_summary(problem, selection).set_index("feature")
        assert selection.sum() == 30
        assert coverage.loc["f0", "relative_held"] == pytest.approx(1.0)
        assert coverage.loc["f1", "relative_held"] == pytest.approx(1.0)

    def test_budget_respected(self, varied_cost_problem, solver):
        problem = exact(
            varied_cost_problem.add_min_shortfall_objective(5.0).add_relative_targets(0.6),
            solver,
        )
        solution = problem.solve()
        assert selection_cost(problem, solution.selection) <= 5.0 + 1e-9
        assert solution.objective == pytest.approx(
            objective_value(problem, solution.selection), rel=1e-4, abs=1e-6
        )

    def test_unreachable_target_stays_feasible(self, strip_problem, solver, capsys):
        """Locking out unit 0 caps f0 at half its target; the shortfall absorbs it."""
        problem = exact(
            strip_problem.add_min_shortfall_objective(10)
            .add_relative_targets(1.0)
            .add_locked_out_constraints(np.array([1, 0, 0, 0])),
            solver,
        )
        solution = problem.solve()
        assert solution.status in SOLVED
        assert "targets cannot be reached for 1 feature(s): f0" in capsys.readouterr().out
        np.testing.assert_array_equal(solution.selection, [0, 1, 1, 1])
        assert solution.objective == pytest.approx(0.5)

    def test_budget_below_locked_in_cost_infeasible(self, strip_problem, solver):
        problem = exact(
            strip_problem.add_min_shortfall_objective(0.5)
            .add_relative_targets(0.5)
            .add_locked_in_constraints(np.array([1, 0, 0, 0])),
            solver,
        )
        assert problem.solve().status is SolverStatus.INFEASIBLE

    def test_weights_shift_priority(self, strip_problem, solver):
        """Budget 3 buys either unit 0+1 or unit 2; the heavier feature wins."""
        base = strip_problem.add_min_shortfall_objective(3).add_relative_targets(1.0)
        favour_f1 = exact(base.add_feature_weights([1.0, 5.0]), solver)
        selection = favour_f1.solve().require_selection()
        assert selection[2] == 1
        favour_f0 = exact(base.add_feature_weights([5.0, 1.0]), solver)
        selection = favour_f0.solve().require_selection()
        np.testing.assert_array_equal(selection[:2], [1, 1])


class TestBackends:
    def test_cpsat_fractional_data_matches_scip(self, varied_cost_problem):
        problem = varied_cost_problem.add_min_shortfall_objective(6.5).add_relative_targets(
            [0.35, 0.45, 0.55]
        )
        scip = exact(problem, "SCIP").solve()
        cpsat = exact(problem, "CPSAT").solve()
        assert cpsat.objective == pytest.approx(scip.objective, rel=1e-3, abs=1e-6)

    def test_cpsat_budget_with_fine_costs(self, make_problem):
        """Costs below the scaling resolution still count in full against the budget."""
        budget = 30.000011
        problem = (
            make_problem(np.full((10, 10), 1.0000004), [np.ones((10, 10))], ["f0"])
            .add_min_shortfall_objective(budget)
            .add_relative_targets(1.0)
            .add_solver("CPSAT", gap=0.0)
        )
        solution = problem.solve()
        assert solution.status in SOLVED
        assert selection_cost(problem, solution.selection) <= budget
        assert solution.selection.sum() == 29
        assert constraint_violations(problem, solution.selection) == []

    def test_cpsat_targets_with_fine_amounts(self, make_problem):
        """Two units fall just short of the target, so the third is needed too."""
        problem = (
            make_problem(np.ones((1, 3)), [[[0.49999996, 0.49999996, 0.5]]], ["f0"])
            .add_min_set_objective()
            .add_absolute_targets(0.99999995)
            .add_solver("CPSAT", gap=0.0)
        )
        selection = problem.solve().require_selection()
        assert target_coverage_summary(problem, selection)["met"].all()
        assert selection.sum() == 3

    def test_time_limit_reported(self, make_problem):
        """A large fragmented problem cannot be closed within one second."""
        rng = np.random.default_rng(7)
        features = [(rng.random((60, 60)) < 0.3).astype(float) for _ in range(6)]
        problem = (
            make_problem(1.0 + rng.random((60, 60)), features)
            .add_min_set_objective()
            .add_relative_targets(0.3)
            .add_boundary_penalties(1.0)
            .add_solver("SCIP", gap=0.0, time_limit_ms=1000)
        )
        solution = problem.solve()
        assert solution.status is SolverStatus.LIMIT_REACHED
        assert solution.runtime >= 0.99

    def test_cpsat_scaling_factors(self):
        assert CPSATModel._determine_scaling_factor([1.0, 2.5, 0.25]) == 100
        assert CPSATModel._determine_scaling_factor([3.0, np.inf, np.nan]) == 1
        assert CPSATModel._determine_scaling_factor([1e-9]) == 10**6
        assert CPSATModel._objective_scaling_factor(np.array([0.0, 0.5, 2.0])) == 10**5

    def test_unknown_solver_rejected(self):
        with pytest.raises(ValueError, match="Unknown solver"):
            create_solver(SolverSettings(name="GLPK"))

    def test_create_solver_passes_settings(self):
        backend = create_solver(SolverSettings(name="cbc", gap=0.05, num_threads=2))
        assert backend.name == "CBC"
        assert backend.gap == 0.05
        assert backend.num_threads == 2

    def test_gurobi(self, strip_problem):
        pytest.importorskip("gurobipy")
        problem = exact(
            strip_problem.add_min_set_objective().add_relative_targets([1.0, 0.5]), "GUROBI"
        )
        solution = problem.solve()
        np.testing.assert_array_equal(solution.selection, [1, 1, 1, 0])
        assert solution.objective == pytest.approx(6.0)

    def test_values_hold_every_variable(self, strip_problem):
        problem = exact(
            strip_problem.add_min_shortfall_objective(3).add_relative_targets(1.0), "SCIP"
        )
        solution = problem.solve()
        lp = compile_problem(problem)
        assert solution.values.shape == (lp.n_vars,)
        assert lp.objective_value(solution.values) == pytest.approx(solution.objective)


class TestStatus:
    def test_relative_gap(self):
        assert relative_gap(10.0, 10.0) == 0.0
        assert relative_gap(10.0, 8.0) == pytest.approx(0.2)
        assert relative_gap(None, 8.0) is None
        assert relative_gap(10.0, np.inf) is None

    def test_classify_feasible(self):
        assert classify_feasible(0.0, limit_reached=False, proven_optimal=True) is (
            SolverStatus.OPTIMAL
        )
        assert classify_feasible(0.05, limit_reached=False, proven_optimal=True) is (
            SolverStatus.SUBOPTIMAL
        )
        assert classify_feasible(0.05, limit_reached=True, proven_optimal=False) is (
            SolverStatus.LIMIT_REACHED
        )
        assert classify_feasible(None, limit_reached=False, proven_optimal=False) is (
            SolverStatus.SUBOPTIMAL
        )

    def test_print_results(self, capsys):
        solution = Solution(
            selection=np.array([1, 0, 1]),
            status=SolverStatus.OPTIMAL,
            solver="SCIP",
            objective=4.0,
            gap=0.0,
            runtime=0.5,
        )
        print_results(solution, phase="Baseline", cost=4.0)
        out = capsys.readouterr().out
        assert "SOLUTION RESULTS - Baseline" in out
        assert "OPTIMAL solution found" in out
        assert "Selected planning units: 2" in out

    def test_print_results_quiet(self, capsys):
        solution = Solution(selection=None, status=SolverStatus.INFEASIBLE, solver="CBC")
        print_results(solution, verbose=False)
        assert capsys.readouterr().out == ""
