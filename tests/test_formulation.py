"""
Unit tests for the mixed integer program built from a problem.

Run with: python -m pytest tests/test_formulation.py -v
"""

import numpy as np
import pytest

from prioritization.formulation import compile_problem


class TestMinSet:
    def test_layout(self, strip_problem):
        lp = compile_problem(strip_problem.add_min_set_objective().add_relative_targets(0.5))
        assert lp.n_vars == 4
        assert lp.n_units == 4
        assert lp.var_names == ["x_cell_0_0", "x_cell_0_1", "x_cell_0_2", "x_cell_0_3"]
        assert lp.row_names == ["target_f0", "target_f1"]
        np.testing.assert_allclose(lp.objective, [1, 2, 3, 4])
        np.testing.assert_allclose(lp.row_lower, [1.0, 1.0])
        assert np.all(np.isinf(lp.row_upper))
        assert lp.var_integer.all()

    def test_target_rows_only_cover_features_present(self, strip_problem):
        lp = compile_problem(strip_problem.add_min_set_objective().add_relative_targets(0.5))
        np.testing.assert_allclose(lp.matrix.toarray(), [[1, 1, 0, 0], [0, 0, 1, 1]])

    def test_zero_targets_add_no_rows(self, strip_problem):
        lp = compile_problem(
            strip_problem.add_min_set_objective().add_relative_targets([0.0, 0.5])
        )
        assert lp.row_names == ["target_f1"]

    def test_objective_value(self, strip_problem):
        lp = compile_problem(strip_problem.add_min_set_objective().add_relative_targets(0.5))
        assert lp.objective_value([1, 0, 1, 0]) == pytest.approx(4.0)


class TestMinShortfall:
    def test_shortfall_variables_and_budget_row(self, strip_problem):
        problem = strip_problem.add_min_shortfall_objective(5).add_relative_targets([0.5, 1.0])
        lp = compile_problem(problem)
        assert lp.var_names[4:] == ["s_f0", "s_f1"]
        assert not lp.var_integer[4:].any()
        np.testing.assert_allclose(lp.var_upper[4:], [1.0, 2.0])
        # weight / target on the shortfall, nothing on the units
        np.testing.assert_allclose(lp.objective, [0, 0, 0, 0, 1.0, 0.5])
        assert lp.row_names == ["shortfall_f0", "shortfall_f1", "budget"]
        budget = lp.row_names.index("budget")
        np.testing.assert_allclose(lp.matrix.toarray()[budget], [1, 2, 3, 4, 0, 0])
        assert lp.row_upper[budget] == 5.0
        assert np.isinf(lp.row_lower[budget])

    def test_weights_enter_objective(self, strip_problem):
        problem = (
            strip_problem.add_min_shortfall_objective(5)
            .add_relative_targets(0.5)
            .add_feature_weights([3.0, 1.0])
        )
        lp = compile_problem(problem)
        np.testing.assert_allclose(lp.objective[4:], [3.0, 1.0])


class TestLocksAndBoundary:
    def test_lock_rows(self, strip_problem):
        problem = (
            strip_problem.add_min_set_objective()
            .add_relative_targets(0.5)
            .add_locked_in_constraints(np.array([1, 0, 0, 0]))
            .add_locked_out_constraints(np.array([0, 0, 0, 1]))
        )
        lp = compile_problem(problem)
        assert lp.row_names[-2:] == ["locked_in_cell_0_0", "locked_out_cell_0_3"]
        assert lp.row_lower[-2] == 1.0
        assert lp.row_upper[-1] == 0.0

    def test_boundary_pairs(self, make_problem):
        problem = (
            make_problem(np.ones((2, 2)), [np.ones((2, 2))])
            .add_min_set_objective()
            .add_relative_targets(0.5)
            .add_boundary_penalties(1.0, edge_factor=1.0)
        )
        lp = compile_problem(problem)
        assert lp.n_vars == 4 + 4
        assert sum(name.startswith("boundary_") for name in lp.row_names) == 8
        z = [j for j, name in enumerate(lp.var_names) if name.startswith("z_")]
        assert lp.var_integer[z].all()
        # cost 1 plus four unit edges per cell
        np.testing.assert_allclose(lp.objective[:4], 5.0)
        np.testing.assert_allclose(lp.objective[z], -2.0)

    def test_zero_penalty_adds_nothing(self, strip_problem):
        problem = (
            strip_problem.add_min_set_objective()
            .add_relative_targets(0.5)
            .add_boundary_penalties(0.0)
        )
        assert compile_problem(problem).n_vars == 4


class TestWarnings:
    def test_unreachable_target_warning(self, strip_problem, capsys):
        problem = (
            strip_problem.add_min_set_objective()
            .add_relative_targets(1.0)
            .add_locked_out_constraints(np.array([1, 0, 0, 0]))
        )
        lp = compile_problem(problem)
        assert lp.unreachable_features == ["f0"]
        assert "targets cannot be reached for 1 feature(s): f0" in capsys.readouterr().out

    def test_incomplete_problem_rejected(self, strip_problem):
        with pytest.raises(ValueError):
            compile_problem(strip_problem.add_relative_targets(0.5))

    def test_verbose_summary(self, strip_problem, capsys):
        compile_problem(
            strip_problem.add_min_set_objective().add_relative_targets(0.5), verbose=True
        )
        assert "4 variables (4 planning units), 2 constraints" in capsys.readouterr().out
