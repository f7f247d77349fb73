import os

import numpy as np
import pyomo.environ as pyo
import pytest

from storage_dispatch.common.exceptions import SolverContextError
from storage_dispatch.optimisation.solver import SolverContext, variable_values


def two_variable_model(model, upper, cost, sense=pyo.maximize):
    model.i = pyo.RangeSet(0, len(upper) - 1)
    model.x = pyo.Var(model.i, bounds=lambda m, i: (0.0, upper[i]))
    model.objective = pyo.Objective(expr=sum(cost[i] * model.x[i] for i in model.i), sense=sense)
    return model


def test_context_lifecycle(test_logger):
    context = SolverContext(logger=test_logger)
    assert context.is_open

    model = context.new_model("lifecycle")
    assert isinstance(model, pyo.ConcreteModel)
    assert model.name == "lifecycle"
    assert context.active_models == 1
    assert context.models_created == 1
    context.dispose_model(model)
    assert context.active_models == 0

    context.close()
    assert not context.is_open
    with pytest.raises(SolverContextError):
        context.new_model("closed")

    context.recreate()
    assert context.is_open
    assert context.models_created == 0


def test_context_manager_closes(test_logger):
    with SolverContext(logger=test_logger) as context:
        model = context.new_model("scoped")
        context.dispose_model(model)
        assert context.active_models == 0
    assert not context.is_open


def test_unknown_solver():
    with pytest.raises(ValueError):
        SolverContext("simplex")


def test_closed_context_rejects_solve(test_logger):
    context = SolverContext(logger=test_logger)
    model = two_variable_model(context.new_model("closed_solve"), [3.0, 2.0], [1.0, 1.0])
    context.close()
    with pytest.raises(SolverContextError):
        context.solve(model)


def test_maximisation(solver_context):
    model = two_variable_model(solver_context.new_model("maximise"), [3.0, 2.0], [1.0, 1.0])
    model.cap = pyo.Constraint(expr=model.x[0] + model.x[1] <= 4.0)

    result = solver_context.solve(model)
    solver_context.dispose_model(model)

    assert result.optimal
    assert result.status_name == "optimal"
    assert result.has_solution
    assert result.objective == pytest.approx(4.0)
    assert result.values["x"].sum() == pytest.approx(4.0)


def test_minimisation_with_lower_bound_constraint(solver_context):
    model = two_variable_model(solver_context.new_model("minimise"), [10.0], [1.0], sense=pyo.minimize)
    model.floor = pyo.Constraint(expr=model.x[0] >= 2.0)

    result = solver_context.solve(model)
    solver_context.dispose_model(model)

    assert result.optimal
    assert result.objective == pytest.approx(2.0)


def test_values_follow_index_order(solver_context):
    model = two_variable_model(solver_context.new_model("indexed"), [10.0, 10.0, 10.0], [1.0, 2.0, 3.0])
    model.fix = pyo.Constraint(model.i, rule=lambda m, i: m.x[i] == i + 1.0)

    result = solver_context.solve(model)
    solver_context.dispose_model(model)

    np.testing.assert_allclose(result.values["x"], [1.0, 2.0, 3.0])
    np.testing.assert_allclose(variable_values(model.x), [1.0, 2.0, 3.0])
    assert result.objective == pytest.approx(14.0)


def test_unsolved_variables_are_nan():
    model = pyo.ConcreteModel()
    model.x = pyo.Var([0, 1])
    assert np.all(np.isnan(variable_values(model.x)))


def test_infeasible_model_is_dumped(solver_context, tmp_path, caplog):
    model = two_variable_model(solver_context.new_model("infeasible"), [1.0], [1.0])
    model.fix = pyo.Constraint(expr=model.x[0] == 5.0)

    result = solver_context.solve(model)
    with caplog.at_level("ERROR", logger="storage_dispatch_tests"):
        path = solver_context.dump_model(model, result)
    solver_context.dispose_model(model)

    assert not result.optimal
    assert not result.has_solution
    assert np.isnan(result.objective)
    assert path == os.path.join(str(tmp_path), "infeasible.lp")
    assert os.path.isfile(path)
    assert "non-optimal status" in caplog.text


def test_dump_uses_component_names(solver_context, tmp_path):
    model = two_variable_model(solver_context.new_model("lp_text"), [3.0, 5.0], [1.0, -2.0])
    model.cap = pyo.Constraint(expr=model.x[0] + model.x[1] <= 4.0)

    result = solver_context.solve(model)
    path = solver_context.dump_model(model, result)
    solver_context.dispose_model(model)
    with open(path) as f:
        text = f.read()

    assert "x(0)" in text
    assert "x(1)" in text
    assert "cap" in text
    assert "max" in text.lower()
