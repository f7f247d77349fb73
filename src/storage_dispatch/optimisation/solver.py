import logging
import os
import threading
from typing import Dict, Optional

import numpy as np
import pyomo.environ as pyo
from numpy.typing import NDArray
from pyomo.opt import TerminationCondition

from storage_dispatch.common.exceptions import SolverContextError
from storage_dispatch.common.logging import get_logger

# Solver plugins accepted by pyo.SolverFactory. appsi_highs runs HiGHS in-process through highspy.
SOLVER_NAMES = ("appsi_highs", "cbc", "glpk", "gurobi")


def variable_values(variable: pyo.Var) -> NDArray[np.float64]:
    """Values of an (indexed) Pyomo variable in index order. Unset values are NaN."""
    return np.array(
        [np.nan if v.value is None else v.value for v in variable.values()],
        dtype=np.float64,
    )


class SolveResult:
    """
    Outcome of a single LP solve.

    Attributes:
    -------
    status_name (str): Termination condition reported by the solver.
    optimal (bool): True if the solver proved optimality.
    objective (float): Value of the active objective, NaN if no solution was returned.
    values (Dict[str, NDArray[np.float64]]): Primal values of every variable component keyed by its name.
        Empty if the solver returned no solution.
    message (str): Solver message.
    """

    def __init__(
        self,
        status_name: str,
        optimal: bool,
        objective: float,
        values: Dict[str, NDArray[np.float64]],
        message: str = "",
    ) -> None:
        self.status_name = status_name
        self.optimal = bool(optimal)
        self.objective = float(objective)
        self.values = values
        self.message = message

    def __repr__(self) -> str:
        return f"SolveResult({self.status_name!r}, objective={self.objective:.4f})"

    @property
    def has_solution(self) -> bool:
        return bool(self.values)


class SolverContext:
    """
    Explicitly owned solver context shared by all horizon solves of a simulation run.

    The context holds the solver settings, hands out one Pyomo ConcreteModel per solve and runs the solver plugin
    on it. It is opened on construction and can be closed and recreated between independent runs. Pyomo model
    construction is not thread-safe, so callers build, solve and read a model while holding `lock`.

    Attributes:
    -------
    solver_name (str): Name of the solver plugin passed to pyo.SolverFactory.
    time_limit (float): Wall-clock limit per solve in seconds.
    dump_directory (Optional[str]): Directory receiving LP dumps of non-optimal solves.
    models_created (int): Number of models handed out since the context was last opened.
    """

    def __init__(
        self,
        solver_name: str = "appsi_highs",
        time_limit: float = 60.0,
        dump_directory: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if solver_name not in SOLVER_NAMES:
            raise ValueError(f"Unknown solver '{solver_name}'. Expected one of {SOLVER_NAMES}.")
        self.solver_name = solver_name
        self.time_limit = float(time_limit)
        self.dump_directory = dump_directory
        self.logger = get_logger(logger)
        self.lock = threading.RLock()
        self._active = 0
        self.models_created = 0
        self._open = False
        self.open()

    def __repr__(self) -> str:
        state = "open" if self._open else "closed"
        return f"SolverContext({self.solver_name!r}, {state}, models_created={self.models_created})"

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def active_models(self) -> int:
        return self._active

    def open(self) -> None:
        """
        Open the context.

        Raises:
        -------
        SolverContextError: If the solver plugin is not available.
        """
        with self.lock:
            if self._open:
                return
            if not pyo.SolverFactory(self.solver_name).available(exception_flag=False):
                raise SolverContextError(f"Solver {self.solver_name} is not available.")
            self._open = True
            self._active = 0
            self.models_created = 0
        self.logger.debug("Solver context opened (solver=%s, time_limit=%.1fs)", self.solver_name, self.time_limit)

    def close(self) -> None:
        with self.lock:
            if not self._open:
                return
            self._open = False
            active = self._active
        if active:
            self.logger.warning("Solver context closed with %d undisposed models", active)
        self.logger.debug("Solver context closed after %d models", self.models_created)

    def recreate(self) -> None:
        """Dispose and reopen the context, e.g. between independent multi-runs."""
        self.close()
        self.open()

    def new_model(self, name: str) -> pyo.ConcreteModel:
        """
        Hand out a fresh, empty model.

        Raises:
        -------
        SolverContextError: If the context is closed.
        """
        with self.lock:
            if not self._open:
                raise SolverContextError(f"Cannot create model {name}: solver context is closed.")
            self._active += 1
            self.models_created += 1
        return pyo.ConcreteModel(name=name)

    def dispose_model(self, model: pyo.ConcreteModel) -> None:
        """Deregister a model once its solution has been read."""
        with self.lock:
            self._active = max(self._active - 1, 0)

    def solve(self, model: pyo.ConcreteModel) -> SolveResult:
        """
        Solve a model with the configured solver plugin and time limit.

        Returns:
        -------
        SolveResult: Status, objective and primal values. Non-optimal statuses are returned, never raised.
        """
        with self.lock:
            if not self._open:
                raise SolverContextError(f"Cannot solve model {model.name}: solver context is closed.")
            solver = pyo.SolverFactory(self.solver_name)
            results = solver.solve(model, load_solutions=False, timelimit=self.time_limit)

            condition = results.solver.termination_condition
            values = {}
            objective = np.nan
            if len(results.solution) > 0:
                model.solutions.load_from(results)
                values = {var.local_name: variable_values(var) for var in model.component_objects(pyo.Var)}
                objective = pyo.value(next(model.component_data_objects(pyo.Objective, active=True)))

        return SolveResult(
            str(condition),
            condition == TerminationCondition.optimal,
            objective,
            values,
            str(results.solver.termination_message),
        )

    def dump_model(self, model: pyo.ConcreteModel, result: SolveResult) -> Optional[str]:
        """Log a non-optimal solve at ERROR level and write the model in LP format to the dump directory."""
        path = None
        if self.dump_directory is not None:
            os.makedirs(self.dump_directory, exist_ok=True)
            path = os.path.join(self.dump_directory, f"{model.name}.lp")
            model.write(path, io_options={"symbolic_solver_labels": True})
        self.logger.error(
            "Model %s returned non-optimal status %s: %s. Model written to %s",
            model.name,
            result.status_name,
            result.message,
            path,
        )
        return path

    def __enter__(self) -> "SolverContext":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
