import logging
from typing import Optional, Tuple

import numpy as np
import pyomo.environ as pyo
from numpy.typing import NDArray

from storage_dispatch.common.constants import FEASIBLE, HOURS_PER_DAY
from storage_dispatch.common.logging import get_logger
from storage_dispatch.fast_methods import schedule_m, storage_m
from storage_dispatch.optimisation.repair import FeasibilityRepairEngine
from storage_dispatch.optimisation.solver import SolveResult, SolverContext
from storage_dispatch.system.components import PlannedSchedule_InstanceType, StorageUnit_InstanceType
from storage_dispatch.system.forecast import HorizonForecast


def inflow_over_horizon(unit: StorageUnit_InstanceType, first_hour: int, hours: int) -> NDArray[np.float64]:
    return np.array([storage_m.get_inflow(unit, first_hour + t) for t in range(hours)], dtype=np.float64)


def build_pumped_model(
    model: pyo.ConcreteModel,
    unit: StorageUnit_InstanceType,
    prices: NDArray[np.float64],
    first_hour: int,
    regularisation: float,
) -> pyo.ConcreteModel:
    """
    Add the sets, variables, constraints and objective of the pumped-storage horizon problem to an empty model.

    Decision variables per hour t: charge in [0, charge_capacity], discharge in [-discharge_capacity, 0],
    operation = charge + discharge and the reservoir level in [0, volume_max]. The level follows
    level[t] = level[t-1] + charge_efficiency * charge[t] + discharge[t] / discharge_efficiency + inflow[t],
    seeded with the carried level of the unit. Two scalar variables bound the peak charge and the peak discharge.

    The objective maximises market revenue, -price[t] * operation[t] summed over the horizon, minus the
    regularisation weight times the peak charge and peak discharge magnitudes.

    Parameters:
    -------
    model (pyo.ConcreteModel): An empty model handed out by the solver context.
    unit (StorageUnit_InstanceType): The unit to schedule.
    prices (NDArray[np.float64]): Price forecast over the horizon.
    first_hour (int): Hour of year of the first hour, used for inflow lookups.
    regularisation (float): Weight of the peak charge/discharge penalty.

    Returns:
    -------
    pyo.ConcreteModel: The populated model.
    """
    hours = prices.shape[0]
    price = prices.tolist()
    inflow = inflow_over_horizon(unit, first_hour, hours).tolist()
    charge_capacity = float(unit.charge_capacity)
    discharge_capacity = float(unit.discharge_capacity)
    eta_c = float(unit.charge_efficiency)
    eta_d = float(unit.discharge_efficiency)
    initial_level = float(unit.storage_level)

    model.t = pyo.RangeSet(0, hours - 1)

    model.charge = pyo.Var(model.t, bounds=(0.0, charge_capacity))
    model.discharge = pyo.Var(model.t, bounds=(-discharge_capacity, 0.0))
    model.operation = pyo.Var(model.t, bounds=(-discharge_capacity, charge_capacity))
    model.storage_level = pyo.Var(model.t, bounds=(0.0, float(unit.volume_max)))
    model.charge_peak = pyo.Var(bounds=(0.0, charge_capacity))
    model.discharge_peak = pyo.Var(bounds=(-discharge_capacity, 0.0))

    def operation_balance_rule(m, t):
        return m.operation[t] == m.charge[t] + m.discharge[t]

    model.operation_balance = pyo.Constraint(model.t, rule=operation_balance_rule)

    def storage_level_balance_rule(m, t):
        previous = m.storage_level[t - 1] if t > 0 else initial_level
        return m.storage_level[t] == previous + eta_c * m.charge[t] + m.discharge[t] / eta_d + inflow[t]

    model.storage_level_balance = pyo.Constraint(model.t, rule=storage_level_balance_rule)

    def charge_peak_rule(m, t):
        return m.charge_peak >= m.charge[t]

    model.charge_peak_bound = pyo.Constraint(model.t, rule=charge_peak_rule)

    def discharge_peak_rule(m, t):
        return m.discharge_peak <= m.discharge[t]

    model.discharge_peak_bound = pyo.Constraint(model.t, rule=discharge_peak_rule)

    def revenue_rule(m):
        revenue = -pyo.quicksum(price[t] * m.operation[t] for t in m.t)
        return revenue - regularisation * (m.charge_peak - m.discharge_peak)

    model.objective = pyo.Objective(rule=revenue_rule, sense=pyo.maximize)
    return model


class OptimalScheduler:
    """
    Exact rolling-horizon scheduler for pumped-storage units. Each call builds one linear program from the shared
    solver context, solves it, copies the solution into the caller's PlannedSchedule and disposes the model.

    A non-optimal solve is logged at ERROR level with an LP dump. Whatever primal values the solver returned are
    clipped to the unit capacities and passed through the FeasibilityRepairEngine, so the schedule handed back is
    always reservoir-feasible or flagged as unresolved.
    """

    def __init__(
        self,
        context: SolverContext,
        regularisation: float = 0.01,
        repair_engine: Optional[FeasibilityRepairEngine] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.context = context
        self.regularisation = float(regularisation)
        self.logger = get_logger(logger)
        self.repair_engine = repair_engine if repair_engine is not None else FeasibilityRepairEngine(logger=logger)

    def solve(
        self,
        unit: StorageUnit_InstanceType,
        forecast: HorizonForecast,
        schedule: PlannedSchedule_InstanceType,
        day: Optional[int] = None,
    ) -> Tuple[PlannedSchedule_InstanceType, SolveResult]:
        """
        Schedule a unit over the horizon of `schedule`.

        Parameters:
        -------
        unit (StorageUnit_InstanceType): The unit to schedule. Its storage_level seeds the reservoir and is not
            modified.
        forecast (HorizonForecast): Price forecast covering at least schedule.horizon hours.
        schedule (PlannedSchedule_InstanceType): Buffer owned by the caller. It is reset here.
        day (Optional[int]): Day of year, used in the model name and for logging.

        Returns:
        -------
        Tuple[PlannedSchedule_InstanceType, SolveResult]: The filled buffer and the raw solver result.

        Raises:
        -------
        ForecastError: If the forecast is shorter than the schedule horizon.
        """
        forecast.require_length(schedule.horizon)
        prices = forecast.as_array()[: schedule.horizon]
        schedule_m.reset(schedule, forecast.first_hour)
        day = day if day is not None else forecast.first_hour // HOURS_PER_DAY

        with self.context.lock:
            model = self.context.new_model(f"pumped_{unit.id}_day_{day}")
            try:
                build_pumped_model(model, unit, prices, forecast.first_hour, self.regularisation)
                result = self.context.solve(model)
                if not result.optimal:
                    self.context.dump_model(model, result)
            finally:
                self.context.dispose_model(model)

        if result.optimal:
            schedule_m.load_operation(schedule, result.values["operation"])
            schedule_m.load_storage_level(schedule, result.values["storage_level"])
            schedule.status = FEASIBLE
            self.logger.debug(
                "Unit %s day %s: optimal revenue %.2f over %d hours",
                unit.name,
                day,
                result.objective,
                schedule.horizon,
            )
            return schedule, result

        if result.has_solution:
            schedule_m.load_operation(schedule, np.nan_to_num(result.values["operation"]))
            schedule_m.clip_to_capacity(schedule, unit)
        self.repair_engine.repair(unit, schedule, prices, day)
        return schedule, result

    def objective_value(self, unit: StorageUnit_InstanceType, forecast: HorizonForecast) -> float:
        """Optimal objective of the horizon problem without touching any schedule buffer."""
        prices = forecast.as_array()
        with self.context.lock:
            model = self.context.new_model(f"pumped_{unit.id}_objective")
            try:
                build_pumped_model(model, unit, prices, forecast.first_hour, self.regularisation)
                result = self.context.solve(model)
            finally:
                self.context.dispose_model(model)
        return result.objective
