# type: ignore
import logging
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from storage_dispatch.common.constants import (
    FASTMATH,
    FEASIBLE,
    REPAIR_ITERATIONS,
    REPAIR_ITERATIONS_MAX,
    RESERVOIR_TOLERANCE,
    STATUS_NAMES,
    UNRESOLVED,
)
from storage_dispatch.common.exceptions import ForecastError
from storage_dispatch.common.jit_overload import njit
from storage_dispatch.common.logging import get_logger
from storage_dispatch.common.typing import boolean, float64, int64
from storage_dispatch.fast_methods import schedule_m
from storage_dispatch.system.components import (
    PlannedSchedule,
    PlannedSchedule_InstanceType,
    StorageUnit_InstanceType,
)


@njit(fastmath=FASTMATH)
def discharge_inflow_excess(
    schedule_instance: PlannedSchedule_InstanceType,
    unit_instance: StorageUnit_InstanceType,
    values: float64[:],
    worst: int64,
) -> boolean:
    """
    Resolve an overflow caused by inflow alone by adding discharge in the highest-value hour up to the offending
    hour that still has spare turbine capacity. This is the only correction that increases an operation
    magnitude.

    Returns:
    -------
    boolean: True if the operation array was modified.
    """
    best = -1
    for h in range(worst + 1):
        spare = unit_instance.discharge_capacity + min(schedule_instance.operation[h], 0.0)
        if spare > 0.0 and schedule_instance.operation[h] <= 0.0:
            if best < 0 or values[h] > values[best]:
                best = h
    if best < 0:
        return False

    excess = (schedule_instance.storage_level[worst] - unit_instance.volume_max) * unit_instance.discharge_efficiency
    spare = unit_instance.discharge_capacity + schedule_instance.operation[best]
    schedule_instance.operation[best] -= min(excess, spare)
    return True


@njit(fastmath=FASTMATH)
def correct_overflow(
    schedule_instance: PlannedSchedule_InstanceType,
    unit_instance: StorageUnit_InstanceType,
    values: float64[:],
    worst: int64,
    crude: boolean,
) -> boolean:
    """
    Reduce charging in the hours up to and including the hour of the worst overflow.

    The reduction needed at the pump is the level excess divided by the charge efficiency. It is shared between
    the charging hours in proportion to how much more expensive each hour is than the cheapest charging hour, so
    the cheapest hour keeps its charging for as long as possible. If all charging hours have the same value the
    reduction is split evenly. Every reduction is floored at zero. In crude mode the whole reduction is taken
    from the single most expensive charging hour.

    Parameters:
    -------
    schedule_instance (PlannedSchedule_InstanceType): Buffer with a propagated reservoir trajectory.
    unit_instance (StorageUnit_InstanceType): The unit the schedule belongs to.
    values (float64[:]): Forecast values (price or residual load) over the horizon.
    worst (int64): Hour of the worst overflow.
    crude (boolean): Use the single-hour correction.

    Returns:
    -------
    boolean: True if the operation array was modified.

    Side-effects:
    -------
    Attributes modified for the PlannedSchedule instance: operation.
    """
    cheapest = -1
    dearest = -1
    charging_hours = 0
    for h in range(worst + 1):
        if schedule_instance.operation[h] > 0.0:
            charging_hours += 1
            if cheapest < 0 or values[h] < values[cheapest]:
                cheapest = h
            if dearest < 0 or values[h] >= values[dearest]:
                dearest = h

    if charging_hours == 0:
        return discharge_inflow_excess(schedule_instance, unit_instance, values, worst)

    excess = (schedule_instance.storage_level[worst] - unit_instance.volume_max) / unit_instance.charge_efficiency

    if crude:
        schedule_instance.operation[dearest] -= min(schedule_instance.operation[dearest], excess)
        return True

    weight_total = 0.0
    for h in range(worst + 1):
        if schedule_instance.operation[h] > 0.0:
            weight_total += values[h] - values[cheapest]

    for h in range(worst + 1):
        if schedule_instance.operation[h] <= 0.0:
            continue
        if weight_total > 0.0:
            reduction = (values[h] - values[cheapest]) * excess / weight_total
        else:
            reduction = excess / charging_hours
        schedule_instance.operation[h] = max(schedule_instance.operation[h] - reduction, 0.0)
    return True


@njit(fastmath=FASTMATH)
def correct_underflow(
    schedule_instance: PlannedSchedule_InstanceType,
    unit_instance: StorageUnit_InstanceType,
    values: float64[:],
    worst: int64,
    crude: boolean,
) -> boolean:
    """
    Reduce discharging in the hours up to and including the hour of the worst underflow, mirroring
    correct_overflow around the highest-value discharging hour. The reduction needed at the turbine is the level
    deficit multiplied by the discharge efficiency. In crude mode the whole reduction is taken from the single
    least valuable discharging hour.

    Returns:
    -------
    boolean: True if the operation array was modified. False if no hour discharges before the underflow.
    """
    dearest = -1
    cheapest = -1
    discharging_hours = 0
    for h in range(worst + 1):
        if schedule_instance.operation[h] < 0.0:
            discharging_hours += 1
            if dearest < 0 or values[h] > values[dearest]:
                dearest = h
            if cheapest < 0 or values[h] <= values[cheapest]:
                cheapest = h

    if discharging_hours == 0:
        return False

    deficit = -schedule_instance.storage_level[worst] * unit_instance.discharge_efficiency

    if crude:
        schedule_instance.operation[cheapest] += min(-schedule_instance.operation[cheapest], deficit)
        return True

    weight_total = 0.0
    for h in range(worst + 1):
        if schedule_instance.operation[h] < 0.0:
            weight_total += values[dearest] - values[h]

    for h in range(worst + 1):
        if schedule_instance.operation[h] >= 0.0:
            continue
        if weight_total > 0.0:
            reduction = (values[dearest] - values[h]) * deficit / weight_total
        else:
            reduction = deficit / discharging_hours
        schedule_instance.operation[h] = min(schedule_instance.operation[h] + reduction, 0.0)
    return True


@njit(fastmath=FASTMATH)
def repair_schedule(
    schedule_instance: PlannedSchedule_InstanceType,
    unit_instance: StorageUnit_InstanceType,
    values: float64[:],
    tolerance: float64,
    iterations_crude: int64,
    iterations_max: int64,
) -> int64:
    """
    Iteratively correct overflow and underflow of the reservoir trajectory until it lies within the tolerated
    bounds or the iteration cap is reached.

    Each iteration corrects the worst overflow, re-propagates, then corrects the worst underflow and
    re-propagates again. After iterations_crude iterations the single-hour corrections are used. The loop ends
    early, unresolved, if neither correction can change the operation array.

    Parameters:
    -------
    schedule_instance (PlannedSchedule_InstanceType): Buffer holding the operation to be repaired.
    unit_instance (StorageUnit_InstanceType): The unit the schedule belongs to. Its storage_level seeds the
        trajectory and is not modified.
    values (float64[:]): Forecast values (price or residual load) over the horizon.
    tolerance (float64): Relative tolerance on the reservoir bounds.
    iterations_crude (int64): Iterations before switching to single-hour corrections.
    iterations_max (int64): Iterations before the schedule is flagged as unresolved.

    Returns:
    -------
    int64: FEASIBLE or UNRESOLVED.

    Side-effects:
    -------
    Attributes modified for the PlannedSchedule instance: operation, storage_level, status, iterations.
    """
    schedule_m.propagate_storage_level(schedule_instance, unit_instance)
    status = FEASIBLE
    counter = 0

    while True:
        worst_over = schedule_m.find_worst_overflow(schedule_instance, unit_instance, tolerance)
        worst_under = schedule_m.find_worst_underflow(schedule_instance, unit_instance, tolerance)
        if worst_over < 0 and worst_under < 0:
            break
        if counter >= iterations_max:
            status = UNRESOLVED
            break

        crude = counter >= iterations_crude
        changed = False

        if worst_over >= 0:
            if correct_overflow(schedule_instance, unit_instance, values, worst_over, crude):
                changed = True
            schedule_m.propagate_storage_level(schedule_instance, unit_instance)

        worst_under = schedule_m.find_worst_underflow(schedule_instance, unit_instance, tolerance)
        if worst_under >= 0:
            if correct_underflow(schedule_instance, unit_instance, values, worst_under, crude):
                changed = True
            schedule_m.propagate_storage_level(schedule_instance, unit_instance)

        counter += 1
        if not changed:
            status = UNRESOLVED
            break

    schedule_instance.status = status
    schedule_instance.iterations = counter
    return status


class FeasibilityRepairEngine:
    """
    Python-side driver of the repair loop. It owns the tolerance and iteration caps and logs non-convergence;
    the loop itself runs in njit code on a PlannedSchedule buffer.

    Attributes:
    -------
    tolerance (float): Relative tolerance on the reservoir bounds.
    iterations_crude (int): Iterations before the single-hour corrections are used.
    iterations_max (int): Iterations before the schedule is flagged as unresolved.
    logger (logging.Logger): Logger receiving the non-convergence warnings.
    """

    def __init__(
        self,
        tolerance: float = RESERVOIR_TOLERANCE,
        iterations_crude: int = REPAIR_ITERATIONS,
        iterations_max: int = REPAIR_ITERATIONS_MAX,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.tolerance = float(tolerance)
        self.iterations_crude = int(iterations_crude)
        self.iterations_max = int(iterations_max)
        self.logger = get_logger(logger)

    def repair(
        self,
        unit: StorageUnit_InstanceType,
        schedule: PlannedSchedule_InstanceType,
        values: NDArray[np.float64],
        day: Optional[int] = None,
    ) -> PlannedSchedule_InstanceType:
        """
        Repair the operation held in `schedule` in place.

        Parameters:
        -------
        unit (StorageUnit_InstanceType): The unit the schedule belongs to.
        schedule (PlannedSchedule_InstanceType): Buffer with the operation to repair. first_hour must be set.
        values (NDArray[np.float64]): Forecast values over the horizon, at least schedule.horizon long.
        day (Optional[int]): Day of year, used only for logging.

        Returns:
        -------
        PlannedSchedule_InstanceType: The same buffer, carrying the feasibility status and iteration count.

        Raises:
        -------
        ForecastError: If `values` is not one-dimensional, is shorter than the schedule horizon or contains
            non-finite entries within the horizon.
        """
        values = np.ascontiguousarray(values, dtype=np.float64)
        if values.ndim != 1:
            raise ForecastError(f"Forecast must be one-dimensional, got shape {values.shape}.")
        if values.shape[0] < schedule.horizon:
            raise ForecastError(
                f"Forecast covers {values.shape[0]} hours but {schedule.horizon} hours are required."
            )
        if not np.all(np.isfinite(values[: schedule.horizon])):
            raise ForecastError("Forecast contains NaN or infinite values.")
        status = repair_schedule(
            schedule, unit, values, self.tolerance, self.iterations_crude, self.iterations_max
        )
        if status == UNRESOLVED:
            overflow, underflow = schedule_m.check_bounds(schedule, unit, self.tolerance)
            self.logger.warning(
                "Reservoir of unit %s could not be fully resolved on day %s after %d iterations "
                "(overflow=%s, underflow=%s)",
                unit.name,
                day if day is not None else schedule.first_hour // 24,
                schedule.iterations,
                overflow,
                underflow,
            )
        else:
            self.logger.debug(
                "Repair of unit %s %s after %d iterations", unit.name, STATUS_NAMES[status], schedule.iterations
            )
        return schedule

    def repair_operation(
        self,
        unit: StorageUnit_InstanceType,
        operation: NDArray[np.float64],
        values: NDArray[np.float64],
        first_hour: int = 0,
        day: Optional[int] = None,
    ) -> PlannedSchedule_InstanceType:
        """Convenience wrapper allocating a fresh buffer for a single operation array."""
        schedule = PlannedSchedule(operation.shape[0])
        schedule_m.reset(schedule, first_hour)
        schedule_m.load_operation(schedule, np.ascontiguousarray(operation, dtype=np.float64))
        return self.repair(unit, schedule, values, day)
