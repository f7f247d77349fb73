# type: ignore
from storage_dispatch.common.constants import FASTMATH, FEASIBLE
from storage_dispatch.common.exceptions import raise_forecast_length_error
from storage_dispatch.common.jit_overload import njit
from storage_dispatch.common.typing import UniTuple, boolean, float64, int64
from storage_dispatch.fast_methods import storage_m
from storage_dispatch.system.components import PlannedSchedule_InstanceType, StorageUnit_InstanceType


@njit(fastmath=FASTMATH)
def reset(schedule_instance: PlannedSchedule_InstanceType, first_hour: int64) -> None:
    """
    Zero the buffer at the start of a horizon solve.

    Side-effects:
    -------
    Attributes modified for the PlannedSchedule instance: first_hour, operation, storage_level, status,
    iterations.
    """
    schedule_instance.first_hour = first_hour
    schedule_instance.operation[:] = 0.0
    schedule_instance.storage_level[:] = 0.0
    schedule_instance.status = FEASIBLE
    schedule_instance.iterations = 0


@njit(fastmath=FASTMATH)
def load_operation(schedule_instance: PlannedSchedule_InstanceType, operation: float64[:]) -> None:
    """Copy an operation array into the buffer."""
    if operation.shape[0] < schedule_instance.horizon:
        raise_forecast_length_error()
    for t in range(schedule_instance.horizon):
        schedule_instance.operation[t] = operation[t]


@njit(fastmath=FASTMATH)
def clip_to_capacity(
    schedule_instance: PlannedSchedule_InstanceType, unit_instance: StorageUnit_InstanceType
) -> None:
    for t in range(schedule_instance.horizon):
        schedule_instance.operation[t] = storage_m.clip_operation(unit_instance, schedule_instance.operation[t])


@njit(fastmath=FASTMATH)
def propagate_storage_level(
    schedule_instance: PlannedSchedule_InstanceType, unit_instance: StorageUnit_InstanceType
) -> None:
    """
    Propagate the reservoir level hour by hour from the current operation array, starting from the carried
    level of the unit. No bounds are enforced here.

    Parameters:
    -------
    schedule_instance (PlannedSchedule_InstanceType): Buffer holding the operation array.
    unit_instance (StorageUnit_InstanceType): The unit the schedule belongs to.

    Returns:
    -------
    None.

    Side-effects:
    -------
    Attributes modified for the PlannedSchedule instance: storage_level.
    """
    level = unit_instance.storage_level
    for t in range(schedule_instance.horizon):
        level += storage_m.level_change(unit_instance, schedule_instance.operation[t])
        level += storage_m.get_inflow(unit_instance, schedule_instance.first_hour + t)
        schedule_instance.storage_level[t] = level


@njit(fastmath=FASTMATH)
def find_worst_overflow(
    schedule_instance: PlannedSchedule_InstanceType, unit_instance: StorageUnit_InstanceType, tolerance: float64
) -> int64:
    """
    Hour with the highest reservoir level above the tolerated upper bound. Ties resolve to the latest hour.

    Returns:
    -------
    int64: Hour index, or -1 if no hour overflows.
    """
    upper = storage_m.upper_bound(unit_instance, tolerance)
    worst = -1
    for t in range(schedule_instance.horizon):
        if schedule_instance.storage_level[t] > upper:
            if worst < 0 or schedule_instance.storage_level[t] >= schedule_instance.storage_level[worst]:
                worst = t
    return worst


@njit(fastmath=FASTMATH)
def find_worst_underflow(
    schedule_instance: PlannedSchedule_InstanceType, unit_instance: StorageUnit_InstanceType, tolerance: float64
) -> int64:
    """
    Hour with the lowest reservoir level below the tolerated lower bound. Ties resolve to the latest hour.

    Returns:
    -------
    int64: Hour index, or -1 if no hour underflows.
    """
    lower = storage_m.lower_bound(unit_instance, tolerance)
    worst = -1
    for t in range(schedule_instance.horizon):
        if schedule_instance.storage_level[t] < lower:
            if worst < 0 or schedule_instance.storage_level[t] <= schedule_instance.storage_level[worst]:
                worst = t
    return worst


@njit(fastmath=FASTMATH)
def check_bounds(
    schedule_instance: PlannedSchedule_InstanceType, unit_instance: StorageUnit_InstanceType, tolerance: float64
) -> UniTuple(boolean, 2):
    """Overflow and underflow flags of the current reservoir trajectory."""
    overflow = find_worst_overflow(schedule_instance, unit_instance, tolerance) >= 0
    underflow = find_worst_underflow(schedule_instance, unit_instance, tolerance) >= 0
    return overflow, underflow


@njit(fastmath=FASTMATH)
def load_storage_level(schedule_instance: PlannedSchedule_InstanceType, storage_level: float64[:]) -> None:
    """Copy an externally computed reservoir trajectory (e.g. from a linear program) into the buffer."""
    if storage_level.shape[0] < schedule_instance.horizon:
        raise_forecast_length_error()
    for t in range(schedule_instance.horizon):
        schedule_instance.storage_level[t] = storage_level[t]
