# type: ignore
from storage_dispatch.common.constants import FASTMATH
from storage_dispatch.common.jit_overload import njit
from storage_dispatch.common.typing import float64, int64
from storage_dispatch.system.components import StorageUnit_InstanceType


@njit(fastmath=FASTMATH)
def get_inflow(unit_instance: StorageUnit_InstanceType, hour: int64) -> float64:
    """
    Natural inflow into the reservoir during an hour of year. The inflow series wraps around its end so
    that horizons extending past the end of the year read from its start.

    Parameters:
    -------
    unit_instance (StorageUnit_InstanceType): An instance of the StorageUnit jitclass.
    hour (int64): Hour of year.

    Returns:
    -------
    float64: Inflow in MWh, zero if the unit has no inflow series.
    """
    length = unit_instance.inflow.shape[0]
    if length == 0:
        return 0.0
    return unit_instance.inflow[hour % length]


@njit(fastmath=FASTMATH)
def level_change(unit_instance: StorageUnit_InstanceType, operation: float64) -> float64:
    """
    Change of the reservoir level caused by an operation value, excluding inflow. Charging is scaled by the
    charge efficiency, discharging is divided by the discharge efficiency.
    """
    if operation > 0:
        return operation * unit_instance.charge_efficiency
    return operation / unit_instance.discharge_efficiency


@njit(fastmath=FASTMATH)
def round_trip_output(unit_instance: StorageUnit_InstanceType, charged: float64) -> float64:
    """
    Energy returned to the grid when `charged` MWh are pumped and the resulting stored energy is released
    again immediately.
    """
    stored = charged * unit_instance.charge_efficiency
    return stored * unit_instance.discharge_efficiency


@njit(fastmath=FASTMATH)
def upper_bound(unit_instance: StorageUnit_InstanceType, tolerance: float64) -> float64:
    return (1.0 + tolerance) * unit_instance.volume_max


@njit(fastmath=FASTMATH)
def lower_bound(unit_instance: StorageUnit_InstanceType, tolerance: float64) -> float64:
    return -tolerance * unit_instance.volume_max


@njit(fastmath=FASTMATH)
def clip_operation(unit_instance: StorageUnit_InstanceType, operation: float64) -> float64:
    """Clip a signed operation value to the charge and discharge capacity of the unit."""
    if operation > unit_instance.charge_capacity:
        return unit_instance.charge_capacity
    if operation < -unit_instance.discharge_capacity:
        return -unit_instance.discharge_capacity
    return operation


@njit(fastmath=FASTMATH)
def set_storage_level(unit_instance: StorageUnit_InstanceType, storage_level: float64) -> None:
    """
    Write the carried reservoir level at the end of a horizon. The value is clamped to [0, volume_max] so
    that tolerance-sized residuals of the repair engine do not accumulate over many horizons.

    Side-effects:
    -------
    Attributes modified for the StorageUnit instance: storage_level.
    """
    unit_instance.storage_level = min(max(storage_level, 0.0), unit_instance.volume_max)
