# type: ignore
import numpy as np

from storage_dispatch.common.constants import FEASIBLE, JIT_ENABLED
from storage_dispatch.common.jit_overload import jitclass
from storage_dispatch.common.typing import float64, int64, unicode_type

if JIT_ENABLED:
    storage_unit_spec = [
        ("id", int64),
        ("order", int64),
        ("name", unicode_type),
        ("unit_type", unicode_type),
        ("charge_capacity", float64),
        ("discharge_capacity", float64),
        ("volume_max", float64),
        ("charge_efficiency", float64),
        ("discharge_efficiency", float64),
        ("efficiency", float64),
        ("minimum_production", float64),
        ("inflow", float64[:]),
        # Carried state
        ("storage_level", float64),
    ]
else:
    storage_unit_spec = []


@jitclass(storage_unit_spec)
class StorageUnit:
    """
    Flexible storage asset scheduled by the dispatch engine: either a pumped-storage plant that buys
    energy to charge and sells it back later, or a seasonal reservoir that only releases natural inflow.

    Notes:
    -------
    - Sign convention for every operation value: positive means charging (consumption, buy),
      negative means discharging (production, sell).
    - Charging multiplies the operation by charge_efficiency before it reaches the reservoir, discharging
      divides it by discharge_efficiency.
    - storage_level is the only attribute that persists between horizons. It is written exactly once at the
      end of a horizon and again by the portfolio reconciliation after market clearing.
    - Inflow is an hour-of-year series indexed modulo its length. An empty array means zero inflow.

    Attributes:
    -------
    id (int64): A model-level identifier for the StorageUnit instance.
    order (int64): Position of the unit within the portfolio, used to index portfolio arrays.
    name (unicode_type): A string providing the ordinary name of the unit.
    unit_type (unicode_type): Either "pumped" or "seasonal".
    charge_capacity (float64): Maximum pumping power, units of MW. Zero for seasonal units.
    discharge_capacity (float64): Maximum turbine power, units of MW.
    volume_max (float64): Upper reservoir bound, units of MWh. The lower bound is zero.
    charge_efficiency (float64): Fraction of pumped energy that reaches the reservoir.
    discharge_efficiency (float64): Fraction of released reservoir energy that reaches the grid.
    efficiency (float64): Round-trip efficiency, charge_efficiency * discharge_efficiency.
    minimum_production (float64): Must-run production of seasonal units, units of MW.
    inflow (float64[:]): Natural inflow into the reservoir per hour of year, units of MWh.
    storage_level (float64): Current reservoir level, units of MWh.
    """

    def __init__(
        self,
        idx: int64,
        order: int64,
        name: unicode_type,
        unit_type: unicode_type,
        charge_capacity: float64,
        discharge_capacity: float64,
        volume_max: float64,
        storage_level: float64,
        charge_efficiency: float64,
        discharge_efficiency: float64,
        minimum_production: float64,
        inflow: float64[:],
    ) -> None:
        self.id = idx
        self.order = order
        self.name = name
        self.unit_type = unit_type
        self.charge_capacity = charge_capacity  # MW
        self.discharge_capacity = discharge_capacity  # MW
        self.volume_max = volume_max  # MWh
        self.charge_efficiency = charge_efficiency
        self.discharge_efficiency = discharge_efficiency
        self.efficiency = charge_efficiency * discharge_efficiency
        self.minimum_production = minimum_production  # MW
        self.inflow = inflow  # MWh/h

        self.storage_level = storage_level  # MWh


if JIT_ENABLED:
    StorageUnit_InstanceType = StorageUnit.class_type.instance_type
else:
    StorageUnit_InstanceType = StorageUnit

if JIT_ENABLED:
    planned_schedule_spec = [
        ("horizon", int64),
        ("first_hour", int64),
        ("operation", float64[:]),
        ("storage_level", float64[:]),
        ("status", int64),
        ("iterations", int64),
    ]
else:
    planned_schedule_spec = []


@jitclass(planned_schedule_spec)
class PlannedSchedule:
    """
    Pre-sized working buffer for a single horizon solve of one unit.

    The buffer is owned by the call that solves the horizon and is reset at the start of each solve
    instead of being reallocated for every repair iteration. It must never be shared between concurrent
    solves.

    Attributes:
    -------
    horizon (int64): Number of hours in the buffer.
    first_hour (int64): Hour of year of element 0, used to look up inflow.
    operation (float64[:]): Signed operation per hour, units of MW.
    storage_level (float64[:]): Reservoir level at the end of each hour, units of MWh.
    status (int64): FEASIBLE or UNRESOLVED once the repair engine has terminated.
    iterations (int64): Number of repair iterations used in the last solve.
    """

    def __init__(self, horizon: int64) -> None:
        self.horizon = horizon
        self.first_hour = 0
        self.operation = np.zeros(horizon, dtype=np.float64)
        self.storage_level = np.zeros(horizon, dtype=np.float64)
        self.status = FEASIBLE
        self.iterations = 0


if JIT_ENABLED:
    PlannedSchedule_InstanceType = PlannedSchedule.class_type.instance_type
else:
    PlannedSchedule_InstanceType = PlannedSchedule
