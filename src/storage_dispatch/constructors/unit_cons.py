from typing import Any, Dict, List, Optional

import numpy as np
from numpy.typing import NDArray

from storage_dispatch.common.helpers import as_float_array, is_nan
from storage_dispatch.system.components import StorageUnit, StorageUnit_InstanceType


def _optional_float(value: Any, default: float) -> float:
    if value is None or is_nan(value) or str(value).strip() == "":
        return default
    return float(value)


def construct_StorageUnit_object(
    unit_dict: Dict[str, Any],
    order: int,
    inflow: Optional[NDArray[np.float64]] = None,
) -> StorageUnit_InstanceType:  # type: ignore
    """
    Takes data required to initialise a single storage unit, casts values into Numba-compatible types, and
    returns an instance of the StorageUnit jitclass.

    Seasonal units never pump, so their charge capacity is forced to zero. A missing storage_level starts the
    unit with an empty reservoir and a missing minimum_production means no must-run production.

    Parameters:
    -------
    unit_dict (Dict[str, Any]): A dictionary containing the attributes of a single unit in `units.csv`.
    order (int): Position of the unit within the portfolio.
    inflow (Optional[NDArray[np.float64]]): Hourly inflow series of the unit. None means zero inflow.

    Returns:
    -------
    StorageUnit_InstanceType: An instance of the StorageUnit jitclass.
    """
    idx = int(unit_dict["id"])
    name = str(unit_dict["name"])
    unit_type = str(unit_dict.get("unit_type", "pumped")).strip().lower()

    charge_capacity = float(unit_dict.get("charge_capacity", 0.0)) if unit_type == "pumped" else 0.0
    discharge_capacity = float(unit_dict["discharge_capacity"])
    volume_max = float(unit_dict["volume_max"])
    storage_level = _optional_float(unit_dict.get("storage_level"), 0.0)
    charge_efficiency = _optional_float(unit_dict.get("charge_efficiency"), 1.0)
    discharge_efficiency = _optional_float(unit_dict.get("discharge_efficiency"), 1.0)
    minimum_production = _optional_float(unit_dict.get("minimum_production"), 0.0)

    inflow_array = as_float_array(inflow) if inflow is not None else np.zeros(0, dtype=np.float64)

    return StorageUnit(
        idx,
        order,
        name,
        unit_type,
        charge_capacity,
        discharge_capacity,
        volume_max,
        storage_level,
        charge_efficiency,
        discharge_efficiency,
        minimum_production,
        inflow_array,
    )


def construct_StorageUnit_list(
    units_dict: Dict[Any, Dict[str, Any]],
    inflows: Optional[Dict[int, NDArray[np.float64]]] = None,
) -> List[StorageUnit_InstanceType]:  # type: ignore
    """
    Construct the portfolio in the order of `units.csv`.

    Parameters:
    -------
    units_dict (Dict[Any, Dict[str, Any]]): Records of `units.csv` keyed by id.
    inflows (Optional[Dict[int, NDArray[np.float64]]]): Inflow series keyed by unit id.

    Returns:
    -------
    List[StorageUnit_InstanceType]: StorageUnit instances, where StorageUnit.order is the list index.
    """
    inflows = inflows or {}
    return [
        construct_StorageUnit_object(unit_dict, order, inflows.get(int(unit_dict["id"])))
        for order, unit_dict in enumerate(units_dict.values())
    ]
