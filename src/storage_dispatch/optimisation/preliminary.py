# type: ignore
import logging
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from storage_dispatch.common.constants import FASTMATH, PRICE_LIMIT_CHARGE_INIT, PRICE_LIMIT_DISCHARGE_INIT
from storage_dispatch.common.jit_overload import njit
from storage_dispatch.common.logging import get_logger
from storage_dispatch.common.typing import UniTuple, float64
from storage_dispatch.system.components import StorageUnit_InstanceType
from storage_dispatch.system.forecast import HorizonForecast


@njit(fastmath=FASTMATH)
def price_limits(prices: float64[:], efficiency: float64) -> UniTuple(float64, 2):
    """
    Walk the sorted prices from both ends inwards, pairing the lowest and highest remaining price. A pair is
    accepted while charging at the low price and discharging at the high price is profitable after round-trip
    losses. The last accepted pair defines the limits.

    Parameters:
    -------
    prices (float64[:]): Price forecast over the horizon, units of EUR/MWh.
    efficiency (float64): Round-trip efficiency of the unit.

    Returns:
    -------
    UniTuple(float64, 2): Charge price limit and discharge price limit. If no pair is profitable the initial
        limits are returned, which no realistic price reaches.
    """
    sorted_prices = np.sort(prices)
    n = sorted_prices.shape[0]
    charge_limit = PRICE_LIMIT_CHARGE_INIT
    discharge_limit = PRICE_LIMIT_DISCHARGE_INIT

    for i in range(n // 2):
        low = sorted_prices[i]
        high = sorted_prices[n - 1 - i]
        if high <= 0.0 or low > efficiency * high:
            break
        charge_limit = low
        discharge_limit = high

    return charge_limit, discharge_limit


@njit(fastmath=FASTMATH)
def plan_price_based(
    prices: float64[:],
    charge_capacity: float64,
    discharge_capacity: float64,
    efficiency: float64,
) -> float64[:]:
    """
    Price-threshold policy. Hours at or above the discharge limit discharge at full turbine capacity, hours at
    or below the charge limit charge at full pump capacity, all other hours are idle.
    """
    charge_limit, discharge_limit = price_limits(prices, efficiency)
    operation = np.zeros(prices.shape[0], dtype=np.float64)
    for t in range(prices.shape[0]):
        if prices[t] >= discharge_limit:
            operation[t] = -discharge_capacity
        elif prices[t] <= charge_limit:
            operation[t] = charge_capacity
    return operation


@njit(fastmath=FASTMATH)
def plan_load_smoothing(
    residual_load: float64[:],
    charge_capacity: float64,
    discharge_capacity: float64,
    load_band: float64,
) -> float64[:]:
    """
    Load-smoothing policy. Residual load above the upper threshold of the band around the horizon average is
    shaved off by discharging, residual load below the lower threshold is filled up by charging. Negative
    residual load always charges at full capacity.

    Parameters:
    -------
    residual_load (float64[:]): Residual load forecast over the horizon, units of MW.
    charge_capacity (float64): Maximum pumping power, units of MW.
    discharge_capacity (float64): Maximum turbine power, units of MW.
    load_band (float64): Full width of the band around the average inside which the unit stays idle.

    Returns:
    -------
    float64[:]: Operation per hour, positive for charging.
    """
    average = np.mean(residual_load)
    upper = average + 0.5 * load_band
    lower = average - 0.5 * load_band
    operation = np.zeros(residual_load.shape[0], dtype=np.float64)

    for t in range(residual_load.shape[0]):
        load = residual_load[t]
        if load < 0.0:
            operation[t] = charge_capacity
        elif load > upper:
            operation[t] = -min(load - upper, discharge_capacity)
        elif load < lower:
            operation[t] = min(lower - load, charge_capacity)
    return operation


class PreliminaryDispatchPlanner:
    """
    Stateless planner producing the initial operation plan of a pumped-storage unit from a forecast alone.
    Reservoir bounds are ignored here and enforced afterwards by the FeasibilityRepairEngine.
    """

    def __init__(self, load_band: float = 0.0, logger: Optional[logging.Logger] = None) -> None:
        self.load_band = float(load_band)
        self.logger = get_logger(logger)

    def plan(self, unit: StorageUnit_InstanceType, forecast: HorizonForecast) -> NDArray[np.float64]:
        """
        Plan the operation of a unit over the forecast horizon using the policy matching the forecast signal.

        Parameters:
        -------
        unit (StorageUnit_InstanceType): The unit to plan for. Only static parameters are read.
        forecast (HorizonForecast): Price forecast for the price policy, residual load for load smoothing.

        Returns:
        -------
        NDArray[np.float64]: Operation per hour of the horizon.
        """
        values = forecast.as_array()
        if forecast.signal == "price":
            operation = plan_price_based(values, unit.charge_capacity, unit.discharge_capacity, unit.efficiency)
        else:
            operation = plan_load_smoothing(values, unit.charge_capacity, unit.discharge_capacity, self.load_band)

        self.logger.debug(
            "Preliminary plan for unit %s (%s signal): %d charging hours, %d discharging hours",
            unit.name,
            forecast.signal,
            int(np.count_nonzero(operation > 0)),
            int(np.count_nonzero(operation < 0)),
        )
        return operation
