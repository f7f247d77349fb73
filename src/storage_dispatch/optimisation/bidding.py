import logging
from typing import List, Optional

import numpy as np
from numpy.typing import NDArray

from storage_dispatch.common.constants import (
    HOURS_PER_DAY,
    MINIMUM_PRODUCTION_PRICE,
    SCARCITY_PRICE_SHARE,
    SCARCITY_VOLUME_SHARE,
    SEASONAL_BASE_PRICE,
    SEASONAL_CONE_COST,
)
from storage_dispatch.common.logging import get_logger
from storage_dispatch.optimisation.seasonal import SeasonalAccumulator
from storage_dispatch.system.bids import Bid
from storage_dispatch.system.components import StorageUnit_InstanceType
from storage_dispatch.system.parameters import EngineConfig

# Operation values below this magnitude are not offered
VOLUME_EPSILON = 1e-6


def seasonal_ladder_price(pass_index: int, passes: int) -> float:
    """
    Price of the bid point carrying the release of a pass. The price grows with the pass index, from the base
    price plus the cost-of-new-entry share for the first pass up to the full cost for the last pass.
    """
    return SEASONAL_BASE_PRICE + SEASONAL_BASE_PRICE * SEASONAL_CONE_COST / (passes - pass_index)


class BidTranslator:
    """
    Converts finalised hourly operation into priced bid points.

    Attributes:
    -------
    config (EngineConfig): Supplies the price floor and ceiling, the sell reference price and spread, the
        price-sensitivity flag and the epsilon used for the buy price step.
    """

    def __init__(self, config: EngineConfig, logger: Optional[logging.Logger] = None) -> None:
        self.config = config
        self.logger = get_logger(logger)

    def pumped_prices(self, volume: float):
        """Prices of the two points that straddle the reference price for a given signed volume."""
        config = self.config
        if volume < 0:
            if not config.price_sensitive:
                return config.price_floor, config.price_floor
            return (
                max(config.price_floor, config.sell_reference_price - config.sell_price_spread),
                config.sell_reference_price + config.sell_price_spread,
            )
        if not config.price_sensitive:
            return config.price_ceiling, config.price_ceiling
        return config.price_ceiling, config.price_ceiling - config.deviation_epsilon

    def pumped_bids(self, operation: NDArray[np.float64], first_hour: int, unit_id: int = -1) -> List[Bid]:
        """
        Two bid points per hour, each carrying half of the operation. Sell points lie below and above the
        reference price so that the volume clears at any realistic price, buy points sit at the price ceiling.

        Parameters:
        -------
        operation (NDArray[np.float64]): Committed operation per hour, positive for charging.
        first_hour (int): Hour of year of the first element.
        unit_id (int): Identifier stamped on the bids, -1 for portfolio bids.

        Returns:
        -------
        List[Bid]: Bid points in hour order. Hours with zero operation carry no bid.
        """
        bids = []
        for t, volume in enumerate(operation):
            if abs(volume) <= VOLUME_EPSILON:
                continue
            price_1, price_2 = self.pumped_prices(volume)
            kind = "sell" if volume < 0 else "buy"
            bids.append(Bid.from_volume(first_hour + t, volume / 2, price_1, f"pumped_{kind}_1", unit_id))
            bids.append(Bid.from_volume(first_hour + t, volume / 2, price_2, f"pumped_{kind}_2", unit_id))
        return bids

    def extreme_bids(
        self,
        unit: StorageUnit_InstanceType,
        operation: NDArray[np.float64],
        storage_level: NDArray[np.float64],
        first_hour: int,
    ) -> List[Bid]:
        """
        Additional volume a pumped unit can offer for extreme prices without endangering its reservoir.

        The smallest planned level over the period can be released continuously, and the smallest headroom to the
        reservoir maximum can be filled continuously, each spread evenly over a day. Charging hours offer extra
        pumping at a slightly negative price, all other hours offer extra turbining at the price floor.

        Parameters:
        -------
        unit (StorageUnit_InstanceType): The pumped unit.
        operation (NDArray[np.float64]): Committed operation of the unit.
        storage_level (NDArray[np.float64]): Planned reservoir level of the unit over the committed hours.
        first_hour (int): Hour of year of the first element.

        Returns:
        -------
        List[Bid]: At most one bid point per hour.
        """
        if storage_level.size == 0:
            return []
        turbine_reserve = float(np.min(storage_level))
        pump_reserve = float(np.min(unit.volume_max - storage_level))
        bids = []
        for t, planned in enumerate(operation):
            if planned > 0 and pump_reserve > 0:
                still_possible = unit.charge_capacity - planned
                if still_possible <= VOLUME_EPSILON:
                    continue
                volume = min(still_possible, pump_reserve / HOURS_PER_DAY)
                bids.append(
                    Bid.from_volume(
                        first_hour + t, volume, -5 * self.config.deviation_epsilon, "pumped_pump_extreme", unit.id
                    )
                )
            elif planned <= 0 and turbine_reserve > 0:
                still_possible = unit.discharge_capacity + planned
                if still_possible <= VOLUME_EPSILON:
                    continue
                volume = min(still_possible, turbine_reserve / HOURS_PER_DAY)
                bids.append(
                    Bid.from_volume(first_hour + t, -volume, self.config.price_floor, "pumped_turbine_extreme", unit.id)
                )
        return bids

    def seasonal_bids(
        self,
        unit: StorageUnit_InstanceType,
        accumulator: SeasonalAccumulator,
        first_hour: int,
        hours: int = HOURS_PER_DAY,
    ) -> List[Bid]:
        """
        Bid ladder of a seasonal unit for a period of the planning horizon.

        Per hour: the minimum production at a price of 1, then one point per pass carrying that pass's share of
        the remaining planned release at a price increasing with the pass index, and finally 5% of the unused
        turbine capacity near the price ceiling for scarcity hours.

        Parameters:
        -------
        unit (StorageUnit_InstanceType): The seasonal unit.
        accumulator (SeasonalAccumulator): Result of SeasonalScheduler.plan for the unit.
        first_hour (int): Hour of the planning horizon at which the period starts.
        hours (int): Length of the period.

        Returns:
        -------
        List[Bid]: Sell bid points in hour order.
        """
        bids = []
        passes = accumulator.passes
        for hour in range(first_hour, first_hour + hours):
            idx = hour % accumulator.hours
            planned = float(accumulator.planned[idx])

            if unit.minimum_production > 0:
                bids.append(
                    Bid.from_volume(
                        hour, -unit.minimum_production, MINIMUM_PRODUCTION_PRICE, "seasonal_minimum", unit.id
                    )
                )

            remaining = planned - unit.minimum_production
            if remaining > VOLUME_EPSILON:
                release = accumulator.pass_release[:, idx]
                total = release.sum()
                for p in range(passes):
                    volume = remaining * release[p] / total if total > 0 else remaining / passes
                    if volume <= VOLUME_EPSILON:
                        continue
                    bids.append(
                        Bid.from_volume(
                            hour, -volume, seasonal_ladder_price(p, passes), f"seasonal_pass_{p + 1}", unit.id
                        )
                    )

            unused = unit.discharge_capacity - max(planned, unit.minimum_production)
            if unused > VOLUME_EPSILON:
                bids.append(
                    Bid.from_volume(
                        hour,
                        -unused * SCARCITY_VOLUME_SHARE,
                        self.config.price_ceiling * SCARCITY_PRICE_SHARE,
                        "seasonal_scarcity",
                        unit.id,
                    )
                )
        return bids
