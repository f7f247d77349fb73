import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from storage_dispatch.common.constants import RESERVOIR_TOLERANCE
from storage_dispatch.common.logging import get_logger
from storage_dispatch.fast_methods import storage_m
from storage_dispatch.system.bids import Bid
from storage_dispatch.system.components import StorageUnit_InstanceType


class UnitCommitment:
    """
    Committed part of a unit's schedule for one period: the operation offered to the market and the planned
    reservoir level at the end of each committed hour.

    Attributes:
    -------
    unit (StorageUnit_InstanceType): The unit the commitment belongs to.
    first_hour (int): Hour of year of the first committed hour.
    operation (NDArray[np.float64]): Committed operation per hour, positive for charging.
    storage_level (NDArray[np.float64]): Planned reservoir level at the end of each committed hour.
    status (int): Feasibility status of the schedule the commitment was taken from.
    """

    def __init__(
        self,
        unit: StorageUnit_InstanceType,
        first_hour: int,
        operation: NDArray[np.float64],
        storage_level: NDArray[np.float64],
        status: int = 0,
    ) -> None:
        self.unit = unit
        self.first_hour = int(first_hour)
        self.operation = np.array(operation, dtype=np.float64)
        self.storage_level = np.array(storage_level, dtype=np.float64)
        self.status = int(status)

    def __repr__(self) -> str:
        return f"UnitCommitment({self.unit.name!r}, first_hour={self.first_hour}, hours={self.operation.size})"


class ReconciliationLedger:
    """
    Per-hour, per-unit record of one reconciliation pass. Created after market clearing and discarded once the
    correction has been applied.

    Attributes:
    -------
    first_hour (int): Hour of year of the first cleared hour.
    planned (NDArray[np.float64]): Summed planned operation of the portfolio per hour.
    accepted (NDArray[np.float64]): Volume accepted by the market per hour.
    deviation (NDArray[np.float64]): planned - accepted per hour.
    assigned (Dict[int, NDArray[np.float64]]): Deviation absorbed by each unit per hour, keyed by unit id.
    unresolved (Dict[int, float]): Residual deviation per hour of year that no unit could absorb.
    inconsistent (List[int]): Hours of year in which the market accepted more than was planned.
    """

    def __init__(self, first_hour: int, planned: NDArray[np.float64], accepted: NDArray[np.float64]) -> None:
        self.first_hour = int(first_hour)
        self.planned = np.asarray(planned, dtype=np.float64)
        self.accepted = np.asarray(accepted, dtype=np.float64)
        self.deviation = self.planned - self.accepted
        self.assigned: Dict[int, NDArray[np.float64]] = {}
        self.unresolved: Dict[int, float] = {}
        self.inconsistent: List[int] = []
        self.marginal_bids: List[Bid] = []

    def __repr__(self) -> str:
        return f"ReconciliationLedger(first_hour={self.first_hour}, unresolved={len(self.unresolved)})"

    @property
    def resolved(self) -> bool:
        return not self.unresolved and not self.inconsistent

    def assign(self, unit_id: int, t: int, volume: float, hours: int) -> None:
        if unit_id not in self.assigned:
            self.assigned[unit_id] = np.zeros(hours, dtype=np.float64)
        self.assigned[unit_id][t] += volume


def merit_order(commitments: Sequence[UnitCommitment]) -> List[UnitCommitment]:
    """Least round-trip efficient units first, ties broken by unit id."""
    return sorted(commitments, key=lambda c: (c.unit.efficiency, c.unit.id))


class PortfolioReconciler:
    """
    Redistributes the gap between the portfolio's planned operation and the volume accepted by the market.

    Units are visited in merit order, least efficient first. Each unit absorbs as much of the remaining deviation
    as it can without pushing its own planned reservoir trajectory outside the tolerated bounds; the committed
    operation, planned levels and carried storage level of the unit are updated accordingly. Whatever cannot be
    absorbed is logged at ERROR level and recorded in the ledger.

    Attributes:
    -------
    tolerance (float): Relative tolerance on the reservoir bounds.
    epsilon (float): Deviations up to this magnitude are ignored (MWh).
    """

    def __init__(
        self,
        tolerance: float = RESERVOIR_TOLERANCE,
        epsilon: float = 0.01,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.tolerance = float(tolerance)
        self.epsilon = float(epsilon)
        self.logger = get_logger(logger)

    def _reduce_pumping(self, commitment: UnitCommitment, t: int, remaining: float) -> float:
        unit = commitment.unit
        planned = commitment.operation[t]
        if planned <= 0:
            return 0.0
        headroom = commitment.storage_level[t:].min() - storage_m.lower_bound(unit, self.tolerance)
        reduction = min(planned, remaining, max(headroom, 0.0) / unit.charge_efficiency)
        if reduction <= 0:
            return 0.0
        delta = reduction * unit.charge_efficiency
        commitment.operation[t] -= reduction
        commitment.storage_level[t:] -= delta
        storage_m.set_storage_level(unit, unit.storage_level - delta)
        return reduction

    def _reduce_turbining(self, commitment: UnitCommitment, t: int, remaining: float) -> float:
        unit = commitment.unit
        planned = commitment.operation[t]
        if planned >= 0:
            return 0.0
        headroom = storage_m.upper_bound(unit, self.tolerance) - commitment.storage_level[t:].max()
        reduction = min(-planned, remaining, max(headroom, 0.0) * unit.discharge_efficiency)
        if reduction <= 0:
            return 0.0
        delta = reduction / unit.discharge_efficiency
        commitment.operation[t] += reduction
        commitment.storage_level[t:] += delta
        storage_m.set_storage_level(unit, unit.storage_level + delta)
        return reduction

    def reconcile(
        self,
        commitments: Sequence[UnitCommitment],
        accepted: NDArray[np.float64],
    ) -> ReconciliationLedger:
        """
        Apply the market result to the committed schedules of the portfolio.

        Parameters:
        -------
        commitments (Sequence[UnitCommitment]): Committed schedules of all units covering the same hours.
            Modified in place, together with the carried storage level of each unit.
        accepted (NDArray[np.float64]): Accepted portfolio volume per hour, positive for buying.

        Returns:
        -------
        ReconciliationLedger: Deviations, per-unit assignments and unresolved residuals.

        Raises:
        -------
        ValueError: If the accepted volumes do not cover the committed hours or commitments differ in length.
        """
        if not commitments:
            raise ValueError("Cannot reconcile an empty portfolio.")
        hours = commitments[0].operation.size
        if any(c.operation.size != hours for c in commitments):
            raise ValueError("All commitments must cover the same number of hours.")
        accepted = np.asarray(accepted, dtype=np.float64)
        if accepted.shape != (hours,):
            raise ValueError(f"Accepted volumes must have shape ({hours},), got {accepted.shape}.")

        first_hour = commitments[0].first_hour
        planned = np.sum([c.operation for c in commitments], axis=0)
        ledger = ReconciliationLedger(first_hour, planned, accepted)
        ordered = merit_order(commitments)

        for t in range(hours):
            deviation = ledger.deviation[t]
            if abs(deviation) <= self.epsilon:
                continue

            hour = first_hour + t
            if not ((planned[t] > 0 and deviation > 0) or (planned[t] < 0 and deviation < 0)):
                self.logger.error(
                    "Hour %d: accepted volume %.3f exceeds planned operation %.3f of the portfolio",
                    hour,
                    accepted[t],
                    planned[t],
                )
                ledger.inconsistent.append(hour)
                ledger.unresolved[hour] = float(deviation)
                continue

            remaining = abs(deviation)
            for commitment in ordered:
                if remaining <= self.epsilon:
                    break
                if deviation > 0:
                    absorbed = self._reduce_pumping(commitment, t, remaining)
                else:
                    absorbed = self._reduce_turbining(commitment, t, remaining)
                if absorbed > 0:
                    remaining -= absorbed
                    ledger.assign(commitment.unit.id, t, absorbed if deviation > 0 else -absorbed, hours)

            if remaining > self.epsilon:
                residual = remaining if deviation > 0 else -remaining
                ledger.unresolved[hour] = float(residual)
                self.logger.error(
                    "Hour %d: %.3f MWh of the deviation between planned and accepted volume could not be "
                    "assigned without violating reservoir bounds",
                    hour,
                    residual,
                )

        if ledger.resolved:
            self.logger.debug("Reconciliation of hours %d-%d completed", first_hour, first_hour + hours - 1)
        return ledger


def find_marginal_bids(
    bids: Sequence[Bid],
    clearing_prices: NDArray[np.float64],
    first_hour: int,
    epsilon: float = 0.01,
) -> List[Bid]:
    """
    Bid points whose price lies within epsilon of the clearing price of their hour and that were executed at that
    price, i.e. the points that may have set the price.
    """
    clearing_prices = np.asarray(clearing_prices, dtype=np.float64)
    marginal = []
    for bid in bids:
        t = bid.hour - first_hour
        if t < 0 or t >= clearing_prices.size:
            continue
        price = clearing_prices[t]
        if abs(bid.price - price) <= epsilon and bid.is_executed(price):
            marginal.append(bid)
    return marginal
