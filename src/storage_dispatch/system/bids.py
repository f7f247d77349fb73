from enum import Enum
from typing import Dict, List


class BidType(Enum):
    BUY = "buy"
    SELL = "sell"


class Bid:
    """
    Priced bid point for one hour. An hour may carry several points forming a step function.

    Attributes:
    -------
    hour (int): Hour of year the bid applies to.
    volume (float): Signed volume in MWh, positive for buying (charging) and negative for selling (producing).
    price (float): Limit price in EUR/MWh.
    bid_type (BidType): BUY or SELL, consistent with the sign of volume.
    comment (str): Short tag identifying the bid ladder the point belongs to.
    unit_id (int): Identifier of the unit that placed the bid.
    """

    def __init__(
        self,
        hour: int,
        volume: float,
        price: float,
        bid_type: BidType,
        comment: str = "",
        unit_id: int = -1,
    ) -> None:
        self.hour = int(hour)
        self.volume = float(volume)
        self.price = float(price)
        self.bid_type = bid_type
        self.comment = comment
        self.unit_id = unit_id

    @classmethod
    def from_volume(cls, hour: int, volume: float, price: float, comment: str = "", unit_id: int = -1) -> "Bid":
        bid_type = BidType.BUY if volume > 0 else BidType.SELL
        return cls(hour, volume, price, bid_type, comment, unit_id)

    def __repr__(self) -> str:
        return (
            f"Bid(hour={self.hour}, volume={self.volume:.3f}, price={self.price:.2f}, "
            f"{self.bid_type.value}, {self.comment!r})"
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, Bid):
            return NotImplemented
        return (
            self.hour == other.hour
            and self.volume == other.volume
            and self.price == other.price
            and self.bid_type == other.bid_type
            and self.unit_id == other.unit_id
        )

    def is_executed(self, clearing_price: float) -> bool:
        """Whether the bid point is in the money at a given clearing price."""
        if self.bid_type == BidType.BUY:
            return self.price >= clearing_price
        return self.price <= clearing_price


def bids_by_hour(bids: List[Bid]) -> Dict[int, List[Bid]]:
    grouped: Dict[int, List[Bid]] = {}
    for bid in bids:
        grouped.setdefault(bid.hour, []).append(bid)
    return grouped


def total_volume(bids: List[Bid]) -> float:
    return sum(bid.volume for bid in bids)
