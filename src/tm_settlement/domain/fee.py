"""Fee calculation: royalty and platform fee, seller proceeds as the residual.

Each fee is rounded to the minor unit with round-half-even; proceeds are
price minus both rounded fees, so the three parts always sum to price.
"""

from dataclasses import dataclass

from src.tm_common.errors import InvalidAmountError, InvalidRateError
from src.tm_common.money import BPS_DENOMINATOR, div_round_half_even

MAX_ROYALTY_BPS = 5_000  # 50%
MAX_PLATFORM_FEE_BPS = 1_000  # 10%


@dataclass(frozen=True)
class FeeBreakdown:
    price: int
    royalty_fee: int
    platform_fee: int
    seller_proceeds: int
    royalty_bps: int
    platform_fee_bps: int

    @property
    def total_fees(self) -> int:
        return self.royalty_fee + self.platform_fee

    def to_dict(self) -> dict[str, int]:
        return {
            "price": self.price,
            "royalty_fee": self.royalty_fee,
            "platform_fee": self.platform_fee,
            "total_fees": self.total_fees,
            "seller_proceeds": self.seller_proceeds,
            "royalty_bps": self.royalty_bps,
            "platform_fee_bps": self.platform_fee_bps,
        }

    @classmethod
    def from_dict(cls, data: dict[str, int]) -> "FeeBreakdown":
        return cls(
            price=int(data["price"]),
            royalty_fee=int(data["royalty_fee"]),
            platform_fee=int(data["platform_fee"]),
            seller_proceeds=int(data["seller_proceeds"]),
            royalty_bps=int(data["royalty_bps"]),
            platform_fee_bps=int(data["platform_fee_bps"]),
        )


def check_rates(royalty_bps: int, platform_fee_bps: int) -> None:
    """Raise InvalidRateError if either rate is negative or they exceed 100% together."""
    if royalty_bps < 0 or platform_fee_bps < 0:
        raise InvalidRateError(royalty_bps, platform_fee_bps)
    if royalty_bps + platform_fee_bps > BPS_DENOMINATOR:
        raise InvalidRateError(royalty_bps, platform_fee_bps)


def calc_fee(price: int, rate_bps: int) -> int:
    """price x rate_bps / 10000, round-half-even to the minor unit."""
    return div_round_half_even(price * rate_bps, BPS_DENOMINATOR)


def compute_fees(price: int, royalty_bps: int, platform_fee_bps: int) -> FeeBreakdown:
    check_rates(royalty_bps, platform_fee_bps)
    if price < 0:
        raise InvalidAmountError(f"price must not be negative, got {price}")

    royalty_fee = calc_fee(price, royalty_bps)
    platform_fee = calc_fee(price, platform_fee_bps)
    return FeeBreakdown(
        price=price,
        royalty_fee=royalty_fee,
        platform_fee=platform_fee,
        seller_proceeds=price - royalty_fee - platform_fee,
        royalty_bps=royalty_bps,
        platform_fee_bps=platform_fee_bps,
    )
