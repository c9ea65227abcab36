from __future__ import annotations

from typing import Final, Protocol

SENSITIVITY: Final = 0.5
NEUTRAL_SHARE: Final = 0.05


class PriceReviser(Protocol):
    """Computes the listed price an offer carries after a trade."""

    def revise(self, execution_price: float, traded_quantity: int, remaining_quantity: int) -> float: ...


def revise_listed_price(execution_price: float, traded_quantity: int, remaining_quantity: int) -> float:
    """Nudge the listed price by the scarcity signal of a trade.

    The signal is the share of the pre-trade stock the trade consumed:
    ``traded / (traded + remaining)``. Above ``NEUTRAL_SHARE`` the price goes
    up, below it the price goes down, linearly with ``SENSITIVITY``. The result
    is rounded to cents and never negative.
    """
    if traded_quantity <= 0:
        raise ValueError("traded_quantity must be > 0")
    if remaining_quantity < 0:
        raise ValueError("remaining_quantity must be >= 0")
    if execution_price < 0:
        raise ValueError("execution_price must be >= 0")

    consumed_share = traded_quantity / (traded_quantity + remaining_quantity)
    factor = 1 + SENSITIVITY * (consumed_share - NEUTRAL_SHARE)
    return round(max(execution_price * factor, 0.0), 2)


class ScarcityPriceReviser(PriceReviser):
    def revise(self, execution_price: float, traded_quantity: int, remaining_quantity: int) -> float:
        return revise_listed_price(execution_price, traded_quantity, remaining_quantity)


__all__ = ["PriceReviser", "ScarcityPriceReviser", "revise_listed_price"]
