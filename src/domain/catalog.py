from __future__ import annotations

import logging
from typing import Final, NewType

from pydantic import BaseModel, Field, model_validator

from .trailing import TRAILING_WINDOW_SIZE, push_trailing

logger = logging.getLogger(__name__)

ProductId = NewType("ProductId", str)

STOCK_SELLER: Final = "Stock"
BASELINE_PRICE: Final = 10.0


class Offer(BaseModel):
    """One seller's priced, quantified listing for a product.

    ``price_history`` holds the last listed prices of this offer (not trade
    prices), oldest first.
    """

    seller: str
    price: float = 0.0
    quantity: int = 0
    price_history: list[float] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_fields(self) -> Offer:
        if not self.seller:
            raise ValueError("Offer.seller must be non-empty")
        if self.price < 0:
            raise ValueError("Offer.price must be >= 0")
        if self.quantity < 0:
            raise ValueError("Offer.quantity must be >= 0")
        if len(self.price_history) > TRAILING_WINDOW_SIZE:
            raise ValueError(f"Offer.price_history holds at most {TRAILING_WINDOW_SIZE} prices")
        return self

    def append_listed_price(self, price: float) -> None:
        push_trailing(self.price_history, price)

    def is_from(self, seller: str) -> bool:
        return self.seller.lower() == seller.lower()


class ProductCatalogEntry(BaseModel):
    """A product model defined by an administrator.

    ``trade_history`` holds the last execution prices (the prices trades
    actually happened at), oldest first.
    """

    id: ProductId
    name: str
    category: str
    offers: list[Offer] = Field(default_factory=list)
    trade_history: list[float] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_fields(self) -> ProductCatalogEntry:
        if not self.name:
            raise ValueError("ProductCatalogEntry.name must be non-empty")
        sellers = [offer.seller.lower() for offer in self.offers]
        if len(sellers) != len(set(sellers)):
            raise ValueError("ProductCatalogEntry.offers must have distinct sellers")
        if len(self.trade_history) > TRAILING_WINDOW_SIZE:
            raise ValueError(f"ProductCatalogEntry.trade_history holds at most {TRAILING_WINDOW_SIZE} prices")
        return self

    @property
    def available_quantity(self) -> int:
        return sum(offer.quantity for offer in self.offers)

    @property
    def market_price(self) -> float:
        """Mean of the current listed prices, 0.0 without offers."""
        if not self.offers:
            return 0.0
        return sum(offer.price for offer in self.offers) / len(self.offers)

    def matches_name(self, name: str) -> bool:
        return self.name.lower() == name.lower()

    def matches_query(self, query: str) -> bool:
        needle = query.lower()
        return needle in self.name.lower() or needle in self.category.lower()

    def find_offer(self, seller: str) -> Offer | None:
        for offer in self.offers:
            if offer.is_from(seller):
                return offer
        return None

    def add_offer(self, offer: Offer) -> bool:
        """Add ``offer`` unless this seller already has one."""
        if self.find_offer(offer.seller) is not None:
            return False
        self.offers.append(offer)
        return True

    def append_trade_price(self, price: float) -> None:
        push_trailing(self.trade_history, price)


def upsert_offer(entry: ProductCatalogEntry, seller: str, price: float, quantity_delta: int) -> bool:
    """Create or update the offer ``seller`` holds on ``entry``.

    An existing offer gets ``quantity_delta`` added to its quantity and its
    price replaced; the new price goes into its listed-price window. A new
    offer needs a positive initial quantity and starts its window with
    ``price``. Nothing is mutated when ``False`` is returned.
    """
    if price < 0:
        logger.warning("Rejected offer for %s by %s: negative price %s", entry.name, seller, price)
        return False

    existing = entry.find_offer(seller)
    if existing is not None:
        new_quantity = existing.quantity + quantity_delta
        if new_quantity < 0:
            logger.warning(
                "Rejected offer update for %s by %s: quantity %d %+d would go below zero",
                entry.name,
                seller,
                existing.quantity,
                quantity_delta,
            )
            return False
        existing.quantity = new_quantity
        existing.price = price
        existing.append_listed_price(price)
        return True

    if quantity_delta <= 0:
        logger.warning("Rejected new offer for %s by %s: initial quantity must be positive", entry.name, seller)
        return False
    return entry.add_offer(Offer(seller=seller, price=price, quantity=quantity_delta, price_history=[price]))


__all__ = [
    "BASELINE_PRICE",
    "Offer",
    "ProductCatalogEntry",
    "ProductId",
    "STOCK_SELLER",
    "upsert_offer",
]
