from __future__ import annotations

import logging

from .auth import AuthenticatedUser, Role
from .catalog import BASELINE_PRICE, STOCK_SELLER, Offer, ProductCatalogEntry
from .pricing import PriceReviser, ScarcityPriceReviser
from .stores import CredentialStore, MarketStore

logger = logging.getLogger(__name__)


class TradingEngine:
    """Offer matching and price revision on top of a market store.

    The engine holds no catalog state of its own; whether the store is the
    in-process one or the SQL one is decided by whoever constructs it.
    """

    def __init__(
        self,
        *,
        store: MarketStore,
        credentials: CredentialStore,
        price_reviser: PriceReviser | None = None,
    ) -> None:
        self._store = store
        self._credentials = credentials
        self._price_reviser = price_reviser or ScarcityPriceReviser()

    def register_product(self, product_id: str, name: str, category: str, initial_quantity: int = 0) -> bool:
        """Register a product model, optionally seeding a ``Stock`` offer.

        A repeated registration follows the store's ``registration_policy``:
        the in-process store keeps the first entry for a name, the SQL store
        overwrites name and category for the same id.
        """
        written = self._store.register_product(product_id, name, category)
        logger.info(
            "Registered product id=%s name=%s written=%s policy=%s",
            product_id,
            name,
            written,
            self._store.registration_policy,
        )
        if not written:
            return False

        if initial_quantity > 0:
            self._store.upsert_offer(name, STOCK_SELLER, BASELINE_PRICE, initial_quantity)
        return True

    def list_all(self) -> list[ProductCatalogEntry]:
        return self._store.fetch_all()

    def search(self, query: str | None) -> list[ProductCatalogEntry]:
        """Case-insensitive substring match on name or category; blank returns everything."""
        entries = self._store.fetch_all()
        needle = (query or "").strip()
        if not needle:
            return entries
        return [entry for entry in entries if entry.matches_query(needle)]

    def find_entry_by_name(self, name: str) -> ProductCatalogEntry | None:
        return self._store.find_entry(name)

    def find_offer(self, name: str, seller: str) -> Offer | None:
        entry = self._store.find_entry(name)
        if entry is None:
            return None
        return entry.find_offer(seller)

    def upsert_seller_offer(self, name: str, seller: str, price: float, quantity_delta: int) -> bool:
        if self._store.find_product_id(name) is None:
            logger.warning("Offer by %s rejected: product not found: %s", seller, name)
            return False
        return self._store.upsert_offer(name, seller, price, quantity_delta)

    def purchase(self, name: str, seller: str, quantity: int) -> bool:
        """Buy ``quantity`` units from ``seller``'s offer on product ``name``.

        The trade executes at the offer's current price; afterwards the offer
        is relisted at the revised price. Returns ``False`` without touching
        any state when the quantity is not positive, the offer does not exist
        or it holds fewer units than requested.
        """
        if quantity <= 0:
            return False

        entry = self._store.find_entry(name)
        if entry is None:
            return False
        offer = entry.find_offer(seller)
        if offer is None or offer.quantity < quantity:
            return False

        execution_price = offer.price
        remaining_after = self._store.total_available_quantity(entry.name) - quantity
        new_listed_price = self._price_reviser.revise(execution_price, quantity, remaining_after)

        done = self._store.record_purchase(entry.name, offer.seller, quantity, execution_price, new_listed_price)
        if done:
            logger.info(
                "Purchase %s x%d from %s at %.2f, relisted at %.2f",
                entry.name,
                quantity,
                offer.seller,
                execution_price,
                new_listed_price,
            )
        return done

    def last_trade_prices(self, name: str, limit: int) -> list[float]:
        """Most recent execution prices, newest first."""
        if limit <= 0:
            return []
        return self._store.last_trade_prices(name, limit)

    def offer_price_history(self, name: str, seller: str) -> list[float] | None:
        return self._store.offer_price_history(name, seller)

    def authenticate(self, login: str, password: str) -> AuthenticatedUser | None:
        return self._credentials.authenticate(login, password)

    def add_user(self, login: str, password: str, role: Role) -> AuthenticatedUser:
        return self._credentials.add_user(login, password, role)


__all__ = ["TradingEngine"]
