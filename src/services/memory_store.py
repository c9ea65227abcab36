from __future__ import annotations

import logging

from domain.auth import AuthenticatedUser, Role
from domain.catalog import ProductCatalogEntry, ProductId, upsert_offer
from domain.stores import CredentialStore, MarketStore, RegistrationPolicy

from .passwords import hash_password, verify_password

logger = logging.getLogger(__name__)


class InMemoryMarketStore(MarketStore):
    """Catalog held in process memory.

    Not thread-safe: callers sharing one instance must serialize access.
    Lookups return deep copies; entries change only through the store.
    """

    registration_policy = RegistrationPolicy.FIRST_NAME_WINS

    def __init__(self) -> None:
        self._entries: list[ProductCatalogEntry] = []

    def fetch_all(self) -> list[ProductCatalogEntry]:
        return [entry.model_copy(deep=True) for entry in self._entries]

    def find_entry(self, name: str) -> ProductCatalogEntry | None:
        entry = self._entry(name)
        return entry.model_copy(deep=True) if entry is not None else None

    def find_product_id(self, name: str) -> str | None:
        entry = self._entry(name)
        return entry.id if entry is not None else None

    def register_product(self, product_id: str, name: str, category: str) -> bool:
        if self._entry(name) is not None:
            logger.info("Product %s already registered, keeping the first entry", name)
            return False
        self._entries.append(ProductCatalogEntry(id=ProductId(product_id), name=name, category=category))
        return True

    def upsert_offer(self, name: str, seller: str, price: float, quantity_delta: int) -> bool:
        entry = self._entry(name)
        if entry is None:
            return False
        return upsert_offer(entry, seller, price, quantity_delta)

    def record_purchase(
        self,
        name: str,
        seller: str,
        quantity: int,
        execution_price: float,
        new_listed_price: float,
    ) -> bool:
        entry = self._entry(name)
        if entry is None:
            return False
        offer = entry.find_offer(seller)
        if offer is None or quantity <= 0 or offer.quantity < quantity or offer.price != execution_price:
            return False

        # Nothing below can fail.
        offer.quantity -= quantity
        offer.price = new_listed_price
        entry.append_trade_price(execution_price)
        offer.append_listed_price(new_listed_price)
        return True

    def total_available_quantity(self, name: str) -> int:
        entry = self._entry(name)
        return entry.available_quantity if entry is not None else 0

    def last_trade_prices(self, name: str, limit: int) -> list[float]:
        entry = self._entry(name)
        if entry is None or limit <= 0:
            return []
        return list(reversed(entry.trade_history))[:limit]

    def offer_price_history(self, name: str, seller: str) -> list[float] | None:
        entry = self._entry(name)
        offer = entry.find_offer(seller) if entry is not None else None
        if offer is None:
            return None
        return list(offer.price_history)

    def _entry(self, name: str) -> ProductCatalogEntry | None:
        for entry in self._entries:
            if entry.matches_name(name):
                return entry
        return None


class InMemoryCredentialStore(CredentialStore):
    def __init__(self) -> None:
        self._users: dict[str, tuple[str, AuthenticatedUser]] = {}

    def add_user(self, login: str, password: str, role: Role) -> AuthenticatedUser:
        user = AuthenticatedUser(login=login, role=role)
        self._users[login.lower()] = (hash_password(password), user)
        return user

    def authenticate(self, login: str, password: str) -> AuthenticatedUser | None:
        record = self._users.get(login.lower())
        if record is None:
            return None
        password_hash, user = record
        if not verify_password(password, password_hash):
            return None
        return user


__all__ = ["InMemoryCredentialStore", "InMemoryMarketStore"]
