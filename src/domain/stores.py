from __future__ import annotations

from enum import StrEnum
from typing import Protocol

from .auth import AuthenticatedUser, Role
from .catalog import ProductCatalogEntry


class MarketStoreError(Exception):
    """Infrastructure failure of a store (unreachable, failed transaction).

    Validation failures are reported through return values, never through
    this exception.
    """


class RegistrationPolicy(StrEnum):
    # Second registration of an existing name is a no-op.
    FIRST_NAME_WINS = "first_name_wins"
    # Registration overwrites name and category of the same id.
    UPSERT_BY_ID = "upsert_by_id"


class MarketStore(Protocol):
    """Capability set the trading engine runs against.

    Lookups by product name and seller are case-insensitive. Windows are
    returned oldest first, ``last_trade_prices`` newest first.
    """

    registration_policy: RegistrationPolicy

    def fetch_all(self) -> list[ProductCatalogEntry]: ...

    def find_entry(self, name: str) -> ProductCatalogEntry | None: ...

    def find_product_id(self, name: str) -> str | None: ...

    def register_product(self, product_id: str, name: str, category: str) -> bool: ...

    def upsert_offer(self, name: str, seller: str, price: float, quantity_delta: int) -> bool: ...

    def record_purchase(
        self,
        name: str,
        seller: str,
        quantity: int,
        execution_price: float,
        new_listed_price: float,
    ) -> bool: ...

    def total_available_quantity(self, name: str) -> int: ...

    def last_trade_prices(self, name: str, limit: int) -> list[float]: ...

    def offer_price_history(self, name: str, seller: str) -> list[float] | None: ...


class CredentialStore(Protocol):
    def authenticate(self, login: str, password: str) -> AuthenticatedUser | None: ...

    def add_user(self, login: str, password: str, role: Role) -> AuthenticatedUser: ...


__all__ = ["CredentialStore", "MarketStore", "MarketStoreError", "RegistrationPolicy"]
