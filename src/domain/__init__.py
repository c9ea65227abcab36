"""Domain models and rules for the marketplace ledger.

This package holds the in-memory (Pydantic) catalog models, the price
revision policy and the trading engine. Persistence is reached only through
the store protocols in ``domain.stores`` so the same rules run against the
in-process store and the SQL store.
"""

__all__ = [
    "auth",
    "catalog",
    "pricing",
    "stores",
    "trading",
    "trailing",
]
