from __future__ import annotations

from typing import Iterable

from domain.catalog import Offer, ProductCatalogEntry


def format_price(value: float) -> str:
    return f"{value:.2f}"


def format_price_list(values: Iterable[float]) -> str:
    return "[" + ", ".join(format_price(value) for value in values) + "]"


def format_offer(offer: Offer) -> str:
    return f"Seller: {offer.seller} | Price: {format_price(offer.price)} | Quantity: {offer.quantity}"


def format_entry(entry: ProductCatalogEntry) -> str:
    return (
        f"ID: {entry.id} | Product: {entry.name} | Category: {entry.category} | "
        f"Market Price: {format_price(entry.market_price)} | Offers: {len(entry.offers)} | "
        f"Available: {entry.available_quantity}"
    )


def render_catalog(entries: Iterable[ProductCatalogEntry]) -> None:
    printed = False
    for entry in entries:
        printed = True
        print(format_entry(entry))
        for offer in entry.offers:
            print(f"  -> {format_offer(offer)}")
    if not printed:
        print("(no items)")
