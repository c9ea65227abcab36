from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError

from config import AppSettings, config
from db.db import init_db
from db.repositories import SqlCredentialStore, SqlMarketStore
from domain.auth import AuthenticatedUser, Role
from domain.trading import TradingEngine
from services.memory_store import InMemoryCredentialStore, InMemoryMarketStore
from utils.formatting import format_offer, format_price_list, render_catalog

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 3


@dataclass(frozen=True)
class Bootstrap:
    engine: TradingEngine
    durable: bool


def build_engine(settings: AppSettings) -> Bootstrap:
    """Pick the store from settings; fall back to in-memory if the database cannot be initialized."""
    if settings.db_url:
        try:
            session = init_db(settings.db_url, echo=settings.db_echo)
            engine = TradingEngine(store=SqlMarketStore(session), credentials=SqlCredentialStore(session))
            logger.info("Running with database: %s", settings.db_url)
            return Bootstrap(engine=engine, durable=True)
        except (SQLAlchemyError, ImportError):
            logger.exception("Failed to initialize database, falling back to in-memory mode")
    else:
        logger.info("DB_URL is not set, running in in-memory mode")

    engine = TradingEngine(store=InMemoryMarketStore(), credentials=InMemoryCredentialStore())
    return Bootstrap(engine=engine, durable=False)


def explain_purchase_failure(engine: TradingEngine, name: str, seller: str, quantity: int) -> str:
    entry = engine.find_entry_by_name(name)
    if entry is None:
        return f"Product not found: {name}"
    offer = entry.find_offer(seller)
    if offer is None:
        sellers = ", ".join(o.seller for o in entry.offers) or "none"
        return f"Seller offer not found: {seller} for {name}. Available sellers: {sellers}"
    if quantity <= 0:
        return "Quantity must be positive."
    if offer.quantity < quantity:
        return f"Not enough stock in seller offer. Available: {offer.quantity}"
    return "Purchase failed (unknown reason)."


def _require_role(engine: TradingEngine, args: argparse.Namespace, role: Role) -> AuthenticatedUser | None:
    if not args.login or not args.password:
        print(f"[ERROR] {role.value} login required (--login/--password).")
        return None
    user = engine.authenticate(args.login, args.password)
    if user is None:
        print("[ERROR] Invalid credentials.")
        return None
    if not user.has_role(role):
        print(f"[ERROR] Access denied ({role.value} required).")
        return None
    return user


def run(args: argparse.Namespace, engine: TradingEngine) -> int:
    command = args.command

    if command == "list":
        render_catalog(engine.list_all())
        return 0

    if command == "search":
        results = engine.search(args.query)
        if not results:
            print("No results.")
            return 0
        render_catalog(results)
        return 0

    if command == "register":
        if _require_role(engine, args, Role.ADMIN) is None:
            return 1
        written = engine.register_product(args.id, args.name, args.category, args.quantity)
        print("[OK] Product added/updated." if written else "[INFO] Product already registered, nothing changed.")
        return 0

    if command == "offer":
        user = _require_role(engine, args, Role.SELLER)
        if user is None:
            return 1
        ok = engine.upsert_seller_offer(args.product, user.login, args.price, args.quantity)
        print("[OK] Offer upserted." if ok else "[FAIL] Offer update failed.")
        return 0 if ok else 1

    if command == "buy":
        if not engine.purchase(args.product, args.seller, args.quantity):
            print(f"[FAIL] {explain_purchase_failure(engine, args.product, args.seller, args.quantity)}")
            return 1
        print(f"[OK] Bought {args.quantity} of {args.product} from {args.seller}")
        offer = engine.find_offer(args.product, args.seller)
        if offer is not None:
            print(f"[INFO] {format_offer(offer)}")
            print(f"[INFO] Offer price history: {format_price_list(offer.price_history)}")
        return 0

    if command == "history":
        prices = engine.last_trade_prices(args.product, args.limit)
        if not prices:
            print("No trade history yet.")
        else:
            print(f'Last {len(prices)} trade prices for "{args.product}": {format_price_list(prices)}')
        return 0

    if command == "add-user":
        user = engine.add_user(args.login, args.password, Role(args.role))
        print(f"[OK] User {user.login} ({user.role.value}) saved.")
        return 0

    if command == "login":
        user = engine.authenticate(args.login, args.password)
        if user is None:
            print("Invalid credentials.")
            return 1
        print(f"Logged in as {user.login} ({user.role.value})")
        return 0

    raise ValueError(f"Unknown command: {command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Marketplace ledger.")
    parser.add_argument("--db-url", default=None, help="SQLAlchemy URL; overrides DB_URL.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List all products with their offers.")

    search = sub.add_parser("search", help="Search products by name or category.")
    search.add_argument("query", nargs="?", default="")

    register = sub.add_parser("register", help="Add or update a product (admin).")
    register.add_argument("id")
    register.add_argument("name")
    register.add_argument("category")
    register.add_argument("--quantity", type=int, default=0, help="Initial Stock quantity.")

    offer = sub.add_parser("offer", help="Create or update your offer (seller).")
    offer.add_argument("product")
    offer.add_argument("quantity", type=int, help="Quantity to add (negative to withdraw).")
    offer.add_argument("price", type=float)

    buy = sub.add_parser("buy", help="Buy from a seller's offer.")
    buy.add_argument("product")
    buy.add_argument("seller")
    buy.add_argument("quantity", type=int)

    history = sub.add_parser("history", help="Show the last trade prices of a product.")
    history.add_argument("product")
    history.add_argument("--limit", type=int, default=HISTORY_LIMIT)

    for name in ("register", "offer"):
        command = sub.choices[name]
        command.add_argument("--login")
        command.add_argument("--password")

    add_user = sub.add_parser("add-user", help="Create or update a user.")
    add_user.add_argument("login")
    add_user.add_argument("password")
    add_user.add_argument("role", choices=[role.value for role in Role])

    login = sub.add_parser("login", help="Check credentials.")
    login.add_argument("login")
    login.add_argument("password")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = config()
    if args.db_url:
        settings = settings.model_copy(update={"db_url": args.db_url})
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    bootstrap = build_engine(settings)
    if not bootstrap.durable:
        logger.warning("In-memory mode: changes are lost when the command exits")
    return run(args, bootstrap.engine)


if __name__ == "__main__":
    raise SystemExit(main())
