import pytest
from sqlalchemy import func, inspect, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from db import models
from db.repositories import SqlCredentialStore, SqlMarketStore
from domain.auth import Role
from domain.catalog import STOCK_SELLER
from domain.stores import MarketStoreError, RegistrationPolicy
from domain.trading import TradingEngine


@pytest.fixture()
def sql_engine(sql_store: SqlMarketStore, test_session: Session) -> TradingEngine:
    engine = TradingEngine(store=sql_store, credentials=SqlCredentialStore(test_session))
    engine.register_product("p-1", "Widget", "Tools", initial_quantity=100)
    return engine


def _count(session: Session, model: type[models.Base]) -> int:
    return session.scalar(select(func.count()).select_from(model)) or 0


def test_registration_upserts_by_id(sql_store: SqlMarketStore) -> None:
    assert sql_store.registration_policy == RegistrationPolicy.UPSERT_BY_ID

    assert sql_store.register_product("p-1", "Widget", "Tools")
    assert sql_store.register_product("p-1", "Gizmo", "Gadgets")

    assert sql_store.find_entry("Widget") is None
    entry = sql_store.find_entry("gizmo")
    assert entry is not None
    assert (entry.id, entry.name, entry.category) == ("p-1", "Gizmo", "Gadgets")
    assert len(sql_store.fetch_all()) == 1


def test_registration_refuses_taken_name_under_new_id(sql_store: SqlMarketStore) -> None:
    assert sql_store.register_product("p-1", "Widget", "Tools")

    assert not sql_store.register_product("p-2", "WIDGET", "Other")

    assert sql_store.find_product_id("widget") == "p-1"
    assert len(sql_store.fetch_all()) == 1


def test_repeated_registration_restocks_stock_offer(sql_engine: TradingEngine) -> None:
    assert sql_engine.register_product("p-1", "Widget", "Tools", initial_quantity=20)

    offer = sql_engine.find_offer("Widget", STOCK_SELLER)
    assert offer is not None
    assert offer.quantity == 120


def test_purchase_writes_offer_listed_price_and_trade_rows(sql_engine: TradingEngine, test_session: Session) -> None:
    assert sql_engine.purchase("Widget", STOCK_SELLER, 10)

    offer_row = test_session.scalars(select(models.OfferOrm)).one()
    assert offer_row.quantity == 90
    assert offer_row.price == pytest.approx(10.25)
    assert test_session.scalars(select(models.TradePriceOrm.price)).all() == [10.0]
    assert test_session.scalars(select(models.ListedPriceOrm.price).order_by(models.ListedPriceOrm.id)).all() == [
        10.0,
        pytest.approx(10.25),
    ]


def test_trade_history_table_is_append_only_but_windows_are_bounded(
    sql_engine: TradingEngine, sql_store: SqlMarketStore, test_session: Session
) -> None:
    for _ in range(5):
        assert sql_engine.purchase("Widget", STOCK_SELLER, 1)

    assert _count(test_session, models.TradePriceOrm) == 5
    assert _count(test_session, models.ListedPriceOrm) == 6

    entry = sql_store.find_entry("Widget")
    assert entry is not None
    assert len(entry.trade_history) == 3
    offer = entry.find_offer(STOCK_SELLER)
    assert offer is not None
    assert len(offer.price_history) == 3
    assert len(sql_store.last_trade_prices("Widget", 10)) == 3


def test_purchase_rolls_back_on_database_failure(
    sql_engine: TradingEngine,
    sql_store: SqlMarketStore,
    test_session: Session,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _fail(product_id: str, price: float) -> None:
        raise OperationalError("INSERT INTO price_history", {}, Exception("disk I/O error"))

    monkeypatch.setattr(sql_store, "_append_trade_price", _fail)

    with pytest.raises(MarketStoreError):
        sql_engine.purchase("Widget", STOCK_SELLER, 10)

    offer = sql_engine.find_offer("Widget", STOCK_SELLER)
    assert offer is not None
    assert (offer.quantity, offer.price, offer.price_history) == (100, 10.0, [10.0])
    assert sql_engine.last_trade_prices("Widget", 3) == []
    assert _count(test_session, models.ListedPriceOrm) == 1


def test_record_purchase_rejects_stale_execution_price(sql_engine: TradingEngine, sql_store: SqlMarketStore) -> None:
    assert not sql_store.record_purchase("Widget", STOCK_SELLER, 1, 9.99, 11.0)

    offer = sql_engine.find_offer("Widget", STOCK_SELLER)
    assert offer is not None
    assert (offer.quantity, offer.price) == (100, 10.0)


def test_record_purchase_never_oversells(sql_engine: TradingEngine, sql_store: SqlMarketStore) -> None:
    # Two buyers priced their purchase against the same read of 100 units.
    assert sql_store.record_purchase("Widget", STOCK_SELLER, 60, 10.0, 10.0)
    assert not sql_store.record_purchase("Widget", STOCK_SELLER, 60, 10.0, 10.0)

    assert sql_store.total_available_quantity("Widget") == 40


def test_total_available_quantity(sql_engine: TradingEngine, sql_store: SqlMarketStore) -> None:
    sql_engine.upsert_seller_offer("Widget", "alice", 12.0, 15)

    assert sql_store.total_available_quantity("widget") == 115
    assert sql_store.total_available_quantity("Unknown") == 0


def test_offers_are_unique_per_seller_case_insensitively(sql_engine: TradingEngine, test_session: Session) -> None:
    sql_engine.upsert_seller_offer("Widget", "alice", 12.0, 5)
    sql_engine.upsert_seller_offer("Widget", "ALICE", 13.0, 5)

    rows = test_session.scalars(select(models.OfferOrm).where(models.OfferOrm.seller != STOCK_SELLER)).all()
    assert [(row.seller, row.quantity, row.price) for row in rows] == [("alice", 10, 13.0)]


def test_read_failure_is_reported_as_store_error(sql_store: SqlMarketStore, monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(name: str) -> None:
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(sql_store, "_product_by_name", _fail)

    with pytest.raises(MarketStoreError):
        sql_store.find_entry("Widget")


def test_credentials_are_stored_hashed(test_session: Session) -> None:
    credentials = SqlCredentialStore(test_session)

    credentials.add_user("bob", "hunter2", Role.SELLER)

    row = test_session.scalars(select(models.UserOrm)).one()
    assert row.password_hash != "hunter2"
    assert row.password_hash.startswith("$2b$")
    user = credentials.authenticate("BOB", "hunter2")
    assert user is not None
    assert user.role == Role.SELLER
    assert credentials.authenticate("bob", "hunter3") is None


def test_add_user_updates_existing_login(test_session: Session) -> None:
    credentials = SqlCredentialStore(test_session)
    credentials.add_user("bob", "old", Role.SELLER)

    credentials.add_user("Bob", "new", Role.ADMIN)

    assert credentials.authenticate("bob", "old") is None
    user = credentials.authenticate("bob", "new")
    assert user is not None
    assert user.role == Role.ADMIN
    assert _count(test_session, models.UserOrm) == 1


def test_corrupt_stored_hash_fails_authentication(test_session: Session) -> None:
    credentials = SqlCredentialStore(test_session)
    credentials.add_user("bob", "hunter2", Role.SELLER)
    row = test_session.scalars(select(models.UserOrm)).one()
    row.password_hash = "pbkdf2_sha256$0$salt$abc"
    test_session.commit()

    assert credentials.authenticate("bob", "hunter2") is None


def test_catalog_reads_load_only_the_newest_history_rows(
    sql_engine: TradingEngine, sql_store: SqlMarketStore, test_session: Session
) -> None:
    sql_engine.register_product("p-2", "Gadget", "Toys", initial_quantity=50)
    for _ in range(4):
        assert sql_engine.purchase("Widget", STOCK_SELLER, 1)
    assert sql_engine.purchase("Gadget", STOCK_SELLER, 5)
    test_session.expunge_all()

    entries = {entry.name: entry for entry in sql_store.fetch_all()}

    assert len(entries["Widget"].trade_history) == 3
    assert entries["Gadget"].trade_history == [10.0]
    assert entries["Gadget"].offers[0].price_history == sql_engine.offer_price_history("Gadget", STOCK_SELLER)
    for product in test_session.scalars(select(models.ProductOrm)):
        assert "trade_prices" in inspect(product).unloaded
    for offer in test_session.scalars(select(models.OfferOrm)):
        assert "listed_prices" in inspect(offer).unloaded
