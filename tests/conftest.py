from typing import Generator

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from db.models import Base
from db.repositories import SqlCredentialStore, SqlMarketStore
from domain.stores import CredentialStore, MarketStore
from domain.trading import TradingEngine
from services.memory_store import InMemoryCredentialStore, InMemoryMarketStore

engine: Engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
session_factory = sessionmaker(engine)


@pytest.fixture(scope="function")
def test_session() -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session


@pytest.fixture(scope="function", autouse=True)
def reset_db() -> Generator[None, None, None]:
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def sql_store(test_session: Session) -> SqlMarketStore:
    return SqlMarketStore(test_session)


@pytest.fixture(scope="function")
def memory_store() -> InMemoryMarketStore:
    return InMemoryMarketStore()


@pytest.fixture(scope="function", params=["memory", "sql"])
def market_store(request: pytest.FixtureRequest) -> MarketStore:
    if request.param == "memory":
        return request.getfixturevalue("memory_store")
    return request.getfixturevalue("sql_store")


@pytest.fixture(scope="function")
def credential_store(market_store: MarketStore, test_session: Session) -> CredentialStore:
    if isinstance(market_store, SqlMarketStore):
        return SqlCredentialStore(test_session)
    return InMemoryCredentialStore()


@pytest.fixture(scope="function")
def trading_engine(market_store: MarketStore, credential_store: CredentialStore) -> TradingEngine:
    return TradingEngine(store=market_store, credentials=credential_store)
