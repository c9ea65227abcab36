from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from db.models import Base


def init_db(db_url: str, echo: bool = False) -> Session:
    """Connect to ``db_url`` and create any missing tables."""
    engine: Engine = create_engine(db_url, echo=echo)

    Base.metadata.create_all(engine)
    return sessionmaker(engine)()
