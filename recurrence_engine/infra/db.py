from __future__ import annotations

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from recurrence_engine.config import SETTINGS

Base = declarative_base()


def _begin_immediate(engine: Engine) -> None:
    """Make SQLite take its write lock when a transaction starts.

    SQLite ignores ``SELECT ... FOR UPDATE``; with ``BEGIN IMMEDIATE`` two
    transactions on the same database run one after the other instead.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(connection) -> None:
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def make_engine(url: str, **kwargs) -> Engine:
    engine = create_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        _begin_immediate(engine)
    return engine


def make_session_factory(bind: Engine) -> sessionmaker:
    # Entities are converted before commit, so expiring on commit only costs reloads.
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, expire_on_commit=False)


engine = make_engine(SETTINGS.database_url, pool_pre_ping=True)
SessionLocal = make_session_factory(engine)


def init_db(create_schema: bool = False) -> None:
    if create_schema:
        from . import models  # noqa: F401  registers tables on Base.metadata

        Base.metadata.create_all(engine)
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))
