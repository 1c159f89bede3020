"""Engine and session construction shared by the service, scripts and tests."""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from cliq.common.config import settings


def _enable_sqlite_foreign_keys(dbapi_connection, _) -> None:
    dbapi_connection.execute("PRAGMA foreign_keys=ON")


def make_engine(dsn: str) -> Engine:
    """Postgres in deployment; SQLite for local runs and the test suite.

    SQLite gets one shared connection (an in-memory database lives per
    connection) and foreign keys switched on so `ON DELETE SET NULL` applies.
    """

    if dsn.startswith("sqlite"):
        engine = create_engine(dsn, connect_args={"check_same_thread": False}, poolclass=StaticPool)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(dsn, pool_pre_ping=True)


def make_session_factory(bind: Engine) -> sessionmaker:
    # `expire_on_commit=False` keeps claimed rows readable after the claim commits.
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, expire_on_commit=False)


engine = make_engine(settings.postgres_dsn)
SessionLocal = make_session_factory(engine)


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass
