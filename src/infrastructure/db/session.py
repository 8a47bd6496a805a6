# src/infrastructure/db/session.py

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool


# -----------------------------
# Base Class for Models
# -----------------------------
class Base(DeclarativeBase):
    pass


# -----------------------------
# Engine
# -----------------------------
def _serialize_sqlite_transactions(engine: Engine) -> None:
    """
    SQLite ignores SELECT ... FOR UPDATE. Starting every transaction
    with BEGIN IMMEDIATE takes the write lock up front, which gives the
    same read-count-decide-write serialization the row lock gives on
    PostgreSQL.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, echo: bool = False) -> Engine:
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False, "timeout": 30}}
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, echo=echo, future=True, **kwargs)
        _serialize_sqlite_transactions(engine)
        return engine

    return create_engine(
        database_url,
        echo=echo,
        future=True,
        pool_pre_ping=True,
    )


# -----------------------------
# Session Factory
# -----------------------------
def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


# -----------------------------
# Unit of work
# -----------------------------
@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """
    One transaction: commit on success, roll back on any error.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
