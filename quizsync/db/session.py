"""SQLAlchemy engine & session factory for the local store."""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


def init_local_db(engine: Engine) -> None:
    """Create the local tables if they are missing."""
    # Import for side effect: registers the tables on Base.metadata
    from quizsync.db import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def create_local_engine(url: str, *, echo: bool = False) -> Engine:
    """Create the engine backing the local store and make sure tables exist."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, echo=echo, pool_pre_ping=True, connect_args=connect_args)
    init_local_db(engine)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:  # type: ignore[type-arg]
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
