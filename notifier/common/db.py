"""Database bootstrap helpers for the notification service."""

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from notifier.common.config import settings


def make_session_factory(dsn: str, **engine_kwargs) -> sessionmaker:
    """Build a session factory bound to a fresh engine for `dsn`."""

    engine = create_engine(dsn, pool_pre_ping=True, **engine_kwargs)
    # `expire_on_commit=False` keeps ORM objects readable after commit in handlers.
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


# Single SQLAlchemy engine per process.
SessionLocal = make_session_factory(settings.postgres_dsn)
engine = SessionLocal.kw["bind"]


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass
