"""
Database engine and session management using SQLAlchemy.
Uses synchronous SQLite for local development; swappable to PostgreSQL.

All writes to shared documents (a user's balance, a redemption) go through
run_transaction(), the optimistic read-modify-write primitive of the store.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Generator, Optional, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session
from sqlalchemy.orm.exc import StaleDataError

from rewards_ledger.core.config import get_settings
from rewards_ledger.core.errors import TransactionConflict

logger = logging.getLogger(__name__)

settings = get_settings()

T = TypeVar("T")

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    connect_args["check_same_thread"] = False  # Required for SQLite

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,
    echo=settings.DEBUG,
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.
    Ensures proper cleanup after each request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create all database tables from model metadata."""
    # Import models so they register on Base.metadata
    from rewards_ledger import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def run_transaction(
    db: Session,
    fn: Callable[[Session], T],
    max_attempts: Optional[int] = None,
) -> T:
    """
    Run fn(db) and commit as one optimistic transaction.

    Rows mapped with a version column fail the commit with StaleDataError when
    another writer committed first; the transaction is rolled back and fn is
    re-run against fresh state. After max_attempts the conflict is surfaced as
    TransactionConflict. Any other error rolls back and propagates unchanged.
    """
    attempts = max_attempts or settings.TRANSACTION_MAX_ATTEMPTS

    for attempt in range(1, attempts + 1):
        try:
            result = fn(db)
            db.commit()
            return result
        except StaleDataError:
            db.rollback()
            logger.warning("[DB] Concurrent modification detected (attempt %d/%d)", attempt, attempts)
        except Exception:
            db.rollback()
            raise

    raise TransactionConflict(details={"attempts": attempts})
