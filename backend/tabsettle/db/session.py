"""Database store and session management.

The ``Store`` owns the engine and the session factory.  It is built once by
the application factory and handed to every service at construction; nothing
in the package reaches for a module-level engine.
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from typing import Annotated, Callable, TypeVar

from fastapi import Depends, Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from tabsettle.core.config import Settings
from tabsettle.core.results import Err

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_engine(settings: Settings) -> Engine:
    """Create the engine for ``settings.database_url``."""
    connect_args = {}
    if settings.database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        pool_config = {
            "pool_pre_ping": True,
            "pool_recycle": 1800,
        }
    else:
        pool_config = {
            "pool_size": 20,
            "max_overflow": 40,
            "pool_pre_ping": True,
            "pool_recycle": 3600,
        }

    engine = create_engine(
        settings.database_url,
        connect_args=connect_args,
        echo=settings.debug and settings.log_level == "DEBUG",
        **pool_config,
    )
    if settings.database_url.startswith("sqlite"):
        enable_sqlite_foreign_keys(engine)
    return engine


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    """Turn on foreign key enforcement for every new SQLite connection."""

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class Store:
    """Handle on the relational store.

    ``session()`` scopes one unit of work: commit on success, rollback on any
    exception, connection released on exit.  ``run()`` additionally retries a
    unit of work once when the database reports a transient failure, and
    rolls back instead of committing when the work returns an ``Err``.
    """

    TRANSIENT_RETRIES = 1

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(
            bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Store":
        return cls(build_engine(settings))

    @property
    def supports_row_locks(self) -> bool:
        return self.engine.dialect.name != "sqlite"

    def new_session(self) -> Session:
        return self._session_factory()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def run(self, work: Callable[[Session], T]) -> T:
        attempt = 0
        while True:
            db = self._session_factory()
            try:
                result = work(db)
                if isinstance(result, Err):
                    db.rollback()
                else:
                    db.commit()
                return result
            except OperationalError as e:
                db.rollback()
                if attempt >= self.TRANSIENT_RETRIES:
                    raise
                attempt += 1
                logger.warning(f"Transient database error, retrying once: {e}")
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def dispose(self) -> None:
        self.engine.dispose()


def get_store(request: Request) -> Store:
    """FastAPI dependency returning the store bound to the running app."""
    return request.app.state.store


def get_db(store: Annotated[Store, Depends(get_store)]) -> Generator[Session, None, None]:
    """Get database session dependency for read-only routes."""
    db = store.new_session()
    try:
        yield db
    finally:
        db.close()


# Type aliases for dependency injection
StoreDep = Annotated[Store, Depends(get_store)]
DbSession = Annotated[Session, Depends(get_db)]
