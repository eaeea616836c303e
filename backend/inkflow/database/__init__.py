"""
Database handle, session factory, and metadata shared across the application.

The ``Database`` object is constructed once per process (API lifespan or
Celery worker) and handed to request handlers through ``app.state``.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
from typing import Generator, Optional

from fastapi import Request
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .engines import build_engine

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """Owns one engine and the session factory bound to it."""

    def __init__(self, url: Optional[str] = None, *, engine: Optional[Engine] = None) -> None:
        self.engine = engine if engine is not None else build_engine(url)
        self.session_factory = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    def session(self) -> Session:
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Session that commits on success and rolls back on error."""
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def create_all(self) -> None:
        # Register every model on the metadata before creating tables.
        import inkflow.models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    def pool_status(self) -> dict[str, int]:
        """Get current database pool statistics."""
        pool = self.engine.pool
        size = getattr(pool, "size", None)
        if not callable(size):
            return {"size": 1, "checked_out": 0, "overflow": 0}
        return {
            "size": pool.size(),  # type: ignore[attr-defined]
            "checked_out": pool.checkedout(),  # type: ignore[attr-defined]
            "overflow": pool.overflow(),  # type: ignore[attr-defined]
        }


def get_db(request: Request) -> Generator[Session, None, None]:
    """Get database session with proper cleanup."""
    database: Database = request.app.state.database
    db = database.session()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


__all__ = ["Base", "Database", "get_db"]
