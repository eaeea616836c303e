"""Per-process database handle for Celery workers."""

from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator

from sqlalchemy.orm import Session

from inkflow.database import Database


@lru_cache(maxsize=1)
def worker_database() -> Database:
    """Build the worker's database handle once per process."""
    return Database()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Provide transactional scope for use in tasks."""
    with worker_database().session_scope() as session:
        yield session
