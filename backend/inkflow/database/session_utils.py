"""
Helpers for working with SQLAlchemy sessions in a dialect-agnostic way.
"""

from __future__ import annotations

from sqlalchemy.orm import Session


def get_dialect_name(session: Session, default: str = "sqlite") -> str:
    """
    Return SQLAlchemy dialect name for the session's bind.

    Falls back to ``default`` when the session is not bound.
    """
    bind = session.get_bind()
    if bind is None:
        return default
    return bind.dialect.name or default


def supports_row_locks(session: Session) -> bool:
    """SQLite has no ``SELECT ... FOR UPDATE``; every other supported backend does."""
    return get_dialect_name(session) != "sqlite"
