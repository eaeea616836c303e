# backend/inkflow/repositories/client_repository.py
"""Client Repository: clients are identified by their (case-insensitive) email."""

from typing import Optional, cast

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.client import Client
from .base_repository import BaseRepository


class ClientRepository(BaseRepository[Client]):
    def __init__(self, db: Session):
        super().__init__(db, Client)

    def get_by_email(self, email: str) -> Optional[Client]:
        query = self._build_query().filter(func.lower(Client.email) == email.strip().lower())
        return cast(Optional[Client], query.first())

    def get_or_create(self, *, email: str, name: str, phone: Optional[str] = None) -> Client:
        """Return the client for ``email``, creating it when missing."""
        existing = self.get_by_email(email)
        if existing is not None:
            if phone and not existing.phone:
                existing.phone = phone
            return existing
        return self.create(email=email.strip().lower(), name=name, phone=phone)
