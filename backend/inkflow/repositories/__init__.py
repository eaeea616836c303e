"""Repository layer: data access separated from business logic."""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .client_repository import ClientRepository
from .factory import RepositoryFactory
from .payment_repository import PaymentRepository
from .provider_repository import ProviderRepository
from .webhook_event_repository import WebhookEventRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "ClientRepository",
    "PaymentRepository",
    "ProviderRepository",
    "RepositoryFactory",
    "WebhookEventRepository",
]
