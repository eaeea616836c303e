# backend/inkflow/services/subscription_service.py
"""
Platform subscription sync from Stripe events.

Providers pay InkFlow a monthly plan (STARTER, PRO, STUDIO). Stripe is the
source of truth; these handlers copy plan, status, ids and period end onto
the provider row.
"""

import logging
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import SubscriptionPlan, SubscriptionStatus
from ..core.timezone_utils import utc_timestamp_to_studio
from ..models.provider import Provider
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "cancelled": SubscriptionStatus.CANCELED,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.INCOMPLETE_EXPIRED,
    "unpaid": SubscriptionStatus.UNPAID,
}


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a dict or StripeObject."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, AttributeError):
        return default
    return default if value is None else value


def map_subscription_status(raw_status: Optional[str]) -> SubscriptionStatus:
    return STATUS_MAP.get((raw_status or "").lower(), SubscriptionStatus.CANCELED)


def _first_item(subscription: Any) -> Any:
    items = _field(_field(subscription, "items"), "data", [])
    return items[0] if items else None


def resolve_plan(subscription: Any, fallback: Optional[str] = None) -> Optional[str]:
    """Price-id mapping first, then ``metadata.plan``, then ``fallback``."""
    price_id = _field(_field(_first_item(subscription), "price"), "id")
    plan = settings.price_id_plans.get(price_id or "")
    if not plan:
        plan = _field(_field(subscription, "metadata"), "plan") or fallback
    if plan and plan.upper() in SubscriptionPlan.__members__:
        return SubscriptionPlan[plan.upper()].value
    return None


def _period_end(subscription: Any) -> Optional[int]:
    return _field(subscription, "current_period_end") or _field(
        _first_item(subscription), "current_period_end"
    )


class SubscriptionService(BaseService):
    """Applies subscription lifecycle events to providers. Callers commit."""

    def __init__(self, db: Session, gateway: Optional[StripeGateway] = None):
        super().__init__(db)
        self._gateway = gateway
        self.provider_repository = RepositoryFactory.create_provider_repository(db)

    @property
    def gateway(self) -> StripeGateway:
        if self._gateway is None:
            self._gateway = StripeGateway()
        return self._gateway

    def _find_provider(
        self, user_id: Optional[str], customer_id: Optional[str]
    ) -> Optional[Provider]:
        if user_id:
            provider = self.provider_repository.get_by_id(user_id, load_relationships=False)
            if provider is not None:
                return provider
        if customer_id:
            return self.provider_repository.find_by_stripe_customer_id(customer_id)
        return None

    def _apply(self, provider: Provider, subscription: Any, plan: Optional[str]) -> None:
        customer_id = _field(subscription, "customer")
        provider.stripe_customer_id = customer_id or provider.stripe_customer_id
        provider.stripe_subscription_id = _field(subscription, "id")
        provider.subscription_plan = plan
        provider.subscription_status = map_subscription_status(_field(subscription, "status")).value
        period_end = _period_end(subscription)
        provider.subscription_current_period_end = (
            utc_timestamp_to_studio(int(period_end)) if period_end else None
        )

    @BaseService.measure_operation("handle_checkout_completed")
    def handle_checkout_completed(self, session_obj: Mapping[str, Any]) -> Optional[str]:
        """Subscription-mode checkout: fetch the subscription and store it on the provider."""
        if _field(session_obj, "mode") != "subscription" or not _field(session_obj, "subscription"):
            return None
        metadata = _field(session_obj, "metadata", {})
        user_id = _field(metadata, "userId") or _field(session_obj, "client_reference_id")
        if not user_id:
            self.logger.error("No userId found in checkout session metadata")
            return None
        provider = self._find_provider(user_id, None)
        if provider is None:
            self.logger.error("Checkout completed for unknown provider %s", user_id)
            return None

        subscription = self.gateway.retrieve_subscription(_field(session_obj, "subscription"))
        plan = resolve_plan(subscription, fallback=_field(metadata, "plan"))
        self._apply(provider, subscription, plan)
        self.db.flush()
        self.log_operation(
            "subscription_started",
            provider_id=provider.id,
            plan=plan,
            status=provider.subscription_status,
        )
        return str(provider.id)

    @BaseService.measure_operation("handle_subscription_updated")
    def handle_subscription_updated(self, subscription: Mapping[str, Any]) -> Optional[str]:
        """``customer.subscription.created`` / ``.updated``."""
        provider = self._find_provider(
            _field(_field(subscription, "metadata"), "userId"), _field(subscription, "customer")
        )
        if provider is None:
            self.logger.error("No provider found for subscription %s", _field(subscription, "id"))
            return None
        plan = resolve_plan(subscription)
        self._apply(provider, subscription, plan)
        self.db.flush()
        self.log_operation(
            "subscription_updated",
            provider_id=provider.id,
            plan=plan,
            status=provider.subscription_status,
        )
        return str(provider.id)

    @BaseService.measure_operation("handle_subscription_deleted")
    def handle_subscription_deleted(self, subscription: Mapping[str, Any]) -> Optional[str]:
        provider = self._find_provider(
            _field(_field(subscription, "metadata"), "userId"), _field(subscription, "customer")
        )
        if provider is None:
            return None
        provider.subscription_status = SubscriptionStatus.CANCELED.value
        provider.subscription_current_period_end = None
        self.db.flush()
        self.log_operation("subscription_canceled", provider_id=provider.id)
        return str(provider.id)
