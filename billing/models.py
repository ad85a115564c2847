"""
billing/models.py -- Subscription domain types and the plan catalog.

Plan and SubscriptionStatus are closed str-Enums. Provider status strings
are translated to SubscriptionStatus in exactly one place
(status_from_provider) so an unexpected Stripe status cannot leak into the
database as a free-form string.

Layer rule: no imports from api/, auth/, or projects/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from core.config import Settings


class Plan(str, Enum):
    FREE = "FREE"
    PRO = "PRO"


class SubscriptionStatus(str, Enum):
    INACTIVE = "INACTIVE"
    ACTIVE = "ACTIVE"
    CANCELED = "CANCELED"
    PAST_DUE = "PAST_DUE"


@dataclass
class Subscription:
    """Local mirror of a user's billing state. Exactly one per user.

    stripe_customer_id / stripe_subscription_id are references to objects
    owned by Stripe; this system never creates or deletes them directly
    except through the checkout and cancel flows.
    """

    user_id: int
    plan: Plan = Plan.FREE
    status: SubscriptionStatus = SubscriptionStatus.INACTIVE
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class PlanInfo:
    plan: Plan
    name: str
    price: float
    price_id: str | None
    features: list[str] = field(default_factory=list)

    @property
    def billable(self) -> bool:
        return self.price_id is not None


def plan_catalog(settings: Settings) -> dict[Plan, PlanInfo]:
    """Return the plans on offer. Only PRO has a Stripe price."""
    return {
        Plan.FREE: PlanInfo(
            plan=Plan.FREE,
            name="Free Plan",
            price=0,
            price_id=None,
            features=["Basic features", "Limited usage"],
        ),
        Plan.PRO: PlanInfo(
            plan=Plan.PRO,
            name="Pro Plan",
            price=29.99,
            price_id=settings.stripe_pro_price_id,
            features=["All features", "Unlimited usage", "Priority support"],
        ),
    }


_PROVIDER_STATUS = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}


def status_from_provider(value: str | None) -> SubscriptionStatus:
    """Map a Stripe subscription status onto the local enum.

    "incomplete", "paused" and anything unknown become INACTIVE.
    """
    return _PROVIDER_STATUS.get((value or "").lower(), SubscriptionStatus.INACTIVE)
