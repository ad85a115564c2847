"""
billing/reconciler.py -- Subscription state reconciler.

Keeps the local subscriptions table in line with Stripe, driven by webhook
events that may arrive late, twice, or out of order.

State machine over SubscriptionStatus:

    INACTIVE --checkout/created--> ACTIVE --deleted/cancel--> CANCELED
    CANCELED --created/updated/payment ok--> ACTIVE
    ACTIVE <--payment failed / payment ok--> PAST_DUE

There is no terminal state. Every handler is a single keyed write, so
applying the same event twice leaves the same end state, and the last event
written wins. Events that reference a customer or subscription id we do not
know are logged and dropped -- Stripe may deliver them before the row that
would match exists.

Authenticity gate: handle_webhook() is the only public path from raw HTTP to
the apply_* methods, and it rejects anything whose Stripe-Signature does not
verify before touching state.

Layer rule: no imports from api/ or projects/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from billing.gateway import StripeGateway
from billing.models import Plan, SubscriptionStatus, plan_catalog, status_from_provider
from billing.store import SubscriptionStore
from core.config import Settings
from core.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger("saaskit.billing")


class SubscriptionReconciler:
    """Maps Stripe events and user billing actions onto local subscription state."""

    def __init__(self, store: SubscriptionStore, gateway: StripeGateway, settings: Settings) -> None:
        self._store = store
        self._gateway = gateway
        self._settings = settings
        self._handlers: dict[str, Callable[[dict], None]] = {
            "checkout.session.completed": self._on_checkout_completed,
            "customer.subscription.created": self._on_subscription_created,
            "customer.subscription.updated": self._on_subscription_updated,
            "customer.subscription.deleted": self._on_subscription_deleted,
            "invoice.payment_succeeded": self._on_payment_succeeded,
            "invoice.payment_failed": self._on_payment_failed,
        }

    # ------------------------------------------------------------------
    # Event application
    # ------------------------------------------------------------------

    def apply_checkout_completed(self, user_id: int, plan: Plan, customer_id: str | None) -> None:
        """Upsert the user's row to (plan, customer, ACTIVE). Idempotent."""
        self._store.upsert_for_user(
            user_id,
            plan=Plan(plan),
            stripe_customer_id=customer_id,
            status=SubscriptionStatus.ACTIVE,
        )
        logger.info("Checkout completed: user %s now %s/ACTIVE", user_id, Plan(plan).value)

    def apply_subscription_created(
        self,
        customer_id: str,
        subscription_id: str,
        period_start: datetime | None,
        period_end: datetime | None,
    ) -> bool:
        """Attach a new Stripe subscription to the row holding customer_id.

        Returns False when no row carries that customer id, or when either id
        is missing from the event.
        """
        if not customer_id or not subscription_id:
            logger.info("subscription.created without customer/subscription id ignored")
            return False
        sub = self._store.find_by_customer(customer_id)
        if sub is None:
            logger.info("subscription.created for unknown customer %s ignored", customer_id)
            return False
        self._store.update_by_user(
            sub.user_id,
            stripe_subscription_id=subscription_id,
            status=SubscriptionStatus.ACTIVE,
            current_period_start=period_start,
            current_period_end=period_end,
        )
        return True

    def apply_subscription_updated(
        self,
        subscription_id: str,
        new_status: SubscriptionStatus,
        period_start: datetime | None,
        period_end: datetime | None,
    ) -> int:
        """Overwrite status and period on every row with subscription_id. Returns rows changed."""
        if not subscription_id:
            logger.info("subscription.updated without subscription id ignored")
            return 0
        changed = self._store.update_by_provider_subscription(
            subscription_id,
            status=SubscriptionStatus(new_status),
            current_period_start=period_start,
            current_period_end=period_end,
        )
        if not changed:
            logger.info("subscription.updated for unknown subscription %s ignored", subscription_id)
        return changed

    def apply_subscription_deleted(self, subscription_id: str) -> int:
        return self._set_status(subscription_id, SubscriptionStatus.CANCELED)

    def apply_payment_succeeded(self, subscription_id: str) -> int:
        return self._set_status(subscription_id, SubscriptionStatus.ACTIVE)

    def apply_payment_failed(self, subscription_id: str) -> int:
        return self._set_status(subscription_id, SubscriptionStatus.PAST_DUE)

    def _set_status(self, subscription_id: str, status: SubscriptionStatus) -> int:
        if not subscription_id:
            logger.info("%s without subscription id ignored", status.value)
            return 0
        changed = self._store.set_status_by_provider_subscription(subscription_id, status)
        if not changed:
            logger.info("%s for unknown subscription %s ignored", status.value, subscription_id)
        return changed

    # ------------------------------------------------------------------
    # User-initiated actions
    # ------------------------------------------------------------------

    def create_checkout(self, user_id: int, email: str, plan: Plan | str) -> dict[str, str]:
        """Open a Stripe checkout for plan and return {sessionId, url}.

        Raises ValidationError for an unknown or free plan, ConflictError when
        the user already has an ACTIVE paid subscription. The FREE/ACTIVE row
        every user gets at registration does not count as subscribed.
        """
        try:
            plan = plan if isinstance(plan, Plan) else Plan(str(plan).upper())
        except ValueError as exc:
            raise ValidationError("Invalid plan selection.") from exc
        info = plan_catalog(self._settings)[plan]
        if not info.billable:
            raise ValidationError("Invalid plan selection.")

        existing = self._store.get_by_user(user_id)
        if existing is not None and existing.status == SubscriptionStatus.ACTIVE and existing.plan != Plan.FREE:
            raise ConflictError("You already have an active subscription.")

        customer_id = existing.stripe_customer_id if existing is not None else None
        if not customer_id:
            customer_id = self._gateway.create_customer(email, user_id)
            self._store.upsert_for_user(user_id, stripe_customer_id=customer_id)

        session_id, url = self._gateway.create_checkout_session(
            customer_id,
            info.price_id,
            metadata={"userId": str(user_id), "plan": plan.value},
        )
        logger.info("Checkout session %s opened for user %s (%s)", session_id, user_id, plan.value)
        return {"sessionId": session_id, "url": url}

    def cancel(self, user_id: int) -> None:
        """Cancel at period end in Stripe, then mark CANCELED locally right away.

        The local status leads Stripe's own subscription.deleted event, which
        arrives when the period actually ends.
        """
        sub = self._store.get_by_user(user_id)
        if sub is None or not sub.stripe_subscription_id:
            raise NotFoundError("No active subscription found.")
        self._gateway.cancel_at_period_end(sub.stripe_subscription_id)
        self._store.update_by_user(user_id, status=SubscriptionStatus.CANCELED)
        logger.info("User %s canceled subscription %s", user_id, sub.stripe_subscription_id)

    def status(self, user_id: int) -> dict[str, Any]:
        sub = self._store.get_by_user(user_id)
        if sub is None:
            return {
                "hasSubscription": False,
                "plan": Plan.FREE,
                "status": SubscriptionStatus.INACTIVE,
                "currentPeriodStart": None,
                "currentPeriodEnd": None,
            }
        return {
            "hasSubscription": True,
            "plan": sub.plan,
            "status": sub.status,
            "currentPeriodStart": sub.current_period_start,
            "currentPeriodEnd": sub.current_period_end,
        }

    # ------------------------------------------------------------------
    # Webhook entry point
    # ------------------------------------------------------------------

    def handle_webhook(self, payload: bytes, signature: str | None) -> str:
        """Verify and apply one Stripe webhook delivery. Returns the event type.

        Raises SignatureError before any state change if verification fails.
        Unknown event types are acknowledged without action.
        """
        event = self._gateway.construct_event(payload, signature)
        self.dispatch(event)
        return event["type"]

    def dispatch(self, event: dict) -> None:
        """Route an already-verified event to its handler."""
        event_type = event.get("type", "")
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("Unhandled Stripe event type %s", event_type)
            return
        obj = (event.get("data") or {}).get("object") or {}
        logger.info("Applying Stripe event %s (%s)", event.get("id"), event_type)
        handler(obj)

    # ------------------------------------------------------------------
    # Event payload adapters
    # ------------------------------------------------------------------

    def _on_checkout_completed(self, session: dict) -> None:
        metadata = session.get("metadata") or {}
        user_id = metadata.get("userId")
        plan = metadata.get("plan")
        if not user_id or not plan:
            logger.info("checkout.session.completed %s without userId/plan metadata ignored", session.get("id"))
            return
        try:
            self.apply_checkout_completed(int(user_id), Plan(plan.upper()), session.get("customer"))
        except ValueError:
            logger.warning("checkout.session.completed %s has bad metadata %r", session.get("id"), metadata)

    def _on_subscription_created(self, sub: dict) -> None:
        start, end = _period(sub)
        self.apply_subscription_created(sub.get("customer"), sub.get("id"), start, end)

    def _on_subscription_updated(self, sub: dict) -> None:
        start, end = _period(sub)
        self.apply_subscription_updated(sub.get("id"), status_from_provider(sub.get("status")), start, end)

    def _on_subscription_deleted(self, sub: dict) -> None:
        self.apply_subscription_deleted(sub.get("id"))

    def _on_payment_succeeded(self, invoice: dict) -> None:
        subscription_id = _invoice_subscription(invoice)
        if subscription_id:
            self.apply_payment_succeeded(subscription_id)

    def _on_payment_failed(self, invoice: dict) -> None:
        subscription_id = _invoice_subscription(invoice)
        if subscription_id:
            self.apply_payment_failed(subscription_id)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _from_epoch(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _period(sub: dict) -> tuple[datetime | None, datetime | None]:
    """Billing period of a Stripe subscription object.

    Newer API versions moved current_period_* from the subscription onto its
    items; fall back to the first item when the top-level fields are absent.
    """
    start = sub.get("current_period_start")
    end = sub.get("current_period_end")
    if start is None or end is None:
        items = ((sub.get("items") or {}).get("data")) or []
        if items:
            start = items[0].get("current_period_start", start)
            end = items[0].get("current_period_end", end)
    return _from_epoch(start), _from_epoch(end)


def _invoice_subscription(invoice: dict) -> str | None:
    """Subscription id of an invoice, for both the old and new API shapes."""
    subscription = invoice.get("subscription")
    if subscription is None:
        details = ((invoice.get("parent") or {}).get("subscription_details")) or {}
        subscription = details.get("subscription")
    if isinstance(subscription, dict):
        return subscription.get("id")
    return subscription
