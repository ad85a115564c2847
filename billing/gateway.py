"""
billing/gateway.py -- Thin adapter over the Stripe SDK.

Everything the reconciler needs from Stripe goes through StripeGateway:
customers, hosted checkout sessions, cancel-at-period-end, and webhook
signature verification. The reconciler receives a gateway instance at
construction, so tests hand it a fake and never reach the network.

The secret key is passed per call (api_key=...) instead of being assigned to
the global stripe.api_key, which keeps two gateways with different keys (e.g.
tests) from stepping on each other.

Webhook payloads are verified with stripe.WebhookSignature and then parsed
with json into plain dicts. Handlers index into dicts and never depend on
StripeObject behaviour.

Layer rule: no imports from api/, auth/, or projects/.
"""

from __future__ import annotations

import json
import logging

import stripe

from core.config import Settings
from core.errors import InternalError, SignatureError

logger = logging.getLogger("saaskit.billing")


class StripeGateway:
    """Stripe calls used by the subscription reconciler."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def _api_key(self) -> str:
        if not self._settings.stripe_secret_key:
            raise InternalError("Billing is not configured.")
        return self._settings.stripe_secret_key

    def create_customer(self, email: str, user_id: int) -> str:
        """Create a Stripe customer and return its id."""
        customer = stripe.Customer.create(
            api_key=self._api_key(),
            email=email,
            metadata={"userId": str(user_id)},
        )
        logger.info("Created Stripe customer %s for user %s", customer.id, user_id)
        return customer.id

    def create_checkout_session(self, customer_id: str, price_id: str, metadata: dict[str, str]) -> tuple[str, str]:
        """Open a hosted subscription checkout. Returns (session_id, url)."""
        frontend = self._settings.frontend_url
        session = stripe.checkout.Session.create(
            api_key=self._api_key(),
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=f"{frontend}/dashboard?success=true",
            cancel_url=f"{frontend}/pricing?canceled=true",
            metadata=metadata,
        )
        return session.id, session.url

    def cancel_at_period_end(self, subscription_id: str) -> None:
        stripe.Subscription.modify(
            subscription_id,
            api_key=self._api_key(),
            cancel_at_period_end=True,
        )

    def construct_event(self, payload: bytes, signature: str | None) -> dict:
        """Verify the Stripe-Signature header and return the event as a dict.

        Raises SignatureError for a missing header, a missing webhook secret,
        a bad signature, a stale timestamp, or a body that is not JSON.
        """
        secret = self._settings.stripe_webhook_secret
        if not secret or not signature:
            raise SignatureError()
        try:
            text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
            stripe.WebhookSignature.verify_header(text, signature, secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE)
            event = json.loads(text)
        except stripe.SignatureVerificationError as exc:
            logger.warning("Webhook signature verification failed: %s", exc)
            raise SignatureError() from exc
        except ValueError as exc:
            raise SignatureError("Webhook payload is not valid JSON.") from exc
        if not isinstance(event, dict) or "type" not in event:
            raise SignatureError("Webhook payload is not a Stripe event.")
        return event
