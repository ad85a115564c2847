"""
tests/test_reconciler.py -- Unit tests for billing/reconciler.py.

Coverage:
  - apply_* handlers: idempotence, unmatched ids are no-ops
  - out-of-order delivery: last write wins (documented, not prevented)
  - checkout: conflict for active paid plan, FREE row does not block upgrade,
    customer reuse, invalid plans
  - cancel: requires a provider subscription, optimistic local CANCELED
  - webhook gate: bad or missing signature changes nothing
  - payload adapters for old and new Stripe API shapes
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from auth.models import User
from billing.gateway import StripeGateway
from billing.models import Plan, Subscription, SubscriptionStatus, status_from_provider
from core.errors import ConflictError, InternalError, NotFoundError, SignatureError, ValidationError

START = 1_700_000_000
END = 1_702_592_000


@pytest.fixture
def user_id(user_store) -> int:
    return user_store.create_user(User(email="alice@x.com", hashed_password="x"))


@pytest.fixture
def free_user(user_id, subscription_store) -> int:
    """User with the FREE/ACTIVE row registration creates."""
    subscription_store.create(Subscription(user_id=user_id, plan=Plan.FREE, status=SubscriptionStatus.ACTIVE))
    return user_id


def _event(event_type: str, obj: dict, event_id: str = "evt_1") -> dict:
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


# ---------------------------------------------------------------------------
# Event application
# ---------------------------------------------------------------------------


class TestApply:
    def test_checkout_completed_is_idempotent(self, reconciler, subscription_store, free_user) -> None:
        reconciler.apply_checkout_completed(free_user, Plan.PRO, "cus_1")
        once = subscription_store.get_by_user(free_user)
        reconciler.apply_checkout_completed(free_user, Plan.PRO, "cus_1")
        twice = subscription_store.get_by_user(free_user)
        assert (twice.plan, twice.status, twice.stripe_customer_id) == (Plan.PRO, SubscriptionStatus.ACTIVE, "cus_1")
        assert (once.id, once.plan, once.status) == (twice.id, twice.plan, twice.status)

    def test_checkout_completed_creates_missing_row(self, reconciler, subscription_store, user_id) -> None:
        reconciler.apply_checkout_completed(user_id, Plan.PRO, "cus_1")
        assert subscription_store.get_by_user(user_id).plan == Plan.PRO

    def test_subscription_created_attaches_by_customer(self, reconciler, subscription_store, free_user) -> None:
        reconciler.apply_checkout_completed(free_user, Plan.PRO, "cus_1")
        start = datetime.fromtimestamp(START, tz=timezone.utc)
        assert reconciler.apply_subscription_created("cus_1", "sub_1", start, None)
        sub = subscription_store.get_by_user(free_user)
        assert sub.stripe_subscription_id == "sub_1"
        assert sub.current_period_start == start

    def test_unmatched_events_are_noops(self, reconciler, subscription_store, free_user) -> None:
        before = subscription_store.get_by_user(free_user)
        assert reconciler.apply_subscription_created("cus_unknown", "sub_x", None, None) is False
        assert reconciler.apply_subscription_updated("sub_x", SubscriptionStatus.ACTIVE, None, None) == 0
        assert reconciler.apply_subscription_deleted("sub_x") == 0
        assert reconciler.apply_payment_failed("sub_x") == 0
        after = subscription_store.get_by_user(free_user)
        assert (after.plan, after.status) == (before.plan, before.status)

    @pytest.mark.parametrize(
        "event_type",
        ["customer.subscription.created", "customer.subscription.updated", "customer.subscription.deleted"],
    )
    def test_events_without_ids_touch_no_rows(
        self, reconciler, user_store, subscription_store, free_user, event_type
    ) -> None:
        bob = user_store.create_user(User(email="bob@x.com", hashed_password="x"))
        subscription_store.create(Subscription(user_id=bob, plan=Plan.FREE, status=SubscriptionStatus.ACTIVE))
        reconciler.dispatch(_event(event_type, {"status": "canceled"}))
        for uid in (free_user, bob):
            sub = subscription_store.get_by_user(uid)
            assert (sub.status, sub.stripe_subscription_id) == (SubscriptionStatus.ACTIVE, None)

    def test_payment_transitions(self, reconciler, subscription_store, free_user) -> None:
        reconciler.apply_checkout_completed(free_user, Plan.PRO, "cus_1")
        reconciler.apply_subscription_created("cus_1", "sub_1", None, None)
        reconciler.apply_payment_failed("sub_1")
        assert subscription_store.get_by_user(free_user).status == SubscriptionStatus.PAST_DUE
        reconciler.apply_payment_succeeded("sub_1")
        assert subscription_store.get_by_user(free_user).status == SubscriptionStatus.ACTIVE

    def test_out_of_order_last_write_wins(self, reconciler, subscription_store, free_user) -> None:
        """A stale 'active' update after deletion reactivates the row: nothing orders events."""
        reconciler.apply_checkout_completed(free_user, Plan.PRO, "cus_1")
        reconciler.apply_subscription_created("cus_1", "sub_1", None, None)
        reconciler.apply_subscription_deleted("sub_1")
        assert subscription_store.get_by_user(free_user).status == SubscriptionStatus.CANCELED
        reconciler.apply_subscription_updated("sub_1", SubscriptionStatus.ACTIVE, None, None)
        assert subscription_store.get_by_user(free_user).status == SubscriptionStatus.ACTIVE


@pytest.mark.parametrize(
    "provider,expected",
    [
        ("active", SubscriptionStatus.ACTIVE),
        ("trialing", SubscriptionStatus.ACTIVE),
        ("past_due", SubscriptionStatus.PAST_DUE),
        ("unpaid", SubscriptionStatus.PAST_DUE),
        ("canceled", SubscriptionStatus.CANCELED),
        ("incomplete", SubscriptionStatus.INACTIVE),
        (None, SubscriptionStatus.INACTIVE),
    ],
)
def test_status_from_provider(provider, expected) -> None:
    assert status_from_provider(provider) == expected


# ---------------------------------------------------------------------------
# User actions
# ---------------------------------------------------------------------------


class TestCheckout:
    def test_free_user_can_upgrade(self, reconciler, gateway, subscription_store, free_user) -> None:
        result = reconciler.create_checkout(free_user, "alice@x.com", "PRO")
        assert result == {"sessionId": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}
        assert gateway.sessions[0]["metadata"] == {"userId": str(free_user), "plan": "PRO"}
        assert subscription_store.get_by_user(free_user).stripe_customer_id == "cus_test_1"

    def test_plan_is_case_insensitive(self, reconciler, free_user) -> None:
        assert reconciler.create_checkout(free_user, "alice@x.com", "pro")["sessionId"]

    def test_customer_is_reused(self, reconciler, gateway, free_user) -> None:
        reconciler.create_checkout(free_user, "alice@x.com", Plan.PRO)
        reconciler.create_checkout(free_user, "alice@x.com", Plan.PRO)
        assert len(gateway.customers) == 1
        assert {s["customer"] for s in gateway.sessions} == {"cus_test_1"}

    def test_active_pro_conflicts_without_provider_call(self, reconciler, gateway, free_user) -> None:
        reconciler.apply_checkout_completed(free_user, Plan.PRO, "cus_1")
        with pytest.raises(ConflictError):
            reconciler.create_checkout(free_user, "alice@x.com", Plan.PRO)
        assert gateway.sessions == []
        assert gateway.customers == []

    @pytest.mark.parametrize("plan", ["FREE", "ENTERPRISE", "bogus"])
    def test_invalid_plans(self, reconciler, free_user, plan) -> None:
        with pytest.raises(ValidationError):
            reconciler.create_checkout(free_user, "alice@x.com", plan)


class TestCancelAndStatus:
    def test_cancel_without_provider_subscription(self, reconciler, free_user) -> None:
        with pytest.raises(NotFoundError):
            reconciler.cancel(free_user)

    def test_cancel_is_optimistic(self, reconciler, gateway, subscription_store, free_user) -> None:
        reconciler.apply_checkout_completed(free_user, Plan.PRO, "cus_1")
        reconciler.apply_subscription_created("cus_1", "sub_1", None, None)
        reconciler.cancel(free_user)
        assert gateway.canceled == ["sub_1"]
        assert subscription_store.get_by_user(free_user).status == SubscriptionStatus.CANCELED

    def test_status_without_row(self, reconciler, user_id) -> None:
        status = reconciler.status(user_id)
        assert status["hasSubscription"] is False
        assert (status["plan"], status["status"]) == (Plan.FREE, SubscriptionStatus.INACTIVE)

    def test_status_with_row(self, reconciler, free_user) -> None:
        status = reconciler.status(free_user)
        assert status["hasSubscription"] is True
        assert status["status"] == SubscriptionStatus.ACTIVE


# ---------------------------------------------------------------------------
# Webhook gate and dispatch
# ---------------------------------------------------------------------------


class TestWebhook:
    def test_valid_signature_applies_event(self, reconciler, subscription_store, free_user, webhook_signer) -> None:
        payload = json.dumps(
            _event(
                "checkout.session.completed",
                {"id": "cs_1", "customer": "cus_9", "metadata": {"userId": str(free_user), "plan": "PRO"}},
            )
        ).encode()
        assert reconciler.handle_webhook(payload, webhook_signer(payload)) == "checkout.session.completed"
        sub = subscription_store.get_by_user(free_user)
        assert (sub.plan, sub.stripe_customer_id) == (Plan.PRO, "cus_9")

    @pytest.mark.parametrize("signature", [None, "", "t=1,v1=deadbeef"])
    def test_bad_signature_changes_nothing(self, reconciler, subscription_store, free_user, signature) -> None:
        payload = json.dumps(
            _event("checkout.session.completed", {"metadata": {"userId": str(free_user), "plan": "PRO"}})
        ).encode()
        with pytest.raises(SignatureError):
            reconciler.handle_webhook(payload, signature)
        assert subscription_store.get_by_user(free_user).plan == Plan.FREE

    def test_wrong_secret_rejected(self, reconciler, webhook_signer) -> None:
        payload = json.dumps(_event("invoice.payment_failed", {"subscription": "sub_1"})).encode()
        with pytest.raises(SignatureError):
            reconciler.handle_webhook(payload, webhook_signer(payload, secret="whsec_other"))

    def test_stale_timestamp_rejected(self, reconciler, webhook_signer) -> None:
        payload = json.dumps(_event("invoice.payment_failed", {"subscription": "sub_1"})).encode()
        with pytest.raises(SignatureError):
            reconciler.handle_webhook(payload, webhook_signer(payload, timestamp=1_000_000_000))

    def test_unknown_event_type_acknowledged(self, reconciler, webhook_signer) -> None:
        payload = json.dumps(_event("customer.created", {"id": "cus_1"})).encode()
        assert reconciler.handle_webhook(payload, webhook_signer(payload)) == "customer.created"

    def test_subscription_updated_reads_item_period(self, reconciler, subscription_store, free_user) -> None:
        """Newer Stripe API versions carry current_period_* on subscription items."""
        reconciler.apply_checkout_completed(free_user, Plan.PRO, "cus_1")
        reconciler.apply_subscription_created("cus_1", "sub_1", None, None)
        reconciler.dispatch(
            _event(
                "customer.subscription.updated",
                {
                    "id": "sub_1",
                    "status": "past_due",
                    "items": {"data": [{"current_period_start": START, "current_period_end": END}]},
                },
            )
        )
        sub = subscription_store.get_by_user(free_user)
        assert sub.status == SubscriptionStatus.PAST_DUE
        assert sub.current_period_end == datetime.fromtimestamp(END, tz=timezone.utc)

    def test_invoice_subscription_from_parent_details(self, reconciler, subscription_store, free_user) -> None:
        reconciler.apply_checkout_completed(free_user, Plan.PRO, "cus_1")
        reconciler.apply_subscription_created("cus_1", "sub_1", None, None)
        reconciler.dispatch(
            _event(
                "invoice.payment_failed",
                {"id": "in_1", "parent": {"subscription_details": {"subscription": "sub_1"}}},
            )
        )
        assert subscription_store.get_by_user(free_user).status == SubscriptionStatus.PAST_DUE

    def test_checkout_without_metadata_ignored(self, reconciler, subscription_store, free_user) -> None:
        reconciler.dispatch(_event("checkout.session.completed", {"id": "cs_1", "customer": "cus_1"}))
        assert subscription_store.get_by_user(free_user).plan == Plan.FREE


def test_missing_secret_key_is_a_server_error(settings) -> None:
    gateway = StripeGateway(settings.model_copy(update={"stripe_secret_key": ""}))
    with pytest.raises(InternalError) as excinfo:
        gateway.create_customer("alice@x.com", 1)
    assert excinfo.value.status_code == 500
