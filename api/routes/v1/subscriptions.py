"""
api/routes/v1/subscriptions.py -- Billing REST endpoints.

Routes:
  GET  /api/v1/subscriptions/plans    -- plan catalog (public)
  POST /api/v1/subscriptions/create   -- open a Stripe checkout (requires auth)
  GET  /api/v1/subscriptions/status   -- caller's subscription summary (requires auth)
  POST /api/v1/subscriptions/cancel   -- cancel at period end (requires auth)
  POST /api/v1/subscriptions/webhook  -- Stripe webhook (Stripe-Signature, raw body)

The webhook is authenticated by its signature, not by a user token. The
signature covers the exact request bytes, so the handler reads the raw body
and never lets FastAPI parse it as JSON first.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request
from starlette.concurrency import run_in_threadpool

from api.models import CheckoutData, CheckoutRequest, Envelope, PlanOut, SubscriptionStatusOut, WebhookAck
from auth.dependencies import get_current_user
from auth.models import User
from billing.models import plan_catalog
from billing.reconciler import SubscriptionReconciler
from core.config import get_settings

# Auth policy:
# - GET  /api/v1/subscriptions/plans:   public
# - POST /api/v1/subscriptions/create:  requires auth (get_current_user)
# - GET  /api/v1/subscriptions/status:  requires auth (get_current_user)
# - POST /api/v1/subscriptions/cancel:  requires auth (get_current_user)
# - POST /api/v1/subscriptions/webhook: Stripe signature (verified in reconciler)
router = APIRouter()


def _reconciler(request: Request) -> SubscriptionReconciler:
    return request.app.state.reconciler


@router.get("/subscriptions/plans", response_model=Envelope[list[PlanOut]])
async def list_plans() -> Envelope[list[PlanOut]]:
    return Envelope(data=[PlanOut.from_domain(info) for info in plan_catalog(get_settings()).values()])


@router.post("/subscriptions/create", response_model=Envelope[CheckoutData])
def create_checkout(
    request: Request,
    body: CheckoutRequest,
    current_user: User = Depends(get_current_user),
) -> Envelope[CheckoutData]:
    """Open a hosted checkout for a paid plan. The client redirects to data.url."""
    result = _reconciler(request).create_checkout(current_user.id, current_user.email, body.plan)
    return Envelope(data=CheckoutData(**result))


@router.get("/subscriptions/status", response_model=Envelope[SubscriptionStatusOut])
def subscription_status(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> Envelope[SubscriptionStatusOut]:
    return Envelope(data=SubscriptionStatusOut(**_reconciler(request).status(current_user.id)))


@router.post("/subscriptions/cancel", response_model=Envelope[None])
def cancel_subscription(request: Request, current_user: User = Depends(get_current_user)) -> Envelope[None]:
    """Cancel at the end of the billing period. Local status flips to CANCELED now."""
    _reconciler(request).cancel(current_user.id)
    return Envelope(message="Subscription will be canceled at the end of the billing period")


@router.post("/subscriptions/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
) -> WebhookAck:
    """Verify and apply one Stripe event. Bad signatures get 400 and change nothing."""
    payload = await request.body()
    await run_in_threadpool(_reconciler(request).handle_webhook, payload, stripe_signature)
    return WebhookAck()
