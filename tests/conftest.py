"""
tests/conftest.py -- Shared test fixtures for SaaS Kit unit and integration tests.

This module provides:
  - engine: an isolated named shared-memory SQLite database per test
  - user_store / subscription_store / project_store: stores on that engine
  - tokens / accounts / reconciler: services wired with a fake Stripe gateway
    and a recording mailer, so nothing reaches the network
  - client: TestClient on the real app with a patched lifespan
  - sign_webhook(): builds a valid Stripe-Signature header for a payload

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The environment variables below must be set before any project import so
get_settings() sees them the first time it is called (it is lru_cache-d).
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import os
import time
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core import. DEBUG lets get_settings()
# auto-generate both JWT keys; low bcrypt rounds keep the suite fast.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import Role
from auth.service import AccountService
from auth.store import UserStore
from auth.tokens import TokenManager
from billing.gateway import StripeGateway
from billing.reconciler import SubscriptionReconciler
from billing.store import SubscriptionStore
from core.config import Settings, get_settings
from core.database import create_db_engine, init_schema
from core.mailer import Mailer
from projects.store import ProjectStore

PASSWORD = "pw123456"

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeGateway(StripeGateway):
    """StripeGateway with the network calls replaced by in-memory records.

    construct_event() is inherited unchanged, so signature verification in
    tests runs the real Stripe SDK code path.
    """

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.customers: list[tuple[str, int]] = []
        self.sessions: list[dict] = []
        self.canceled: list[str] = []

    def create_customer(self, email: str, user_id: int) -> str:
        self.customers.append((email, user_id))
        return f"cus_test_{len(self.customers)}"

    def create_checkout_session(self, customer_id: str, price_id: str, metadata: dict[str, str]) -> tuple[str, str]:
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append({"id": session_id, "customer": customer_id, "price": price_id, "metadata": metadata})
        return session_id, f"https://checkout.stripe.test/{session_id}"

    def cancel_at_period_end(self, subscription_id: str) -> None:
        self.canceled.append(subscription_id)


class RecordingMailer(Mailer):
    """Mailer that keeps messages in memory instead of talking to SMTP."""

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.sent: list[tuple[str, str]] = []
        self.reset_tokens: list[str] = []
        self.fail_welcome = False

    def send_password_reset_email(self, to_email: str, reset_token: str, first_name: str | None = None) -> None:
        self.reset_tokens.append(reset_token)
        super().send_password_reset_email(to_email, reset_token, first_name)

    def send_welcome_email(self, to_email: str, first_name: str | None = None) -> None:
        if self.fail_welcome:
            raise ConnectionRefusedError("SMTP down")
        super().send_welcome_email(to_email, first_name)

    def _send(self, to_email: str, subject: str, html_body: str) -> None:
        self.sent.append((to_email, subject))


def sign_webhook(payload: bytes, secret: str | None = None, timestamp: int | None = None) -> str:
    """Return a Stripe-Signature header value for payload (scheme v1, HMAC-SHA256)."""
    secret = secret or get_settings().stripe_webhook_secret
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def engine():
    """A fresh, schema-initialized shared-memory database for one test."""
    eng = create_db_engine(f"sqlite:///file:test_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    init_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def subscription_store(engine) -> SubscriptionStore:
    return SubscriptionStore(engine)


@pytest.fixture
def project_store(engine) -> ProjectStore:
    return ProjectStore(engine)


@pytest.fixture
def gateway(settings) -> FakeGateway:
    return FakeGateway(settings)


@pytest.fixture
def mailer(settings) -> RecordingMailer:
    return RecordingMailer(settings)


@pytest.fixture
def tokens(user_store, settings) -> TokenManager:
    return TokenManager(user_store, settings)


@pytest.fixture
def reconciler(subscription_store, gateway, settings) -> SubscriptionReconciler:
    return SubscriptionReconciler(subscription_store, gateway, settings)


@pytest.fixture
def accounts(user_store, subscription_store, tokens, mailer, settings) -> AccountService:
    return AccountService(user_store, subscription_store, tokens, mailer, settings)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(engine, user_store, subscription_store, project_store, tokens, reconciler, accounts, mailer):
    """Return an async context manager that replaces the real lifespan.

    Wires the test components into app.state so TestClient routes see the
    isolated test database and the fake gateway.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = engine
        app.state.user_store = user_store
        app.state.subscription_store = subscription_store
        app.state.project_store = project_store
        app.state.tokens = tokens
        app.state.reconciler = reconciler
        app.state.accounts = accounts
        app.state.mailer = mailer
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def client(
    engine, user_store, subscription_store, project_store, tokens, reconciler, accounts, mailer
) -> Generator[TestClient, None, None]:
    """TestClient on the real app with per-test stores and a reset rate limiter."""
    original = app.router.lifespan_context
    app.router.lifespan_context = _patch_lifespan(
        engine, user_store, subscription_store, project_store, tokens, reconciler, accounts, mailer
    )
    limiter.reset()
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.router.lifespan_context = original


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def auth_header(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def alice(accounts):
    """Registered USER alice@x.com. Returns (user, token_pair)."""
    return accounts.register("alice@x.com", PASSWORD, "Alice", "Liddell")


@pytest.fixture
def admin(accounts, user_store, tokens):
    """Registered ADMIN. Returns (user, token_pair) with a token carrying the ADMIN role."""
    user, _ = accounts.register("admin@x.com", PASSWORD, "Ada", "Min")
    user_store.update_user(user.id, role=Role.ADMIN)
    user = user_store.get_by_id(user.id)
    return user, tokens.issue_pair(user)


@pytest.fixture
def webhook_signer():
    """sign_webhook() as a fixture, for tests that post signed payloads."""
    return sign_webhook
