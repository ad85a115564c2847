"""
billing/store.py -- SQLAlchemy Core persistence for subscriptions.

Pattern: Repository + Data Mapper (same as auth/store.py).

Lookups by Stripe id return zero-or-more rows and updates by Stripe id are
plain UPDATE ... WHERE statements: when no row matches, nothing happens and
the caller gets a rowcount of 0. Webhooks that race ahead of local state are
therefore harmless no-ops rather than errors.

upsert_for_user() is the one write that must be idempotent under replay:
the row is keyed by the UNIQUE user_id, and a concurrent insert that loses
the race falls back to an update.

Layer rule: no imports from api/, auth/, or projects/.
"""

from __future__ import annotations

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from billing.models import Plan, Subscription, SubscriptionStatus
from core.database import as_utc, subscriptions, utcnow


class SubscriptionStore:
    """Repository for Subscription records."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def create(self, sub: Subscription) -> int:
        """Insert a subscription row. Raises IntegrityError if the user already has one."""
        now = utcnow()
        with self.engine.connect() as conn:
            result = conn.execute(
                subscriptions.insert().values(
                    user_id=sub.user_id,
                    plan=Plan(sub.plan).value,
                    status=SubscriptionStatus(sub.status).value,
                    stripe_customer_id=sub.stripe_customer_id,
                    stripe_subscription_id=sub.stripe_subscription_id,
                    current_period_start=sub.current_period_start,
                    current_period_end=sub.current_period_end,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_user(self, user_id: int) -> Subscription | None:
        with self.engine.connect() as conn:
            row = conn.execute(subscriptions.select().where(subscriptions.c.user_id == user_id)).fetchone()
        return _row_to_subscription(row) if row is not None else None

    def get_many_by_user(self, user_ids: list[int]) -> dict[int, Subscription]:
        """Return {user_id: Subscription} for the given users (missing ones omitted)."""
        if not user_ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(subscriptions.select().where(subscriptions.c.user_id.in_(user_ids))).fetchall()
        return {row.user_id: _row_to_subscription(row) for row in rows}

    def find_by_customer(self, customer_id: str) -> Subscription | None:
        """First row carrying this Stripe customer id, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                subscriptions.select()
                .where(subscriptions.c.stripe_customer_id == customer_id)
                .order_by(subscriptions.c.id)
            ).fetchone()
        return _row_to_subscription(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_for_user(self, user_id: int, **fields) -> None:
        """Create the user's row with fields, or update it if it exists."""
        values = _normalize(fields)
        if self.update_by_user(user_id, **values):
            return
        now = utcnow()
        try:
            with self.engine.connect() as conn:
                conn.execute(subscriptions.insert().values(user_id=user_id, created_at=now, updated_at=now, **values))
                conn.commit()
        except IntegrityError:
            # Lost an insert race against another delivery of the same event.
            self.update_by_user(user_id, **values)

    def update_by_user(self, user_id: int, **fields) -> bool:
        """Update the user's row. Returns False if the user has no subscription."""
        values = _normalize(fields)
        values["updated_at"] = utcnow()
        with self.engine.connect() as conn:
            result = conn.execute(subscriptions.update().where(subscriptions.c.user_id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def update_by_provider_subscription(self, subscription_id: str, **fields) -> int:
        """Update every row with this Stripe subscription id. Returns rows changed (may be 0)."""
        values = _normalize(fields)
        values["updated_at"] = utcnow()
        with self.engine.connect() as conn:
            result = conn.execute(
                subscriptions.update().where(subscriptions.c.stripe_subscription_id == subscription_id).values(**values)
            )
            conn.commit()
        return result.rowcount

    def set_status_by_provider_subscription(self, subscription_id: str, status: SubscriptionStatus) -> int:
        return self.update_by_provider_subscription(subscription_id, status=status)


# ---------------------------------------------------------------------------
# Helpers / row mappers
# ---------------------------------------------------------------------------


def _normalize(fields: dict) -> dict:
    """Convert enum members to their stored string values."""
    values = dict(fields)
    if "plan" in values and values["plan"] is not None:
        values["plan"] = Plan(values["plan"]).value
    if "status" in values and values["status"] is not None:
        values["status"] = SubscriptionStatus(values["status"]).value
    return values


def _row_to_subscription(row) -> Subscription:
    return Subscription(
        id=row.id,
        user_id=row.user_id,
        plan=Plan(row.plan),
        status=SubscriptionStatus(row.status),
        stripe_customer_id=row.stripe_customer_id,
        stripe_subscription_id=row.stripe_subscription_id,
        current_period_start=as_utc(row.current_period_start),
        current_period_end=as_utc(row.current_period_end),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )
