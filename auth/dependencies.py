"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only one auth method exists: an access token in the
Authorization: Bearer <token> header. Refresh tokens are never accepted here;
they are signed with a different key and would fail verification.

get_current_user() verifies the token, then reloads the user so a deleted or
deactivated account loses access immediately, even while its token is still
inside its expiry window.
require_admin() and require_pro_plan() wrap get_current_user().

Failures are raised as core.errors exceptions; api/main.py turns them into
the standard error envelope.

Layer rule: no imports from api/ or projects/.
  auth/dependencies.py may import from fastapi (for Depends/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.models import Role, User
from billing.models import Plan, SubscriptionStatus
from core.errors import AuthenticationError, AuthorizationError


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_user(request: Request) -> User:
    """Require a valid access token. Raises AuthenticationError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise AuthenticationError("Access token is required.")
    claims = request.app.state.tokens.verify_access_token(token)
    user = request.app.state.user_store.get_by_id(claims.user_id)
    if user is None or not user.is_active:
        raise AuthenticationError("User not found or inactive.")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Require the ADMIN role. 401 if unauthenticated, 403 if not admin."""
    if user.role != Role.ADMIN:
        raise AuthorizationError("Admin access required.")
    return user


def require_pro_plan(request: Request, user: User = Depends(get_current_user)) -> User:
    """Require an ACTIVE PRO subscription. 401 if unauthenticated, 403 otherwise."""
    sub = request.app.state.subscription_store.get_by_user(user.id)
    if sub is None or sub.plan != Plan.PRO or sub.status != SubscriptionStatus.ACTIVE:
        raise AuthorizationError("Pro subscription required.")
    return user
