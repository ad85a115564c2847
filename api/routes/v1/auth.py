"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register               -- create account; 201 + token pair
  POST /api/v1/auth/login                  -- password login; token pair
  POST /api/v1/auth/refresh                -- rotate a refresh token
  POST /api/v1/auth/forgot-password        -- mail a reset link; always 200
  POST /api/v1/auth/reset-password/{token} -- spend a reset token
  POST /api/v1/auth/logout                 -- revoke every refresh token (requires auth)
  GET  /api/v1/auth/me                     -- current user + subscription (requires auth)

Security:
  POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT, default 10/minute).
  Login answers one generic message for unknown email, wrong password and
  inactive account; authenticate_user() equalizes timing across them.
  POST /forgot-password answers the same for known and unknown emails.
  Cache-Control: no-store on every response that carries tokens.

Handlers stay thin: one AccountService call each. Errors are raised as
core.errors exceptions and rendered by the handlers in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter
from api.models import (
    AuthData,
    Envelope,
    ForgotPasswordRequest,
    LoginRequest,
    MeData,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    SubscriptionOut,
    TokenData,
    UserOut,
)
from auth.dependencies import get_current_user
from auth.models import User
from auth.service import AccountService
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/register:              public
# - POST /api/v1/auth/login:                 public, rate-limited
# - POST /api/v1/auth/refresh:               public -- the refresh token is the credential
# - POST /api/v1/auth/forgot-password:       public
# - POST /api/v1/auth/reset-password/{token}: public -- the reset token is the credential
# - POST /api/v1/auth/logout:                requires auth (get_current_user)
# - GET  /api/v1/auth/me:                    requires auth (get_current_user)
router = APIRouter()


def _login_limit() -> str:
    return get_settings().login_rate_limit


def _accounts(request: Request) -> AccountService:
    return request.app.state.accounts


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=Envelope[AuthData], status_code=201)
def register(request: Request, response: Response, body: RegisterRequest) -> Envelope[AuthData]:
    """Create an account on the FREE plan and return a token pair.

    A taken email yields 400 conflict.
    """
    user, pair = _accounts(request).register(body.email, body.password, body.first_name, body.last_name)
    response.headers["Cache-Control"] = "no-store"
    return Envelope(
        message="User registered successfully",
        data=AuthData(user=UserOut.from_domain(user), access_token=pair.access_token, refresh_token=pair.refresh_token),
    )


@router.post("/auth/login", response_model=Envelope[AuthData])
@limiter.limit(_login_limit)  # innermost, so the registered endpoint is the limited one
def login(request: Request, response: Response, body: LoginRequest) -> Envelope[AuthData]:
    user, pair = _accounts(request).login(body.email, body.password)
    response.headers["Cache-Control"] = "no-store"
    return Envelope(
        message="Login successful",
        data=AuthData(user=UserOut.from_domain(user), access_token=pair.access_token, refresh_token=pair.refresh_token),
    )


@router.post("/auth/refresh", response_model=Envelope[TokenData])
def refresh(request: Request, response: Response, body: RefreshRequest) -> Envelope[TokenData]:
    """Exchange a refresh token for a new pair. The old token stops working immediately."""
    pair = _accounts(request).refresh(body.refresh_token)
    response.headers["Cache-Control"] = "no-store"
    return Envelope(data=TokenData(access_token=pair.access_token, refresh_token=pair.refresh_token))


@router.post("/auth/forgot-password", response_model=Envelope[None])
def forgot_password(request: Request, body: ForgotPasswordRequest) -> Envelope[None]:
    _accounts(request).forgot_password(body.email)
    return Envelope(message="If an account exists with this email, a password reset link has been sent.")


@router.post("/auth/reset-password/{token}", response_model=Envelope[None])
def reset_password(request: Request, token: str, body: ResetPasswordRequest) -> Envelope[None]:
    _accounts(request).reset_password(token, body.password)
    return Envelope(message="Password reset successfully")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=Envelope[None])
def logout(request: Request, current_user: User = Depends(get_current_user)) -> Envelope[None]:
    """Revoke every refresh token of the caller. Access tokens expire on their own."""
    _accounts(request).logout(current_user.id)
    return Envelope(message="Logged out successfully")


@router.get("/auth/me", response_model=Envelope[MeData])
def me(request: Request, current_user: User = Depends(get_current_user)) -> Envelope[MeData]:
    """Return the authenticated user and their subscription, if any."""
    sub = request.app.state.subscription_store.get_by_user(current_user.id)
    return Envelope(
        data=MeData(
            user=UserOut.from_domain(current_user),
            subscription=SubscriptionOut.from_domain(sub) if sub is not None else None,
        )
    )
