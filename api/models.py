"""
API request and response models for the SaaS Kit REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/, billing/ and
projects/, which own the internal domain representation. Route handlers map
between the two with the from_domain() factories below.

Wire format: JSON keys are camelCase (firstName, accessToken, ...). Every
model inherits ApiModel, whose alias generator produces the camelCase names;
populate_by_name lets Python code keep using snake_case field names.

Envelopes:
  success -- {"success": true, "message": ..., "data": {...}}
  error   -- {"success": false, "message": ..., "code": ..., "detail": ...}
"""

from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from auth.models import Role, User
from billing.models import Plan, PlanInfo, Subscription, SubscriptionStatus
from projects.models import Project

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PASSWORD_MIN = 8
PASSWORD_MAX = 128
NAME_MAX = 100

T = TypeVar("T")


class ApiModel(BaseModel):
    """Base for every API model: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _RequestModel(ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class Envelope(ApiModel, Generic[T]):
    """Success envelope wrapping every 2xx response body."""

    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None


class ErrorResponse(ApiModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    success: bool = False
    message: str
    code: str
    detail: Optional[str] = None


class Pagination(ApiModel):
    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, pages=(total + limit - 1) // limit)


class HealthResponse(ApiModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class RegisterRequest(_RequestModel):
    """Request body for POST /api/v1/auth/register."""

    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)
    first_name: Optional[str] = Field(default=None, max_length=NAME_MAX)
    last_name: Optional[str] = Field(default=None, max_length=NAME_MAX)


class LoginRequest(_RequestModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=PASSWORD_MAX)


class RefreshRequest(_RequestModel):
    refresh_token: str = Field(min_length=1)


class ForgotPasswordRequest(_RequestModel):
    email: EmailStr


class ResetPasswordRequest(_RequestModel):
    password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)


class ChangePasswordRequest(_RequestModel):
    current_password: str = Field(min_length=1, max_length=PASSWORD_MAX)
    new_password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class ProfileUpdate(_RequestModel):
    """Request body for PUT /api/v1/users/profile."""

    first_name: Optional[str] = Field(default=None, max_length=NAME_MAX)
    last_name: Optional[str] = Field(default=None, max_length=NAME_MAX)


class AdminUserUpdate(_RequestModel):
    """Request body for PUT /api/v1/users/{id}. All fields optional; None = no change."""

    first_name: Optional[str] = Field(default=None, max_length=NAME_MAX)
    last_name: Optional[str] = Field(default=None, max_length=NAME_MAX)
    role: Optional[Role] = None
    is_active: Optional[bool] = None


class UserOut(ApiModel):
    """Public view of a user. Never includes the password hash."""

    id: int
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    role: Role
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            is_active=user.is_active,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class UserListRow(UserOut):
    """One row in GET /users -- the user plus a summary of their subscription."""

    plan: Plan = Plan.FREE
    subscription_status: SubscriptionStatus = SubscriptionStatus.INACTIVE

    @classmethod
    def from_domain_with_subscription(cls, user: User, sub: Optional[Subscription]) -> "UserListRow":
        base = UserOut.from_domain(user).model_dump()
        if sub is not None:
            base["plan"] = sub.plan
            base["subscription_status"] = sub.status
        return cls(**base)


class UserList(ApiModel):
    users: list[UserListRow]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class TokenData(ApiModel):
    access_token: str
    refresh_token: str


class AuthData(TokenData):
    """data payload of register and login responses."""

    user: UserOut


class SubscriptionOut(ApiModel):
    plan: Plan
    status: SubscriptionStatus
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None

    @classmethod
    def from_domain(cls, sub: Subscription) -> "SubscriptionOut":
        return cls(
            plan=sub.plan,
            status=sub.status,
            current_period_start=sub.current_period_start,
            current_period_end=sub.current_period_end,
        )


class MeData(ApiModel):
    user: UserOut
    subscription: Optional[SubscriptionOut] = None


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


class CheckoutRequest(_RequestModel):
    """Request body for POST /api/v1/subscriptions/create.

    plan is a free-form string here; the reconciler validates it so an
    unknown plan yields the standard 400 validation_error.
    """

    plan: str = Field(min_length=1, max_length=20)


class CheckoutData(ApiModel):
    session_id: str
    url: str


class PlanOut(ApiModel):
    id: Plan
    name: str
    price: float
    price_id: Optional[str]
    features: list[str]

    @classmethod
    def from_domain(cls, info: PlanInfo) -> "PlanOut":
        return cls(id=info.plan, name=info.name, price=info.price, price_id=info.price_id, features=info.features)


class SubscriptionStatusOut(ApiModel):
    has_subscription: bool
    plan: Plan
    status: SubscriptionStatus
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None


class WebhookAck(BaseModel):
    received: bool = True


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


class ProjectCreate(_RequestModel):
    """Request body for POST /api/v1/projects."""

    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)


class ProjectUpdate(_RequestModel):
    """Request body for PUT /api/v1/projects/{id}.

    Partial update: omitted fields are left alone. A name, when given, may not
    be blank (whitespace is stripped before the length check).
    """

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    is_active: Optional[bool] = None


class ProjectOut(ApiModel):
    id: int
    user_id: int
    name: str
    description: Optional[str]
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, project: Project) -> "ProjectOut":
        return cls(
            id=project.id,
            user_id=project.user_id,
            name=project.name,
            description=project.description,
            is_active=project.is_active,
            created_at=project.created_at,
            updated_at=project.updated_at,
        )


class ProjectList(ApiModel):
    projects: list[ProjectOut]
    pagination: Pagination
