"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores map rows into
these; services and routes do the work.

Role is a closed str-Enum rather than a free-form string, so an unknown role
read from the database fails loudly at mapping time instead of silently
failing every "== 'ADMIN'" comparison.

Layer rule: no imports from api/, billing/, or projects/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


@dataclass
class User:
    """An account that can log in.

    email is stored lower-cased and is the login identifier.
    id is None before the record is written to the database.
    """

    email: str
    hashed_password: str
    role: Role = Role.USER
    first_name: str | None = None
    last_name: str | None = None
    is_active: bool = True
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class RefreshToken:
    """Server-side record backing one refresh JWT.

    The JWT carries id as its tokenId claim. Deleting the row is what revokes
    the token; a valid signature alone is never enough.
    """

    id: str
    user_id: int
    expires_at: datetime
    created_at: datetime | None = None


@dataclass
class PasswordResetToken:
    token: str
    user_id: int
    expires_at: datetime
    used: bool = False
    id: int | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class AccessClaims:
    """Verified identity decoded from an access token."""

    user_id: int
    email: str
    role: Role
