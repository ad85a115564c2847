"""
auth/tokens.py -- Credential & token manager: passwords, JWT pairs, rotation.

Security design decisions:
  Access tokens: python-jose HS256 signed with JWT_SECRET. Short-lived
       (ACCESS_TOKEN_EXPIRE_SECONDS, default 15 min), carry userId, email and
       role, and are verified without touching storage.

  Refresh tokens: HS256 signed with a *different* key (JWT_REFRESH_SECRET)
       and carry only userId + tokenId. Each one is backed by a refresh_tokens
       row. The signature proves the token was issued by us; the row proves it
       has not been used or revoked. Both checks are required.

  Rotation is single-use: the backing row is deleted *before* the new pair is
       signed. If the caller never receives the new pair the user must log in
       again. There is never a window in which both old and new tokens work.

  Passwords: bcrypt directly (no passlib wrapper). _DUMMY_HASH lets
       authenticate_user() spend the same bcrypt time whether or not the email
       exists, so response time does not reveal registered addresses.

  Reset tokens: secrets.token_urlsafe(32), 256 bits of entropy, stored as-is
       (single use, one hour lifetime).

Layer rule: no imports from api/, billing/, or projects/.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import AccessClaims, RefreshToken, Role, TokenPair, User
from core.config import Settings, get_settings
from core.errors import ExpiredToken, InvalidToken

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("saaskit.auth")

_ALGORITHM = "HS256"
_ACCESS = "access"
_REFRESH = "refresh"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes. The API caps passwords at 128
    characters, which keeps ASCII input well inside that window.
    """
    rounds = get_settings().bcrypt_rounds
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# Computed once at import so the first failed login is not measurably faster.
_DUMMY_HASH: str = hash_password("saaskit_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Check email/password with timing equalization.

    bcrypt runs exactly once on every path: against the dummy hash for an
    unknown email, against the real hash otherwise. Inactive users are
    rejected only after the hash check for the same reason.

    Returns the User on success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user


def generate_reset_token() -> str:
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Token manager
# ---------------------------------------------------------------------------


class TokenManager:
    """Issues, verifies, rotates and revokes access/refresh token pairs.

    The only component that mints or accepts credentials. Refresh-token
    records live in the injected UserStore.
    """

    def __init__(self, store: UserStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access_token(self, user: User) -> str:
        """Sign a short-lived access token for user. No side effects."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user.id),
            "userId": user.id,
            "email": user.email,
            "role": Role(user.role).value,
            "type": _ACCESS,
            "iat": now,
            "exp": now + timedelta(seconds=self._settings.access_token_expire_seconds),
        }
        return jwt.encode(payload, self._settings.jwt_secret, algorithm=_ALGORITHM)

    def issue_refresh_token(self, user_id: int) -> str:
        """Persist a new refresh record for user_id and return its signed token.

        The row is written first. If the insert raises, nothing is signed and
        the exception propagates.
        """
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(days=self._settings.refresh_token_expire_days)
        record = RefreshToken(id=str(uuid.uuid4()), user_id=user_id, expires_at=expires_at)
        self._store.create_refresh_token(record)
        payload = {
            "userId": user_id,
            "tokenId": record.id,
            "type": _REFRESH,
            "iat": now,
            "exp": expires_at,
        }
        return jwt.encode(payload, self._settings.jwt_refresh_secret, algorithm=_ALGORITHM)

    def issue_pair(self, user: User) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(user),
            refresh_token=self.issue_refresh_token(user.id),
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_access_token(self, token: str) -> AccessClaims:
        """Decode an access token. Raises ExpiredToken or InvalidToken.

        Signature and expiry only -- callers that need the user to still
        exist and be active must look it up (see auth.dependencies).
        """
        payload = _decode(token, self._settings.jwt_secret, _ACCESS)
        try:
            return AccessClaims(
                user_id=int(payload["userId"]),
                email=str(payload["email"]),
                role=Role(payload["role"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidToken() from exc

    def verify_refresh_token(self, token: str) -> tuple[int, str]:
        """Decode a refresh token into (user_id, token_id).

        Raises ExpiredToken or InvalidToken. A valid result only proves the
        token was signed by us; the caller must still confirm the backing
        record exists (rotate_refresh_token does).
        """
        payload = _decode(token, self._settings.jwt_refresh_secret, _REFRESH)
        try:
            return int(payload["userId"]), str(payload["tokenId"])
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidToken() from exc

    # ------------------------------------------------------------------
    # Rotate / revoke
    # ------------------------------------------------------------------

    def rotate_refresh_token(self, old_token: str) -> TokenPair:
        """Exchange a refresh token for a new access + refresh pair.

        The old record is deleted before anything else is checked, so a
        replayed or concurrently-used token loses even if this call fails
        later on. No rollback: a crash after the delete means re-login.
        """
        user_id, token_id = self.verify_refresh_token(old_token)
        record = self._store.consume_refresh_token(token_id)
        if record is None:
            logger.info("Refresh token %s reused or revoked (user %s)", token_id, user_id)
            raise InvalidToken("Invalid refresh token.")
        if record.user_id != user_id:
            raise InvalidToken("Invalid refresh token.")
        if record.expires_at < datetime.now(timezone.utc):
            raise ExpiredToken("Refresh token has expired.")
        user = self._store.get_by_id(record.user_id)
        if user is None or not user.is_active:
            raise InvalidToken("Invalid refresh token.")
        return self.issue_pair(user)

    def revoke_all_for_user(self, user_id: int) -> int:
        """Delete every refresh record of user_id. Returns the number revoked."""
        revoked = self._store.delete_refresh_tokens_for_user(user_id)
        logger.info("Revoked %d refresh token(s) for user %s", revoked, user_id)
        return revoked

    def purge_expired(self) -> int:
        return self._store.purge_expired_refresh_tokens()


def _decode(token: str, key: str, expected_type: str) -> dict:
    try:
        payload = jwt.decode(token, key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise ExpiredToken() from exc
    except JWTError as exc:
        raise InvalidToken() from exc
    if payload.get("type") != expected_type:
        raise InvalidToken()
    return payload
