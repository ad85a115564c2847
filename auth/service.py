"""
auth/service.py -- Account flows built on the token manager and stores.

AccountService owns everything a user does with their own credentials:
registration, login, refresh, logout, password reset, password change,
profile edits and account deletion. Route handlers call one method each and
translate the result into a response; every failure is raised as an
AppError subclass from core.errors.

Side-effect policy:
  Registration creates the user, then the FREE/ACTIVE subscription, then
  issues tokens, then sends the welcome email. These are separate writes. A
  failed welcome email is logged and swallowed. Nothing is rolled back.

  Password reset is the one multi-row write that must be atomic; see
  UserStore.apply_password_reset().

Layer rule: no imports from api/ or projects/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from auth.models import PasswordResetToken, TokenPair, User
from auth.store import UserStore
from auth.tokens import TokenManager, authenticate_user, generate_reset_token, hash_password, verify_password
from billing.models import Plan, Subscription, SubscriptionStatus
from billing.store import SubscriptionStore
from core.config import Settings
from core.errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from core.mailer import Mailer

logger = logging.getLogger("saaskit.auth")

_BAD_CREDENTIALS = "Invalid email or password."
_BAD_RESET_TOKEN = "Invalid or expired token."
_PROFILE_FIELDS = ("first_name", "last_name")


class AccountService:
    def __init__(
        self,
        users: UserStore,
        subscriptions: SubscriptionStore,
        tokens: TokenManager,
        mailer: Mailer,
        settings: Settings,
    ) -> None:
        self._users = users
        self._subscriptions = subscriptions
        self._tokens = tokens
        self._mailer = mailer
        self._settings = settings

    # ------------------------------------------------------------------
    # Registration / login / refresh
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> tuple[User, TokenPair]:
        """Create an account with a FREE/ACTIVE subscription and log it in.

        Raises ConflictError if the email is already registered.
        """
        email = email.lower()
        if self._users.get_by_email(email) is not None:
            raise ConflictError("This email address is already in use.")
        try:
            user_id = self._users.create_user(
                User(
                    email=email,
                    hashed_password=hash_password(password),
                    first_name=first_name,
                    last_name=last_name,
                )
            )
        except IntegrityError as exc:
            # Concurrent registration with the same email got there first.
            raise ConflictError("This email address is already in use.") from exc

        self._subscriptions.create(Subscription(user_id=user_id, plan=Plan.FREE, status=SubscriptionStatus.ACTIVE))
        user = self._users.get_by_id(user_id)
        pair = self._tokens.issue_pair(user)
        logger.info("Registered user %s (%s)", user_id, email)

        try:
            self._mailer.send_welcome_email(user.email, user.first_name)
        except Exception:
            logger.exception("Welcome email to %s failed", user.email)

        return user, pair

    def login(self, email: str, password: str) -> tuple[User, TokenPair]:
        """Raises AuthenticationError with one generic message for every failure."""
        user = authenticate_user(self._users, email.lower(), password)
        if user is None:
            raise AuthenticationError(_BAD_CREDENTIALS)
        return user, self._tokens.issue_pair(user)

    def refresh(self, refresh_token: str) -> TokenPair:
        if not refresh_token:
            raise AuthenticationError("Refresh token is required.")
        return self._tokens.rotate_refresh_token(refresh_token)

    def logout(self, user_id: int) -> None:
        self._tokens.revoke_all_for_user(user_id)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> None:
        """Issue and mail a reset token. Silently does nothing for unknown emails.

        Any earlier reset tokens of the user are deleted, so only the newest
        link works. Mail failures propagate.
        """
        user = self._users.get_by_email(email.lower())
        if user is None:
            logger.info("Password reset requested for unknown email")
            return
        token = generate_reset_token()
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self._settings.password_reset_expire_seconds)
        self._users.replace_reset_token(PasswordResetToken(token=token, user_id=user.id, expires_at=expires_at))
        self._mailer.send_password_reset_email(user.email, token, user.first_name)
        logger.info("Password reset token issued for user %s", user.id)

    def reset_password(self, token: str, new_password: str) -> None:
        """Spend a reset token, set the new password, and end all sessions.

        Raises ValidationError if the token is unknown, expired, or used.
        """
        record = self._users.get_reset_token(token)
        if record is None or record.used or record.expires_at < datetime.now(timezone.utc):
            raise ValidationError(_BAD_RESET_TOKEN)
        if not self._users.apply_password_reset(record.id, record.user_id, hash_password(new_password)):
            raise ValidationError(_BAD_RESET_TOKEN)
        self._tokens.revoke_all_for_user(record.user_id)
        logger.info("Password reset completed for user %s", record.user_id)

    # ------------------------------------------------------------------
    # Self-service account management
    # ------------------------------------------------------------------

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        user = self._require_user(user_id)
        if not verify_password(current_password, user.hashed_password):
            raise ValidationError("Current password is incorrect.")
        self._users.update_user(user_id, hashed_password=hash_password(new_password))
        self._tokens.revoke_all_for_user(user_id)

    def update_profile(self, user_id: int, **fields) -> User:
        """Update the name fields passed in fields. Fields left out keep their value."""
        self._require_user(user_id)
        changes = {k: v for k, v in fields.items() if k in _PROFILE_FIELDS}
        if changes:
            self._users.update_user(user_id, **changes)
        return self._users.get_by_id(user_id)

    def delete_account(self, user_id: int) -> None:
        if not self._users.delete_user(user_id):
            raise NotFoundError("User not found.")
        logger.info("User %s deleted their account", user_id)

    def _require_user(self, user_id: int) -> User:
        user = self._users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        return user
