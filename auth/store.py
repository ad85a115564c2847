"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore is the repository for users,
refresh-token records and password-reset tokens; _row_to_* are the mappers.
Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  consume_refresh_token() decides the winner of two concurrent rotations of
  the same refresh token by the DELETE rowcount, not by a prior SELECT. Only
  the request whose DELETE removed the row may issue a new pair.

  apply_password_reset() updates the password and flips the reset token's
  used flag in one transaction. The flag update is conditional on used = 0,
  so a token can only ever be spent once even under concurrent requests.

Layer rule: no imports from api/, billing/, or projects/.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.engine import Engine

from auth.models import PasswordResetToken, RefreshToken, Role, User
from core.database import as_utc, password_reset_tokens, refresh_tokens, users, utcnow


class UserStore:
    """Repository for User, RefreshToken and PasswordResetToken entities.

    Usage:
        store = UserStore(create_db_engine("sqlite:///app.db"))
        uid = store.create_user(User(email="a@example.com", hashed_password=hash_password("secret")))
        user = store.get_by_email("a@example.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers treat that as the loser of a concurrent registration race.
        """
        now = utcnow()
        with self.engine.connect() as conn:
            result = conn.execute(
                users.insert().values(
                    email=user.email.lower(),
                    hashed_password=user.hashed_password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    role=Role(user.role).value,
                    is_active=user.is_active,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email.lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, offset: int = 0, limit: int = 10, search: str | None = None) -> tuple[list[User], int]:
        """Return one page of users (newest first) and the total match count.

        search matches email, first name and last name, case-insensitively;
        % and _ match literally.
        """
        where = None
        if search:
            term = search.lower()
            where = or_(
                func.lower(users.c.email).contains(term, autoescape=True),
                func.lower(users.c.first_name).contains(term, autoescape=True),
                func.lower(users.c.last_name).contains(term, autoescape=True),
            )
        query = users.select().order_by(users.c.created_at.desc(), users.c.id.desc()).offset(offset).limit(limit)
        count = select(func.count()).select_from(users)
        if where is not None:
            query = query.where(where)
            count = count.where(where)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
            total = conn.execute(count).scalar() or 0
        return [_row_to_user(r) for r in rows], total

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: first_name, last_name, role, is_active, hashed_password.
        Returns True if a row was updated, False if user_id was not found.
        """
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        fields["updated_at"] = utcnow()
        with self.engine.connect() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user. Owned rows go with it via ON DELETE CASCADE."""
        with self.engine.connect() as conn:
            result = conn.execute(users.delete().where(users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Refresh-token records
    # ------------------------------------------------------------------

    def create_refresh_token(self, record: RefreshToken) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                refresh_tokens.insert().values(
                    id=record.id,
                    user_id=record.user_id,
                    expires_at=record.expires_at,
                    created_at=utcnow(),
                )
            )
            conn.commit()

    def get_refresh_token(self, token_id: str) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(refresh_tokens.select().where(refresh_tokens.c.id == token_id)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def consume_refresh_token(self, token_id: str) -> RefreshToken | None:
        """Delete the record and return it, or None if it was already gone.

        SELECT and DELETE run in one transaction; the DELETE rowcount is the
        authority. A None result means another request consumed the record
        first (or it was revoked) and the caller must treat the token as invalid.
        """
        with self.engine.begin() as conn:
            row = conn.execute(refresh_tokens.select().where(refresh_tokens.c.id == token_id)).fetchone()
            if row is None:
                return None
            result = conn.execute(refresh_tokens.delete().where(refresh_tokens.c.id == token_id))
            if result.rowcount != 1:
                return None
        return _row_to_refresh_token(row)

    def count_refresh_tokens(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(refresh_tokens).where(refresh_tokens.c.user_id == user_id)
            ).scalar()
        return result or 0

    def delete_refresh_tokens_for_user(self, user_id: int) -> int:
        """Delete every refresh record owned by user_id. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(refresh_tokens.delete().where(refresh_tokens.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def purge_expired_refresh_tokens(self, now: datetime | None = None) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(refresh_tokens.delete().where(refresh_tokens.c.expires_at < (now or utcnow())))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Password-reset tokens
    # ------------------------------------------------------------------

    def replace_reset_token(self, record: PasswordResetToken) -> None:
        """Delete the user's previous reset tokens and insert record, atomically."""
        with self.engine.begin() as conn:
            conn.execute(password_reset_tokens.delete().where(password_reset_tokens.c.user_id == record.user_id))
            conn.execute(
                password_reset_tokens.insert().values(
                    token=record.token,
                    user_id=record.user_id,
                    expires_at=record.expires_at,
                    used=False,
                    created_at=utcnow(),
                )
            )

    def get_reset_token(self, token: str) -> PasswordResetToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(password_reset_tokens.select().where(password_reset_tokens.c.token == token)).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def apply_password_reset(self, reset_id: int, user_id: int, hashed_password: str) -> bool:
        """Spend the reset token and set the new password as one unit.

        Returns False (and changes nothing) if the token was already used.
        """
        with self.engine.begin() as conn:
            marked = conn.execute(
                password_reset_tokens.update()
                .where((password_reset_tokens.c.id == reset_id) & (password_reset_tokens.c.used == False))  # noqa: E712
                .values(used=True)
            )
            if marked.rowcount != 1:
                return False
            conn.execute(
                users.update().where(users.c.id == user_id).values(hashed_password=hashed_password, updated_at=utcnow())
            )
        return True


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        role=Role(row.role),
        is_active=bool(row.is_active),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        expires_at=as_utc(row.expires_at),
        created_at=as_utc(row.created_at),
    )


def _row_to_reset_token(row) -> PasswordResetToken:
    return PasswordResetToken(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        expires_at=as_utc(row.expires_at),
        used=bool(row.used),
        created_at=as_utc(row.created_at),
    )
