"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper (same as courses/store.py).
UserStore is the repository; _row_to_user is the mapper.
Route and dependency code never touches SQL directly.

Projection:
  hashed_password is left out of every read unless the caller passes
  include_password=True. Only the login and password-reset paths ask for it.

Errors:
  sqlalchemy.exc.IntegrityError never leaves this module. A duplicate email
  surfaces as core.errors.ConflictError so the API layer stays unaware of the
  storage engine.

Timestamps:
  Stored as ISO 8601 text. Expiry and password-change columns are parsed back
  into aware datetimes by the mapper because the auth layer compares them;
  created_at / last_login stay strings (display only).

Layer rule: no imports from api/, courses/, or mail/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import User
from core.config import get_settings
from core.db import make_engine
from core.errors import ConflictError

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("first_name", String(50), nullable=False),
    Column("last_name", String(50), nullable=False),
    Column("role", String(30), nullable=False, server_default="student"),
    Column("hashed_password", Text),
    Column("phone", String(30)),
    Column("avatar", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_email_verified", Integer, nullable=False, server_default="0"),
    Column("email_verification_token", String(64)),  # sha256 hex
    Column("email_verification_expires", String(40)),
    Column("password_reset_token", String(64)),  # sha256 hex
    Column("password_reset_expires", String(40)),
    Column("password_changed_at", String(40)),
    Column("last_login", String(40)),
    Column("created_at", String(40), nullable=False),
    # Never hand a deleted user's id to a new account; tokens carry the id.
    sqlite_autoincrement=True,
)

# Public columns: everything except the credential hash.
_PUBLIC_COLUMNS = [c for c in _users.c if c.name != "hashed_password"]

# Fields update_user() accepts. Token and password columns have dedicated
# methods so they are always written (and cleared) in pairs.
_UPDATABLE_FIELDS = frozenset(
    {"first_name", "last_name", "role", "is_active", "is_email_verified", "phone", "avatar"}
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User accounts.

    Usage:
        store = UserStore("sqlite:///falcons.db")
        user_id = store.create_user(User(email="a@b.io", first_name="A", last_name="B",
                                         hashed_password=hash_password("secret")))
        user = store.get_by_email("a@b.io")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new account and return its assigned ID.

        Raises ConflictError if the email is already registered. The UNIQUE
        index is the source of truth, so two concurrent registrations for the
        same email cannot both succeed.
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        email=user.email,
                        first_name=user.first_name,
                        last_name=user.last_name,
                        role=user.role,
                        hashed_password=user.hashed_password,
                        phone=user.phone,
                        avatar=user.avatar,
                        is_active=1 if user.is_active else 0,
                        is_email_verified=1 if user.is_email_verified else 0,
                        created_at=_now().isoformat(),
                    )
                )
        except IntegrityError as exc:
            raise ConflictError("Email already in use", code="duplicate_email") from exc
        return result.inserted_primary_key[0]

    def get_by_email(self, email: str, include_password: bool = False) -> User | None:
        """Look up an account by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(self._select(include_password).where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int, include_password: bool = False) -> User | None:
        """Look up an account by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(self._select(include_password).where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, role: str | None = None) -> list[User]:
        """Return accounts ordered by ID, optionally filtered by role."""
        query = self._select(False).order_by(_users.c.id)
        if role is not None:
            query = query.where(_users.c.role == role)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update profile/admin fields on an existing account.

        Accepted fields: see _UPDATABLE_FIELDS. Booleans are converted to
        0/1 for SQLite. Unknown keys raise ValueError.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        for flag in ("is_active", "is_email_verified"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        if not fields:
            return self.get_by_id(user_id) is not None
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete an account. Returns True if deleted, False if not found."""
        with self.engine.begin() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        with self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now().isoformat()))

    # ------------------------------------------------------------------
    # Single-use token lifecycle
    # ------------------------------------------------------------------

    def set_email_verification(self, user_id: int, token_hash: str, expires_at: datetime) -> None:
        """Store the digest and expiry of a fresh email verification token."""
        with self.engine.begin() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(email_verification_token=token_hash, email_verification_expires=_to_iso(expires_at))
            )

    def mark_email_verified(self, user_id: int, token_hash: str | None = None) -> bool:
        """Flag the email as verified and consume the verification token.

        With token_hash the update only applies while that digest is still
        stored, so of two concurrent verifications exactly one returns True.
        """
        stmt = _users.update().where(_users.c.id == user_id)
        if token_hash is not None:
            stmt = stmt.where(_users.c.email_verification_token == token_hash)
        with self.engine.begin() as conn:
            result = conn.execute(
                stmt.values(is_email_verified=1, email_verification_token=None, email_verification_expires=None)
            )
        return result.rowcount > 0

    def set_password_reset(self, user_id: int, token_hash: str, expires_at: datetime) -> None:
        """Store the digest and expiry of a fresh password reset token."""
        with self.engine.begin() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_reset_token=token_hash, password_reset_expires=_to_iso(expires_at))
            )

    def set_password(
        self,
        user_id: int,
        hashed_password: str,
        changed_at: datetime | None = None,
        reset_token_hash: str | None = None,
    ) -> bool:
        """Replace the credential, consume any reset token, stamp password_changed_at.

        With reset_token_hash the update is conditional on that digest still
        being stored; a second consumer of the same token gets False.
        """
        stmt = _users.update().where(_users.c.id == user_id)
        if reset_token_hash is not None:
            stmt = stmt.where(_users.c.password_reset_token == reset_token_hash)
        with self.engine.begin() as conn:
            result = conn.execute(
                stmt.values(
                    hashed_password=hashed_password,
                    password_changed_at=_to_iso(changed_at or _now()),
                    password_reset_token=None,
                    password_reset_expires=None,
                )
            )
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()

    @staticmethod
    def _select(include_password: bool):
        return select(*_users.c) if include_password else select(*_PUBLIC_COLUMNS)


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    mapping = row._mapping
    return User(
        id=row.id,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        role=row.role,
        hashed_password=mapping.get("hashed_password"),
        phone=row.phone,
        avatar=row.avatar,
        is_active=bool(row.is_active),
        is_email_verified=bool(row.is_email_verified),
        email_verification_token=row.email_verification_token,
        email_verification_expires=_from_iso(row.email_verification_expires),
        password_reset_token=row.password_reset_token,
        password_reset_expires=_from_iso(row.password_reset_expires),
        password_changed_at=_from_iso(row.password_changed_at),
        last_login=row.last_login,
        created_at=row.created_at,
    )
