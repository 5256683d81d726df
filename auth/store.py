"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. The auth service
never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(email) is enforced by the schema, not by a read-then-write check in
  code. Two concurrent registrations for the same address both pass the
  service's pre-check; the second INSERT fails with IntegrityError and the
  service maps that to EmailExists.

  update_user() accepts an `expected` mapping that is ANDed into the WHERE
  clause. This gives compare-and-set semantics for single-use values: a
  verification token, reset token or refresh digest is consumed only if it
  is still the stored value, so two racing requests cannot both win.

Timestamps are ISO-8601 UTC strings, same as created_at.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine

from auth.models import User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("first_name", String(50), nullable=False),
    Column("last_name", String(50), nullable=False),
    Column("native_language", String(50), nullable=False),
    Column("learning_language", String(50), nullable=False),
    Column("is_email_verified", Integer, nullable=False, server_default="0"),
    Column("email_verification_token", String(64), unique=True),
    Column("password_reset_token", String(64), unique=True),
    Column("password_reset_expires", String(32)),
    Column("refresh_token_hash", String(64)),
    Column("refresh_token_expires", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

# Columns update_user() may write. Anything else is a programming error.
_MUTABLE_FIELDS: frozenset[str] = frozenset(
    {
        "password_hash",
        "first_name",
        "last_name",
        "native_language",
        "learning_language",
        "is_email_verified",
        "email_verification_token",
        "password_reset_token",
        "password_reset_expires",
        "refresh_token_hash",
        "refresh_token_expires",
        "last_login",
    }
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_db(fields: dict) -> dict:
    if "is_email_verified" in fields:
        fields["is_email_verified"] = 1 if fields["is_email_verified"] else 0
    return fields


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user_id = store.create_user(User(email="a@example.com", password_hash=..., ...))
        user = store.get_by_email("a@example.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email.strip().lower(),
                    password_hash=user.password_hash,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    native_language=user.native_language,
                    learning_language=user.learning_language,
                    is_email_verified=1 if user.is_email_verified else 0,
                    email_verification_token=user.email_verification_token,
                    password_reset_token=user.password_reset_token,
                    password_reset_expires=user.password_reset_expires,
                    refresh_token_hash=user.refresh_token_hash,
                    refresh_token_expires=user.refresh_token_expires,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        return self._fetch_one(_users.c.id == user_id)

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email. The lookup is case-insensitive."""
        return self._fetch_one(_users.c.email == email.strip().lower())

    def get_by_verification_token(self, token: str) -> User | None:
        """Return the user holding this email-verification token, if any."""
        return self._fetch_one(_users.c.email_verification_token == token)

    def get_by_reset_token(self, token: str) -> User | None:
        """Return the user holding this password-reset token, if any.

        Expiry is not checked here; the caller compares password_reset_expires
        against the current time.
        """
        return self._fetch_one(_users.c.password_reset_token == token)

    def update_user(self, user_id: int, expected: dict | None = None, **fields) -> bool:
        """Update mutable fields on an existing user.

        `expected` maps column names to the values they must still hold for
        the update to apply (compare-and-set). updated_at is stamped on every
        successful write.

        Returns True if a row was updated, False if user_id was not found or
        an expected value no longer matched.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user field(s): {sorted(unknown)}")
        clause = _users.c.id == user_id
        for name, value in (expected or {}).items():
            column = _users.c[name]
            clause = clause & (column.is_(None) if value is None else column == value)
        values = _to_db(dict(fields))
        values["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(clause).values(**values))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()

    def _fetch_one(self, clause) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(clause)).fetchone()
        return _row_to_user(row) if row is not None else None


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        native_language=row.native_language,
        learning_language=row.learning_language,
        is_email_verified=bool(row.is_email_verified),
        email_verification_token=row.email_verification_token,
        password_reset_token=row.password_reset_token,
        password_reset_expires=row.password_reset_expires,
        refresh_token_hash=row.refresh_token_hash,
        refresh_token_expires=row.refresh_token_expires,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
    )
