"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; the _row_to_* functions are the mappers.
Route and service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Session and reset tokens are stored as HMAC hashes (see auth/tokens.py).
  The UNIQUE index on token_hash makes each lookup O(1).

  users.email is UNIQUE. Callers normalise e-mail (strip + lower) before
  any read or write, so the constraint is effectively case-insensitive and
  also settles the concurrent sign-up race.

DB path: auth/crmauth.db unless AUTH_DATABASE_URL is set.

Layer rule: no imports from api/ or licensing/.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine

from auth.models import AuditEvent, PasswordResetToken, Session, User

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'crmauth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # lower-cased
    Column("password_hash", Text, nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("email_verified", Integer, nullable=False, server_default="1"),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("user_metadata", Text),  # JSON object
    Column("app_metadata", Text),  # JSON object
    Column("created_at", String(32), nullable=False),
    Column("last_sign_in_at", String(32)),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("user_agent", Text),
    Column("ip_address", String(45)),
    Column("last_activity_at", String(32)),
)

_reset_tokens = Table(
    "password_reset_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("consumed_at", String(32)),  # NULL = still redeemable
)

_audit_log = Table(
    "auth_audit_log",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer),  # NULL for failed sign-ins on unknown e-mail
    Column("event_type", String(40), nullable=False),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("details", Text),  # JSON object
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dump_json(value: dict | None) -> str:
    return json.dumps(value or {})


def _load_json(raw: str | None) -> dict:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError:
        return {}
    return value if isinstance(value, dict) else {}


# Columns accepted by update_user(). Anything else raises ValueError before SQL.
_UPDATABLE_USER_FIELDS = {
    "email",
    "password_hash",
    "is_active",
    "email_verified",
    "first_name",
    "last_name",
    "user_metadata",
    "app_metadata",
}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Session, PasswordResetToken and AuditEvent entities.

    Usage:
        store = UserStore()
        user_id = store.create_user(User(email="a@x.com", password_hash=hash_password("secret123")))
        user = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the e-mail already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    password_hash=user.password_hash,
                    is_active=1 if user.is_active else 0,
                    email_verified=1 if user.email_verified else 0,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    user_metadata=_dump_json(user.user_metadata),
                    app_metadata=_dump_json(user.app_metadata),
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by normalised e-mail. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def email_in_use(self, email: str, exclude_user_id: int | None = None) -> bool:
        """Return True if another user already owns this normalised e-mail."""
        query = _users.select().where(_users.c.email == email)
        if exclude_user_id is not None:
            query = query.where(_users.c.id != exclude_user_id)
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return row is not None

    def list_users(self) -> list[User]:
        """Return all users, newest first. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id.desc())).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields are listed in _UPDATABLE_USER_FIELDS. Booleans are
        converted to int and metadata dicts to JSON for storage.

        Returns True if a row was updated, False if user_id was not found.
        Raises sqlalchemy.exc.IntegrityError if a new e-mail collides.
        """
        unknown = set(fields) - _UPDATABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if not fields:
            return False
        for flag in ("is_active", "email_verified"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        for blob in ("user_metadata", "app_metadata"):
            if blob in fields:
                fields[blob] = _dump_json(fields[blob])
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def update_last_sign_in(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_sign_in_at."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_sign_in_at=_now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # Session queries
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> int:
        """Insert a session record and return its ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    user_id=session.user_id,
                    token_hash=session.token_hash,
                    created_at=session.created_at or _now_iso(),
                    expires_at=session.expires_at,
                    user_agent=session.user_agent,
                    ip_address=session.ip_address,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_session_by_hash(self, token_hash: str) -> Session | None:
        """Look up a session by token hash, expired or not. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.token_hash == token_hash)).fetchone()
        return _row_to_session(row) if row is not None else None

    def touch_session(self, session_id: int) -> str:
        """Stamp last_activity_at on a session and return the timestamp written."""
        stamp = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(last_activity_at=stamp))
            conn.commit()
        return stamp

    def delete_session_by_hash(self, token_hash: str) -> Session | None:
        """Delete exactly one session. Returns the deleted record, or None if absent."""
        with self.engine.begin() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.token_hash == token_hash)).fetchone()
            if row is None:
                return None
            conn.execute(_sessions.delete().where(_sessions.c.id == row.id))
        return _row_to_session(row)

    def delete_sessions_for_user(self, user_id: int) -> int:
        """Delete every session owned by a user. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def count_sessions(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                text("SELECT COUNT(*) FROM sessions WHERE user_id = :uid"),
                {"uid": user_id},
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def create_reset_token(self, token: PasswordResetToken) -> int:
        """Insert a reset token, superseding the user's outstanding ones.

        Any earlier unconsumed token for the same user is marked consumed in
        the same transaction, so a user has at most one redeemable token.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                _reset_tokens.update()
                .where((_reset_tokens.c.user_id == token.user_id) & (_reset_tokens.c.consumed_at.is_(None)))
                .values(consumed_at=now)
            )
            result = conn.execute(
                _reset_tokens.insert().values(
                    user_id=token.user_id,
                    token_hash=token.token_hash,
                    created_at=token.created_at or now,
                    expires_at=token.expires_at,
                    consumed_at=token.consumed_at,
                )
            )
            return result.inserted_primary_key[0]

    def get_reset_token_by_hash(self, token_hash: str) -> PasswordResetToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_reset_tokens.select().where(_reset_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def complete_password_reset(self, token_id: int, user_id: int, password_hash: str) -> bool:
        """Consume a reset token, replace the password and revoke all sessions.

        Runs in one transaction. The token is consumed with a conditional
        UPDATE (consumed_at IS NULL), so of two concurrent redemptions only
        one sees rowcount == 1; the other returns False and changes nothing.
        """
        with self.engine.begin() as conn:
            consumed = conn.execute(
                _reset_tokens.update()
                .where((_reset_tokens.c.id == token_id) & (_reset_tokens.c.consumed_at.is_(None)))
                .values(consumed_at=_now_iso())
            )
            if consumed.rowcount != 1:
                return False
            conn.execute(_users.update().where(_users.c.id == user_id).values(password_hash=password_hash))
            conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return True

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def record_event(self, audit_event: AuditEvent) -> int:
        """Append one audit event and return its ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _audit_log.insert().values(
                    user_id=audit_event.user_id,
                    event_type=audit_event.event_type,
                    ip_address=audit_event.ip_address,
                    user_agent=audit_event.user_agent,
                    details=_dump_json(audit_event.metadata),
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_events(self, user_id: int | None = None, limit: int = 100) -> list[AuditEvent]:
        """Return audit events, newest first, optionally filtered to one user."""
        query = _audit_log.select().order_by(_audit_log.c.id.desc()).limit(limit)
        if user_id is not None:
            query = query.where(_audit_log.c.user_id == user_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_event(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        is_active=bool(row.is_active),
        email_verified=bool(row.email_verified),
        first_name=row.first_name,
        last_name=row.last_name,
        user_metadata=_load_json(row.user_metadata),
        app_metadata=_load_json(row.app_metadata),
        created_at=row.created_at,
        last_sign_in_at=row.last_sign_in_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        created_at=row.created_at,
        expires_at=row.expires_at,
        user_agent=row.user_agent,
        ip_address=row.ip_address,
        last_activity_at=row.last_activity_at,
    )


def _row_to_reset_token(row) -> PasswordResetToken:
    return PasswordResetToken(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        created_at=row.created_at,
        expires_at=row.expires_at,
        consumed_at=row.consumed_at,
    )


def _row_to_event(row) -> AuditEvent:
    return AuditEvent(
        id=row.id,
        user_id=row.user_id,
        event_type=row.event_type,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        metadata=_load_json(row.details),
        created_at=row.created_at,
    )
