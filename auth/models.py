"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
accounts/sessions/recovery modules do the work.

Layer rule: no imports from api/ or licensing/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class User:
    """An account holder of the CRM.

    email is always stored lower-cased and stripped; the store relies on that
    for its UNIQUE constraint. password_hash is a bcrypt hash and must never be
    serialised to a client -- the API layer maps User to UserResponse, which
    has no hash field.

    email_verified is True at sign-up: accounts are active immediately. It is
    cleared when the user changes their e-mail address.
    """

    email: str
    password_hash: str
    id: int | None = None
    is_active: bool = True
    email_verified: bool = True
    first_name: str | None = None
    last_name: str | None = None
    user_metadata: dict = field(default_factory=dict)
    app_metadata: dict = field(default_factory=dict)
    created_at: str | None = None
    last_sign_in_at: str | None = None


@dataclass
class Session:
    """An authenticated login, identified by an opaque bearer token.

    Only HMAC-SHA256(SECRET_KEY, token) is persisted (token_hash). The raw
    token is populated on the dataclass when it is known: right after
    issuance, and when a caller resolves a session by presenting it.
    """

    user_id: int
    token_hash: str
    expires_at: str
    id: int | None = None
    token: str | None = None
    created_at: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    last_activity_at: str | None = None


@dataclass
class PasswordResetToken:
    """A single-use, time-limited credential that authorises one password change.

    consumed_at is None until the token is redeemed. A consumed or expired
    token never authorises a change.
    """

    user_id: int
    token_hash: str
    expires_at: str
    id: int | None = None
    created_at: str | None = None
    consumed_at: str | None = None


@dataclass
class AuditEvent:
    """One row of the auth audit trail (sign-ins, sign-outs, resets, updates)."""

    event_type: str
    user_id: int | None = None
    id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    metadata: dict = field(default_factory=dict)
    created_at: str | None = None
