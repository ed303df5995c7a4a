"""
auth/accounts.py -- Account operations: sign-up, sign-in, profile update.

Business failures (duplicate e-mail, bad credentials, rejected update) raise
AuthError carrying a machine code and a client-safe message. Route handlers
turn AuthError into a 400 (or 401 for sign-in); anything else is an
unexpected error and goes to the generic 500 handler.

Sign-in failures are deliberately uniform: unknown e-mail, inactive account
and wrong password all raise the same AuthError, and bcrypt runs on every
path. The internal reason is written to the audit log only.

Layer rule: no imports from api/ or licensing/.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from auth.models import AuditEvent, Session, User
from auth.sessions import issue_session
from auth.store import UserStore
from auth.tokens import burn_password_check, hash_password, verify_password

logger = logging.getLogger("crmauth.auth")

INVALID_CREDENTIALS = "Invalid email or password."


class AuthError(Exception):
    """A rejected auth operation whose message is safe to show the caller."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _metadata_name(metadata: dict, key: str) -> str | None:
    value = metadata.get(key)
    return value if isinstance(value, str) else None


# ---------------------------------------------------------------------------
# Sign-up
# ---------------------------------------------------------------------------


def sign_up(store: UserStore, email: str, password: str, metadata: dict | None = None) -> User:
    """Create an active account. Raises AuthError if the e-mail is taken.

    first_name / last_name are lifted out of metadata onto the user record;
    the full mapping is kept as user_metadata. Password length is validated
    by the caller before this is reached.
    """
    normalized = normalize_email(email)
    metadata = dict(metadata or {})
    if store.get_by_email(normalized) is not None:
        raise AuthError("email_taken", "Email already registered.")

    user = User(
        email=normalized,
        password_hash=hash_password(password),
        first_name=_metadata_name(metadata, "first_name"),
        last_name=_metadata_name(metadata, "last_name"),
        user_metadata=metadata,
    )
    try:
        user_id = store.create_user(user)
    except IntegrityError as exc:
        # A concurrent sign-up won the UNIQUE(email) race.
        raise AuthError("email_taken", "Email already registered.") from exc

    store.record_event(AuditEvent(event_type="signup", user_id=user_id))
    logger.info("User %d signed up", user_id)
    created = store.get_by_id(user_id)
    if created is None:
        raise RuntimeError("User not found after write.")
    return created


# ---------------------------------------------------------------------------
# Sign-in
# ---------------------------------------------------------------------------


def sign_in(
    store: UserStore,
    email: str,
    password: str,
    session_ttl: timedelta,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[User, Session]:
    """Verify credentials and open a new session.

    Raises AuthError("invalid_credentials", ...) for every failure. Do NOT
    short-circuit before a bcrypt comparison -- that re-introduces the
    timing side channel.
    """
    normalized = normalize_email(email)
    user = store.get_by_email(normalized)

    reason: str | None = None
    if user is None:
        burn_password_check(password)
        reason = "user_not_found"
    elif not verify_password(password, user.password_hash):
        reason = "wrong_password"
    elif not user.is_active:
        reason = "inactive"

    if reason is not None:
        store.record_event(
            AuditEvent(
                event_type="login_failed",
                user_id=user.id if user is not None else None,
                ip_address=ip_address,
                user_agent=user_agent,
                metadata={"reason": reason},
            )
        )
        logger.info("Sign-in rejected (%s)", reason)
        raise AuthError("invalid_credentials", INVALID_CREDENTIALS)

    session = issue_session(store, user.id, session_ttl, user_agent=user_agent, ip_address=ip_address)
    store.update_last_sign_in(user.id)
    store.record_event(
        AuditEvent(
            event_type="login_success",
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
    )
    logger.info("User %d signed in (session %d)", user.id, session.id)
    refreshed = store.get_by_id(user.id) or user
    return refreshed, session


# ---------------------------------------------------------------------------
# Profile update
# ---------------------------------------------------------------------------


def update_user(store: UserStore, user_id: int, updates: dict, min_password_length: int) -> User:
    """Apply a partial update to the user's own record.

    Accepted keys: email, password, first_name, last_name, user_metadata.
    Changing e-mail clears email_verified. Raises AuthError when the new
    e-mail belongs to someone else, the password is too short, or there is
    nothing to change.
    """
    fields: dict = {}

    if updates.get("email") is not None:
        new_email = normalize_email(updates["email"])
        if not new_email:
            raise AuthError("invalid_email", "Email must not be empty.")
        if store.email_in_use(new_email, exclude_user_id=user_id):
            raise AuthError("email_taken", "Email already in use.")
        fields["email"] = new_email
        fields["email_verified"] = False

    if updates.get("password") is not None:
        if len(updates["password"]) < min_password_length:
            raise AuthError(
                "password_too_short",
                f"Password must be at least {min_password_length} characters.",
            )
        fields["password_hash"] = hash_password(updates["password"])

    for name in ("first_name", "last_name"):
        if name in updates:
            fields[name] = updates[name]

    if updates.get("user_metadata") is not None:
        fields["user_metadata"] = updates["user_metadata"]

    if not fields:
        raise AuthError("no_changes", "No fields to update.")

    try:
        updated = store.update_user(user_id, **fields)
    except IntegrityError as exc:
        raise AuthError("email_taken", "Email already in use.") from exc
    if not updated:
        raise AuthError("not_found", "User not found.")

    changed = sorted(k for k in fields if k != "password_hash") + (["password"] if "password_hash" in fields else [])
    store.record_event(AuditEvent(event_type="user_updated", user_id=user_id, metadata={"fields": changed}))
    logger.info("User %d updated fields %s", user_id, changed)
    user = store.get_by_id(user_id)
    if user is None:
        raise AuthError("not_found", "User not found.")
    return user
