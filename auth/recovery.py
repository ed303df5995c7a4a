"""
auth/recovery.py -- Two-phase password reset.

Request phase: issue a single-use, time-limited token for an active user.
The caller learns nothing about whether the address exists -- the function
returns None for unknown and inactive addresses and the route answers the
same generic message either way.

Confirm phase: redeem a token. Unknown, expired and already-consumed tokens
all return False with no further distinction. Redemption is a single store
transaction that consumes the token, replaces the hash and revokes every
session of the user.

Layer rule: no imports from api/ or licensing/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from auth.accounts import normalize_email
from auth.models import AuditEvent, PasswordResetToken
from auth.sessions import is_expired
from auth.store import UserStore
from auth.tokens import generate_token, hash_password, hash_token

logger = logging.getLogger("crmauth.auth")


def request_password_reset(store: UserStore, email: str, ttl: timedelta) -> str | None:
    """Issue a reset token for an active account and return the raw token.

    Returns None when no active account matches. Issuing a token supersedes
    any earlier unconsumed token for the same user.
    """
    user = store.get_by_email(normalize_email(email))
    if user is None or not user.is_active:
        return None

    raw_token = generate_token()
    now = datetime.now(timezone.utc)
    store.create_reset_token(
        PasswordResetToken(
            user_id=user.id,
            token_hash=hash_token(raw_token),
            created_at=now.isoformat(),
            expires_at=(now + ttl).isoformat(),
        )
    )
    store.record_event(AuditEvent(event_type="password_reset_requested", user_id=user.id))
    logger.info("Password reset requested for user %d", user.id)
    return raw_token


def reset_password(store: UserStore, raw_token: str, new_password: str) -> bool:
    """Redeem a reset token. Returns True only if the password was changed.

    The minimum length is enforced by the caller before this is reached.
    """
    token = store.get_reset_token_by_hash(hash_token(raw_token))
    if token is None or token.consumed_at is not None:
        return False
    if is_expired(token.expires_at, datetime.now(timezone.utc)):
        return False

    if not store.complete_password_reset(token.id, token.user_id, hash_password(new_password)):
        return False

    store.record_event(AuditEvent(event_type="password_reset_completed", user_id=token.user_id))
    logger.info("Password reset completed for user %d", token.user_id)
    return True
