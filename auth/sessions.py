"""
auth/sessions.py -- Session issuance, resolution and revocation.

A session is an opaque bearer token plus a stored record (user reference,
expiry, client context). The raw token leaves this module exactly once, in
the Session returned by issue_session(); afterwards only its HMAC hash is
used to find the record.

Resolution returns None for every failure (unknown token, expired, user
gone or inactive) so callers map all of them to the same 401.

Layer rule: no imports from api/ or licensing/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from auth.models import AuditEvent, Session, User
from auth.store import UserStore
from auth.tokens import generate_token, hash_token

logger = logging.getLogger("crmauth.auth")


def is_expired(expires_at: str, now: datetime) -> bool:
    """Return True if an ISO-8601 expiry is at or before now (naive values are UTC)."""
    try:
        expiry = datetime.fromisoformat(expires_at)
    except ValueError:
        return True
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return expiry <= now


def issue_session(
    store: UserStore,
    user_id: int,
    ttl: timedelta,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> Session:
    """Create a session for user_id and return it with the raw token filled in."""
    raw_token = generate_token()
    now = datetime.now(timezone.utc)
    session = Session(
        user_id=user_id,
        token_hash=hash_token(raw_token),
        created_at=now.isoformat(),
        expires_at=(now + ttl).isoformat(),
        user_agent=user_agent,
        ip_address=ip_address,
    )
    session.id = store.create_session(session)
    session.token = raw_token
    return session


def resolve_session(store: UserStore, raw_token: str) -> tuple[User, Session] | None:
    """Return (user, session) for a live token, or None.

    A token resolves only if its session exists, has not expired and belongs
    to an active user. Successful resolution refreshes last_activity_at.
    """
    session = store.get_session_by_hash(hash_token(raw_token))
    if session is None:
        return None
    if is_expired(session.expires_at, datetime.now(timezone.utc)):
        return None
    user = store.get_by_id(session.user_id)
    if user is None or not user.is_active:
        return None
    session.last_activity_at = store.touch_session(session.id)
    session.token = raw_token
    return user, session


def revoke_session(store: UserStore, raw_token: str) -> Session | None:
    """Delete the session behind raw_token, leaving the user's other sessions alone.

    Returns the removed session, or None when the token was already unknown.
    """
    removed = store.delete_session_by_hash(hash_token(raw_token))
    if removed is not None:
        store.record_event(AuditEvent(event_type="logout", user_id=removed.user_id))
        logger.info("Session %d revoked for user %d", removed.id, removed.user_id)
    return removed
