"""
auth/tokens.py -- Password hashing and opaque token utilities.

Passwords:
  bcrypt at BCRYPT_ROUNDS (default 12; the test suite runs at 4). Sign-in
  compares against _DUMMY_HASH when the e-mail is unknown, so every failed
  sign-in costs one bcrypt check.

Session and reset tokens:
  secrets.token_hex(32), 256 bits. Only HMAC-SHA256(SECRET_KEY, raw_token)
  is written to the database and looked up through a UNIQUE index; a copy
  of the tables cannot be replayed as bearer tokens.

Layer rule: no imports from api/ or licensing/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

import bcrypt

from core.config import get_settings

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

# bcrypt only looks at the first 72 bytes of its input. Newer bcrypt releases
# raise on longer input instead of truncating, so we truncate explicitly and
# identically on hash and verify.
_BCRYPT_MAX_BYTES = 72


def _password_bytes(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(_password_bytes(plain), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_password_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first sign-in attempt is not measurably
# slower than subsequent ones. Always call verify_password() even when the
# e-mail does not exist -- bcrypt's constant work factor equalizes timing.
_DUMMY_HASH: str = hash_password("crmauth_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run a bcrypt comparison whose result is discarded.

    Called on sign-in paths that fail before a real comparison so every
    failure costs the same.
    """
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Opaque tokens
# ---------------------------------------------------------------------------


def generate_token() -> str:
    """Return a new opaque token: 64 hex chars, 256 bits of entropy."""
    return secrets.token_hex(32)


def hash_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string.

    Deterministic, so the store can look tokens up by hash without scanning.
    """
    return hmac.new(
        _settings.secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()
