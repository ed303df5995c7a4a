"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Every authenticated route presents `Authorization: Bearer <token>`.

bearer_token() extracts the token and raises 401 when the header is missing
or malformed -- before any store access or body handling.
get_current_session() resolves the token to (user, session) and raises 401
"Invalid or expired session." on any failure.
require_admin() wraps get_current_session() and raises 403 for non-admins.

Layer rule: no imports from api/ or licensing/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request

from auth.models import Session, User
from auth.sessions import resolve_session
from core.config import Settings, get_settings


@dataclass
class SessionContext:
    """The authenticated caller: the resolved user and the session they presented."""

    user: User
    session: Session


def bearer_token(request: Request) -> str:
    """Return the raw bearer token or raise HTTP 401.

    The scheme is matched case-insensitively; the token must be non-empty.
    """
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=401,
            detail={"code": "missing_token", "message": "Missing bearer token."},
        )
    return token


def get_current_session(request: Request, token: str = Depends(bearer_token)) -> SessionContext:
    """Require a live session. Raises HTTP 401 if the token does not resolve.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(ctx: SessionContext = Depends(get_current_session)): ...
    """
    resolved = resolve_session(request.app.state.user_store, token)
    if resolved is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "invalid_session", "message": "Invalid or expired session."},
        )
    user, session = resolved
    return SessionContext(user=user, session=session)


def is_admin(user: User, admin_emails: list[str]) -> bool:
    """Return True if the user is listed in ADMIN_EMAILS or has app_metadata.role == "admin".

    user_metadata is client-writable (sign-up, PATCH /auth/user) and is never
    consulted here. app_metadata is server-managed only.
    """
    if user.email.lower() in admin_emails:
        return True
    return user.app_metadata.get("role") == "admin"


def require_admin(
    ctx: SessionContext = Depends(get_current_session),
    settings: Settings = Depends(get_settings),
) -> SessionContext:
    """Require an admin caller. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    if not is_admin(ctx.user, settings.admin_email_list):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return ctx
