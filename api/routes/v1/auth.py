"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST  /api/auth/signup                  -- create an account
  POST  /api/auth/signin                  -- password sign-in; returns user + session token
  GET   /api/auth/session                 -- resolve the bearer token to user + session
  GET   /api/auth/user                    -- current user
  PATCH /api/auth/user                    -- update the current user
  POST  /api/auth/signout                 -- revoke the presented session only
  POST  /api/auth/reset-password          -- request a reset token (uniform response)
  POST  /api/auth/reset-password/confirm  -- redeem a reset token

Security:
  Sign-in failures share one message ("Invalid email or password.") whatever
  failed; auth.accounts.sign_in runs bcrypt on every path so timing does not
  differ either.
  Reset requests answer the same message whether or not the address exists.
  The raw token is echoed only when ENVIRONMENT=development.
  Reset confirmation failures share one message ("Invalid or expired token.").
  Cache-Control: no-store on every response carrying a session token.
  Bearer routes reject a missing/malformed header with 401 before anything else.
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from api.limiter import first_forwarded_ip
from api.models import (
    MessageResponse,
    PasswordResetConfirm,
    PasswordResetRequest,
    PasswordResetRequestResponse,
    SessionResponse,
    SignInRequest,
    SignUpRequest,
    SignUpResponse,
    UserEnvelope,
    UserResponse,
    UserSessionResponse,
    UserUpdate,
)
from auth.accounts import AuthError, sign_in, sign_up, update_user
from auth.dependencies import SessionContext, bearer_token, get_current_session
from auth.recovery import request_password_reset, reset_password
from auth.sessions import revoke_session
from auth.store import UserStore
from core.config import Settings, get_settings

# Auth policy:
# - POST  /auth/signup, /auth/signin:                public
# - POST  /auth/reset-password, .../confirm:         public
# - GET   /auth/session, GET/PATCH /auth/user:       bearer session (get_current_session)
# - POST  /auth/signout:                             well-formed bearer header (bearer_token)
router = APIRouter()

_NO_STORE = {"Cache-Control": "no-store"}

RESET_REQUESTED_MESSAGE = "If the email exists in our system, you will receive password reset instructions."
INVALID_RESET_TOKEN = "Invalid or expired token."


def _password_too_short(settings: Settings) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={
            "code": "password_too_short",
            "message": f"Password must be at least {settings.min_password_length} characters.",
        },
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=SignUpResponse)
def signup(
    request: Request,
    body: SignUpRequest,
    settings: Settings = Depends(get_settings),
) -> SignUpResponse:
    """Create an active account. Nothing is written if validation fails."""
    if not body.email.strip():
        raise HTTPException(
            status_code=400,
            detail={"code": "missing_fields", "message": "Email and password are required."},
        )
    if len(body.password) < settings.min_password_length:
        raise _password_too_short(settings)

    user_store: UserStore = request.app.state.user_store
    try:
        user = sign_up(user_store, body.email, body.password, body.metadata)
    except AuthError as exc:
        raise HTTPException(status_code=400, detail={"code": exc.code, "message": exc.message}) from exc

    return SignUpResponse(
        user=UserResponse.from_user(user),
        message="Registration complete. You can now sign in.",
    )


@router.post("/auth/signin", response_model=UserSessionResponse)
def signin(
    request: Request,
    response: Response,
    body: SignInRequest,
    settings: Settings = Depends(get_settings),
) -> UserSessionResponse:
    """Verify credentials and open a session.

    Client context is best effort: the User-Agent header and the first
    X-Forwarded-For hop are recorded on the session when present.
    """
    user_store: UserStore = request.app.state.user_store
    try:
        user, session = sign_in(
            user_store,
            body.email,
            body.password,
            session_ttl=timedelta(days=settings.session_ttl_days),
            user_agent=request.headers.get("user-agent") or None,
            ip_address=first_forwarded_ip(request.headers.get("x-forwarded-for")),
        )
    except AuthError as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": exc.code, "message": exc.message},
            headers=_NO_STORE,
        ) from exc

    response.headers.update(_NO_STORE)
    return UserSessionResponse(user=UserResponse.from_user(user), session=SessionResponse.from_session(session))


@router.post(
    "/auth/reset-password",
    response_model=PasswordResetRequestResponse,
    response_model_exclude_none=True,
)
def request_reset(
    request: Request,
    body: PasswordResetRequest,
    settings: Settings = Depends(get_settings),
) -> PasswordResetRequestResponse:
    """Start a password reset. The response never reveals whether the address exists.

    TODO: deliver the reset link (/reset-password?token=...) by e-mail.
    """
    user_store: UserStore = request.app.state.user_store
    raw_token = request_password_reset(user_store, body.email, timedelta(hours=settings.reset_token_ttl_hours))
    return PasswordResetRequestResponse(
        message=RESET_REQUESTED_MESSAGE,
        token=raw_token if settings.is_development else None,
    )


@router.post("/auth/reset-password/confirm", response_model=MessageResponse)
def confirm_reset(
    request: Request,
    body: PasswordResetConfirm,
    settings: Settings = Depends(get_settings),
) -> MessageResponse:
    """Redeem a reset token and set a new password. Revokes all sessions of the user."""
    if len(body.password) < settings.min_password_length:
        raise _password_too_short(settings)

    user_store: UserStore = request.app.state.user_store
    if not reset_password(user_store, body.token, body.password):
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_token", "message": INVALID_RESET_TOKEN},
        )
    return MessageResponse(message="Password updated. You can now sign in.")


# ---------------------------------------------------------------------------
# Bearer endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/session", response_model=UserSessionResponse)
def current_session(response: Response, ctx: SessionContext = Depends(get_current_session)) -> UserSessionResponse:
    """Return the user and session behind the presented bearer token."""
    response.headers.update(_NO_STORE)
    return UserSessionResponse(
        user=UserResponse.from_user(ctx.user),
        session=SessionResponse.from_session(ctx.session),
    )


@router.get("/auth/user", response_model=UserEnvelope)
def current_user(ctx: SessionContext = Depends(get_current_session)) -> UserEnvelope:
    """Return the user behind the presented bearer token."""
    return UserEnvelope(user=UserResponse.from_user(ctx.user))


@router.patch("/auth/user", response_model=UserEnvelope)
async def patch_user(
    request: Request,
    ctx: SessionContext = Depends(get_current_session),
    settings: Settings = Depends(get_settings),
) -> UserEnvelope:
    """Update the caller's own profile.

    The body is read only after the session resolves, so an unauthenticated
    request is always 401 regardless of what it sent. The mutation target is
    the session's user -- an id in the body is rejected as an unknown field.
    """
    try:
        payload = await request.json()
        body = UserUpdate.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "validation_error", "message": "Invalid update.", "detail": str(exc.errors())},
        ) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "validation_error", "message": "Request body must be a JSON object."},
        ) from exc

    user_store: UserStore = request.app.state.user_store
    updates = body.model_dump(exclude_unset=True)
    try:
        user = await run_in_threadpool(
            update_user, user_store, ctx.user.id, updates, settings.min_password_length
        )
    except AuthError as exc:
        raise HTTPException(status_code=400, detail={"code": exc.code, "message": exc.message}) from exc
    return UserEnvelope(user=UserResponse.from_user(user))


@router.post("/auth/signout", response_model=MessageResponse)
def signout(request: Request, token: str = Depends(bearer_token)) -> MessageResponse:
    """Revoke the presented session. Succeeds even if it was already gone."""
    user_store: UserStore = request.app.state.user_store
    revoke_session(user_store, token)
    return MessageResponse(message="Signed out.")
