"""
api/routes/v1/admin.py -- Back-office listing of users and their licenses.

Routes:
  GET /api/users -- every user with their license (admin only)

Admins are users whose e-mail appears in ADMIN_EMAILS, or whose server-managed
app_metadata.role is "admin".
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import AdminUserRow, AdminUsersResponse
from auth.dependencies import SessionContext, require_admin
from auth.store import UserStore
from licensing.store import LicenseStore

router = APIRouter()


@router.get("/users", response_model=AdminUsersResponse)
def list_users(request: Request, ctx: SessionContext = Depends(require_admin)) -> AdminUsersResponse:
    """List users newest first, each joined with their license (or nulls)."""
    user_store: UserStore = request.app.state.user_store
    license_store: LicenseStore = request.app.state.license_store

    licenses = {lic.user_id: lic for lic in license_store.list_licenses()}
    rows = []
    for user in user_store.list_users():
        lic = licenses.get(user.id)
        rows.append(
            AdminUserRow(
                user_id=user.id,
                email=user.email,
                is_active=user.is_active,
                created_at=user.created_at or "",
                last_sign_in_at=user.last_sign_in_at,
                license_id=lic.id if lic else None,
                plan=lic.plan if lic else None,
                status=lic.status if lic else None,
                expires_at=lic.expires_at if lic else None,
            )
        )
    return AdminUsersResponse(users=rows)
