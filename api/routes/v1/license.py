"""
api/routes/v1/license.py -- License creation endpoint.

Routes:
  POST /api/license -- create a user's license if they do not have one yet

Idempotent: a second call for the same user_id returns the existing license
unchanged with "License already exists.". The licenses table has
UNIQUE(user_id), so two concurrent first calls cannot both insert.

Storage failures are reported as 500 with the database's own message, which
the back-office caller needs to diagnose provisioning problems.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError

from api.models import LicenseCreate, LicenseEnvelope, LicenseResponse
from core.config import Settings, get_settings
from licensing.models import License
from licensing.store import LicenseStore

logger = logging.getLogger("crmauth.license")

router = APIRouter()


def _expiry_iso(requested: datetime | None, trial_days: int) -> str:
    if requested is None:
        return (datetime.now(timezone.utc) + timedelta(days=trial_days)).isoformat()
    if requested.tzinfo is None:
        requested = requested.replace(tzinfo=timezone.utc)
    return requested.astimezone(timezone.utc).isoformat()


@router.post("/license", response_model=LicenseEnvelope)
def create_license(
    request: Request,
    body: LicenseCreate,
    settings: Settings = Depends(get_settings),
) -> LicenseEnvelope:
    """Attach a license to a user. Defaults to a trial expiring in LICENSE_TRIAL_DAYS."""
    license_store: LicenseStore = request.app.state.license_store
    candidate = License(
        user_id=body.user_id,
        plan=body.plan,
        status=body.status,
        expires_at=_expiry_iso(body.expires_at, settings.license_trial_days),
    )
    try:
        lic, created = license_store.create_if_absent(candidate)
    except SQLAlchemyError as exc:
        logger.exception("License creation failed for user %d", body.user_id)
        reason = str(getattr(exc, "orig", None) or exc)
        raise HTTPException(
            status_code=500,
            detail={"code": "storage_error", "message": reason},
        ) from exc

    if not created:
        return LicenseEnvelope(message="License already exists.", license=LicenseResponse.from_license(lic))
    logger.info("License %d (%s/%s) created for user %d", lic.id, lic.plan, lic.status, lic.user_id)
    return LicenseEnvelope(message="License created.", license=LicenseResponse.from_license(lic))
