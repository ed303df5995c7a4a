"""
licensing/models.py -- Domain dataclass for plan licenses.

Pure data container; licensing/store.py does the work.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class License:
    """Plan metadata tied to exactly one user.

    expires_at is an ISO 8601 string or None for a non-expiring plan.
    id is None before the record is written to the database.
    """

    user_id: int
    plan: str = "trial"
    status: str = "trial"
    expires_at: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
