"""
licensing/store.py -- SQLAlchemy Core persistence for licenses.

Pattern: Repository + Data Mapper (same as auth/store.py).

At most one license per user. The UNIQUE(user_id) constraint is the real
guard: create_if_absent() checks first for the common case, and if two
requests race past the check, the losing INSERT raises IntegrityError and
re-reads the winner's row instead of creating a duplicate.

DB path: licensing/crmauth_licenses.db unless LICENSE_DATABASE_URL is set.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from licensing.models import License

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'crmauth_licenses.db'}"

_metadata = MetaData()

_licenses = Table(
    "licenses",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, unique=True),
    Column("plan", String(50), nullable=False, server_default="trial"),
    Column("status", String(30), nullable=False, server_default="trial"),
    Column("expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class LicenseStore:
    """Repository for License entities.

    Usage:
        store = LicenseStore()
        lic, created = store.create_if_absent(License(user_id=7, expires_at="2030-01-01T00:00:00+00:00"))
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def get_by_user(self, user_id: int) -> License | None:
        """Return the license for a user, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(_licenses.select().where(_licenses.c.user_id == user_id)).fetchone()
        return _row_to_license(row) if row is not None else None

    def create_if_absent(self, lic: License) -> tuple[License, bool]:
        """Insert lic unless the user already has a license.

        Returns (license, created). When created is False the returned license
        is the existing record, unchanged.
        """
        existing = self.get_by_user(lic.user_id)
        if existing is not None:
            return existing, False
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _licenses.insert().values(
                        user_id=lic.user_id,
                        plan=lic.plan,
                        status=lic.status,
                        expires_at=lic.expires_at,
                        created_at=_now_iso(),
                    )
                )
                conn.commit()
                license_id = result.inserted_primary_key[0]
        except IntegrityError:
            # Lost the race against a concurrent create for the same user.
            existing = self.get_by_user(lic.user_id)
            if existing is None:
                raise
            return existing, False

        with self.engine.connect() as conn:
            row = conn.execute(_licenses.select().where(_licenses.c.id == license_id)).fetchone()
        return _row_to_license(row), True

    def list_licenses(self) -> list[License]:
        """Return all licenses, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_licenses.select().order_by(_licenses.c.id.desc())).fetchall()
        return [_row_to_license(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


def _row_to_license(row) -> License:
    return License(
        id=row.id,
        user_id=row.user_id,
        plan=row.plan,
        status=row.status,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
