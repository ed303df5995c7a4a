"""
asgi.py -- ASGI entry point for the CRM auth service.

Run with:  uvicorn asgi:app --reload
           uvicorn asgi:app --host 0.0.0.0 --port 8000 --workers 4

With several workers, point RATE_LIMIT_STORAGE_URI at Redis so all workers
share one set of counters.
"""

from api.main import app

__all__ = ["app"]
