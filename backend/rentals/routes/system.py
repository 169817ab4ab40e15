# backend/rentals/routes/system.py
"""
System health endpoint and local file serving.

/files/<path> serves attachments stored by LocalBlobStore; other blob
stores serve their own URLs.
"""

import os
import time

from flask import Blueprint, abort, current_app, send_from_directory

from ..errors import StorageError
from ..extensions import db
from ..models import ApprovalRequest, User
from ..services.blob_storage import LocalBlobStore, get_blob_store
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Database connectivity plus the counts the review screen depends on."""
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        pending_count = db.session.query(ApprovalRequest).filter_by(status="pending").count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "pending_approvals": pending_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_blob_store_health() -> dict:
    store = get_blob_store()
    if isinstance(store, LocalBlobStore):
        writable = os.access(store.root, os.W_OK) if os.path.isdir(store.root) else os.access(os.path.dirname(store.root), os.W_OK)
        return {
            "status": "healthy" if writable else "degraded",
            "details": {"backend": "local", "writable": writable},
        }
    return {"status": "healthy", "details": {"backend": type(store).__name__}}


@system_bp.get("/api/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    storage_health = check_blob_store_health()

    checks = [database_health, storage_health]
    if any(c["status"] == "unhealthy" for c in checks):
        overall_status, http_status = "unhealthy", 503
    elif any(c["status"] == "degraded" for c in checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "blob_store": storage_health,
        }
    }, http_status


@system_bp.get("/files/<path:pathname>")
def serve_file(pathname: str):
    store = get_blob_store()
    if not isinstance(store, LocalBlobStore):
        abort(404)
    try:
        store.absolute_path(pathname)
    except StorageError:
        abort(404)
    return send_from_directory(store.root, pathname)
