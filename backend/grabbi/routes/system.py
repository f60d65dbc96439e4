# Overview: Flask API routes for health and version checks.

"""
System health and version endpoints.

Health checks cover the database, the session table and the in-process
batch job registry.
"""

import sys
import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Franchise, Product, SessionToken, User
from ..services.job_registry import get_registry
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        details = {
            "users": db.session.query(User).count(),
            "products": db.session.query(Product).count(),
            "franchises": db.session.query(Franchise).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": details}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Database error"}


def check_session_service_health() -> dict:
    start_time = time.time()
    try:
        now = utcnow()
        active_sessions = db.session.query(SessionToken).filter(
            SessionToken.revoked_at.is_(None),
            SessionToken.expires_at >= now,
        ).count()
        expired_sessions = db.session.query(SessionToken).filter(SessionToken.expires_at < now).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "active_sessions": active_sessions,
                "expired_pending_cleanup": expired_sessions,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Session service health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Session service error"}


def check_job_registry_health() -> dict:
    return {"status": "healthy", "details": {"tracked_jobs": len(get_registry())}}


@system_bp.get("/health")
@system_bp.get("/api/health")
def health():
    """
    Returns:
    - 200: All systems healthy
    - 503: One or more systems unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "session_service": check_session_service_health(),
        "job_registry": check_job_registry_health(),
    }
    unhealthy = any(c["status"] == "unhealthy" for c in checks.values())

    response = {
        "status": "unhealthy" if unhealthy else "healthy",
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }
    return response, 503 if unhealthy else 200


@system_bp.get("/api/version")
def version():
    """Non-sensitive deployment info: API version, environment, Python version and server time."""
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
