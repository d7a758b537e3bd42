# Overview: Flask API routes for system health; returns JSON status for load balancers and operators.

# backend/stockbill/routes/system.py
"""
System routes: health checks.

No authentication required. Responses never include record contents,
only counts and latencies.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import Invoice, Product, SessionToken, User
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    """
    Check database connectivity and that the core tables answer queries.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))

        user_count = db.session.query(User).count()
        product_count = db.session.query(Product).count()
        invoice_count = db.session.query(Invoice).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "products": product_count,
                "invoices": invoice_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database connection failed"
        }


def check_session_service_health() -> dict:
    """Sessions table reachable; reports active and expired-but-unrevoked tokens."""
    start_time = time.time()
    try:
        now = utcnow()
        active_sessions = db.session.query(SessionToken).filter(
            SessionToken.is_revoked.is_(False),
            SessionToken.expires_at >= now,
        ).count()
        expired_sessions = db.session.query(SessionToken).filter(
            SessionToken.is_revoked.is_(False),
            SessionToken.expires_at < now,
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "active_sessions": active_sessions,
                "expired_pending_cleanup": expired_sessions,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Session service health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Session service error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200 {"status": "ok", ...}: all checks healthy
    - 503 {"status": "unhealthy", ...}: at least one check failed
    """
    start_time = time.time()

    database_health = check_database_health()
    session_health = check_session_service_health()

    healthy = all(check["status"] == "healthy" for check in (database_health, session_health))
    if not healthy:
        db.session.rollback()

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": "ok" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "session_service": session_health,
        }
    }

    return response, 200 if healthy else 503
