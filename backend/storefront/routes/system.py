# backend/storefront/routes/system.py
"""
System health endpoint.

Checks the database and reports whether the external services (payments,
mail, geocoding) are configured. Unconfigured services degrade features
but do not make the API unhealthy.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Order, SessionToken
from ..services import payment_service, notification_service, location_service
from storefront.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        order_count = db.session.query(Order).count()
        active_sessions = db.session.query(SessionToken).filter_by(is_revoked=False).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "orders": order_count,
                "active_sessions": active_sessions,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_integrations() -> dict:
    """Configured/not configured for each external service (no network calls)."""
    return {
        "payments": payment_service.get_gateway().is_configured,
        "email": notification_service.get_mailer().is_configured,
        "geocoding": bool(location_service.get_geocoder().api_key),
    }


@system_bp.get("/health")
def health():
    """
    Health check.

    Returns:
    - 200: Database reachable ("degraded" when an integration is unconfigured)
    - 503: Database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    integrations = check_integrations()

    if database_health["status"] == "unhealthy":
        overall_status = "unhealthy"
        http_status = 503
    elif not all(integrations.values()):
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    return {
        "success": http_status == 200,
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "integrations": integrations,
        },
    }, http_status
