# backend/storefront/routes/system.py
"""
System health and version endpoints.

Health checks cover the database, the notification outbox backlog and
webhook processing failures waiting for a replay.
"""

import sys
import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Notification, Product, User, WebhookEvent
from ..models.notifications import NOTIFICATION_QUEUED
from ..models.payments import WEBHOOK_FAILED
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        product_count = db.session.query(Product).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "products": product_count,
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


def check_payments_health() -> dict:
    """Failed webhook events are degraded, not down: they can be replayed."""
    start_time = time.time()
    try:
        failed_webhooks = db.session.query(WebhookEvent).filter_by(status=WEBHOOK_FAILED).count()
        queued_notifications = db.session.query(Notification).filter_by(status=NOTIFICATION_QUEUED).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "degraded" if failed_webhooks else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "failed_webhook_events": failed_webhooks,
                "queued_notifications": queued_notifications,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Payments health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Payments check error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    payments_health = check_payments_health()

    all_checks = [database_health, payments_health]
    if any(c["status"] == "unhealthy" for c in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(c["status"] == "degraded" for c in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "payments": payments_health,
        }
    }, http_status


@system_bp.get("/version")
def version():
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
