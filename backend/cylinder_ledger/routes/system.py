# backend/cylinder_ledger/routes/system.py
"""
System health endpoint.

Checks storage connectivity and surfaces dead-lettered outbox tasks, which
need operator attention even though the service itself is up.
"""

import logging
import time

from flask import Blueprint
from sqlalchemy.exc import SQLAlchemyError

from ..enums import OutboxStatus
from ..extensions import db
from ..models import InventoryOutboxTask, InventoryPosition, MovementRecord
from ..time_utils import utcnow

logger = logging.getLogger(__name__)

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        position_count = db.session.query(InventoryPosition).count()
        movement_count = db.session.query(MovementRecord).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "positions": position_count,
                "movements": movement_count,
            },
        }
    except SQLAlchemyError:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_outbox_health() -> dict:
    """Degraded while any inventory side effect is dead-lettered or retrying."""
    start_time = time.time()
    try:
        alert_count = db.session.query(InventoryOutboxTask).filter_by(status=OutboxStatus.ALERT.value).count()
        failed_count = db.session.query(InventoryOutboxTask).filter_by(status=OutboxStatus.FAILED.value).count()
        elapsed_ms = (time.time() - start_time) * 1000

        result = {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"alert": alert_count, "failed": failed_count},
        }
        if alert_count or failed_count:
            result["status"] = "degraded"
            result["warning"] = f"{alert_count} dead-lettered and {failed_count} retrying outbox tasks"
        return result
    except SQLAlchemyError:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        logger.exception("Outbox health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Outbox error",
        }


@system_bp.get("/api/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: storage unavailable
    """
    start_time = time.time()

    database_health = check_database_health()
    outbox_health = check_outbox_health()

    all_checks = [database_health, outbox_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "outbox": outbox_health,
        },
    }, http_status
