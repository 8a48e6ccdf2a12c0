# backend/retailpos/routes/system.py
"""
System health endpoint.

Checks the database and the role setup sales depend on.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..capabilities import DEFAULT_ROLE_CAPABILITIES
from ..extensions import db
from ..models import Product, Role, Sale, Store
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        details = {
            "stores": db.session.query(Store).count(),
            "products": db.session.query(Product).count(),
            "sales": db.session.query(Sale).count(),
        }
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "details": details,
        }
    except SQLAlchemyError:
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }


def check_roles_health() -> dict:
    start_time = time.time()
    try:
        existing = {name for (name,) in db.session.query(Role.name).all()}
        missing = sorted(set(DEFAULT_ROLE_CAPABILITIES) - existing)
        result = {
            "status": "degraded" if missing else "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
        }
        if missing:
            result["warning"] = f"Missing roles: {', '.join(missing)}"
        return result
    except SQLAlchemyError:
        current_app.logger.exception("Role health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Role lookup error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (missing default roles)
    - 503: database unreachable
    """
    checks = {
        "database": check_database_health(),
        "roles": check_roles_health(),
    }
    statuses = {check["status"] for check in checks.values()}

    if "unhealthy" in statuses:
        overall, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall, http_status = "degraded", 200
    else:
        overall, http_status = "healthy", 200

    return {
        "status": overall,
        "timestamp": utcnow().isoformat() + "Z",
        "checks": checks,
    }, http_status
