# backend/crediario/routes/system.py
"""
System health endpoint.

Checks the database and the two ledgers so a deploy can tell "app is up"
from "app can actually take payments".
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import CreditAccount, Product, Reservation
from crediario.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        active_reservations = db.session.query(Reservation).filter_by(status="ACTIVE").count()
        open_accounts = db.session.query(CreditAccount).filter(
            CreditAccount.status.in_(["ACTIVE", "SUSPENDED"])
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "active_reservations": active_reservations,
                "open_credit_accounts": open_accounts,
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


def check_ledger_health() -> dict:
    """
    Balance invariant spot check: counts accounts whose stored remaining
    disagrees with total - paid. Non-zero means someone wrote around the
    reconciliation engine; run `flask ledger audit --fix`.
    """
    start_time = time.time()
    try:
        owed = CreditAccount.total_amount_cents - CreditAccount.paid_amount_cents
        drifted = db.session.query(CreditAccount).filter(
            CreditAccount.remaining_amount_cents != db.case((owed < 0, 0), else_=owed)
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000

        if drifted:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"{drifted} credit account(s) fail the balance invariant",
            }

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Ledger health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Ledger check error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    ledger_health = check_ledger_health()

    all_checks = [database_health, ledger_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "ledger": ledger_health,
        }
    }

    return response, http_status
