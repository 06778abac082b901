# Overview: Flask API routes for credit accounts and payments; parses input and returns JSON responses.

# backend/crediario/routes/credit_accounts.py
"""
Credit Account API Routes

WHY: Open installment credit ("crediário") for customers and take payments
against it.

DESIGN:
- Every payment endpoint calls reconciliation_service.apply_payment();
  there is no other way to move paid/remaining
- Balances are integer cents
- Follow-up failures after a payment come back as "warnings" with a 201;
  the payment itself is committed
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..errors import LedgerError
from ..models import Order
from ..services import credit_account_service, reconciliation_service
from ..validation import (
    ValidationError,
    validate_account_payload,
    validate_payment_payload,
    validate_payment_preview_payload,
)


credit_accounts_bp = Blueprint("credit_accounts", __name__, url_prefix="/api/credit-accounts")


def _ledger_error(e: LedgerError):
    return jsonify({"error": e.message, "code": e.code}), e.status_code


def _validation_error(e: ValueError):
    return jsonify({"error": str(e), "code": "validation_error"}), 400


# =============================================================================
# ACCOUNTS
# =============================================================================

@credit_accounts_bp.post("")
def open_account_route():
    """
    Open a credit account.

    Request body:
    {
        "customer_id": 3,
        "line_items": [
            {"product_id": 1, "quantity": 2},
            {"product_name": "Service fee", "quantity": 1, "unit_price_cents": 1500}
        ],
        "installments": 4,  (optional, default 1)
        "payment_frequency": "MONTHLY",  (optional)
        "next_payment_date": "2026-11-10",  (optional)
        "notes": "..."  (optional)
    }

    Returns:
        201: Account opened (balance summary)
        400: Invalid input / empty line items
        404: Unknown customer or product
    """
    payload = dict(request.get_json(silent=True) or {})
    line_items = payload.pop("line_items", None)

    try:
        patch = validate_account_payload(payload)
        account = credit_account_service.open_account(
            patch["customer_id"],
            line_items,
            installments=patch.get("installments", 1),
            payment_frequency=patch.get("payment_frequency"),
            next_payment_date=patch.get("next_payment_date"),
            notes=patch.get("notes"),
            order_reference=patch.get("order_reference"),
        )
        return jsonify(credit_account_service.get_account_balance(account.id)), 201
    except ValueError as e:
        return _validation_error(e)
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        current_app.logger.exception("Failed to open credit account")
        return jsonify({"error": "Internal server error"}), 500


@credit_accounts_bp.get("")
def list_accounts_route():
    """
    Query params:
    - status: ACTIVE, PAID_OFF, SUSPENDED
    - customer_id
    - overdue: true for ACTIVE accounts past next_payment_date
    """
    try:
        accounts = credit_account_service.list_accounts(
            status=request.args.get("status"),
            customer_id=request.args.get("customer_id", type=int),
            overdue_only=request.args.get("overdue", "false").lower() == "true",
        )
        return jsonify({"accounts": [a.to_dict() for a in accounts]}), 200
    except Exception:
        current_app.logger.exception("Failed to list credit accounts")
        return jsonify({"error": "Internal server error"}), 500


@credit_accounts_bp.get("/<int:account_id>")
def get_account_route(account_id: int):
    """Balance summary: totals, schedule, items, overdue flag."""
    try:
        return jsonify(credit_account_service.get_account_balance(account_id)), 200
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        current_app.logger.exception("Failed to get credit account")
        return jsonify({"error": "Internal server error"}), 500


@credit_accounts_bp.post("/from-order")
def open_from_order_route():
    """
    Convert an order into installment credit.

    Request body:
    {
        "order_number": "ORD-0042",  (or "order_id": 42)
        "customer_id": 3,  (optional, defaults to the order's customer)
        "installments": 3,
        "payment_frequency": "WEEKLY",
        "next_payment_date": "2026-11-10"
    }

    Returns:
        201: Account opened for the order
        200: The order already had an open account
    """
    data = request.get_json(silent=True) or {}

    try:
        query = db.session.query(Order)
        if data.get("order_id") is not None:
            order = query.filter_by(id=data["order_id"]).first()
        elif data.get("order_number"):
            order = query.filter_by(order_number=data["order_number"]).first()
        else:
            raise ValidationError("order_id or order_number is required")
        if order is None:
            return jsonify({"error": "Order not found", "code": "order_not_found"}), 404

        customer_id = data.get("customer_id") or order.customer_id
        if customer_id is None:
            raise ValidationError("customer_id is required for an order without a customer")

        account, created = credit_account_service.find_or_create_for_order(
            customer_id,
            order.total_cents,
            order.order_number,
            installments=data.get("installments", 1),
            payment_frequency=(data.get("payment_frequency") or "").upper() or None,
            next_payment_date=data.get("next_payment_date"),
        )
        return jsonify({"account": account.to_dict(), "created": created}), 201 if created else 200
    except ValueError as e:
        return _validation_error(e)
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        current_app.logger.exception("Failed to open credit account from order")
        return jsonify({"error": "Internal server error"}), 500


@credit_accounts_bp.post("/<int:account_id>/items")
def add_items_route(account_id: int):
    """Add purchases to an ACTIVE account. Body: {"line_items": [...]}"""
    data = request.get_json(silent=True) or {}

    try:
        account = credit_account_service.add_line_items(account_id, data.get("line_items"))
        return jsonify(credit_account_service.get_account_balance(account.id)), 200
    except ValueError as e:
        return _validation_error(e)
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        current_app.logger.exception("Failed to add credit account items")
        return jsonify({"error": "Internal server error"}), 500


@credit_accounts_bp.post("/<int:account_id>/recompute")
def recompute_route(account_id: int):
    """Integrity guard: repair remaining/status from total and paid."""
    try:
        report = credit_account_service.recompute_totals(account_id)
        return jsonify(report.to_dict()), 200
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        current_app.logger.exception("Failed to recompute credit account")
        return jsonify({"error": "Internal server error"}), 500


@credit_accounts_bp.post("/<int:account_id>/suspend")
def suspend_route(account_id: int):
    data = request.get_json(silent=True) or {}
    try:
        account = credit_account_service.suspend_account(account_id, data.get("reason"))
        return jsonify(account.to_dict()), 200
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        current_app.logger.exception("Failed to suspend credit account")
        return jsonify({"error": "Internal server error"}), 500


@credit_accounts_bp.post("/<int:account_id>/reactivate")
def reactivate_route(account_id: int):
    try:
        account = credit_account_service.reactivate_account(account_id)
        return jsonify(account.to_dict()), 200
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        current_app.logger.exception("Failed to reactivate credit account")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENTS
# =============================================================================

@credit_accounts_bp.get("/<int:account_id>/payments")
def list_payments_route(account_id: int):
    try:
        payments = reconciliation_service.list_payments(account_id)
        return jsonify({"payments": [p.to_dict() for p in payments]}), 200
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        current_app.logger.exception("Failed to list credit payments")
        return jsonify({"error": "Internal server error"}), 500


@credit_accounts_bp.post("/<int:account_id>/payments")
def apply_payment_route(account_id: int):
    """
    Apply a payment.

    Request body:
    {
        "amount_cents": 6000,
        "payment_method": "PIX",  (CASH, PIX, CARD, TRANSFER)
        "notes": "..."  (optional)
    }

    Returns:
        201: Payment applied (account, payment, paid_off, warnings)
        400: Invalid amount or method
        404: Unknown account
        409: Amount exceeds the remaining balance
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payment_payload(payload)
        result = reconciliation_service.apply_payment(
            account_id,
            patch["amount_cents"],
            patch["payment_method"],
            notes=patch.get("notes"),
        )
        return jsonify(result.to_dict()), 201
    except ValueError as e:
        return _validation_error(e)
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        current_app.logger.exception("Failed to apply credit payment")
        return jsonify({"error": "Internal server error"}), 500


@credit_accounts_bp.post("/<int:account_id>/payments/preview")
def preview_payment_route(account_id: int):
    """Confirmation preview, no writes. Body: {"amount_cents": 4000}"""
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payment_preview_payload(payload)
        return jsonify(reconciliation_service.preview_payment(account_id, patch.get("amount_cents"))), 200
    except ValueError as e:
        return _validation_error(e)
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        current_app.logger.exception("Failed to preview credit payment")
        return jsonify({"error": "Internal server error"}), 500


@credit_accounts_bp.post("/<int:account_id>/pay-off")
def pay_off_route(account_id: int):
    """Pay exactly the remaining balance. Body: {"payment_method": "CASH"}"""
    data = request.get_json(silent=True) or {}
    try:
        result = reconciliation_service.pay_off(account_id, data.get("payment_method"), notes=data.get("notes"))
        return jsonify(result.to_dict()), 201
    except ValueError as e:
        return _validation_error(e)
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        current_app.logger.exception("Failed to pay off credit account")
        return jsonify({"error": "Internal server error"}), 500


@credit_accounts_bp.post("/<int:account_id>/sync-payoff")
def sync_payoff_route(account_id: int):
    """Replay payoff follow-ups (order status, reservations) for a PAID_OFF account."""
    try:
        return jsonify(reconciliation_service.sync_payoff_side_effects(account_id)), 200
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        current_app.logger.exception("Failed to sync payoff side effects")
        return jsonify({"error": "Internal server error"}), 500
