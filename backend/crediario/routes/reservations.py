# Overview: Flask API routes for reservation operations; parses input and returns JSON responses.

# backend/crediario/routes/reservations.py
"""
Reservation API Routes

DESIGN:
- POST creates the reservation and takes the stock in one transaction
- cancel/return put the stock back; sell completes a direct sale
- convert carries the reservation onto the customer's credit account

Time semantics:
- promised_payment_date / payment_date accept ISO-8601 with Z/offsets;
  the backend normalizes to UTC-naive.
"""
from flask import Blueprint, request, jsonify, current_app

from ..errors import LedgerError
from ..services import reservation_service
from ..validation import ValidationError, validate_reservation_payload


reservations_bp = Blueprint("reservations", __name__, url_prefix="/api/reservations")


@reservations_bp.post("")
def create_reservation_route():
    """
    Reserve stock for a customer.

    Request body:
    {
        "product_id": 1,
        "quantity": 2,
        "promised_payment_date": "2026-11-10",
        "customer_name": "Maria",  (optional when customer_id is given)
        "customer_id": 3,  (optional)
        "notes": "..."  (optional)
    }

    Returns:
        201: Reservation created
        400: Invalid input
        404: Unknown product/customer
        409: Insufficient stock
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_reservation_payload(payload)
    except ValidationError as e:
        return jsonify({"error": str(e), "code": "validation_error"}), 400

    try:
        reservation = reservation_service.create_reservation(
            patch["product_id"],
            patch.get("customer_name"),
            patch["quantity"],
            patch["promised_payment_date"],
            customer_id=patch.get("customer_id"),
            notes=patch.get("notes"),
        )
        return jsonify(reservation.to_dict()), 201
    except ValidationError as e:
        return jsonify({"error": str(e), "code": "validation_error"}), 400
    except LedgerError as e:
        return jsonify({"error": e.message, "code": e.code}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create reservation")
        return jsonify({"error": "Internal server error"}), 500


@reservations_bp.get("")
def list_reservations_route():
    """
    Query params:
    - status: ACTIVE, SOLD, CANCELLED, RETURNED
    - customer_id
    - overdue: true to list ACTIVE reservations past their promised date
    """
    try:
        reservations = reservation_service.list_reservations(
            status=request.args.get("status"),
            customer_id=request.args.get("customer_id", type=int),
            overdue_only=request.args.get("overdue", "false").lower() == "true",
        )
        return jsonify({"reservations": [r.to_dict() for r in reservations]}), 200
    except ValidationError as e:
        return jsonify({"error": str(e), "code": "validation_error"}), 400
    except Exception:
        current_app.logger.exception("Failed to list reservations")
        return jsonify({"error": "Internal server error"}), 500


@reservations_bp.get("/<int:reservation_id>")
def get_reservation_route(reservation_id: int):
    try:
        reservation = reservation_service.get_reservation(reservation_id)
        return jsonify(reservation.to_dict()), 200
    except LedgerError as e:
        return jsonify({"error": e.message, "code": e.code}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get reservation")
        return jsonify({"error": "Internal server error"}), 500


@reservations_bp.post("/<int:reservation_id>/convert")
def convert_reservation_route(reservation_id: int):
    """
    Convert an ACTIVE reservation into installment credit.

    Request body:
    {
        "customer_id": 3,
        "installments": 3,  (optional, used when a new account is opened)
        "payment_frequency": "MONTHLY",  (optional)
        "payment_date": "2026-11-10"  (optional first due date)
    }

    Returns:
        201: New credit account opened
        200: Added to the customer's existing ACTIVE account
    """
    data = request.get_json(silent=True) or {}

    try:
        reservation, account, created = reservation_service.convert_to_credit_account(
            reservation_id,
            data.get("customer_id"),
            payment_date=data.get("payment_date"),
            installments=data.get("installments", 1),
            payment_frequency=(data.get("payment_frequency") or "").upper() or None,
        )
        return jsonify({
            "reservation": reservation.to_dict(),
            "account": account.to_dict(),
            "created": created,
        }), 201 if created else 200
    except ValueError as e:
        return jsonify({"error": str(e), "code": "validation_error"}), 400
    except LedgerError as e:
        return jsonify({"error": e.message, "code": e.code}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to convert reservation")
        return jsonify({"error": "Internal server error"}), 500


def _transition(reservation_id: int, operation, label: str):
    try:
        reservation = operation(reservation_id)
        return jsonify(reservation.to_dict()), 200
    except LedgerError as e:
        return jsonify({"error": e.message, "code": e.code}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to %s reservation", label)
        return jsonify({"error": "Internal server error"}), 500


@reservations_bp.post("/<int:reservation_id>/cancel")
def cancel_reservation_route(reservation_id: int):
    """Cancel an ACTIVE reservation; stock is released."""
    return _transition(reservation_id, reservation_service.cancel_reservation, "cancel")


@reservations_bp.post("/<int:reservation_id>/return")
def return_reservation_route(reservation_id: int):
    """Customer returned the goods; stock is released."""
    return _transition(reservation_id, reservation_service.return_reservation, "return")


@reservations_bp.post("/<int:reservation_id>/sell")
def sell_reservation_route(reservation_id: int):
    """Complete an unconverted reservation as a direct sale."""
    return _transition(reservation_id, reservation_service.mark_reservation_sold, "sell")
