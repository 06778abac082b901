# Overview: Service-layer operations for credit payments; encapsulates business logic and database work.

"""
Payment Reconciliation Engine

WHY: Every payment against a credit account, whatever screen it comes from,
goes through apply_payment(). There is exactly one place where money moves
paid/remaining, so the balance invariant never needs an after-the-fact repair.

DESIGN PRINCIPLES:
- Validation (amount, method, overpayment) happens before any write.
- The payment row and the balance update commit together, under the
  per-account mutex and row lock.
- Follow-ups (order completion, reservations sold, customer spend) run
  AFTER the payment commit, each in its own transaction. A failure there is
  logged and returned as a warning; it never un-commits the payment, because
  the money has already changed hands.
- Payoff follow-ups are idempotent and can be replayed with
  sync_payoff_side_effects().
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import CreditAccount, CreditPayment, Customer, Order, Reservation
from ..errors import AccountStateError, AmountExceedsBalance, InvalidAmount
from ..validation import ValidationError
from crediario.time_utils import utcnow
from .concurrency import account_locks, lock_for_update, run_serialized, run_with_retry
from .credit_account_service import STATUS_PAID_OFF, get_account, set_balance
from .installments import advance_due_date, installments_covered


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "CASH"
METHOD_PIX = "PIX"
METHOD_CARD = "CARD"
METHOD_TRANSFER = "TRANSFER"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_PIX,
    METHOD_CARD,
    METHOD_TRANSFER,
]


ORDER_STATUS_COMPLETED = "COMPLETED"
ORDER_PAYMENT_STATUS_PAID = "PAID"

RESERVATION_STATUS_ACTIVE = "ACTIVE"
RESERVATION_STATUS_SOLD = "SOLD"


@dataclass
class PaymentResult:
    account: CreditAccount
    payment: CreditPayment
    will_be_paid_off: bool
    paid_off: bool
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "account": self.account.to_dict(),
            "payment": self.payment.to_dict(),
            "will_be_paid_off": self.will_be_paid_off,
            "paid_off": self.paid_off,
            "warnings": self.warnings,
        }


def _validate_amount(amount_cents) -> int:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise InvalidAmount("amount_cents must be an integer number of cents")
    if amount_cents <= 0:
        raise InvalidAmount("amount_cents must be > 0")
    return amount_cents


def _validate_method(payment_method) -> str:
    if not isinstance(payment_method, str) or payment_method.strip().upper() not in VALID_PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment_method: {payment_method}. Must be one of {VALID_PAYMENT_METHODS}")
    return payment_method.strip().upper()


def current_remaining_cents(account: CreditAccount) -> int:
    """Remaining balance recomputed from the totals, clamped at zero."""
    return max(0, account.total_amount_cents - account.paid_amount_cents)


# =============================================================================
# APPLY PAYMENT
# =============================================================================

def apply_payment(
    credit_account_id: int,
    amount_cents: int,
    payment_method: str,
    notes: str | None = None,
) -> PaymentResult:
    """
    Apply a payment to a credit account.

    Args:
        credit_account_id: Account being paid
        amount_cents: Positive integer cents, at most the remaining balance
        payment_method: CASH, PIX, CARD or TRANSFER
        notes: Free text kept on the payment row

    Returns:
        PaymentResult with the refreshed account, the payment row, the
        will_be_paid_off flag computed before commit, and any follow-up
        warnings.

    Raises:
        InvalidAmount: amount is not a positive integer
        ValidationError: unknown payment method
        AccountNotFound: no such account
        AmountExceedsBalance: amount > remaining (nothing is written)
    """
    amount_cents = _validate_amount(amount_cents)
    payment_method = _validate_method(payment_method)

    def _op():
        account = get_account(credit_account_id, lock=True)
        remaining = current_remaining_cents(account)
        if amount_cents > remaining:
            raise AmountExceedsBalance(amount_cents, remaining)

        will_be_paid_off = amount_cents == remaining
        now = utcnow()

        previous_count = (
            db.session.query(func.count(CreditPayment.id))
            .filter_by(credit_account_id=account.id)
            .scalar()
        ) or 0
        payment = CreditPayment(
            credit_account_id=account.id,
            amount_cents=amount_cents,
            payment_method=payment_method,
            installment_number=previous_count + 1,
            notes=notes,
            created_at=now,
        )
        db.session.add(payment)

        covered_before = installments_covered(
            account.total_amount_cents, account.installments, account.paid_amount_cents
        )
        paid_off = set_balance(
            account,
            total_cents=account.total_amount_cents,
            paid_cents=account.paid_amount_cents + amount_cents,
            now=now,
        )
        if not paid_off:
            newly_covered = installments_covered(
                account.total_amount_cents, account.installments, account.paid_amount_cents
            ) - covered_before
            if newly_covered > 0:
                account.next_payment_date = advance_due_date(
                    account.next_payment_date, account.payment_frequency, now, periods=newly_covered
                )

        db.session.commit()
        return account, payment, will_be_paid_off, paid_off

    account, payment, will_be_paid_off, paid_off = run_serialized(account_locks, credit_account_id, _op)

    current_app.logger.info(
        "Applied %s payment of %s cents to credit account %s, remaining %s",
        payment_method, amount_cents, account.account_number, account.remaining_amount_cents,
    )

    warnings = []
    _run_follow_up(
        warnings,
        "customer spend",
        lambda: _credit_customer_spend(account.customer_id, amount_cents),
    )
    if paid_off:
        current_app.logger.info("Credit account %s paid off", account.account_number)
        warnings.extend(_run_payoff_follow_ups(account))

    return PaymentResult(
        account=account,
        payment=payment,
        will_be_paid_off=will_be_paid_off,
        paid_off=paid_off,
        warnings=warnings,
    )


def preview_payment(credit_account_id: int, amount_cents: int) -> dict:
    """
    What apply_payment() would do, without writing anything.

    Used by the confirmation screen ("this payment settles the account").
    """
    amount_cents = _validate_amount(amount_cents)
    account = get_account(credit_account_id)
    remaining = current_remaining_cents(account)
    if amount_cents > remaining:
        raise AmountExceedsBalance(amount_cents, remaining)

    return {
        "account_id": account.id,
        "account_number": account.account_number,
        "amount_cents": amount_cents,
        "current_paid_cents": account.paid_amount_cents,
        "current_remaining_cents": remaining,
        "new_paid_cents": account.paid_amount_cents + amount_cents,
        "new_remaining_cents": remaining - amount_cents,
        "will_be_paid_off": amount_cents == remaining,
    }


def pay_off(credit_account_id: int, payment_method: str, notes: str | None = None) -> PaymentResult:
    """Pay exactly the remaining balance."""
    account = get_account(credit_account_id)
    remaining = current_remaining_cents(account)
    if remaining == 0:
        raise AccountStateError(f"Credit account {account.account_number} has nothing left to pay")
    return apply_payment(credit_account_id, remaining, payment_method, notes=notes)


def list_payments(credit_account_id: int) -> list[CreditPayment]:
    get_account(credit_account_id)
    return (
        db.session.query(CreditPayment)
        .filter_by(credit_account_id=credit_account_id)
        .order_by(CreditPayment.id)
        .all()
    )


# =============================================================================
# FOLLOW-UPS (each its own transaction)
# =============================================================================

def _run_follow_up(warnings: list[str], name: str, step) -> None:
    try:
        run_with_retry(step)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.warning("Payment follow-up '%s' failed: %s", name, exc, exc_info=True)
        warnings.append(f"{name} not updated: {exc}")


def _credit_customer_spend(customer_id: int, amount_cents: int) -> None:
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if customer is None:
        raise LookupError(f"Customer {customer_id} not found")
    customer.total_spent_cents = (customer.total_spent_cents or 0) + amount_cents
    db.session.commit()


def _complete_order(account_id: int) -> bool:
    """Mark the order the account was opened for as COMPLETED/PAID. Returns True if changed."""
    account = db.session.get(CreditAccount, account_id)
    if not account.order_reference:
        return False

    order = lock_for_update(
        db.session.query(Order).filter_by(order_number=account.order_reference)
    ).first()
    if order is None:
        raise LookupError(f"Order {account.order_reference} not found")
    if order.status == ORDER_STATUS_COMPLETED and order.payment_status == ORDER_PAYMENT_STATUS_PAID:
        return False

    order.status = ORDER_STATUS_COMPLETED
    order.payment_status = ORDER_PAYMENT_STATUS_PAID
    db.session.commit()
    current_app.logger.info("Order %s completed by payoff of account %s", order.order_number, account.account_number)
    return True


def _mark_reservations_sold(account_id: int) -> int:
    """ACTIVE reservations carried on the account become SOLD. Stock is not touched."""
    now = utcnow()
    reservations = (
        lock_for_update(
            db.session.query(Reservation).filter_by(
                credit_account_id=account_id, status=RESERVATION_STATUS_ACTIVE
            )
        )
        .order_by(Reservation.id)
        .all()
    )
    for reservation in reservations:
        reservation.status = RESERVATION_STATUS_SOLD
        reservation.completed_at = now
    db.session.commit()

    if reservations:
        current_app.logger.info(
            "Marked %s reservation(s) sold on payoff of account %s", len(reservations), account_id
        )
    return len(reservations)


def _run_payoff_follow_ups(account: CreditAccount) -> list[str]:
    warnings = []
    account_id = account.id
    _run_follow_up(warnings, "order status", lambda: _complete_order(account_id))
    _run_follow_up(warnings, "reservations", lambda: _mark_reservations_sold(account_id))
    return warnings


def sync_payoff_side_effects(credit_account_id: int) -> dict:
    """
    Replay the payoff follow-ups for a PAID_OFF account.

    Idempotent: an order already COMPLETED/PAID and reservations already SOLD
    are left alone. Customer spend is not replayed (it is per payment).

    Raises:
        AccountStateError: the account is not paid off
    """
    account = get_account(credit_account_id)
    if account.status != STATUS_PAID_OFF:
        raise AccountStateError(f"Credit account {account.account_number} is not paid off")

    result = {"account_id": account.id, "order_completed": False, "reservations_sold": 0, "warnings": []}

    def _order():
        result["order_completed"] = _complete_order(credit_account_id)

    def _reservations():
        result["reservations_sold"] = _mark_reservations_sold(credit_account_id)

    with account_locks.hold(credit_account_id):
        _run_follow_up(result["warnings"], "order status", _order)
        _run_follow_up(result["warnings"], "reservations", _reservations)
    return result


def sync_all_payoffs() -> list[dict]:
    """sync_payoff_side_effects() for every PAID_OFF account; returns those that changed."""
    account_ids = [
        row[0]
        for row in db.session.query(CreditAccount.id)
        .filter_by(status=STATUS_PAID_OFF)
        .order_by(CreditAccount.id)
        .all()
    ]
    changed = []
    for account_id in account_ids:
        result = sync_payoff_side_effects(account_id)
        if result["order_completed"] or result["reservations_sold"] or result["warnings"]:
            changed.append(result)
    return changed
