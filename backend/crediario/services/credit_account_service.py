# Overview: Service-layer operations for credit accounts; encapsulates business logic and database work.

"""
Credit Account Ledger

WHY: A customer buys on installment credit ("crediário") and pays the
account down over time. The account keeps three running totals that must
agree with each other after every mutation.

DESIGN PRINCIPLES:
- set_balance() is the single writer of total/paid/remaining/status/closed_at.
  Opening, adding items, applying payments and the integrity guard all go
  through it, so no caller patches a total by hand.
- Totals only grow by inserting line items; items are never edited.
- paid only grows by inserting payments (reconciliation_service).
- recompute_totals() is a repair path. When it has to change something an
  upstream invariant was violated, so it logs and emits
  IntegrityRepairTriggered.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import CreditAccount, CreditAccountItem, CreditPayment, Customer, Product
from ..errors import (
    AccountNotFound,
    AccountStateError,
    AmountExceedsBalance,
    CustomerNotFound,
    EmptyLineItems,
    IntegrityRepairTriggered,
    InvalidAmount,
    InvalidQuantity,
    ProductNotFound,
)
from ..validation import ValidationError
from crediario.time_utils import utcnow, normalize_datetime, to_utc_z
from .concurrency import account_locks, customer_locks, lock_for_update, run_serialized
from .document_service import next_account_number
from .installments import (
    VALID_FREQUENCIES,
    build_installment_schedule,
    default_first_due_date,
    installment_value_cents,
)


# =============================================================================
# ACCOUNT STATUS (CONSTANTS)
# =============================================================================

STATUS_ACTIVE = "ACTIVE"
STATUS_PAID_OFF = "PAID_OFF"
STATUS_SUSPENDED = "SUSPENDED"

OPEN_STATUSES = [STATUS_ACTIVE, STATUS_SUSPENDED]


# =============================================================================
# ITEM SOURCES (CONSTANTS)
# =============================================================================

SOURCE_MANUAL = "MANUAL"
SOURCE_RESERVATION = "RESERVATION"
SOURCE_ORDER = "ORDER"


@dataclass
class RepairReport:
    account: CreditAccount
    repaired: bool
    changes: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "account": self.account.to_dict(),
            "repaired": self.repaired,
            "changes": self.changes,
        }


# =============================================================================
# BALANCE (single authoritative writer)
# =============================================================================

def derive_state(total_cents: int, paid_cents: int, current_status: str | None) -> tuple[int, str]:
    """
    remaining and status implied by total and paid.

    remaining = max(0, total - paid); PAID_OFF iff remaining == 0. An open
    account keeps its status (ACTIVE or SUSPENDED); a PAID_OFF row that still
    owes goes back to ACTIVE.
    """
    remaining = max(0, total_cents - paid_cents)
    if remaining == 0:
        return remaining, STATUS_PAID_OFF
    if current_status in (None, STATUS_PAID_OFF):
        return remaining, STATUS_ACTIVE
    return remaining, current_status


def _write_state(account: CreditAccount, now: datetime) -> bool:
    remaining, status = derive_state(account.total_amount_cents, account.paid_amount_cents, account.status)
    became_paid_off = status == STATUS_PAID_OFF and account.status != STATUS_PAID_OFF
    reopened = status != STATUS_PAID_OFF and account.status == STATUS_PAID_OFF

    account.remaining_amount_cents = remaining
    account.installment_value_cents = installment_value_cents(account.total_amount_cents, account.installments or 1)
    if status == STATUS_PAID_OFF:
        if became_paid_off or account.closed_at is None:
            account.closed_at = now
        account.next_payment_date = None
    else:
        account.closed_at = None
        if reopened and account.next_payment_date is None:
            account.next_payment_date = default_first_due_date(now, account.payment_frequency)
    account.status = status
    return became_paid_off


def _balance_drift(account: CreditAccount) -> dict:
    """Fields whose stored value disagrees with what total and paid imply."""
    expected_remaining, expected_status = derive_state(
        account.total_amount_cents, account.paid_amount_cents, account.status
    )
    drift = {}
    if account.remaining_amount_cents != expected_remaining:
        drift["remaining_amount_cents"] = [account.remaining_amount_cents, expected_remaining]
    if account.status != expected_status:
        drift["status"] = [account.status, expected_status]
    if (expected_status == STATUS_PAID_OFF) != (account.closed_at is not None):
        drift["closed_at"] = [
            to_utc_z(account.closed_at),
            "set" if expected_status == STATUS_PAID_OFF else None,
        ]
    return drift


def set_balance(
    account: CreditAccount,
    *,
    total_cents: int,
    paid_cents: int,
    now: datetime | None = None,
) -> bool:
    """
    Write the account's totals and derive remaining/status from them.

    Returns True when this call moved the account to PAID_OFF.

    Raises:
        AmountExceedsBalance: paid_cents would exceed total_cents
        AccountStateError: paid_cents would decrease
    """
    current_paid = account.paid_amount_cents or 0
    if paid_cents > total_cents:
        raise AmountExceedsBalance(paid_cents - current_paid, max(0, total_cents - current_paid))
    if paid_cents < current_paid:
        raise AccountStateError("paid amount cannot decrease")

    account.total_amount_cents = total_cents
    account.paid_amount_cents = paid_cents
    return _write_state(account, now or utcnow())


# =============================================================================
# LOOKUPS
# =============================================================================

def get_account(account_id: int, *, lock: bool = False) -> CreditAccount:
    query = db.session.query(CreditAccount).filter_by(id=account_id)
    if lock:
        query = lock_for_update(query)
    account = query.first()
    if account is None:
        raise AccountNotFound(f"Credit account {account_id} not found")
    return account


def get_account_by_number(account_number: str) -> CreditAccount:
    account = db.session.query(CreditAccount).filter_by(account_number=account_number).first()
    if account is None:
        raise AccountNotFound(f"Credit account {account_number} not found")
    return account


def _get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id) if customer_id is not None else None
    if customer is None:
        raise CustomerNotFound(f"Customer {customer_id} not found")
    return customer


def find_active_account(customer_id: int) -> CreditAccount | None:
    """The customer's most recent ACTIVE account, if any."""
    return (
        db.session.query(CreditAccount)
        .filter_by(customer_id=customer_id, status=STATUS_ACTIVE)
        .order_by(CreditAccount.id.desc())
        .first()
    )


def list_accounts(
    *,
    status: str | None = None,
    customer_id: int | None = None,
    overdue_only: bool = False,
) -> list[CreditAccount]:
    query = db.session.query(CreditAccount)
    if status:
        query = query.filter_by(status=status)
    if customer_id is not None:
        query = query.filter_by(customer_id=customer_id)
    if overdue_only:
        query = query.filter(
            CreditAccount.status == STATUS_ACTIVE,
            CreditAccount.next_payment_date.isnot(None),
            CreditAccount.next_payment_date < utcnow(),
        )
    return query.order_by(CreditAccount.id.desc()).all()


# =============================================================================
# LINE ITEMS
# =============================================================================

def _build_items(line_items, *, default_source: str = SOURCE_MANUAL) -> list[CreditAccountItem]:
    """
    Normalize line item input into unsaved CreditAccountItem rows.

    Each entry is a dict with quantity and either product_id (name/price are
    snapshotted from the catalog when omitted) or product_name +
    unit_price_cents.
    """
    if not line_items:
        raise EmptyLineItems()

    items = []
    for raw in line_items:
        if not isinstance(raw, dict):
            raise ValidationError("line item must be an object")

        quantity = raw.get("quantity", 1)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidQuantity("line item quantity must be an integer >= 1")

        product_id = raw.get("product_id")
        product_name = raw.get("product_name")
        unit_price_cents = raw.get("unit_price_cents")

        if product_id is not None:
            product = db.session.get(Product, product_id)
            if product is None:
                raise ProductNotFound(f"Product {product_id} not found")
            if product_name is None:
                product_name = product.name
            if unit_price_cents is None:
                unit_price_cents = product.price_cents

        if not product_name or not str(product_name).strip():
            raise ValidationError("line item product_name is required")
        if isinstance(unit_price_cents, bool) or not isinstance(unit_price_cents, int):
            raise InvalidAmount("line item unit_price_cents must be an integer")
        if unit_price_cents < 0:
            raise InvalidAmount("line item unit_price_cents must be >= 0")

        items.append(CreditAccountItem(
            product_id=product_id,
            product_name=str(product_name).strip(),
            quantity=quantity,
            unit_price_cents=unit_price_cents,
            line_total_cents=quantity * unit_price_cents,
            source=raw.get("source") or default_source,
            source_reference=raw.get("source_reference"),
            created_at=utcnow(),
        ))
    return items


def _validate_terms(installments, payment_frequency) -> tuple[int, str]:
    if payment_frequency is None:
        payment_frequency = current_app.config.get("DEFAULT_PAYMENT_FREQUENCY", "MONTHLY")
    if payment_frequency not in VALID_FREQUENCIES:
        raise ValidationError(f"Invalid payment frequency: {payment_frequency}. Must be one of {VALID_FREQUENCIES}")

    max_installments = current_app.config.get("MAX_INSTALLMENTS", 24)
    if isinstance(installments, bool) or not isinstance(installments, int) or installments < 1:
        raise ValidationError("installments must be an integer >= 1")
    if installments > max_installments:
        raise ValidationError(f"installments cannot exceed {max_installments}")
    return installments, payment_frequency


# =============================================================================
# ACCOUNT CREATION
# =============================================================================

def open_account_locked(
    *,
    customer_id: int,
    line_items,
    installments: int = 1,
    payment_frequency: str | None = None,
    next_payment_date=None,
    notes: str | None = None,
    order_reference: str | None = None,
    item_source: str = SOURCE_MANUAL,
) -> CreditAccount:
    """
    Open an account inside the caller's transaction (no commit).

    The account number is allocated first so the sequence write is the
    first write of the transaction.
    """
    installments, payment_frequency = _validate_terms(installments, payment_frequency)
    _get_customer(customer_id)
    items = _build_items(line_items, default_source=item_source)

    total = sum(item.line_total_cents for item in items)
    if total <= 0:
        raise InvalidAmount("account total must be positive")

    now = utcnow()
    first_due = normalize_datetime(next_payment_date) or default_first_due_date(now, payment_frequency)

    account_number = next_account_number()

    account = CreditAccount(
        customer_id=customer_id,
        account_number=account_number,
        status=STATUS_ACTIVE,
        installments=installments,
        payment_frequency=payment_frequency,
        next_payment_date=first_due,
        order_reference=order_reference,
        notes=notes,
        created_at=now,
    )
    set_balance(account, total_cents=total, paid_cents=0, now=now)
    db.session.add(account)
    db.session.flush()

    for item in items:
        item.credit_account_id = account.id
        db.session.add(item)
    db.session.flush()
    return account


def open_account(
    customer_id: int,
    line_items,
    *,
    installments: int = 1,
    payment_frequency: str | None = None,
    next_payment_date=None,
    notes: str | None = None,
    order_reference: str | None = None,
) -> CreditAccount:
    """
    Open a credit account for a customer.

    Args:
        customer_id: Account owner (required)
        line_items: [{"product_id", "quantity", "unit_price_cents", "product_name"}, ...]
        installments: Number of installments (>= 1)
        payment_frequency: WEEKLY or MONTHLY (config default)
        next_payment_date: First due date (default: one period from now)

    Raises:
        EmptyLineItems: no items given
        CustomerNotFound, ProductNotFound, InvalidQuantity, InvalidAmount
    """
    def _op():
        account = open_account_locked(
            customer_id=customer_id,
            line_items=line_items,
            installments=installments,
            payment_frequency=payment_frequency,
            next_payment_date=next_payment_date,
            notes=notes,
            order_reference=order_reference,
        )
        db.session.commit()
        return account

    account = run_serialized(customer_locks, customer_id, _op)
    current_app.logger.info(
        "Opened credit account %s for customer %s: total %s cents in %s installment(s)",
        account.account_number, customer_id, account.total_amount_cents, account.installments,
    )
    return account


def add_line_items_locked(account: CreditAccount, line_items, *, item_source: str = SOURCE_MANUAL) -> list[CreditAccountItem]:
    """
    Append items to an ACTIVE account inside the caller's transaction.

    The total (and remaining) grow by exactly the sum of the new items.
    """
    if account.status != STATUS_ACTIVE:
        raise AccountStateError(f"Cannot add items to a {account.status} account")

    items = _build_items(line_items, default_source=item_source)
    added = sum(item.line_total_cents for item in items)

    for item in items:
        item.credit_account_id = account.id
        db.session.add(item)

    set_balance(
        account,
        total_cents=account.total_amount_cents + added,
        paid_cents=account.paid_amount_cents,
    )
    db.session.flush()
    return items


def add_line_items(account_id: int, line_items) -> CreditAccount:
    """Add purchases to an existing ACTIVE account."""
    def _op():
        account = get_account(account_id, lock=True)
        add_line_items_locked(account, line_items)
        db.session.commit()
        return account

    account = run_serialized(account_locks, account_id, _op)
    current_app.logger.info(
        "Added items to credit account %s, total now %s cents",
        account.account_number, account.total_amount_cents,
    )
    return account


def find_or_create_for_order(
    customer_id: int,
    order_total_cents: int,
    order_reference: str,
    *,
    installments: int = 1,
    payment_frequency: str | None = None,
    next_payment_date=None,
) -> tuple[CreditAccount, bool]:
    """
    Convert an order into installment credit.

    Returns the customer's open account already carrying order_reference, or
    opens one seeded with the order total as a single ORDER line item.

    Returns:
        (account, created)

    Raises:
        AccountStateError: the order was already settled on a paid-off account
    """
    if isinstance(order_total_cents, bool) or not isinstance(order_total_cents, int) or order_total_cents <= 0:
        raise InvalidAmount("order_total_cents must be a positive integer")
    if not order_reference or not str(order_reference).strip():
        raise ValidationError("order_reference is required")
    order_reference = str(order_reference).strip()

    def _op():
        _get_customer(customer_id)
        existing = (
            db.session.query(CreditAccount)
            .filter_by(customer_id=customer_id, order_reference=order_reference)
            .order_by(CreditAccount.id.desc())
            .first()
        )
        if existing is not None:
            if existing.status == STATUS_PAID_OFF:
                raise AccountStateError(
                    f"Order {order_reference} was already settled on account {existing.account_number}"
                )
            return existing, False

        account = open_account_locked(
            customer_id=customer_id,
            line_items=[{
                "product_name": f"Order {order_reference}",
                "quantity": 1,
                "unit_price_cents": order_total_cents,
                "source_reference": order_reference,
            }],
            installments=installments,
            payment_frequency=payment_frequency,
            next_payment_date=next_payment_date,
            notes=f"Opened from order {order_reference}",
            order_reference=order_reference,
            item_source=SOURCE_ORDER,
        )
        db.session.commit()
        return account, True

    account, created = run_serialized(customer_locks, customer_id, _op)
    if created:
        current_app.logger.info(
            "Opened credit account %s from order %s (%s cents)",
            account.account_number, order_reference, order_total_cents,
        )
    return account, created


# =============================================================================
# STATUS CHANGES
# =============================================================================

def suspend_account(account_id: int, reason: str | None = None) -> CreditAccount:
    """Stop an ACTIVE account from taking new purchases."""
    def _op():
        account = get_account(account_id, lock=True)
        if account.status != STATUS_ACTIVE:
            raise AccountStateError(f"Cannot suspend a {account.status} account")
        account.status = STATUS_SUSPENDED
        if reason:
            account.notes = f"{account.notes}\n{reason}" if account.notes else reason
        db.session.commit()
        return account

    account = run_serialized(account_locks, account_id, _op)
    current_app.logger.info("Suspended credit account %s", account.account_number)
    return account


def reactivate_account(account_id: int) -> CreditAccount:
    def _op():
        account = get_account(account_id, lock=True)
        if account.status != STATUS_SUSPENDED:
            raise AccountStateError(f"Cannot reactivate a {account.status} account")
        account.status = STATUS_ACTIVE
        db.session.commit()
        return account

    account = run_serialized(account_locks, account_id, _op)
    current_app.logger.info("Reactivated credit account %s", account.account_number)
    return account


# =============================================================================
# INTEGRITY GUARD
# =============================================================================

def recompute_totals(account_id: int) -> RepairReport:
    """
    Repair remaining/status/closed_at from total and paid when they disagree.

    Not a normal-path operation: a repair means something wrote the account
    outside set_balance(). Idempotent; a second call finds nothing to fix.
    Payoff side effects are NOT fired from here; use
    reconciliation_service.sync_payoff_side_effects() for that.
    """
    def _op():
        account = get_account(account_id, lock=True)
        changes = _balance_drift(account)
        if not changes:
            db.session.rollback()
            return RepairReport(account=account, repaired=False)

        _write_state(account, utcnow())
        db.session.commit()
        return RepairReport(account=account, repaired=True, changes=changes)

    report = run_serialized(account_locks, account_id, _op)
    if report.repaired:
        message = (
            f"Credit account {report.account.account_number} failed its balance invariant "
            f"and was repaired: {report.changes}"
        )
        current_app.logger.warning(message)
        warnings.warn(message, IntegrityRepairTriggered, stacklevel=2)
    return report


def audit_accounts(*, fix: bool = False) -> list[dict]:
    """
    Check every account against its items and payments.

    Reports accounts whose remaining/status disagree with total/paid, whose
    total differs from the sum of items, or whose paid differs from the sum
    of payments. With fix=True the first class is repaired through
    recompute_totals(); the other two need a human.
    """
    item_sums = dict(
        db.session.query(CreditAccountItem.credit_account_id, func.sum(CreditAccountItem.line_total_cents))
        .group_by(CreditAccountItem.credit_account_id)
        .all()
    )
    payment_sums = dict(
        db.session.query(CreditPayment.credit_account_id, func.sum(CreditPayment.amount_cents))
        .group_by(CreditPayment.credit_account_id)
        .all()
    )

    findings = []
    for account in db.session.query(CreditAccount).order_by(CreditAccount.id).all():
        problems = []
        if _balance_drift(account):
            problems.append("balance")
        if int(item_sums.get(account.id) or 0) != account.total_amount_cents:
            problems.append("items")
        if int(payment_sums.get(account.id) or 0) != account.paid_amount_cents:
            problems.append("payments")

        if not problems:
            continue

        finding = {
            "account_id": account.id,
            "account_number": account.account_number,
            "problems": problems,
            "total_amount_cents": account.total_amount_cents,
            "items_total_cents": int(item_sums.get(account.id) or 0),
            "paid_amount_cents": account.paid_amount_cents,
            "payments_total_cents": int(payment_sums.get(account.id) or 0),
            "remaining_amount_cents": account.remaining_amount_cents,
            "repaired": False,
        }
        if fix and "balance" in problems:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", IntegrityRepairTriggered)
                finding["repaired"] = recompute_totals(account.id).repaired
        findings.append(finding)

    return findings


# =============================================================================
# REPORTING
# =============================================================================

def get_account_balance(account_id: int) -> dict:
    """
    Balance summary for an account.

    Returns:
        - account: stored account fields
        - schedule: installments with due dates (last absorbs the remainder)
        - installments_paid: installments fully covered by paid_amount
        - payments_count, items
        - is_overdue: ACTIVE with next_payment_date in the past
    """
    account = get_account(account_id)

    schedule = build_installment_schedule(
        account.total_amount_cents,
        account.installments,
        account.next_payment_date,
        account.payment_frequency,
        paid_cents=account.paid_amount_cents,
    )
    installments_paid = sum(1 for s in schedule if s.paid)

    payments_count = db.session.query(func.count(CreditPayment.id)).filter_by(credit_account_id=account.id).scalar() or 0

    return {
        "account": account.to_dict(),
        "total_amount_cents": account.total_amount_cents,
        "paid_amount_cents": account.paid_amount_cents,
        "remaining_amount_cents": account.remaining_amount_cents,
        "status": account.status,
        "installments_paid": installments_paid,
        "schedule": [s.to_dict() for s in schedule],
        "payments_count": int(payments_count),
        "items": [item.to_dict() for item in account.items],
        "is_overdue": bool(
            account.status == STATUS_ACTIVE
            and account.next_payment_date is not None
            and account.next_payment_date < utcnow()
        ),
    }
