# Overview: Service-layer operations for reservations; encapsulates business logic and database work.

# backend/crediario/services/reservation_service.py

from flask import current_app

from ..extensions import db
from ..models import Customer, Reservation
from ..errors import (
    CustomerNotFound,
    InvalidQuantity,
    ReservationAlreadyConverted,
    ReservationLinkedToAccount,
    ReservationNotActive,
    ReservationNotFound,
)
from ..validation import ValidationError
from crediario.time_utils import utcnow, normalize_datetime
from .concurrency import account_locks, customer_locks, lock_for_update, product_locks, run_serialized
from .credit_account_service import (
    SOURCE_RESERVATION,
    add_line_items_locked,
    find_active_account,
    get_account,
    open_account_locked,
)
from .stock_service import (
    REASON_RESERVATION,
    REASON_RESERVATION_CANCELLED,
    REASON_RESERVATION_RETURNED,
    get_product,
    release_stock_locked,
    reserve_stock_locked,
)
"""
Reservation Lifecycle Invariants (authoritative)

State machine:
- ACTIVE -> SOLD | CANCELLED | RETURNED
- SOLD, CANCELLED and RETURNED are terminal; every transition out of ACTIVE
  checks the status under the product mutex, so a second cancel fails with
  ReservationNotActive instead of releasing stock twice.

Stock:
- Creating a reservation decrements stock in the SAME transaction that
  inserts the reservation.
- CANCELLED / RETURNED release exactly reservation.quantity, cross-checked
  against the reserved quantity.
- SOLD never touches stock (it already left at reservation time).

Credit accounts:
- Converting adds one RESERVATION line item (quantity x snapshot price) to
  the customer's ACTIVE account, or opens one. The reservation stays ACTIVE
  and becomes SOLD only when that account is paid off.
- A converted reservation cannot be cancelled or returned: its value is
  part of an account total that only ever grows.
"""


STATUS_ACTIVE = "ACTIVE"
STATUS_SOLD = "SOLD"
STATUS_CANCELLED = "CANCELLED"
STATUS_RETURNED = "RETURNED"

VALID_STATUSES = [STATUS_ACTIVE, STATUS_SOLD, STATUS_CANCELLED, STATUS_RETURNED]

TYPE_SIMPLE = "SIMPLE"
TYPE_CREDIT_ACCOUNT = "CREDIT_ACCOUNT"


def _reference(reservation_id: int) -> str:
    return f"reservation:{reservation_id}"


def get_reservation(reservation_id: int, *, lock: bool = False) -> Reservation:
    query = db.session.query(Reservation).filter_by(id=reservation_id)
    if lock:
        query = lock_for_update(query)
    reservation = query.first()
    if reservation is None:
        raise ReservationNotFound(f"Reservation {reservation_id} not found")
    return reservation


def list_reservations(
    *,
    status: str | None = None,
    overdue_only: bool = False,
    customer_id: int | None = None,
) -> list[Reservation]:
    """Reservations newest first. Overdue = ACTIVE with promised_payment_date in the past."""
    if status and status not in VALID_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Must be one of {VALID_STATUSES}")

    query = db.session.query(Reservation)
    if status:
        query = query.filter_by(status=status)
    if customer_id is not None:
        query = query.filter_by(customer_id=customer_id)
    if overdue_only:
        query = query.filter(
            Reservation.status == STATUS_ACTIVE,
            Reservation.promised_payment_date < utcnow(),
        )
    return query.order_by(Reservation.id.desc()).all()


# =============================================================================
# CREATE
# =============================================================================

def create_reservation(
    product_id: int,
    customer_name: str | None,
    quantity: int,
    promised_payment_date,
    *,
    customer_id: int | None = None,
    notes: str | None = None,
) -> Reservation:
    """
    Hold stock for a customer.

    The unit price is snapshotted from the product; later price changes never
    alter the reservation's value.

    Raises:
        InvalidQuantity: quantity < 1
        ProductNotFound / CustomerNotFound
        InsufficientStock: quantity > current stock (nothing is written)
        ValidationError: no customer name, bad promised_payment_date
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidQuantity("quantity must be an integer >= 1")

    try:
        promised = normalize_datetime(promised_payment_date)
    except ValueError:
        raise ValidationError("promised_payment_date must be an ISO-8601 datetime")
    if promised is None:
        raise ValidationError("promised_payment_date is required")

    name = (customer_name or "").strip()
    if customer_id is not None:
        customer = db.session.get(Customer, customer_id)
        if customer is None:
            raise CustomerNotFound(f"Customer {customer_id} not found")
        name = name or customer.name
    if not name:
        raise ValidationError("customer_name is required")

    def _op():
        product = get_product(product_id, lock=True)

        reservation = Reservation(
            product_id=product.id,
            customer_name=name,
            customer_id=customer_id,
            quantity=quantity,
            unit_price_cents=product.price_cents,
            promised_payment_date=promised,
            status=STATUS_ACTIVE,
            reservation_type=TYPE_SIMPLE,
            notes=notes,
            created_at=utcnow(),
        )
        db.session.add(reservation)
        db.session.flush()

        reserve_stock_locked(product, quantity, reason=REASON_RESERVATION, reference=_reference(reservation.id))
        db.session.commit()
        return reservation

    reservation = run_serialized(product_locks, product_id, _op)
    current_app.logger.info(
        "Reservation %s created: %s x product %s for %s",
        reservation.id, quantity, product_id, name,
    )
    return reservation


# =============================================================================
# TERMINAL TRANSITIONS
# =============================================================================

def _finish(reservation_id: int, new_status: str, *, release_reason: str | None) -> Reservation:
    """Move an ACTIVE, unconverted reservation to a terminal status."""
    product_id = get_reservation(reservation_id).product_id

    def _op():
        reservation = get_reservation(reservation_id, lock=True)
        if reservation.status != STATUS_ACTIVE:
            raise ReservationNotActive(f"Reservation {reservation_id} is {reservation.status}")
        if reservation.credit_account_id is not None:
            raise ReservationLinkedToAccount(
                f"Reservation {reservation_id} is on credit account {reservation.credit_account_id}"
            )

        if release_reason is not None:
            product = get_product(product_id, lock=True)
            release_stock_locked(
                product,
                reservation.quantity,
                reason=release_reason,
                reference=_reference(reservation.id),
                reserved_quantity=reservation.quantity,
            )

        reservation.status = new_status
        reservation.completed_at = utcnow()
        db.session.commit()
        return reservation

    reservation = run_serialized(product_locks, product_id, _op)
    current_app.logger.info("Reservation %s %s", reservation_id, new_status.lower())
    return reservation


def cancel_reservation(reservation_id: int) -> Reservation:
    """Abort an ACTIVE reservation and put its units back in stock."""
    return _finish(reservation_id, STATUS_CANCELLED, release_reason=REASON_RESERVATION_CANCELLED)


def return_reservation(reservation_id: int) -> Reservation:
    """Customer brought the goods back; units return to stock."""
    return _finish(reservation_id, STATUS_RETURNED, release_reason=REASON_RESERVATION_RETURNED)


def mark_reservation_sold(reservation_id: int) -> Reservation:
    """
    Complete an unconverted reservation as a direct sale.

    Stock already left at reservation time, so nothing is released.
    Converted reservations only become SOLD through account payoff.
    """
    return _finish(reservation_id, STATUS_SOLD, release_reason=None)


# =============================================================================
# CONVERSION TO CREDIT
# =============================================================================

def convert_to_credit_account(
    reservation_id: int,
    customer_id: int,
    *,
    payment_date=None,
    installments: int = 1,
    payment_frequency: str | None = None,
):
    """
    Carry an ACTIVE reservation onto the customer's credit account.

    Reuses the customer's ACTIVE account (one new RESERVATION line item) or
    opens a new one with the given terms. payment_date becomes the first due
    date of a new account.

    Returns:
        (reservation, account, created)

    Raises:
        ReservationNotActive: reservation is not ACTIVE
        ReservationAlreadyConverted: reservation is already on an account
        CustomerNotFound, ValidationError (terms, customer mismatch)
    """
    if customer_id is None:
        raise ValidationError("customer_id is required")

    def _link(reservation: Reservation, account) -> None:
        reservation.credit_account_id = account.id
        reservation.customer_id = customer_id
        reservation.reservation_type = TYPE_CREDIT_ACCOUNT

    def _load_convertible() -> Reservation:
        reservation = get_reservation(reservation_id, lock=True)
        if reservation.status != STATUS_ACTIVE:
            raise ReservationNotActive(f"Reservation {reservation_id} is {reservation.status}")
        if reservation.credit_account_id is not None:
            raise ReservationAlreadyConverted(
                f"Reservation {reservation_id} is already on credit account {reservation.credit_account_id}"
            )
        if reservation.customer_id is not None and reservation.customer_id != customer_id:
            raise ValidationError(
                f"Reservation {reservation_id} belongs to customer {reservation.customer_id}"
            )
        return reservation

    def _op():
        reservation = _load_convertible()
        item = {
            "product_id": reservation.product_id,
            "product_name": reservation.product.name,
            "quantity": reservation.quantity,
            "unit_price_cents": reservation.unit_price_cents,
            "source_reference": _reference(reservation.id),
        }

        existing = find_active_account(customer_id)
        if existing is not None:
            with account_locks.hold(existing.id):
                account = get_account(existing.id, lock=True)
                add_line_items_locked(account, [item], item_source=SOURCE_RESERVATION)
                _link(reservation, account)
                db.session.commit()
            return reservation, account, False

        account = open_account_locked(
            customer_id=customer_id,
            line_items=[item],
            installments=installments,
            payment_frequency=payment_frequency,
            next_payment_date=payment_date,
            notes=f"Opened from reservation {reservation.id}",
            item_source=SOURCE_RESERVATION,
        )
        # open_account_locked may have rolled back a lost sequence race
        reservation = _load_convertible()
        _link(reservation, account)
        db.session.commit()
        return reservation, account, True

    reservation, account, created = run_serialized(customer_locks, customer_id, _op)
    current_app.logger.info(
        "Reservation %s converted onto credit account %s%s",
        reservation_id, account.account_number, " (new)" if created else "",
    )
    return reservation, account, created
