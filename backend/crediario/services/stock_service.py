# Overview: Service-layer operations for the stock ledger; encapsulates business logic and database work.

# backend/crediario/services/stock_service.py

from flask import current_app

from ..extensions import db
from ..models import Product, StockMovement
from ..errors import InsufficientStock, InvalidQuantity, ProductNotFound, ReleaseExceedsReserved
from crediario.time_utils import utcnow
from .concurrency import lock_for_update, product_locks, run_serialized
"""
Stock Ledger Invariants (authoritative)

Stock model:
- Product.stock_quantity is the authoritative count of sellable units.
- It is never negative (CHECK constraint + validation here).
- It is mutated ONLY through this module.

Serialization:
- Every public mutation runs under the per-product mutex and a row lock, so
  two reservations racing on the same product never interleave their
  read-modify-write cycles.

Audit:
- Every mutation appends exactly one StockMovement row in the same DB
  transaction: previous_stock + quantity_delta == new_stock.
- stock_history is append-only (no updates/deletes) and is never read back
  to make decisions; it exists for audit, debugging and tests.
"""


MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"

REASON_RESERVATION = "RESERVATION"
REASON_RESERVATION_CANCELLED = "RESERVATION_CANCELLED"
REASON_RESERVATION_RETURNED = "RESERVATION_RETURNED"
REASON_MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"


def _validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantity("quantity must be an integer")
    if quantity < 1:
        raise InvalidQuantity("quantity must be >= 1")
    return quantity


def get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ProductNotFound(f"Product {product_id} not found")
    return product


def _append_movement(
    *,
    product: Product,
    movement_type: str,
    quantity_delta: int,
    previous_stock: int,
    reason: str,
    reference: str | None,
) -> StockMovement:
    movement = StockMovement(
        product_id=product.id,
        movement_type=movement_type,
        quantity_delta=quantity_delta,
        previous_stock=previous_stock,
        new_stock=product.stock_quantity,
        reason=reason,
        reference=reference,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


# =============================================================================
# IN-TRANSACTION PRIMITIVES (no lock acquisition, no commit)
# =============================================================================

def reserve_stock_locked(
    product: Product,
    quantity: int,
    *,
    reason: str = REASON_RESERVATION,
    reference: str | None = None,
) -> int:
    """
    Decrement stock inside the caller's transaction.

    Caller must already hold the product mutex and row lock.
    """
    quantity = _validate_quantity(quantity)
    previous = product.stock_quantity
    if quantity > previous:
        raise InsufficientStock(product.id, quantity, previous)

    product.stock_quantity = previous - quantity
    _append_movement(
        product=product,
        movement_type=MOVEMENT_OUT,
        quantity_delta=-quantity,
        previous_stock=previous,
        reason=reason,
        reference=reference,
    )
    return product.stock_quantity


def release_stock_locked(
    product: Product,
    quantity: int,
    *,
    reason: str,
    reference: str | None = None,
    reserved_quantity: int | None = None,
) -> int:
    """
    Increment stock inside the caller's transaction.

    No upper bound against the catalog. When reserved_quantity is given the
    release is cross-checked so a double-release bug cannot inflate stock.
    """
    quantity = _validate_quantity(quantity)
    if reserved_quantity is not None and quantity > reserved_quantity:
        raise ReleaseExceedsReserved(
            f"Cannot release {quantity} units of product {product.id}: only {reserved_quantity} reserved"
        )

    previous = product.stock_quantity
    product.stock_quantity = previous + quantity
    _append_movement(
        product=product,
        movement_type=MOVEMENT_IN,
        quantity_delta=quantity,
        previous_stock=previous,
        reason=reason,
        reference=reference,
    )
    return product.stock_quantity


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================

def reserve_stock(
    product_id: int,
    quantity: int,
    *,
    reason: str = REASON_RESERVATION,
    reference: str | None = None,
) -> int:
    """
    Reserve units of a product.

    Raises:
        InvalidQuantity: quantity < 1
        ProductNotFound: unknown product
        InsufficientStock: quantity > current stock (stock unchanged)

    Returns:
        New stock level
    """
    _validate_quantity(quantity)

    def _op():
        product = get_product(product_id, lock=True)
        new_level = reserve_stock_locked(product, quantity, reason=reason, reference=reference)
        db.session.commit()
        return new_level

    new_level = run_serialized(product_locks, product_id, _op)
    current_app.logger.info("Reserved %s units of product %s (%s), stock now %s", quantity, product_id, reference, new_level)
    return new_level


def release_stock(
    product_id: int,
    quantity: int,
    *,
    reason: str,
    reference: str | None = None,
    reserved_quantity: int | None = None,
) -> int:
    """Return units to stock. See release_stock_locked for the cross-check."""
    _validate_quantity(quantity)

    def _op():
        product = get_product(product_id, lock=True)
        new_level = release_stock_locked(
            product,
            quantity,
            reason=reason,
            reference=reference,
            reserved_quantity=reserved_quantity,
        )
        db.session.commit()
        return new_level

    new_level = run_serialized(product_locks, product_id, _op)
    current_app.logger.info("Released %s units of product %s (%s), stock now %s", quantity, product_id, reference, new_level)
    return new_level


def adjust_stock(
    product_id: int,
    delta: int,
    *,
    reason: str = REASON_MANUAL_ADJUSTMENT,
    reference: str | None = None,
) -> int:
    """
    Manual stock correction (count mismatch, damage, new delivery).

    Raises:
        InvalidQuantity: delta is zero or not an integer
        InsufficientStock: result would be negative
    """
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise InvalidQuantity("delta must be an integer")
    if delta == 0:
        raise InvalidQuantity("delta must be non-zero")

    def _op():
        product = get_product(product_id, lock=True)
        previous = product.stock_quantity
        if previous + delta < 0:
            raise InsufficientStock(product.id, -delta, previous)

        product.stock_quantity = previous + delta
        _append_movement(
            product=product,
            movement_type=MOVEMENT_ADJUSTMENT,
            quantity_delta=delta,
            previous_stock=previous,
            reason=reason,
            reference=reference,
        )
        db.session.commit()
        return product.stock_quantity

    new_level = run_serialized(product_locks, product_id, _op)
    current_app.logger.info("Adjusted product %s stock by %+d (%s), stock now %s", product_id, delta, reason, new_level)
    return new_level


# =============================================================================
# QUERIES
# =============================================================================

def get_stock_level(product_id: int) -> int:
    return get_product(product_id).stock_quantity


def list_stock_movements(product_id: int, *, limit: int | None = None) -> list[StockMovement]:
    """Stock history for a product, newest first."""
    get_product(product_id)
    if limit is None:
        limit = current_app.config.get("STOCK_HISTORY_PAGE_SIZE", 200)

    return (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.id.desc())
        .limit(limit)
        .all()
    )
