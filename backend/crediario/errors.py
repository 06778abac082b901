# Overview: Domain error taxonomy for the stock and credit ledgers.

"""
Ledger errors.

Every business-rule rejection is a LedgerError subclass carrying a stable
machine code and the HTTP status the API answers with. Validation errors are
raised before any write, so a caller that catches one can assume no state
changed.

IntegrityRepairTriggered is a warning category, not an exception: it is
emitted through the warnings module when the integrity guard had to fix an
account.
"""


class LedgerError(Exception):
    """Base class for stock, reservation and credit account errors."""

    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


# =============================================================================
# STOCK
# =============================================================================

class InsufficientStock(LedgerError):
    """Not enough stock on hand."""

    code = "insufficient_stock"
    status_code = 409

    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InvalidQuantity(LedgerError):
    """Quantity must be a positive integer."""

    code = "invalid_quantity"


class ReleaseExceedsReserved(LedgerError):
    """Release would credit more units than were reserved."""

    code = "release_exceeds_reserved"
    status_code = 409


class ProductNotFound(LedgerError):
    """Product not found."""

    code = "product_not_found"
    status_code = 404


class CustomerNotFound(LedgerError):
    """Customer not found."""

    code = "customer_not_found"
    status_code = 404


# =============================================================================
# RESERVATIONS
# =============================================================================

class ReservationNotFound(LedgerError):
    """Reservation not found."""

    code = "reservation_not_found"
    status_code = 404


class ReservationNotActive(LedgerError):
    """Reservation is no longer active."""

    code = "reservation_not_active"
    status_code = 409


class ReservationAlreadyConverted(LedgerError):
    """Reservation is already linked to a credit account."""

    code = "reservation_already_converted"
    status_code = 409


class ReservationLinkedToAccount(LedgerError):
    """Reservation is part of a credit account and cannot be released."""

    code = "reservation_linked_to_account"
    status_code = 409


# =============================================================================
# CREDIT ACCOUNTS & PAYMENTS
# =============================================================================

class EmptyLineItems(LedgerError):
    """A credit account needs at least one line item."""

    code = "empty_line_items"


class InvalidAmount(LedgerError):
    """Payment amount must be a positive number of cents."""

    code = "invalid_amount"


class AmountExceedsBalance(LedgerError):
    """Payment exceeds the remaining balance."""

    code = "amount_exceeds_balance"
    status_code = 409

    def __init__(self, amount_cents: int, remaining_cents: int):
        super().__init__(
            f"Payment of {amount_cents} cents exceeds remaining balance of {remaining_cents} cents"
        )
        self.amount_cents = amount_cents
        self.remaining_cents = remaining_cents


class AccountNotFound(LedgerError):
    """Credit account not found."""

    code = "account_not_found"
    status_code = 404


class AccountStateError(LedgerError):
    """Operation not allowed in the account's current status."""

    code = "account_state_error"
    status_code = 409


class IntegrityRepairTriggered(UserWarning):
    """A stored balance disagreed with its own totals and was repaired."""
