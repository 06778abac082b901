from __future__ import annotations

from ..extensions import db
from crediario.time_utils import to_utc_z


class CreditAccount(db.Model):
    """
    Installment credit account (crediário) owned by one customer.

    BALANCE INVARIANTS (enforced by credit_account_service.set_balance, the
    only writer of the three totals):
    - remaining_amount_cents == max(0, total_amount_cents - paid_amount_cents)
    - paid_amount_cents never decreases and never exceeds total_amount_cents
    - status == PAID_OFF  <=>  remaining_amount_cents == 0
    - closed_at is set exactly on the transition to PAID_OFF

    total_amount_cents always equals the sum of the account's item line totals.
    """
    __tablename__ = "credit_accounts"
    __table_args__ = (
        db.CheckConstraint("total_amount_cents >= 0", name="ck_credit_accounts_total_non_negative"),
        db.CheckConstraint("paid_amount_cents >= 0", name="ck_credit_accounts_paid_non_negative"),
        db.CheckConstraint("remaining_amount_cents >= 0", name="ck_credit_accounts_remaining_non_negative"),
        db.CheckConstraint("installments >= 1", name="ck_credit_accounts_installments_positive"),
        db.Index("ix_credit_accounts_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    # Human-readable number (e.g., "CR0007")
    account_number = db.Column(db.String(32), nullable=False, unique=True)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)  # ACTIVE, PAID_OFF, SUSPENDED

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    installments = db.Column(db.Integer, nullable=False, default=1)
    installment_value_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_frequency = db.Column(db.String(16), nullable=False, default="MONTHLY")  # WEEKLY, MONTHLY
    next_payment_date = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    # Order number this account was opened for (cash order converted to credit)
    order_reference = db.Column(db.String(64), nullable=True, index=True)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("credit_accounts", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "account_number": self.account_number,
            "status": self.status,
            "total_amount_cents": self.total_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "remaining_amount_cents": self.remaining_amount_cents,
            "installments": self.installments,
            "installment_value_cents": self.installment_value_cents,
            "payment_frequency": self.payment_frequency,
            "next_payment_date": to_utc_z(self.next_payment_date) if self.next_payment_date else None,
            "order_reference": self.order_reference,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "version_id": self.version_id,
        }


class CreditAccountItem(db.Model):
    """
    Line item purchased on credit.

    SOURCES:
    - MANUAL: entered directly when opening the account
    - RESERVATION: converted reservation (source_reference = reservation id)
    - ORDER: order total carried over (source_reference = order number)

    IMMUTABLE: items are only ever inserted.
    """
    __tablename__ = "credit_account_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_credit_items_quantity_positive"),
        db.CheckConstraint("line_total_cents >= 0", name="ck_credit_items_total_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    credit_account_id = db.Column(db.Integer, db.ForeignKey("credit_accounts.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    # Product name at the time of sale
    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    source = db.Column(db.String(16), nullable=False, default="MANUAL")
    source_reference = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    credit_account = db.relationship("CreditAccount", backref=db.backref("items", lazy=True, order_by="CreditAccountItem.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_account_id": self.credit_account_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "source": self.source,
            "source_reference": self.source_reference,
            "created_at": to_utc_z(self.created_at),
        }


class CreditPayment(db.Model):
    """
    Money applied to a credit account.

    The existence of a payment row is the only thing that moves
    paid_amount_cents. IMMUTABLE: never edited or deleted.
    """
    __tablename__ = "credit_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_credit_payments_amount_positive"),
        db.Index("ix_credit_payments_account_created", "credit_account_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    credit_account_id = db.Column(db.Integer, db.ForeignKey("credit_accounts.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)  # CASH, PIX, CARD, TRANSFER

    # 1-based position of this payment on the account
    installment_number = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    credit_account = db.relationship("CreditAccount", backref=db.backref("payments", lazy=True, order_by="CreditPayment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_account_id": self.credit_account_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "installment_number": self.installment_number,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
