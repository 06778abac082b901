from __future__ import annotations

from ..extensions import db
from crediario.time_utils import to_utc_z


class Reservation(db.Model):
    """
    Stock hold for a customer, prior to any financial transaction.

    LIFECYCLE:
    - ACTIVE: stock already decremented; a liability against stock
    - SOLD: linked credit account paid off, or clerk completed a direct sale
    - CANCELLED / RETURNED: stock released back to the product

    Terminal states admit no transition, so the stock held by an ACTIVE
    reservation is released at most once.

    unit_price_cents is a snapshot taken at reservation time; later catalog
    price changes never alter the reservation's value.
    """
    __tablename__ = "reservations"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_reservations_quantity_positive"),
        db.Index("ix_reservations_status_payment_date", "status", "promised_payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    promised_payment_date = db.Column(db.DateTime(timezone=True), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)  # ACTIVE, SOLD, CANCELLED, RETURNED
    reservation_type = db.Column(db.String(16), nullable=False, default="SIMPLE", index=True)  # SIMPLE, CREDIT_ACCOUNT

    credit_account_id = db.Column(db.Integer, db.ForeignKey("credit_accounts.id"), nullable=True, index=True)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    customer = db.relationship("Customer")
    credit_account = db.relationship("CreditAccount", backref=db.backref("reservations", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "customer_name": self.customer_name,
            "customer_id": self.customer_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_cents": self.total_cents,
            "promised_payment_date": to_utc_z(self.promised_payment_date),
            "status": self.status,
            "reservation_type": self.reservation_type,
            "credit_account_id": self.credit_account_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "version_id": self.version_id,
        }
