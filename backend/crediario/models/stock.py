from __future__ import annotations

from ..extensions import db
from crediario.time_utils import to_utc_z


class StockMovement(db.Model):
    """
    Append-only stock history.

    One row per stock mutation, written in the same DB transaction as the
    mutation itself. previous_stock + quantity_delta == new_stock always.

    MOVEMENT TYPES:
    - OUT: units leave sellable stock (reservation)
    - IN: units come back (reservation cancelled/returned)
    - ADJUSTMENT: manual correction, either sign

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "stock_history"
    __table_args__ = (
        db.Index("ix_stock_history_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(64), nullable=False)
    reference = db.Column(db.String(128), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "reference": self.reference,
            "occurred_at": to_utc_z(self.occurred_at),
        }
