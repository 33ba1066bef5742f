from __future__ import annotations

from ..extensions import db
from pharmapos.time_utils import to_utc_z, utcnow

PAYMENT_CASH = "CASH"
PAYMENT_CARD = "CARD"
PAYMENT_MOMO = "MOMO"

PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_CARD, PAYMENT_MOMO)


class Sale(db.Model):
    """
    A completed till transaction.

    Written once, as the last step of a successful sale transaction, together
    with its lines, one SALE ledger entry and one stock movement per line.
    Never updated afterwards; receipts are rendered from it on demand.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_branch_created", "branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False)
    change_cents = db.Column(db.Integer, nullable=False)

    # Operator identity, denormalized so the record reads without a join
    sold_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    sold_by_name = db.Column(db.String(128), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
    )

    lines = db.relationship(
        "SaleLine",
        backref="sale",
        lazy=True,
        order_by="SaleLine.line_number",
    )

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "branch_id": self.branch_id,
            "subtotal_cents": self.subtotal_cents,
            "payment_method": self.payment_method,
            "amount_paid_cents": self.amount_paid_cents,
            "change_cents": self.change_cents,
            "sold_by": {"id": self.sold_by_user_id, "name": self.sold_by_name},
            "customer_id": self.customer_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """
    One priced draw from one batch.

    A requested basket line that FEFO spreads over two batches becomes two
    SaleLines. product_id and batch_id are plain references: discontinuing a
    product or retiring a batch never touches historical sales.
    """
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_number", name="uq_sale_lines_sale_line_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product")
    batch = db.relationship("Batch")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
