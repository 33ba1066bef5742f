from __future__ import annotations

from ..extensions import db
from pharmapos.time_utils import to_utc_z, utcnow

PRODUCT_ACTIVE = "active"
PRODUCT_DISCONTINUED = "discontinued"

MOVEMENT_IN = "in"
MOVEMENT_OUT = "out"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_RETURN = "return"
MOVEMENT_SALE = "sale"

MOVEMENT_TYPES = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT, MOVEMENT_RETURN, MOVEMENT_SALE)


class Product(db.Model):
    """
    Catalog entry, shared by every branch.

    BARCODE is the lookup key at the till and at stock-in, unique across the
    whole catalog. Products are created on the first stock-in of a barcode
    and never hard-deleted: discontinuing sets status, so historical sale
    lines and stock movements keep resolving.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_category", "category"),
        db.Index("ix_products_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    barcode = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(120), nullable=False)
    manufacturer = db.Column(db.String(255), nullable=True)

    # Low-stock threshold on sellable units
    reorder_level = db.Column(db.Integer, nullable=False, default=10)

    status = db.Column(db.String(16), nullable=False, default=PRODUCT_ACTIVE)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_active(self) -> bool:
        return self.status == PRODUCT_ACTIVE

    def __repr__(self) -> str:
        return f"<Product id={self.id} barcode={self.barcode!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "barcode": self.barcode,
            "name": self.name,
            "category": self.category,
            "manufacturer": self.manufacturer,
            "reorder_level": self.reorder_level,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Batch(db.Model):
    """
    A lot of one product received into one branch.

    INVARIANTS:
    - quantity >= 0 (also enforced by a CHECK constraint)
    - sellable iff quantity > 0 AND expiry_date > now
    - quantity changes only through compare-and-swap updates in
      batch_service, each paired with exactly one StockMovement

    A batch at quantity 0 is retired, never deleted, so the audit trail and
    sale lines that point at it stay intact.
    """
    __tablename__ = "batches"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_batches_quantity_non_negative"),
        db.Index("ix_batches_branch_product_expiry", "branch_id", "product_id", "expiry_date"),
        db.Index("ix_batches_expiry", "expiry_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    batch_number = db.Column(db.String(64), nullable=False)
    expiry_date = db.Column(db.DateTime(timezone=True), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    # Quantity at stock-in, kept for valuation and audit
    initial_quantity = db.Column(db.Integer, nullable=False)

    cost_price_cents = db.Column(db.Integer, nullable=False)
    selling_price_cents = db.Column(db.Integer, nullable=False)

    supplier = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("batches", lazy=True))
    branch = db.relationship("Branch")

    def __repr__(self) -> str:
        return (
            f"<Batch id={self.id} product_id={self.product_id} branch_id={self.branch_id} "
            f"qty={self.quantity} expiry={self.expiry_date}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "batch_number": self.batch_number,
            "expiry_date": to_utc_z(self.expiry_date),
            "quantity": self.quantity,
            "initial_quantity": self.initial_quantity,
            "cost_price_cents": self.cost_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "supplier": self.supplier,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Immutable audit record of one quantity change to one batch.

    Exactly one row per quantity-changing operation. quantity_delta is signed
    (negative for sale/out/adjustment) and previous_quantity/new_quantity are
    the compare-and-swap snapshot, so previous + delta == new always holds.

    sale_id links sale movements back to the Sale they belong to.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        db.Index("ix_stock_movements_branch_created", "branch_id", "created_at"),
        db.Index("ix_stock_movements_type_created", "movement_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True, index=True)
    batch_number = db.Column(db.String(64), nullable=True)

    movement_type = db.Column(db.String(16), nullable=False)
    quantity_delta = db.Column(db.Integer, nullable=False)
    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)

    cost_price_cents = db.Column(db.Integer, nullable=True)
    selling_price_cents = db.Column(db.Integer, nullable=True)

    reason = db.Column(db.String(255), nullable=True)
    reference = db.Column(db.String(64), nullable=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    performed_by = db.Column(db.String(128), nullable=False)
    performed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
        index=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "batch_id": self.batch_id,
            "batch_number": self.batch_number,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "cost_price_cents": self.cost_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "reason": self.reason,
            "reference": self.reference,
            "sale_id": self.sale_id,
            "performed_by": self.performed_by,
            "performed_by_user_id": self.performed_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
