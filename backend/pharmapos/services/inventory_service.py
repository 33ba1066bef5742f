# Overview: Service-layer operations for inventory; stock-in, adjustments, lookups and expiry alerts.

from __future__ import annotations

from datetime import date, datetime, timedelta

from flask import current_app
from sqlalchemy import case, func

from ..extensions import db
from ..errors import (
    ExpiredBatchRejectedError,
    NoBatchFoundError,
    ProductNotFoundError,
    ValidationError,
)
from ..models import Batch, Product, StockMovement, User
from ..models.inventory import MOVEMENT_IN, MOVEMENT_TYPES, PRODUCT_ACTIVE, PRODUCT_DISCONTINUED
from pharmapos.time_utils import to_utc_z, utcnow, utctoday
from .batch_service import apply_quantity_change, record_stock_movement, select_sellable_batches
from .concurrency import begin_write_transaction, run_with_retry

"""
Inventory Invariants (authoritative)

- Stock lives on batches; a product's on-hand is the sum of its batches in a branch.
- Every quantity change writes exactly one StockMovement in the same transaction.
- An expired batch (expiry <= now) is never received.
- Adjustments touch the soonest-expiring sellable batch only, and never take
  it below zero.
- Products are discontinued, never deleted.
"""

EXPIRED = "expired"
CRITICAL = "critical"
WARNING = "warning"
SAFE = "safe"

EXPIRY_CLASSES = (EXPIRED, CRITICAL, WARNING, SAFE)


def classify_expiry(
    expiry: datetime | date,
    today: date,
    *,
    critical_days: int = 30,
    warning_days: int = 90,
) -> str:
    """
    Bucket an expiry date relative to today.

    expired: expiry <= today; critical: within critical_days;
    warning: within warning_days; otherwise safe.
    """
    expiry_day = expiry.date() if isinstance(expiry, datetime) else expiry
    days = (expiry_day - today).days
    if days <= 0:
        return EXPIRED
    if days <= critical_days:
        return CRITICAL
    if days <= warning_days:
        return WARNING
    return SAFE


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFoundError("Product not found", details={"product_id": product_id})
    return product


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def scan_barcode(barcode: str, branch_id: int) -> dict:
    """Till lookup: the product and its sellable batches in FEFO order."""
    product = db.session.query(Product).filter_by(barcode=barcode).first()
    if product is None:
        return {"exists": False, "product": None, "batches": []}

    batches = select_sellable_batches(product.id, branch_id) if product.is_active else []
    return {
        "exists": True,
        "product": product.to_dict(),
        "batches": [b.to_dict() for b in batches],
        "sellable_quantity": sum(b.quantity for b in batches),
    }


def get_inventory_summary(branch_id: int) -> list[dict]:
    """Per-product stock position in a branch."""
    now = utcnow()
    sellable = (Batch.quantity > 0) & (Batch.expiry_date > now)

    rows = (
        db.session.query(
            Product,
            func.coalesce(func.sum(Batch.quantity), 0).label("total_quantity"),
            func.coalesce(func.sum(case((sellable, Batch.quantity), else_=0)), 0).label("sellable_quantity"),
            func.min(case((sellable, Batch.expiry_date), else_=None)).label("next_expiry"),
            func.count(Batch.id).label("batch_count"),
        )
        .join(Batch, Batch.product_id == Product.id)
        .filter(Batch.branch_id == branch_id)
        .group_by(Product.id)
        .order_by(Product.name.asc())
        .all()
    )

    summary = []
    for product, total_qty, sellable_qty, next_expiry, batch_count in rows:
        data = product.to_dict()
        data.update(
            total_quantity=int(total_qty),
            sellable_quantity=int(sellable_qty),
            next_expiry=to_utc_z(next_expiry) if isinstance(next_expiry, datetime) else next_expiry,
            batch_count=int(batch_count),
            low_stock=int(sellable_qty) < product.reorder_level,
        )
        summary.append(data)
    return summary


def get_inventory_stats(branch_id: int) -> dict:
    now = utcnow()
    warning_days = current_app.config.get("EXPIRY_WARNING_DAYS", 90)
    horizon = now + timedelta(days=warning_days)

    units, value = (
        db.session.query(
            func.coalesce(func.sum(Batch.quantity), 0),
            func.coalesce(func.sum(Batch.quantity * Batch.cost_price_cents), 0),
        )
        .filter(Batch.branch_id == branch_id)
        .one()
    )

    expiring_soon = (
        db.session.query(func.count(Batch.id))
        .filter(
            Batch.branch_id == branch_id,
            Batch.quantity > 0,
            Batch.expiry_date > now,
            Batch.expiry_date <= horizon,
        )
        .scalar()
    )
    expired = (
        db.session.query(func.count(Batch.id))
        .filter(Batch.branch_id == branch_id, Batch.quantity > 0, Batch.expiry_date <= now)
        .scalar()
    )

    summary = get_inventory_summary(branch_id)
    return {
        "product_count": len(summary),
        "total_units": int(units),
        "stock_value_cents": int(value),
        "low_stock_count": sum(1 for row in summary if row["low_stock"] and row["status"] == PRODUCT_ACTIVE),
        "expiring_soon_count": int(expiring_soon or 0),
        "expired_count": int(expired or 0),
    }


def get_categories_with_counts(branch_id: int) -> list[dict]:
    rows = (
        db.session.query(
            Product.category,
            func.count(func.distinct(Product.id)),
            func.coalesce(func.sum(Batch.quantity), 0),
        )
        .join(Batch, Batch.product_id == Product.id)
        .filter(Batch.branch_id == branch_id)
        .group_by(Product.category)
        .order_by(Product.category.asc())
        .all()
    )
    return [
        {"category": category, "product_count": int(count), "total_quantity": int(qty)}
        for category, count, qty in rows
    ]


def get_expiry_alerts(branch_id: int, *, today: date | None = None) -> dict:
    """
    Classify every batch with stock on hand, soonest expiry first.

    Expired batches with stock are included so they can be pulled from
    the shelf.
    """
    today = today or utctoday()
    critical_days = current_app.config.get("EXPIRY_CRITICAL_DAYS", 30)
    warning_days = current_app.config.get("EXPIRY_WARNING_DAYS", 90)

    rows = (
        db.session.query(Batch, Product)
        .join(Product, Product.id == Batch.product_id)
        .filter(Batch.branch_id == branch_id, Batch.quantity > 0)
        .order_by(Batch.expiry_date.asc(), Batch.id.asc())
        .all()
    )

    counts = {cls: 0 for cls in EXPIRY_CLASSES}
    alerts = []
    for batch, product in rows:
        status = classify_expiry(
            batch.expiry_date, today, critical_days=critical_days, warning_days=warning_days
        )
        counts[status] += 1
        data = batch.to_dict()
        data.update(
            product_name=product.name,
            barcode=product.barcode,
            days_to_expiry=(batch.expiry_date.date() - today).days,
            status=status,
        )
        alerts.append(data)

    return {"summary": counts, "alerts": alerts}


def get_stock_history(
    branch_id: int,
    *,
    product_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    movement_type: str | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    if movement_type and movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(MOVEMENT_TYPES)}")

    query = db.session.query(StockMovement).filter(StockMovement.branch_id == branch_id)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if start is not None:
        query = query.filter(StockMovement.created_at >= start)
    if end is not None:
        query = query.filter(StockMovement.created_at <= end)
    if movement_type:
        query = query.filter(StockMovement.movement_type == movement_type)

    limit = min(max(limit, 1), 1000)
    return query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit).all()


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

def stock_in(
    *,
    branch_id: int,
    actor: User,
    barcode: str,
    name: str,
    category: str,
    batch_number: str,
    expiry_date: datetime,
    quantity: int,
    cost_price_cents: int,
    selling_price_cents: int,
    manufacturer: str | None = None,
    supplier: str | None = None,
    reorder_level: int | None = None,
) -> dict:
    """
    Receive a batch into a branch.

    Creates the product on first sight of a barcode (an existing product
    keeps its catalog fields; a discontinued one is reactivated). Writes the
    batch and its `in` movement in one transaction.

    Raises ExpiredBatchRejectedError before touching the database when
    expiry_date <= now.
    """
    if expiry_date <= utcnow():
        raise ExpiredBatchRejectedError(
            "Expired batch not allowed",
            details={"batch_number": batch_number, "expiry_date": to_utc_z(expiry_date)},
        )

    def _op():
        begin_write_transaction()
        try:
            product = db.session.query(Product).filter_by(barcode=barcode).first()
            created = False
            if product is None:
                product = Product(
                    barcode=barcode,
                    name=name,
                    category=category,
                    manufacturer=manufacturer,
                    reorder_level=reorder_level if reorder_level is not None else 10,
                    status=PRODUCT_ACTIVE,
                    created_by_user_id=actor.id,
                )
                db.session.add(product)
                db.session.flush()
                created = True
            elif product.status == PRODUCT_DISCONTINUED:
                product.status = PRODUCT_ACTIVE

            batch = Batch(
                product_id=product.id,
                branch_id=branch_id,
                batch_number=batch_number,
                expiry_date=expiry_date,
                quantity=quantity,
                initial_quantity=quantity,
                cost_price_cents=cost_price_cents,
                selling_price_cents=selling_price_cents,
                supplier=supplier,
            )
            db.session.add(batch)
            db.session.flush()

            movement = record_stock_movement(
                batch=batch,
                product=product,
                movement_type=MOVEMENT_IN,
                quantity_delta=quantity,
                previous_quantity=0,
                new_quantity=quantity,
                actor=actor,
                reason="Stock-in",
                reference=batch_number,
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return {"product": product, "batch": batch, "movement": movement, "product_created": created}

    result = run_with_retry(_op)
    current_app.logger.info(
        "Stock-in: %s x%s batch %s (branch=%s, user=%s)",
        barcode, quantity, batch_number, branch_id, actor.id,
    )
    return result


def adjust_stock(
    *,
    product_id: int,
    branch_id: int,
    adjustment_type: str,
    quantity: int,
    reason: str,
    actor: User,
) -> StockMovement:
    """
    Manual stock correction against the soonest-expiring sellable batch.

    `in` adds quantity; `out` and `adjustment` remove it and fail with
    InsufficientStockError rather than go below zero. No sellable batch
    means NoBatchFoundError. One movement is recorded.
    """
    def _op():
        begin_write_transaction()
        try:
            product = get_product(product_id)
            batches = select_sellable_batches(product.id, branch_id)
            if not batches:
                raise NoBatchFoundError(
                    f"No batch found for {product.name}",
                    details={"product_id": product.id, "branch_id": branch_id},
                )
            delta = quantity if adjustment_type == MOVEMENT_IN else -quantity
            movement = apply_quantity_change(
                batches[0],
                delta,
                product=product,
                movement_type=adjustment_type,
                actor=actor,
                reason=reason,
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return movement

    movement = run_with_retry(_op)
    current_app.logger.info(
        "Stock adjustment %s %+d on product %s (branch=%s, user=%s): %s",
        adjustment_type, movement.quantity_delta, product_id, branch_id, actor.id, reason,
    )
    return movement


def update_product(product_id: int, patch: dict) -> Product:
    product = get_product(product_id)
    if "barcode" in patch and patch["barcode"] != product.barcode:
        clash = db.session.query(Product.id).filter(
            Product.barcode == patch["barcode"], Product.id != product.id
        ).first()
        if clash:
            raise ValidationError("Barcode already in use", details={"barcode": patch["barcode"]})

    for key, value in patch.items():
        setattr(product, key, value)
    db.session.commit()
    return product


def discontinue_product(product_id: int) -> Product:
    """Soft delete: history keeps pointing at the product."""
    product = get_product(product_id)
    if product.status == PRODUCT_DISCONTINUED:
        return product
    product.status = PRODUCT_DISCONTINUED
    db.session.commit()
    return product
