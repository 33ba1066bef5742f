# Overview: Batch store and FEFO selector; the only code that writes Batch.quantity.

"""
Batch quantity invariants (authoritative)

- Batch.quantity is the single hot, shared, mutable value in the system.
- It is never written with read-modify-save. Every change is a
  compare-and-swap UPDATE keyed on the quantity observed at read time:

      UPDATE batches SET quantity = :new
       WHERE id = :id AND quantity = :observed

  A rowcount of 0 means another writer got there first; the caller re-reads.
- quantity never goes below zero (checked before the write and by a CHECK
  constraint on the table).
- Each successful change is paired with exactly one StockMovement carrying
  the observed/new snapshot, written in the same transaction.

FEFO (first-expiry-first-out)
- A batch is sellable iff quantity > 0 AND expiry_date > now.
- Sellable batches are always consumed in ascending expiry order, so the
  stock closest to expiring leaves the shelf first.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, update

from ..extensions import db
from ..errors import ConcurrentModificationError, InsufficientStockError
from ..models import Batch, Product, StockMovement, User
from pharmapos.time_utils import utcnow


def sellable_batches_query(product_id: int, branch_id: int, *, now: datetime | None = None):
    """
    Sellable batches of a product in a branch, soonest expiry first.

    Returns a Query, so the sequence is lazy and restartable: every
    iteration runs the SELECT again and yields a fresh snapshot
    (populate_existing overwrites rows already in the session).
    """
    now = now or utcnow()
    return (
        db.session.query(Batch)
        .filter(
            Batch.product_id == product_id,
            Batch.branch_id == branch_id,
            Batch.quantity > 0,
            Batch.expiry_date > now,
        )
        .order_by(Batch.expiry_date.asc(), Batch.id.asc())
        .populate_existing()
    )


def select_sellable_batches(product_id: int, branch_id: int) -> list[Batch]:
    """One FEFO snapshot, materialized."""
    return sellable_batches_query(product_id, branch_id).all()


def get_sellable_quantity(product_id: int, branch_id: int, *, now: datetime | None = None) -> int:
    now = now or utcnow()
    total = db.session.query(func.coalesce(func.sum(Batch.quantity), 0)).filter(
        Batch.product_id == product_id,
        Batch.branch_id == branch_id,
        Batch.quantity > 0,
        Batch.expiry_date > now,
    ).scalar()
    return int(total or 0)


def read_quantity(batch_id: int) -> int | None:
    """Current committed-or-own-transaction quantity, bypassing the identity map."""
    return db.session.query(Batch.quantity).filter(Batch.id == batch_id).scalar()


def compare_and_set_quantity(batch: Batch, *, expected: int, new: int) -> bool:
    """
    Atomically move a batch from `expected` to `new`.

    Returns False (and changes nothing) when the stored quantity is no
    longer `expected`.
    """
    if new < 0:
        raise ValueError("batch quantity cannot go negative")

    result = db.session.execute(
        update(Batch)
        .where(Batch.id == batch.id, Batch.quantity == expected)
        .values(quantity=new, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    # The UPDATE bypassed the ORM; drop the stale in-session values
    db.session.expire(batch, ["quantity", "updated_at"])
    return True


def record_stock_movement(
    *,
    batch: Batch,
    product: Product,
    movement_type: str,
    quantity_delta: int,
    previous_quantity: int,
    new_quantity: int,
    actor: User,
    reason: str | None = None,
    reference: str | None = None,
    sale_id: int | None = None,
) -> StockMovement:
    """
    Append the audit record for one batch quantity change.

    No commit: the movement belongs to the caller's transaction.
    """
    movement = StockMovement(
        branch_id=batch.branch_id,
        product_id=product.id,
        product_name=product.name,
        batch_id=batch.id,
        batch_number=batch.batch_number,
        movement_type=movement_type,
        quantity_delta=quantity_delta,
        previous_quantity=previous_quantity,
        new_quantity=new_quantity,
        cost_price_cents=batch.cost_price_cents,
        selling_price_cents=batch.selling_price_cents,
        reason=reason,
        reference=reference,
        sale_id=sale_id,
        performed_by=actor.name,
        performed_by_user_id=actor.id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def apply_quantity_change(
    batch: Batch,
    quantity_delta: int,
    *,
    product: Product,
    movement_type: str,
    actor: User,
    reason: str | None = None,
    reference: str | None = None,
) -> StockMovement:
    """
    Change one batch by a signed delta and record the movement.

    Raises InsufficientStockError if the batch would go negative and
    ConcurrentModificationError if the compare-and-swap loses.
    """
    observed = read_quantity(batch.id)
    if observed is None:
        raise ValueError(f"batch {batch.id} disappeared")

    new = observed + quantity_delta
    if new < 0:
        raise InsufficientStockError(
            f"Insufficient stock in batch {batch.batch_number} for {product.name}",
            details={
                "product_id": product.id,
                "product_name": product.name,
                "batch_id": batch.id,
                "batch_number": batch.batch_number,
                "available": observed,
                "requested": -quantity_delta,
            },
        )

    if not compare_and_set_quantity(batch, expected=observed, new=new):
        raise ConcurrentModificationError(
            f"Batch {batch.batch_number} was modified concurrently",
            details={"product_id": product.id, "batch_id": batch.id},
        )

    return record_stock_movement(
        batch=batch,
        product=product,
        movement_type=movement_type,
        quantity_delta=quantity_delta,
        previous_quantity=observed,
        new_quantity=new,
        actor=actor,
        reason=reason,
        reference=reference,
    )
