# Overview: Stock deduction engine; fills a requested quantity from FEFO batches.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import ConcurrentModificationError, InsufficientStockError
from ..models import Batch, Product
from .batch_service import compare_and_set_quantity, get_sellable_quantity, sellable_batches_query


@dataclass(frozen=True)
class BatchDeduction:
    """One draw from one batch, with the compare-and-swap snapshot."""
    batch: Batch
    quantity_used: int
    unit_price_cents: int
    previous_quantity: int
    new_quantity: int

    @property
    def line_value_cents(self) -> int:
        return self.quantity_used * self.unit_price_cents


def _insufficient(product: Product, requested: int, available: int) -> InsufficientStockError:
    return InsufficientStockError(
        f"Insufficient stock for {product.name}",
        details={
            "product_id": product.id,
            "product_name": product.name,
            "requested": requested,
            "available": available,
        },
    )


def deduct_fefo(
    *,
    product: Product,
    branch_id: int,
    quantity: int,
    max_attempts: int | None = None,
) -> list[BatchDeduction]:
    """
    Take `quantity` units of a product from its sellable batches, soonest expiry first.

    Each batch gives min(batch.quantity, remaining) through a compare-and-swap
    update. A lost race re-reads the FEFO snapshot and continues with what is
    still needed, at most `max_attempts` times.

    Does NOT commit and does NOT undo on failure. Deductions made before an
    error stay in the caller's transaction; the caller rolls it back.

    Raises:
        InsufficientStockError: sellable total across batches < quantity
        ConcurrentModificationError: still losing races after max_attempts
    """
    if quantity <= 0:
        raise ValueError("quantity must be > 0")
    if max_attempts is None:
        max_attempts = current_app.config.get("DEDUCTION_MAX_ATTEMPTS", 3)

    available = get_sellable_quantity(product.id, branch_id)
    if available < quantity:
        raise _insufficient(product, quantity, available)

    deductions: list[BatchDeduction] = []
    remaining = quantity
    lost_races = 0

    while remaining > 0:
        lost_race = False
        for batch in sellable_batches_query(product.id, branch_id):
            if remaining == 0:
                break

            observed = batch.quantity
            used = min(observed, remaining)
            if not compare_and_set_quantity(batch, expected=observed, new=observed - used):
                lost_race = True
                break

            deductions.append(
                BatchDeduction(
                    batch=batch,
                    quantity_used=used,
                    unit_price_cents=batch.selling_price_cents,
                    previous_quantity=observed,
                    new_quantity=observed - used,
                )
            )
            remaining -= used

        if remaining == 0:
            break

        if not lost_race:
            # Every sellable batch drained and still short: someone else sold it
            raise _insufficient(product, quantity, quantity - remaining)

        lost_races += 1
        if lost_races >= max_attempts:
            raise ConcurrentModificationError(
                f"Insufficient stock for {product.name} (stock changed during sale)",
                details={
                    "product_id": product.id,
                    "product_name": product.name,
                    "requested": quantity,
                    "attempts": lost_races,
                },
            )

    return deductions
