"""
Sales Service - one till transaction, all or nothing

WHY: A sale touches four kinds of record (batch quantities, the sale and its
lines, one ledger entry, one stock movement per line). Any of them without
the others is a stock or money discrepancy, so they are written in a single
database transaction and rolled back together.

ORDER OF WORK (inside the transaction):
1. Take the write lock (BEGIN IMMEDIATE on SQLite).
2. Resolve every basket line to an active product, deduct FEFO.
3. Check payment against the subtotal.
4. Write Sale, SaleLines, SALE ledger entry, sale StockMovements.
5. Commit. Only then send sale_completed (customer loyalty).

Any failure before the commit rolls back every deduction made so far.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from ..extensions import db, sale_completed
from ..errors import (
    InsufficientPaymentError,
    NotFoundError,
    PersistenceFailureError,
    PharmacyError,
    ProductNotFoundError,
)
from ..models import Customer, Product, Sale, SaleLine, User
from ..models.inventory import MOVEMENT_SALE
from ..models.ledger import ENTRY_SALE
from .batch_service import record_stock_movement
from .concurrency import begin_write_transaction, run_with_retry
from .ledger_service import append_ledger_entry
from .stock_service import BatchDeduction, deduct_fefo


def _resolve_product(item: dict) -> Product:
    """Active product for a basket line, by id or barcode."""
    if item.get("product_id") is not None:
        product = db.session.get(Product, item["product_id"])
        ref = {"product_id": item["product_id"]}
        label = f"id {item['product_id']}"
    else:
        product = db.session.query(Product).filter_by(barcode=item["barcode"]).first()
        ref = {"barcode": item["barcode"]}
        label = f"barcode {item['barcode']}"

    if product is None or not product.is_active:
        raise ProductNotFoundError(
            f"Product not found: {label}",
            details=dict(ref, line=item.get("line")),
        )
    return product


def _resolve_customer_id(branch_id: int, customer: dict | None) -> int | None:
    # Only an existing customer of this branch is linked; anything else is
    # left to the loyalty subscriber after commit.
    if not customer or customer.get("customer_id") is None:
        return None
    found = (
        db.session.query(Customer.id)
        .filter_by(id=customer["customer_id"], branch_id=branch_id)
        .scalar()
    )
    return found


def _create_sale_locked(
    *,
    branch_id: int,
    operator: User,
    items: list[dict],
    payment_method: str,
    amount_paid_cents: int,
    customer: dict | None,
) -> Sale:
    priced: list[tuple[Product, BatchDeduction, int]] = []
    subtotal_cents = 0

    for item in items:
        product = _resolve_product(item)
        deductions = deduct_fefo(product=product, branch_id=branch_id, quantity=item["quantity"])
        for deduction in deductions:
            unit_price = item.get("unit_price_cents", deduction.unit_price_cents)
            priced.append((product, deduction, unit_price))
            subtotal_cents += unit_price * deduction.quantity_used

    if amount_paid_cents < subtotal_cents:
        raise InsufficientPaymentError(
            "Insufficient payment",
            details={
                "subtotal_cents": subtotal_cents,
                "amount_paid_cents": amount_paid_cents,
                "shortfall_cents": subtotal_cents - amount_paid_cents,
            },
        )

    sale = Sale(
        branch_id=branch_id,
        subtotal_cents=subtotal_cents,
        payment_method=payment_method,
        amount_paid_cents=amount_paid_cents,
        change_cents=amount_paid_cents - subtotal_cents,
        sold_by_user_id=operator.id,
        sold_by_name=operator.name,
        customer_id=_resolve_customer_id(branch_id, customer),
    )
    db.session.add(sale)
    db.session.flush()

    for line_number, (product, deduction, unit_price) in enumerate(priced, start=1):
        db.session.add(
            SaleLine(
                sale_id=sale.id,
                line_number=line_number,
                product_id=product.id,
                batch_id=deduction.batch.id,
                name=product.name,
                quantity=deduction.quantity_used,
                unit_price_cents=unit_price,
                line_total_cents=unit_price * deduction.quantity_used,
            )
        )
        record_stock_movement(
            batch=deduction.batch,
            product=product,
            movement_type=MOVEMENT_SALE,
            quantity_delta=-deduction.quantity_used,
            previous_quantity=deduction.previous_quantity,
            new_quantity=deduction.new_quantity,
            actor=operator,
            reason="Sale",
            reference=f"SALE-{sale.id}",
            sale_id=sale.id,
        )

    append_ledger_entry(
        branch_id=branch_id,
        entry_type=ENTRY_SALE,
        amount_cents=subtotal_cents,
        reference_type="sale",
        reference_id=sale.id,
        created_by_user_id=operator.id,
        description=f"Sale #{sale.id}",
    )

    db.session.flush()
    return sale


def create_sale(
    *,
    branch_id: int,
    operator: User,
    items: list[dict],
    payment_method: str,
    amount_paid_cents: int,
    customer: dict | None = None,
) -> Sale:
    """
    Execute one sale as a single atomic unit.

    `items` is the normalized output of validation.validate_sale_request:
    each line has quantity and exactly one of product_id/barcode, and may
    carry unit_price_cents to override the batch selling price.

    Returns the committed Sale (lines loaded). On any error nothing is
    persisted and the error propagates; database failures surface as
    PersistenceFailureError.
    """
    log = current_app.logger

    def _op():
        begin_write_transaction()
        try:
            sale = _create_sale_locked(
                branch_id=branch_id,
                operator=operator,
                items=items,
                payment_method=payment_method,
                amount_paid_cents=amount_paid_cents,
                customer=customer,
            )
            db.session.commit()
        except (PharmacyError, OperationalError):
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceFailureError("Could not record sale") from exc
        except Exception:
            db.session.rollback()
            raise
        return sale

    try:
        sale = run_with_retry(_op)
    except PharmacyError as exc:
        log.warning("Sale rolled back (branch=%s, user=%s): %s", branch_id, operator.id, exc.message)
        raise
    except OperationalError as exc:
        log.warning("Sale rolled back (branch=%s, user=%s): database busy", branch_id, operator.id)
        raise PersistenceFailureError("Database unavailable, sale not recorded") from exc

    log.info(
        "Sale %s committed (branch=%s, user=%s, subtotal_cents=%s, lines=%s)",
        sale.id, branch_id, operator.id, sale.subtotal_cents, len(sale.lines),
    )

    sale_completed.send(current_app._get_current_object(), sale=sale, customer=customer)
    return sale


def get_sale(sale_id: int, branch_id: int) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id, branch_id=branch_id).first()
    if sale is None:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def list_sales(branch_id: int, *, page: int = 1, limit: int = 50) -> dict:
    """Newest first, paginated."""
    page = max(page, 1)
    limit = min(max(limit, 1), 200)

    query = db.session.query(Sale).filter(Sale.branch_id == branch_id)
    total = query.count()
    sales = (
        query.order_by(Sale.created_at.desc(), Sale.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "sales": [s.to_dict(include_lines=False) for s in sales],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }
