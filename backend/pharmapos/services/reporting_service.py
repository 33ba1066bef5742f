# Overview: Service-layer operations for reporting; sales aggregates and stock reconciliation.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from pharmapos.extensions import db
from pharmapos.errors import ValidationError
from pharmapos.models import Batch, Product, Sale, SaleLine, StockMovement
from pharmapos.models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_RETURN,
    MOVEMENT_SALE,
)
from pharmapos.time_utils import parse_iso_datetime, parse_range_end, to_utc_z

CONSUMPTION_TYPES = (MOVEMENT_SALE, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT)


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    try:
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_range_end(end) if end else None
    except ValueError:
        raise ValidationError("from/to must be ISO-8601 dates")
    if start_dt and end_dt and start_dt > end_dt:
        raise ValidationError("from must be on or before to")
    return start_dt, end_dt


def sales_by_day(*, branch_id: int, start: str | None, end: str | None) -> dict:
    start_dt, end_dt = _parse_range(start, end)

    period_expr = func.strftime("%Y-%m-%d", Sale.created_at)
    query = db.session.query(
        period_expr.label("period"),
        func.count(Sale.id).label("sales_count"),
        func.coalesce(func.sum(Sale.subtotal_cents), 0).label("revenue_cents"),
    ).filter(Sale.branch_id == branch_id)

    if start_dt:
        query = query.filter(Sale.created_at >= start_dt)
    if end_dt:
        query = query.filter(Sale.created_at <= end_dt)

    rows = query.group_by("period").order_by("period").all()
    return {
        "branch_id": branch_id,
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(end_dt) if end_dt else None,
        "rows": [
            {
                "date": row.period,
                "sales_count": int(row.sales_count or 0),
                "revenue_cents": int(row.revenue_cents or 0),
            }
            for row in rows
        ],
    }


def sales_summary(*, branch_id: int, start: str | None, end: str | None) -> dict:
    start_dt, end_dt = _parse_range(start, end)

    query = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.subtotal_cents), 0),
    ).filter(Sale.branch_id == branch_id)
    items_query = (
        db.session.query(func.coalesce(func.sum(SaleLine.quantity), 0))
        .join(Sale, SaleLine.sale_id == Sale.id)
        .filter(Sale.branch_id == branch_id)
    )
    if start_dt:
        query = query.filter(Sale.created_at >= start_dt)
        items_query = items_query.filter(Sale.created_at >= start_dt)
    if end_dt:
        query = query.filter(Sale.created_at <= end_dt)
        items_query = items_query.filter(Sale.created_at <= end_dt)

    count, revenue = query.one()
    count = int(count or 0)
    revenue = int(revenue or 0)

    return {
        "branch_id": branch_id,
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(end_dt) if end_dt else None,
        "total_sales": count,
        "total_revenue_cents": revenue,
        "items_sold": int(items_query.scalar() or 0),
        "average_sale_cents": revenue // count if count else 0,
    }


def stock_report(*, branch_id: int, start: str | None, end: str | None) -> dict:
    """
    Per-product stock reconciliation over [start, end].

    closing     = quantity on hand now
    purchases   = sum of `in` deltas in range
    returns     = sum of `return` deltas in range
    consumption = units removed by sale/out/adjustment in range
    opening     = closing - purchases - returns + consumption, floored at 0
    balance     = opening + purchases + returns

    The identity is derived, not recorded. A negative pre-clamp opening
    (raw_opening) means movement history is missing or inconsistent; such
    rows carry data_quality_warning and are counted in the summary.
    Movements after `end` are not backed out of closing.
    """
    if not start or not end:
        raise ValidationError("from and to are required")
    start_dt, end_dt = _parse_range(start, end)

    closing_rows = (
        db.session.query(Batch.product_id, func.coalesce(func.sum(Batch.quantity), 0))
        .filter(Batch.branch_id == branch_id)
        .group_by(Batch.product_id)
        .all()
    )
    closing = {pid: int(qty) for pid, qty in closing_rows}

    movement_rows = (
        db.session.query(
            StockMovement.product_id,
            StockMovement.movement_type,
            func.coalesce(func.sum(StockMovement.quantity_delta), 0),
        )
        .filter(
            StockMovement.branch_id == branch_id,
            StockMovement.created_at >= start_dt,
            StockMovement.created_at <= end_dt,
        )
        .group_by(StockMovement.product_id, StockMovement.movement_type)
        .all()
    )
    flows: dict[int, dict[str, int]] = {}
    for pid, movement_type, delta in movement_rows:
        flows.setdefault(pid, {})[movement_type] = int(delta)

    product_ids = set(closing) | set(flows)
    products = {}
    if product_ids:
        products = {
            p.id: p for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()
        }

    rows = []
    for pid in sorted(product_ids, key=lambda i: (products[i].name, i)):
        product = products[pid]
        by_type = flows.get(pid, {})

        closing_qty = closing.get(pid, 0)
        purchases = by_type.get(MOVEMENT_IN, 0)
        returns = by_type.get(MOVEMENT_RETURN, 0)
        consumption = -sum(by_type.get(t, 0) for t in CONSUMPTION_TYPES)

        raw_opening = closing_qty - purchases - returns + consumption
        opening = max(raw_opening, 0)

        rows.append(
            {
                "product_id": pid,
                "barcode": product.barcode,
                "name": product.name,
                "category": product.category,
                "opening": opening,
                "purchases": purchases,
                "returns": returns,
                "consumption": consumption,
                "balance": opening + purchases + returns,
                "closing": closing_qty,
                "raw_opening": raw_opening,
                "data_quality_warning": raw_opening < 0,
            }
        )

    def _total(key: str) -> int:
        return sum(r[key] for r in rows)

    return {
        "branch_id": branch_id,
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "rows": rows,
        "summary": {
            "product_count": len(rows),
            "opening": _total("opening"),
            "purchases": _total("purchases"),
            "returns": _total("returns"),
            "consumption": _total("consumption"),
            "balance": _total("balance"),
            "closing": _total("closing"),
            "flagged_count": sum(1 for r in rows if r["data_quality_warning"]),
        },
    }
