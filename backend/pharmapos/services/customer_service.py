# Overview: Customer loyalty updates, applied after a sale has committed.

from __future__ import annotations

from flask import current_app

from ..extensions import db, sale_completed
from ..errors import NotFoundError, ValidationError
from ..models import Customer, Sale
from pharmapos.time_utils import utcnow


def loyalty_points_for(subtotal_cents: int) -> int:
    unit = current_app.config.get("LOYALTY_POINTS_UNIT_CENTS", 1000)
    return subtotal_cents // unit


def apply_sale_to_customer(sale: Sale, customer: dict) -> Customer:
    """
    Credit a committed sale to a customer of the sale's branch.

    - customer_id given: that customer must exist in the branch.
    - else phone given: update the branch customer with that phone, or
      create one (name required) seeded with this sale.

    Counters are incremented in SQL so concurrent sales for the same
    customer do not overwrite each other. No commit.
    """
    points = loyalty_points_for(sale.subtotal_cents)
    now = utcnow()

    record = None
    if customer.get("customer_id") is not None:
        record = (
            db.session.query(Customer)
            .filter_by(id=customer["customer_id"], branch_id=sale.branch_id)
            .first()
        )
        if record is None:
            raise NotFoundError("Customer not found", details={"customer_id": customer["customer_id"]})
    else:
        phone = (customer.get("phone") or "").strip()
        if not phone:
            raise ValidationError("Customer phone is required")
        record = db.session.query(Customer).filter_by(branch_id=sale.branch_id, phone=phone).first()
        if record is None:
            name = (customer.get("name") or "").strip()
            if not name:
                raise ValidationError("Customer name is required for a new customer")
            record = Customer(
                branch_id=sale.branch_id,
                name=name,
                phone=phone,
                email=(customer.get("email") or None),
                loyalty_points=points,
                total_spent_cents=sale.subtotal_cents,
                purchase_count=1,
                last_visit_at=now,
            )
            db.session.add(record)
            db.session.flush()
            return record

    record.total_spent_cents = Customer.total_spent_cents + sale.subtotal_cents
    record.purchase_count = Customer.purchase_count + 1
    record.loyalty_points = Customer.loyalty_points + points
    record.last_visit_at = now
    db.session.flush()
    return record


@sale_completed.connect
def record_customer_visit(sender, sale: Sale, customer: dict | None = None, **extra):
    """
    sale_completed subscriber. Best-effort: the sale is already committed,
    so a failure here is logged and rolled back, never raised.
    """
    if not customer:
        return None

    try:
        record = apply_sale_to_customer(sale, customer)
        db.session.commit()
        return record
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Customer loyalty update failed for sale %s", sale.id)
        return None
