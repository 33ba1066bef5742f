"""
Inventory service tests.

Verifies:
- Stock-in creates or links the product, the batch and one `in` movement
- Expired stock-in is rejected before anything is written
- Adjustments hit the soonest-expiring batch and never go negative
- Expiry classification and alert grouping
"""

from datetime import date, datetime, timedelta

import pytest

from pharmapos.errors import (
    ExpiredBatchRejectedError,
    InsufficientStockError,
    NoBatchFoundError,
    ProductNotFoundError,
)
from pharmapos.models import Batch, Product, StockMovement
from pharmapos.models.inventory import MOVEMENT_IN, MOVEMENT_OUT, PRODUCT_DISCONTINUED
from pharmapos.services import inventory_service
from pharmapos.services.inventory_service import (
    CRITICAL,
    EXPIRED,
    SAFE,
    WARNING,
    adjust_stock,
    classify_expiry,
    stock_in,
)
from pharmapos.time_utils import utcnow

from conftest import make_batch


def _receive(branch, actor, **overrides):
    fields = dict(
        branch_id=branch.id,
        actor=actor,
        barcode="6001234500099",
        name="Cetirizine 10mg",
        category="Antihistamines",
        batch_number="CET-001",
        expiry_date=utcnow() + timedelta(days=365),
        quantity=40,
        cost_price_cents=200,
        selling_price_cents=350,
    )
    fields.update(overrides)
    return stock_in(**fields)


class TestStockIn:

    def test_creates_product_batch_and_movement(self, db_session, branch, pharmacist):
        result = _receive(branch, pharmacist, supplier="Ernest Chemists")

        assert result["product_created"] is True
        batch = db_session.get(Batch, result["batch"].id)
        assert batch.quantity == 40
        assert batch.initial_quantity == 40
        assert batch.supplier == "Ernest Chemists"

        movement = db_session.query(StockMovement).one()
        assert movement.movement_type == MOVEMENT_IN
        assert (movement.previous_quantity, movement.quantity_delta, movement.new_quantity) == (0, 40, 40)
        assert movement.performed_by_user_id == pharmacist.id

    def test_existing_barcode_links_product(self, db_session, branch, pharmacist):
        first = _receive(branch, pharmacist)
        second = _receive(branch, pharmacist, batch_number="CET-002", name="Renamed")

        assert second["product_created"] is False
        assert second["product"].id == first["product"].id
        assert db_session.query(Product).count() == 1
        assert db_session.query(Batch).count() == 2
        assert db_session.get(Product, first["product"].id).name == "Cetirizine 10mg"

    def test_reactivates_discontinued_product(self, db_session, branch, pharmacist):
        first = _receive(branch, pharmacist)
        inventory_service.discontinue_product(first["product"].id)

        _receive(branch, pharmacist, batch_number="CET-002")

        assert db_session.get(Product, first["product"].id).is_active

    @pytest.mark.parametrize("days", [-30, 0])
    def test_expired_batch_rejected(self, db_session, branch, pharmacist, days):
        with pytest.raises(ExpiredBatchRejectedError):
            _receive(branch, pharmacist, expiry_date=utcnow() + timedelta(days=days))

        assert db_session.query(Product).count() == 0
        assert db_session.query(Batch).count() == 0
        assert db_session.query(StockMovement).count() == 0


class TestAdjustStock:

    def test_out_beyond_batch_quantity_fails(self, db_session, branch, pharmacist, product):
        batch = make_batch(db_session, product, branch, quantity=50, days_to_expiry=60)

        with pytest.raises(InsufficientStockError):
            adjust_stock(product_id=product.id, branch_id=branch.id, adjustment_type=MOVEMENT_OUT,
                         quantity=100, reason="Damaged", actor=pharmacist)

        assert db_session.get(Batch, batch.id).quantity == 50
        assert db_session.query(StockMovement).count() == 0

    def test_out_hits_soonest_expiry(self, db_session, branch, pharmacist, product):
        later = make_batch(db_session, product, branch, quantity=20, days_to_expiry=200)
        sooner = make_batch(db_session, product, branch, quantity=20, days_to_expiry=20)

        movement = adjust_stock(product_id=product.id, branch_id=branch.id, adjustment_type=MOVEMENT_OUT,
                                quantity=5, reason="Broken bottles", actor=pharmacist)

        assert movement.batch_id == sooner.id
        assert (movement.previous_quantity, movement.quantity_delta, movement.new_quantity) == (20, -5, 15)
        assert db_session.get(Batch, sooner.id).quantity == 15
        assert db_session.get(Batch, later.id).quantity == 20

    def test_in_adds_to_soonest_batch(self, db_session, branch, pharmacist, product):
        batch = make_batch(db_session, product, branch, quantity=5, days_to_expiry=30)

        movement = adjust_stock(product_id=product.id, branch_id=branch.id, adjustment_type=MOVEMENT_IN,
                                quantity=7, reason="Recount", actor=pharmacist)

        assert movement.quantity_delta == 7
        assert db_session.get(Batch, batch.id).quantity == 12

    def test_no_sellable_batch(self, db_session, branch, pharmacist, product):
        make_batch(db_session, product, branch, quantity=5, days_to_expiry=-1)

        with pytest.raises(NoBatchFoundError):
            adjust_stock(product_id=product.id, branch_id=branch.id, adjustment_type=MOVEMENT_IN,
                         quantity=1, reason="Recount", actor=pharmacist)

    def test_unknown_product(self, db_session, branch, pharmacist):
        with pytest.raises(ProductNotFoundError):
            adjust_stock(product_id=999, branch_id=branch.id, adjustment_type=MOVEMENT_OUT,
                         quantity=1, reason="x", actor=pharmacist)


class TestExpiry:

    @pytest.mark.parametrize("offset,expected", [
        (-10, EXPIRED),
        (0, EXPIRED),
        (1, CRITICAL),
        (30, CRITICAL),
        (31, WARNING),
        (90, WARNING),
        (91, SAFE),
    ])
    def test_classify_expiry(self, offset, expected):
        today = date(2026, 3, 1)
        expiry = datetime.combine(today + timedelta(days=offset), datetime.min.time())
        assert classify_expiry(expiry, today) == expected

    def test_alerts_group_batches_with_stock(self, db_session, branch, product):
        make_batch(db_session, product, branch, quantity=5, days_to_expiry=-3, batch_number="OLD")
        make_batch(db_session, product, branch, quantity=5, days_to_expiry=10, batch_number="SOON")
        make_batch(db_session, product, branch, quantity=5, days_to_expiry=60, batch_number="MID")
        make_batch(db_session, product, branch, quantity=5, days_to_expiry=400, batch_number="FAR")
        make_batch(db_session, product, branch, quantity=0, days_to_expiry=10, batch_number="GONE")

        result = inventory_service.get_expiry_alerts(branch.id)

        assert result["summary"] == {EXPIRED: 1, CRITICAL: 1, WARNING: 1, SAFE: 1}
        assert [a["batch_number"] for a in result["alerts"]] == ["OLD", "SOON", "MID", "FAR"]
        assert result["alerts"][0]["product_name"] == product.name


class TestLookups:

    def test_scan_barcode(self, db_session, branch, product):
        b1 = make_batch(db_session, product, branch, quantity=3, days_to_expiry=100)
        b2 = make_batch(db_session, product, branch, quantity=4, days_to_expiry=10)

        result = inventory_service.scan_barcode(product.barcode, branch.id)

        assert result["exists"] is True
        assert [b["id"] for b in result["batches"]] == [b2.id, b1.id]
        assert result["sellable_quantity"] == 7
        assert inventory_service.scan_barcode("nope", branch.id)["exists"] is False

    def test_summary_and_stats(self, db_session, branch, product):
        make_batch(db_session, product, branch, quantity=4, days_to_expiry=10, cost_price_cents=100)
        make_batch(db_session, product, branch, quantity=6, days_to_expiry=-1, cost_price_cents=100)

        summary = inventory_service.get_inventory_summary(branch.id)
        assert len(summary) == 1
        assert summary[0]["total_quantity"] == 10
        assert summary[0]["sellable_quantity"] == 4
        assert summary[0]["low_stock"] is True

        stats = inventory_service.get_inventory_stats(branch.id)
        assert stats["product_count"] == 1
        assert stats["total_units"] == 10
        assert stats["stock_value_cents"] == 1000
        assert stats["low_stock_count"] == 1
        assert stats["expiring_soon_count"] == 1
        assert stats["expired_count"] == 1

    def test_discontinue_keeps_history(self, db_session, branch, pharmacist):
        result = _receive(branch, pharmacist)

        product = inventory_service.discontinue_product(result["product"].id)

        assert product.status == PRODUCT_DISCONTINUED
        assert db_session.query(StockMovement).filter_by(product_id=product.id).count() == 1
        assert inventory_service.scan_barcode(product.barcode, branch.id)["batches"] == []
