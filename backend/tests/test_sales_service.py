"""
Sale transaction tests.

Verifies:
- FEFO split across batches becomes one sale line per batch drawn
- Sale, SALE ledger entry and stock movements cross-reference each other
- Any failure (stock, payment, unknown product, database) leaves no trace
- Customer loyalty is applied after commit and its failures never fail the sale
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError

from pharmapos.errors import (
    EmptyBasketError,
    InsufficientPaymentError,
    InsufficientStockError,
    NotFoundError,
    PersistenceFailureError,
    ProductNotFoundError,
    ValidationError,
)
from pharmapos.models import Batch, Customer, LedgerEntry, Sale, SaleLine, StockMovement
from pharmapos.models.inventory import MOVEMENT_SALE, PRODUCT_DISCONTINUED
from pharmapos.models.ledger import ENTRY_SALE
from pharmapos.services import customer_service, sales_service
from pharmapos.services.sales_service import create_sale, get_sale, list_sales
from pharmapos.validation import validate_sale_request

from conftest import make_batch, make_product


def _sell(branch, operator, items, amount_paid_cents, payment_method="CASH", customer=None):
    return create_sale(
        branch_id=branch.id,
        operator=operator,
        items=items,
        payment_method=payment_method,
        amount_paid_cents=amount_paid_cents,
        customer=customer,
    )


def _counts(db_session):
    return (
        db_session.query(Sale).count(),
        db_session.query(SaleLine).count(),
        db_session.query(LedgerEntry).count(),
        db_session.query(StockMovement).count(),
    )


class TestSuccessfulSale:

    def test_split_across_batches(self, db_session, branch, cashier, product):
        b1 = make_batch(db_session, product, branch, quantity=5, days_to_expiry=20, selling_price_cents=500)
        b2 = make_batch(db_session, product, branch, quantity=10, days_to_expiry=200, selling_price_cents=600)

        sale = _sell(branch, cashier, [{"line": 1, "product_id": product.id, "quantity": 8}], 5000)

        assert sale.subtotal_cents == 5 * 500 + 3 * 600
        assert sale.change_cents == 5000 - sale.subtotal_cents
        assert sale.sold_by_user_id == cashier.id
        assert sale.sold_by_name == cashier.name
        assert [(l.batch_id, l.quantity, l.unit_price_cents) for l in sale.lines] == [
            (b1.id, 5, 500),
            (b2.id, 3, 600),
        ]

        db_session.refresh(b1)
        db_session.refresh(b2)
        assert (b1.quantity, b2.quantity) == (0, 7)

    def test_ledger_and_movements_reference_sale(self, db_session, branch, cashier, product):
        make_batch(db_session, product, branch, quantity=5, days_to_expiry=20, selling_price_cents=500)
        make_batch(db_session, product, branch, quantity=10, days_to_expiry=200, selling_price_cents=600)

        sale = _sell(branch, cashier, [{"line": 1, "barcode": product.barcode, "quantity": 8}], 4300)

        entries = db_session.query(LedgerEntry).all()
        assert len(entries) == 1
        assert entries[0].entry_type == ENTRY_SALE
        assert entries[0].amount_cents == sale.subtotal_cents
        assert (entries[0].reference_type, entries[0].reference_id) == ("sale", sale.id)

        movements = db_session.query(StockMovement).order_by(StockMovement.id).all()
        assert len(movements) == 2
        assert all(m.movement_type == MOVEMENT_SALE and m.sale_id == sale.id for m in movements)
        assert [(m.previous_quantity, m.quantity_delta, m.new_quantity) for m in movements] == [
            (5, -5, 0),
            (10, -3, 7),
        ]
        assert sale.change_cents == 0

    def test_unit_price_override(self, db_session, branch, cashier, product):
        make_batch(db_session, product, branch, quantity=10, days_to_expiry=30, selling_price_cents=500)

        sale = _sell(branch, cashier, [{"line": 1, "product_id": product.id, "quantity": 2, "unit_price_cents": 450}], 900)

        assert sale.subtotal_cents == 900
        assert sale.lines[0].line_total_cents == 900

    def test_get_and_list(self, db_session, branch, other_branch, cashier, product):
        make_batch(db_session, product, branch, quantity=10, days_to_expiry=30)
        first = _sell(branch, cashier, [{"line": 1, "product_id": product.id, "quantity": 1}], 500)
        second = _sell(branch, cashier, [{"line": 1, "product_id": product.id, "quantity": 1}], 500)

        assert get_sale(first.id, branch.id).id == first.id
        with pytest.raises(NotFoundError):
            get_sale(first.id, other_branch.id)

        listing = list_sales(branch.id, page=1, limit=1)
        assert listing["pagination"]["total"] == 2
        assert [s["id"] for s in listing["sales"]] == [second.id]


class TestRollback:

    def test_insufficient_stock_on_later_line_rolls_back_earlier_lines(self, db_session, branch, cashier, product):
        other = make_product(db_session, barcode="6009999999999", name="Amoxicillin 250mg")
        b1 = make_batch(db_session, product, branch, quantity=10, days_to_expiry=30)
        make_batch(db_session, other, branch, quantity=2, days_to_expiry=30)

        with pytest.raises(InsufficientStockError) as exc:
            _sell(branch, cashier, [
                {"line": 1, "product_id": product.id, "quantity": 4},
                {"line": 2, "product_id": other.id, "quantity": 3},
            ], 10_000)

        assert exc.value.details["product_name"] == "Amoxicillin 250mg"
        assert db_session.get(Batch, b1.id).quantity == 10
        assert _counts(db_session) == (0, 0, 0, 0)

    def test_insufficient_payment(self, db_session, branch, cashier, product):
        batch = make_batch(db_session, product, branch, quantity=10, days_to_expiry=30, selling_price_cents=500)

        with pytest.raises(InsufficientPaymentError) as exc:
            _sell(branch, cashier, [{"line": 1, "product_id": product.id, "quantity": 3}], 1499)

        assert exc.value.details["shortfall_cents"] == 1
        assert db_session.get(Batch, batch.id).quantity == 10
        assert _counts(db_session) == (0, 0, 0, 0)

    def test_unexpected_error_rolls_back_and_session_stays_usable(self, db_session, branch, cashier, product, monkeypatch):
        batch = make_batch(db_session, product, branch, quantity=10, days_to_expiry=30)

        def overflowing_ledger(**kwargs):
            raise OverflowError("Python int too large to convert to SQLite INTEGER")

        monkeypatch.setattr(sales_service, "append_ledger_entry", overflowing_ledger)

        with pytest.raises(OverflowError):
            _sell(branch, cashier, [{"line": 1, "product_id": product.id, "quantity": 2}], 10_000)

        assert db_session.get(Batch, batch.id).quantity == 10
        assert _counts(db_session) == (0, 0, 0, 0)

    def test_oversized_amount_paid_is_rejected(self):
        with pytest.raises(ValidationError):
            validate_sale_request({
                "items": [{"product_id": 1, "quantity": 1}],
                "payment_method": "CASH",
                "amount_paid_cents": 10**20,
            })

    def test_unknown_barcode(self, db_session, branch, cashier, product):
        batch = make_batch(db_session, product, branch, quantity=10, days_to_expiry=30)

        with pytest.raises(ProductNotFoundError) as exc:
            _sell(branch, cashier, [
                {"line": 1, "product_id": product.id, "quantity": 1},
                {"line": 2, "barcode": "0000000000000", "quantity": 1},
            ], 10_000)

        assert exc.value.details["barcode"] == "0000000000000"
        assert db_session.get(Batch, batch.id).quantity == 10
        assert _counts(db_session) == (0, 0, 0, 0)

    def test_discontinued_product_is_not_sellable(self, db_session, branch, cashier, product):
        make_batch(db_session, product, branch, quantity=10, days_to_expiry=30)
        product.status = PRODUCT_DISCONTINUED
        db_session.commit()

        with pytest.raises(ProductNotFoundError):
            _sell(branch, cashier, [{"line": 1, "product_id": product.id, "quantity": 1}], 10_000)

    def test_database_failure_becomes_persistence_failure(self, db_session, branch, cashier, product, monkeypatch):
        batch = make_batch(db_session, product, branch, quantity=10, days_to_expiry=30)

        def broken_ledger(**kwargs):
            raise SQLAlchemyError("disk I/O error")

        monkeypatch.setattr(sales_service, "append_ledger_entry", broken_ledger)

        with pytest.raises(PersistenceFailureError):
            _sell(branch, cashier, [{"line": 1, "product_id": product.id, "quantity": 2}], 10_000)

        assert db_session.get(Batch, batch.id).quantity == 10
        assert _counts(db_session) == (0, 0, 0, 0)

    def test_empty_basket(self):
        with pytest.raises(EmptyBasketError):
            validate_sale_request({"items": [], "payment_method": "CASH", "amount_paid_cents": 0})


class TestCustomerLoyalty:

    def test_new_phone_creates_customer(self, db_session, branch, cashier, product):
        make_batch(db_session, product, branch, quantity=10, days_to_expiry=30, selling_price_cents=1250)

        sale = _sell(branch, cashier, [{"line": 1, "product_id": product.id, "quantity": 2}], 2500,
                     customer={"name": "Ama Mensah", "phone": "0241234567"})

        customer = db_session.query(Customer).filter_by(phone="0241234567").one()
        assert customer.branch_id == branch.id
        assert customer.total_spent_cents == sale.subtotal_cents
        assert customer.purchase_count == 1
        assert customer.loyalty_points == 2500 // 1000
        assert customer.last_visit_at is not None

    def test_existing_customer_is_incremented(self, db_session, branch, cashier, product):
        make_batch(db_session, product, branch, quantity=10, days_to_expiry=30, selling_price_cents=1000)
        customer = Customer(branch_id=branch.id, name="Kofi", phone="0201111111",
                            loyalty_points=5, total_spent_cents=5000, purchase_count=1)
        db_session.add(customer)
        db_session.commit()

        sale = _sell(branch, cashier, [{"line": 1, "product_id": product.id, "quantity": 3}], 3000,
                     customer={"customer_id": customer.id})

        db_session.refresh(customer)
        assert sale.customer_id == customer.id
        assert customer.total_spent_cents == 8000
        assert customer.purchase_count == 2
        assert customer.loyalty_points == 8

    def test_loyalty_failure_does_not_fail_sale(self, db_session, branch, cashier, product, monkeypatch):
        make_batch(db_session, product, branch, quantity=10, days_to_expiry=30)

        def broken(sale, customer):
            raise RuntimeError("crm down")

        monkeypatch.setattr(customer_service, "apply_sale_to_customer", broken)

        sale = _sell(branch, cashier, [{"line": 1, "product_id": product.id, "quantity": 1}], 500,
                     customer={"name": "Ama", "phone": "0240000000"})

        assert db_session.get(Sale, sale.id) is not None
        assert db_session.query(Customer).count() == 0

    def test_new_customer_without_name_is_skipped(self, db_session, branch, cashier, product):
        make_batch(db_session, product, branch, quantity=10, days_to_expiry=30)

        sale = _sell(branch, cashier, [{"line": 1, "product_id": product.id, "quantity": 1}], 500,
                     customer={"phone": "0249999999"})

        assert db_session.get(Sale, sale.id) is not None
        assert db_session.query(Customer).count() == 0
