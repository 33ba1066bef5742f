"""
HTTP surface tests for sales and inventory.

Verifies status codes and error payloads: every failure names what went
wrong ({"error", "details"}) and never leaks a raw exception.
"""

from datetime import timedelta

from pharmapos.models import Batch, Sale
from pharmapos.time_utils import utcnow, utctoday

from conftest import make_batch


def _stock_in_body(**overrides):
    body = {
        "barcode": "6001234500011",
        "name": "Paracetamol 500mg",
        "category": "Analgesics",
        "batch_number": "PARA-01",
        "expiry_date": (utcnow() + timedelta(days=200)).date().isoformat(),
        "quantity": 20,
        "cost_price_cents": 150,
        "selling_price_cents": 300,
    }
    body.update(overrides)
    return body


class TestSalesRoutes:

    def test_create_sale(self, client, db_session, branch, product, cashier_headers):
        make_batch(db_session, product, branch, quantity=5, days_to_expiry=20, selling_price_cents=500)
        make_batch(db_session, product, branch, quantity=10, days_to_expiry=200, selling_price_cents=600)

        resp = client.post("/api/sales/", json={
            "items": [{"barcode": product.barcode, "quantity": 8}],
            "payment_method": "cash",
            "amount_paid_cents": 5000,
        }, headers=cashier_headers)

        assert resp.status_code == 201
        sale = resp.json["sale"]
        assert sale["subtotal_cents"] == 4300
        assert sale["change_cents"] == 700
        assert sale["payment_method"] == "CASH"
        assert len(sale["lines"]) == 2

        fetched = client.get(f"/api/sales/{sale['id']}", headers=cashier_headers)
        assert fetched.status_code == 200
        assert fetched.json["sale"]["id"] == sale["id"]

    def test_insufficient_stock_is_409_and_names_product(self, client, db_session, branch, product, cashier_headers):
        make_batch(db_session, product, branch, quantity=2, days_to_expiry=20)

        resp = client.post("/api/sales/", json={
            "items": [{"product_id": product.id, "quantity": 3}],
            "payment_method": "CASH",
            "amount_paid_cents": 10_000,
        }, headers=cashier_headers)

        assert resp.status_code == 409
        assert resp.json["details"]["product_name"] == product.name
        assert db_session.query(Sale).count() == 0

    def test_insufficient_payment_is_402(self, client, db_session, branch, product, cashier_headers):
        make_batch(db_session, product, branch, quantity=2, days_to_expiry=20, selling_price_cents=500)

        resp = client.post("/api/sales/", json={
            "items": [{"product_id": product.id, "quantity": 2}],
            "payment_method": "MOMO",
            "amount_paid_cents": 999,
        }, headers=cashier_headers)

        assert resp.status_code == 402
        assert resp.json["details"]["subtotal_cents"] == 1000

    def test_empty_basket_is_400(self, client, cashier_headers):
        resp = client.post("/api/sales/", json={"items": [], "payment_method": "CASH", "amount_paid_cents": 0},
                           headers=cashier_headers)
        assert resp.status_code == 400

    def test_bad_line_names_line(self, client, cashier_headers):
        resp = client.post("/api/sales/", json={
            "items": [{"product_id": 1, "quantity": 1}, {"product_id": 1, "quantity": 0}],
            "payment_method": "CASH",
            "amount_paid_cents": 0,
        }, headers=cashier_headers)
        assert resp.status_code == 400
        assert resp.json["details"]["line"] == 2

    def test_oversized_amount_paid_is_400_and_touches_nothing(self, client, db_session, branch, product, cashier_headers):
        batch = make_batch(db_session, product, branch, quantity=5, days_to_expiry=20, selling_price_cents=500)

        resp = client.post("/api/sales/", json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "payment_method": "CASH",
            "amount_paid_cents": 10**20,
        }, headers=cashier_headers)

        assert resp.status_code == 400
        assert "amount_paid_cents" in resp.json["error"]
        assert db_session.get(Batch, batch.id).quantity == 5
        assert db_session.query(Sale).count() == 0

        again = client.post("/api/sales/", json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "payment_method": "CASH",
            "amount_paid_cents": 500,
        }, headers=cashier_headers)
        assert again.status_code == 201

    def test_oversized_ids_are_400(self, client, db_session, cashier_headers):
        resp = client.post("/api/sales/", json={
            "items": [{"product_id": 10**20, "quantity": 1}],
            "payment_method": "CASH",
            "amount_paid_cents": 100,
        }, headers=cashier_headers)
        assert resp.status_code == 400
        assert resp.json["details"]["line"] == 1

        resp = client.post("/api/sales/", json={
            "items": [{"barcode": "0000", "quantity": 1}],
            "payment_method": "CASH",
            "amount_paid_cents": 100,
            "customer": {"customer_id": 10**20},
        }, headers=cashier_headers)
        assert resp.status_code == 400

    def test_cashier_cannot_override_price(self, client, db_session, branch, product, cashier_headers):
        batch = make_batch(db_session, product, branch, quantity=5, days_to_expiry=20, selling_price_cents=500)

        resp = client.post("/api/sales/", json={
            "items": [{"product_id": product.id, "quantity": 2, "unit_price_cents": 1}],
            "payment_method": "CASH",
            "amount_paid_cents": 2,
        }, headers=cashier_headers)

        assert resp.status_code == 403
        assert resp.json["required_permission"] == "OVERRIDE_PRICE"
        assert resp.json["details"]["lines"] == [1]
        assert db_session.get(Batch, batch.id).quantity == 5

    def test_admin_can_override_price(self, client, db_session, branch, product, admin_headers):
        make_batch(db_session, product, branch, quantity=5, days_to_expiry=20, selling_price_cents=500)

        resp = client.post("/api/sales/", json={
            "items": [{"product_id": product.id, "quantity": 2, "unit_price_cents": 450}],
            "payment_method": "CASH",
            "amount_paid_cents": 900,
        }, headers=admin_headers)

        assert resp.status_code == 201
        assert resp.json["sale"]["subtotal_cents"] == 900

    def test_unknown_product_is_404(self, client, db_session, cashier_headers):
        resp = client.post("/api/sales/", json={
            "items": [{"barcode": "0000", "quantity": 1}],
            "payment_method": "CASH",
            "amount_paid_cents": 100,
        }, headers=cashier_headers)
        assert resp.status_code == 404


class TestInventoryRoutes:

    def test_stock_in_then_scan(self, client, pharmacist_headers):
        resp = client.post("/api/inventory/stock-in", json=_stock_in_body(), headers=pharmacist_headers)
        assert resp.status_code == 201
        assert resp.json["product_created"] is True
        assert resp.json["batch"]["quantity"] == 20

        scan = client.get("/api/inventory/scan/6001234500011", headers=pharmacist_headers)
        assert scan.status_code == 200
        assert scan.json["exists"] is True
        assert scan.json["sellable_quantity"] == 20

    def test_expired_stock_in_is_rejected(self, client, db_session, pharmacist_headers):
        body = _stock_in_body(expiry_date=(utctoday() - timedelta(days=1)).isoformat())

        resp = client.post("/api/inventory/stock-in", json=body, headers=pharmacist_headers)

        assert resp.status_code == 400
        assert resp.json["error"] == "Expired batch not allowed"
        assert db_session.query(Batch).count() == 0

    def test_stock_in_missing_fields(self, client, pharmacist_headers):
        resp = client.post("/api/inventory/stock-in", json={"barcode": "1"}, headers=pharmacist_headers)
        assert resp.status_code == 400
        assert "Missing required fields" in resp.json["error"]

    def test_adjust_out_beyond_stock(self, client, db_session, branch, product, pharmacist_headers):
        batch = make_batch(db_session, product, branch, quantity=50, days_to_expiry=60)

        resp = client.post("/api/inventory/adjust", json={
            "product_id": product.id, "type": "out", "quantity": 100, "reason": "Damaged",
        }, headers=pharmacist_headers)

        assert resp.status_code == 409
        assert db_session.get(Batch, batch.id).quantity == 50

    def test_adjust_requires_reason(self, client, db_session, branch, product, pharmacist_headers):
        make_batch(db_session, product, branch, quantity=50, days_to_expiry=60)

        resp = client.post("/api/inventory/adjust", json={
            "product_id": product.id, "type": "out", "quantity": 1,
        }, headers=pharmacist_headers)

        assert resp.status_code == 400

    def test_history_and_report(self, client, pharmacist_headers, accountant_headers):
        client.post("/api/inventory/stock-in", json=_stock_in_body(), headers=pharmacist_headers)

        history = client.get("/api/inventory/history?type=in", headers=pharmacist_headers)
        assert history.status_code == 200
        assert len(history.json["movements"]) == 1

        today = utctoday().isoformat()
        report = client.get(f"/api/inventory/report?from={today}&to={today}", headers=accountant_headers)
        assert report.status_code == 200
        assert report.json["summary"]["purchases"] == 20

        missing = client.get("/api/inventory/report", headers=accountant_headers)
        assert missing.status_code == 400

    def test_update_and_discontinue_product(self, client, product, admin_headers):
        resp = client.patch(f"/api/inventory/products/{product.id}", json={"reorder_level": 25},
                            headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["product"]["reorder_level"] == 25

        bad = client.patch(f"/api/inventory/products/{product.id}", json={"id": 5}, headers=admin_headers)
        assert bad.status_code == 400

        gone = client.delete(f"/api/inventory/products/{product.id}", headers=admin_headers)
        assert gone.status_code == 200
        assert gone.json["product"]["status"] == "discontinued"


class TestHealth:

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["checks"]["database"]["status"] == "healthy"


class TestCors:

    def test_configured_origin_is_echoed(self, app, client, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "CORS_ALLOWED_ORIGINS", ["http://pos.branch.local"])

        resp = client.get("/health", headers={"Origin": "http://pos.branch.local"})
        assert resp.headers["Access-Control-Allow-Origin"] == "http://pos.branch.local"

        resp = client.get("/health", headers={"Origin": "http://localhost:5173"})
        assert "Access-Control-Allow-Origin" not in resp.headers
