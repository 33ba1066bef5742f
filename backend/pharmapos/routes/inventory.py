# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

"""
Inventory management routes.

SECURITY: All routes require authentication and a branch-bound session.
- Scan requires SCAN_PRODUCT
- Stock-in requires RECEIVE_STOCK, adjustments ADJUST_STOCK
- Listings require VIEW_INVENTORY; history VIEW_STOCK_HISTORY; report VIEW_STOCK_REPORT
- Product edits require EDIT_PRODUCT, discontinuing DISCONTINUE_PRODUCT

Time semantics:
- API accepts ISO-8601 dates/datetimes with Z/offsets; backend normalizes to UTC-naive.
- Range filters are inclusive; a bare `to` date covers the whole day.
"""
from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy import Integer, String

from ..models import Batch, Product, StockMovement
from ..errors import PharmacyError, ValidationError
from pharmapos.time_utils import parse_iso_datetime, parse_range_end
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_stock_in,
    enforce_rules_adjustment,
    enforce_rules_product_update,
)
from ..decorators import require_auth, require_permission, require_branch
from ..services import inventory_service, reporting_service
from .. import permissions


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

STOCK_IN_POLICY = ModelValidationPolicy(
    writable_fields={
        "barcode", "name", "category", "manufacturer", "reorder_level",
        "batch_number", "expiry_date", "quantity",
        "cost_price_cents", "selling_price_cents", "supplier",
    },
    required_on_create={
        "barcode", "name", "category", "batch_number", "expiry_date",
        "quantity", "cost_price_cents", "selling_price_cents",
    },
    extra_fields={
        "barcode": String(64),
        "name": String(255),
        "category": String(120),
        "manufacturer": String(255),
        "reorder_level": Integer(),
    },
)

ADJUSTMENT_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "type", "quantity", "reason"},
    required_on_create={"product_id", "type", "quantity", "reason"},
    extra_fields={"type": String(16), "quantity": Integer()},
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"barcode", "name", "category", "manufacturer", "reorder_level", "status"},
)


def _error(e: PharmacyError):
    return jsonify(e.to_dict()), e.status_code


def _range_args() -> tuple:
    try:
        start = parse_iso_datetime(request.args.get("from"))
        end = parse_range_end(request.args.get("to"))
    except ValueError:
        raise ValidationError("from/to must be ISO-8601 dates")
    return start, end


def _int_arg(name: str, default=None):
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


@inventory_bp.get("/scan/<barcode>")
@require_auth
@require_permission(permissions.SCAN_PRODUCT)
@require_branch
def scan_route(barcode: str):
    """Till lookup: product plus sellable batches, soonest expiry first."""
    return jsonify(inventory_service.scan_barcode(barcode, g.branch_id)), 200


@inventory_bp.post("/stock-in")
@require_auth
@require_permission(permissions.RECEIVE_STOCK)
@require_branch
def stock_in_route():
    """
    Receive a batch.

    Creates the product on first sight of its barcode. Rejects a batch whose
    expiry is not in the future before anything is written.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Batch, payload=payload, policy=STOCK_IN_POLICY, partial=False)
        enforce_rules_stock_in(patch)

        result = inventory_service.stock_in(
            branch_id=g.branch_id,
            actor=g.current_user,
            barcode=patch["barcode"],
            name=patch["name"],
            category=patch["category"],
            manufacturer=patch.get("manufacturer"),
            reorder_level=patch.get("reorder_level"),
            batch_number=patch["batch_number"],
            expiry_date=patch["expiry_date"],
            quantity=patch["quantity"],
            cost_price_cents=patch["cost_price_cents"],
            selling_price_cents=patch["selling_price_cents"],
            supplier=patch.get("supplier"),
        )
    except PharmacyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to receive stock")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({
        "product": result["product"].to_dict(),
        "batch": result["batch"].to_dict(),
        "movement": result["movement"].to_dict(),
        "product_created": result["product_created"],
    }), 201


@inventory_bp.get("/")
@require_auth
@require_permission(permissions.VIEW_INVENTORY)
@require_branch
def list_inventory_route():
    """Per-product stock position; optional ?category= and ?search= filters."""
    rows = inventory_service.get_inventory_summary(g.branch_id)

    category = request.args.get("category")
    if category:
        rows = [r for r in rows if r["category"] == category]

    search = (request.args.get("search") or "").strip().lower()
    if search:
        rows = [r for r in rows if search in r["name"].lower() or search in r["barcode"].lower()]

    return jsonify({"items": rows, "count": len(rows)}), 200


@inventory_bp.get("/stats")
@require_auth
@require_permission(permissions.VIEW_INVENTORY)
@require_branch
def inventory_stats_route():
    return jsonify(inventory_service.get_inventory_stats(g.branch_id)), 200


@inventory_bp.get("/categories")
@require_auth
@require_permission(permissions.VIEW_INVENTORY)
@require_branch
def categories_route():
    return jsonify({"categories": inventory_service.get_categories_with_counts(g.branch_id)}), 200


@inventory_bp.get("/alerts")
@require_auth
@require_permission(permissions.VIEW_INVENTORY)
@require_branch
def expiry_alerts_route():
    return jsonify(inventory_service.get_expiry_alerts(g.branch_id)), 200


@inventory_bp.get("/history")
@require_auth
@require_permission(permissions.VIEW_STOCK_HISTORY)
@require_branch
def stock_history_route():
    """Stock movements, newest first. Filters: product_id, from, to, type, limit."""
    try:
        start, end = _range_args()
        movements = inventory_service.get_stock_history(
            g.branch_id,
            product_id=_int_arg("product_id"),
            start=start,
            end=end,
            movement_type=request.args.get("type") or None,
            limit=_int_arg("limit", 200),
        )
    except PharmacyError as e:
        return _error(e)

    return jsonify({"movements": [m.to_dict() for m in movements]}), 200


@inventory_bp.get("/products/<int:product_id>/history")
@require_auth
@require_permission(permissions.VIEW_STOCK_HISTORY)
@require_branch
def product_history_route(product_id: int):
    try:
        product = inventory_service.get_product(product_id)
        movements = inventory_service.get_stock_history(
            g.branch_id,
            product_id=product.id,
            limit=_int_arg("limit", 200),
        )
    except PharmacyError as e:
        return _error(e)

    return jsonify({
        "product": product.to_dict(),
        "movements": [m.to_dict() for m in movements],
    }), 200


@inventory_bp.post("/adjust")
@require_auth
@require_permission(permissions.ADJUST_STOCK)
@require_branch
def adjust_stock_route():
    """
    Manual stock correction against the soonest-expiring sellable batch.

    Body: {product_id, type: in|out|adjustment, quantity, reason}
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=StockMovement, payload=payload, policy=ADJUSTMENT_POLICY, partial=False)
        enforce_rules_adjustment(patch)

        movement = inventory_service.adjust_stock(
            product_id=patch["product_id"],
            branch_id=g.branch_id,
            adjustment_type=patch["type"],
            quantity=patch["quantity"],
            reason=patch["reason"],
            actor=g.current_user,
        )
    except PharmacyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({
        "movement": movement.to_dict(),
        "previous_quantity": movement.previous_quantity,
        "new_quantity": movement.new_quantity,
    }), 200


@inventory_bp.get("/report")
@require_auth
@require_permission(permissions.VIEW_STOCK_REPORT)
@require_branch
def stock_report_route():
    """Opening/purchases/consumption/returns/balance/closing per product for ?from=&to=."""
    try:
        report = reporting_service.stock_report(
            branch_id=g.branch_id,
            start=request.args.get("from"),
            end=request.args.get("to"),
        )
    except PharmacyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to build stock report")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(report), 200


@inventory_bp.patch("/products/<int:product_id>")
@require_auth
@require_permission(permissions.EDIT_PRODUCT)
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
        enforce_rules_product_update(patch)
        product = inventory_service.update_product(product_id, patch)
    except PharmacyError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"product": product.to_dict()}), 200


@inventory_bp.delete("/products/<int:product_id>")
@require_auth
@require_permission(permissions.DISCONTINUE_PRODUCT)
def discontinue_product_route(product_id: int):
    """Soft delete: status becomes discontinued; batches and history stay."""
    try:
        product = inventory_service.discontinue_product(product_id)
    except PharmacyError as e:
        return _error(e)

    return jsonify({"product": product.to_dict(), "message": "Product discontinued"}), 200
