# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

"""Sales API routes with permission enforcement"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import PharmacyError
from ..services import sales_service
from ..validation import validate_sale_request
from ..decorators import require_auth, require_permission, require_branch
from .. import permissions
from ..permissions import has_permission


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/")
@require_auth
@require_permission(permissions.CREATE_SALE)
@require_branch
def create_sale_route():
    """
    Complete a sale in one step.

    Body:
        {"items": [{"product_id"|"barcode", "quantity", "unit_price_cents"?}],
         "payment_method": "CASH"|"CARD"|"MOMO",
         "amount_paid_cents": int,
         "customer"?: {"name", "phone", "email"?} | {"customer_id"}}

    All or nothing: stock, sale, ledger entry and stock movements commit
    together or not at all.

    Requires: CREATE_SALE permission
    Lines carrying unit_price_cents also require OVERRIDE_PRICE.
    Available to: ADMIN, CASHIER
    """
    try:
        request_data = validate_sale_request(request.get_json(silent=True))

        overridden = [i["line"] for i in request_data["items"] if "unit_price_cents" in i]
        if overridden and not has_permission(g.current_user.role, permissions.OVERRIDE_PRICE):
            current_app.logger.warning(
                "Price override denied: user=%s role=%s lines=%s",
                g.current_user.id, g.current_user.role, overridden,
            )
            return jsonify({
                "error": "Permission denied",
                "required_permission": permissions.OVERRIDE_PRICE,
                "details": {"lines": overridden},
            }), 403

        sale = sales_service.create_sale(
            branch_id=g.branch_id,
            operator=g.current_user,
            items=request_data["items"],
            payment_method=request_data["payment_method"],
            amount_paid_cents=request_data["amount_paid_cents"],
            customer=request_data["customer"],
        )
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"sale": sale.to_dict()}), 201


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission(permissions.VIEW_SALES)
@require_branch
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id, g.branch_id)
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.get("/")
@require_auth
@require_permission(permissions.VIEW_SALES)
@require_branch
def list_sales_route():
    """Newest first. ?page=&limit= (limit capped at 200)."""
    page = request.args.get("page", 1, type=int)
    limit = request.args.get("limit", 50, type=int)
    return jsonify(sales_service.list_sales(g.branch_id, page=page, limit=limit)), 200
