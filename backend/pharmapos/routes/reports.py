# Overview: Flask API routes for reporting; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import PharmacyError
from ..services import reporting_service
from ..decorators import require_auth, require_permission, require_branch
from .. import permissions


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/sales")
@require_auth
@require_permission(permissions.VIEW_REPORTS)
@require_branch
def sales_by_day_route():
    """Sales count and revenue per day for ?from=&to=."""
    try:
        report = reporting_service.sales_by_day(
            branch_id=g.branch_id,
            start=request.args.get("from"),
            end=request.args.get("to"),
        )
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build sales report")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(report), 200


@reports_bp.get("/summary")
@require_auth
@require_permission(permissions.VIEW_REPORTS)
@require_branch
def sales_summary_route():
    try:
        report = reporting_service.sales_summary(
            branch_id=g.branch_id,
            start=request.args.get("from"),
            end=request.args.get("to"),
        )
    except PharmacyError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build sales summary")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(report), 200
