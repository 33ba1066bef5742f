# Overview: Flask API routes for the ledger; read-only listing.

from flask import Blueprint, request, jsonify, g

from ..errors import ValidationError
from ..models.ledger import ENTRY_TYPES
from pharmapos.time_utils import parse_iso_datetime, parse_range_end
from ..services import ledger_service
from ..decorators import require_auth, require_permission, require_branch
from .. import permissions


ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.get("/")
@require_auth
@require_permission(permissions.VIEW_LEDGER)
@require_branch
def list_ledger_route():
    """Branch ledger entries, newest first. Filters: from, to, type, limit."""
    entry_type = (request.args.get("type") or "").upper() or None
    if entry_type and entry_type not in ENTRY_TYPES:
        return jsonify({"error": f"type must be one of: {', '.join(ENTRY_TYPES)}"}), 400

    try:
        start = parse_iso_datetime(request.args.get("from"))
        end = parse_range_end(request.args.get("to"))
    except ValueError:
        e = ValidationError("from/to must be ISO-8601 dates")
        return jsonify(e.to_dict()), e.status_code

    entries = ledger_service.list_ledger_entries(
        g.branch_id,
        start=start,
        end=end,
        entry_type=entry_type,
        limit=min(request.args.get("limit", 200, type=int), 1000),
    )
    return jsonify({"entries": [e.to_dict() for e in entries]}), 200
