from __future__ import annotations
from datetime import datetime
from pharmapos.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError, EmptyBasketError
from .models.inventory import MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT, PRODUCT_ACTIVE, PRODUCT_DISCONTINUED
from .models.sales import PAYMENT_METHODS


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Largest quantity accepted on one request line
MAX_LINE_QUANTITY = 1_000_000

# Largest tender accepted for one sale: a full basket at the price cap
MAX_AMOUNT_PAID_CENTS = MAX_PRICE_CENTS * MAX_LINE_QUANTITY

# Row ids are SQLite INTEGER (signed 64-bit)
MAX_ID = 2**63 - 1

ADJUSTMENT_TYPES = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT)


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - extra_fields: request-only fields that are not model columns, with their SQLAlchemy type
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    extra_fields: dict[str, Any] | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{key} must be an ISO-8601 date or datetime")
        if dt is None:
            raise ValidationError(f"{key} must be an ISO-8601 date or datetime")
        return dt
    raise ValidationError(f"{key} must be a datetime")


def _coerce_value(key: str, coltype, value: Any):
    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        return _coerce_int(key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        return _coerce_datetime(key, value)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)
    extra = policy.extra_fields or {}

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols and k not in extra:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        if k in extra:
            coltype, nullable = extra[k], k not in required
        else:
            coltype, nullable = cols[k].type, cols[k].nullable

        # NULL handling
        if raw is None:
            if not nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(k, coltype, raw)

        # Blank string check for non-nullable text fields
        if isinstance(coltype, (String, Text)) and not nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(coltype, String) and coltype.length and isinstance(val, str):
            if len(val) > coltype.length:
                raise ValidationError(f"{k} exceeds max length {coltype.length}")

        patch[k] = val

    return patch


def _check_price(patch: dict, key: str) -> None:
    if key not in patch or patch[key] is None:
        return
    price = patch[key]
    if price < 0:
        raise ValidationError(f"{key} must be >= 0")
    if price > MAX_PRICE_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS} ({MAX_PRICE_CENTS / 100:,.2f})")


def _check_quantity(value, key: str = "quantity") -> None:
    if value is None or value <= 0:
        raise ValidationError(f"{key} must be > 0")
    if value > MAX_LINE_QUANTITY:
        raise ValidationError(f"{key} cannot exceed {MAX_LINE_QUANTITY}")


def _check_id(value, key: str) -> int:
    if value <= 0 or value > MAX_ID:
        raise ValidationError(f"{key} must be a positive id")
    return value


def enforce_rules_stock_in(patch: dict) -> None:
    """
    Business rules for stock-in that SQLAlchemy metadata cannot express.

    Expiry is deliberately NOT checked here: an expired batch is a business
    rejection (ExpiredBatchRejectedError), raised by the inventory service.
    """
    _check_quantity(patch.get("quantity"))
    _check_price(patch, "cost_price_cents")
    _check_price(patch, "selling_price_cents")

    if "reorder_level" in patch and patch["reorder_level"] is not None and patch["reorder_level"] < 0:
        raise ValidationError("reorder_level must be >= 0")


def enforce_rules_adjustment(patch: dict) -> None:
    if patch.get("type") not in ADJUSTMENT_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(ADJUSTMENT_TYPES)}")
    _check_quantity(patch.get("quantity"))
    reason = patch.get("reason")
    if reason is None or str(reason).strip() == "":
        raise ValidationError("reason is required")


def enforce_rules_product_update(patch: dict) -> None:
    if "status" in patch and patch["status"] not in (PRODUCT_ACTIVE, PRODUCT_DISCONTINUED):
        raise ValidationError("status must be active or discontinued")
    if "reorder_level" in patch and patch["reorder_level"] is not None and patch["reorder_level"] < 0:
        raise ValidationError("reorder_level must be >= 0")


def validate_sale_request(payload: Any) -> dict:
    """
    Validate and normalize a sale request body.

    Shape:
        {
          "items": [{"product_id"|"barcode": ..., "quantity": n, "unit_price_cents"?: n}],
          "payment_method": "CASH"|"CARD"|"MOMO",
          "amount_paid_cents": n,
          "customer"?: {"name", "phone", "email"?, "is_new"?} | {"customer_id"}
        }

    Returns a dict with the same keys, items normalized so every line has
    exactly one of product_id/barcode. An empty basket raises
    EmptyBasketError; every other problem raises ValidationError naming the
    offending line.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    items = payload.get("items")
    if items is None or (isinstance(items, list) and not items):
        raise EmptyBasketError("No items provided")
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    lines = []
    for index, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise ValidationError(f"Line {index}: item must be an object", details={"line": index})

        product_id = item.get("product_id")
        barcode = item.get("barcode")
        if product_id in (None, "") and (barcode is None or str(barcode).strip() == ""):
            raise ValidationError(f"Line {index}: product_id or barcode is required", details={"line": index})

        try:
            quantity = _coerce_int("quantity", item.get("quantity"))
            _check_quantity(quantity)
            line = {"line": index, "quantity": quantity}
            if product_id not in (None, ""):
                line["product_id"] = _check_id(_coerce_int("product_id", product_id), "product_id")
            else:
                line["barcode"] = str(barcode).strip()
            if item.get("unit_price_cents") is not None:
                line["unit_price_cents"] = _coerce_int("unit_price_cents", item["unit_price_cents"])
                _check_price(line, "unit_price_cents")
        except ValidationError as e:
            raise ValidationError(f"Line {index}: {e.message}", details={"line": index})
        lines.append(line)

    payment_method = str(payload.get("payment_method") or "").strip().upper()
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")

    if payload.get("amount_paid_cents") is None:
        raise ValidationError("amount_paid_cents is required")
    amount_paid_cents = _coerce_int("amount_paid_cents", payload["amount_paid_cents"])
    if amount_paid_cents < 0:
        raise ValidationError("amount_paid_cents must be >= 0")
    if amount_paid_cents > MAX_AMOUNT_PAID_CENTS:
        raise ValidationError(f"amount_paid_cents cannot exceed {MAX_AMOUNT_PAID_CENTS}")

    customer = payload.get("customer")
    if customer is not None and not isinstance(customer, dict):
        raise ValidationError("customer must be an object")
    if customer and customer.get("customer_id") is not None:
        customer = dict(customer, customer_id=_check_id(
            _coerce_int("customer_id", customer["customer_id"]), "customer_id"
        ))

    return {
        "items": lines,
        "payment_method": payment_method,
        "amount_paid_cents": amount_paid_cents,
        "customer": customer or None,
    }
