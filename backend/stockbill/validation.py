from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from stockbill.money_utils import MoneyParseError, decimal_to_cents, percent_to_bps, to_decimal


# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999
MAX_TAX_RATE_BPS = 10_000
# Largest value an INTEGER column holds on every supported backend
MAX_DB_INT = 2_147_483_647


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate barcode)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - money_fields: wire name -> cents column (e.g. "price" -> "price_cents")
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)
    money_fields: dict[str, str] = field(default_factory=dict)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(key: str, value: Any) -> int:
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
    # Whole-number floats from JSON clients (e.g. 3.0) are accepted
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

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
    Returns a cleaned patch dict keyed by column name.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(
            f for f in policy.required_on_create
            if payload.get(f) is None or (isinstance(payload.get(f), str) and not payload[f].strip())
        )
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols and k not in policy.money_fields:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        if k in policy.money_fields:
            col_key = policy.money_fields[k]
            if raw is None:
                if not cols[col_key].nullable:
                    raise ValidationError(f"{k} cannot be null")
                patch[col_key] = None
                continue
            try:
                patch[col_key] = decimal_to_cents(raw)
            except MoneyParseError:
                raise ValidationError(f"{k} must be a number")
            continue

        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable and col.default is None:
                raise ValidationError(f"{k} cannot be null")
            # nullable or defaulted columns: omit and let the default apply
            if col.nullable:
                patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "price_cents" in patch and patch["price_cents"] is not None:
        price = patch["price_cents"]
        if price < 0:
            raise ValidationError("price must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"price cannot exceed {MAX_PRICE_CENTS / 100:,.2f}")

    if "barcode" in patch and patch["barcode"] is not None:
        if not patch["barcode"].isdigit():
            raise ValidationError("barcode must contain digits only")

    for key in ("quantity", "low_stock_threshold"):
        if key not in patch or patch[key] is None:
            continue
        if patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")
        if patch[key] > MAX_DB_INT:
            raise ValidationError(f"{key} cannot exceed {MAX_DB_INT}")


def parse_tax_rate(raw: Any) -> int:
    """
    Tax rate percentage -> basis points.

    Absent or non-numeric input means "no tax" (0). A numeric rate outside
    0..100 is rejected, including one too large to round.
    """
    if raw is None or isinstance(raw, bool):
        return 0
    if isinstance(raw, str) and not raw.strip():
        return 0
    try:
        to_decimal(raw)
    except MoneyParseError:
        return 0
    try:
        bps = percent_to_bps(raw)
    except MoneyParseError:
        raise ValidationError("tax_rate must be between 0 and 100")
    if bps < 0 or bps > MAX_TAX_RATE_BPS:
        raise ValidationError("tax_rate must be between 0 and 100")
    return bps


def validate_invoice_request(payload: Any) -> dict:
    """
    Validate a draft invoice request (productId is accepted for product_id):
        {"items": [{"product_id": 1, "quantity": 2}, ...], "tax_rate": 10, "notes": "..."}

    Returns {"items": [(product_id, quantity), ...], "tax_rate_bps": int, "notes": str}.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    items = payload.get("items")
    if not items:
        raise ValidationError("Invoice must contain at least one item")
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    cleaned_items: list[tuple[int, int]] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")
        # camelCase productId is what browser clients send
        raw_product_id = item.get("product_id", item.get("productId"))
        if raw_product_id is None:
            raise ValidationError(f"items[{index}].product_id is required")
        if item.get("quantity") is None:
            raise ValidationError(f"items[{index}].quantity is required")
        product_id = coerce_int(f"items[{index}].product_id", raw_product_id)
        quantity = coerce_int(f"items[{index}].quantity", item["quantity"])
        if quantity < 1:
            raise ValidationError(f"items[{index}].quantity must be >= 1")
        if quantity > MAX_DB_INT or product_id > MAX_DB_INT:
            raise ValidationError(f"items[{index}] is out of range")
        cleaned_items.append((product_id, quantity))

    notes = payload.get("notes")
    if notes is None:
        notes = ""
    elif not isinstance(notes, str):
        raise ValidationError("notes must be a string")

    return {
        "items": cleaned_items,
        "tax_rate_bps": parse_tax_rate(payload.get("tax_rate", payload.get("taxRate"))),
        "notes": notes.strip(),
    }
