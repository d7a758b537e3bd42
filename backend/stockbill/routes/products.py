# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/stockbill/routes/products.py
"""
Product catalog routes.

OWNERSHIP: every route passes g.current_user.id as owner_id.
- 404 when the product does not exist
- 403 when it exists but belongs to another user
"""
from flask import Blueprint, request, g, current_app

from ..models import Product
from ..services import products_service
from ..services.ownership_service import ForbiddenError, NotFoundError
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ValidationError,
    ConflictError,
)
from ..decorators import require_auth

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "price", "barcode", "quantity", "low_stock_threshold"},
    required_on_create={"name", "price", "barcode"},
    money_fields={"price": "price_cents"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    """
    List the caller's products.

    Query params:
    - search: case-insensitive name substring (optional)
    - stock_status: IN_STOCK | LOW_STOCK | OUT_OF_STOCK (optional)
    """
    try:
        rows = products_service.list_products(
            g.current_user.id,
            search=request.args.get("search"),
            stock_status=request.args.get("stock_status"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400

    return {"products": [p.to_dict() for p in rows], "count": len(rows)}


@products_bp.get("/stock-summary")
@require_auth
def stock_summary():
    return {"summary": products_service.stock_summary(g.current_user.id)}


@products_bp.post("")
@require_auth
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        created = products_service.create_product(g.current_user.id, patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500

    return {"product": created.to_dict()}, 201


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(g.current_user.id, product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ForbiddenError as e:
        return {"error": str(e)}, 403

    return {"product": product.to_dict()}


@products_bp.put("/<int:product_id>")
@require_auth
def update_product_route(product_id: int):
    """Partial update: only the provided fields change."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        updated = products_service.update_product(g.current_user.id, product_id, patch)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ForbiddenError as e:
        return {"error": str(e)}, 403
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to update product %s", product_id)
        return {"error": "Internal server error"}, 500

    return {"product": updated.to_dict()}


@products_bp.delete("/<int:product_id>")
@require_auth
def delete_product_route(product_id: int):
    try:
        deleted = products_service.delete_product(g.current_user.id, product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ForbiddenError as e:
        return {"error": str(e)}, 403
    except Exception:
        current_app.logger.exception("Failed to delete product %s", product_id)
        return {"error": "Internal server error"}, 500

    return {"ok": True, "product": deleted}
