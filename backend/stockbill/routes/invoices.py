# Overview: Flask API routes for invoice operations; parses input and returns JSON responses.

# backend/stockbill/routes/invoices.py
"""
Invoice routes: draft creation and the draft -> confirmed -> printed lifecycle.

OWNERSHIP: every route passes g.current_user.id as owner_id.

Error mapping:
- 400 ValidationError
- 403 ForbiddenError (invoice or product belongs to another user)
- 404 NotFoundError
- 409 ConflictError / LifecycleError (e.g. double confirmation)
- 422 InsufficientStockError, with available vs requested in "details"
"""
from flask import Blueprint, request, g, current_app

from ..services import invoice_service, lifecycle_service
from ..services.inventory_service import InsufficientStockError
from ..services.ownership_service import ForbiddenError, NotFoundError
from ..validation import ConflictError, ValidationError, validate_invoice_request
from ..decorators import require_auth

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _insufficient_stock_response(e: InsufficientStockError):
    return {"error": str(e), "details": e.details}, 422


@invoices_bp.get("")
@require_auth
def list_invoices_route():
    """Query params: status (draft | confirmed | printed, optional)."""
    try:
        rows = invoice_service.list_invoices(g.current_user.id, status=request.args.get("status"))
    except ValidationError as e:
        return {"error": str(e)}, 400

    return {"invoices": [inv.to_dict() for inv in rows], "count": len(rows)}


@invoices_bp.post("")
@require_auth
def create_invoice_route():
    """
    Create a draft invoice.

    Body:
        {"items": [{"product_id": 1, "quantity": 2}], "tax_rate": 10, "notes": "..."}

    Returns the computed invoice including its generated invoice number.
    Stock is not touched until confirmation.
    """
    try:
        req = validate_invoice_request(request.get_json(silent=True))
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        invoice = invoice_service.create_draft_invoice(
            g.current_user.id,
            items=req["items"],
            tax_rate_bps=req["tax_rate_bps"],
            notes=req["notes"],
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ForbiddenError as e:
        return {"error": str(e)}, 403
    except InsufficientStockError as e:
        return _insufficient_stock_response(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return {"error": "Internal server error"}, 500

    return {"invoice": invoice.to_dict()}, 201


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(g.current_user.id, invoice_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ForbiddenError as e:
        return {"error": str(e)}, 403

    return {"invoice": invoice.to_dict()}


@invoices_bp.post("/<int:invoice_id>/confirm")
@require_auth
def confirm_invoice_route(invoice_id: int):
    """Confirm a draft and deduct stock for every line, all or nothing."""
    try:
        invoice = lifecycle_service.confirm_invoice(g.current_user.id, invoice_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ForbiddenError as e:
        return {"error": str(e)}, 403
    except ConflictError as e:
        return {"error": str(e)}, 409
    except InsufficientStockError as e:
        return _insufficient_stock_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm invoice %s", invoice_id)
        return {"error": "Internal server error"}, 500

    return {"invoice": invoice.to_dict(), "message": "Invoice confirmed and stock updated"}


@invoices_bp.post("/<int:invoice_id>/print")
@require_auth
def print_invoice_route(invoice_id: int):
    try:
        invoice = lifecycle_service.print_invoice(g.current_user.id, invoice_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ForbiddenError as e:
        return {"error": str(e)}, 403
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to print invoice %s", invoice_id)
        return {"error": "Internal server error"}, 500

    return {"invoice": invoice.to_dict(), "message": "Invoice marked as printed"}
