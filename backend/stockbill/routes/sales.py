# Overview: Flask API routes for sales analytics; read-only views over confirmed and printed invoices.

# backend/stockbill/routes/sales.py
"""
Sales routes.

Query params shared by list and summary:
- start_date / end_date: YYYY-MM-DD (business timezone day) or ISO-8601 timestamp.
  end_date is inclusive through the end of that day.

List only:
- sortBy: newest (default) | oldest | highestAmount | lowestAmount
- q: invoice number substring
"""
from flask import Blueprint, request, g

from ..services import sales_service
from ..services.ownership_service import NotFoundError
from ..validation import ValidationError
from ..decorators import require_auth

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
@require_auth
def list_sales_route():
    try:
        rows = sales_service.list_sales(
            g.current_user.id,
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
            sort_by=request.args.get("sortBy"),
            q=request.args.get("q"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400

    return {"sales": [inv.to_dict() for inv in rows], "count": len(rows)}


@sales_bp.get("/summary")
@require_auth
def sales_summary_route():
    try:
        analytics = sales_service.sales_summary(
            g.current_user.id,
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400

    return {"analytics": analytics}


@sales_bp.get("/search/<path:invoice_number>")
@require_auth
def find_sale_route(invoice_number: str):
    try:
        invoice = sales_service.find_sale_by_number(g.current_user.id, invoice_number)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return {"invoice": invoice.to_dict()}
