# Overview: Pytest coverage for draft invoice creation, totals and invoice numbering.

"""
Draft Invoice Tests

Verifies:
1. Totals: subtotal from snapshotted prices, tax rounded half-up, total = subtotal + tax
2. Draft creation never changes product quantities
3. Availability is checked against the cumulative quantity per product
4. Invoice numbers are INV-YYYYMM-NNNNN and strictly increasing
"""

import re
from datetime import datetime

import pytest

from stockbill.extensions import db
from stockbill.models import Invoice, Product
from stockbill.services import invoice_service
from stockbill.services.document_service import format_invoice_number, sequence_scope_key
from stockbill.services.inventory_service import InsufficientStockError
from stockbill.services.ownership_service import ForbiddenError, NotFoundError
from stockbill.validation import ValidationError, parse_tax_rate, validate_invoice_request

NUMBER_RE = re.compile(r"^INV-\d{6}-\d{5,}$")


@pytest.fixture
def priced_products(db_session, user_a, make_product):
    return (
        make_product(user_a, name="Widget", price_cents=5000, quantity=10),
        make_product(user_a, name="Gadget", price_cents=3000, quantity=5),
    )


class TestTotals:
    def test_compute_totals(self):
        assert invoice_service.compute_totals([10000, 3000], 1000) == (13000, 1300, 14300)

    def test_zero_tax(self):
        assert invoice_service.compute_totals([999], 0) == (999, 0, 999)

    def test_draft_totals_via_api(self, client, headers_a, priced_products):
        widget, gadget = priced_products

        resp = client.post("/api/invoices", json={
            "items": [
                {"product_id": widget.id, "quantity": 2},
                {"productId": gadget.id, "quantity": 1},
            ],
            "tax_rate": 10,
            "notes": "counter sale",
        }, headers=headers_a)

        assert resp.status_code == 201
        invoice = resp.json["invoice"]
        assert invoice["status"] == "draft"
        assert invoice["subtotal"] == 130.0
        assert invoice["tax_rate"] == 10.0
        assert invoice["tax_amount"] == 13.0
        assert invoice["total"] == 143.0
        assert invoice["notes"] == "counter sale"
        assert NUMBER_RE.match(invoice["invoice_number"])
        assert [(i["product_name"], i["quantity"], i["unit_price"], i["subtotal"]) for i in invoice["items"]] == [
            ("Widget", 2, 50.0, 100.0),
            ("Gadget", 1, 30.0, 30.0),
        ]

    def test_oversized_tax_rate_is_rejected(self, client, db_session, headers_a, priced_products):
        widget, _ = priced_products
        resp = client.post("/api/invoices", json={
            "items": [{"product_id": widget.id, "quantity": 1}],
            "tax_rate": 1e30,
        }, headers=headers_a)
        assert resp.status_code == 400
        assert db_session.query(Invoice).count() == 0


class TestDraftCreation:
    def test_draft_does_not_touch_stock(self, db_session, user_a, priced_products):
        widget, gadget = priced_products

        invoice_service.create_draft_invoice(user_a.id, items=[(widget.id, 10), (gadget.id, 5)])

        db_session.expire_all()
        assert db_session.get(Product, widget.id).quantity == 10
        assert db_session.get(Product, gadget.id).quantity == 5

    def test_prices_are_snapshotted(self, db_session, user_a, priced_products):
        widget, _ = priced_products
        invoice = invoice_service.create_draft_invoice(user_a.id, items=[(widget.id, 1)])

        widget.price_cents = 9999
        widget.name = "Renamed"
        db_session.commit()

        db_session.expire_all()
        line = db_session.get(Invoice, invoice.id).lines[0]
        assert line.unit_price_cents == 5000
        assert line.product_name == "Widget"

    def test_insufficient_stock_at_draft(self, db_session, user_a, priced_products):
        _, gadget = priced_products
        with pytest.raises(InsufficientStockError) as exc_info:
            invoice_service.create_draft_invoice(user_a.id, items=[(gadget.id, 6)])

        assert exc_info.value.available == 5
        assert exc_info.value.requested == 6
        assert db_session.query(Invoice).count() == 0

    def test_cumulative_quantity_is_checked(self, db_session, user_a, priced_products):
        _, gadget = priced_products
        with pytest.raises(InsufficientStockError) as exc_info:
            invoice_service.create_draft_invoice(user_a.id, items=[(gadget.id, 3), (gadget.id, 3)])
        assert exc_info.value.requested == 6

    def test_insufficient_stock_response(self, client, headers_a, priced_products):
        _, gadget = priced_products
        resp = client.post("/api/invoices", json={
            "items": [{"product_id": gadget.id, "quantity": 9}],
        }, headers=headers_a)

        assert resp.status_code == 422
        assert resp.json["details"] == {
            "product_id": gadget.id,
            "product_name": "Gadget",
            "available": 5,
            "requested": 9,
        }

    def test_unknown_and_foreign_products(self, db_session, user_a, user_b, make_product):
        foreign = make_product(user_b)
        with pytest.raises(NotFoundError):
            invoice_service.create_draft_invoice(user_a.id, items=[(99999, 1)])
        with pytest.raises(ForbiddenError):
            invoice_service.create_draft_invoice(user_a.id, items=[(foreign.id, 1)])

    @pytest.mark.parametrize("payload", [
        {},
        {"items": []},
        {"items": [{"quantity": 1}]},
        {"items": [{"product_id": 1}]},
        {"items": [{"product_id": 1, "quantity": 0}]},
        {"items": [{"product_id": 1, "quantity": 1.5}]},
        {"items": [{"product_id": 1, "quantity": 1}], "tax_rate": 101},
        {"items": [{"product_id": 1, "quantity": 1}], "tax_rate": -5},
        {"items": [{"product_id": 1, "quantity": 1}], "tax_rate": "1e30"},
        {"items": [{"product_id": 1, "quantity": 10**30}]},
        {"items": [{"product_id": 10**30, "quantity": 1}]},
    ])
    def test_request_validation(self, payload):
        with pytest.raises(ValidationError):
            validate_invoice_request(payload)

    @pytest.mark.parametrize("raw,expected", [
        (None, 0),
        ("", 0),
        ("abc", 0),
        (10, 1000),
        ("8.25", 825),
        (0, 0),
        (100, 10000),
    ])
    def test_tax_rate_parsing(self, raw, expected):
        assert parse_tax_rate(raw) == expected


class TestInvoiceReads:
    def test_list_newest_first_and_status_filter(self, client, db_session, user_a, headers_a, priced_products):
        widget, _ = priced_products
        first = invoice_service.create_draft_invoice(user_a.id, items=[(widget.id, 1)])
        second = invoice_service.create_draft_invoice(user_a.id, items=[(widget.id, 1)])

        resp = client.get("/api/invoices", headers=headers_a)
        assert [i["id"] for i in resp.json["invoices"]] == [second.id, first.id]

        resp = client.get("/api/invoices?status=confirmed", headers=headers_a)
        assert resp.json["invoices"] == []

        assert client.get("/api/invoices?status=bogus", headers=headers_a).status_code == 400

    def test_get_ownership(self, client, db_session, user_a, headers_a, headers_b, priced_products):
        widget, _ = priced_products
        invoice = invoice_service.create_draft_invoice(user_a.id, items=[(widget.id, 1)])

        assert client.get(f"/api/invoices/{invoice.id}", headers=headers_a).status_code == 200
        assert client.get(f"/api/invoices/{invoice.id}", headers=headers_b).status_code == 403
        assert client.get("/api/invoices/99999", headers=headers_a).status_code == 404


class TestInvoiceNumbering:
    def test_format(self):
        assert format_invoice_number(datetime(2026, 10, 1), 42) == "INV-202610-00042"
        assert format_invoice_number(datetime(2026, 10, 1), 123456) == "INV-202610-123456"

    def test_numbers_strictly_increase(self, db_session, user_a, priced_products):
        widget, _ = priced_products
        numbers = [
            invoice_service.create_draft_invoice(user_a.id, items=[(widget.id, 1)]).invoice_number
            for _ in range(5)
        ]

        assert all(NUMBER_RE.match(n) for n in numbers)
        assert len(set(numbers)) == 5
        sequences = [int(n.rsplit("-", 1)[1]) for n in numbers]
        assert sequences == sorted(sequences)
        assert sequences == list(range(sequences[0], sequences[0] + 5))

    def test_period_is_current_month(self, db_session, user_a, priced_products):
        widget, _ = priced_products
        invoice = invoice_service.create_draft_invoice(user_a.id, items=[(widget.id, 1)])
        assert invoice.invoice_number.split("-")[1] == f"{invoice.created_at:%Y%m}"

    def test_global_scope_shares_sequence(self, db_session, user_a, user_b, make_product):
        a = make_product(user_a)
        b = make_product(user_b)
        first = invoice_service.create_draft_invoice(user_a.id, items=[(a.id, 1)]).invoice_number
        second = invoice_service.create_draft_invoice(user_b.id, items=[(b.id, 1)]).invoice_number
        assert int(second.rsplit("-", 1)[1]) == int(first.rsplit("-", 1)[1]) + 1

    def test_owner_scope(self, app, monkeypatch, db_session, user_a, user_b, make_product):
        monkeypatch.setitem(app.config, "INVOICE_NUMBER_SCOPE", "owner")
        assert sequence_scope_key(user_a.id) == f"owner:{user_a.id}"

        a = make_product(user_a)
        b = make_product(user_b)
        first = invoice_service.create_draft_invoice(user_a.id, items=[(a.id, 1)]).invoice_number
        second = invoice_service.create_draft_invoice(user_b.id, items=[(b.id, 1)]).invoice_number
        assert first.endswith("-00001")
        assert second.endswith("-00001")


def test_failed_draft_leaves_no_rows(db_session, user_a, make_product):
    product = make_product(user_a, quantity=1)
    with pytest.raises(InsufficientStockError):
        invoice_service.create_draft_invoice(user_a.id, items=[(product.id, 2)])
    assert db.session.query(Invoice).count() == 0
