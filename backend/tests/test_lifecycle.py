# Overview: Pytest coverage for invoice confirmation and printing.

"""
Invoice Lifecycle Tests

Verifies the draft -> confirmed -> printed state machine:
1. Confirmation deducts stock exactly once
2. Double confirmation is a conflict and changes nothing
3. A stock shortfall at confirmation rolls back every line (all-or-nothing)
4. Printing follows INVOICE_PRINT_POLICY (lenient vs strict)
"""

import pytest

from stockbill.models import Invoice, Product
from stockbill.models.invoices import STATUS_CONFIRMED, STATUS_DRAFT, STATUS_PRINTED
from stockbill.services import invoice_service, lifecycle_service
from stockbill.services.inventory_service import InsufficientStockError, deduct_stock
from stockbill.services.lifecycle_service import LifecycleError, can_transition
from stockbill.services.ownership_service import ForbiddenError, NotFoundError
from stockbill.validation import ConflictError, ValidationError


@pytest.fixture
def draft(db_session, user_a, make_product):
    widget = make_product(user_a, name="Widget", price_cents=5000, quantity=10)
    gadget = make_product(user_a, name="Gadget", price_cents=3000, quantity=5)
    invoice = invoice_service.create_draft_invoice(
        user_a.id, items=[(widget.id, 2), (gadget.id, 1)], tax_rate_bps=1000,
    )
    return invoice, widget, gadget


def _quantities(db_session, *products):
    db_session.expire_all()
    return [db_session.get(Product, p.id).quantity for p in products]


class TestTransitions:
    @pytest.mark.parametrize("from_status,to_status,policy,expected", [
        ("draft", "confirmed", "lenient", True),
        ("confirmed", "confirmed", "lenient", False),
        ("printed", "confirmed", "lenient", False),
        ("confirmed", "printed", "strict", True),
        ("printed", "printed", "strict", True),
        ("draft", "printed", "lenient", True),
        ("draft", "printed", "strict", False),
        ("confirmed", "draft", "lenient", False),
        ("printed", "draft", "lenient", False),
    ])
    def test_can_transition(self, from_status, to_status, policy, expected):
        assert can_transition(from_status, to_status, print_policy=policy) is expected

    def test_unknown_status(self):
        with pytest.raises(LifecycleError):
            can_transition("void", "printed")


class TestConfirm:
    def test_confirm_deducts_stock(self, db_session, user_a, draft):
        invoice, widget, gadget = draft

        confirmed = lifecycle_service.confirm_invoice(user_a.id, invoice.id)

        assert confirmed.status == STATUS_CONFIRMED
        assert confirmed.confirmed_at is not None
        assert confirmed.total_cents == 14300
        assert _quantities(db_session, widget, gadget) == [8, 4]

    def test_double_confirm_conflicts(self, db_session, user_a, draft):
        invoice, widget, gadget = draft
        lifecycle_service.confirm_invoice(user_a.id, invoice.id)

        with pytest.raises(ConflictError):
            lifecycle_service.confirm_invoice(user_a.id, invoice.id)

        assert _quantities(db_session, widget, gadget) == [8, 4]

    def test_shortfall_rolls_back_every_line(self, db_session, user_a, draft):
        invoice, widget, gadget = draft

        # Stock drifted below the second line's quantity after the draft
        gadget.quantity = 0
        db_session.commit()

        with pytest.raises(InsufficientStockError) as exc_info:
            lifecycle_service.confirm_invoice(user_a.id, invoice.id)

        assert exc_info.value.available == 0
        assert exc_info.value.requested == 1
        # The first line's deduction did not survive
        assert _quantities(db_session, widget, gadget) == [10, 0]
        assert db_session.get(Invoice, invoice.id).status == STATUS_DRAFT

    def test_confirm_after_restock(self, db_session, user_a, draft):
        invoice, widget, gadget = draft
        gadget.quantity = 0
        db_session.commit()
        with pytest.raises(InsufficientStockError):
            lifecycle_service.confirm_invoice(user_a.id, invoice.id)

        db_session.get(Product, gadget.id).quantity = 3
        db_session.commit()

        lifecycle_service.confirm_invoice(user_a.id, invoice.id)
        assert _quantities(db_session, widget, gadget) == [8, 2]

    def test_deleted_product_fails_confirmation(self, db_session, user_a, draft):
        invoice, widget, gadget = draft
        db_session.delete(db_session.get(Product, gadget.id))
        db_session.commit()

        with pytest.raises(NotFoundError):
            lifecycle_service.confirm_invoice(user_a.id, invoice.id)

        assert _quantities(db_session, widget) == [10]
        assert db_session.get(Invoice, invoice.id).status == STATUS_DRAFT

    def test_foreign_owner_cannot_confirm(self, db_session, user_b, draft):
        invoice, widget, _ = draft
        with pytest.raises(ForbiddenError):
            lifecycle_service.confirm_invoice(user_b.id, invoice.id)
        assert _quantities(db_session, widget) == [10]

    def test_confirm_route(self, client, db_session, headers_a, draft):
        invoice, widget, _ = draft

        resp = client.post(f"/api/invoices/{invoice.id}/confirm", headers=headers_a)
        assert resp.status_code == 200
        assert resp.json["invoice"]["status"] == "confirmed"

        resp = client.post(f"/api/invoices/{invoice.id}/confirm", headers=headers_a)
        assert resp.status_code == 409
        assert _quantities(db_session, widget) == [8]

    def test_confirm_route_shortfall(self, client, db_session, headers_a, draft):
        invoice, widget, gadget = draft
        widget.quantity = 1
        db_session.commit()

        resp = client.post(f"/api/invoices/{invoice.id}/confirm", headers=headers_a)
        assert resp.status_code == 422
        assert resp.json["details"]["product_id"] == widget.id
        assert resp.json["details"]["available"] == 1
        assert resp.json["details"]["requested"] == 2
        assert _quantities(db_session, widget, gadget) == [1, 5]

    def test_confirm_route_ownership(self, client, headers_a, headers_b, draft):
        invoice, _, _ = draft
        assert client.post(f"/api/invoices/{invoice.id}/confirm", headers=headers_b).status_code == 403
        assert client.post("/api/invoices/99999/confirm", headers=headers_a).status_code == 404


class TestPrint:
    def test_print_confirmed(self, db_session, user_a, draft):
        invoice, widget, _ = draft
        lifecycle_service.confirm_invoice(user_a.id, invoice.id)

        printed = lifecycle_service.print_invoice(user_a.id, invoice.id)
        assert printed.status == STATUS_PRINTED
        assert printed.printed_at is not None
        assert _quantities(db_session, widget) == [8]

    def test_reprint(self, db_session, user_a, draft):
        invoice, _, _ = draft
        lifecycle_service.confirm_invoice(user_a.id, invoice.id)
        lifecycle_service.print_invoice(user_a.id, invoice.id)
        assert lifecycle_service.print_invoice(user_a.id, invoice.id).status == STATUS_PRINTED

    def test_lenient_prints_draft_without_stock_change(self, app, monkeypatch, db_session, user_a, draft):
        monkeypatch.setitem(app.config, "INVOICE_PRINT_POLICY", "lenient")
        invoice, widget, gadget = draft

        printed = lifecycle_service.print_invoice(user_a.id, invoice.id)
        assert printed.status == STATUS_PRINTED
        assert _quantities(db_session, widget, gadget) == [10, 5]

        # A printed draft can never be confirmed afterwards
        with pytest.raises(LifecycleError):
            lifecycle_service.confirm_invoice(user_a.id, invoice.id)

    def test_strict_rejects_draft(self, app, monkeypatch, client, db_session, headers_a, draft):
        monkeypatch.setitem(app.config, "INVOICE_PRINT_POLICY", "strict")
        invoice, _, _ = draft

        resp = client.post(f"/api/invoices/{invoice.id}/print", headers=headers_a)
        assert resp.status_code == 409

        db_session.expire_all()
        assert db_session.get(Invoice, invoice.id).status == STATUS_DRAFT

    def test_strict_prints_confirmed(self, app, monkeypatch, client, headers_a, user_a, draft):
        monkeypatch.setitem(app.config, "INVOICE_PRINT_POLICY", "strict")
        invoice, _, _ = draft
        lifecycle_service.confirm_invoice(user_a.id, invoice.id)

        resp = client.post(f"/api/invoices/{invoice.id}/print", headers=headers_a)
        assert resp.status_code == 200
        assert resp.json["invoice"]["status"] == "printed"

    def test_print_ownership(self, client, headers_a, headers_b, draft):
        invoice, _, _ = draft
        assert client.post(f"/api/invoices/{invoice.id}/print", headers=headers_b).status_code == 403
        assert client.post("/api/invoices/99999/print", headers=headers_a).status_code == 404


class TestDeductStock:
    @pytest.mark.parametrize("amount", [0, -3])
    def test_non_positive_amount_is_a_validation_error(self, db_session, user_a, make_product, amount):
        product = make_product(user_a, quantity=5)

        with pytest.raises(ValidationError):
            deduct_stock(product, amount)

        assert _quantities(db_session, product) == [5]
