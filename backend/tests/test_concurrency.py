# Overview: Pytest coverage for concurrent confirmation and invoice numbering.

"""
Concurrency Tests

Real threads against a file-backed SQLite database (an in-memory database
cannot be shared across connections). Each worker runs in its own app
context and therefore its own SQLAlchemy session.

Verifies:
1. Concurrent confirmations of one invoice: exactly one succeeds, stock is
   deducted exactly once
2. Concurrent draft creation never hands out the same invoice number
3. Lock timeouts are retried and logged; business errors are not
"""

import logging
import threading

import pytest
from sqlalchemy.exc import OperationalError

from stockbill import create_app
from stockbill.extensions import db
from stockbill.models import Invoice, InvoiceSequence, Product, User
from stockbill.services import invoice_service, lifecycle_service
from stockbill.services.concurrency import run_with_retry
from stockbill.services.document_service import allocate_sequence
from stockbill.validation import ConflictError

WORKERS = 5


@pytest.fixture
def file_app(tmp_path, password_hash):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30}},
    })
    with app.app_context():
        db.create_all()
        owner = User(name="Owner", email="owner@example.com", password_hash=password_hash)
        db.session.add(owner)
        db.session.commit()
        product = Product(
            owner_id=owner.id, name="Widget", barcode="1", price_cents=1000, quantity=100,
        )
        db.session.add(product)
        db.session.commit()
        app.config["TEST_OWNER_ID"] = owner.id
        app.config["TEST_PRODUCT_ID"] = product.id

    yield app

    with app.app_context():
        db.drop_all()
        db.engine.dispose()


def _run_workers(app, target):
    barrier = threading.Barrier(WORKERS)
    results = []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            barrier.wait()
            try:
                outcome = target()
            except Exception as exc:
                outcome = exc
            finally:
                db.session.remove()
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(WORKERS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results


def test_concurrent_confirmation_deducts_once(file_app):
    owner_id = file_app.config["TEST_OWNER_ID"]
    product_id = file_app.config["TEST_PRODUCT_ID"]

    with file_app.app_context():
        invoice_id = invoice_service.create_draft_invoice(owner_id, items=[(product_id, 7)]).id

    results = _run_workers(
        file_app,
        lambda: lifecycle_service.confirm_invoice(owner_id, invoice_id).id,
    )

    successes = [r for r in results if r == invoice_id]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == WORKERS - 1
    assert all(isinstance(f, ConflictError) for f in failures), failures

    with file_app.app_context():
        assert db.session.get(Product, product_id).quantity == 93
        assert db.session.get(Invoice, invoice_id).status == "confirmed"


def test_concurrent_drafts_get_unique_numbers(file_app):
    owner_id = file_app.config["TEST_OWNER_ID"]
    product_id = file_app.config["TEST_PRODUCT_ID"]

    with file_app.app_context():
        # Counter row exists before the race starts
        invoice_service.create_draft_invoice(owner_id, items=[(product_id, 1)])

    results = _run_workers(
        file_app,
        lambda: invoice_service.create_draft_invoice(owner_id, items=[(product_id, 1)]).invoice_number,
    )

    errors = [r for r in results if isinstance(r, Exception)]
    assert not errors, errors
    assert len(set(results)) == WORKERS

    with file_app.app_context():
        numbers = [n for (n,) in db.session.query(Invoice.invoice_number).all()]
        assert len(numbers) == len(set(numbers)) == WORKERS + 1


def _locked(calls, fail_times):
    def op():
        calls.append(1)
        if len(calls) <= fail_times:
            raise OperationalError("UPDATE products", {}, Exception("database is locked"))
        return "done"
    return op


def test_retry_logs_each_attempt(db_session, caplog):
    calls = []

    with caplog.at_level(logging.WARNING):
        assert run_with_retry(_locked(calls, 2), label="Confirm invoice 7", backoff_base=0) == "done"

    assert len(calls) == 3
    messages = [r.getMessage() for r in caplog.records if "Confirm invoice 7" in r.getMessage()]
    assert messages == [
        "Confirm invoice 7 hit OperationalError on attempt 1/3, retrying",
        "Confirm invoice 7 hit OperationalError on attempt 2/3, retrying",
    ]


def test_retry_gives_up_after_last_attempt(db_session, caplog):
    calls = []

    with caplog.at_level(logging.WARNING):
        with pytest.raises(OperationalError):
            run_with_retry(_locked(calls, 5), label="Print invoice 9", attempts=2, backoff_base=0)

    assert len(calls) == 2
    errors = [r.getMessage() for r in caplog.records if r.levelno == logging.ERROR]
    assert "Print invoice 9 gave up after 2 attempts: OperationalError" in errors


def test_business_errors_are_not_retried(db_session):
    calls = []

    def op():
        calls.append(1)
        raise ConflictError("already confirmed")

    with pytest.raises(ConflictError):
        run_with_retry(op, backoff_base=0)
    assert calls == [1]


def test_first_allocation_creates_the_counter(db_session):
    assert allocate_sequence("owner:42") == 1
    assert allocate_sequence("owner:42") == 2
    assert allocate_sequence("global") == 1
    assert db_session.query(InvoiceSequence.next_number).filter_by(scope_key="owner:42").scalar() == 3
