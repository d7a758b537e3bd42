"""
Pytest fixtures for stockbill backend tests.

Provides test database setup, two independent owners, bearer tokens and a
product factory.
"""

import pytest
from stockbill import create_app
from stockbill.extensions import db
from stockbill.models import User, Product
from stockbill.services.auth_service import hash_password
from stockbill.services.session_service import create_session

PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'INVOICE_PRINT_POLICY': 'lenient',
        'INVOICE_NUMBER_SCOPE': 'global',
        'BUSINESS_TIMEZONE': 'UTC',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt is slow on purpose; hash the shared test password once."""
    return hash_password(PASSWORD)


def _make_user(db_session, password_hash, name, email):
    user = User(name=name, email=email, password_hash=password_hash, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def user_a(db_session, password_hash):
    """First owner."""
    return _make_user(db_session, password_hash, "Owner A", "owner_a@example.com")


@pytest.fixture(scope='function')
def user_b(db_session, password_hash):
    """Second owner, used to prove isolation."""
    return _make_user(db_session, password_hash, "Owner B", "owner_b@example.com")


@pytest.fixture(scope='function')
def headers_a(user_a):
    _, token = create_session(user_id=user_a.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def headers_b(user_b):
    _, token = create_session(user_id=user_b.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(owner, name=..., price_cents=..., quantity=...)."""
    counter = {"n": 0}

    def _make(owner, *, name=None, barcode=None, price_cents=1000, quantity=20, low_stock_threshold=10):
        counter["n"] += 1
        product = Product(
            owner_id=owner.id,
            name=name or f"Product {counter['n']}",
            barcode=barcode or f"{4000000000000 + counter['n']}",
            price_cents=price_cents,
            quantity=quantity,
            low_stock_threshold=low_stock_threshold,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


def get_auth_token(client, email: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
