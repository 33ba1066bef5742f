"""
Pytest fixtures for pharmacy POS backend tests.

Provides test database setup, branch/user/catalog factories, and test client.
"""

from datetime import timedelta

import pytest
from pharmapos import create_app
from pharmapos.extensions import db
from pharmapos.models import Branch, User, Product, Batch
from pharmapos.models.auth import ROLE_ADMIN, ROLE_PHARMACIST, ROLE_CASHIER, ROLE_ACCOUNTANT
from pharmapos.services.auth_service import hash_password
from pharmapos.time_utils import utcnow

PASSWORD = "Password123!"

# bcrypt at full cost makes every fixture user take ~250ms
_PASSWORD_HASH = None


def _password_hash() -> str:
    global _PASSWORD_HASH
    if _PASSWORD_HASH is None:
        _PASSWORD_HASH = hash_password(PASSWORD, rounds=4)
    return _PASSWORD_HASH


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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


@pytest.fixture(scope='function')
def branch(db_session):
    branch = Branch(name="Main Branch", code="MAIN", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def other_branch(db_session):
    branch = Branch(name="Second Branch", code="SECOND", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


def make_user(db_session, username: str, role: str, branch_id: int | None) -> User:
    user = User(
        username=username,
        name=username.title(),
        email=f"{username}@pharmapos.test",
        password_hash=_password_hash(),
        role=role,
        branch_id=branch_id,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin(db_session, branch):
    return make_user(db_session, "admin", ROLE_ADMIN, branch.id)


@pytest.fixture(scope='function')
def pharmacist(db_session, branch):
    return make_user(db_session, "pharmacist", ROLE_PHARMACIST, branch.id)


@pytest.fixture(scope='function')
def cashier(db_session, branch):
    return make_user(db_session, "cashier", ROLE_CASHIER, branch.id)


@pytest.fixture(scope='function')
def accountant(db_session, branch):
    return make_user(db_session, "accountant", ROLE_ACCOUNTANT, branch.id)


def make_product(db_session, barcode: str = "6001234500011", name: str = "Paracetamol 500mg",
                 category: str = "Analgesics", reorder_level: int = 10) -> Product:
    product = Product(barcode=barcode, name=name, category=category, reorder_level=reorder_level)
    db_session.add(product)
    db_session.commit()
    return product


def make_batch(db_session, product: Product, branch: Branch, *, quantity: int, days_to_expiry: int,
               selling_price_cents: int = 500, cost_price_cents: int = 300,
               batch_number: str | None = None) -> Batch:
    """Seed a batch directly (no movement); expiry is relative to now."""
    batch = Batch(
        product_id=product.id,
        branch_id=branch.id,
        batch_number=batch_number or f"B-{product.id}-{days_to_expiry}",
        expiry_date=utcnow() + timedelta(days=days_to_expiry),
        quantity=quantity,
        initial_quantity=quantity,
        cost_price_cents=cost_price_cents,
        selling_price_cents=selling_price_cents,
    )
    db_session.add(batch)
    db_session.commit()
    return batch


@pytest.fixture(scope='function')
def product(db_session):
    return make_product(db_session)


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, admin.username))


@pytest.fixture(scope='function')
def pharmacist_headers(client, pharmacist):
    return auth_headers(get_auth_token(client, pharmacist.username))


@pytest.fixture(scope='function')
def cashier_headers(client, cashier):
    return auth_headers(get_auth_token(client, cashier.username))


@pytest.fixture(scope='function')
def accountant_headers(client, accountant):
    return auth_headers(get_auth_token(client, accountant.username))
