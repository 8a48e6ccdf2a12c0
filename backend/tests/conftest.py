"""
Pytest fixtures for RetailPOS backend tests.

Provides test database setup, catalog/stock factories and an authenticated
test client.
"""

import pytest

from retailpos import create_app
from retailpos.extensions import db
from retailpos.models import Customer, InventoryRecord, Product, ProductVariant, Store
from retailpos.services import permission_service
from retailpos.services.auth_service import create_user
from retailpos.validation import parse_sale_request


TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'BCRYPT_ROUNDS': 4,
        'SALE_TIMEOUT_SECONDS': 30,
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
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def roles(db_session):
    return permission_service.ensure_default_roles()


@pytest.fixture(scope='function')
def store(db_session):
    store = Store(name="Main Street", code="MAIN", address="1 Main Street")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    store = Store(name="Harbour", code="HARB")
    db_session.add(store)
    db_session.commit()
    return store


def _make_user(username, role_name, store):
    return create_user(
        name=username.title(),
        username=username,
        email=f"{username}@retailpos.test",
        password=TEST_PASSWORD,
        role_name=role_name,
        store_id=store.id,
    )


@pytest.fixture(scope='function')
def cashier(db_session, roles, store):
    return _make_user("cashier", "cashier", store)


@pytest.fixture(scope='function')
def manager(db_session, roles, store):
    return _make_user("manager", "manager", store)


@pytest.fixture(scope='function')
def admin(db_session, roles, store):
    return _make_user("admin", "admin", store)


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Ada Lovelace", phone="555-0100", membership_type="gold")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: product with optional product-level stock and variants."""
    def _make(
        name="Widget",
        price_cents=1000,
        stock=None,
        tax_rate_bps=None,
        is_active=True,
        variants=None,
        sku=None,
    ):
        product = Product(
            name=name,
            sku=sku,
            price_cents=price_cents,
            cost_cents=(price_cents or 0) // 2,
            tax_rate_bps=tax_rate_bps,
            is_active=is_active,
            stock=stock,
        )
        for position, variant_price in enumerate(variants or []):
            product.variants.append(ProductVariant(
                position=position,
                name=f"{name} #{position}",
                price_cents=variant_price,
            ))
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def stock_in(db_session):
    """Factory: per-store inventory record for a product."""
    def _stock_in(product, store, quantity):
        record = InventoryRecord(
            product_id=product.id,
            store_id=store.id,
            quantity=quantity,
            batches=[],
            serial_numbers=[],
        )
        db_session.add(record)
        db_session.commit()
        return record

    return _stock_in


@pytest.fixture(scope='function')
def sale_request():
    """Factory: validated sale request from a JSON-style payload."""
    def _build(store, items, **extra):
        return parse_sale_request({"store_id": store.id, "items": items, **extra})

    return _build


def get_auth_token(client, username: str, password: str = TEST_PASSWORD) -> str:
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
def cashier_headers(client, cashier):
    return auth_headers(get_auth_token(client, cashier.username))


@pytest.fixture(scope='function')
def manager_headers(client, manager):
    return auth_headers(get_auth_token(client, manager.username))


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, admin.username))
