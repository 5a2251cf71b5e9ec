"""
Pytest fixtures for PrintDesk backend tests.

Provides test database setup, reference data (company, branch, customers,
products), users per role, invoices and an authenticated test client.
"""

import pytest

from printdesk import create_app
from printdesk.extensions import db
from printdesk.services import catalog_service, invoice_service
from printdesk.services.auth_service import create_user


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
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


# =============================================================================
# REFERENCE DATA
# =============================================================================

@pytest.fixture(scope='function')
def company(db_session):
    return catalog_service.create_company(name="Colombo Print House", code="CPH")


@pytest.fixture(scope='function')
def other_company(db_session):
    return catalog_service.create_company(name="Kandy Press", code="KP")


@pytest.fixture(scope='function')
def branch(company):
    return catalog_service.create_branch(company_id=company.id, name="Main Branch", code="MAIN")


@pytest.fixture(scope='function')
def other_branch(other_company):
    return catalog_service.create_branch(company_id=other_company.id, name="Kandy", code="KDY")


@pytest.fixture(scope='function')
def customer(company):
    return catalog_service.create_customer(company_id=company.id, payload={"name": "Nimal Perera"})


@pytest.fixture(scope='function')
def vip_customer(company):
    return catalog_service.create_customer(
        company_id=company.id,
        payload={"name": "Ceylon Tea Co", "customer_type": "vip"},
    )


@pytest.fixture(scope='function')
def other_customer(other_company):
    return catalog_service.create_customer(company_id=other_company.id, payload={"name": "Sunil Silva"})


@pytest.fixture(scope='function')
def business_cards(company):
    """Rs. 100.00 per box, 500 g, 12% tax."""
    return catalog_service.create_product(
        company_id=company.id,
        payload={
            "name": "Business Cards (box)",
            "base_price_cents": 10_000,
            "weight_per_unit_grams": 500,
            "tax_rate_bps": 1_200,
        },
    )


@pytest.fixture(scope='function')
def flyer(company):
    """Rs. 50.00 per pack, 1 kg, no tax."""
    return catalog_service.create_product(
        company_id=company.id,
        payload={
            "name": "Flyer A5 (pack)",
            "base_price_cents": 5_000,
            "weight_per_unit_grams": 1_000,
            "tax_rate_bps": 0,
        },
    )


# =============================================================================
# USERS
# =============================================================================

def _make_user(company, branch, role):
    return create_user(
        username=f"{role}_user",
        email=f"{role}@cph.lk",
        password=PASSWORD,
        role=role,
        company_id=company.id,
        branch_id=branch.id,
    )


@pytest.fixture(scope='function')
def admin_user(company, branch):
    return _make_user(company, branch, "admin")


@pytest.fixture(scope='function')
def manager_user(company, branch):
    return _make_user(company, branch, "manager")


@pytest.fixture(scope='function')
def staff_user(company, branch):
    return _make_user(company, branch, "staff")


@pytest.fixture(scope='function')
def production_user(company, branch):
    return _make_user(company, branch, "production")


@pytest.fixture(scope='function')
def other_admin(other_company, other_branch):
    return create_user(
        username="kandy_admin",
        email="admin@kp.lk",
        password=PASSWORD,
        role="admin",
        company_id=other_company.id,
        branch_id=other_branch.id,
    )


# =============================================================================
# INVOICES
# =============================================================================

@pytest.fixture(scope='function')
def invoice(company, branch, customer, admin_user):
    """
    2 x Rs.100 (500 g each) + 1 x Rs.50 (1 kg), discount Rs.20, no tax.

    subtotal 250.00, weight 2 kg -> charge 300.00, total 530.00
    """
    return invoice_service.create_invoice(
        company_id=company.id,
        branch_id=branch.id,
        customer_id=customer.id,
        user_id=admin_user.id,
        items=[
            {"item_description": "Letterheads", "quantity": 2, "unit_price_cents": 10_000, "unit_weight_grams": 500},
            {"item_description": "Envelopes", "quantity": 1, "unit_price_cents": 5_000, "unit_weight_grams": 1_000},
        ],
        discount_amount_cents=2_000,
    )


# =============================================================================
# AUTH HELPERS
# =============================================================================

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
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, admin_user.username))


@pytest.fixture(scope='function')
def manager_headers(client, manager_user):
    return auth_headers(get_auth_token(client, manager_user.username))


@pytest.fixture(scope='function')
def staff_headers(client, staff_user):
    return auth_headers(get_auth_token(client, staff_user.username))


@pytest.fixture(scope='function')
def production_headers(client, production_user):
    return auth_headers(get_auth_token(client, production_user.username))


@pytest.fixture(scope='function')
def other_admin_headers(client, other_admin):
    return auth_headers(get_auth_token(client, other_admin.username))
