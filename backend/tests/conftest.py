"""
Pytest fixtures for shop ledger backend tests.

Provides an in-memory database, per-test cleanup, the test client and small
factories for products and parties.
"""

from decimal import Decimal

import pytest

from shopledger import create_app
from shopledger.extensions import db
from shopledger.models import Batch, Product, new_id
from shopledger.services import ledger_service
from shopledger.services.concurrency import run_command
from shopledger.services.inventory_service import save_product


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BASE_CURRENCY': 'AFN',
        'COMMAND_RETRY_ATTEMPTS': 1,
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
        db.session.expunge_all()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture
def make_product(db_session):
    """
    Store a product with explicit batches.

    Each batch tuple: (lot_number, quantity, unit_cost, purchase_date, expiry_date).
    """
    def _make(name="Paracetamol", sale_price="20", batches=()):
        product = Product(
            id=new_id(),
            name=name,
            sale_price=Decimal(sale_price),
            batches=[
                Batch(
                    id=new_id(),
                    lot_number=lot,
                    quantity=qty,
                    unit_cost=Decimal(str(cost)),
                    purchase_date=purchased,
                    expiry_date=expires,
                )
                for lot, qty, cost, purchased, expires in batches
            ],
        )
        run_command(lambda: save_product(product), "test product")
        return product

    return _make


@pytest.fixture
def make_customer(db_session):
    def _make(name="Ahmad", **extra):
        return ledger_service.create_party("customer", {"name": name, **extra})
    return _make


@pytest.fixture
def make_supplier(db_session):
    def _make(name="Kabul Pharma", **extra):
        return ledger_service.create_party("supplier", {"name": name, **extra})
    return _make


@pytest.fixture
def make_employee(db_session):
    def _make(name="Karim", monthly_salary="5000", **extra):
        return ledger_service.create_party("employee", {"name": name, "monthly_salary": monthly_salary, **extra})
    return _make
