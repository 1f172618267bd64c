"""
Pytest fixtures for stockbook backend tests.

Provides the application with an in-memory database, a per-test clean
session, and small factories for products, customers and received stock.
"""

import pytest

from stockbook import create_app
from stockbook.config import TestingConfig
from stockbook.extensions import db
from stockbook.services import customers_service, inventory_service, products_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


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
def make_product(db_session):
    """Factory: create a product, defaulting to six lines per carton."""
    counter = {"n": 0}

    def _make(name=None, lines_per_carton=6, **kwargs):
        counter["n"] += 1
        return products_service.create_product(
            name=name or f"Product {counter['n']}",
            lines_per_carton=lines_per_carton,
            **kwargs,
        )

    return _make


@pytest.fixture(scope='function')
def receive(db_session):
    """Factory: receive stock for a product at a per-carton cost on a given day."""
    def _receive(product, quantity, cost_per_carton, on=None):
        return inventory_service.receive_stock(
            product_id=product.id,
            quantity=quantity,
            unit_cost_per_carton=cost_per_carton,
            received_on=on,
        )

    return _receive


@pytest.fixture(scope='function')
def customer(db_session):
    """Create a registered customer for credit and partial sales."""
    return customers_service.create_customer(name="Ama Mensah", phone="0200000000")
