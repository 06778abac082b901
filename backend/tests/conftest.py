"""
Pytest fixtures for crediario backend tests.

Provides test database setup, catalog/customer fixtures, and test client.
"""

from datetime import timedelta

import pytest
from crediario import create_app
from crediario.extensions import db
from crediario.models import Customer, Order, Product
from crediario.time_utils import utcnow


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
def product(db_session):
    """Product with 20 units at R$ 50,00."""
    product = Product(sku="TV-001", name="Smart TV", price_cents=5000, stock_quantity=20)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def low_stock_product(db_session):
    """Product with only 3 units."""
    product = Product(sku="FAN-001", name="Fan", price_cents=1999, stock_quantity=3)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Maria Souza", phone="+55 11 90000-0001")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def other_customer(db_session):
    customer = Customer(name="João Lima")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def order(db_session, customer):
    """PENDING order of R$ 200,00 for customer."""
    order = Order(
        order_number="ORD-0001",
        customer_id=customer.id,
        customer_name=customer.name,
        total_cents=20000,
        payment_method="CREDIT",
    )
    db_session.add(order)
    db_session.commit()
    return order


@pytest.fixture(scope='function')
def next_week():
    return utcnow() + timedelta(days=7)
