"""
Pytest fixtures for storeflow backend tests.

Provides test database setup and small factories for stores, variants and
stock.
"""

import pytest

from storeflow import create_app
from storeflow.config import TestConfig
from storeflow.extensions import db
from storeflow.models import ProductVariant, Store
from storeflow.services import inventory_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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
def make_store(db_session):
    """Factory: make_store("Taipei") -> Store."""
    def _make(name, code=None):
        store = Store(name=name, code=code)
        db_session.add(store)
        db_session.commit()
        return store
    return _make


@pytest.fixture(scope='function')
def make_variant(db_session):
    """Factory: make_variant("SKU-1", price=1000) -> ProductVariant."""
    def _make(sku, price=0, name=None):
        variant = ProductVariant(sku=sku, name=name or sku, price=price)
        db_session.add(variant)
        db_session.commit()
        return variant
    return _make


@pytest.fixture(scope='function')
def stock(db_session):
    """Put `quantity` units of a variant on hand at a store through the ledger."""
    def _stock(store, variant, quantity):
        return inventory_service.adjust(
            store_id=store.id,
            variant_id=variant.id,
            delta=quantity,
            reason="opening stock",
            type=inventory_service.TX_ADDITION,
        )
    return _stock


@pytest.fixture(scope='function')
def store_a(make_store):
    return make_store("Store A", code="A")


@pytest.fixture(scope='function')
def store_b(make_store):
    return make_store("Store B", code="B")


@pytest.fixture(scope='function')
def store_c(make_store):
    return make_store("Store C", code="C")


@pytest.fixture(scope='function')
def variant(make_variant):
    return make_variant("TEE-RED-M", price=50000, name="T-shirt red M")
