import os

os.environ.setdefault("DATABASE_URL", "mongodb://localhost:27017")
os.environ.setdefault("API_KEY", "test-key")

import pytest
from mongomock_motor import AsyncMongoMockClient

import database
from cart import CartReconciler
from cart_store import CartStore
from catalog import ProductCatalog, ProductGateway
from local_store import LocalStore
from notifications import NotificationCenter
from schemas import Product


@pytest.fixture
def db():
    mock_db = AsyncMongoMockClient()["angotech_test"]
    database._db = mock_db
    yield mock_db
    database._db = None


@pytest.fixture
def notifications():
    # Zero duration: messages stay until replaced, no timers.
    return NotificationCenter(default_duration=0)


@pytest.fixture
def catalog(db, notifications):
    return ProductCatalog(ProductGateway(), notifications)


def make_product(id="A", stock=10, price=1000.0, name=None, category="Audio"):
    return Product(id=id, name=name or f"Produto {id}", price=price, category=category, stock=stock)


@pytest.fixture
def products():
    return {
        "A": make_product("A", stock=10, price=1000),
        "B": make_product("B", stock=10, price=250),
        "P1": make_product("P1", stock=5, price=1000, name="Smartphone X Pro", category="Smartphones"),
    }


@pytest.fixture
def loaded_catalog(catalog, products):
    catalog.products = list(products.values())
    catalog.loaded = True
    return catalog


@pytest.fixture
def local():
    return LocalStore()


@pytest.fixture
def cart(loaded_catalog, local, notifications, db):
    return CartReconciler(
        CartStore(),
        local,
        loaded_catalog,
        notifications,
        upsert_delay=0.05,
        remove_delay=0.02,
        clear_delay=0.02,
    )
