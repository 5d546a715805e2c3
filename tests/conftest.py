import os

import mongomock
import pytest
from bson import ObjectId

os.environ.setdefault("ENV", "test")

from accounts import Accounts  # noqa: E402
from auth import AccessControl  # noqa: E402
from carts import CartEngine  # noqa: E402
from catalog import Catalog  # noqa: E402
from config import Settings  # noqa: E402
from database import Store  # noqa: E402
from orders import OrderEngine  # noqa: E402
from schemas import ProductCreate, RegisterRequest  # noqa: E402


@pytest.fixture()
def settings():
    return Settings(jwt_secret="test-secret", bcrypt_rounds=4)


@pytest.fixture()
def store():
    """A fresh in-memory store per test."""
    s = Store(database_name="storefront_test", client=mongomock.MongoClient(tz_aware=True))
    s.open()
    s.ensure_indexes()
    yield s
    s.close()


@pytest.fixture()
def catalog(store):
    return Catalog(store)


@pytest.fixture()
def carts(store, catalog):
    return CartEngine(store, catalog)


@pytest.fixture()
def orders(store, settings):
    return OrderEngine(store, settings)


@pytest.fixture()
def accounts(store, settings):
    return Accounts(store, bcrypt_rounds=settings.bcrypt_rounds)


@pytest.fixture()
def access(store, settings):
    return AccessControl(store, settings.jwt_secret, settings.jwt_expire_days)


@pytest.fixture()
def user_id():
    return str(ObjectId())


@pytest.fixture()
def make_product(catalog):
    """Factory: create a product and return its id."""

    def _make(**overrides):
        data = {
            "name": "Desk Lamp",
            "description": "LED desk lamp with adjustable arm",
            "price": 20.0,
            "category": "Home",
            "stock": 10,
            "images": [{"url": "https://img.example.org/lamp.jpg"}],
        }
        data.update(overrides)
        return str(catalog.create(ProductCreate(**data))["_id"])

    return _make


@pytest.fixture()
def make_user(accounts):
    """Factory: register a user and return the stored document."""
    counter = {"n": 0}

    def _make(role="user", password="secret123", **overrides):
        counter["n"] += 1
        data = {
            "first_name": "Test",
            "last_name": f"User{counter['n']}",
            "email": f"user{counter['n']}@storefront.dev",
            "password": password,
        }
        data.update(overrides)
        return accounts.register(RegisterRequest(**data), role=role)

    return _make
