from datetime import timedelta

import manage
from config import Settings
from database import ORDERS, PRODUCTS, USERS, utcnow
from seed import SAMPLE_PRODUCTS, seed_database


def test_seed_fills_empty_collections(store, accounts):
    result = seed_database(store, bcrypt_rounds=4)

    assert result == {"products": len(SAMPLE_PRODUCTS), "users": 2}
    assert store[PRODUCTS].count_documents({"is_active": True}) == len(SAMPLE_PRODUCTS)
    assert store[USERS].find_one({"email": "admin@ecommerce.com"})["role"] == "admin"
    assert accounts.login("john.doe@ecommerce.com", "User123!")["role"] == "user"


def test_seed_leaves_existing_data_alone(store):
    seed_database(store, bcrypt_rounds=4)

    assert seed_database(store, bcrypt_rounds=4) == {"products": 0, "users": 0}
    assert store[PRODUCTS].count_documents({}) == len(SAMPLE_PRODUCTS)


def test_reconcile_command(store, make_product, capsys, monkeypatch):
    product_id = make_product(stock=5)
    store.create_document(
        ORDERS,
        {
            "user_id": "someone",
            "items": [{"product_id": product_id, "quantity": 1}],
            "reserved": [],
            "inventory_committed": False,
            "cart_cleared": False,
            "created_at": utcnow() - timedelta(hours=2),
        },
    )
    monkeypatch.setattr(manage, "open_store", lambda settings: store)

    manage.main(["reconcile", "--minutes", "30"])

    assert "Rolled back 1 checkouts" in capsys.readouterr().out


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("DATABASE_NAME", "shop")
    monkeypatch.setenv("TAX_RATE", "0.1")
    monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test")

    settings = Settings.from_env()

    assert settings.database_name == "shop"
    assert settings.tax_rate == 0.1
    assert settings.cors_origins == ["http://a.test", "http://b.test"]
    assert settings.free_shipping_threshold == 100.0
