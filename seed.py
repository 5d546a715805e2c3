"""Sample catalog and accounts for local development."""

from typing import Any, Dict

import structlog

from accounts import Accounts
from catalog import Catalog
from database import PRODUCTS, USERS, Store
from schemas import ProductCreate, RegisterRequest

logger = structlog.get_logger(__name__)

SAMPLE_PRODUCTS = [
    {
        "name": "Wireless Bluetooth Headphones",
        "description": "Premium wireless headphones with active noise cancellation and 30-hour battery life.",
        "price": 199.99,
        "images": [{"url": "https://images.unsplash.com/photo-1505740420928-5e560c06d30e?w=800", "alt": "Headphones"}],
        "category": "Electronics",
        "brand": "AudioTech",
        "stock": 50,
        "sku": "AT-WH-001",
        "specifications": [
            {"name": "Battery Life", "value": "30 hours"},
            {"name": "Connectivity", "value": "Bluetooth 5.0"},
        ],
        "tags": ["wireless", "bluetooth", "headphones", "audio"],
    },
    {
        "name": "Smartphone Pro Max",
        "description": "Flagship smartphone with an advanced camera system and 5G connectivity.",
        "price": 999.99,
        "images": [{"url": "https://images.unsplash.com/photo-1511707171634-5f897ff02aa9?w=800", "alt": "Smartphone"}],
        "category": "Electronics",
        "brand": "TechCorp",
        "stock": 30,
        "sku": "TC-SP-002",
        "specifications": [{"name": "Display", "value": "6.7 inch OLED"}, {"name": "Storage", "value": "256GB"}],
        "tags": ["smartphone", "mobile", "5g", "camera"],
    },
    {
        "name": "Classic Cotton T-Shirt",
        "description": "Soft organic cotton crew-neck tee in a relaxed fit.",
        "price": 24.99,
        "images": [{"url": "https://images.unsplash.com/photo-1521572163474-6864f9cf17ab?w=800", "alt": "T-Shirt"}],
        "category": "Clothing",
        "brand": "BasicWear",
        "stock": 200,
        "sku": "BW-TS-003",
        "tags": ["cotton", "tshirt", "casual"],
    },
    {
        "name": "Smart Coffee Maker",
        "description": "Programmable coffee maker with a built-in burr grinder and app control.",
        "price": 149.99,
        "images": [{"url": "https://images.unsplash.com/photo-1495474472287-4d71bcdd2085?w=800", "alt": "Coffee Maker"}],
        "category": "Home",
        "brand": "BrewMaster",
        "stock": 25,
        "sku": "BM-CM-005",
        "specifications": [{"name": "Capacity", "value": "12 cups"}, {"name": "Connectivity", "value": "WiFi"}],
        "tags": ["coffee", "smart", "kitchen", "appliance"],
    },
    {
        "name": "Fitness Tracker Watch",
        "description": "Fitness tracker with heart rate monitoring, GPS and 7-day battery life.",
        "price": 199.99,
        "images": [{"url": "https://images.unsplash.com/photo-1523275335684-37898b6baf30?w=800", "alt": "Tracker"}],
        "category": "Sports",
        "brand": "FitTech",
        "stock": 80,
        "sku": "FT-FW-008",
        "specifications": [{"name": "Battery Life", "value": "7 days"}, {"name": "Water Rating", "value": "50m"}],
        "tags": ["fitness", "tracker", "watch", "health"],
    },
    {
        "name": "The Pragmatic Cookbook",
        "description": "Weeknight recipes built from a short list of pantry staples.",
        "price": 18.5,
        "category": "Books",
        "stock": 40,
        "sku": "BK-PC-010",
        "tags": ["cooking", "recipes"],
    },
]

ADMIN_USER = {
    "first_name": "Admin",
    "last_name": "User",
    "email": "admin@ecommerce.com",
    "password": "Admin123!",
}

REGULAR_USER = {
    "first_name": "John",
    "last_name": "Doe",
    "email": "john.doe@ecommerce.com",
    "password": "User123!",
}


def seed_database(store: Store, bcrypt_rounds: int = 12) -> Dict[str, Any]:
    """Insert the sample data into empty collections. Existing data is left alone."""
    catalog = Catalog(store)
    accounts = Accounts(store, bcrypt_rounds=bcrypt_rounds)

    products = 0
    if store[PRODUCTS].count_documents({}) == 0:
        for p in SAMPLE_PRODUCTS:
            catalog.create(ProductCreate(**p))
            products += 1

    users = 0
    if store[USERS].count_documents({}) == 0:
        accounts.register(RegisterRequest(**ADMIN_USER), role="admin")
        accounts.register(RegisterRequest(**REGULAR_USER))
        users = 2

    logger.info("Seeded database", products=products, users=users)
    return {"products": products, "users": users}
