"""Storefront database management CLI.

Usage:
    python manage.py ensure-indexes        # Create collection indexes
    python manage.py seed                  # Load sample products and users
    python manage.py reconcile --minutes 15  # Repair interrupted checkouts
"""

import argparse
import sys
from datetime import timedelta

from config import Settings
from database import Store
from logging_config import configure_logging
from orders import OrderEngine
from seed import seed_database


def open_store(settings: Settings) -> Store:
    store = Store(settings.database_url, settings.database_name, settings.store_timeout_ms)
    return store.open()


def ensure_indexes(settings: Settings) -> None:
    store = open_store(settings)
    try:
        store.ensure_indexes()
        print(f"Indexes ready on {settings.database_name}.")
    finally:
        store.close()


def seed(settings: Settings) -> None:
    store = open_store(settings)
    try:
        store.ensure_indexes()
        result = seed_database(store, bcrypt_rounds=settings.bcrypt_rounds)
        print(f"Seeded {result['products']} products and {result['users']} users.")
    finally:
        store.close()


def reconcile(settings: Settings, minutes: int) -> None:
    store = open_store(settings)
    try:
        result = OrderEngine(store, settings).reconcile(timedelta(minutes=minutes))
        print(f"Rolled back {result['rolled_back']} checkouts, cleared {result['carts_cleared']} carts.")
    finally:
        store.close()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Storefront database management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("ensure-indexes", help="Create collection indexes")
    subparsers.add_parser("seed", help="Load sample products, an admin and a regular user")

    reconcile_parser = subparsers.add_parser("reconcile", help="Repair checkouts interrupted part-way")
    reconcile_parser.add_argument(
        "--minutes",
        type=int,
        default=15,
        help="Only touch orders older than this many minutes (default: 15)",
    )

    args = parser.parse_args(argv)
    configure_logging()
    settings = Settings.from_env()

    if args.command == "ensure-indexes":
        ensure_indexes(settings)
    elif args.command == "seed":
        seed(settings)
    elif args.command == "reconcile":
        reconcile(settings, args.minutes)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
