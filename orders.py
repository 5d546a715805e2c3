"""
Order engine

place_order() turns a user's cart into an immutable order:

1. load the (pruned) cart, failing with EmptyCart when it has no lines
2. re-check every line against a fresh read of product stock
3. compute subtotal, tax, shipping and total
4. claim the cart so a concurrent checkout of the same cart loses
5. insert the order record
6. atomically decrement stock line by line ("only if stock >= qty"); if any
   line loses a race, restore what was taken, delete the record and fail
7. take the ordered lines out of the cart; lines added since the claim stay

Steps 1-3 have no side effects. Steps 5-7 run in that order, and the order
document records how far it got (`reserved`, `inventory_committed`,
`cart_cleared`) so that reconcile() can repair a checkout interrupted by a
crash.
"""

import secrets
from datetime import timedelta
from typing import Any, Dict, List, Optional

import structlog
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from carts import CartEngine
from catalog import Catalog
from config import Settings
from database import ORDERS, Store, as_utc, serialize_doc, to_object_id, utcnow
from errors import Conflict, EmptyCart, Forbidden, InsufficientStock, InvalidArgument, NotFound
from schemas import ORDER_STATUSES

logger = structlog.get_logger(__name__)

TRANSITIONS = {
    "pending": ("processing", "cancelled"),
    "processing": ("shipped", "cancelled"),
    "shipped": ("delivered",),
    "delivered": (),
    "cancelled": (),
}

BOOKKEEPING_FIELDS = ("reserved", "inventory_committed", "cart_cleared")

NEWEST_FIRST = [("created_at", DESCENDING), ("_id", ASCENDING)]


def compute_charges(subtotal: float, settings: Settings) -> Dict[str, float]:
    subtotal = round(subtotal, 2)
    tax = round(subtotal * settings.tax_rate, 2)
    shipping = 0.0 if subtotal > settings.free_shipping_threshold else settings.flat_shipping_fee
    return {
        "subtotal": subtotal,
        "tax": tax,
        "shipping": shipping,
        "total": round(subtotal + tax + shipping, 2),
    }


def order_number() -> str:
    return f"ORD-{utcnow():%Y%m%d}-{secrets.token_hex(3).upper()}"


def present(order: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    return serialize_doc(order, exclude=BOOKKEEPING_FIELDS)


class OrderEngine:
    def __init__(self, store: Store, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or Settings()
        self.catalog = Catalog(store)
        self.carts = CartEngine(store, self.catalog)

    @property
    def orders(self):
        return self.store[ORDERS]

    # Checkout

    def place_order(self, user_id: str, shipping_address: Dict[str, Any]) -> Dict[str, Any]:
        cart, _ = self.carts.load(user_id)
        items = cart.get("items", [])
        if not items:
            raise EmptyCart("Cart is empty")

        products = self.catalog.find_many([item["product_id"] for item in items])
        for item in items:
            product = products.get(item["product_id"])
            if product is None or item["quantity"] > product.get("stock", 0):
                name = product["name"] if product else item["product_id"]
                raise InsufficientStock(f"Insufficient stock for {name}")

        charges = compute_charges(cart["total"], self.settings)
        lines = [self._snapshot(item, products[item["product_id"]]) for item in items]

        self.carts.claim(cart)

        order_id = self.store.create_document(
            ORDERS,
            {
                "order_number": order_number(),
                "user_id": user_id,
                "items": lines,
                "shipping_address": shipping_address,
                **charges,
                "status": "pending",
                "reserved": [],
                "inventory_committed": False,
                "cart_cleared": False,
            },
        )
        oid = to_object_id(order_id)
        logger.info("Order created", order_id=order_id, user_id=user_id, total=charges["total"])

        self._commit_stock(oid, lines)
        # stock is taken from here on, so the order stands even if the cart write fails
        cleared = self.carts.settle(cart, lines)
        order = self.orders.find_one_and_update(
            {"_id": oid}, {"$set": {"cart_cleared": cleared}}, return_document=ReturnDocument.AFTER
        )
        logger.info("Order placed", order_id=order_id, order_number=order["order_number"])
        return present(order)

    @staticmethod
    def _snapshot(item: Dict[str, Any], product: Dict[str, Any]) -> Dict[str, Any]:
        images = product.get("images") or []
        return {
            "product_id": item["product_id"],
            "name": product["name"],
            "price": item["price"],
            "quantity": item["quantity"],
            "image": images[0]["url"] if images else None,
        }

    def _commit_stock(self, oid, lines: List[Dict[str, Any]]) -> None:
        reserved = []
        for line in lines:
            if not self.catalog.reserve_stock(line["product_id"], line["quantity"]):
                logger.warning(
                    "Stock race lost, rolling back order",
                    order_id=str(oid),
                    product_id=line["product_id"],
                )
                for taken in reserved:
                    self.catalog.release_stock(taken["product_id"], taken["quantity"])
                self.orders.delete_one({"_id": oid})
                raise InsufficientStock(f"Insufficient stock for {line['name']}")
            reserved.append(line)
            self.orders.update_one({"_id": oid}, {"$push": {"reserved": line["product_id"]}})
        self.orders.update_one({"_id": oid}, {"$set": {"inventory_committed": True, "updated_at": utcnow()}})

    # Reads

    def _find(self, order_id: str) -> Dict[str, Any]:
        oid = to_object_id(order_id)
        order = self.store.get_document(ORDERS, {"_id": oid}) if oid else None
        if not order:
            raise NotFound("Order not found")
        return order

    def get(self, order_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
        order = self._find(order_id)
        if order["user_id"] != str(user["_id"]) and user.get("role") != "admin":
            raise Forbidden("Not authorized to access this order")
        return present(order)

    def list_for_user(self, user_id: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        docs, pagination = self.store.paginate(ORDERS, {"user_id": user_id}, page, limit, NEWEST_FIRST)
        return {"orders": [present(o) for o in docs], "pagination": pagination}

    def list_all(self, page: int = 1, limit: int = 20, status: Optional[str] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if status:
            if status not in ORDER_STATUSES:
                raise InvalidArgument(f"Status must be one of: {', '.join(ORDER_STATUSES)}")
            query["status"] = status
        docs, pagination = self.store.paginate(ORDERS, query, page, limit, NEWEST_FIRST)
        return {"orders": [present(o) for o in docs], "pagination": pagination}

    # Status

    def update_status(self, order_id: str, status: str) -> Dict[str, Any]:
        if status not in ORDER_STATUSES:
            raise InvalidArgument(f"Status must be one of: {', '.join(ORDER_STATUSES)}")
        order = self._find(order_id)
        current = order["status"]
        if status not in TRANSITIONS[current]:
            raise InvalidArgument(f"Cannot change order status from {current} to {status}")
        # applies only if the status is still the one checked above
        updated = self.orders.find_one_and_update(
            {"_id": order["_id"], "status": current},
            {"$set": {"status": status, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise Conflict("Order status changed concurrently, please retry")
        logger.info("Order status updated", order_id=order_id, previous=current, status=status)
        return present(updated)

    # Repair

    def _interrupted(self, query: Dict[str, Any], cutoff) -> List[Dict[str, Any]]:
        return [order for order in self.orders.find(query) if as_utc(order["created_at"]) < cutoff]

    def reconcile(self, stale_after: timedelta = timedelta(minutes=15)) -> Dict[str, int]:
        """Finish or undo checkouts that stopped part-way, older than stale_after."""
        cutoff = utcnow() - stale_after
        released = 0
        for order in self._interrupted({"inventory_committed": False}, cutoff):
            quantities = {line["product_id"]: line["quantity"] for line in order["items"]}
            for product_id in order.get("reserved", []):
                self.catalog.release_stock(product_id, quantities[product_id])
            self.orders.delete_one({"_id": order["_id"]})
            logger.warning("Rolled back interrupted checkout", order_id=str(order["_id"]))
            released += 1

        cleared = 0
        for order in self._interrupted({"inventory_committed": True, "cart_cleared": False}, cutoff):
            try:
                self.carts.remove_lines(order["user_id"], order["items"])
            except Conflict:
                logger.warning("Cart busy, leaving checkout for the next pass", order_id=str(order["_id"]))
                continue
            self.orders.update_one({"_id": order["_id"]}, {"$set": {"cart_cleared": True}})
            logger.warning("Cleared cart of interrupted checkout", order_id=str(order["_id"]))
            cleared += 1

        return {"rolled_back": released, "carts_cleared": cleared}
