"""
Cart engine

One cart per user, created on first access. A line stores the product id, the
quantity and the unit price captured when the product was first added; the
cart total is always computed from those stored prices. Stock is always read
live from the product.

Every mutation is an optimistic read-modify-write: the write only applies if
the cart's `version` is still the one that was read. On a lost race the whole
mutation is re-run on a fresh read, so concurrent edits for one user never
drop an update. Each write also prunes lines whose product is gone or
inactive, keeping the stored total equal to the sum over active lines.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from catalog import Catalog
from database import CARTS, Store, serialize_doc, utcnow
from errors import Conflict, InsufficientStock, InvalidArgument, NotFound

logger = structlog.get_logger(__name__)

MAX_ATTEMPTS = 5

Items = List[Dict[str, Any]]


def cart_total(items: Items) -> float:
    return round(sum(item["price"] * item["quantity"] for item in items), 2)


def find_line(items: Items, product_id: str) -> Optional[Dict[str, Any]]:
    return next((item for item in items if item["product_id"] == product_id), None)


def subtract_lines(items: Items, ordered: Items) -> Items:
    """Take ordered quantities out of items, dropping lines that reach zero."""
    taken = {}
    for line in ordered:
        taken[line["product_id"]] = taken.get(line["product_id"], 0) + line["quantity"]
    kept = []
    for item in items:
        left = item["quantity"] - taken.get(item["product_id"], 0)
        if left > 0:
            kept.append(dict(item, quantity=left))
    return kept


def product_summary(product: Dict[str, Any]) -> Dict[str, Any]:
    images = product.get("images") or []
    return {
        "id": str(product["_id"]),
        "name": product.get("name"),
        "price": product.get("price"),
        "image": images[0]["url"] if images else None,
        "stock": product.get("stock", 0),
        "is_active": product.get("is_active", False),
    }


class CartEngine:
    def __init__(self, store: Store, catalog: Optional[Catalog] = None):
        self.store = store
        self.catalog = catalog or Catalog(store)

    @property
    def carts(self):
        return self.store[CARTS]

    # Storage

    def _find(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.store.get_document(CARTS, {"user_id": user_id})

    def _load(self, user_id: str) -> Dict[str, Any]:
        """Return the user's cart, creating an empty one if absent."""
        now = utcnow()
        try:
            return self.carts.find_one_and_update(
                {"user_id": user_id},
                {"$setOnInsert": {"items": [], "total": 0.0, "version": 0, "created_at": now, "updated_at": now}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # another request created it first
            return self._find(user_id)

    def _save(self, cart: Dict[str, Any], items: Items, total: float) -> bool:
        """Write items/total if nobody else wrote since cart was read."""
        now = utcnow()
        result = self.carts.update_one(
            {"_id": cart["_id"], "version": cart["version"]},
            {"$set": {"items": items, "total": total, "updated_at": now}, "$inc": {"version": 1}},
        )
        if result.matched_count != 1:
            return False
        cart.update(items=items, total=total, updated_at=now, version=cart["version"] + 1)
        return True

    def _prune(self, items: Items) -> Tuple[Items, Dict[str, Dict[str, Any]]]:
        products = self.catalog.find_many([item["product_id"] for item in items])
        kept = [item for item in items if item["product_id"] in products]
        return kept, products

    def _mutate(self, user_id: str, change: Callable[[Items], Items]) -> Tuple[Dict[str, Any], Dict[str, Dict[str, Any]]]:
        for attempt in range(1, MAX_ATTEMPTS + 1):
            cart = self._load(user_id)
            items = change([dict(item) for item in cart.get("items", [])])
            items, products = self._prune(items)
            if self._save(cart, items, cart_total(items)):
                return cart, products
            logger.info("Cart modified concurrently, retrying", user_id=user_id, attempt=attempt)
        raise Conflict("Cart was modified concurrently, please retry")

    def _present(self, cart: Dict[str, Any], products: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
        out = serialize_doc(cart, exclude=("version",))
        out["items"] = [
            dict(
                item,
                added_at=item["added_at"].isoformat() if item.get("added_at") else None,
                product=product_summary(products[item["product_id"]]) if item["product_id"] in products else None,
            )
            for item in cart.get("items", [])
        ]
        out["item_count"] = sum(item["quantity"] for item in cart.get("items", []))
        return out

    # Operations

    def load(self, user_id: str) -> Tuple[Dict[str, Any], Dict[str, Dict[str, Any]]]:
        """Return the raw pruned cart and its resolved products, persisting any prune."""
        for _ in range(MAX_ATTEMPTS):
            cart = self._load(user_id)
            stored = cart.get("items", [])
            items, products = self._prune(stored)
            total = cart_total(items)
            if len(items) == len(stored) and total == cart.get("total"):
                return cart, products
            if self._save(cart, items, total):
                logger.info("Pruned cart", user_id=user_id, dropped=len(stored) - len(items))
                return cart, products
        raise Conflict("Cart was modified concurrently, please retry")

    def get(self, user_id: str) -> Dict[str, Any]:
        return self._present(*self.load(user_id))

    def add_item(self, user_id: str, product_id: str, quantity: int = 1) -> Dict[str, Any]:
        if quantity < 1:
            raise InvalidArgument("Quantity must be at least 1")

        def change(items: Items) -> Items:
            product = self.catalog.find_active(product_id)
            if not product:
                raise NotFound("Product not found")
            stock = product.get("stock", 0)
            line = find_line(items, product_id)
            if line:
                new_quantity = line["quantity"] + quantity
                if new_quantity > stock:
                    raise InsufficientStock(f"Cannot add more items. Only {stock} available in stock")
                line["quantity"] = new_quantity
            else:
                if quantity > stock:
                    raise InsufficientStock(f"Only {stock} items available in stock")
                items.append(
                    {
                        "product_id": product_id,
                        "quantity": quantity,
                        "price": product["price"],
                        "added_at": utcnow(),
                    }
                )
            return items

        cart, products = self._mutate(user_id, change)
        logger.info("Item added to cart", user_id=user_id, product_id=product_id, quantity=quantity)
        return self._present(cart, products)

    def update_item(self, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
        if quantity < 0:
            raise InvalidArgument("Quantity cannot be negative")
        if not self._find(user_id):
            raise NotFound("Cart not found")

        def change(items: Items) -> Items:
            if quantity == 0:
                return [item for item in items if item["product_id"] != product_id]
            line = find_line(items, product_id)
            if not line:
                raise NotFound("Item not found in cart")
            product = self.catalog.find_active(product_id)
            if not product:
                raise NotFound("Product not found")
            if quantity > product.get("stock", 0):
                raise InsufficientStock(f"Only {product.get('stock', 0)} items available in stock")
            line["quantity"] = quantity
            return items

        cart, products = self._mutate(user_id, change)
        logger.info("Cart updated", user_id=user_id, product_id=product_id, quantity=quantity)
        return self._present(cart, products)

    def remove_item(self, user_id: str, product_id: str) -> Dict[str, Any]:
        cart, products = self._mutate(
            user_id, lambda items: [item for item in items if item["product_id"] != product_id]
        )
        return self._present(cart, products)

    def clear(self, user_id: str) -> Dict[str, Any]:
        cart, products = self._mutate(user_id, lambda items: [])
        logger.info("Cart cleared", user_id=user_id)
        return self._present(cart, products)

    def claim(self, cart: Dict[str, Any]) -> None:
        """Bump the version of a cart read for checkout; fail if it moved since."""
        result = self.carts.update_one(
            {"_id": cart["_id"], "version": cart["version"]}, {"$inc": {"version": 1}}
        )
        if result.matched_count != 1:
            raise Conflict("Cart was modified during checkout, please retry")
        cart["version"] += 1

    def remove_lines(self, user_id: str, ordered: Items) -> Dict[str, Any]:
        """Take ordered lines out of the user's cart, keeping anything added since."""
        cart, products = self._mutate(user_id, lambda items: subtract_lines(items, ordered))
        return self._present(cart, products)

    def settle(self, cart: Dict[str, Any], ordered: Items) -> bool:
        """Empty a claimed cart after checkout.

        If the cart is still at the claimed version it holds exactly the
        ordered lines and is emptied in one write. Otherwise only the ordered
        quantities are taken out. Never raises: False means the cart was left
        as is for reconcile() to finish.
        """
        try:
            if self._save(cart, [], 0.0):
                return True
            self.remove_lines(cart["user_id"], ordered)
            return True
        except (Conflict, PyMongoError) as e:
            logger.warning("Cart left uncleared after checkout", user_id=cart["user_id"], error=str(e))
            return False
