"""
Catalog

Product records: filtered and paginated reads over active products, admin
mutations restricted to an allow-list of fields, soft delete, and the atomic
conditional stock decrement checkout relies on.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from database import PRODUCTS, Store, retry_reads, to_object_id, utcnow
from errors import InvalidArgument, NotFound
from schemas import CATEGORIES, ProductCreate, ProductUpdate

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 100

SORTS: Dict[str, List[Tuple[str, int]]] = {
    "newest": [("created_at", DESCENDING)],
    "oldest": [("created_at", ASCENDING)],
    "price_asc": [("price", ASCENDING)],
    "price_desc": [("price", DESCENDING)],
    "rating_desc": [("ratings.average", DESCENDING)],
    "name_asc": [("name", ASCENDING)],
}

# mongoose-style keys sent by the web frontend
SORT_ALIASES = {
    "-createdAt": "newest",
    "createdAt": "oldest",
    "price": "price_asc",
    "-price": "price_desc",
    "-ratings.average": "rating_desc",
    "name": "name_asc",
}

UPDATABLE_FIELDS = (
    "name",
    "description",
    "price",
    "category",
    "stock",
    "images",
    "brand",
    "sku",
    "specifications",
    "tags",
    "is_active",
)


@dataclass
class ProductFilter:
    page: int = 1
    page_size: int = 12
    category: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    search: Optional[str] = None
    sort: str = "newest"


def resolve_sort(key: Optional[str]) -> List[Tuple[str, int]]:
    key = SORT_ALIASES.get(key, key) if key else "newest"
    if key not in SORTS:
        raise InvalidArgument(f"Unknown sort key: {key}")
    # _id breaks ties so that pages never overlap
    return SORTS[key] + [("_id", ASCENDING)]


def check_category(category: str) -> str:
    if category not in CATEGORIES:
        raise InvalidArgument(f"Category must be one of: {', '.join(CATEGORIES)}")
    return category


def check_page(page: int, page_size: int) -> None:
    if page < 1:
        raise InvalidArgument("Page must be at least 1")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise InvalidArgument(f"Page size must be between 1 and {MAX_PAGE_SIZE}")


class Catalog:
    def __init__(self, store: Store):
        self.store = store

    @property
    def products(self):
        return self.store[PRODUCTS]

    # Reads

    def list(self, f: ProductFilter) -> Dict[str, Any]:
        check_page(f.page, f.page_size)
        query: Dict[str, Any] = {"is_active": True}
        if f.category:
            query["category"] = check_category(f.category)
        if f.min_price is not None or f.max_price is not None:
            price_cond: Dict[str, Any] = {}
            if f.min_price is not None:
                price_cond["$gte"] = float(f.min_price)
            if f.max_price is not None:
                price_cond["$lte"] = float(f.max_price)
            query["price"] = price_cond
        if f.search:
            # Case-insensitive substring match on name/description/tags
            pattern = re.escape(f.search.strip())
            query["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}},
                {"tags": {"$regex": pattern, "$options": "i"}},
            ]

        docs, pagination = self.store.paginate(PRODUCTS, query, f.page, f.page_size, resolve_sort(f.sort))
        logger.debug("Listed products", count=len(docs), total=pagination["total_items"])
        return {"products": docs, "pagination": pagination}

    def list_by_category(self, category: str, page: int = 1, page_size: int = 12, sort: str = "newest") -> Dict[str, Any]:
        check_page(page, page_size)
        query = {"category": {"$regex": f"^{re.escape(category)}$", "$options": "i"}, "is_active": True}
        docs, pagination = self.store.paginate(PRODUCTS, query, page, page_size, resolve_sort(sort))
        return {"products": docs, "pagination": pagination}

    def categories(self) -> List[str]:
        return list(CATEGORIES)

    def get(self, product_id: str) -> Dict[str, Any]:
        oid = to_object_id(product_id)
        if oid is None:
            raise InvalidArgument("Invalid product ID")
        doc = self.store.get_document(PRODUCTS, {"_id": oid})
        if not doc or not doc.get("is_active"):
            raise NotFound("Product not found")
        return doc

    def find_active(self, product_id: str) -> Optional[Dict[str, Any]]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        return self.store.get_document(PRODUCTS, {"_id": oid, "is_active": True})

    @retry_reads()
    def find_many(self, product_ids: Iterable[str], active_only: bool = True) -> Dict[str, Dict[str, Any]]:
        """Map product id -> product for the ids that resolve."""
        oids = [oid for oid in (to_object_id(pid) for pid in product_ids) if oid is not None]
        if not oids:
            return {}
        query: Dict[str, Any] = {"_id": {"$in": oids}}
        if active_only:
            query["is_active"] = True
        return {str(doc["_id"]): doc for doc in self.products.find(query)}

    # Admin mutations

    def create(self, data: ProductCreate) -> Dict[str, Any]:
        check_category(data.category)
        doc = data.model_dump()
        doc["is_active"] = True
        product_id = self.store.create_document(PRODUCTS, doc)
        logger.info("Product created", product_id=product_id, name=data.name)
        return self.store.get_document(PRODUCTS, {"_id": to_object_id(product_id)})

    def update(self, product_id: str, data: ProductUpdate) -> Dict[str, Any]:
        oid = to_object_id(product_id)
        if oid is None:
            raise InvalidArgument("Invalid product ID")
        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if k in UPDATABLE_FIELDS and v is not None}
        if "category" in changes:
            check_category(changes["category"])
        changes["updated_at"] = utcnow()
        doc = self.products.find_one_and_update(
            {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        if not doc:
            raise NotFound("Product not found")
        logger.info("Product updated", product_id=product_id, fields=sorted(changes))
        return doc

    def deactivate(self, product_id: str) -> None:
        oid = to_object_id(product_id)
        if oid is None:
            raise InvalidArgument("Invalid product ID")
        result = self.products.update_one({"_id": oid}, {"$set": {"is_active": False, "updated_at": utcnow()}})
        if result.matched_count == 0:
            raise NotFound("Product not found")
        logger.info("Product deactivated", product_id=product_id)

    # Stock

    def reserve_stock(self, product_id: str, quantity: int) -> bool:
        """Decrement stock by quantity only if at least quantity units remain."""
        result = self.products.update_one(
            {"_id": to_object_id(product_id), "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
        )
        return result.modified_count == 1

    def release_stock(self, product_id: str, quantity: int) -> None:
        self.products.update_one(
            {"_id": to_object_id(product_id)},
            {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}},
        )
