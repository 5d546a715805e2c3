"""
Document store

A Store wraps one MongoClient and the storefront database. It is constructed
explicitly, opened at startup and closed at shutdown, and handed to every
engine that needs it. Tests hand it an in-memory client instead.
"""

import math
import time
from datetime import date, datetime, timezone
from functools import wraps
from typing import Any, Dict, List, Optional, Tuple

import structlog
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.errors import AutoReconnect, NetworkTimeout

logger = structlog.get_logger(__name__)

# Collections
PRODUCTS = "product"
CARTS = "cart"
ORDERS = "order"
USERS = "user"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Stores hand back naive UTC datetimes unless the client is tz_aware."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def retry_reads(max_attempts: int = 3, backoff: float = 0.05):
    """Retry an idempotent read on transient connection errors.

    Only for reads: writes must not be replayed blindly.
    """

    def deco(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                attempt += 1
                try:
                    return fn(*args, **kwargs)
                except (AutoReconnect, NetworkTimeout) as e:
                    if attempt >= max_attempts:
                        raise
                    logger.warning("Transient store error, retrying read", fn=fn.__name__, attempt=attempt, error=str(e))
                    time.sleep(backoff * attempt)

        return wrapper

    return deco


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Return an ObjectId for value, or None if it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def serialize_doc(doc: Optional[Dict[str, Any]], exclude: Tuple[str, ...] = ()) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = {k: v for k, v in doc.items() if k not in exclude}
    _id = d.pop("_id", None)
    if _id is not None:
        d["id"] = str(_id)
    for k, v in list(d.items()):
        if isinstance(v, (datetime, date)):
            d[k] = v.isoformat()
        elif isinstance(v, ObjectId):
            d[k] = str(v)
    return d


def pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    skip = (page - 1) * limit
    return {
        "current_page": page,
        "total_pages": math.ceil(total / limit) if limit else 0,
        "total_items": total,
        "has_next": skip + limit < total,
        "has_prev": page > 1,
    }


class Store:
    def __init__(
        self,
        database_url: str = "mongodb://localhost:27017",
        database_name: str = "storefront",
        timeout_ms: int = 30000,
        client: Optional[MongoClient] = None,
    ):
        self.database_url = database_url
        self.database_name = database_name
        self.timeout_ms = timeout_ms
        self._client = client
        self._owns_client = client is None
        self.db = None

    @property
    def is_open(self) -> bool:
        return self.db is not None

    def open(self) -> "Store":
        if self.is_open:
            return self
        if self._client is None:
            self._client = MongoClient(
                self.database_url,
                tz_aware=True,
                serverSelectionTimeoutMS=self.timeout_ms,
                socketTimeoutMS=self.timeout_ms,
                timeoutMS=self.timeout_ms,
                maxPoolSize=10,
            )
        self.db = self._client[self.database_name]
        logger.info("Store opened", database=self.database_name)
        return self

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
        self.db = None
        logger.info("Store closed", database=self.database_name)

    def __getitem__(self, name: str) -> Collection:
        if self.db is None:
            raise RuntimeError("Store is not open")
        return self.db[name]

    def ping(self) -> bool:
        self._client.admin.command("ping")
        return True

    def ensure_indexes(self) -> None:
        self[PRODUCTS].create_index([("category", ASCENDING)])
        self[PRODUCTS].create_index([("price", ASCENDING)])
        self[PRODUCTS].create_index([("is_active", ASCENDING), ("created_at", DESCENDING)])
        self[CARTS].create_index([("user_id", ASCENDING)], unique=True)
        self[ORDERS].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
        self[ORDERS].create_index([("inventory_committed", ASCENDING), ("cart_cleared", ASCENDING)])
        self[USERS].create_index([("email", ASCENDING)], unique=True)

    # Document helpers

    def create_document(self, collection_name: str, data: Dict[str, Any]) -> str:
        """Insert data stamped with created_at/updated_at and return its id."""
        now = utcnow()
        doc = dict(data)
        doc.setdefault("created_at", now)
        doc["updated_at"] = now
        result = self[collection_name].insert_one(doc)
        return str(result.inserted_id)

    @retry_reads()
    def get_document(self, collection_name: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self[collection_name].find_one(filter_dict)

    @retry_reads()
    def get_documents(
        self, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        cursor = self[collection_name].find(filter_dict or {})
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    @retry_reads()
    def paginate(
        self,
        collection_name: str,
        filter_dict: Dict[str, Any],
        page: int,
        limit: int,
        sort: List[Tuple[str, int]],
    ) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        skip = (page - 1) * limit
        docs = list(self[collection_name].find(filter_dict).sort(sort).skip(skip).limit(limit))
        total = self[collection_name].count_documents(filter_dict)
        return docs, pagination(page, limit, total)
