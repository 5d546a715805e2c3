import os
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.errors import AutoReconnect, ExecutionTimeout, NetworkTimeout, PyMongoError, ServerSelectionTimeoutError
from starlette.exceptions import HTTPException as StarletteHTTPException

from accounts import Accounts, public
from auth import AccessControl
from carts import CartEngine
from catalog import Catalog, ProductFilter
from config import Settings
from database import Store, serialize_doc
from errors import Internal, ServiceUnavailable, StorefrontError
from logging_config import add_context, clear_context, configure_logging
from orders import OrderEngine
from schemas import (
    AddToCartRequest,
    ChangePasswordRequest,
    LoginRequest,
    PlaceOrderRequest,
    ProductCreate,
    ProductUpdate,
    ProfileUpdate,
    RegisterRequest,
    UpdateCartRequest,
    UpdateOrderStatusRequest,
)

logger = structlog.get_logger(__name__)

RETRYABLE_STORE_ERRORS = (AutoReconnect, ExecutionTimeout, NetworkTimeout, ServerSelectionTimeoutError)

# Utilities


def ok(data: Optional[Dict[str, Any]] = None, message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def fail(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, **extra})


# Dependencies


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_catalog(store: Store = Depends(get_store)) -> Catalog:
    return Catalog(store)


def get_carts(store: Store = Depends(get_store)) -> CartEngine:
    return CartEngine(store)


def get_orders(store: Store = Depends(get_store), settings: Settings = Depends(get_settings)) -> OrderEngine:
    return OrderEngine(store, settings)


def get_accounts(store: Store = Depends(get_store), settings: Settings = Depends(get_settings)) -> Accounts:
    return Accounts(store, bcrypt_rounds=settings.bcrypt_rounds)


def get_access(store: Store = Depends(get_store), settings: Settings = Depends(get_settings)) -> AccessControl:
    return AccessControl(store, settings.jwt_secret, settings.jwt_expire_days)


bearer = HTTPBearer(auto_error=False)


def current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    access: AccessControl = Depends(get_access),
) -> Dict[str, Any]:
    return access.authenticate(credentials.credentials if credentials else None)


def admin_user(user: Dict[str, Any] = Depends(current_user)) -> Dict[str, Any]:
    return AccessControl.authorize(user, "admin")


router = APIRouter(prefix="/api")

# Auth


@router.post("/auth/register", status_code=201)
def register(
    payload: RegisterRequest,
    accounts: Accounts = Depends(get_accounts),
    access: AccessControl = Depends(get_access),
):
    user = accounts.register(payload)
    return ok({"user": public(user), "token": access.issue(user)}, "User registered successfully")


@router.post("/auth/login")
def login(
    payload: LoginRequest,
    accounts: Accounts = Depends(get_accounts),
    access: AccessControl = Depends(get_access),
):
    user = accounts.login(payload.email, payload.password)
    return ok({"user": public(user), "token": access.issue(user)}, "Login successful")


@router.get("/auth/me")
def me(user: Dict[str, Any] = Depends(current_user)):
    return ok({"user": public(user)})


# Products


@router.get("/products")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0, alias="minPrice"),
    max_price: Optional[float] = Query(None, ge=0, alias="maxPrice"),
    search: Optional[str] = None,
    sort: Optional[str] = Query(None, description="newest|oldest|price_asc|price_desc|rating_desc|name_asc"),
    catalog: Catalog = Depends(get_catalog),
):
    result = catalog.list(
        ProductFilter(
            page=page,
            page_size=limit,
            category=category,
            min_price=min_price,
            max_price=max_price,
            search=search,
            sort=sort or "newest",
        )
    )
    return ok({"products": [serialize_doc(p) for p in result["products"]], "pagination": result["pagination"]})


@router.get("/products/category/{category}")
def list_products_by_category(
    category: str,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    sort: Optional[str] = None,
    catalog: Catalog = Depends(get_catalog),
):
    result = catalog.list_by_category(category, page, limit, sort or "newest")
    return ok({"products": [serialize_doc(p) for p in result["products"]], "pagination": result["pagination"]})


@router.get("/products/{product_id}")
def get_product(product_id: str, catalog: Catalog = Depends(get_catalog)):
    return ok({"product": serialize_doc(catalog.get(product_id))})


@router.post("/products", status_code=201)
def create_product(
    payload: ProductCreate,
    catalog: Catalog = Depends(get_catalog),
    _: Dict[str, Any] = Depends(admin_user),
):
    return ok({"product": serialize_doc(catalog.create(payload))}, "Product created successfully")


@router.put("/products/{product_id}")
def update_product(
    product_id: str,
    payload: ProductUpdate,
    catalog: Catalog = Depends(get_catalog),
    _: Dict[str, Any] = Depends(admin_user),
):
    return ok({"product": serialize_doc(catalog.update(product_id, payload))}, "Product updated successfully")


@router.delete("/products/{product_id}")
def delete_product(
    product_id: str,
    catalog: Catalog = Depends(get_catalog),
    _: Dict[str, Any] = Depends(admin_user),
):
    catalog.deactivate(product_id)
    return ok(message="Product deleted successfully")


@router.get("/categories")
def list_categories(catalog: Catalog = Depends(get_catalog)):
    return ok({"categories": catalog.categories()})


# Cart


@router.get("/cart")
def get_cart(user: Dict[str, Any] = Depends(current_user), carts: CartEngine = Depends(get_carts)):
    return ok({"cart": carts.get(str(user["_id"]))})


@router.post("/cart/add")
def add_to_cart(
    payload: AddToCartRequest,
    user: Dict[str, Any] = Depends(current_user),
    carts: CartEngine = Depends(get_carts),
):
    cart = carts.add_item(str(user["_id"]), payload.product_id, payload.quantity)
    return ok({"cart": cart}, "Item added to cart")


@router.put("/cart/update")
def update_cart(
    payload: UpdateCartRequest,
    user: Dict[str, Any] = Depends(current_user),
    carts: CartEngine = Depends(get_carts),
):
    cart = carts.update_item(str(user["_id"]), payload.product_id, payload.quantity)
    return ok({"cart": cart}, "Cart updated successfully")


@router.delete("/cart/remove/{product_id}")
def remove_from_cart(
    product_id: str,
    user: Dict[str, Any] = Depends(current_user),
    carts: CartEngine = Depends(get_carts),
):
    return ok({"cart": carts.remove_item(str(user["_id"]), product_id)}, "Item removed from cart")


@router.delete("/cart/clear")
def clear_cart(user: Dict[str, Any] = Depends(current_user), carts: CartEngine = Depends(get_carts)):
    return ok({"cart": carts.clear(str(user["_id"]))}, "Cart cleared successfully")


# Orders


@router.post("/orders", status_code=201)
def place_order(
    payload: PlaceOrderRequest,
    user: Dict[str, Any] = Depends(current_user),
    orders: OrderEngine = Depends(get_orders),
):
    order = orders.place_order(str(user["_id"]), payload.shipping_address.model_dump())
    return ok({"order": order}, "Order created successfully")


@router.get("/orders")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: Dict[str, Any] = Depends(current_user),
    orders: OrderEngine = Depends(get_orders),
):
    return ok(orders.list_for_user(str(user["_id"]), page, limit))


@router.get("/orders/admin/all")
def list_all_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    _: Dict[str, Any] = Depends(admin_user),
    orders: OrderEngine = Depends(get_orders),
):
    return ok(orders.list_all(page, limit, status))


@router.get("/orders/{order_id}")
def get_order(
    order_id: str,
    user: Dict[str, Any] = Depends(current_user),
    orders: OrderEngine = Depends(get_orders),
):
    return ok({"order": orders.get(order_id, user)})


@router.put("/orders/{order_id}/status")
def update_order_status(
    order_id: str,
    payload: UpdateOrderStatusRequest,
    _: Dict[str, Any] = Depends(admin_user),
    orders: OrderEngine = Depends(get_orders),
):
    return ok({"order": orders.update_status(order_id, payload.status)}, "Order status updated successfully")


# Users


@router.get("/users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    _: Dict[str, Any] = Depends(admin_user),
    accounts: Accounts = Depends(get_accounts),
):
    return ok(accounts.list(page, limit, search))


@router.put("/users/profile")
def update_profile(
    payload: ProfileUpdate,
    user: Dict[str, Any] = Depends(current_user),
    accounts: Accounts = Depends(get_accounts),
):
    updated = accounts.update_profile(str(user["_id"]), payload)
    return ok({"user": public(updated)}, "Profile updated successfully")


@router.put("/users/password")
def change_password(
    payload: ChangePasswordRequest,
    user: Dict[str, Any] = Depends(current_user),
    accounts: Accounts = Depends(get_accounts),
):
    accounts.change_password(str(user["_id"]), payload.current_password, payload.new_password)
    return ok(message="Password updated successfully")


@router.delete("/users/account")
def deactivate_account(user: Dict[str, Any] = Depends(current_user), accounts: Accounts = Depends(get_accounts)):
    accounts.deactivate(str(user["_id"]))
    return ok(message="Account deactivated successfully")


# App


def create_app(store: Optional[Store] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    store = store or Store(settings.database_url, settings.database_name, settings.store_timeout_ms)
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.open()
        store.ensure_indexes()
        yield
        store.close()

    app = FastAPI(title="Storefront API", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        clear_context()
        add_context(request_id=uuid.uuid4().hex[:12], method=request.method, path=request.url.path)
        response = await call_next(request)
        logger.info("Request handled", status=response.status_code)
        return response

    @app.exception_handler(StorefrontError)
    async def storefront_error(request: Request, exc: StorefrontError):
        if exc.status_code >= 500:
            logger.error("Request failed", error=exc.message)
        return fail(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        errors = [{"field": ".".join(str(p) for p in e["loc"][1:]), "message": e["msg"]} for e in exc.errors()]
        return fail(400, "Invalid request", errors=errors)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return fail(exc.status_code, str(exc.detail))

    @app.exception_handler(PyMongoError)
    async def store_error(request: Request, exc: PyMongoError):
        if isinstance(exc, RETRYABLE_STORE_ERRORS):
            logger.warning("Store unavailable", error=str(exc))
            error = ServiceUnavailable()
            return fail(error.status_code, error.message, error="DATABASE_TIMEOUT")
        logger.exception("Store error")
        error = Internal()
        return fail(error.status_code, error.message)

    @app.get("/")
    def read_root():
        return {"message": "Storefront API is running"}

    @app.get("/health")
    def health():
        response = {"backend": "running", "database": "unavailable", "database_name": store.database_name}
        try:
            store.ping()
            response["database"] = "connected"
        except PyMongoError as e:
            response["database"] = f"error: {str(e)[:80]}"
        return response

    app.include_router(router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
