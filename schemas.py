"""
Request and document schemas

Pydantic models validate every request body and every nested sub-document
(addresses, images, specifications) before anything reaches the store.
Request models accept snake_case or camelCase keys.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

CATEGORIES = ("Electronics", "Clothing", "Home", "Sports", "Books", "Beauty", "Toys", "Automotive")
ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
ROLES = ("user", "admin")


class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# Nested documents

class Image(RequestModel):
    url: str = Field(..., min_length=1)
    alt: Optional[str] = None


class Specification(RequestModel):
    name: str
    value: str


class Ratings(RequestModel):
    average: float = Field(0, ge=0, le=5)
    count: int = Field(0, ge=0)


class Address(RequestModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: Optional[str] = None
    zip_code: str = Field(..., min_length=1)
    country: str = "US"


class ShippingAddress(Address):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None


# Products

class ProductCreate(RequestModel):
    name: str = Field(..., min_length=1, max_length=100, description="Product name")
    description: str = Field(..., min_length=1, max_length=1000, description="Product description")
    price: float = Field(..., ge=0, description="Price in dollars")
    category: str = Field(..., description="One of CATEGORIES")
    stock: int = Field(0, ge=0, description="Units available")
    images: List[Image] = []
    brand: Optional[str] = None
    sku: Optional[str] = None
    ratings: Ratings = Ratings()
    specifications: List[Specification] = []
    tags: List[str] = []


class ProductUpdate(RequestModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=1000)
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    images: Optional[List[Image]] = None
    brand: Optional[str] = None
    sku: Optional[str] = None
    specifications: Optional[List[Specification]] = None
    tags: Optional[List[str]] = None
    is_active: Optional[bool] = None


# Cart

class AddToCartRequest(RequestModel):
    product_id: str
    quantity: int = 1


class UpdateCartRequest(RequestModel):
    product_id: str
    quantity: int


# Orders

class PlaceOrderRequest(RequestModel):
    shipping_address: ShippingAddress


class UpdateOrderStatusRequest(RequestModel):
    status: str


# Users

class RegisterRequest(RequestModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None


class LoginRequest(RequestModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdate(RequestModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    phone: Optional[str] = None
    address: Optional[Address] = None


class ChangePasswordRequest(RequestModel):
    current_password: str
    new_password: str
