"""
Request / Response Schemas
==========================

Pydantic models validated at the API boundary. Domain code (crud, orders)
only ever receives instances of these, never raw request dicts.

Wire format is camelCase (stockQuantity, priceAtPurchase, ...); Python code
uses snake_case. Requests may use either spelling.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional, Union

from email_validator import EmailNotValidError, validate_email
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from refurbmart.models import OrderStatus, PaymentStatus, ProductCondition, Role

MIN_PASSWORD_LENGTH = 6
# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_LENGTH = 72


def _check_email(value: str) -> str:
    # Format check only; the address is stored exactly as sent
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValueError(f"value is not a valid email address: {exc}") from exc
    return value


Email = Annotated[str, AfterValidator(_check_email)]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ============================================================================
# VALUE TYPES (stored in JSON columns)
# ============================================================================

class ShippingAddress(CamelModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    street: str = Field(..., min_length=1, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field(..., min_length=1, max_length=100)


SpecValue = Union[bool, int, float, str]
Specifications = Dict[str, SpecValue]


def _normalize_tags(tags):
    # Set semantics, first occurrence wins, blanks dropped
    if tags is None:
        return tags
    seen = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


# ============================================================================
# USERS / AUTH
# ============================================================================

class UserRegister(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: Email
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_LENGTH)
    role: Role = Role.BUYER

    @field_validator("role")
    @classmethod
    def role_is_registrable(cls, value: Role) -> Role:
        if value is Role.ADMIN:
            raise ValueError("role must be buyer or seller")
        return value


class UserLogin(CamelModel):
    email: Email
    password: str = Field(..., min_length=1, max_length=MAX_PASSWORD_LENGTH)


class UserUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    profile_picture: Optional[str] = Field(None, max_length=500)
    phone_number: Optional[str] = Field(None, max_length=50)


class PasswordChange(CamelModel):
    old_password: str = Field(..., min_length=1, max_length=MAX_PASSWORD_LENGTH)
    new_password: str = Field(..., min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_LENGTH)


class UserOut(CamelModel):
    id: int
    name: str
    email: str
    role: Role
    profile_picture: Optional[str] = None
    phone_number: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AuthResponse(CamelModel):
    token: str
    user: UserOut


class MessageResponse(CamelModel):
    message: str


# ============================================================================
# PRODUCTS
# ============================================================================

class ProductCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    price: float = Field(..., gt=0)
    original_price: Optional[float] = Field(None, gt=0)
    category: str = Field(..., min_length=1, max_length=100)
    brand: str = Field("", max_length=100)
    condition: ProductCondition
    stock_quantity: int = Field(..., ge=0)
    images: List[str] = []
    specifications: Specifications = {}
    tags: List[str] = []

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, value):
        return _normalize_tags(value)


class ProductUpdate(CamelModel):
    """Partial update; only fields sent by the client are applied."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    original_price: Optional[float] = Field(None, gt=0)
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    brand: Optional[str] = Field(None, max_length=100)
    condition: Optional[ProductCondition] = None
    stock_quantity: Optional[int] = Field(None, ge=0)
    images: Optional[List[str]] = None
    specifications: Optional[Specifications] = None
    tags: Optional[List[str]] = None
    # Honored for admins only; seller edits always reset approval
    approved: Optional[bool] = None

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, value):
        return _normalize_tags(value)


class ProductOut(CamelModel):
    id: int
    name: str
    description: str
    price: float
    original_price: Optional[float] = None
    category: str
    brand: str
    condition: ProductCondition
    stock_quantity: int
    images: List[str]
    specifications: Dict[str, Any]
    tags: List[str]
    approved: bool
    seller_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductPage(CamelModel):
    products: List[ProductOut]
    total_pages: int
    current_page: int
    total_products: int


# ============================================================================
# ORDERS
# ============================================================================

class OrderItemIn(CamelModel):
    product_id: int
    quantity: int = Field(..., ge=1)


class OrderCreate(CamelModel):
    items: List[OrderItemIn] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: Optional[str] = Field(None, max_length=50)
    payment_details: Optional[Dict[str, Any]] = None


class OrderStatusUpdate(CamelModel):
    status: OrderStatus

    @field_validator("status", mode="before")
    @classmethod
    def lowercase_status(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value


class OrderItemOut(CamelModel):
    id: int
    product_id: Optional[int] = None
    seller_id: Optional[int] = None
    quantity: int
    price_at_purchase: float
    product_name: str
    product_images: List[str] = []


class OrderOut(CamelModel):
    id: int
    user_id: int
    total_amount: float
    shipping_address: ShippingAddress
    payment_method: Optional[str] = None
    payment_details: Optional[Dict[str, Any]] = None
    payment_status: PaymentStatus
    order_status: OrderStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItemOut]


class OrderPage(CamelModel):
    orders: List[OrderOut]
    total_pages: int
    current_page: int
    total_orders: int
