"""
Database Models
===============

Defines the database schema using SQLAlchemy ORM.

Tables:
- users: Buyers, sellers and admins
- products: Refurbished items listed by sellers
- orders: Buyer orders (header)
- order_items: Line snapshots inside each order

Key SQLAlchemy Concepts:
- Column: A field in the table
- relationship(): Links tables together (foreign keys)
- back_populates: Two-way relationship
"""

import enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from refurbmart.database import Base


# ============================================================================
# ENUMERATIONS
# ============================================================================

class Role(str, enum.Enum):
    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"

    def satisfies(self, required: "Role") -> bool:
        """Admins satisfy every requirement; other roles only their own."""
        if self is Role.ADMIN:
            return True
        if self is Role.SELLER:
            return required is Role.SELLER
        if self is Role.BUYER:
            return required is Role.BUYER
        raise ValueError(f"Unhandled role: {self!r}")


class ProductCondition(str, enum.Enum):
    NEW_SEALED = "new_sealed"
    LIKE_NEW = "like_new"
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


def _enum_column(enum_cls, name):
    # Stored as the lowercase value ("seller"), checked by a CHECK constraint
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


# ============================================================================
# USER MODEL
# ============================================================================

class User(Base):
    """
    Platform account.

    Attributes:
        email: Unique, exact (case-sensitive) match
        password_hash: bcrypt hash, never serialized
        role: buyer, seller or admin (fixed at creation)
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    email = Column(String(320), unique=True, nullable=False, index=True)
    password_hash = Column(String(128), nullable=False)
    role = Column(_enum_column(Role, "user_role"), nullable=False, default=Role.BUYER)
    profile_picture = Column(String(500), nullable=True)
    phone_number = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    products = relationship("Product", back_populates="seller", passive_deletes=True)
    orders = relationship("Order", back_populates="buyer", passive_deletes=True)


# ============================================================================
# PRODUCT MODEL
# ============================================================================

class Product(Base):
    """
    Products listed for sale.

    Attributes:
        price: Current selling price
        original_price: Optional strike-through price (display only)
        stock_quantity: Units available, never negative
        images / specifications / tags: JSON columns
        approved: Only approved products are visible to the public catalog

    Relationships:
        seller: The owning user (seller or admin)
        order_items: Historical order lines referencing this product
    """
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String(200), nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    price = Column(Float, nullable=False)
    original_price = Column(Float, nullable=True)
    category = Column(String(100), nullable=False, index=True)
    brand = Column(String(100), nullable=False, default="")
    condition = Column(_enum_column(ProductCondition, "product_condition"), nullable=False)
    stock_quantity = Column(Integer, default=0, nullable=False)
    images = Column(JSON, nullable=False, default=list)
    specifications = Column(JSON, nullable=False, default=dict)
    tags = Column(JSON, nullable=False, default=list)
    approved = Column(Boolean, nullable=False, default=False, index=True)

    seller_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    seller = relationship("User", back_populates="products")
    # Deleting a product nulls order_items.product_id; history stays
    order_items = relationship("OrderItem", back_populates="product")


# ============================================================================
# ORDER MODEL
# ============================================================================

class Order(Base):
    """
    Buyer orders.

    Attributes:
        total_amount: Computed server-side from line snapshots
        shipping_address: JSON blob validated as ShippingAddress on write
        payment_details: Opaque gateway payload, if any

    Relationships:
        items: All line snapshots in this order (owned, cascade delete)
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    total_amount = Column(Float, nullable=False)
    shipping_address = Column(JSON, nullable=False)
    payment_method = Column(String(50), nullable=True)
    payment_details = Column(JSON, nullable=True)
    payment_status = Column(
        _enum_column(PaymentStatus, "payment_status"), nullable=False, default=PaymentStatus.PENDING
    )
    order_status = Column(
        _enum_column(OrderStatus, "order_status"), nullable=False, default=OrderStatus.PENDING, index=True
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    buyer = relationship("User", back_populates="orders")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    def involves_seller(self, seller_id: int) -> bool:
        return any(item.seller_id == seller_id for item in self.items)


# ============================================================================
# ORDER ITEM MODEL
# ============================================================================

class OrderItem(Base):
    """
    One line snapshot of an order.

    product_id and seller_id are non-owning references that become NULL when
    the product or seller is deleted. price_at_purchase and product_name are
    written once at placement and never changed afterwards.
    """
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)

    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)
    seller_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    quantity = Column(Integer, nullable=False)
    price_at_purchase = Column(Float, nullable=False)
    product_name = Column(String(200), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("Order", back_populates="items")
    product = relationship("Product", back_populates="order_items")

    @property
    def product_images(self):
        if self.product is None:
            return []
        return list(self.product.images or [])
