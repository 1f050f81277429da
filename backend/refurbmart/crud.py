"""
CRUD Operations
===============

Database operations for accounts, the catalog and orders.

Pattern:
def operation_name(db: Session, parameters) -> ReturnType:
    # Database operations
    return result

Failures of the store are rolled back, logged with the operation name and the
ids involved, and re-raised as InternalError. The multi-table order write
lives in refurbmart.orders.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import String, cast, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session, selectinload

from refurbmart import models, schemas
from refurbmart.errors import InternalError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

# Columns that may be explicitly cleared by a partial update
NULLABLE_PRODUCT_FIELDS = {"original_price"}

PRODUCT_SORT_COLUMNS = {
    "createdAt": models.Product.created_at,
    "price": models.Product.price,
    "name": models.Product.name,
    "updatedAt": models.Product.updated_at,
}


def commit(db: Session, operation: str, **context) -> None:
    """
    Commit the current transaction or roll it back and signal InternalError.

    Args:
        db: Database session
        operation: Human readable name, e.g. "update product"
        context: Ids worth logging (product_id=..., user_id=...)
    """
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("%s failed %s", operation, context)
        raise InternalError(f"Failed to {operation}") from exc


def paginate(query: Query, page: int, limit: int) -> Tuple[List[Any], int]:
    """
    Apply OFFSET/LIMIT and count the full result.

    Pagination example:
        Page 1: page=1, limit=10  → rows 1-10
        Page 2: page=2, limit=10  → rows 11-20
    """
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return rows, total


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


# ============================================================================
# USER CRUD OPERATIONS
# ============================================================================

def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.get(models.User, user_id)


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    """Exact, case-sensitive match on the stored email."""
    return db.query(models.User).filter(models.User.email == email).first()


def create_user(
    db: Session,
    name: str,
    email: str,
    password_hash: str,
    role: models.Role,
) -> models.User:
    """
    Create a new account.

    Args:
        password_hash: Already hashed password; plaintext never gets here

    Raises:
        ValidationError: An account with this email already exists
    """
    if get_user_by_email(db, email) is not None:
        raise ValidationError("User already exists with this email")

    db_user = models.User(name=name, email=email, password_hash=password_hash, role=role)
    db.add(db_user)
    try:
        db.commit()
    except IntegrityError as exc:
        # Lost a race against a concurrent registration of the same email
        db.rollback()
        raise ValidationError("User already exists with this email") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("create user failed %s", {"role": role.value})
        raise InternalError("Failed to create user") from exc

    db.refresh(db_user)
    return db_user


def update_user(db: Session, db_user: models.User, user_update: schemas.UserUpdate) -> models.User:
    # Fields not supplied (or sent as null) keep their current value
    update_data = user_update.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in update_data.items():
        setattr(db_user, field, value)

    commit(db, "update user profile", user_id=db_user.id)
    db.refresh(db_user)
    return db_user


def set_password_hash(db: Session, db_user: models.User, password_hash: str) -> None:
    db_user.password_hash = password_hash
    commit(db, "change password", user_id=db_user.id)


# ============================================================================
# PRODUCT CRUD OPERATIONS
# ============================================================================

def get_product(db: Session, product_id: int) -> Optional[models.Product]:
    """
    Retrieve a single product by ID, approved or not.

    SQL generated:
        SELECT * FROM products WHERE id = product_id
    """
    return db.get(models.Product, product_id)


def list_products(
    db: Session,
    *,
    approved: Optional[bool] = True,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    condition: Optional[models.ProductCondition] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    search_term: Optional[str] = None,
    seller_id: Optional[int] = None,
    sort_by: str = "createdAt",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> Tuple[List[models.Product], int]:
    """
    Filter, sort and paginate the catalog.

    Args:
        approved: True for the public catalog; None disables the filter
        search_term: Case-insensitive substring of name, description or tags

    Returns:
        (products on this page, total matching products)
    """
    query = db.query(models.Product)

    if approved is not None:
        query = query.filter(models.Product.approved == approved)
    if category:
        query = query.filter(models.Product.category == category)
    if brand:
        query = query.filter(models.Product.brand == brand)
    if condition:
        query = query.filter(models.Product.condition == condition)
    if min_price is not None:
        query = query.filter(models.Product.price >= min_price)
    if max_price is not None:
        query = query.filter(models.Product.price <= max_price)
    if seller_id is not None:
        query = query.filter(models.Product.seller_id == seller_id)
    if search_term:
        escaped = search_term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        query = query.filter(
            or_(
                models.Product.name.ilike(pattern, escape="\\"),
                models.Product.description.ilike(pattern, escape="\\"),
                cast(models.Product.tags, String).ilike(pattern, escape="\\"),
            )
        )

    column = PRODUCT_SORT_COLUMNS.get(sort_by, models.Product.created_at)
    if sort_order.lower() == "asc":
        query = query.order_by(column.asc(), models.Product.id.asc())
    else:
        query = query.order_by(column.desc(), models.Product.id.desc())

    return paginate(query, page, limit)


def create_product(
    db: Session,
    product: schemas.ProductCreate,
    seller_id: int,
    approved: bool = False,
) -> models.Product:
    """
    Create a new listing owned by seller_id.

    New listings start unapproved and stay out of the public catalog until
    an admin approves them.
    """
    db_product = models.Product(**product.model_dump(), seller_id=seller_id, approved=approved)
    db.add(db_product)
    commit(db, "create product", seller_id=seller_id)
    db.refresh(db_product)
    return db_product


def update_product(db: Session, db_product: models.Product, update_data: Dict[str, Any]) -> models.Product:
    """
    Apply a partial update.

    Example:
        {"price": 899.99}  → only price updated
        {"name": None}     → ignored (name cannot be cleared)
    """
    for field, value in update_data.items():
        if value is None and field not in NULLABLE_PRODUCT_FIELDS:
            continue
        setattr(db_product, field, value)

    commit(db, "update product", product_id=db_product.id)
    db.refresh(db_product)
    return db_product


def delete_product(db: Session, db_product: models.Product) -> None:
    """
    Delete a listing.

    Order lines that referenced it keep their snapshot; their product_id
    becomes NULL.
    """
    product_id = db_product.id
    db.delete(db_product)
    commit(db, "delete product", product_id=product_id)


def decrement_stock(db: Session, product_id: int, quantity: int) -> bool:
    """
    Conditionally take `quantity` units out of stock.

    The check and the write are one statement, so two transactions buying
    the last unit cannot both succeed: the row lock taken by the first
    UPDATE makes the second re-evaluate the WHERE clause against the new
    value. Does not commit.

    Returns:
        True if the row was decremented, False if stock was insufficient

    SQL generated:
        UPDATE products
        SET stock_quantity = stock_quantity - :quantity
        WHERE id = :product_id AND stock_quantity >= :quantity
    """
    result = db.execute(
        update(models.Product)
        .where(models.Product.id == product_id)
        .where(models.Product.stock_quantity >= quantity)
        .values(stock_quantity=models.Product.stock_quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# ============================================================================
# ORDER CRUD OPERATIONS
# ============================================================================

def _orders_with_items(db: Session) -> Query:
    return db.query(models.Order).options(
        selectinload(models.Order.items).selectinload(models.OrderItem.product)
    )


def get_order(db: Session, order_id: int) -> Optional[models.Order]:
    """
    Retrieve a single order with its items and their products.

    SQL generated (selectin loading):
        SELECT * FROM orders WHERE id = ?
        SELECT * FROM order_items WHERE order_id IN (?)
        SELECT * FROM products WHERE id IN (...)
    """
    return _orders_with_items(db).filter(models.Order.id == order_id).first()


def list_orders_for_buyer(
    db: Session, user_id: int, page: int = 1, limit: int = DEFAULT_PAGE_SIZE
) -> Tuple[List[models.Order], int]:
    query = (
        _orders_with_items(db)
        .filter(models.Order.user_id == user_id)
        .order_by(models.Order.created_at.desc(), models.Order.id.desc())
    )
    return paginate(query, page, limit)


def list_orders_for_seller(
    db: Session,
    seller_id: Optional[int],
    status: Optional[models.OrderStatus] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> Tuple[List[models.Order], int]:
    """
    Orders containing at least one line sold by seller_id.

    Args:
        seller_id: None lists every order (admin view)
        status: Optional order_status filter
    """
    query = _orders_with_items(db)
    if seller_id is not None:
        query = query.filter(models.Order.items.any(models.OrderItem.seller_id == seller_id))
    if status is not None:
        query = query.filter(models.Order.order_status == status)
    query = query.order_by(models.Order.created_at.desc(), models.Order.id.desc())
    return paginate(query, page, limit)


def set_order_status(db: Session, db_order: models.Order, status: models.OrderStatus) -> models.Order:
    """Single-row update of order_status (updated_at follows); items untouched."""
    db_order.order_status = status
    commit(db, "update order status", order_id=db_order.id, status=status.value)
    return get_order(db, db_order.id)
