"""
Order Engine
============

place_order: validate requested lines against the catalog, price them from
the authoritative product rows, then write the order header, its lines and
the stock decrements as one transaction.

change_order_status: role-gated order status state machine.

    pending ──► processing ──► shipped ──► delivered ──► completed
       │             │
       └──► cancelled ◄┘

Sellers involved in the order may only take the adjacent steps above that
start at pending or processing. Admins may set any status.
"""

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, List

from opentelemetry import trace
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from refurbmart import crud, models, schemas
from refurbmart.errors import (
    ForbiddenError,
    ForbiddenTransitionError,
    InsufficientStockError,
    InternalError,
    InvalidStateError,
    MarketplaceError,
    NotFoundError,
    ValidationError,
)
from refurbmart.models import OrderStatus, PaymentStatus, Role
from refurbmart.security import Principal

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SELLER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
}


@dataclass(frozen=True)
class LineSnapshot:
    product_id: int
    seller_id: int
    product_name: str
    quantity: int
    price_at_purchase: float

    @property
    def subtotal(self) -> float:
        return self.price_at_purchase * self.quantity


def capture_line_snapshots(db: Session, items: List[schemas.OrderItemIn]) -> List[LineSnapshot]:
    """
    Check every requested line, in request order, and freeze its price.

    Raises:
        NotFoundError: unknown product id
        InvalidStateError: product not approved for sale
        InsufficientStockError: quantity above current stock
    """
    span = trace.get_current_span()
    lines = []
    for item in items:
        product = crud.get_product(db, item.product_id)
        if product is None:
            span.add_event("product_not_found", {"product_id": item.product_id})
            raise NotFoundError(f"Product with ID {item.product_id} not found")
        if not product.approved:
            span.add_event("product_not_approved", {"product_id": product.id})
            raise InvalidStateError(f"Product {product.name} is not approved for sale")
        if item.quantity > product.stock_quantity:
            span.add_event(
                "insufficient_stock",
                {"product_id": product.id, "requested": item.quantity, "available": product.stock_quantity},
            )
            raise InsufficientStockError(product.name, product.stock_quantity)

        lines.append(
            LineSnapshot(
                product_id=product.id,
                seller_id=product.seller_id,
                product_name=product.name,
                quantity=item.quantity,
                price_at_purchase=product.price,
            )
        )
    return lines


def order_total(lines: List[LineSnapshot]) -> float:
    return round(sum(line.subtotal for line in lines), 2)


def _stock_conflict(db: Session, line: LineSnapshot) -> InsufficientStockError:
    # Called after rollback, so this reads the committed stock level
    product = crud.get_product(db, line.product_id)
    available = product.stock_quantity if product is not None else 0
    return InsufficientStockError(line.product_name, available)


def place_order(db: Session, buyer_id: int, order: schemas.OrderCreate) -> models.Order:
    """
    Place an order for buyer_id.

    Prices, seller ids and the total come from the catalog, never from the
    request. The order header, one OrderItem per line and every stock
    decrement commit together; if any decrement finds less stock than it
    needs (another buyer got there first) everything is rolled back and
    InsufficientStockError is raised.

    Returns:
        The committed order with items loaded
    """
    if not order.items:
        raise ValidationError("Order must contain at least one item")
    if order.shipping_address is None:
        raise ValidationError("Shipping address is required")

    with tracer.start_as_current_span("place_order") as span:
        span.set_attribute("order.user_id", buyer_id)
        span.set_attribute("order.item_count", len(order.items))

        with tracer.start_as_current_span("validate_items"):
            lines = capture_line_snapshots(db, order.items)
            total_amount = order_total(lines)
            span.set_attribute("order.total_amount", total_amount)

        payment_status = PaymentStatus.PAID if order.payment_details else PaymentStatus.PENDING

        with tracer.start_as_current_span("save_order"):
            try:
                db_order = models.Order(
                    user_id=buyer_id,
                    total_amount=total_amount,
                    shipping_address=order.shipping_address.model_dump(),
                    payment_method=order.payment_method,
                    payment_details=order.payment_details,
                    payment_status=payment_status,
                    order_status=OrderStatus.PENDING,
                )
                db.add(db_order)
                db.flush()  # assigns db_order.id inside the open transaction

                for line in lines:
                    db.add(
                        models.OrderItem(
                            order_id=db_order.id,
                            product_id=line.product_id,
                            seller_id=line.seller_id,
                            product_name=line.product_name,
                            quantity=line.quantity,
                            price_at_purchase=line.price_at_purchase,
                        )
                    )
                    if not crud.decrement_stock(db, line.product_id, line.quantity):
                        db.rollback()
                        span.add_event("stock_conflict", {"product_id": line.product_id})
                        raise _stock_conflict(db, line)

                db.commit()
            except MarketplaceError:
                raise
            except SQLAlchemyError as exc:
                db.rollback()
                span.record_exception(exc)
                logger.exception(
                    "place order failed %s",
                    {"buyer_id": buyer_id, "product_ids": [line.product_id for line in lines]},
                )
                raise InternalError("Failed to create order") from exc

        span.set_attribute("order.id", db_order.id)
        logger.info("order %s placed by user %s total=%.2f", db_order.id, buyer_id, total_amount)

    return crud.get_order(db, db_order.id)


# ============================================================================
# ACCESS TO EXISTING ORDERS
# ============================================================================

def can_view_order(principal: Principal, order: models.Order) -> bool:
    if principal.role is Role.ADMIN:
        return True
    if principal.role is Role.SELLER:
        return order.user_id == principal.id or order.involves_seller(principal.id)
    if principal.role is Role.BUYER:
        return order.user_id == principal.id
    raise ValueError(f"Unhandled role: {principal.role!r}")


def check_transition(principal: Principal, order: models.Order, new_status: OrderStatus) -> None:
    """
    Raise unless principal may move order to new_status.

    completed counts as delivered here: neither can be left by a seller.
    """
    if principal.role is Role.ADMIN:
        return
    if principal.role is Role.SELLER:
        if not order.involves_seller(principal.id):
            raise ForbiddenError("Not authorized to update this order status")
        allowed = SELLER_TRANSITIONS.get(order.order_status, frozenset())
        if new_status not in allowed:
            raise ForbiddenTransitionError(
                f"Cannot change order status from {order.order_status.value} to {new_status.value}"
            )
        return
    if principal.role is Role.BUYER:
        raise ForbiddenError("Not authorized to update this order status")
    raise ValueError(f"Unhandled role: {principal.role!r}")


def change_order_status(
    db: Session, principal: Principal, order_id: int, new_status: OrderStatus
) -> models.Order:
    order = crud.get_order(db, order_id)
    if order is None:
        raise NotFoundError("Order not found")

    check_transition(principal, order, new_status)
    previous = order.order_status
    updated = crud.set_order_status(db, order, new_status)
    logger.info(
        "order %s status %s -> %s by %s %s",
        order_id, previous.value, new_status.value, principal.role.value, principal.id,
    )
    return updated
