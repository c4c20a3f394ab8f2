import logging
import random
import string
import time
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload

from .cart import clear as clear_cart, compute_totals
from .config import settings
from .dependencies import get_db, get_current_user
from .errors import Conflict, EmptyCart, NotFound, StoreError
from .models import (
    Order,
    OrderItem,
    OrderStatusEnum,
    OrderTracking,
    User,
)
from .store_schema import (
    CancelOrderRequest,
    CartTotalsOut,
    OrderDetailOut,
    OrderOut,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


# =====================================================
# Helpers
# =====================================================

def generate_order_number() -> str:
    """Human readable order number: ``ORD-<epoch ms>-<9 base36 chars>``."""
    suffix = "".join(random.choices(_SUFFIX_ALPHABET, k=9))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def record_stage(
    db: Session,
    order: Order,
    stage: OrderStatusEnum,
    status_text: str,
    notes: str | None = None,
    updated_by: str | None = None,
) -> OrderTracking:
    """Append one entry to the order's tracking log (not committed)."""
    entry = OrderTracking(
        stage=stage,
        status=status_text,
        notes=notes,
        updated_by=updated_by,
    )
    order.tracking.append(entry)
    db.add(entry)
    return entry


def order_query(db: Session):
    """Orders with everything the API renders loaded up front."""
    return db.query(Order).options(
        selectinload(Order.items).joinedload(OrderItem.product),
        selectinload(Order.payments),
        selectinload(Order.tracking),
        joinedload(Order.user),
    )


def get_owned_order(db: Session, user: User, order_id: int) -> Order:
    order = (
        order_query(db)
        .filter(Order.id == order_id, Order.user_id == user.id)
        .first()
    )
    if not order:
        raise NotFound("Order")
    return order


def _unique_order_number(db: Session) -> str:
    for _ in range(settings.ORDER_NUMBER_ATTEMPTS):
        number = generate_order_number()
        if not db.query(Order.id).filter(Order.order_number == number).first():
            return number
        logger.warning("Order number %s already taken, regenerating", number)
    raise Conflict("Could not allocate a unique order number")


# =====================================================
# Service Logic
# =====================================================

def create_order_from_cart(db: Session, user: User) -> dict:
    """
    Turn the caller's cart into a PENDING order.

    Order, items, the first tracking entry and the cart clear are committed
    together; any failure rolls all of them back.
    """
    summary = compute_totals(db, user.id)

    if summary["item_count"] == 0:
        raise EmptyCart()

    try:
        order = Order(
            user_id=user.id,
            order_number=_unique_order_number(db),
            status=OrderStatusEnum.PENDING,
            total_amount=summary["total_amount"],
            currency=settings.DEFAULT_CURRENCY,
        )
        db.add(order)
        db.flush()  # get order.id

        for line in summary["items"]:
            order.items.append(
                OrderItem(
                    product_id=line["product_id"],
                    quantity=line["quantity"],
                    # price snapshot, later rate changes don't touch the order
                    price=line["product"].rate,
                )
            )

        record_stage(db, order, OrderStatusEnum.PENDING, "Order placed", updated_by=user.email)
        clear_cart(db, user.id, commit=False)

        db.commit()
    except IntegrityError:
        db.rollback()
        logger.exception("Order creation for user %s hit a unique constraint", user.id)
        raise Conflict("Order could not be created, please retry")
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Order creation failed for user %s", user.id)
        raise StoreError("Failed to create order")

    logger.info(
        "Order %s created for user %s, total %s %s",
        order.order_number, user.id, order.total_amount, order.currency,
    )

    order = order_query(db).filter(Order.id == order.id).one()
    return {
        "order": OrderOut.model_validate(order),
        "orderSummary": CartTotalsOut.model_validate(summary),
    }


def cancel_pending_order(db: Session, user: User, order_id: int, notes: str | None = None) -> Order:
    """Owner cancels an order that has not been paid yet."""
    order = get_owned_order(db, user, order_id)

    if order.status != OrderStatusEnum.PENDING:
        raise Conflict("Only pending orders can be cancelled")

    order.status = OrderStatusEnum.CANCELLED
    record_stage(
        db, order, OrderStatusEnum.CANCELLED, "Cancelled by customer",
        notes=notes, updated_by=user.email,
    )
    db.commit()
    db.refresh(order)

    logger.info("Order %s cancelled by its owner", order.order_number)
    return order


# =====================================================
# API Routes
# =====================================================

@router.post("/create", status_code=status.HTTP_201_CREATED)
def create_order(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return {
        "success": True,
        "message": "Order created successfully",
        "data": create_order_from_cart(db, current_user),
    }


@router.get("")
def my_orders(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    orders: List[Order] = (
        order_query(db)
        .filter(Order.user_id == current_user.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )

    return {
        "success": True,
        "message": "User orders retrieved successfully",
        "data": {
            "orders": [OrderOut.model_validate(o) for o in orders],
            "totalOrders": len(orders),
        },
    }


@router.get("/{order_id}")
def order_details(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    order = get_owned_order(db, current_user, order_id)
    return {
        "success": True,
        "message": "Order details retrieved successfully",
        "data": {"order": OrderDetailOut.model_validate(order)},
    }


@router.patch("/{order_id}/cancel")
def cancel_order(
    order_id: int,
    data: CancelOrderRequest | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    order = cancel_pending_order(db, current_user, order_id, data.notes if data else None)
    return {
        "success": True,
        "message": "Order cancelled successfully",
        "data": {"order": OrderOut.model_validate(order)},
    }
