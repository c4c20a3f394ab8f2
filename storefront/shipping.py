import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .dependencies import get_db, get_current_user, require_admin
from .errors import Conflict, InvalidStage, NotFound, StageRegression
from .models import Order, OrderStatusEnum, User
from .order import get_owned_order, order_query, record_stage
from .store_schema import (
    CancelOrderRequest,
    OrderDetailOut,
    StageUpdateRequest,
    TrackingViewOut,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shipping", tags=["shipping"])

# Fulfillment stages in their only allowed order
STAGE_ORDER: List[OrderStatusEnum] = [
    OrderStatusEnum.CONFIRMED,
    OrderStatusEnum.PACKED,
    OrderStatusEnum.SHIPPED,
    OrderStatusEnum.IN_TRANSIT,
    OrderStatusEnum.OUT_FOR_DELIVERY,
    OrderStatusEnum.DELIVERED,
]

# Targets an admin may move an order to
TARGET_STAGES = STAGE_ORDER[1:]

# Orders waiting on fulfillment
FULFILLMENT_QUEUE = STAGE_ORDER[:-1]

TERMINAL_STATUSES = {OrderStatusEnum.DELIVERED, OrderStatusEnum.CANCELLED}

STAGE_DISPLAY = {
    OrderStatusEnum.CONFIRMED: (
        "Order Confirmed", "Your order has been confirmed and payment received"),
    OrderStatusEnum.PACKED: (
        "Order Packed", "Your order has been packed and ready for shipping"),
    OrderStatusEnum.SHIPPED: (
        "Order Shipped", "Your order has been shipped"),
    OrderStatusEnum.IN_TRANSIT: (
        "In Transit", "Your order is on the way to you"),
    OrderStatusEnum.OUT_FOR_DELIVERY: (
        "Out for Delivery", "Your order is out for delivery"),
    OrderStatusEnum.DELIVERED: (
        "Delivered", "Your order has been delivered"),
}


def parse_target_stage(stage: str) -> OrderStatusEnum:
    valid = [s.value for s in TARGET_STAGES]
    if stage not in valid:
        raise InvalidStage(stage, valid)
    return OrderStatusEnum(stage)


def _load_order(db: Session, order_id: int) -> Order:
    order = order_query(db).filter(Order.id == order_id).first()
    if not order:
        raise NotFound("Order")
    return order


# =====================================================
# Service Logic
# =====================================================

def advance_stage(
    db: Session,
    admin: User,
    order_id: int,
    stage: str,
    tracking_number: str | None = None,
    carrier_name: str | None = None,
    estimated_delivery=None,
    notes: str | None = None,
) -> Order:
    """
    Move an order forward through the fulfillment stages.

    Only strictly forward moves are accepted; the tracking log gets exactly
    one entry per accepted move.
    """
    target = parse_target_stage(stage)
    order = _load_order(db, order_id)

    if order.status not in STAGE_ORDER:
        raise Conflict(f"Order in status {order.status.value} cannot be shipped")

    if STAGE_ORDER.index(order.status) >= STAGE_ORDER.index(target):
        raise StageRegression(target.value)

    order.status = target

    if tracking_number:
        order.tracking_number = tracking_number
    if carrier_name:
        order.carrier_name = carrier_name
    if estimated_delivery:
        order.estimated_delivery = estimated_delivery
    if notes:
        order.delivery_notes = notes

    record_stage(
        db, order, target, STAGE_DISPLAY[target][0],
        notes=notes, updated_by=admin.email,
    )
    db.commit()

    logger.info("Order %s moved to %s by %s", order.order_number, target.value, admin.email)
    return _load_order(db, order_id)


def cancel_order(db: Session, admin: User, order_id: int, notes: str | None = None) -> Order:
    order = _load_order(db, order_id)

    if order.status in TERMINAL_STATUSES:
        raise Conflict(f"Order is already {order.status.value}")

    order.status = OrderStatusEnum.CANCELLED
    record_stage(
        db, order, OrderStatusEnum.CANCELLED, "Cancelled",
        notes=notes, updated_by=admin.email,
    )
    db.commit()

    logger.info("Order %s cancelled by %s", order.order_number, admin.email)
    return _load_order(db, order_id)


def list_confirmed_orders(db: Session) -> List[Order]:
    return (
        order_query(db)
        .filter(Order.status.in_(FULFILLMENT_QUEUE))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def tracking_stages(order: Order) -> list:
    """Display list of the six fulfillment stages for a progress tracker."""
    position = STAGE_ORDER.index(order.status) if order.status in STAGE_ORDER else -1
    stamps = order.stage_timestamps

    stages = []
    for index, stage in enumerate(STAGE_ORDER):
        title, description = STAGE_DISPLAY[stage]
        stages.append({
            "stage": stage,
            "title": title,
            "description": description,
            "completed": index <= position,
            "timestamp": stamps.get(stage.value),
        })
    return stages


def get_tracking_view(db: Session, user: User, order_id: int) -> TrackingViewOut:
    order = get_owned_order(db, user, order_id)
    detail = OrderDetailOut.model_validate(order)
    return TrackingViewOut(**detail.model_dump(), tracking_stages=tracking_stages(order))


# =====================================================
# API Routes
# =====================================================

@router.get("/orders/confirmed")
def confirmed_orders(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    orders = list_confirmed_orders(db)
    return {
        "success": True,
        "message": "Confirmed orders retrieved successfully",
        "data": {
            "orders": [OrderDetailOut.model_validate(o) for o in orders],
            "totalOrders": len(orders),
        },
    }


@router.put("/orders/{order_id}/stage")
def update_shipping_stage(
    order_id: int,
    data: StageUpdateRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    order = advance_stage(
        db,
        admin,
        order_id,
        data.stage,
        tracking_number=data.tracking_number,
        carrier_name=data.carrier_name,
        estimated_delivery=data.estimated_delivery,
        notes=data.notes,
    )
    return {
        "success": True,
        "message": f"Order {order.status.value.lower()} successfully",
        "data": {"order": OrderDetailOut.model_validate(order)},
    }


@router.put("/orders/{order_id}/cancel")
def cancel_shipping_order(
    order_id: int,
    data: CancelOrderRequest | None = None,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    order = cancel_order(db, admin, order_id, data.notes if data else None)
    return {
        "success": True,
        "message": "Order cancelled successfully",
        "data": {"order": OrderDetailOut.model_validate(order)},
    }


@router.get("/tracking/{order_id}")
def order_tracking(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return {
        "success": True,
        "message": "Order tracking retrieved successfully",
        "data": {"order": get_tracking_view(db, current_user, order_id)},
    }
