from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .dependencies import get_db, require_admin
from .models import Order, User
from .order import order_query
from .schemas import UserOut
from .store_schema import OrderDetailOut

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/orders")
def all_orders(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    orders = order_query(db).order_by(Order.created_at.desc(), Order.id.desc()).all()
    return {
        "success": True,
        "message": "All orders retrieved successfully",
        "data": {
            "orders": [OrderDetailOut.model_validate(o) for o in orders],
            "totalOrders": len(orders),
        },
    }


@router.get("/users")
def list_users(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    users = db.query(User).order_by(User.id).offset(skip).limit(limit).all()
    return {
        "success": True,
        "message": "Users retrieved successfully",
        "data": {
            "users": [UserOut.model_validate(u) for u in users],
            "totalUsers": db.query(User).count(),
        },
    }
