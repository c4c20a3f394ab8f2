import logging
from decimal import Decimal, ROUND_HALF_UP

from fastapi import APIRouter, Depends, status
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from .dependencies import get_db, get_current_user
from .errors import EmptyCart, NotFound
from .models import CartLine, Product, User
from .store_schema import (
    CartBulkAddRequest,
    CartLineCreate,
    CartLineOut,
    CartLineUpdate,
    CartTotalsOut,
    CheckoutPreviewRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cart", tags=["cart"])

CENTS = Decimal("0.01")


def round_money(value) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


# =====================================================
# Service Logic
# =====================================================

def _get_line(db: Session, user_id: int, product_id: int):
    return (
        db.query(CartLine)
        .options(joinedload(CartLine.product))
        .filter(CartLine.user_id == user_id, CartLine.product_id == product_id)
        .first()
    )


def _increment(db: Session, user_id: int, product_id: int, quantity: int) -> int:
    # quantity = quantity + :delta, evaluated by the database
    result = db.execute(
        update(CartLine)
        .where(CartLine.user_id == user_id, CartLine.product_id == product_id)
        .values(quantity=CartLine.quantity + quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def add_line(db: Session, user_id: int, product_id: int, quantity: int = 1) -> CartLine:
    """Add ``quantity`` of a product to the cart, merging into an existing line."""
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFound("Product")

    if not _increment(db, user_id, product_id, quantity):
        db.add(CartLine(user_id=user_id, product_id=product_id, quantity=quantity))
        try:
            db.commit()
        except IntegrityError:
            # another request inserted the line first
            db.rollback()
            _increment(db, user_id, product_id, quantity)
            db.commit()
    else:
        db.commit()

    db.expire_all()
    return _get_line(db, user_id, product_id)


def add_lines(db: Session, user_id: int, items) -> dict:
    """
    Add several products in one request.

    Each item goes through ``add_line`` on its own, so an unknown product
    only fails its own entry. Totals cover this request's quantities only.
    """
    added = []
    failed = []
    request_total = Decimal("0")
    request_items = 0

    for item in items:
        try:
            line = add_line(db, user_id, item.product_id, item.quantity)
        except NotFound as exc:
            failed.append({"product_id": item.product_id, "error": exc.message})
            continue

        added.append(line)
        request_total += item.quantity * line.product.rate
        request_items += item.quantity

    if failed:
        logger.info("Bulk cart add for user %s: %d added, %d failed", user_id, len(added), len(failed))

    return {
        "added": added,
        "failed": failed,
        "request_total": round_money(request_total),
        "request_items": request_items,
    }


def remove_line(db: Session, user_id: int, product_id: int) -> None:
    deleted = (
        db.query(CartLine)
        .filter(CartLine.user_id == user_id, CartLine.product_id == product_id)
        .delete(synchronize_session=False)
    )
    if not deleted:
        raise NotFound("Cart item")
    db.commit()


def set_quantity(db: Session, user_id: int, product_id: int, quantity: int):
    """Set the stored quantity; zero or below removes the line and returns None."""
    if quantity <= 0:
        remove_line(db, user_id, product_id)
        return None

    line = _get_line(db, user_id, product_id)
    if not line:
        raise NotFound("Cart item")

    line.quantity = quantity
    db.commit()
    db.refresh(line)
    return line


def clear(db: Session, user_id: int, commit: bool = True) -> int:
    deleted = (
        db.query(CartLine)
        .filter(CartLine.user_id == user_id)
        .delete(synchronize_session=False)
    )
    if commit:
        db.commit()
    return deleted


def compute_totals(db: Session, user_id: int) -> dict:
    """
    Read the cart with totals.

    A line whose product no longer resolves is reported in ``warnings`` and
    contributes nothing; it never fails the whole computation.
    """
    lines = (
        db.query(CartLine)
        .options(joinedload(CartLine.product))
        .filter(CartLine.user_id == user_id)
        .order_by(CartLine.created_at.desc(), CartLine.id.desc())
        .all()
    )

    items = []
    warnings = []
    total_amount = Decimal("0")
    total_items = 0

    for line in lines:
        if line.product is None:
            logger.warning(
                "Cart line %s of user %s references missing product %s",
                line.id, user_id, line.product_id,
            )
            warnings.append({
                "line_id": line.id,
                "product_id": line.product_id,
                "message": "Product is no longer available",
            })
            continue

        item_total = line.quantity * line.product.rate
        total_amount += item_total
        total_items += line.quantity
        items.append({
            "id": line.id,
            "product_id": line.product_id,
            "quantity": line.quantity,
            "item_total": round_money(item_total),
            "product": line.product,
        })

    return {
        "items": items,
        "total_amount": round_money(total_amount),
        "total_items": total_items,
        "item_count": len(items),
        "warnings": warnings,
    }


def _line_out(line: CartLine) -> CartLineOut:
    return CartLineOut(
        id=line.id,
        product_id=line.product_id,
        quantity=line.quantity,
        item_total=round_money(line.quantity * line.product.rate),
        product=line.product,
    )


# =====================================================
# API Routes
# =====================================================

@router.post("", status_code=status.HTTP_201_CREATED)
def add_to_cart(
    data: CartLineCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    line = add_line(db, current_user.id, data.product_id, data.quantity)
    return {
        "success": True,
        "message": "Item added to cart successfully",
        "data": {"cartItem": _line_out(line)},
    }


@router.post("/add-multiple", status_code=status.HTTP_201_CREATED)
def add_multiple_to_cart(
    data: CartBulkAddRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    result = add_lines(db, current_user.id, data.items)
    return {
        "success": True,
        "message": "Multiple items processed",
        "data": {
            "successful": [_line_out(line) for line in result["added"]],
            "failed": [
                {"productId": f["product_id"], "error": f["error"]} for f in result["failed"]
            ],
            "totalProcessed": len(data.items),
            "successfulCount": len(result["added"]),
            "failedCount": len(result["failed"]),
            "currentRequestSummary": {
                "totalAmount": str(result["request_total"]),
                "totalItems": result["request_items"],
            },
        },
    }


@router.get("")
def get_cart(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return {
        "success": True,
        "message": "Cart retrieved successfully",
        "data": CartTotalsOut.model_validate(compute_totals(db, current_user.id)),
    }


@router.post("/checkout")
def checkout_preview(
    data: CheckoutPreviewRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Recompute the cart server-side and compare with what the client shows."""
    summary = CartTotalsOut.model_validate(compute_totals(db, current_user.id))
    if summary.item_count == 0:
        raise EmptyCart()

    frontend_total = round_money(data.total_amount or 0)
    frontend_items = data.total_items or 0

    return {
        "success": True,
        "message": "Checkout processed successfully",
        "data": {
            "orderSummary": summary,
            "totalsComparison": {
                "frontendTotal": str(frontend_total),
                "backendTotal": str(summary.total_amount),
                "frontendItems": frontend_items,
                "backendItems": summary.total_items,
                "totalsMatch": (
                    frontend_total == summary.total_amount
                    and frontend_items == summary.total_items
                ),
            },
        },
    }


@router.put("/{product_id}")
def update_cart_item(
    product_id: int,
    data: CartLineUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    line = set_quantity(db, current_user.id, product_id, data.quantity)
    if line is None:
        return {"success": True, "message": "Item removed from cart successfully", "data": None}

    return {
        "success": True,
        "message": "Cart item updated successfully",
        "data": {"cartItem": _line_out(line)},
    }


# Declared before /{product_id} so "clear" is not parsed as an id
@router.delete("/clear")
def clear_cart(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    removed = clear(db, current_user.id)
    return {"success": True, "message": "Cart cleared successfully", "data": {"removed": removed}}


@router.delete("/{product_id}")
def remove_from_cart(
    product_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    remove_line(db, current_user.id, product_id)
    return {"success": True, "message": "Item removed from cart successfully", "data": None}
