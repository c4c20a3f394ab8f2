# payments.py
import hashlib
import hmac
import logging
from decimal import Decimal, ROUND_HALF_UP

import requests
from fastapi import APIRouter, Depends
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .cart import clear as clear_cart
from .config import Settings, get_settings
from .dependencies import get_db, get_current_user
from .errors import Conflict, GatewayError, InvalidSignature, NotFound, StoreError
from .models import (
    Order,
    OrderStatusEnum,
    Payment,
    PaymentMethodEnum,
    PaymentStatusEnum,
    User,
)
from .order import get_owned_order, order_query, record_stage
from .store_schema import (
    GatewayOrderOut,
    GatewayOrderRequest,
    OrderOut,
    PaymentOut,
    PaymentVerifyRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders/razorpay", tags=["Razorpay Payments"])


# ---------------------------
# Gateway client
# ---------------------------
class RazorpayGateway:
    """Thin client for the Razorpay Orders API."""

    def __init__(self, key_id: str, key_secret: str, api_url: str, timeout: float = 10.0):
        self.key_id = key_id
        self.key_secret = key_secret
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    def create_order(self, amount: int, currency: str, receipt: str, notes: dict | None = None) -> dict:
        payload = {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        try:
            response = requests.post(
                f"{self.api_url}/orders",
                json=payload,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Razorpay order creation for receipt %s failed: %s", receipt, exc)
            raise GatewayError("Failed to create Razorpay order") from exc

        return response.json()


def get_gateway(settings: Settings = Depends(get_settings)) -> RazorpayGateway:
    return RazorpayGateway(
        key_id=settings.RAZORPAY_KEY_ID,
        key_secret=settings.RAZORPAY_KEY_SECRET,
        api_url=settings.RAZORPAY_API_URL,
        timeout=settings.RAZORPAY_TIMEOUT,
    )


# ---------------------------
# Utility functions
# ---------------------------
def to_subunits(amount: Decimal) -> int:
    """Rupees to paise, rounded half-up."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def generate_signature(secret: str, gateway_order_id: str, gateway_payment_id: str) -> str:
    message = f"{gateway_order_id}|{gateway_payment_id}"
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def signature_matches(secret: str, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
    expected = generate_signature(secret, gateway_order_id, gateway_payment_id)
    # bytes, so non-ASCII input is a mismatch rather than a TypeError
    return hmac.compare_digest(expected.encode(), signature.encode())


# ---------------------------
# Service logic
# ---------------------------
def _stored_gateway_order(gateway: RazorpayGateway, order: Order, amount: int) -> dict:
    return {
        "key_id": gateway.key_id,
        "razorpay_order_id": order.razorpay_order_id,
        "amount": amount,
        "currency": order.currency,
        "receipt": order.order_number,
    }


def create_gateway_order(db: Session, gateway: RazorpayGateway, user: User, order_id: int) -> dict:
    """
    Create the remote gateway order for one of the caller's pending orders.

    The gateway id is stored once; asking again returns the stored id
    without another remote call.
    """
    order = get_owned_order(db, user, order_id)

    if order.status != OrderStatusEnum.PENDING:
        raise Conflict("Only pending orders can be paid")

    amount = to_subunits(order.total_amount)

    if order.razorpay_order_id:
        return _stored_gateway_order(gateway, order, amount)

    remote = gateway.create_order(
        amount=amount,
        currency=order.currency,
        receipt=order.order_number,
        notes={"orderId": str(order.id), "userId": str(user.id)},
    )

    try:
        stored = db.execute(
            update(Order)
            .where(Order.id == order.id, Order.razorpay_order_id.is_(None))
            .values(razorpay_order_id=remote["id"])
            .execution_options(synchronize_session=False)
        ).rowcount
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Storing Razorpay order %s on order %s failed", remote["id"], order.order_number)
        raise StoreError("Failed to create Razorpay order")

    if not stored:
        # a concurrent request stored its gateway order first
        db.refresh(order)
        logger.warning(
            "Razorpay order %s for order %s discarded, %s already stored",
            remote["id"], order.order_number, order.razorpay_order_id,
        )
        return _stored_gateway_order(gateway, order, amount)

    logger.info("Razorpay order %s created for order %s", remote["id"], order.order_number)

    return {
        "key_id": gateway.key_id,
        "razorpay_order_id": remote["id"],
        "amount": remote.get("amount", amount),
        "currency": remote.get("currency", order.currency),
        "receipt": remote.get("receipt", order.order_number),
    }


def _verification_result(order: Order, payment: Payment) -> dict:
    return {
        "order": OrderOut.model_validate(order),
        "payment": PaymentOut.model_validate(payment),
    }


def _existing_success(db: Session, order: Order):
    return (
        db.query(Payment)
        .filter(Payment.order_id == order.id, Payment.status == PaymentStatusEnum.SUCCESS)
        .first()
    )


def verify_payment(
    db: Session,
    user: User,
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
    secret: str,
) -> dict:
    """
    Check the checkout callback signature and confirm the order.

    A bad signature mutates nothing. A replayed callback for an order that
    already has a successful payment returns that payment unchanged.
    """
    if not signature_matches(secret, gateway_order_id, gateway_payment_id, signature):
        logger.warning(
            "Signature mismatch for Razorpay order %s (user %s)", gateway_order_id, user.id
        )
        raise InvalidSignature()

    order = (
        order_query(db)
        .filter(Order.razorpay_order_id == gateway_order_id, Order.user_id == user.id)
        .first()
    )
    if not order:
        raise NotFound("Order")

    existing = _existing_success(db, order)
    if existing:
        logger.info("Payment %s for order %s already recorded", gateway_payment_id, order.order_number)
        return _verification_result(order, existing)

    if order.status == OrderStatusEnum.CANCELLED:
        raise Conflict("Order has been cancelled")

    try:
        payment = Payment(
            order_id=order.id,
            user_id=user.id,
            payment_method=PaymentMethodEnum.RAZORPAY,
            amount=order.total_amount,
            status=PaymentStatusEnum.SUCCESS,
            provider_payment_id=gateway_payment_id,
        )
        db.add(payment)

        order.status = OrderStatusEnum.CONFIRMED
        order.payment_method = PaymentMethodEnum.RAZORPAY
        record_stage(db, order, OrderStatusEnum.CONFIRMED, "Payment received", updated_by=user.email)

        clear_cart(db, user.id, commit=False)
        db.commit()
    except IntegrityError:
        # a concurrent verification of the same payment won the insert
        db.rollback()
        existing = _existing_success(db, order)
        if existing is None:
            logger.warning("Payment %s is already recorded for another order", gateway_payment_id)
            raise Conflict("Payment already recorded for another order")
        db.refresh(order)
        return _verification_result(order, existing)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Recording payment %s failed", gateway_payment_id)
        raise StoreError("Failed to verify payment")

    logger.info("Payment %s verified, order %s confirmed", gateway_payment_id, order.order_number)

    order = order_query(db).filter(Order.id == order.id).one()
    db.refresh(payment)
    return _verification_result(order, payment)


# ---------------------------
# Endpoints
# ---------------------------
@router.post("/create")
def create_razorpay_order(
    payload: GatewayOrderRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway: RazorpayGateway = Depends(get_gateway),
):
    result = create_gateway_order(db, gateway, current_user, payload.order_id)
    return {
        "success": True,
        "message": "Razorpay order created successfully",
        "data": GatewayOrderOut.model_validate(result),
    }


@router.post("/verify")
def verify_razorpay_payment(
    payload: PaymentVerifyRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    result = verify_payment(
        db,
        current_user,
        payload.razorpay_order_id,
        payload.razorpay_payment_id,
        payload.razorpay_signature,
        secret=settings.RAZORPAY_KEY_SECRET,
    )
    return {
        "success": True,
        "message": "Payment verified successfully",
        "data": result,
    }
