from decimal import Decimal
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .models import OrderStatusEnum, PaymentMethodEnum, PaymentStatusEnum
from .schemas import CamelModel, UserOut


# ---------- PRODUCT ----------

class ProductBase(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    brand: str = Field(min_length=1, max_length=100)
    image_url: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    rate: Decimal = Field(gt=0, max_digits=10, decimal_places=2)


class ProductCreate(ProductBase):
    pass


class ProductUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    brand: str | None = Field(default=None, min_length=1, max_length=100)
    image_url: str | None = None
    quantity: int | None = Field(default=None, ge=0)
    rate: Decimal | None = Field(default=None, gt=0, max_digits=10, decimal_places=2)

    @field_validator("name", "brand", "rate", mode="before")
    @classmethod
    def required_columns_not_null(cls, v, info):
        # omit the field to leave it unchanged, null would clear a required column
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v


class ProductOut(ProductBase):
    id: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProductBulkRequest(CamelModel):
    # raw rows, each one is validated on its own
    products: List[dict] = []
    count: int = Field(default=100, ge=1, le=5000)


class ProductSummary(CamelModel):
    id: int
    name: str
    brand: str
    image_url: Optional[str] = None
    rate: Decimal


# =========================
# Cart Schemas
# =========================

class CartLineCreate(CamelModel):
    product_id: int
    quantity: int = Field(default=1, gt=0)


class CartBulkAddRequest(CamelModel):
    items: List[CartLineCreate] = Field(min_length=1)


class CartLineUpdate(CamelModel):
    # zero or below removes the line
    quantity: int


class CheckoutPreviewRequest(CamelModel):
    total_amount: Optional[Decimal] = None
    total_items: Optional[int] = None


class CartLineOut(CamelModel):
    id: int
    product_id: int
    quantity: int
    item_total: Decimal
    product: ProductSummary


class CartWarning(CamelModel):
    line_id: int
    product_id: int
    message: str


class CartTotalsOut(CamelModel):
    items: List[CartLineOut]
    total_amount: Decimal
    total_items: int
    item_count: int
    warnings: List[CartWarning]


# =========================
# Order Schemas
# =========================

class OrderItemOut(CamelModel):
    id: int
    product_id: int
    quantity: int
    price: Decimal
    item_total: Decimal
    product: Optional[ProductSummary] = None


class PaymentOut(CamelModel):
    id: int
    amount: Decimal
    status: PaymentStatusEnum
    payment_method: PaymentMethodEnum
    provider_payment_id: Optional[str] = None
    created_at: datetime | None = None


class OrderOut(CamelModel):
    id: int
    order_number: str
    status: OrderStatusEnum
    total_amount: Decimal
    currency: str
    payment_method: Optional[PaymentMethodEnum] = None
    razorpay_order_id: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier_name: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    delivery_notes: Optional[str] = None
    stage_timestamps: Dict[str, datetime] = {}
    total_items: int
    items: List[OrderItemOut]
    payments: List[PaymentOut] = []
    created_at: datetime | None = None
    updated_at: datetime | None = None


class OrderDetailOut(OrderOut):
    customer: UserOut = Field(validation_alias="user")


class CancelOrderRequest(CamelModel):
    notes: Optional[str] = Field(default=None, max_length=500)


# =========================
# Payment Schemas
# =========================

class GatewayOrderRequest(CamelModel):
    order_id: int


class GatewayOrderOut(CamelModel):
    key_id: str
    razorpay_order_id: str
    amount: int
    currency: str
    receipt: str


class PaymentVerifyRequest(BaseModel):
    # field names match the gateway checkout callback
    razorpay_order_id: str = Field(min_length=1)
    razorpay_payment_id: str = Field(min_length=1)
    razorpay_signature: str = Field(min_length=1)


# =========================
# Shipping Schemas
# =========================

class StageUpdateRequest(CamelModel):
    stage: str
    tracking_number: Optional[str] = None
    carrier_name: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    notes: Optional[str] = None


class TrackingStageOut(CamelModel):
    stage: OrderStatusEnum
    title: str
    description: str
    completed: bool
    timestamp: Optional[datetime] = None


class TrackingViewOut(OrderDetailOut):
    tracking_stages: List[TrackingStageOut]
