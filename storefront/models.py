"""
Database models for the storefront
----------------------------------
Tech stack:
- FastAPI
- SQLAlchemy ORM
- PostgreSQL / SQLite compatible

This file contains:
- User model (customers and admins, told apart by role)
- Product model
- CartLine model
- Order, OrderItem, Payment & OrderTracking models
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    ForeignKey,
    Text,
    Numeric,
    UniqueConstraint,
    Enum as SQLEnum
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from datetime import datetime, timezone
from enum import Enum

from .database import Base


def utcnow():
    return datetime.now(timezone.utc)


class RoleEnum(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class OrderStatusEnum(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PACKED = "PACKED"
    SHIPPED = "SHIPPED"
    IN_TRANSIT = "IN_TRANSIT"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentMethodEnum(str, Enum):
    RAZORPAY = "RAZORPAY"


class PaymentStatusEnum(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


# User

class User(Base):
    """
    Represents application users.
    Used for authentication, ownership checks and the shipping address.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    # Login credential
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)

    full_name = Column(String(100), nullable=False)
    phone = Column(String(20), nullable=False)

    # Default shipping address
    house_number = Column(String(50), nullable=False)
    street = Column(String(100), nullable=False)
    area = Column(String(100), nullable=False)
    city = Column(String(50), nullable=False)
    state = Column(String(50), nullable=False)
    pin_code = Column(String(10), nullable=False)

    role = Column(SQLEnum(RoleEnum), default=RoleEnum.USER, nullable=False)

    cart_lines = relationship(
        "CartLine",
        back_populates="user",
        cascade="all, delete-orphan"
    )

    orders = relationship(
        "Order",
        back_populates="user",
        cascade="all, delete-orphan"
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    @property
    def is_admin(self):
        return self.role == RoleEnum.ADMIN

    def __str__(self):
        return self.email


# Product

class Product(Base):
    """
    Represents a sellable product.
    """

    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String(200), nullable=False)
    brand = Column(String(100), nullable=False)
    image_url = Column(Text, nullable=True)

    # Available stock, None means not tracked
    quantity = Column(Integer, nullable=True)

    # Price stored as Decimal for accuracy
    rate = Column(Numeric(10, 2), nullable=False)

    cart_lines = relationship(
        "CartLine",
        back_populates="product",
        cascade="all, delete"
    )

    order_items = relationship(
        "OrderItem",
        back_populates="product",
        cascade="all, delete"
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    def __str__(self):
        return self.name


# CartLine

class CartLine(Base):
    """
    One product entry in a user's cart.
    A user holds at most one line per product.
    """

    __tablename__ = "cart"
    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_cart_user_product"),
    )

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    product_id = Column(
        Integer,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False
    )

    # Always >= 1, a line that would drop to zero is deleted
    quantity = Column(Integer, nullable=False, default=1)

    user = relationship("User", back_populates="cart_lines")
    product = relationship("Product", back_populates="cart_lines")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    def __str__(self):
        return f"{self.id} (product {self.product_id})"


# Order

class Order(Base):
    """
    Represents an order created at checkout from the cart.
    """

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    order_number = Column(String(40), unique=True, nullable=False)

    status = Column(
        SQLEnum(OrderStatusEnum),
        default=OrderStatusEnum.PENDING,
        nullable=False
    )

    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    payment_method = Column(SQLEnum(PaymentMethodEnum), nullable=True)

    # Set once, after the gateway order is created
    razorpay_order_id = Column(String(64), unique=True, nullable=True)

    # Shipping details, merged in by the admin on stage updates
    tracking_number = Column(String(100), nullable=True)
    carrier_name = Column(String(100), nullable=True)
    estimated_delivery = Column(DateTime(timezone=True), nullable=True)
    delivery_notes = Column(Text, nullable=True)

    user = relationship("User", back_populates="orders")

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan"
    )

    payments = relationship(
        "Payment",
        back_populates="order",
        cascade="all, delete-orphan"
    )

    tracking = relationship(
        "OrderTracking",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderTracking.id"
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    @property
    def stage_timestamps(self):
        """First time the order entered each stage, read from the tracking log."""
        stamps = {}
        for entry in self.tracking:
            stamps.setdefault(entry.stage.value, entry.created_at)
        return stamps

    @property
    def total_items(self):
        return sum(item.quantity for item in self.items)

    def __str__(self):
        return f"Order {self.order_number}"


class OrderItem(Base):
    """
    Individual product entry inside an order.
    Stores snapshot price for order history.
    """

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)

    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False
    )

    product_id = Column(
        Integer,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False
    )

    quantity = Column(Integer, nullable=False)

    # Snapshot of the product rate at time of order
    price = Column(Numeric(10, 2), nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product", back_populates="order_items")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    @property
    def item_total(self):
        return self.quantity * self.price

    def __str__(self):
        return f"OrderItem {self.id}"


# Payment

class Payment(Base):
    """
    A payment recorded after the gateway signature was verified.
    """

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)

    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )

    payment_method = Column(SQLEnum(PaymentMethodEnum), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)

    status = Column(
        SQLEnum(PaymentStatusEnum),
        default=PaymentStatusEnum.PENDING,
        nullable=False
    )

    # A replayed verification hits this constraint instead of double-crediting
    provider_payment_id = Column(String(64), unique=True, nullable=True)

    order = relationship("Order", back_populates="payments")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )


# OrderTracking

class OrderTracking(Base):
    """
    Append-only log of status changes of an order.
    """

    __tablename__ = "order_tracking"

    id = Column(Integer, primary_key=True, index=True)

    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    stage = Column(SQLEnum(OrderStatusEnum), nullable=False)
    status = Column(String(50), nullable=False)
    notes = Column(Text, nullable=True)
    updated_by = Column(String(100), nullable=True)

    order = relationship("Order", back_populates="tracking")

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
