"""Pytest fixtures for storefront tests."""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.api import app
from storefront.config import Settings, get_settings
from storefront.database import Base
from storefront.dependencies import get_db
from storefront.errors import GatewayError
from storefront.models import Product, RoleEnum, User
from storefront.payments import generate_signature, get_gateway
from storefront.security import hash_password, token_for_user

TEST_KEY_ID = "rzp_test_key"
TEST_KEY_SECRET = "rzp_test_secret"

# hashing is slow on purpose, do it once
_PASSWORD_HASH = hash_password("secret123")


class FakeGateway:
    """Stands in for the Razorpay client and records every call."""

    def __init__(self):
        self.key_id = TEST_KEY_ID
        self.calls = []
        self.fail = False

    def create_order(self, amount, currency, receipt, notes=None):
        self.calls.append({"amount": amount, "currency": currency, "receipt": receipt, "notes": notes})
        if self.fail:
            raise GatewayError("Failed to create Razorpay order")
        return {
            "id": f"order_test{len(self.calls)}",
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
        }


@pytest.fixture
def engine():
    """In-memory database shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(session_factory, gateway):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    test_settings = Settings(
        RAZORPAY_KEY_ID=TEST_KEY_ID,
        RAZORPAY_KEY_SECRET=TEST_KEY_SECRET,
    )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_settings] = lambda: test_settings

    yield TestClient(app)

    app.dependency_overrides.clear()


def _make_user(db, email, role=RoleEnum.USER):
    user = User(
        email=email,
        hashed_password=_PASSWORD_HASH,
        full_name="Test User",
        phone="9999999999",
        house_number="12",
        street="MG Road",
        area="Indiranagar",
        city="Bengaluru",
        state="Karnataka",
        pin_code="560038",
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def user(db):
    return _make_user(db, "user@example.com")


@pytest.fixture
def other_user(db):
    return _make_user(db, "other@example.com")


@pytest.fixture
def admin(db):
    return _make_user(db, "admin@example.com", role=RoleEnum.ADMIN)


def headers_for(user):
    return {"Authorization": f"Bearer {token_for_user(user)}"}


@pytest.fixture
def user_headers(user):
    return headers_for(user)


@pytest.fixture
def other_headers(other_user):
    return headers_for(other_user)


@pytest.fixture
def admin_headers(admin):
    return headers_for(admin)


@pytest.fixture
def make_product(db):
    def _make(name="Widget", rate="100.00", brand="Acme", quantity=10):
        product = Product(name=name, brand=brand, rate=Decimal(rate), quantity=quantity)
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


API = "/api/v1"


@pytest.fixture
def place_order(client, make_product):
    """Fill the cart (X at 100.00 x2, Y at 50.00 x1) and check it out."""

    def _place(headers):
        x = make_product(name="Product X", rate="100.00")
        y = make_product(name="Product Y", rate="50.00")
        client.post(f"{API}/cart", json={"productId": x.id, "quantity": 2}, headers=headers)
        client.post(f"{API}/cart", json={"productId": y.id, "quantity": 1}, headers=headers)
        response = client.post(f"{API}/orders/create", headers=headers)
        assert response.status_code == 201, response.json()
        return response.json()["data"]["order"]

    return _place


@pytest.fixture
def pay_order(client):
    """Create the gateway order and post a correctly signed confirmation."""

    def _pay(order_id, headers, payment_id="pay_test1"):
        created = client.post(
            f"{API}/orders/razorpay/create", json={"orderId": order_id}, headers=headers
        )
        assert created.status_code == 200, created.json()
        gateway_order_id = created.json()["data"]["razorpayOrderId"]
        response = client.post(
            f"{API}/orders/razorpay/verify",
            json={
                "razorpay_order_id": gateway_order_id,
                "razorpay_payment_id": payment_id,
                "razorpay_signature": generate_signature(TEST_KEY_SECRET, gateway_order_id, payment_id),
            },
            headers=headers,
        )
        assert response.status_code == 200, response.json()
        return response.json()["data"]

    return _pay


@pytest.fixture
def confirmed_order(place_order, pay_order, user_headers):
    order = place_order(user_headers)
    pay_order(order["id"], user_headers)
    return order
