"""
Fixtures for the storefront API tests.

The app runs against an in-memory SQLite database; QPay and e-chuchu are
replaced by httpx.MockTransport fakes that record every request.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("QPAY_LOGIN", "TEST_MERCHANT")
os.environ.setdefault("QPAY_PASSWORD", "test-password")
os.environ.setdefault("NEXT_PUBLIC_API_URL", "https://api.tsaas.test/api")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import json
import itertools
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest
from fastapi.testclient import TestClient

from storefront.core_settings import get_settings
from storefront.domain.enums import OrderStatus, PaymentStatus
from storefront.domain.models import Base, Order, OrderItem
from storefront.infrastructure import db as db_module
from storefront.infrastructure.chuchu_client import ChuchuClient, get_chuchu_client
from storefront.infrastructure.qpay_client import QPayClient, TokenCache, get_qpay_client
from storefront.main import app

SHIPPING_ADDRESS = "Улаанбаатар, Дүүрэг: СБД, Хороо: 1, 5-р байр 12 тоот"


class FakeQPay:
    """In-memory QPay merchant API."""

    def __init__(self):
        self.requests = []
        self.invoices = {}
        self.paid = set()
        self.fail_invoice = False
        self._ids = itertools.count(1)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/auth/token"):
            return httpx.Response(200, json={"access_token": "qpay-token", "expires_in": 3600})
        if path.endswith("/invoice") and request.method == "POST":
            if self.fail_invoice:
                return httpx.Response(500, json={"message": "INVOICE_CODE_INVALID"})
            body = json.loads(request.content)
            invoice_id = f"INV-{next(self._ids)}"
            self.invoices[invoice_id] = body
            return httpx.Response(200, json={
                "invoice_id": invoice_id,
                "qr_text": f"qr-{invoice_id}",
                "qr_image": "iVBORw0KGgo=",
                "urls": [{"name": "Khan bank", "link": "khanbank://q?qPay_QRcode=x"}],
            })
        if "/invoice/" in path and request.method == "GET":
            invoice_id = path.rsplit("/", 1)[-1]
            body = self.invoices.get(invoice_id)
            if body is None:
                return httpx.Response(404, json={"message": "INVOICE_NOTFOUND"})
            return httpx.Response(200, json={
                "invoice_id": invoice_id,
                "sender_invoice_no": body["sender_invoice_no"],
                "invoice_receiver_data": {"name": "Бат-Эрдэнэ", "phone": "99001122"},
            })
        if path.endswith("/payment/check"):
            invoice_id = json.loads(request.content)["object_id"]
            if invoice_id in self.paid:
                rows = [{"payment_id": f"PAY-{invoice_id}", "payment_status": "PAID", "payment_amount": "55000"}]
            else:
                rows = []
            return httpx.Response(200, json={"count": len(rows), "paid_amount": 0, "rows": rows})
        return httpx.Response(404, json={"message": "NOT_FOUND"})


class FakeChuchu:
    """Courier endpoint that records delivery payloads."""

    def __init__(self):
        self.payloads = []
        self.fail = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.fail:
            return httpx.Response(503, json={"message": "courier unavailable"})
        payload = json.loads(request.content)
        self.payloads.append(payload)
        return httpx.Response(200, json={"success": True, "delivery_id": len(self.payloads)})


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(db_module.engine)
    yield
    Base.metadata.drop_all(db_module.engine)


@pytest.fixture
def db():
    session = db_module.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_qpay():
    return FakeQPay()


@pytest.fixture
def fake_chuchu():
    return FakeChuchu()


@pytest.fixture
def qpay_client(fake_qpay):
    settings = get_settings()
    return QPayClient(
        settings,
        cache=TokenCache(settings.QPAY_TOKEN_TTL_SECONDS),
        transport=httpx.MockTransport(fake_qpay.handler),
    )


@pytest.fixture
def chuchu_client(fake_chuchu):
    return ChuchuClient(get_settings(), transport=httpx.MockTransport(fake_chuchu.handler))


@pytest.fixture
def client(qpay_client, chuchu_client):
    app.dependency_overrides[get_qpay_client] = lambda: qpay_client
    app.dependency_overrides[get_chuchu_client] = lambda: chuchu_client
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_access_token(user_id: str, role=None, expires_minutes: int = 60) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {"sub": user_id, "userId": user_id, "iat": now, "exp": now + timedelta(minutes=expires_minutes)}
    if role:
        payload["role"] = role
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def auth_headers(user_id: str, role=None) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}


@pytest.fixture
def user_headers():
    return auth_headers("user-1")


@pytest.fixture
def admin_headers():
    return auth_headers("admin-1", role="admin")


def order_payload(**overrides) -> dict:
    payload = {
        "items": [
            {"productId": "p-1", "name": "Notebook", "nameMn": "Дэвтэр", "price": 25000, "quantity": 2},
        ],
        "subtotal": 50000,
        "shippingCost": 5000,
        "grandTotal": 55000,
        "shippingAddress": SHIPPING_ADDRESS,
        "phoneNumber": "99112233",
        "customerName": "Бат",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_order(db):
    """Insert an order directly, bypassing checkout validation."""

    def _make(items=True, **fields):
        values = {
            "order_number": f"ORD250101{1000 + db.query(Order).count()}",
            "user_id": "user-1",
            "subtotal": 50000,
            "shipping_cost": 5000,
            "tax": 0,
            "grand_total": 55000,
            "payment_status": int(PaymentStatus.PENDING),
            "order_status": int(OrderStatus.PROCESSING),
            "shipping_address": SHIPPING_ADDRESS,
            "phone_number": "99112233",
            "customer_name": "Бат",
        }
        values.update(fields)
        order = Order(**values)
        if items:
            order.items = [OrderItem(product_id="p-1", name="Notebook", name_mn="Дэвтэр", price=25000, quantity=2)]
        db.add(order)
        db.commit()
        db.refresh(order)
        return order

    return _make
