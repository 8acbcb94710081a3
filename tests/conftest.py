import asyncio
import hashlib
import hmac
import json
import os

os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-0123456789abcdef0123456789")

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

import auth
import database
from config import settings
from main import app
from payments import PaymentGatewayError, get_gateway
from schemas import Product


class FakeGateway:
    def __init__(self):
        self.orders = []
        self.refunds = []
        self.fail = False

    async def create_order(self, amount, currency, receipt, notes=None):
        if self.fail:
            raise PaymentGatewayError("gateway unavailable")
        order = {
            "id": f"order_test{len(self.orders) + 1}",
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        self.orders.append(order)
        return order

    async def refund_payment(self, payment_id, amount=None):
        refund = {"id": f"rfnd_test{len(self.refunds) + 1}", "payment_id": payment_id, "amount": amount}
        self.refunds.append(refund)
        return refund


def run(coro):
    return asyncio.run(coro)


def sign(secret, message):
    if isinstance(message, str):
        message = message.encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


@pytest.fixture
def db(monkeypatch):
    mock_db = AsyncMongoMockClient()["nail-ecommerce-test"]
    monkeypatch.setattr(database, "_db", mock_db)
    return mock_db


@pytest.fixture
def gateway():
    fake = FakeGateway()
    app.dependency_overrides[get_gateway] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_gateway, None)


@pytest.fixture
def client(db, gateway):
    return TestClient(app, headers={"Accept": "application/json"})


def _signup(client, name, email, phone=None):
    resp = client.post("/auth/signup", json={"name": name, "email": email, "password": "secret123", "phone": phone})
    assert resp.status_code == 201, resp.text
    client.cookies.clear()
    body = resp.json()
    return {"id": body["user"]["id"], "headers": {"Authorization": f"Bearer {body['token']}"}}


@pytest.fixture
def customer(client):
    return _signup(client, "Asha", "asha@mailbox.org", "9876543210")


@pytest.fixture
def other_customer(client):
    return _signup(client, "Ben", "ben@mailbox.org")


@pytest.fixture
def admin(client):
    run(auth.ensure_admin())
    resp = client.post("/auth/login", json={"email": settings.ADMIN_EMAIL, "password": settings.ADMIN_PASSWORD})
    assert resp.status_code == 200, resp.text
    client.cookies.clear()
    return {"id": resp.json()["user"]["id"], "headers": {"Authorization": f"Bearer {resp.json()['token']}"}}


def insert_product(db, **overrides):
    data = {
        "title": "Classic French Almond",
        "description": "Nude base with white tips",
        "price": 40.0,
        "category": "french",
        "colors": ["nude", "white"],
        "images": [{"url": "https://img.example/a.jpg"}, {"url": "https://img.example/b.jpg"}],
        "variants": [
            {"size": "M", "design": "classic", "stock": 5},
            {"size": "S", "design": "classic", "stock": 1},
        ],
    }
    data.update(overrides)
    doc = Product(**data).model_dump()
    result = run(db["product"].insert_one(doc))
    return str(result.inserted_id)


@pytest.fixture
def product_id(db):
    return insert_product(db)


def variant_stock(db, product_id, size, design):
    product = run(db["product"].find_one({"_id": ObjectId(product_id)}))
    for v in product["variants"]:
        if v["size"] == size and v["design"] == design:
            return v["stock"]
    return None


def find_order(db, order_id):
    return run(db["order"].find_one({"_id": ObjectId(order_id)}))


SHIPPING_INFO = {
    "name": "Asha Rao",
    "phone": "9876543210",
    "address": "12 MG Road",
    "city": "Bengaluru",
    "state": "KA",
    "postal_code": "560001",
    "country": "IN",
}


def line(product_id, size="M", design="classic", quantity=1):
    return {"product_id": product_id, "variant": {"size": size, "design": design}, "quantity": quantity}


def checkout(client, user, product_id, quantity=1):
    resp = client.post(
        "/cart/create-razorpay-order",
        json={"items": [line(product_id, quantity=quantity)], "shipping_info": SHIPPING_INFO},
        headers=user["headers"],
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def webhook(client, event, secret=None, signature=None):
    body = json.dumps(event).encode()
    sig = signature if signature is not None else sign(secret or settings.RAZORPAY_WEBHOOK_SECRET, body)
    return client.post(
        "/webhooks/razorpay",
        content=body,
        headers={"Content-Type": "application/json", "X-Razorpay-Signature": sig},
    )


def payment_event(event_type, order_data, payment_id="pay_hook1"):
    return {
        "event": event_type,
        "payload": {"payment": {"entity": {
            "id": payment_id,
            "order_id": order_data["razorpay_order_id"],
            "notes": {"order_id": order_data["order_id"]},
        }}},
    }
