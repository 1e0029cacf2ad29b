"""
Shared fixtures: in-memory SQLite (StaticPool), a fake OTO API behind
httpx.MockTransport, and a seeded order.
"""
import base64
import hashlib
import hmac
import json
import os
from decimal import Decimal

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("OTO_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("OTO_API_KEY", "")
os.environ.setdefault("OTO_REFRESH_TOKEN", "")

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shipment_engine.database import Base
from shipment_engine.models import Order, OrderItem, OrderStatus
from shipment_engine.services.credential_manager import CredentialManager
from shipment_engine.services.oto_client import OTOClient

OTO_BASE_URL = "https://oto.test"
WEBHOOK_SECRET = os.environ["OTO_WEBHOOK_SECRET"]


class FakeOTO:
    """
    Minimal OTO API. Routes are keyed by (method, path without /rest/v2);
    a route value is a dict (200 JSON), an httpx.Response, a list of either
    (served in order, last one repeats) or a callable(request) -> Response.
    """

    def __init__(self):
        self.routes = {}
        self.requests: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self.handle)

    def on(self, method: str, path: str, response) -> None:
        self.routes[(method.upper(), path)] = response

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and self._path(r) == path]

    @staticmethod
    def _path(request: httpx.Request) -> str:
        path = request.url.path
        return path[len("/rest/v2"):] if path.startswith("/rest/v2") else path

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, self._path(request)))
        if route is None:
            return httpx.Response(404, json={"message": "not found"})
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if callable(route):
            return route(request)
        if isinstance(route, httpx.Response):
            # fresh copy: a route may be served more than once
            return httpx.Response(route.status_code, headers=route.headers, content=route.content)
        return httpx.Response(200, json=route)


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()).decode("utf-8")


def webhook_body(event: str, data: dict) -> bytes:
    return json.dumps({"event": event, "data": data}).encode("utf-8")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_oto():
    return FakeOTO()


@pytest.fixture
def credentials(fake_oto):
    return CredentialManager(OTO_BASE_URL, api_key="test-api-key", transport=fake_oto.transport)


@pytest.fixture
def oto_client(credentials, fake_oto):
    return OTOClient(credentials, base_url=OTO_BASE_URL, timeout=5, transport=fake_oto.transport)


@pytest.fixture
def test_order(db_session):
    """Order O1: two line items (qty 2 and qty 3), no item weights."""
    order = Order(
        order_number="O1",
        customer_first_name="Mona",
        customer_last_name="Adel",
        customer_email="mona@example.com",
        customer_phone="+201234567890",
        shipping_building="12",
        shipping_street="Tahrir St",
        shipping_city="Cairo",
        shipping_country="EG",
        shipping_postcode="11511",
        price=Decimal("750.00"),
        currency="EGP",
        payment_method="CARD",
        status=OrderStatus.PAID,
    )
    order.items = [
        OrderItem(product_id="SKU-A", product_name="Resistance band", quantity=2, total_price=Decimal("300.00")),
        OrderItem(product_id="SKU-B", product_name="Yoga mat", quantity=3, total_price=Decimal("450.00")),
    ]
    db_session.add(order)
    db_session.commit()
    return order
