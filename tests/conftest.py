import hashlib
import hmac
import os
import time

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_BACKEND"] = "memory"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.api.deps import (
    get_admin_api_key,
    get_gateway,
    get_production_queue,
    get_webhook_secret,
)
from storefront.data import models  # noqa: F401
from storefront.data.database import Base, get_db
from storefront.domain.errors import GatewayError
from storefront.domain.schemas import AddressIn, CustomerIn, OrderItemIn
from storefront.main import create_app
from storefront.repos.blog_repo import build_blog_repo_factory
from storefront.services.fulfillment_client import FulfillmentGateway
from storefront.services.rate_limiter import InMemoryRateLimiter

API_KEY = "test-admin-key"
WEBHOOK_SECRET = "whsec_test_secret"


class FakeGateway(FulfillmentGateway):
    """In-process stand-in for the fulfillment provider."""

    def __init__(self):
        self.created = []
        self.produced = []
        self.quotes = []
        self.remote_orders = {}
        self.create_error: GatewayError | None = None
        self.production_error: GatewayError | None = None
        self.create_response = None
        self._seq = 0

    def create_order(self, request):
        self.created.append(request)
        if self.create_error:
            raise self.create_error
        if self.create_response is not None:
            return self.create_response
        self._seq += 1
        remote = {"id": f"remote-{self._seq}", "status": "pending"}
        self.remote_orders[remote["id"]] = {**remote, "external_id": request["external_id"]}
        return remote

    def send_to_production(self, remote_order_id):
        self.produced.append(remote_order_id)
        if self.production_error:
            raise self.production_error
        return {"id": remote_order_id}

    def get_shipping_quote(self, line_items, address):
        self.quotes.append((line_items, address))
        return {"standard": 499, "express": 1299}

    def get_order(self, remote_order_id):
        if remote_order_id in self.remote_orders:
            return self.remote_orders[remote_order_id]
        raise GatewayError(404, "Order not found")


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(engine):
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def production_queue():
    return []


@pytest.fixture()
def limiter():
    limiter = InMemoryRateLimiter(limit=10_000, window_seconds=60, cleanup_seconds=0)
    yield limiter
    limiter.close()


@pytest.fixture()
def app(db, gateway, production_queue, limiter, tmp_path):
    app = create_app(
        rate_limiter=limiter,
        blog_repo_factory=build_blog_repo_factory("json", tmp_path / "blog-posts.json"),
        create_tables=False,
    )
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_production_queue] = lambda: production_queue.append
    app.dependency_overrides[get_webhook_secret] = lambda: WEBHOOK_SECRET
    app.dependency_overrides[get_admin_api_key] = lambda: API_KEY
    return app


@pytest.fixture()
def client(app):
    with TestClient(app) as client:
        yield client


# ---------------------------------------------------------------------------
# order payload helpers
# ---------------------------------------------------------------------------
def make_items(*lines):
    lines = lines or ({"product_id": "mug-1", "variant_id": "101", "price": "15.00", "quantity": 2},)
    return [OrderItemIn(**line) for line in lines]


def make_shipping(**overrides):
    data = {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "address1": "12 Analytical Row",
        "city": "London",
        "country": "GB",
        "postal_code": "N1 9GU",
    }
    data.update(overrides)
    return AddressIn(**data)


def make_customer(**overrides):
    data = {"email": "ada@example.com", "name": "Ada Lovelace"}
    data.update(overrides)
    return CustomerIn(**data)


@pytest.fixture()
def order_parts():
    return make_items(), make_shipping(), make_customer()


def sign_stripe_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Stripe-Signature header value for payload, as Stripe would send it."""
    timestamp = timestamp or int(time.time())
    signature = hmac.new(
        secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={signature}"
