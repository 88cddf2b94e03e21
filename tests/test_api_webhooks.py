"""Webhook endpoints via TestClient."""

import json

import pytest

from conftest import make_customer, make_items, make_shipping, sign_stripe_payload as sign
from storefront.api.deps import get_webhook_secret
from storefront.data.models.order import OrderModel
from storefront.services.order_service import OrderService


@pytest.fixture()
def order(db, gateway):
    result = OrderService(db, gateway).submit_order(make_items(), make_shipping(), make_customer())
    return db.get(OrderModel, result["order_id"])


def _post_stripe(client, event, header=None):
    payload = json.dumps(event)
    return client.post(
        "/api/webhooks/stripe",
        content=payload,
        headers={
            "Content-Type": "application/json",
            "Stripe-Signature": header or sign(payload),
        },
    )


class TestStripeWebhook:
    def test_payment_succeeded(self, client, order, db):
        event = {
            "id": "evt_1",
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_9", "metadata": {"orderId": order.id}}},
        }

        response = _post_stripe(client, event)

        assert response.status_code == 200
        assert response.json() == {"received": True}
        db.refresh(order)
        assert order.payment_status == "paid"

    def test_bad_signature(self, client, order, db):
        event = {"type": "payment_intent.succeeded",
                 "data": {"object": {"id": "pi_9", "metadata": {"orderId": order.id}}}}

        response = _post_stripe(client, event, header="t=1,v1=deadbeef")

        assert response.status_code == 400
        db.refresh(order)
        assert order.payment_status == "pending"

    def test_missing_signature(self, client):
        response = client.post("/api/webhooks/stripe", content=b"{}")
        assert response.status_code == 400

    def test_unconfigured_secret(self, app, client):
        app.dependency_overrides[get_webhook_secret] = lambda: ""
        assert _post_stripe(client, {"type": "x"}).status_code == 500

    def test_unknown_order_acknowledged(self, client):
        event = {"type": "payment_intent.succeeded",
                 "data": {"object": {"id": "pi_9", "metadata": {"orderId": "nope"}}}}
        assert _post_stripe(client, event).json() == {"received": True}


class TestPrintifyWebhook:
    def test_shipment_created(self, client, order, db):
        response = client.post("/api/webhooks/printify", json={
            "type": "order:shipment:created",
            "resource": {
                "id": order.external_order_id,
                "data": {"carrier": {"tracking_number": "TRK1", "tracking_url": "https://t/TRK1"}},
            },
        })

        assert response.json() == {"received": True}
        db.refresh(order)
        assert order.status == "shipped"
        assert order.tracking_url == "https://t/TRK1"

    @pytest.mark.parametrize("body", [
        {"type": "order:created", "resource": {"id": "remote-1"}},
        {"type": "order:shipment:delivered", "resource": {"id": "unknown"}},
        {"type": "order:shipment:delivered"},
        {},
    ])
    def test_always_acknowledged(self, client, order, body):
        response = client.post("/api/webhooks/printify", json=body)
        assert response.status_code == 200
        assert response.json() == {"received": True}

    def test_malformed_body(self, client):
        response = client.post(
            "/api/webhooks/printify",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 422
