import json
import time
from decimal import Decimal

import pytest

from conftest import WEBHOOK_SECRET, sign_stripe_payload as sign
from storefront.domain.errors import WebhookSignatureError
from storefront.repos.order_repo import OrderRepo
from storefront.services.webhook_service import (
    WebhookReconciler,
    extract_tracking,
    verify_payment_payload,
)


@pytest.fixture()
def order(db):
    return OrderRepo(db).create(
        external_order_id="remote-1",
        external_reference="SM-1-ABC",
        customer_email="ada@example.com",
        customer_name="Ada Lovelace",
        shipping_address={"country": "GB"},
        items=[{"product_id": "mug-1", "quantity": 1}],
        subtotal=Decimal("15.00"),
        total=Decimal("15.00"),
    )


@pytest.fixture()
def reconciler(db):
    return WebhookReconciler(db)


def _intent_event(event_type, order_id, intent_id="pi_1"):
    return {
        "id": "evt_1",
        "type": event_type,
        "data": {"object": {"id": intent_id, "metadata": {"orderId": order_id}}},
    }


def _snapshot(order):
    return (order.status, order.payment_status, order.tracking_number, order.tracking_url)


class TestSignature:
    def test_valid_signature(self):
        payload = json.dumps({"id": "evt_1", "type": "payment_intent.succeeded"})
        event = verify_payment_payload(payload.encode(), sign(payload), WEBHOOK_SECRET)
        assert event["type"] == "payment_intent.succeeded"

    def test_wrong_secret(self):
        payload = json.dumps({"id": "evt_1"})
        with pytest.raises(WebhookSignatureError):
            verify_payment_payload(payload, sign(payload, secret="other"), WEBHOOK_SECRET)

    def test_tampered_body(self):
        payload = json.dumps({"id": "evt_1"})
        header = sign(payload)
        with pytest.raises(WebhookSignatureError):
            verify_payment_payload(json.dumps({"id": "evt_2"}), header, WEBHOOK_SECRET)

    def test_stale_timestamp(self):
        payload = json.dumps({"id": "evt_1"})
        header = sign(payload, timestamp=int(time.time()) - 3600)
        with pytest.raises(WebhookSignatureError):
            verify_payment_payload(payload, header, WEBHOOK_SECRET, tolerance=300)

    def test_missing_header(self):
        with pytest.raises(WebhookSignatureError):
            verify_payment_payload("{}", None, WEBHOOK_SECRET)


class TestPaymentEvents:
    def test_succeeded_marks_paid(self, reconciler, order):
        assert reconciler.handle_payment_event(
            _intent_event("payment_intent.succeeded", order.id)
        ) is True
        assert order.payment_status == "paid"
        assert order.payment_intent_id == "pi_1"

    def test_replay_is_idempotent(self, reconciler, order):
        event = _intent_event("payment_intent.succeeded", order.id)
        reconciler.handle_payment_event(event)
        first = _snapshot(order)
        reconciler.handle_payment_event(event)
        assert _snapshot(order) == first

    def test_failure_marks_failed(self, reconciler, order):
        reconciler.handle_payment_event(_intent_event("payment_intent.payment_failed", order.id))
        assert order.payment_status == "failed"

    def test_late_failure_does_not_downgrade_paid(self, reconciler, order):
        reconciler.handle_payment_event(_intent_event("payment_intent.succeeded", order.id))
        assert reconciler.handle_payment_event(
            _intent_event("payment_intent.payment_failed", order.id)
        ) is False
        assert order.payment_status == "paid"

    def test_unknown_order_is_a_no_op(self, reconciler, order):
        before = _snapshot(order)
        assert reconciler.handle_payment_event(
            _intent_event("payment_intent.succeeded", "does-not-exist")
        ) is False
        assert _snapshot(order) == before

    def test_missing_metadata(self, reconciler, order):
        event = {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_1"}}}
        assert reconciler.handle_payment_event(event) is False

    @pytest.mark.parametrize("event_type", ["checkout.session.completed", "charge.refunded", None])
    def test_unhandled_types_ignored(self, reconciler, order, event_type):
        assert reconciler.handle_payment_event(_intent_event(event_type, order.id)) is False
        assert order.payment_status == "pending"


class TestFulfillmentEvents:
    def test_lifecycle(self, reconciler, order):
        reconciler.handle_fulfillment_event("order:sent-to-production", {"id": "remote-1"})
        assert order.status == "processing"

        reconciler.handle_fulfillment_event("order:shipment:created", {
            "id": "remote-1",
            "shipments": [{"tracking_number": "TRK1", "tracking_url": "https://t/TRK1"}],
        })
        assert order.status == "shipped"
        assert order.tracking_number == "TRK1"

        reconciler.handle_fulfillment_event("order:shipment:delivered", {"id": "remote-1"})
        assert order.status == "delivered"

    def test_tracking_from_carrier_block(self, reconciler, order):
        reconciler.handle_fulfillment_event("order:shipment:created", {
            "id": "remote-1",
            "data": {"carrier": {"tracking_number": "TRK2", "tracking_url": "https://t/TRK2"}},
        })
        assert (order.status, order.tracking_number) == ("shipped", "TRK2")

    def test_shipment_without_tracking_still_ships(self, reconciler, order):
        reconciler.handle_fulfillment_event("order:shipment:created", {"id": "remote-1"})
        assert order.status == "shipped"
        assert order.tracking_number is None

    def test_out_of_order_events_never_move_backwards(self, reconciler, order):
        reconciler.handle_fulfillment_event("order:shipment:delivered", {"id": "remote-1"})
        reconciler.handle_fulfillment_event("order:sent-to-production", {"id": "remote-1"})
        reconciler.handle_fulfillment_event("order:shipment:created", {
            "id": "remote-1",
            "shipments": [{"tracking_number": "LATE", "tracking_url": None}],
        })

        assert order.status == "delivered"
        assert order.tracking_number == "LATE"

    def test_replay_is_idempotent(self, reconciler, order):
        event = {"id": "remote-1", "shipments": [{"tracking_number": "TRK1"}]}
        reconciler.handle_fulfillment_event("order:shipment:created", event)
        first = _snapshot(order)
        reconciler.handle_fulfillment_event("order:shipment:created", event)
        assert _snapshot(order) == first

    def test_unknown_order(self, reconciler, order):
        assert reconciler.handle_fulfillment_event(
            "order:shipment:delivered", {"id": "remote-404"}
        ) is False
        assert order.status == "pending"

    @pytest.mark.parametrize("event_type", ["order:created", "product:publish:started", None])
    def test_unhandled_types(self, reconciler, order, event_type):
        assert reconciler.handle_fulfillment_event(event_type, {"id": "remote-1"}) is False
        assert order.status == "pending"

    def test_missing_resource(self, reconciler):
        assert reconciler.handle_fulfillment_event("order:shipment:delivered", None) is False

    def test_processing_errors_are_swallowed(self, reconciler, order, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("db went away")

        monkeypatch.setattr(reconciler.repo, "find_by_external_id", explode)
        assert reconciler.handle_fulfillment_event("order:shipment:delivered", {"id": "remote-1"}) is False


def test_extract_tracking_without_data():
    assert extract_tracking({"id": "remote-1"}) == (None, None)
