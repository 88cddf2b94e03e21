# storefront/services/webhook_service.py
import json
from typing import Any, Dict

import stripe
from sqlalchemy.orm import Session

from storefront.data.models.order import STATUS_RANK
from storefront.domain.errors import WebhookSignatureError
from storefront.repos.order_repo import OrderRepo
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def verify_payment_payload(payload: bytes | str, signature: str | None, secret: str, tolerance: int = 300) -> Dict[str, Any]:
    """Check a Stripe-signed webhook body and return the decoded event."""
    if hasattr(payload, "decode"):
        payload = payload.decode("utf-8")

    if not signature:
        raise WebhookSignatureError("Missing Stripe-Signature header")

    try:
        stripe.WebhookSignature.verify_header(payload, signature, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        raise WebhookSignatureError(str(e)) from e

    try:
        event = json.loads(payload)
    except ValueError as e:
        raise WebhookSignatureError(f"Invalid payload: {e}") from e

    if not isinstance(event, dict):
        raise WebhookSignatureError("Invalid payload: expected a JSON object")
    return event


def extract_tracking(resource: Dict[str, Any]) -> tuple[str | None, str | None]:
    shipments = resource.get("shipments") or []
    if shipments and isinstance(shipments[0], dict):
        return shipments[0].get("tracking_number"), shipments[0].get("tracking_url")

    carrier = (resource.get("data") or {}).get("carrier") or {}
    return carrier.get("tracking_number"), carrier.get("tracking_url")


class WebhookReconciler:
    """
    Applies payment and fulfillment events to local orders.

    Events arrive at least once and out of order. Handlers are idempotent,
    never move an order backwards in its lifecycle, and never raise: unknown
    event types and unknown orders are logged and acknowledged.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = OrderRepo(db)
        self.payment_handlers = {
            "payment_intent.succeeded": self._payment_succeeded,
            "payment_intent.payment_failed": self._payment_failed,
        }
        self.fulfillment_handlers = {
            "order:sent-to-production": self._sent_to_production,
            "order:shipment:created": self._shipment_created,
            "order:shipment:delivered": self._delivered,
        }

    def handle_payment_event(self, event: Dict[str, Any]) -> bool:
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        handler = self.payment_handlers.get(event_type)

        if handler is None:
            logger.info(f"Unhandled payment event type: {event_type}")
            return False

        return self._apply(event_type, handler, obj)

    def handle_fulfillment_event(self, event_type: str | None, resource: Dict[str, Any] | None) -> bool:
        resource = resource or {}
        handler = self.fulfillment_handlers.get(event_type)

        if handler is None:
            logger.info(f"Unhandled fulfillment event type: {event_type}")
            return False

        if not resource.get("id"):
            logger.warning(f"Fulfillment event {event_type} without resource id, ignoring")
            return False

        return self._apply(event_type, handler, resource)

    def _apply(self, event_type: str, handler, payload: Dict[str, Any]) -> bool:
        try:
            return handler(payload)
        except Exception:
            self.db.rollback()
            logger.exception(f"Failed to process {event_type} event")
            return False

    # payment events
    def _payment_succeeded(self, intent: Dict[str, Any]) -> bool:
        order_id = self._order_id_from_intent(intent)
        if not order_id:
            return False

        order = self.repo.update_payment_status(order_id, "paid", intent.get("id"))
        return self._found(order, order_id, "payment_intent.succeeded")

    def _payment_failed(self, intent: Dict[str, Any]) -> bool:
        order_id = self._order_id_from_intent(intent)
        if not order_id:
            return False

        order = self.repo.find_by_id(order_id)
        if not self._found(order, order_id, "payment_intent.payment_failed"):
            return False

        if order.payment_status == "paid":
            logger.info(f"Order {order_id} already paid, ignoring late payment failure")
            return False

        self.repo.update_payment_status(order_id, "failed", intent.get("id"))
        return True

    # fulfillment events
    def _sent_to_production(self, resource: Dict[str, Any]) -> bool:
        return self._advance(resource["id"], "processing")

    def _shipment_created(self, resource: Dict[str, Any]) -> bool:
        tracking_number, tracking_url = extract_tracking(resource)
        updates = {}
        if tracking_number:
            updates["tracking_number"] = tracking_number
            updates["tracking_url"] = tracking_url
        else:
            logger.warning(f"Shipment for order {resource['id']} has no tracking number")
        return self._advance(resource["id"], "shipped", updates)

    def _delivered(self, resource: Dict[str, Any]) -> bool:
        return self._advance(resource["id"], "delivered")

    def _advance(self, external_id: str, status: str, extra: Dict[str, Any] | None = None) -> bool:
        order = self.repo.find_by_external_id(external_id)
        if not self._found(order, external_id, f"status {status}"):
            return False

        updates = dict(extra or {})
        if STATUS_RANK.get(status, -1) >= STATUS_RANK.get(order.status, -1):
            updates["status"] = status
        else:
            logger.info(
                f"Order {order.id} is {order.status}, not moving it back to {status}"
            )

        if not updates:
            return False

        self.repo.update_by_external_id(external_id, updates)
        return True

    @staticmethod
    def _order_id_from_intent(intent: Dict[str, Any]) -> str | None:
        metadata = intent.get("metadata") or {}
        order_id = metadata.get("orderId") or metadata.get("order_id")
        if not order_id:
            logger.info(f"Payment intent {intent.get('id')} carries no order id")
        return order_id

    @staticmethod
    def _found(order, key: str, what: str) -> bool:
        if order is None:
            logger.warning(f"Webhook ({what}) references unknown order {key}")
            return False
        return True
