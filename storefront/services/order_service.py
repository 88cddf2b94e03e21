# storefront/services/order_service.py
import secrets
import string
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, List

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.data.models.order import OrderModel
from storefront.domain.errors import (
    ConflictError,
    GatewayError,
    NotFoundError,
    OrderPersistenceError,
    OrderValidationError,
)
from storefront.domain.schemas import AddressIn, AmountsIn, CustomerIn, OrderItemIn
from storefront.repos.order_repo import OrderRepo
from storefront.services.fulfillment_client import FulfillmentGateway
from storefront.utils.settings import ORDER_REFERENCE_PREFIX
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

CENT = Decimal("0.01")
# half a minor currency unit
TOTAL_TOLERANCE = Decimal("0.005")
STANDARD_SHIPPING = 1

REQUIRED_ADDRESS_FIELDS = {
    "first_name": "First name is required",
    "last_name": "Last name is required",
    "address1": "Address line 1 is required",
    "city": "City is required",
    "country": "Country is required",
    "postal_code": "Postal code is required",
}


def generate_reference(prefix: str = ORDER_REFERENCE_PREFIX) -> str:
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(9))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


def _money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _is_email(value) -> bool:
    if _blank(value):
        return False
    try:
        validate_email(value.strip(), check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def _remote_variant(variant_id):
    # Printify variant ids are integers
    if isinstance(variant_id, str) and variant_id.isdigit():
        return int(variant_id)
    return variant_id


def validate_submission(
    items: List[OrderItemIn] | None,
    shipping: AddressIn | None,
    customer: CustomerIn | None,
    amounts: AmountsIn | None = None,
) -> List[Dict[str, str]]:
    """Collect every problem with a checkout request."""
    errors = []

    if not items:
        errors.append({"field": "items", "message": "At least one item is required"})
    for idx, item in enumerate(items or []):
        if _blank(item.product_id):
            errors.append({"field": f"items[{idx}].product_id", "message": "Product id is required"})
        if not _is_positive_int(item.quantity):
            errors.append({"field": f"items[{idx}].quantity", "message": "Quantity must be a positive integer"})
        if item.price is not None and item.price < 0:
            errors.append({"field": f"items[{idx}].price", "message": "Price must not be negative"})
        elif item.price is None and (amounts is None or amounts.subtotal is None):
            errors.append({"field": f"items[{idx}].price", "message": "Price is required when no subtotal is given"})

    if shipping is None:
        errors.append({"field": "shipping", "message": "Shipping address is required"})
    else:
        for field, message in REQUIRED_ADDRESS_FIELDS.items():
            if _blank(getattr(shipping, field)):
                errors.append({"field": f"shipping.{field}", "message": message})

    if customer is None:
        errors.append({"field": "customer", "message": "Customer information is required"})
    else:
        if not _is_email(customer.email):
            errors.append({"field": "customer.email", "message": "A valid email address is required"})
        if _blank(customer.name):
            errors.append({"field": "customer.name", "message": "Customer name is required"})

    if amounts is not None:
        negative = False
        for field in ("subtotal", "shipping_cost", "tax", "total"):
            value = getattr(amounts, field)
            if value is not None and value < 0:
                negative = True
                errors.append({"field": f"amounts.{field}", "message": "Amount must not be negative"})

        items_ok = not any(e["field"].startswith("items") for e in errors)
        if amounts.total is not None and items_ok and not negative:
            subtotal, shipping_cost, tax = compute_amounts(items, amounts)
            expected = subtotal + shipping_cost + tax
            if abs(_money(amounts.total) - expected) > TOTAL_TOLERANCE:
                errors.append({
                    "field": "amounts.total",
                    "message": f"Total does not equal subtotal + shipping + tax ({expected})",
                })

    return errors


def compute_amounts(items: List[OrderItemIn], amounts: AmountsIn | None):
    """Subtotal, shipping and tax rounded to cents; subtotal falls back to the item prices."""
    amounts = amounts or AmountsIn()

    if amounts.subtotal is not None:
        subtotal = _money(amounts.subtotal)
    else:
        subtotal = _money(sum((i.price * i.quantity for i in items), Decimal("0")))

    return subtotal, _money(amounts.shipping_cost or 0), _money(amounts.tax or 0)


class OrderService:
    """
    Checkout orchestration against the fulfillment provider.

    The remote order is created first and the local record only after it
    succeeds, so a local order always has a remote counterpart. Starting
    production is best effort: a failure there is logged and handed to the
    retry queue, never reported as a failed checkout.
    """

    def __init__(
        self,
        db: Session,
        gateway: FulfillmentGateway,
        production_queue: Callable[[str], Any] | None = None,
    ):
        self.db = db
        self.repo = OrderRepo(db)
        self.gateway = gateway
        self.production_queue = production_queue

    def submit_order(
        self,
        items: List[OrderItemIn],
        shipping: AddressIn | None,
        customer: CustomerIn | None,
        payment_confirmed: bool = False,
        payment_intent_id: str | None = None,
        amounts: AmountsIn | None = None,
        billing: AddressIn | None = None,
        notes: str | None = None,
    ) -> Dict[str, Any]:
        errors = validate_submission(items, shipping, customer, amounts)
        if errors:
            raise OrderValidationError(errors)

        subtotal, shipping_cost, tax = compute_amounts(items, amounts)
        total = subtotal + shipping_cost + tax
        if amounts is not None and amounts.total is not None:
            total = _money(amounts.total)

        reference = generate_reference()
        remote = self.gateway.create_order(self._remote_request(reference, items, shipping, customer))

        remote_id = remote.get("id") if isinstance(remote, dict) else None
        if not remote_id:
            raise GatewayError(502, "Fulfillment provider returned no order id", remote)
        remote_id = str(remote_id)

        logger.info(f"Remote order {remote_id} created for reference {reference}")

        try:
            order = self.repo.create(
                external_order_id=remote_id,
                external_reference=reference,
                customer_email=customer.email.strip(),
                customer_name=customer.name.strip(),
                shipping_address=shipping.model_dump(mode="json"),
                billing_address=billing.model_dump(mode="json") if billing else None,
                items=[self._snapshot(item) for item in items],
                subtotal=subtotal,
                shipping_cost=shipping_cost,
                tax=tax,
                total=total,
                payment_status="paid" if payment_confirmed else "pending",
                payment_intent_id=payment_intent_id,
                notes=notes,
            )
        except ConflictError:
            logger.error(f"Remote order {remote_id} ({reference}) conflicts with an existing local order")
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Remote order {remote_id} ({reference}) has no local record: {e}"
            )
            raise OrderPersistenceError(remote_id, reference) from e

        if payment_confirmed:
            self._start_production(order)

        return {
            "order_id": order.id,
            "external_order_id": order.external_order_id,
            "external_reference": order.external_reference,
            "status": order.status,
            "payment_status": order.payment_status,
        }

    def dispatch_production(self, order_id: str) -> OrderModel:
        """Send an order to production. Safe to call again once it has started."""
        order = self.repo.find_by_id(order_id) or self.repo.find_by_external_id(order_id)
        if not order:
            raise NotFoundError(f"Order {order_id} not found")

        if order.status != "pending":
            logger.info(f"Order {order.id} already past pending ({order.status}), skipping dispatch")
            return order

        self.gateway.send_to_production(order.external_order_id)
        return self.repo.update_status(order.id, "processing")

    # manual retry from the admin endpoint
    send_to_production = dispatch_production

    def get_order(self, order_id: str) -> Dict[str, Any]:
        order = self.repo.find_by_id(order_id) or self.repo.find_by_external_id(order_id)
        if order:
            return {"source": "local", "order": order}

        try:
            remote = self.gateway.get_order(order_id)
        except GatewayError as e:
            if e.status_code == 404:
                raise NotFoundError(f"Order {order_id} not found") from e
            raise

        return {"source": "remote", "order": remote}

    def list_customer_orders(self, email: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        return self.repo.find_by_customer_email(email, page=page, limit=limit)

    def list_orders(self, page: int = 1, limit: int = 20, status: str | None = None) -> Dict[str, Any]:
        return self.repo.find_all(page=page, limit=limit, status=status)

    def calculate_shipping(self, items: List[OrderItemIn], address: AddressIn | None) -> dict:
        errors = []
        if not items:
            errors.append({"field": "items", "message": "At least one item is required"})
        if address is None or _blank(address.country):
            errors.append({"field": "address.country", "message": "Country is required"})
        if errors:
            raise OrderValidationError(errors)

        # the provider only prices by destination; placeholders fill the rest
        address_to = {
            "first_name": address.first_name or "Customer",
            "last_name": address.last_name or "Name",
            "country": address.country,
            "region": address.region,
            "address1": address.address1 or "123 Main St",
            "city": address.city or "City",
            "zip": address.postal_code or "00000",
        }
        return self.gateway.get_shipping_quote(self._line_items(items), address_to)

    # helpers
    def _start_production(self, order: OrderModel) -> None:
        try:
            self.gateway.send_to_production(order.external_order_id)
        except GatewayError as e:
            logger.warning(f"Sending order {order.id} to production failed, queueing retry: {e}")
            self._queue_production_retry(order.id)
            return

        try:
            self.repo.update_status(order.id, "processing")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Order {order.id} is in production but its status was not updated: {e}")

    def _queue_production_retry(self, order_id: str) -> None:
        if self.production_queue is None:
            logger.warning(f"No production retry queue configured, order {order_id} needs a manual retry")
            return
        try:
            self.production_queue(order_id)
        except Exception:
            logger.exception(f"Could not queue production retry for order {order_id}")

    @staticmethod
    def _line_items(items: List[OrderItemIn]) -> list:
        return [
            {
                "product_id": str(item.product_id),
                "variant_id": _remote_variant(item.variant_id),
                "quantity": item.quantity,
            }
            for item in items
        ]

    def _remote_request(
        self,
        reference: str,
        items: List[OrderItemIn],
        shipping: AddressIn,
        customer: CustomerIn,
    ) -> dict:
        return {
            "external_id": reference,
            "label": customer.email.strip(),
            "line_items": self._line_items(items),
            "shipping_method": STANDARD_SHIPPING,
            "send_shipping_notification": True,
            "address_to": {
                "first_name": shipping.first_name,
                "last_name": shipping.last_name,
                "email": customer.email.strip(),
                "phone": shipping.phone or customer.phone,
                "country": shipping.country,
                "region": shipping.region,
                "address1": shipping.address1,
                "address2": shipping.address2 or "",
                "city": shipping.city,
                "zip": shipping.postal_code,
            },
        }

    @staticmethod
    def _snapshot(item: OrderItemIn) -> dict:
        return {
            "product_id": str(item.product_id),
            "variant_id": None if item.variant_id is None else str(item.variant_id),
            "title": item.title,
            "variant_label": item.variant_label,
            "image": item.image,
            "price": None if item.price is None else str(_money(item.price)),
            "quantity": item.quantity,
        }
