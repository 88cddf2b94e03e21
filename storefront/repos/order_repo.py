# storefront/repos/order_repo.py
import math
from typing import Any, Dict

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.data.models.order import OrderModel
from storefront.domain.errors import ConflictError

# the only columns an update keyed by external id (webhooks) may touch
MUTABLE_FIELDS = ("status", "payment_status", "tracking_number", "tracking_url")


def whitelisted(updates: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in updates.items() if k in MUTABLE_FIELDS}


class OrderRepo:
    """
    Local order records, addressable by local id and by the fulfillment
    provider's order id. The repo applies whatever status it is given;
    ordering discipline belongs to callers.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        *,
        external_order_id: str | None,
        customer_email: str,
        customer_name: str,
        shipping_address: dict,
        items: list,
        subtotal,
        total,
        shipping_cost=0,
        tax=0,
        billing_address: dict | None = None,
        external_reference: str | None = None,
        payment_status: str = "pending",
        payment_intent_id: str | None = None,
        notes: str | None = None,
    ) -> OrderModel:
        order = OrderModel(
            external_order_id=external_order_id,
            external_reference=external_reference,
            customer_email=customer_email,
            customer_name=customer_name,
            shipping_address=shipping_address,
            billing_address=billing_address,
            items=items,
            subtotal=subtotal,
            shipping_cost=shipping_cost or 0,
            tax=tax or 0,
            total=total,
            status="pending",
            payment_status=payment_status or "pending",
            payment_intent_id=payment_intent_id,
            notes=notes,
        )
        self.db.add(order)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(
                f"An order for external id {external_order_id} already exists"
            ) from e
        self.db.refresh(order)
        return order

    def find_by_id(self, order_id: str) -> OrderModel | None:
        if not order_id:
            return None
        return self.db.get(OrderModel, str(order_id))

    def find_by_external_id(self, external_order_id: str) -> OrderModel | None:
        if not external_order_id:
            return None
        return self.db.execute(
            select(OrderModel).where(OrderModel.external_order_id == str(external_order_id))
        ).scalar_one_or_none()

    def find_by_customer_email(self, email: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        return self._paginate(OrderModel.customer_email == email, page, limit)

    def find_all(self, page: int = 1, limit: int = 20, status: str | None = None) -> Dict[str, Any]:
        condition = OrderModel.status == status if status else None
        return self._paginate(condition, page, limit)

    def update_status(self, order_id: str, status: str) -> OrderModel | None:
        order = self.find_by_id(order_id)
        if order:
            order.status = status
            self._commit(order)
        return order

    def update_payment_status(
        self, order_id: str, payment_status: str, payment_intent_id: str | None = None
    ) -> OrderModel | None:
        order = self.find_by_id(order_id)
        if order:
            order.payment_status = payment_status
            if payment_intent_id:
                order.payment_intent_id = payment_intent_id
            self._commit(order)
        return order

    def update_tracking(
        self, order_id: str, tracking_number: str, tracking_url: str | None = None
    ) -> OrderModel | None:
        order = self.find_by_id(order_id)
        if order:
            order.tracking_number = tracking_number
            order.tracking_url = tracking_url
            order.status = "shipped"
            self._commit(order)
        return order

    def update_by_external_id(self, external_order_id: str, updates: Dict[str, Any]) -> OrderModel | None:
        order = self.find_by_external_id(external_order_id)
        if not order:
            return None

        allowed = whitelisted(updates)
        if not allowed:
            return order

        for field, value in allowed.items():
            setattr(order, field, value)
        self._commit(order)
        return order

    def _commit(self, order: OrderModel) -> None:
        self.db.commit()
        self.db.refresh(order)

    def _paginate(self, condition, page: int, limit: int) -> Dict[str, Any]:
        page = max(int(page), 1)
        limit = max(int(limit), 1)

        stmt = select(OrderModel)
        count_stmt = select(func.count()).select_from(OrderModel)
        if condition is not None:
            stmt = stmt.where(condition)
            count_stmt = count_stmt.where(condition)

        orders = self.db.execute(
            stmt.order_by(OrderModel.created_at.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        ).scalars().all()
        total = self.db.execute(count_stmt).scalar_one()

        return {
            "orders": orders,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit),
            },
        }
