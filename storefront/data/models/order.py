import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Numeric, Text, JSON

from storefront.data.database import Base

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered")
PAYMENT_STATUSES = ("pending", "paid", "failed")

# forward-only progression used by webhook reconciliation
STATUS_RANK = {status: rank for rank, status in enumerate(ORDER_STATUSES)}


def _now():
    return datetime.now(timezone.utc)


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    external_order_id = Column(String(255), unique=True, index=True, nullable=True)
    external_reference = Column(String(255), nullable=True)

    customer_email = Column(String(255), index=True, nullable=False)
    customer_name = Column(String(255), nullable=False)
    shipping_address = Column(JSON, nullable=False)
    billing_address = Column(JSON, nullable=True)
    items = Column(JSON, nullable=False)

    subtotal = Column(Numeric(10, 2), nullable=False)
    shipping_cost = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False)

    status = Column(String(50), index=True, nullable=False, default="pending")
    payment_status = Column(String(50), nullable=False, default="pending")
    payment_intent_id = Column(String(255), nullable=True)

    tracking_number = Column(String(255), nullable=True)
    tracking_url = Column(String(500), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), index=True, nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)
