# storefront/api/routers/orders.py
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from storefront.api.deps import get_gateway, get_production_queue, require_api_key
from storefront.api.errors import gateway_http_error, validation_http_error
from storefront.data.database import get_db
from storefront.domain.errors import (
    ConflictError,
    GatewayError,
    NotFoundError,
    OrderPersistenceError,
    OrderValidationError,
)
from storefront.domain.schemas import (
    OrderLookupOut,
    OrderOut,
    OrderPageOut,
    OrderSubmitIn,
    OrderSubmitOut,
    ShippingQuoteIn,
)
from storefront.services.fulfillment_client import FulfillmentGateway
from storefront.services.order_service import OrderService

router = APIRouter(prefix="/api/orders", tags=["orders"])


def get_service(
    db: Session = Depends(get_db),
    gateway: FulfillmentGateway = Depends(get_gateway),
    production_queue=Depends(get_production_queue),
):
    return OrderService(db, gateway, production_queue=production_queue)


@router.post("", response_model=OrderSubmitOut, status_code=201)
def submit_order(payload: OrderSubmitIn, svc: OrderService = Depends(get_service)):
    """
    Checkout: creates the order with the fulfillment provider, then stores it.
    With a confirmed payment the order is also sent to production.
    """
    try:
        return svc.submit_order(
            items=payload.items,
            shipping=payload.shipping,
            customer=payload.customer,
            payment_confirmed=payload.payment_confirmed,
            payment_intent_id=payload.payment_intent_id,
            amounts=payload.amounts,
            billing=payload.billing,
            notes=payload.notes,
        )
    except OrderValidationError as e:
        raise validation_http_error(e)
    except GatewayError as e:
        raise gateway_http_error(e)
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except OrderPersistenceError as e:
        raise HTTPException(
            status_code=500,
            detail={
                "message": "Order was created but could not be saved",
                "external_order_id": e.external_order_id,
                "external_reference": e.external_reference,
            },
        )


@router.get("", response_model=OrderPageOut, dependencies=[Depends(require_api_key)])
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: str | None = Query(default=None),
    svc: OrderService = Depends(get_service),
):
    return svc.list_orders(page=page, limit=limit, status=status)


@router.get("/customer/{email}", response_model=OrderPageOut)
def list_customer_orders(
    email: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    svc: OrderService = Depends(get_service),
):
    return svc.list_customer_orders(email, page=page, limit=limit)


@router.post("/shipping/calculate")
def calculate_shipping(payload: ShippingQuoteIn, svc: OrderService = Depends(get_service)):
    try:
        return svc.calculate_shipping(payload.items, payload.address)
    except OrderValidationError as e:
        raise validation_http_error(e)
    except GatewayError as e:
        raise gateway_http_error(e)


@router.get("/{order_id}", response_model=OrderLookupOut)
def get_order(order_id: str, svc: OrderService = Depends(get_service)):
    """Local order by id or provider id, falling back to the provider's copy."""
    try:
        return svc.get_order(order_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GatewayError as e:
        raise gateway_http_error(e)


@router.post(
    "/{order_id}/production",
    response_model=OrderOut,
    dependencies=[Depends(require_api_key)],
)
def send_to_production(order_id: str, svc: OrderService = Depends(get_service)):
    try:
        return svc.send_to_production(order_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GatewayError as e:
        raise gateway_http_error(e)
