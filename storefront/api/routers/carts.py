# storefront/api/routers/carts.py
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response
from sqlalchemy.orm import Session

from storefront.data.database import get_db
from storefront.domain.schemas import (
    AddItemIn,
    CartOut,
    MergeCartIn,
    SyncCartIn,
    UpdateQuantityIn,
)
from storefront.services.cart_service import CartService

router = APIRouter(prefix="/api/cart", tags=["cart"])

SESSION_HEADER = "X-Cart-Session"


def get_service(db: Session):
    return CartService(db)


def cart_token(
    x_cart_session: str | None = Header(default=None),
    session_id: str | None = Query(default=None),
) -> str | None:
    return x_cart_session or session_id


def required_token(token: str | None = Depends(cart_token)) -> str:
    if not token:
        raise HTTPException(status_code=400, detail=f"Cart session required ({SESSION_HEADER} header)")
    return token


def _respond(response: Response, cart: dict | None) -> dict:
    if cart is None:
        raise HTTPException(status_code=404, detail="Cart session not found or expired")
    response.headers[SESSION_HEADER] = cart["session_id"]
    return cart


@router.get("", response_model=CartOut)
def get_cart(
    response: Response,
    token: str | None = Depends(cart_token),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return _respond(response, svc.get_or_create(token))


@router.post("/items", response_model=CartOut)
def add_item(
    payload: AddItemIn,
    response: Response,
    token: str | None = Depends(cart_token),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return _respond(response, svc.add_item(token, payload))


@router.put("/items/{product_id}", response_model=CartOut)
def update_item(
    product_id: str,
    payload: UpdateQuantityIn,
    response: Response,
    token: str = Depends(required_token),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    cart = svc.update_quantity(token, product_id, payload.variant_id, payload.quantity)
    return _respond(response, cart)


@router.delete("/items/{product_id}", response_model=CartOut)
def remove_item(
    product_id: str,
    response: Response,
    variant_id: str | None = Query(default=None),
    token: str = Depends(required_token),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return _respond(response, svc.remove_item(token, product_id, variant_id))


@router.delete("", response_model=CartOut)
def clear_cart(
    response: Response,
    token: str = Depends(required_token),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return _respond(response, svc.clear(token))


@router.post("/sync", response_model=CartOut)
def sync_cart(
    payload: SyncCartIn,
    response: Response,
    token: str | None = Depends(cart_token),
    db: Session = Depends(get_db),
):
    """Reconcile the cart the browser kept locally with the server copy."""
    svc = get_service(db)
    return _respond(response, svc.sync(token, payload.items))


@router.post("/merge", response_model=CartOut)
def merge_cart(
    payload: MergeCartIn,
    response: Response,
    token: str = Depends(required_token),
    db: Session = Depends(get_db),
):
    """Fold an anonymous cart into the customer's cart after login."""
    svc = get_service(db)
    return _respond(response, svc.merge_cart(token, payload.customer_email.strip()))
