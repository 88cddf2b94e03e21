# storefront/api/routers/webhooks.py
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from storefront.api.deps import get_webhook_secret
from storefront.data.database import get_db
from storefront.domain.errors import WebhookSignatureError
from storefront.services.webhook_service import WebhookReconciler, verify_payment_payload
from storefront.utils.settings import STRIPE_WEBHOOK_TOLERANCE
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None),
    secret: str = Depends(get_webhook_secret),
    db: Session = Depends(get_db),
):
    if not secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured, rejecting payment webhook")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    payload = await request.body()
    try:
        event = verify_payment_payload(payload, stripe_signature, secret, STRIPE_WEBHOOK_TOLERANCE)
    except WebhookSignatureError as e:
        logger.warning(f"Payment webhook rejected: {e}")
        raise HTTPException(status_code=400, detail=f"Webhook Error: {e}")

    logger.info(f"Payment webhook {event.get('type')} ({event.get('id')})")
    await run_in_threadpool(WebhookReconciler(db).handle_payment_event, event)
    return {"received": True}


@router.post("/printify")
def printify_webhook(
    payload: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
):
    event_type = payload.get("type")
    resource = payload.get("resource")
    if not isinstance(resource, dict):
        resource = {}

    logger.info(f"Fulfillment webhook {event_type} for {resource.get('id')}")
    WebhookReconciler(db).handle_fulfillment_event(event_type, resource)
    return {"received": True}
