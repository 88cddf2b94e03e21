# storefront/api/deps.py
import secrets
from functools import lru_cache

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from storefront.data.database import get_db
from storefront.repos.blog_repo import BlogRepo
from storefront.services.fulfillment_client import FulfillmentGateway, PrintifyClient
from storefront.tasks.production import enqueue_production_retry
from storefront.utils.settings import ADMIN_API_KEY, STRIPE_WEBHOOK_SECRET


@lru_cache(maxsize=1)
def get_gateway() -> FulfillmentGateway:
    return PrintifyClient()


def get_production_queue():
    return enqueue_production_retry


def get_webhook_secret() -> str:
    return STRIPE_WEBHOOK_SECRET


def get_admin_api_key() -> str:
    return ADMIN_API_KEY


def require_api_key(
    x_api_key: str | None = Header(default=None),
    expected: str = Depends(get_admin_api_key),
):
    if not x_api_key:
        raise HTTPException(status_code=401, detail="API key required in X-API-Key header")
    if not expected or not secrets.compare_digest(x_api_key, expected):
        raise HTTPException(status_code=403, detail="Invalid API key")


def get_blog_repo(request: Request, db: Session = Depends(get_db)) -> BlogRepo:
    return request.app.state.blog_repo_factory(db)
