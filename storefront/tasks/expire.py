# storefront/tasks/expire.py
from storefront.celery_worker import celery_app
from storefront.data.database import SessionLocal
from storefront.services.cart_service import CartService
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(name="storefront.tasks.expire.expire_carts_task")
def expire_carts_task():
    """Delete cart sessions whose expiry has passed. Live carts are never touched."""
    logger.info("Expire carts task started")

    db = SessionLocal()
    try:
        removed = CartService(db).sweep_expired()
        logger.info(f"Removed {removed} expired cart sessions")
        return removed
    finally:
        db.close()
