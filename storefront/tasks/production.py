# storefront/tasks/production.py
from storefront.celery_worker import celery_app
from storefront.data.database import SessionLocal
from storefront.domain.errors import GatewayError, NotFoundError
from storefront.services.fulfillment_client import PrintifyClient
from storefront.services.order_service import OrderService
from storefront.utils.settings import PRODUCTION_RETRY_MAX, PRODUCTION_RETRY_DELAY_SECONDS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(
    name="storefront.tasks.production.dispatch_production_task",
    bind=True,
    max_retries=PRODUCTION_RETRY_MAX,
    default_retry_delay=PRODUCTION_RETRY_DELAY_SECONDS,
)
def dispatch_production_task(self, order_id: str):
    """Follow-up for checkouts whose immediate send-to-production failed."""
    db = SessionLocal()
    try:
        order = OrderService(db, PrintifyClient()).dispatch_production(order_id)
        logger.info(f"Order {order_id} dispatched to production (status {order.status})")
        return {"order_id": order_id, "status": order.status}
    except NotFoundError:
        logger.error(f"Production retry for unknown order {order_id}, giving up")
        return {"order_id": order_id, "status": None}
    except GatewayError as e:
        logger.warning(
            f"Production retry {self.request.retries + 1} for order {order_id} failed: {e}"
        )
        raise self.retry(exc=e)
    finally:
        db.close()


def enqueue_production_retry(order_id: str):
    return dispatch_production_task.apply_async(
        args=[order_id], countdown=PRODUCTION_RETRY_DELAY_SECONDS
    )
