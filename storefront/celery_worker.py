# storefront/celery_worker.py
from celery import Celery
from celery.signals import setup_logging

from storefront.utils.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    CART_SWEEP_INTERVAL_SECONDS,
)
from storefront.utils.logging import configure_logging

celery_app = Celery(
    "storefront",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# tasks must be imported explicitly for the worker to register them
celery_app.conf.imports = (
    "storefront.tasks.expire",
    "storefront.tasks.production",
)

celery_app.conf.beat_schedule = {
    "sweep-expired-carts": {
        "task": "storefront.tasks.expire.expire_carts_task",
        "schedule": float(CART_SWEEP_INTERVAL_SECONDS),
    },
}

celery_app.conf.timezone = "UTC"


@setup_logging.connect
def init_worker_logging(**kwargs):
    # replaces Celery's own root logger setup in worker and beat
    configure_logging()
