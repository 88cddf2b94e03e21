from datetime import datetime, timedelta, timezone
from unittest import mock

import pytest
from celery.signals import setup_logging
from sqlalchemy.orm import sessionmaker

from conftest import FakeGateway, make_customer, make_items, make_shipping
from storefront import celery_worker
from storefront.celery_worker import celery_app
from storefront.data.models.cart import CartModel
from storefront.domain.errors import GatewayError
from storefront.services.cart_service import CartService
from storefront.services.order_service import OrderService
from storefront.tasks import expire, production


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def test_beat_schedules_cart_sweep():
    entry = celery_app.conf.beat_schedule["sweep-expired-carts"]
    assert entry["task"] == expire.expire_carts_task.name


def test_expire_carts_task(session_factory, db):
    carts = CartService(db)
    carts.get_or_create("live")
    carts.get_or_create("stale")
    stale = db.query(CartModel).filter_by(session_id="stale").one()
    stale.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    db.commit()

    with mock.patch.object(expire, "SessionLocal", session_factory):
        assert expire.expire_carts_task() == 1

    assert db.query(CartModel).count() == 1


class TestDispatchProductionTask:
    @pytest.fixture()
    def order_id(self, db):
        result = OrderService(db, FakeGateway()).submit_order(
            make_items(), make_shipping(), make_customer()
        )
        return result["order_id"]

    def test_dispatches(self, session_factory, order_id):
        gateway = FakeGateway()
        with mock.patch.object(production, "SessionLocal", session_factory), \
                mock.patch.object(production, "PrintifyClient", return_value=gateway):
            result = production.dispatch_production_task(order_id)

        assert result == {"order_id": order_id, "status": "processing"}
        assert gateway.produced == ["remote-1"]

    def test_unknown_order_gives_up(self, session_factory):
        with mock.patch.object(production, "SessionLocal", session_factory), \
                mock.patch.object(production, "PrintifyClient", return_value=FakeGateway()):
            result = production.dispatch_production_task("missing")

        assert result == {"order_id": "missing", "status": None}

    def test_gateway_failure_retries(self, session_factory, order_id):
        gateway = FakeGateway()
        gateway.production_error = GatewayError(503, "busy")

        with mock.patch.object(production, "SessionLocal", session_factory), \
                mock.patch.object(production, "PrintifyClient", return_value=gateway), \
                mock.patch.object(production.dispatch_production_task, "retry",
                                  side_effect=RuntimeError("retry scheduled")) as retry:
            with pytest.raises(RuntimeError, match="retry scheduled"):
                production.dispatch_production_task(order_id)

        assert isinstance(retry.call_args.kwargs["exc"], GatewayError)


def test_enqueue_production_retry():
    with mock.patch.object(production.dispatch_production_task, "apply_async") as apply_async:
        production.enqueue_production_retry("order-1")

    apply_async.assert_called_once_with(
        args=["order-1"], countdown=production.PRODUCTION_RETRY_DELAY_SECONDS
    )


def test_worker_logging_uses_app_configuration():
    with mock.patch.object(celery_worker, "configure_logging") as configure:
        setup_logging.send(sender=None, loglevel="INFO", logfile=None, format="", colorize=False)

    configure.assert_called_once_with()
