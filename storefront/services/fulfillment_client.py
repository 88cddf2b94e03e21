# storefront/services/fulfillment_client.py
from abc import ABC, abstractmethod

import requests
from requests import RequestException

from storefront.domain.errors import GatewayError
from storefront.utils.retry import http_retry
from storefront.utils.settings import (
    PRINTIFY_API_URL,
    PRINTIFY_API_TOKEN,
    PRINTIFY_SHOP_ID,
    PRINTIFY_TIMEOUT,
)
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class FulfillmentGateway(ABC):
    """Print-on-demand provider as seen by the order pipeline."""

    @abstractmethod
    def create_order(self, request: dict) -> dict:
        """Create the remote order. Returns at least {"id", "status"}."""

    @abstractmethod
    def send_to_production(self, remote_order_id: str) -> dict:
        ...

    @abstractmethod
    def get_shipping_quote(self, line_items: list, address: dict) -> dict:
        ...

    @abstractmethod
    def get_order(self, remote_order_id: str) -> dict:
        ...


class PrintifyClient(FulfillmentGateway):
    """
    Printify REST client.

    Every call has a bounded timeout. Reads are retried on transport errors;
    order creation and production dispatch are not, so a failed write is
    never silently repeated. All failures surface as GatewayError.
    """

    def __init__(
        self,
        base_url: str | None = None,
        shop_id: str | None = None,
        api_token: str | None = None,
        timeout: float = PRINTIFY_TIMEOUT,
        session: requests.Session | None = None,
    ):
        self.base_url = (base_url or PRINTIFY_API_URL).rstrip("/")
        self.shop_id = shop_id if shop_id is not None else PRINTIFY_SHOP_ID
        self.api_token = api_token if api_token is not None else PRINTIFY_API_TOKEN
        self.timeout = timeout
        self.session = session or requests.Session()

        if not self.api_token or not self.shop_id:
            logger.warning("Printify credentials not configured (PRINTIFY_API_TOKEN, PRINTIFY_SHOP_ID)")

    def create_order(self, request: dict) -> dict:
        return self._call("POST", f"/shops/{self.shop_id}/orders.json", json=request)

    def send_to_production(self, remote_order_id: str) -> dict:
        return self._call(
            "POST",
            f"/shops/{self.shop_id}/orders/{remote_order_id}/send_to_production.json",
            json={},
        )

    def get_shipping_quote(self, line_items: list, address: dict) -> dict:
        return self._call(
            "POST",
            f"/shops/{self.shop_id}/orders/shipping.json",
            json={"line_items": line_items, "address_to": address},
            idempotent=True,
        )

    def get_order(self, remote_order_id: str) -> dict:
        return self._call(
            "GET",
            f"/shops/{self.shop_id}/orders/{remote_order_id}.json",
            idempotent=True,
        )

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    def _call(self, method: str, path: str, json=None, idempotent: bool = False) -> dict:
        url = f"{self.base_url}{path}"
        send = self._send_with_retry if idempotent else self._send

        try:
            resp = send(method, url, json)
        except requests.Timeout as e:
            logger.error(f"Printify {method} {path} timed out after {self.timeout}s")
            raise GatewayError(504, "Fulfillment provider timed out") from e
        except RequestException as e:
            logger.error(f"Printify {method} {path} failed: {e}")
            raise GatewayError(502, f"Fulfillment provider unreachable: {e}") from e

        if not 200 <= resp.status_code < 300:
            payload = self._body(resp)
            message = None
            if isinstance(payload, dict):
                message = payload.get("error") or payload.get("message")
            logger.error(f"Printify {method} {path} -> {resp.status_code}: {payload}")
            raise GatewayError(
                resp.status_code,
                str(message or resp.reason or "Fulfillment provider error"),
                payload,
            )

        return self._body(resp)

    def _send(self, method: str, url: str, json) -> requests.Response:
        logger.info(f"Printify {method} {url}")
        return self.session.request(
            method, url, json=json, headers=self._headers(), timeout=self.timeout
        )

    @http_retry()
    def _send_with_retry(self, method: str, url: str, json) -> requests.Response:
        return self._send(method, url, json)

    @staticmethod
    def _body(resp: requests.Response):
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return {"message": resp.text}
