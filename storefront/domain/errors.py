# storefront/domain/errors.py


class StorefrontError(Exception):
    """Base class for errors raised by storefront services."""


class OrderValidationError(StorefrontError):
    """Checkout input is malformed. Carries every violated field, not just the first."""

    def __init__(self, errors: list[dict]):
        self.errors = errors
        fields = ", ".join(e["field"] for e in errors)
        super().__init__(f"Invalid order submission: {fields}")


class GatewayError(StorefrontError):
    """The fulfillment provider answered with a non-2xx status or did not answer in time."""

    def __init__(self, status_code: int | None, message: str, payload=None):
        self.status_code = status_code
        self.message = message
        self.payload = payload
        super().__init__(f"Fulfillment gateway error ({status_code}): {message}")

    @property
    def timed_out(self) -> bool:
        return self.status_code == 504


class NotFoundError(StorefrontError):
    pass


class ConflictError(StorefrontError):
    pass


class OrderPersistenceError(StorefrontError):
    """Remote order exists but the local record could not be written."""

    def __init__(self, external_order_id: str, external_reference: str):
        self.external_order_id = external_order_id
        self.external_reference = external_reference
        super().__init__(
            f"Order {external_order_id} ({external_reference}) was created with the "
            f"fulfillment provider but could not be stored locally"
        )


class WebhookSignatureError(StorefrontError):
    pass
