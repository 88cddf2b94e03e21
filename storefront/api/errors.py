# storefront/api/errors.py
from fastapi import HTTPException

from storefront.domain.errors import GatewayError, OrderValidationError


def validation_http_error(e: OrderValidationError) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"message": "Validation failed", "errors": e.errors},
    )


def gateway_status(e: GatewayError) -> int:
    """Upstream rejections are the caller's problem (422), everything else is ours."""
    if e.status_code == 504:
        return 504
    if e.status_code is not None and 400 <= e.status_code < 500:
        return 422
    return 502


def gateway_http_error(e: GatewayError) -> HTTPException:
    return HTTPException(
        status_code=gateway_status(e),
        detail={
            "message": "Fulfillment provider error",
            "upstream_status": e.status_code,
            "upstream_message": e.message,
        },
    )
