"""
Error Responses - Maps domain exceptions to `{error, details}` JSON bodies.

Payment and tool endpoints answer with ErrorResponse instead of FastAPI's
`{"detail": ...}` so the web client can read `paypalCaptureId` and
`isInstrumentDeclined`.
"""

from fastapi import status
from fastapi.responses import JSONResponse
from structlog import get_logger

from autonest.exceptions import (
    AccountNotFoundError,
    AutoNestError,
    CaptureAmountMismatchError,
    ConfigurationError,
    CreditReconciliationError,
    GatewayError,
    InsufficientCreditsError,
    MalformedUpstreamResponseError,
    OutputValidationError,
    PaymentNotCompletedError,
    ResourceNotFoundError,
    UnrecognizedResponseShapeError,
    UpstreamError,
    UpstreamTimeoutError,
    ValidationError,
)
from autonest.models.api import ErrorResponse

logger = get_logger(__name__)

TOOL_FAILURES = (
    UpstreamError,
    MalformedUpstreamResponseError,
    UnrecognizedResponseShapeError,
    OutputValidationError,
)


def error_response(status_code: int, body: ErrorResponse) -> JSONResponse:
    """Serialize an ErrorResponse with wire aliases, omitting unset fields."""
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


def to_error_response(exc: AutoNestError) -> JSONResponse:
    """HTTP status and body for a domain exception."""
    match exc:
        case ValidationError():
            return error_response(
                status.HTTP_400_BAD_REQUEST,
                ErrorResponse(error="Invalid request.", details=exc.message),
            )
        case InsufficientCreditsError():
            return error_response(
                status.HTTP_402_PAYMENT_REQUIRED,
                ErrorResponse(error="Insufficient credits.", details=str(exc)),
            )
        case PaymentNotCompletedError(instrument_declined=True):
            return error_response(
                status.HTTP_402_PAYMENT_REQUIRED,
                ErrorResponse(
                    error="Payment method declined by PayPal.",
                    details=str(exc),
                    is_instrument_declined=True,
                ),
            )
        case PaymentNotCompletedError():
            return error_response(
                status.HTTP_400_BAD_REQUEST,
                ErrorResponse(
                    error=f"Payment status: {exc.status}",
                    details=str(exc),
                    paypal_capture_id=exc.capture_id,
                ),
            )
        case CreditReconciliationError():
            return error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                ErrorResponse(
                    error="Payment captured but failed to update credits. Please contact support.",
                    details=str(exc),
                    paypal_capture_id=exc.capture_id,
                ),
            )
        case CaptureAmountMismatchError():
            return error_response(
                status.HTTP_409_CONFLICT,
                ErrorResponse(
                    error="Captured amount does not match the credits requested. "
                    "Please contact support.",
                    details=str(exc),
                    paypal_capture_id=exc.capture_id,
                ),
            )
        case ConfigurationError():
            logger.error("configuration_error", setting=exc.setting)
            return error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                ErrorResponse(error="Server configuration error.", details=str(exc)),
            )
        case GatewayError():
            return error_response(
                status.HTTP_502_BAD_GATEWAY,
                ErrorResponse(error="Payment gateway request failed.", details=exc.details),
            )
        case UpstreamTimeoutError():
            return error_response(
                status.HTTP_504_GATEWAY_TIMEOUT,
                ErrorResponse(error="Upstream request timed out.", details=str(exc)),
            )
        case _ if isinstance(exc, TOOL_FAILURES):
            return error_response(
                status.HTTP_502_BAD_GATEWAY,
                ErrorResponse(error="Tool workflow failed.", details=str(exc)),
            )
        case AccountNotFoundError() | ResourceNotFoundError():
            return error_response(
                status.HTTP_404_NOT_FOUND,
                ErrorResponse(error="Not found.", details=str(exc)),
            )

    logger.error("unmapped_domain_error", error_type=type(exc).__name__, error=str(exc))
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorResponse(error="Internal server error.", details=str(exc)),
    )
