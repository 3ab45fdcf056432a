"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

PREVIEW_LENGTH = 200


def _preview(text: str, limit: int = PREVIEW_LENGTH) -> str:
    """Truncate upstream text for messages and logs."""
    if not text:
        return "No response body."
    return text[:limit]


class AutoNestError(Exception):
    """Base exception for all AutoNest errors."""

    pass


class ConfigurationError(AutoNestError):
    """Raised when a required credential or setting is missing."""

    def __init__(self, setting: str) -> None:
        self.setting = setting
        super().__init__(f"Configuration error: {setting} is not configured")


class ValidationError(AutoNestError):
    """Raised when an operation receives invalid arguments."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Invalid request: {message}")


# ============================================================================
# Ledger errors
# ============================================================================


class InsufficientCreditsError(AutoNestError):
    """Raised when account has insufficient balance for a debit."""

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient credits. Balance: {balance}, Required: {required}")


class AccountNotFoundError(AutoNestError):
    """Raised when account doesn't exist."""

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class DatabaseError(AutoNestError):
    """Raised when database operation fails unexpectedly."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Database error: {message}")


# ============================================================================
# Payment errors
# ============================================================================


class GatewayError(AutoNestError):
    """Raised when the payment gateway returns a non-success response."""

    def __init__(self, status_code: int, details: str) -> None:
        self.status_code = status_code
        self.details = details
        super().__init__(f"Payment gateway error ({status_code}): {details}")


class PaymentNotCompletedError(AutoNestError):
    """Raised when a capture call succeeded but the payment is not COMPLETED."""

    def __init__(
        self,
        status: str,
        capture_id: str | None = None,
        instrument_declined: bool = False,
    ) -> None:
        self.status = status
        self.capture_id = capture_id
        self.instrument_declined = instrument_declined
        super().__init__(f"Payment status: {status}")


class CreditReconciliationError(AutoNestError):
    """
    Raised when a payment was captured but the ledger increment failed.

    Carries the capture id so an operator can credit the account by hand.
    Never retried automatically.
    """

    def __init__(self, capture_id: str, order_id: str, account_id: str, credits: int) -> None:
        self.capture_id = capture_id
        self.order_id = order_id
        self.account_id = account_id
        self.credits = credits
        super().__init__(
            f"Payment {capture_id} captured for order {order_id} but "
            f"{credits} credits were not applied to account {account_id}"
        )


class CaptureAmountMismatchError(AutoNestError):
    """
    Raised when a completed capture does not pay for the credits requested.

    Nothing is credited. Carries the capture id so an operator can refund
    or credit the account by hand.
    """

    def __init__(
        self,
        capture_id: str,
        order_id: str,
        credits: int,
        expected: str,
        captured: str | None,
        currency: str | None,
    ) -> None:
        self.capture_id = capture_id
        self.order_id = order_id
        self.credits = credits
        self.expected = expected
        self.captured = captured
        self.currency = currency
        paid = f"{captured} {currency or ''}".strip() if captured else "an unknown amount"
        super().__init__(
            f"Payment {capture_id} for order {order_id} captured {paid}, "
            f"expected {expected} USD for {credits} credits"
        )


# ============================================================================
# Upstream (webhook / HTTP) errors
# ============================================================================


class UpstreamError(AutoNestError):
    """Raised when a tool webhook returns a non-success status."""

    def __init__(self, status_code: int, body_text: str) -> None:
        self.status_code = status_code
        self.body_text = body_text
        super().__init__(
            f"Upstream request failed with status {status_code}. Response: {_preview(body_text)}"
        )


class UpstreamTimeoutError(AutoNestError):
    """Raised when an external call exceeds its timeout."""

    def __init__(self, target: str, timeout_seconds: float) -> None:
        self.target = target
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Request to {target} timed out after {timeout_seconds}s")


class MalformedUpstreamResponseError(AutoNestError):
    """Raised when a webhook body cannot be parsed as JSON."""

    def __init__(self, body_text: str, reason: str = "") -> None:
        self.body_text = body_text
        self.reason = reason
        super().__init__(
            f"Failed to parse JSON response. Detail: {reason or 'invalid JSON'}. "
            f"Raw response: {_preview(body_text)}"
        )


class UnrecognizedResponseShapeError(AutoNestError):
    """Raised when parsed JSON matches none of the accepted response shapes."""

    def __init__(self, preview: str) -> None:
        self.preview = preview
        super().__init__(f"Unexpected response structure: {_preview(preview)}")


class OutputValidationError(AutoNestError):
    """Raised when a recognized response fails the tool's output schema."""

    def __init__(self, tool: str, message: str) -> None:
        self.tool = tool
        self.message = message
        super().__init__(f"Invalid output from {tool}: {message}")


# ============================================================================
# Access errors
# ============================================================================


class ResourceNotFoundError(AutoNestError):
    """Raised when requested resource doesn't exist."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class AuthenticationError(AutoNestError):
    """Raised when authentication fails (missing or invalid ID token)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")
