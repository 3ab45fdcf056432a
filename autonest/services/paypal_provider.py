"""
PayPal Gateway - PayPal Orders v2 REST client.

Implements PaymentGateway for the credit purchase flow:
client-credentials token, order creation, order capture.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx
from structlog import get_logger

from autonest.exceptions import (
    ConfigurationError,
    GatewayError,
    PaymentNotCompletedError,
    UpstreamTimeoutError,
)
from autonest.services.payment_provider import (
    COMPLETED_STATUS,
    CURRENCY,
    CaptureResult,
    OrderResult,
)

logger = get_logger(__name__)

INSTRUMENT_DECLINED = "INSTRUMENT_DECLINED"


def format_amount(amount: Decimal) -> str:
    """Format a dollar amount with two decimal places, as PayPal expects."""
    return str(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def build_order_payload(amount: Decimal, credits: int) -> dict[str, Any]:
    """Orders v2 request body for a credit purchase."""
    value = format_amount(amount)
    return {
        "intent": "CAPTURE",
        "purchase_units": [
            {
                "amount": {
                    "currency_code": CURRENCY,
                    "value": value,
                    "breakdown": {
                        "item_total": {"currency_code": CURRENCY, "value": value},
                    },
                },
                "description": f"{credits} App Credits Purchase",
                "items": [
                    {
                        "name": "App Credits",
                        "unit_amount": {"currency_code": CURRENCY, "value": value},
                        "quantity": "1",
                        "description": f"{credits} credits for AutoNest app.",
                        "sku": f"AUTONEST-CREDITS-{credits}",
                    }
                ],
            }
        ],
    }


class PayPalProvider:
    """PayPal Orders v2 implementation of PaymentGateway."""

    TOKEN_PATH = "/v1/oauth2/token"
    ORDERS_PATH = "/v2/checkout/orders"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        timeout_seconds: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def _require_credentials(self) -> None:
        if not self.client_id:
            raise ConfigurationError("PAYPAL_CLIENT_ID")
        if not self.client_secret:
            raise ConfigurationError("PAYPAL_CLIENT_SECRET")

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping timeouts and transport failures."""
        url = f"{self.base_url}{path}"
        try:
            return await self.http_client.request(
                method, url, timeout=self.timeout_seconds, **kwargs
            )
        except httpx.TimeoutException as e:
            logger.error("paypal_request_timeout", path=path, timeout=self.timeout_seconds)
            raise UpstreamTimeoutError("PayPal", self.timeout_seconds) from e
        except httpx.HTTPError as e:
            logger.error("paypal_request_failed", path=path, error=str(e))
            raise GatewayError(502, f"Could not reach PayPal: {e}") from e

    async def _get_access_token(self) -> str:
        """Exchange client credentials for an OAuth access token."""
        self._require_credentials()

        response = await self._send(
            "POST",
            self.TOKEN_PATH,
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
        )
        if response.status_code != 200:
            _, description = self._error_details(response)
            logger.error(
                "paypal_token_request_failed",
                status=response.status_code,
                error=description,
            )
            raise GatewayError(response.status_code, f"Failed to get access token: {description}")

        token = response.json().get("access_token")
        if not token:
            raise GatewayError(response.status_code, "Access token missing from PayPal response")
        return str(token)

    @staticmethod
    def _error_details(response: httpx.Response) -> tuple[str | None, str]:
        """Extract (issue, description) from a PayPal error body."""
        try:
            body = response.json()
        except ValueError:
            return None, response.text[:500] or response.reason_phrase

        if not isinstance(body, dict):
            return None, response.text[:500]

        details = body.get("details")
        if isinstance(details, list) and details and isinstance(details[0], dict):
            issue = details[0].get("issue")
            description = details[0].get("description") or body.get("message") or str(issue)
            return issue, str(description)

        description = (
            body.get("message") or body.get("error_description") or body.get("error") or ""
        )
        return None, str(description) or response.text[:500]

    async def create_order(self, amount: Decimal, credits: int) -> OrderResult:
        """Create a CAPTURE-intent order for a credit purchase."""
        access_token = await self._get_access_token()

        logger.info("creating_paypal_order", amount=format_amount(amount), credits=credits)

        response = await self._send(
            "POST",
            self.ORDERS_PATH,
            json=build_order_payload(amount, credits),
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
        )
        if response.status_code not in (200, 201):
            _, description = self._error_details(response)
            logger.error(
                "paypal_order_creation_failed",
                status=response.status_code,
                error=description,
            )
            raise GatewayError(response.status_code, description)

        data = response.json()
        approve_url = next(
            (
                link.get("href")
                for link in data.get("links", [])
                if link.get("rel") in ("approve", "payer-action")
            ),
            None,
        )

        logger.info("paypal_order_created", order_id=data["id"], status=data.get("status"))

        return OrderResult(
            order_id=data["id"],
            status=data.get("status", "CREATED"),
            approve_url=approve_url,
        )

    async def capture_order(self, order_id: str) -> CaptureResult:
        """Capture an approved order."""
        access_token = await self._get_access_token()

        logger.info("capturing_paypal_order", order_id=order_id)

        response = await self._send(
            "POST",
            f"{self.ORDERS_PATH}/{order_id}/capture",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
                # Retried captures of the same order are de-duplicated by PayPal
                "PayPal-Request-Id": f"capture-{order_id}",
            },
        )

        if response.status_code not in (200, 201):
            issue, description = self._error_details(response)
            if issue == INSTRUMENT_DECLINED:
                logger.warning("paypal_instrument_declined", order_id=order_id)
                raise PaymentNotCompletedError("DECLINED", instrument_declined=True)

            logger.error(
                "paypal_capture_failed",
                order_id=order_id,
                status=response.status_code,
                issue=issue,
                error=description,
            )
            raise GatewayError(response.status_code, description)

        result = self._parse_capture(order_id, response.json())
        logger.info(
            "paypal_order_captured",
            order_id=order_id,
            capture_id=result.capture_id,
            status=result.status,
        )
        return result

    @staticmethod
    def _parse_capture(order_id: str, data: dict[str, Any]) -> CaptureResult:
        """Pull capture id, status and amount out of a capture response."""
        order_status = str(data.get("status", ""))
        match data:
            case {"purchase_units": [{"payments": {"captures": [dict() as capture, *_]}}, *_]}:
                pass
            case _:
                capture = {}

        amount = capture.get("amount") or {}
        payer = data.get("payer") or {}
        # Completed only when neither the order nor its capture says otherwise
        if order_status and order_status != COMPLETED_STATUS:
            status = order_status
        else:
            status = str(capture.get("status") or order_status)

        return CaptureResult(
            order_id=str(data.get("id", order_id)),
            capture_id=str(capture.get("id") or data.get("id", order_id)),
            status=status,
            amount_value=amount.get("value"),
            currency=amount.get("currency_code"),
            payer_email=payer.get("email_address"),
        )
