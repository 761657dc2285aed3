"""
Payment provider API client and webhook signature verification.

Talks to a Stripe-compatible REST API over httpx. The webhook processor only
needs customer lookups (subscription and invoice events reference customers
by id), so the client surface is intentionally small:
- Customer retrieval with retry on transient failures
- Verification of the ``t=<timestamp>,v1=<hmac>`` signature header the
  provider attaches to every webhook delivery
"""

import asyncio
import hashlib
import hmac
import time
from typing import Any, Optional, Union

import httpx
import structlog

logger = structlog.get_logger(__name__)

MAX_RETRY_AFTER_SECONDS = 30.0


class PaymentProviderError(Exception):
    """Raised when a payment provider API request fails."""

    pass


class WebhookVerificationError(Exception):
    """Raised when a webhook signature header is missing, malformed or invalid."""

    pass


def compute_signature(payload: Union[str, bytes], timestamp: int, secret: str) -> str:
    """HMAC-SHA256 over ``"{timestamp}.{payload}"`` as lowercase hex."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=f"{timestamp}.".encode("utf-8") + payload,
        digestmod=hashlib.sha256,
    ).hexdigest()


def _parse_signature_header(header: str) -> tuple[int, list[str]]:
    timestamp: Optional[int] = None
    signatures = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise WebhookVerificationError("Invalid timestamp in signature header")
        elif key == "v1" and value:
            signatures.append(value)

    if timestamp is None:
        raise WebhookVerificationError("Signature header has no timestamp")
    if not signatures:
        raise WebhookVerificationError("Signature header has no v1 signature")
    return timestamp, signatures


def verify_signature(
    payload: Union[str, bytes],
    header: Optional[str],
    secret: str,
    tolerance_seconds: int = 300,
    now: Optional[float] = None,
) -> None:
    """
    Verify a webhook signature header against the raw request body.

    The provider signs ``"{t}.{body}"`` with the endpoint's signing secret and
    sends ``t=<unix seconds>,v1=<hex hmac>[,v1=...]``. Any ``v1`` entry may
    match; signatures older than ``tolerance_seconds`` are rejected to limit
    replay.

    Args:
        payload: Raw request body, as received (not re-serialized JSON)
        header: Value of the ``Stripe-Signature`` header
        secret: Webhook signing secret
        tolerance_seconds: Max accepted age of the signature (0 disables the check)
        now: Current epoch seconds (defaults to ``time.time()``)

    Raises:
        WebhookVerificationError: If the header is missing, malformed, stale
            or no signature matches

    Example:
        >>> verify_signature(body, request.headers.get("Stripe-Signature"), secret)
    """
    if not header:
        raise WebhookVerificationError("Missing signature header")
    if not secret:
        raise WebhookVerificationError("Webhook signing secret is not configured")

    timestamp, signatures = _parse_signature_header(header)

    expected = compute_signature(payload, timestamp, secret)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        logger.warning("webhook_signature_mismatch", timestamp=timestamp)
        raise WebhookVerificationError("No signature matches the payload")

    current = time.time() if now is None else now
    if tolerance_seconds > 0 and abs(current - timestamp) > tolerance_seconds:
        logger.warning(
            "webhook_signature_expired",
            timestamp=timestamp,
            tolerance_seconds=tolerance_seconds,
        )
        raise WebhookVerificationError("Signature timestamp outside tolerance")

    logger.debug("webhook_signature_verified", timestamp=timestamp)


def _retry_delay(response: httpx.Response, attempt: int) -> float:
    """Seconds to wait before the next attempt: ``Retry-After`` if numeric, else 2**attempt."""
    retry_after = response.headers.get("Retry-After")
    if retry_after:
        try:
            return min(max(float(retry_after), 0.0), MAX_RETRY_AFTER_SECONDS)
        except ValueError:
            logger.debug("retry_after_not_numeric", value=retry_after)
    return float(2**attempt)


class PaymentProviderClient:
    """
    Async client for the payment provider's REST API.

    Attributes:
        api_key: Provider secret key, sent as a bearer token
        base_url: API base URL

    Example:
        >>> async with PaymentProviderClient(api_key="sk_test_...") as client:
        ...     customer = await client.retrieve_customer("cus_123")
        ...     print(customer.get("email"))
    """

    API_VERSION_PATH = "/v1"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.stripe.com",
        timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http_client: Optional[httpx.AsyncClient] = None

        logger.info("payment_client_initialized", has_api_key=bool(api_key))

    async def __aenter__(self):
        """Async context manager entry."""
        self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _make_request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        retry_count: int = 3,
    ) -> dict[str, Any]:
        """
        Make an authenticated API request with retry on 429, 5xx and transport errors.

        Rate-limited responses wait for ``Retry-After`` when the provider sends it.

        Raises:
            PaymentProviderError: If the request fails or retries are exhausted
        """
        if not self.api_key:
            raise PaymentProviderError("Payment provider API key is not configured")

        url = f"{self.base_url}{self.API_VERSION_PATH}/{path.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }

        for attempt in range(retry_count):
            try:
                if not self._http_client:
                    self._http_client = httpx.AsyncClient(timeout=self.timeout)

                response = await self._http_client.request(
                    method, url, params=params, headers=headers
                )
                response.raise_for_status()

                logger.debug(
                    "payment_api_request_success",
                    method=method,
                    path=path,
                    status_code=response.status_code,
                    attempt=attempt + 1,
                )
                return response.json()

            except httpx.HTTPStatusError as e:
                logger.error(
                    "payment_api_request_failed",
                    method=method,
                    path=path,
                    status_code=e.response.status_code,
                    attempt=attempt + 1,
                )

                status = e.response.status_code
                if 400 <= status < 500 and status != 429:
                    raise PaymentProviderError(
                        f"API request failed ({status}): {e.response.text}"
                    )

                if attempt < retry_count - 1:
                    await asyncio.sleep(_retry_delay(e.response, attempt))
                else:
                    raise PaymentProviderError(
                        f"API request failed after {retry_count} attempts: {e.response.text}"
                    )

            except httpx.HTTPError as e:
                logger.error(
                    "payment_api_request_error",
                    method=method,
                    path=path,
                    error=str(e),
                    attempt=attempt + 1,
                )

                if attempt < retry_count - 1:
                    await asyncio.sleep(2**attempt)
                else:
                    raise PaymentProviderError(f"Unexpected API error: {e}")

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        """
        Retrieve a customer by id.

        Returns:
            Customer object (``id``, ``email``, ``name``, ...)

        Raises:
            PaymentProviderError: If the customer cannot be fetched
        """
        if not customer_id:
            raise PaymentProviderError("Customer id is required")

        customer = await self._make_request("GET", f"customers/{customer_id}")
        logger.info("customer_retrieved", customer_id=customer_id)
        return customer
