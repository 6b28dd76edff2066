"""
Flow Service - outbound calls to the Flow payment gateway.

Two operations: payment/create (signed form POST) and payment/getStatus
(signed GET). Everything Flow returns is treated as untrusted; anything
other than a well-formed 2xx body becomes a GatewayError.
"""

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Union

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from app.config import Settings
from app.errors import GatewayError, NotFoundError
from app.logging_config import mask_token
from app.services.flow_signature import FlowSigner

logger = logging.getLogger(__name__)

CREATE_PATH = "/payment/create"
STATUS_PATH = "/payment/getStatus"

# getStatus answers these when it does not know the token
UNKNOWN_TOKEN_STATUSES = (400, 404)


@dataclass(frozen=True)
class FlowOrderRequest:
    """One payment attempt as sent to payment/create."""

    commerce_order: str
    subject: str
    amount: Union[int, float, Decimal]
    email: str
    optional_data: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class FlowOrderCreated:
    checkout_url: str
    token: str
    gateway_order_id: str


@dataclass(frozen=True)
class FlowOrderInfo:
    """
    Parsed payment/getStatus body.
    status is the raw gateway code; callers decide what it means.
    """

    gateway_order_id: str
    commerce_order: str
    status: int
    amount: Optional[Decimal] = None
    subject: Optional[str] = None
    currency: Optional[str] = None
    payer: Optional[str] = None
    request_date: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def round_amount(amount: Union[int, float, Decimal]) -> int:
    """CLP has no subdivision: round half-up to a whole peso."""
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _is_timeout(exc: BaseException) -> bool:
    return isinstance(exc, GatewayError) and exc.timeout


class FlowClient:
    """Client for the Flow REST API."""

    def __init__(
        self,
        settings: Settings,
        signer: Optional[FlowSigner] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        status_retry_wait: Optional[wait_base] = None,
    ):
        self.base_url = settings.flow_api_url.rstrip("/")
        self.api_key = settings.flow_api_key
        self.url_confirmation = settings.flow_url_confirmation
        self.url_return = settings.flow_url_return
        self.currency = settings.flow_currency
        self.payment_method = settings.flow_payment_method
        self.create_timeout = settings.flow_create_timeout
        self.status_timeout = settings.flow_status_timeout
        self.status_retry_attempts = max(1, settings.flow_status_retry_attempts)
        self.status_retry_wait = status_retry_wait or wait_exponential(
            multiplier=0.5, min=0.5, max=4
        )
        self.signer = signer or FlowSigner(settings.flow_secret_key)
        self._http = http_client or httpx.AsyncClient()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def create_order(self, order: FlowOrderRequest) -> FlowOrderCreated:
        """
        Create a payment order.

        Never retried here: a retry after an ambiguous failure could open a
        second remote order for the same commerce order.
        """
        amount = round_amount(order.amount)

        params: Dict[str, Any] = {
            "apiKey": self.api_key,
            "commerceOrder": order.commerce_order,
            "subject": order.subject,
            "amount": amount,
            "email": order.email,
            "urlConfirmation": self.url_confirmation,
            "urlReturn": self.url_return,
            "currency": self.currency,
            "paymentMethod": self.payment_method,
        }
        if order.optional_data:
            params["optional"] = json.dumps(order.optional_data, separators=(",", ":"))

        body = self.signer.signed(params)

        logger.info(
            f"Creating Flow order {order.commerce_order}: "
            f"{amount} {self.currency} (requested {order.amount})"
        )

        data = await self._request(
            "POST",
            CREATE_PATH,
            timeout=self.create_timeout,
            data=body,
        )

        url = data.get("url")
        token = data.get("token")
        flow_order = data.get("flowOrder")
        if not url or not token or flow_order is None:
            raise GatewayError(
                "Malformed payment/create response",
                status=200,
                raw_body=json.dumps(data),
            )

        logger.info(f"Flow order created: {flow_order} token={mask_token(token)}")

        return FlowOrderCreated(
            checkout_url=f"{url}?token={token}",
            token=str(token),
            gateway_order_id=str(flow_order),
        )

    async def get_order_status(self, token: str) -> FlowOrderInfo:
        """
        Fetch the authoritative status for a token.

        Read-only, so timeouts are retried with exponential backoff.
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_timeout),
            stop=stop_after_attempt(self.status_retry_attempts),
            wait=self.status_retry_wait,
            reraise=True,
        )
        return await retrying(self._fetch_status, token)

    async def _fetch_status(self, token: str) -> FlowOrderInfo:
        params = self.signer.signed({"apiKey": self.api_key, "token": token})

        logger.info(f"Querying Flow status for token {mask_token(token)}")

        try:
            data = await self._request(
                "GET",
                STATUS_PATH,
                timeout=self.status_timeout,
                params=params,
            )
        except GatewayError as e:
            if e.status in UNKNOWN_TOKEN_STATUSES:
                raise NotFoundError(f"Flow has no order for token {mask_token(token)}") from e
            raise
        info = self._parse_status(data)

        logger.info(f"Flow status for order {info.gateway_order_id}: {info.status}")
        return info

    def _parse_status(self, data: Dict[str, Any]) -> FlowOrderInfo:
        try:
            status = int(data["status"])
            gateway_order_id = str(data["flowOrder"])
            commerce_order = str(data.get("commerceOrder", ""))
            amount = data.get("amount")
            amount = Decimal(str(amount)) if amount is not None else None
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise GatewayError(
                f"Malformed payment/getStatus response: {e}",
                status=200,
                raw_body=json.dumps(data),
            ) from e

        return FlowOrderInfo(
            gateway_order_id=gateway_order_id,
            commerce_order=commerce_order,
            status=status,
            amount=amount,
            subject=data.get("subject"),
            currency=data.get("currency"),
            payer=data.get("payer"),
            request_date=data.get("requestDate"),
            raw=data,
        )

    async def _request(
        self,
        method: str,
        path: str,
        timeout: float,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """Send a request and return the JSON object body, or raise GatewayError."""
        url = f"{self.base_url}{path}"
        try:
            response = await self._http.request(method, url, timeout=timeout, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"Flow {path} timed out after {timeout}s")
            raise GatewayError(f"Flow {path} timed out", timeout=True) from e
        except httpx.HTTPError as e:
            logger.error(f"Flow {path} transport error: {e}")
            raise GatewayError(f"Flow {path} transport error: {e}") from e

        if not response.is_success:
            logger.error(
                f"Flow {path} failed with status {response.status_code}: {response.text[:500]}"
            )
            raise GatewayError(
                f"Flow {path} returned HTTP {response.status_code}",
                status=response.status_code,
                raw_body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError(
                f"Flow {path} returned a non-JSON body",
                status=response.status_code,
                raw_body=response.text,
            ) from e

        if not isinstance(data, dict):
            raise GatewayError(
                f"Flow {path} returned an unexpected body",
                status=response.status_code,
                raw_body=response.text,
            )
        return data
