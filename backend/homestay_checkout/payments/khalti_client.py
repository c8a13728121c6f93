"""Async client for the Khalti ePayment (v2) API."""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from homestay_checkout.config import settings
from homestay_checkout.errors import PaymentProviderError

logger = logging.getLogger(__name__)

PROVIDER = "khalti"


@dataclass(frozen=True)
class KhaltiInitiation:
    pidx: str
    payment_url: str


@dataclass(frozen=True)
class KhaltiLookup:
    pidx: str
    status: str  # Completed, Pending, Initiated, Refunded, Expired, User canceled, ...
    total_amount: int | None = None
    transaction_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.status == "Completed"

    @property
    def is_pending(self) -> bool:
        return self.status in ("Pending", "Initiated")


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return "Failed to initiate Khalti payment"
    if isinstance(data, dict):
        if data.get("error_key") == "validation_error":
            return "Invalid payment details"
        for key in ("message", "detail", "error"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return "Failed to initiate Khalti payment"


def _json(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise PaymentProviderError("Khalti returned an unexpected response", PROVIDER) from e
    if not isinstance(data, dict):
        raise PaymentProviderError("Khalti returned an unexpected response", PROVIDER)
    return data


class KhaltiClient:
    """Initiate and look up Khalti wallet payments."""

    def __init__(
        self,
        secret_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.secret_key = secret_key if secret_key is not None else settings.khalti_secret_key
        self.base_url = (base_url or settings.khalti_base_url).rstrip("/")
        self.timeout = httpx.Timeout(timeout or settings.payment_provider_timeout_seconds)
        self._http_client = http_client

    async def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": f"Key {self.secret_key}",
            "Content-Type": "application/json",
        }
        try:
            if self._http_client is not None:
                return await self._http_client.post(
                    url, json=payload, headers=headers, timeout=self.timeout
                )
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.error("Khalti timed out on %s", path)
            raise PaymentProviderError("Khalti did not respond in time", PROVIDER) from e
        except httpx.HTTPError as e:
            logger.error("Khalti unreachable on %s: %s", path, e)
            raise PaymentProviderError("Khalti is unreachable", PROVIDER) from e

    async def initiate(
        self,
        return_url: str,
        website_url: str,
        amount: int,
        purchase_order_id: str,
        purchase_order_name: str,
        customer_info: dict[str, str] | None = None,
    ) -> KhaltiInitiation:
        """Start a wallet payment and get the URL to send the browser to."""
        payload: dict[str, Any] = {
            "return_url": return_url,
            "website_url": website_url,
            "amount": amount,
            "purchase_order_id": purchase_order_id,
            "purchase_order_name": purchase_order_name,
        }
        if customer_info:
            payload["customer_info"] = customer_info

        logger.info("Initiating Khalti payment for order %s (%s paisa)", purchase_order_id, amount)
        response = await self._post("/epayment/initiate/", payload)
        if not response.is_success:
            message = _error_message(response)
            logger.warning("Khalti initiation rejected (%s): %s", response.status_code, message)
            raise PaymentProviderError(message, PROVIDER, status_code=response.status_code)

        data = _json(response)
        pidx = data.get("pidx")
        payment_url = data.get("payment_url")
        if not pidx or not payment_url:
            raise PaymentProviderError("Missing pidx or payment_url from Khalti response", PROVIDER)
        return KhaltiInitiation(pidx=pidx, payment_url=payment_url)

    async def lookup(self, pidx: str) -> KhaltiLookup:
        """Ask Khalti for the current status of a payment."""
        response = await self._post("/epayment/lookup/", {"pidx": pidx})
        if not response.is_success:
            message = _error_message(response)
            logger.warning("Khalti lookup failed (%s) for %s: %s", response.status_code, pidx, message)
            raise PaymentProviderError(message, PROVIDER, status_code=response.status_code)

        data = _json(response)
        return KhaltiLookup(
            pidx=data.get("pidx", pidx),
            status=data.get("status", ""),
            total_amount=data.get("total_amount"),
            transaction_id=data.get("transaction_id"),
            raw=data,
        )
