"""Async client for the external booking backend.

No call here is retried automatically: booking creation carries no
idempotency key, so a blind retry could create a second booking.
"""

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from homestay_checkout.config import settings
from homestay_checkout.errors import UpstreamBookingError
from homestay_checkout.schemas.checkout import Booking, BookingRequest
from homestay_checkout.services.identity import AuthenticatedIdentity, Identity

logger = logging.getLogger(__name__)

UNREACHABLE_MESSAGE = "The booking service is unavailable. Please try again."


def _headers(identity: Identity | None) -> dict[str, str]:
    headers = {"Content-Type": "application/json", "accept": "application/json"}
    if isinstance(identity, AuthenticatedIdentity):
        headers["Authorization"] = f"Bearer {identity.access_token}"
    return headers


def _error_message(response: httpx.Response, fallback: str) -> str:
    """Pull a displayable message out of an error body."""
    try:
        data = response.json()
    except ValueError:
        return fallback
    if isinstance(data, dict):
        for key in ("message", "error", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback


def _parse_booking(data: Any) -> Booking:
    if not isinstance(data, dict):
        raise UpstreamBookingError("Booking service returned an unexpected response.")
    # Some backend routes wrap the booking in {"data": {...}}
    if "bookingId" not in data and isinstance(data.get("data"), dict):
        data = data["data"]
    if not data.get("bookingId"):
        raise UpstreamBookingError("Booking ID not returned from booking service.")
    try:
        return Booking.model_validate(data)
    except ValidationError as e:
        logger.warning("Unparseable booking payload: %s", e)
        raise UpstreamBookingError("Booking service returned an unexpected response.") from e


class BookingServiceClient:
    """Thin wrapper over the booking backend's REST API."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or settings.booking_api_base_url).rstrip("/")
        self.timeout = httpx.Timeout(timeout or settings.booking_api_timeout_seconds)
        self._http_client = http_client

    async def _request(
        self,
        method: str,
        path: str,
        identity: Identity | None,
        json: dict | None = None,
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            if self._http_client is not None:
                return await self._http_client.request(
                    method, url, json=json, headers=_headers(identity), timeout=self.timeout
                )
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.request(method, url, json=json, headers=_headers(identity))
        except httpx.TimeoutException as e:
            logger.error("Booking service timed out on %s %s", method, path)
            raise UpstreamBookingError("The booking service timed out. Please try again.") from e
        except httpx.HTTPError as e:
            logger.error("Booking service unreachable on %s %s: %s", method, path, e)
            raise UpstreamBookingError(UNREACHABLE_MESSAGE) from e

    async def create_booking(self, request: BookingRequest, identity: Identity) -> Booking:
        """Create a booking via ``/bookings`` (signed in) or ``/bookings/guest``.

        Raises:
            UpstreamBookingError: on any non-2xx status, transport failure,
                or a success body without ``bookingId``.
        """
        path = "/bookings" if identity.is_authenticated else "/bookings/guest"
        logger.info(
            "Creating booking for property %s (%s to %s) via %s",
            request.property_id,
            request.check_in_date,
            request.check_out_date,
            path,
        )
        response = await self._request("POST", path, identity, json=request.to_payload())

        if not response.is_success:
            message = _error_message(response, "Failed to create booking.")
            logger.warning("Booking creation rejected (%s): %s", response.status_code, message)
            raise UpstreamBookingError(message, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamBookingError("Booking service returned an unexpected response.") from e

        booking = _parse_booking(data)
        logger.info("Created booking %s with status %s", booking.booking_id, booking.status)
        return booking

    async def get_booking(self, booking_id: str, identity: Identity | None) -> Booking:
        """Fetch an existing booking (used when retrying payment)."""
        response = await self._request("GET", f"/bookings/{booking_id}", identity)
        if not response.is_success:
            message = _error_message(response, "Booking not found.")
            raise UpstreamBookingError(message, status_code=response.status_code)
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamBookingError("Booking service returned an unexpected response.") from e
        return _parse_booking(data)

    async def confirm_payment(
        self,
        booking_id: str,
        transaction_id: str,
        metadata: dict[str, Any] | None,
        identity: Identity | None,
    ) -> dict[str, Any]:
        """Tell the backend a provider reported the payment complete."""
        logger.info("Confirming payment for booking %s (txn %s)", booking_id, transaction_id)
        response = await self._request(
            "POST",
            "/bookings/confirm-payment",
            identity,
            json={
                "groupBookingId": booking_id,
                "transactionId": transaction_id,
                "metadata": metadata or {},
            },
        )
        if not response.is_success:
            message = _error_message(response, "Failed to confirm payment.")
            logger.warning("Payment confirmation rejected (%s): %s", response.status_code, message)
            raise UpstreamBookingError(message, status_code=response.status_code)
        try:
            data = response.json()
        except ValueError:
            data = {}
        return data if isinstance(data, dict) else {"result": data}
