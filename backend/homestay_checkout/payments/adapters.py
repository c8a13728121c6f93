"""Payment adapters: one per payment method.

Each adapter turns a created booking into either a redirect to the
provider or the booking as finalized without one. Amount minimums are checked before
any provider call.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol
from urllib.parse import urlencode

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from homestay_checkout.config import settings
from homestay_checkout.errors import PaymentProviderError
from homestay_checkout.payments.khalti_client import KhaltiClient
from homestay_checkout.payments.stripe_client import create_payment_session
from homestay_checkout.schemas.checkout import Booking, PaymentMethod
from homestay_checkout.services.pending_payment_service import (
    attach_provider_reference,
    create_pending_payment,
    discard_pending_payment,
)

logger = logging.getLogger(__name__)

# Status of a booking that will be paid in cash on arrival
DEFERRED_PAYMENT_STATUS = "PAYMENT_DEFERRED"


@dataclass(frozen=True)
class RedirectHandle:
    """Where to send the browser to complete payment."""

    url: str
    provider_reference: str
    provider: str


class PaymentAdapter(Protocol):
    """Common interface for the three payment paths."""

    method: PaymentMethod
    redirects: bool
    provider: str

    async def initiate(self, booking: Booking) -> RedirectHandle | Booking:  # pragma: no cover - interface
        """Start payment.

        Returns a :class:`RedirectHandle`, or the booking as it stands once it
        is finalized without a redirect.

        Raises:
            PaymentProviderError: if the provider cannot start the payment.
        """
        ...


def callback_url(booking_id: str, method: PaymentMethod, **extra: str) -> str:
    """Provider return URL carrying the booking id and the method."""
    query = urlencode({"bookingId": booking_id, "paymentMethod": method.value, **extra})
    # Stripe substitutes the literal placeholder, so it must stay unescaped
    query = query.replace("%7BCHECKOUT_SESSION_ID%7D", "{CHECKOUT_SESSION_ID}")
    return f"{settings.payment_callback_url}?{query}"


class StripeAdapter:
    """Hosted Stripe Checkout, charged in USD cents."""

    method = PaymentMethod.CARD
    redirects = True
    provider = "stripe"

    def __init__(self, minimum_cents: int | None = None, minimum_npr_minor_units: int | None = None) -> None:
        self.minimum_cents = minimum_cents if minimum_cents is not None else settings.card_minimum_cents
        self.minimum_npr_minor_units = (
            minimum_npr_minor_units
            if minimum_npr_minor_units is not None
            else settings.card_minimum_npr_minor_units
        )

    def amount_cents(self, booking: Booking) -> int:
        return booking.total_money.to_usd().to_minor_units()

    def _metadata(self, booking: Booking) -> dict[str, str]:
        # Stripe metadata values must be strings
        metadata = {
            "bookingId": booking.booking_id,
            "propertyId": str(booking.property_id or ""),
            "checkIn": booking.check_in_date.isoformat() if booking.check_in_date else "",
            "checkOut": booking.check_out_date.isoformat() if booking.check_out_date else "",
            "totalGuests": str(booking.total_guests or ""),
            "totalPriceNPR": str(booking.total_price or "0"),
            "paymentTimestamp": datetime.now(timezone.utc).isoformat(),
        }
        return {k: v for k, v in metadata.items() if v}

    async def initiate(self, booking: Booking) -> RedirectHandle:
        cents = self.amount_cents(booking)
        if cents < self.minimum_cents:
            logger.info(
                "Card payment for booking %s below minimum (%s < %s cents)",
                booking.booking_id,
                cents,
                self.minimum_cents,
            )
            raise PaymentProviderError(
                f"Amount in USD must be at least {self.minimum_cents} cents for card payments.",
                self.provider,
            )

        paisa = booking.total_money.to_minor_units()
        if paisa < self.minimum_npr_minor_units:
            logger.info(
                "Card payment for booking %s below NPR minimum (%s < %s paisa)",
                booking.booking_id,
                paisa,
                self.minimum_npr_minor_units,
            )
            raise PaymentProviderError(
                f"Amount must be at least {self.minimum_npr_minor_units} paisa "
                f"(NPR {self.minimum_npr_minor_units // 100}) for card payments.",
                self.provider,
            )

        try:
            session = await create_payment_session(
                amount_cents=cents,
                description=f"Booking {booking.booking_id}",
                metadata=self._metadata(booking),
                success_url=callback_url(
                    booking.booking_id, self.method, session_id="{CHECKOUT_SESSION_ID}"
                ),
                cancel_url=f"{settings.frontend_url}/payment-cancel?{urlencode({'bookingId': booking.booking_id})}",
            )
        except stripe.StripeError as e:
            logger.error("Stripe checkout error for booking %s: %s", booking.booking_id, e)
            raise PaymentProviderError(
                getattr(e, "user_message", None) or "Failed to initiate card payment.",
                self.provider,
                status_code=getattr(e, "http_status", None),
            ) from e

        if not session.id or not session.url:
            raise PaymentProviderError("Stripe did not return a checkout session.", self.provider)

        logger.info("Checkout session %s created for booking %s", session.id, booking.booking_id)
        return RedirectHandle(url=session.url, provider_reference=session.id, provider=self.provider)


class KhaltiAdapter:
    """Khalti wallet redirect, charged in NPR paisa."""

    method = PaymentMethod.WALLET
    redirects = True
    provider = "khalti"

    def __init__(
        self,
        db: AsyncSession,
        client: KhaltiClient | None = None,
        minimum_minor_units: int | None = None,
    ) -> None:
        self.db = db
        self.client = client or KhaltiClient()
        self.minimum_minor_units = (
            minimum_minor_units if minimum_minor_units is not None else settings.wallet_minimum_minor_units
        )

    def _customer_info(self, booking: Booking) -> dict[str, str] | None:
        info = {
            "name": booking.guest_name,
            "email": booking.guest_email,
            "phone": booking.guest_phone,
        }
        info = {k: v for k, v in info.items() if v}
        return info or None

    async def initiate(self, booking: Booking) -> RedirectHandle:
        amount = booking.total_money.to_minor_units()
        if amount < self.minimum_minor_units:
            logger.info(
                "Wallet payment for booking %s below minimum (%s < %s paisa)",
                booking.booking_id,
                amount,
                self.minimum_minor_units,
            )
            raise PaymentProviderError(
                f"Amount must be at least {self.minimum_minor_units} paisa "
                f"(NPR {self.minimum_minor_units // 100}) for wallet payments.",
                self.provider,
            )

        # Persisted first so a lost tab can still be reconciled
        pending = await create_pending_payment(self.db, booking.booking_id, amount, self.method.value)

        try:
            initiation = await self.client.initiate(
                return_url=callback_url(booking.booking_id, self.method),
                website_url=settings.site_url,
                amount=amount,
                purchase_order_id=booking.booking_id,
                purchase_order_name=f"Booking {booking.booking_id}",
                customer_info=self._customer_info(booking),
            )
        except PaymentProviderError:
            await discard_pending_payment(self.db, booking.booking_id)
            raise

        await attach_provider_reference(self.db, pending, initiation.pidx)
        logger.info("Khalti payment %s initiated for booking %s", initiation.pidx, booking.booking_id)
        return RedirectHandle(
            url=initiation.payment_url,
            provider_reference=initiation.pidx,
            provider=self.provider,
        )


class PayAtPropertyAdapter:
    """Cash on check-in. Nothing to call."""

    method = PaymentMethod.PAY_AT_PROPERTY
    redirects = False
    provider = "property"

    async def initiate(self, booking: Booking) -> Booking:
        """Mark the booking as paid on arrival.

        A booking the backend already reports as CONFIRMED keeps that status.
        """
        update = {"transaction_id": booking.transaction_id or f"PAY_AT_PROPERTY_{booking.booking_id}"}
        if booking.status.upper() != "CONFIRMED":
            update["status"] = DEFERRED_PAYMENT_STATUS
        logger.info("Booking %s will be paid at the property", booking.booking_id)
        return booking.model_copy(update=update)
