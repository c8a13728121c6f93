"""Reconcile a payment after the browser returns from a provider redirect.

Wallet returns are matched against the pending payment stored before the
redirect. That record is consumed before anything else happens, so a
replayed callback URL never verifies or finalizes twice.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from homestay_checkout.config import settings
from homestay_checkout.errors import PaymentProviderError, ReconciliationAmbiguous, UpstreamBookingError
from homestay_checkout.models.pending_payment import utcnow
from homestay_checkout.payments.khalti_client import KhaltiClient
from homestay_checkout.payments.router import PaymentFlow
from homestay_checkout.payments.stripe_client import retrieve_payment_session
from homestay_checkout.schemas.checkout import PaymentMethod, PaymentState
from homestay_checkout.services.booking_client import BookingServiceClient
from homestay_checkout.services.identity import Identity
from homestay_checkout.services.pending_payment_service import consume_pending_payment

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    """A definite answer: the flow ended FINALIZED or FAILED."""

    flow: PaymentFlow
    provider_status: str | None = None
    transaction_id: str | None = None

    @property
    def confirmed(self) -> bool:
        return self.flow.state == PaymentState.FINALIZED


class CallbackReconciler:
    def __init__(
        self,
        db: AsyncSession,
        booking_client: BookingServiceClient,
        khalti_client: KhaltiClient | None = None,
        ttl_minutes: int | None = None,
    ) -> None:
        self.db = db
        self.booking_client = booking_client
        self.khalti_client = khalti_client or KhaltiClient()
        self.ttl = timedelta(
            minutes=ttl_minutes if ttl_minutes is not None else settings.pending_payment_ttl_minutes
        )

    async def _confirm(
        self,
        booking_id: str,
        transaction_id: str,
        metadata: dict,
        identity: Identity | None,
    ) -> None:
        try:
            await self.booking_client.confirm_payment(booking_id, transaction_id, metadata, identity)
        except UpstreamBookingError as e:
            logger.error(
                "Provider reported payment %s complete but booking %s was not confirmed: %s",
                transaction_id,
                booking_id,
                e.message,
            )
            raise ReconciliationAmbiguous(
                "Payment was received but the booking could not be confirmed"
            ) from e

    async def reconcile_wallet(
        self,
        booking_id: str,
        identity: Identity | None = None,
        provider_reference: str | None = None,
    ) -> ReconciliationResult:
        """Verify a Khalti return and finalize the booking.

        ``provider_reference`` is the pidx the provider appended to the return
        URL. When given, only a pending payment with that reference is consumed.

        Raises:
            ReconciliationAmbiguous: when the outcome cannot be established.
        """
        pending = await consume_pending_payment(self.db, booking_id, provider_reference)
        if pending is None:
            logger.warning(
                "Wallet callback for booking %s (pidx %s) matches no pending payment",
                booking_id,
                provider_reference,
            )
            raise ReconciliationAmbiguous("No pending payment found for this booking")

        flow = PaymentFlow.awaiting_return(booking_id, PaymentMethod.WALLET)

        if pending.created_at < utcnow() - self.ttl:
            logger.warning("Pending payment for booking %s is older than %s", booking_id, self.ttl)
            raise ReconciliationAmbiguous("The payment window for this booking has expired")

        if not pending.provider_reference:
            raise ReconciliationAmbiguous("The wallet payment was never started")

        try:
            lookup = await self.khalti_client.lookup(pending.provider_reference)
        except PaymentProviderError as e:
            raise ReconciliationAmbiguous("The wallet provider could not verify the payment") from e

        logger.info("Khalti reports %s for booking %s", lookup.status, booking_id)

        if lookup.is_pending:
            raise ReconciliationAmbiguous(f"The wallet provider reports the payment as {lookup.status}")

        if not lookup.is_completed:
            flow.transition(PaymentState.FAILED)
            return ReconciliationResult(flow=flow, provider_status=lookup.status)

        if lookup.total_amount is not None and lookup.total_amount != pending.amount_minor_units:
            logger.error(
                "Amount mismatch for booking %s: paid %s, expected %s",
                booking_id,
                lookup.total_amount,
                pending.amount_minor_units,
            )
            raise ReconciliationAmbiguous("The paid amount does not match the booking")

        transaction_id = lookup.transaction_id or pending.provider_reference
        await self._confirm(
            booking_id,
            transaction_id,
            {
                "purchase_order_id": booking_id,
                "pidx": pending.provider_reference,
                "amount": pending.amount_minor_units,
                "currency": "NPR",
            },
            identity,
        )
        flow.transition(PaymentState.FINALIZED)
        return ReconciliationResult(flow=flow, provider_status=lookup.status, transaction_id=transaction_id)

    async def reconcile_card(
        self, booking_id: str, session_id: str, identity: Identity | None = None
    ) -> ReconciliationResult:
        """Verify a Stripe Checkout return and finalize the booking."""
        flow = PaymentFlow.awaiting_return(booking_id, PaymentMethod.CARD)

        try:
            session = await retrieve_payment_session(session_id)
        except stripe.StripeError as e:
            logger.error("Could not retrieve checkout session %s: %s", session_id, e)
            raise ReconciliationAmbiguous("The card provider could not verify the payment") from e

        metadata = dict(session.metadata or {})
        if metadata.get("bookingId") != booking_id:
            logger.warning(
                "Checkout session %s belongs to booking %s, not %s",
                session_id,
                metadata.get("bookingId"),
                booking_id,
            )
            raise ReconciliationAmbiguous("The payment does not belong to this booking")

        if session.payment_status != "paid":
            flow.transition(PaymentState.FAILED)
            return ReconciliationResult(flow=flow, provider_status=session.payment_status)

        payment_intent = session.payment_intent
        transaction_id = payment_intent if isinstance(payment_intent, str) else getattr(payment_intent, "id", None)
        if not transaction_id:
            raise ReconciliationAmbiguous("No payment was recorded for this checkout session")

        await self._confirm(booking_id, transaction_id, metadata, identity)
        flow.transition(PaymentState.FINALIZED)
        return ReconciliationResult(flow=flow, provider_status=session.payment_status, transaction_id=transaction_id)
