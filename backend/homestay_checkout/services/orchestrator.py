"""Checkout orchestration.

Sequences identity resolution, booking request building, booking creation
and payment routing for one checkout session, and turns every failure along
the way into a typed outcome. User-facing messages are composed here and
nowhere else.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from urllib.parse import urlencode

from homestay_checkout.auth.dependencies import AuthContext
from homestay_checkout.errors import (
    CheckoutValidationError,
    PaymentMethodContractError,
    PaymentProviderError,
    ReconciliationAmbiguous,
    UpstreamBookingError,
)
from homestay_checkout.payments.router import PaymentFlow, PaymentRouter
from homestay_checkout.schemas.checkout import (
    Booking,
    BookingRequest,
    BookingSummary,
    CheckoutSession,
    PaymentMethod,
    PaymentState,
)
from homestay_checkout.services.booking_client import BookingServiceClient
from homestay_checkout.services.booking_request import build_booking_request, parse_payment_method
from homestay_checkout.services.identity import AuthenticatedIdentity, resolve_identity
from homestay_checkout.services.reconciler import CallbackReconciler

logger = logging.getLogger(__name__)

UNCONFIRMED_MESSAGE = (
    "We could not confirm your payment yet. Please check your booking status "
    "before paying again."
)


# ---------------------------------------------------------------------------
# Submission guard
# ---------------------------------------------------------------------------


class SubmissionGuard:
    """At most one in-flight submission per checkout session id."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._in_flight: set[str] = set()

    async def acquire(self, key: str) -> bool:
        async with self._lock:
            if key in self._in_flight:
                return False
            self._in_flight.add(key)
            return True

    async def release(self, key: str) -> None:
        async with self._lock:
            self._in_flight.discard(key)

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[bool]:
        """Yield ``True`` if this caller owns the session, ``False`` if another request does."""
        acquired = await self.acquire(key)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(key)


# One per process; see DESIGN.md for multi-worker deployments
submission_guard = SubmissionGuard()


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Success:
    summary: BookingSummary
    next_path: str
    state: PaymentState


@dataclass(frozen=True)
class ValidationFailed:
    field_errors: dict[str, str]


@dataclass(frozen=True)
class BookingFailed:
    reason: str


@dataclass(frozen=True)
class PaymentInitiationFailed:
    reason: str
    booking_id: str


@dataclass(frozen=True)
class SubmissionInProgress:
    reason: str = "This checkout is already being processed. Please wait."


CheckoutOutcome = Success | ValidationFailed | BookingFailed | PaymentInitiationFailed | SubmissionInProgress


@dataclass(frozen=True)
class CallbackResult:
    status: str  # confirmed | failed | unconfirmed
    message: str
    booking_id: str
    next_path: str | None = None


def success_path(booking_id: str, payment_method: str, status: str = "CONFIRMED", **extra: str) -> str:
    query = {"bookingId": booking_id, "status": status, "paymentMethod": payment_method, **extra}
    return f"/payment-success?{urlencode(query)}"


def cancel_path(booking_id: str, error: str) -> str:
    return f"/payment-cancel?{urlencode({'error': error, 'bookingId': booking_id})}"


def payment_failure_message(booking_id: str, error: PaymentProviderError | None) -> str:
    detail = f" {error.message}" if error is not None and error.message else ""
    return (
        f"Your booking {booking_id} was created, but payment was not completed.{detail} "
        "Please retry payment for this booking instead of booking again."
    )


def _fill_from_request(booking: Booking, request: BookingRequest, session: CheckoutSession) -> Booking:
    """Backfill fields the booking backend left out of its response."""
    defaults = {
        "property_id": request.property_id,
        "check_in_date": request.check_in_date,
        "check_out_date": request.check_out_date,
        "total_guests": request.total_guests,
        "payment_method": request.payment_method,
        "guest_name": request.guest_name,
        "guest_email": request.guest_email,
        "guest_phone": request.guest_phone,
    }
    if session.total_price.currency == "NPR":
        defaults["total_price"] = session.total_price.amount
    update = {k: v for k, v in defaults.items() if getattr(booking, k) is None and v is not None}
    return booking.model_copy(update=update) if update else booking


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class CheckoutOrchestrator:
    def __init__(
        self,
        booking_client: BookingServiceClient,
        payment_router: PaymentRouter,
        reconciler: CallbackReconciler,
        guard: SubmissionGuard | None = None,
    ) -> None:
        self.booking_client = booking_client
        self.payment_router = payment_router
        self.reconciler = reconciler
        self.guard = guard or submission_guard

    async def submit(self, session: CheckoutSession, auth: AuthContext | None) -> CheckoutOutcome:
        """Run a checkout session to a terminal outcome.

        Raises:
            PaymentMethodContractError: if the session's payment method has no mapping.
        """
        async with self.guard.hold(session.session_id) as acquired:
            if not acquired:
                logger.info("Rejected duplicate submission for session %s", session.session_id)
                return SubmissionInProgress()
            return await self._submit(session, auth)

    async def _submit(self, session: CheckoutSession, auth: AuthContext | None) -> CheckoutOutcome:
        method = parse_payment_method(session.payment_method)

        try:
            identity = resolve_identity(session.guest, auth)
        except CheckoutValidationError as e:
            return ValidationFailed(field_errors=e.field_errors)

        request = build_booking_request(session, identity)

        try:
            booking = await self.booking_client.create_booking(request, identity)
        except UpstreamBookingError as e:
            logger.warning("Booking creation failed for session %s: %s", session.session_id, e.message)
            return BookingFailed(reason=e.message)

        booking = _fill_from_request(booking, request, session)
        return await self._route(booking, method)

    async def _route(self, booking: Booking, method: PaymentMethod) -> CheckoutOutcome:
        flow: PaymentFlow = await self.payment_router.route(booking, method)
        booking = flow.booking or booking
        summary = BookingSummary.from_booking(booking)

        if flow.state == PaymentState.FAILED:
            logger.warning(
                "Payment initiation failed for booking %s via %s: %s",
                booking.booking_id,
                flow.error.provider if flow.error else method.value,
                flow.error.message if flow.error else "unknown",
            )
            return PaymentInitiationFailed(
                reason=payment_failure_message(booking.booking_id, flow.error),
                booking_id=booking.booking_id,
            )

        if flow.state == PaymentState.REDIRECT_PENDING and flow.redirect is not None:
            return Success(summary=summary, next_path=flow.redirect.url, state=flow.state)

        extra = {"transactionId": booking.transaction_id} if booking.transaction_id else {}
        return Success(
            summary=summary,
            next_path=success_path(booking.booking_id, method.value, status=booking.status, **extra),
            state=flow.state,
        )

    async def retry_payment(
        self,
        session_id: str,
        booking_id: str,
        payment_method: str,
        auth: AuthContext | None,
    ) -> CheckoutOutcome:
        """Route an existing booking to payment again without creating a new one."""
        async with self.guard.hold(session_id) as acquired:
            if not acquired:
                return SubmissionInProgress()

            method = parse_payment_method(payment_method)
            identity = AuthenticatedIdentity(auth.user_ref, auth.access_token) if auth else None

            try:
                booking = await self.booking_client.get_booking(booking_id, identity)
            except UpstreamBookingError as e:
                logger.warning("Could not load booking %s for payment retry: %s", booking_id, e.message)
                return BookingFailed(reason=e.message)

            if booking.status.upper() == "CONFIRMED":
                logger.info("Booking %s already confirmed, skipping payment retry", booking_id)
                return Success(
                    summary=BookingSummary.from_booking(booking),
                    next_path=success_path(
                        booking_id, booking.payment_method or method.value, status=booking.status
                    ),
                    state=PaymentState.FINALIZED,
                )

            logger.info("Retrying payment for booking %s via %s", booking_id, method.value)
            return await self._route(booking, method)

    async def handle_callback(
        self,
        booking_id: str,
        payment_method: str,
        auth: AuthContext | None,
        session_id: str | None = None,
        pidx: str | None = None,
    ) -> CallbackResult:
        """Reconcile a provider return and say what the guest should see."""
        method = parse_payment_method(payment_method)
        identity = AuthenticatedIdentity(auth.user_ref, auth.access_token) if auth else None

        try:
            if method == PaymentMethod.WALLET:
                result = await self.reconciler.reconcile_wallet(booking_id, identity, provider_reference=pidx)
            elif method == PaymentMethod.CARD:
                if not session_id:
                    raise ReconciliationAmbiguous("Missing payment identifier")
                result = await self.reconciler.reconcile_card(booking_id, session_id, identity)
            else:
                raise PaymentMethodContractError(f"{method.value} payments have no provider return")
        except ReconciliationAmbiguous as e:
            logger.warning("Payment for booking %s is unconfirmed: %s", booking_id, e.reason)
            return CallbackResult(status="unconfirmed", message=UNCONFIRMED_MESSAGE, booking_id=booking_id)

        if result.confirmed:
            return CallbackResult(
                status="confirmed",
                message="Payment received. Your booking is confirmed.",
                booking_id=booking_id,
                next_path=success_path(
                    booking_id, method.value, transactionId=result.transaction_id or ""
                ),
            )

        status = result.provider_status or "failed"
        return CallbackResult(
            status="failed",
            message=(
                f"Payment was not completed ({status}). Your booking {booking_id} is still "
                "reserved; please retry payment for this booking."
            ),
            booking_id=booking_id,
            next_path=cancel_path(booking_id, f"Payment status {status}"),
        )
