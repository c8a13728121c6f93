"""Checkout API router: submit, retry payment and provider returns."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from homestay_checkout.api.deps import get_optional_auth, get_orchestrator
from homestay_checkout.auth.dependencies import AuthContext
from homestay_checkout.errors import PaymentMethodContractError
from homestay_checkout.schemas.checkout import (
    CallbackResponse,
    CheckoutResponse,
    CheckoutSession,
    PaymentRetryRequest,
)
from homestay_checkout.services.orchestrator import (
    BookingFailed,
    CheckoutOrchestrator,
    CheckoutOutcome,
    PaymentInitiationFailed,
    SubmissionInProgress,
    Success,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/checkout", tags=["checkout"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_response(outcome: CheckoutOutcome) -> CheckoutResponse:
    """Return the success body, or raise an HTTPException carrying the outcome."""
    if isinstance(outcome, Success):
        return CheckoutResponse(
            outcome="success",
            state=outcome.state,
            booking=outcome.summary,
            booking_id=outcome.summary.booking_id,
            next_path=outcome.next_path,
        )

    if isinstance(outcome, ValidationFailed):
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
        body = CheckoutResponse(
            outcome="validation_failed",
            message="Please correct the highlighted fields.",
            field_errors=outcome.field_errors,
        )
    elif isinstance(outcome, BookingFailed):
        status_code = status.HTTP_502_BAD_GATEWAY
        body = CheckoutResponse(outcome="booking_failed", message=outcome.reason)
    elif isinstance(outcome, PaymentInitiationFailed):
        status_code = status.HTTP_402_PAYMENT_REQUIRED
        body = CheckoutResponse(
            outcome="payment_initiation_failed",
            message=outcome.reason,
            booking_id=outcome.booking_id,
        )
    elif isinstance(outcome, SubmissionInProgress):
        status_code = status.HTTP_409_CONFLICT
        body = CheckoutResponse(outcome="submission_in_progress", message=outcome.reason)
    else:  # pragma: no cover - exhaustive over CheckoutOutcome
        raise TypeError(f"Unknown checkout outcome: {outcome!r}")

    raise HTTPException(status_code=status_code, detail=body.model_dump(mode="json"))


def _contract_error(e: PaymentMethodContractError) -> HTTPException:
    logger.error("Payment method contract violation: %s", e)
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Unsupported payment method",
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("", response_model=CheckoutResponse)
async def submit_checkout(
    body: CheckoutSession,
    auth: AuthContext | None = Depends(get_optional_auth),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
) -> CheckoutResponse:
    """Create the booking and start payment for a checkout session.

    Works for signed-in users (Bearer token) and anonymous guests (``guest``
    contact details in the body).
    """
    try:
        outcome = await orchestrator.submit(body, auth)
    except PaymentMethodContractError as e:
        raise _contract_error(e) from e
    return _to_response(outcome)


@router.post("/bookings/{booking_id}/payment", response_model=CheckoutResponse)
async def retry_payment(
    booking_id: str,
    body: PaymentRetryRequest,
    auth: AuthContext | None = Depends(get_optional_auth),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
) -> CheckoutResponse:
    """Start payment again for a booking whose payment was not completed."""
    try:
        outcome = await orchestrator.retry_payment(body.session_id, booking_id, body.payment_method, auth)
    except PaymentMethodContractError as e:
        raise _contract_error(e) from e
    return _to_response(outcome)


@router.get("/callback", response_model=CallbackResponse)
async def payment_callback(
    booking_id: str = Query(..., alias="bookingId", min_length=1),
    payment_method: str = Query(..., alias="paymentMethod"),
    session_id: str | None = Query(None),
    pidx: str | None = Query(None),
    auth: AuthContext | None = Depends(get_optional_auth),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
) -> CallbackResponse:
    """Reconcile the browser's return from a payment provider.

    A wallet return carrying ``pidx`` only reconciles the pending payment
    stored under that reference.
    """
    try:
        result = await orchestrator.handle_callback(
            booking_id, payment_method, auth, session_id=session_id, pidx=pidx
        )
    except PaymentMethodContractError as e:
        raise _contract_error(e) from e

    return CallbackResponse(
        status=result.status,
        message=result.message,
        booking_id=result.booking_id,
        next_path=result.next_path,
    )
