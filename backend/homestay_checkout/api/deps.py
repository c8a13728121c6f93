"""Shared API dependencies: single import point for all routers.

Re-exports the database session and optional authentication dependencies
and wires the checkout orchestrator for a request::

    from homestay_checkout.api.deps import get_db, get_optional_auth, get_orchestrator
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from homestay_checkout.auth.dependencies import get_optional_auth
from homestay_checkout.database import get_db
from homestay_checkout.payments.router import build_payment_router
from homestay_checkout.services.booking_client import BookingServiceClient
from homestay_checkout.services.orchestrator import CheckoutOrchestrator
from homestay_checkout.services.reconciler import CallbackReconciler


async def get_orchestrator(db: AsyncSession = Depends(get_db)) -> CheckoutOrchestrator:
    """Build an orchestrator bound to this request's database session."""
    booking_client = BookingServiceClient()
    return CheckoutOrchestrator(
        booking_client=booking_client,
        payment_router=build_payment_router(db),
        reconciler=CallbackReconciler(db, booking_client),
    )


__all__ = [
    "get_db",
    "get_optional_auth",
    "get_orchestrator",
]
