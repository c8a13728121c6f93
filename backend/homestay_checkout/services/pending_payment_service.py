"""Pending payment store: create, look up and consume wallet payment records.

Writes commit immediately: the record has to exist before the browser is
sent to the provider, and the reconciler reads it from a different request.
"""

import logging
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from homestay_checkout.models.pending_payment import PendingPayment

logger = logging.getLogger(__name__)


async def create_pending_payment(
    db: AsyncSession,
    booking_id: str,
    amount_minor_units: int,
    payment_method: str = "WALLET",
) -> PendingPayment:
    """Persist a fresh record for the booking, replacing any earlier attempt."""
    await db.execute(delete(PendingPayment).where(PendingPayment.booking_id == booking_id))
    pending = PendingPayment(
        booking_id=booking_id,
        amount_minor_units=amount_minor_units,
        payment_method=payment_method,
    )
    db.add(pending)
    await db.commit()
    logger.info("Stored pending payment for booking %s (%s minor units)", booking_id, amount_minor_units)
    return pending


async def attach_provider_reference(
    db: AsyncSession, pending: PendingPayment, provider_reference: str
) -> PendingPayment:
    """Record the provider's transaction reference once initiation returns."""
    pending.provider_reference = provider_reference
    await db.commit()
    return pending


async def get_pending_payment(db: AsyncSession, booking_id: str) -> PendingPayment | None:
    """Look up the record for a booking without consuming it."""
    result = await db.execute(
        select(PendingPayment).where(PendingPayment.booking_id == booking_id)
    )
    return result.scalar_one_or_none()


async def discard_pending_payment(db: AsyncSession, booking_id: str) -> None:
    """Drop the record after a failed initiation."""
    await db.execute(delete(PendingPayment).where(PendingPayment.booking_id == booking_id))
    await db.commit()
    logger.info("Discarded pending payment for booking %s", booking_id)


async def consume_pending_payment(
    db: AsyncSession, booking_id: str, provider_reference: str | None = None
) -> PendingPayment | None:
    """Atomically delete and return the record.

    At most one caller gets the row back, so a replayed or concurrent
    callback finds nothing. With ``provider_reference`` the row is only
    consumed when its stored reference matches; otherwise it is left alone.
    """
    stmt = delete(PendingPayment).where(PendingPayment.booking_id == booking_id)
    if provider_reference is not None:
        stmt = stmt.where(PendingPayment.provider_reference == provider_reference)
    result = await db.execute(
        stmt.returning(
            PendingPayment.id,
            PendingPayment.booking_id,
            PendingPayment.amount_minor_units,
            PendingPayment.payment_method,
            PendingPayment.provider_reference,
            PendingPayment.created_at,
        )
    )
    row = result.one_or_none()
    await db.commit()
    if row is None:
        return None
    logger.info("Consumed pending payment for booking %s", booking_id)
    # detached snapshot of the deleted row
    return PendingPayment(**row._asdict())


async def purge_expired_pending_payments(db: AsyncSession, older_than: datetime) -> int:
    """Delete records created before ``older_than``. Returns the number removed."""
    result = await db.execute(
        delete(PendingPayment).where(PendingPayment.created_at < older_than)
    )
    await db.commit()
    removed = result.rowcount or 0
    if removed:
        logger.info("Purged %d expired pending payments", removed)
    return removed
